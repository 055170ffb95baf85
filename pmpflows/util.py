"""
Utilities
=========

Miscellaneous utility functions.

.. autosummary::
   toList
   toArray
   rg
   isScalar
   unwrap
   uniqueSorted

Reference
-----------

.. autofunction:: toList
.. autofunction:: toArray
.. autofunction:: rg
.. autofunction:: isScalar
.. autofunction:: unwrap
.. autofunction:: uniqueSorted
"""
from typing import Iterable

import numpy as np


def _iterate(val: object) -> Iterable:
    """
    A generator that iterates on the input, ``val``. If the input is a string,
    it is yielded without iterating.
    """
    if isinstance(val, str):
        yield val
    else:
        try:
            for item in val:  # type: ignore
                yield item
        except TypeError:
            yield val


def toList(val: object) -> list:
    """
    Convert an object to a list

    Args:
        val: the input

    Returns:
        a list containing the input

    Examples:
        >>> toList(1.23)
            [1.23]
        >>> toList(np.array([1,2,3]))
            [1, 2, 3]
    """
    return list(_iterate(val))


def toArray(val: object) -> np.ndarray:
    """
    Convert an object to a 1D array of floats

    Args:
        val: the input; a scalar or a flat sequence of numbers

    Returns:
        a copy of the input as a flat array

    Examples:
        >>> toArray(1.23)
            ndarray([1.23])
    """
    return np.array(list(_iterate(val)), dtype=float).reshape(-1)


def rg(z, start: int, stop: int):
    """
    Extract the ``[start, stop)`` block of a vector

    A block with a single element is returned as a scalar so that functions
    written for scalar states (e.g., ``H(x, p) = 0.5 * p**2``) receive scalars.

    Args:
        z: the vector; may be a :mod:`numpy` or :mod:`jax` array
        start: index of the first element
        stop: index one past the last element

    Returns:
        ``z[start]`` if the block holds one element, ``z[start:stop]`` otherwise
    """
    return z[start] if stop - start == 1 else z[start:stop]


def isScalar(val: object) -> bool:
    """
    Check whether a value is a scalar (not a sequence or a non-scalar array)
    """
    return np.ndim(val) == 0


def unwrap(val: np.ndarray, scalar: bool):
    """
    Return a single float if ``scalar`` is True, else a copy of the array

    Args:
        val: a 1D array
        scalar: whether or not the caller passed in a scalar

    Returns:
        ``float(val[0])`` or ``np.array(val)``
    """
    if scalar:
        if not val.size == 1:
            raise ValueError(f"Cannot unwrap an array of size {val.size} to a scalar")
        return float(val[0])
    return np.array(val, copy=True)


def uniqueSorted(*collections: Iterable[float]) -> tuple[float, ...]:
    """
    Merge collections of times into a sorted tuple without duplicates

    Args:
        collections: any number of iterables of times

    Returns:
        the union of all the collections, sorted in increasing order
    """
    merged = set()
    for coll in collections:
        merged.update(float(t) for t in coll)
    return tuple(sorted(merged))


def repr(cls: object, *attributes: str) -> str:
    """
    Simple repr method for a class with the format

      <ClassName:
        attr1: repr(attr1),
        attr2: repr(attr2),
        ...
      >

    Args:
        cls: the object
        attributes: the names of the attributes to include in the repr

    Returns:
        The repr
    """
    out = f"<{cls.__class__.__name__}:"
    for attr in attributes:
        out += "\n  {!s} = {!r},".format(attr, getattr(cls, attr))
    out += "\n>"
    return out
