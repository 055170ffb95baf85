"""
Typed Functions
===============

The mathematical objects handled by the library (Hamiltonians, vector fields,
control laws, constraints, multipliers, costs) are plain Python callables. A user
may write them with or without an explicit dependence on time, ``t``, and on an
extra parameter vector, ``v``, e.g.,

.. code-block:: python

   H1 = Hamiltonian(lambda x, p: p[0] * x[1])
   H2 = Hamiltonian(lambda t, x, p, v: v[0] * t * p[0] * x[1], autonomous=False, variable=True)

Each callable is tagged along two independent axes, :class:`TimeDependence` and
:class:`VariableDependence`. A :class:`TypedFunction` stores the callable and
its tags and is normalized, once, at construction so that it can always be
called with the **canonical** argument list of its role. For a Hamiltonian the
canonical list is ``(t, x, p, v)``:

.. code-block:: python

   H1(0.0, x, p, [])   # t and v are ignored
   H2(0.0, x, p, [2])

The *natural* argument list, i.e., the arguments of the raw callable, is also
accepted:

.. code-block:: python

   H1(x, p)

The arity of the raw callable is checked against the tags at construction
whenever the callable's signature can be inspected; a mismatch raises a
:class:`~pmpflows.exceptions.ConstructionError`.

.. list-table:: Roles and their canonical argument lists
   :header-rows: 1

   * - Role
     - Canonical call
   * - :class:`Hamiltonian`, :class:`ControlLaw`, :class:`Multiplier`
     - ``(t, x, p, v)``
   * - :class:`HamiltonianVectorField`
     - ``(t, x, p, v) -> (dx, dp)``
   * - :class:`VectorField`, :class:`FeedbackControl`, :class:`StateConstraint`
     - ``(t, x, v)``
   * - :class:`Dynamics`, :class:`Lagrange`, :class:`MixedConstraint`
     - ``(t, x, u, v)``
   * - :class:`Mayer`
     - ``(x0, xf, v)``

Reference
==========

.. autoclass:: TimeDependence
   :members:

.. autoclass:: VariableDependence
   :members:

.. autoclass:: TypedFunction
   :members:

.. autofunction:: wrap
.. autofunction:: tagsFrom
.. autofunction:: toTyped
"""
from __future__ import annotations

import inspect
import logging
from enum import IntEnum
from typing import Callable, Union

from pmpflows import util
from pmpflows.exceptions import ConstructionError

logger = logging.getLogger(__name__)

__all__ = [
    "TimeDependence",
    "VariableDependence",
    "Autonomous",
    "NonAutonomous",
    "Fixed",
    "NonFixed",
    "TypedFunction",
    "Hamiltonian",
    "HamiltonianVectorField",
    "VectorField",
    "Dynamics",
    "Lagrange",
    "Mayer",
    "ControlLaw",
    "FeedbackControl",
    "StateConstraint",
    "MixedConstraint",
    "Multiplier",
    "wrap",
    "tagsFrom",
    "toTyped",
]


class TimeDependence(IntEnum):
    """
    Whether or not a function depends explicitly on time
    """

    AUTONOMOUS = 0
    """The function does not take ``t`` as its first argument"""

    NON_AUTONOMOUS = 1
    """The function takes ``t`` as its first argument"""


class VariableDependence(IntEnum):
    """
    Whether or not a function depends on an extra parameter vector, ``v``
    """

    FIXED = 0
    """The function does not take ``v`` as its last argument"""

    NON_FIXED = 1
    """The function takes ``v`` as its last argument"""


Autonomous = TimeDependence.AUTONOMOUS
NonAutonomous = TimeDependence.NON_AUTONOMOUS
Fixed = VariableDependence.FIXED
NonFixed = VariableDependence.NON_FIXED


def tagsFrom(
    autonomous: bool = True, variable: bool = False
) -> tuple[TimeDependence, VariableDependence]:
    """
    Convert boolean flags to a pair of tags

    Args:
        autonomous: whether or not the function is independent of time
        variable: whether or not the function depends on the parameter vector

    Returns:
        the time and variable dependence tags
    """
    return (
        Autonomous if autonomous else NonAutonomous,
        NonFixed if variable else Fixed,
    )


class TypedFunction:
    """
    A callable tagged with its time and variable dependence

    Args:
        f: the raw callable
        timeDependence: whether ``f`` takes ``t`` as its first argument
        variableDependence: whether ``f`` takes ``v`` as its last argument
        autonomous: boolean alternative to ``timeDependence``; takes precedence
            when both are given
        variable: boolean alternative to ``variableDependence``; takes precedence
            when both are given

    Raises:
        TypeError: if ``f`` is not callable
        ConstructionError: if the signature of ``f`` cannot accept the number
            of arguments implied by the tags
    """

    #: names of the arguments between ``t`` and ``v`` in the canonical call
    coreArgs: tuple[str, ...] = ("x",)

    #: whether or not the canonical call begins with ``t``
    timeArg: bool = True

    def __init__(
        self,
        f: Callable,
        timeDependence: Union[TimeDependence, None] = None,
        variableDependence: Union[VariableDependence, None] = None,
        *,
        autonomous: Union[bool, None] = None,
        variable: Union[bool, None] = None,
    ) -> None:
        if not callable(f):
            raise TypeError(f"Expecting a callable, got {type(f).__name__}")

        if autonomous is not None:
            timeDependence = Autonomous if autonomous else NonAutonomous
        if variable is not None:
            variableDependence = NonFixed if variable else Fixed

        #: TimeDependence: whether or not the function depends on time
        self.timeDependence = TimeDependence(
            Autonomous if timeDependence is None else timeDependence
        )
        #: VariableDependence: whether or not the function depends on ``v``
        self.variableDependence = VariableDependence(
            Fixed if variableDependence is None else variableDependence
        )

        if not self.timeArg and self.timeDependence == NonAutonomous:
            raise ValueError(f"A {type(self).__name__} cannot depend on time")

        self.f = f  #: the raw callable
        self._checkArity()
        self._call = self._normalize()

    def __repr__(self) -> str:
        return util.repr(self, "f", "timeDependence", "variableDependence")

    @property
    def isAutonomous(self) -> bool:
        """Whether or not the function is independent of time"""
        return self.timeDependence == Autonomous

    @property
    def isVariable(self) -> bool:
        """Whether or not the function depends on the parameter vector"""
        return self.variableDependence == NonFixed

    @property
    def naturalArity(self) -> int:
        """Number of arguments accepted by the raw callable"""
        return len(self.coreArgs) + (not self.isAutonomous) + self.isVariable

    @property
    def canonicalArity(self) -> int:
        """Number of arguments in the canonical call"""
        return len(self.coreArgs) + self.timeArg + 1

    def _checkArity(self) -> None:
        try:
            sig = inspect.signature(self.f)
        except (TypeError, ValueError):
            # No signature available (some builtins); errors surface at call time
            return

        positional, required = 0, 0
        for param in sig.parameters.values():
            if param.kind == param.VAR_POSITIONAL:
                return
            if param.kind in (param.POSITIONAL_ONLY, param.POSITIONAL_OR_KEYWORD):
                positional += 1
                if param.default is param.empty:
                    required += 1

        if not required <= self.naturalArity <= positional:
            names = (
                ["t"] * (not self.isAutonomous)
                + list(self.coreArgs)
                + ["v"] * self.isVariable
            )
            raise ConstructionError(
                f"{type(self).__name__} tagged {self.timeDependence.name}/"
                f"{self.variableDependence.name} must accept ({', '.join(names)}); "
                f"{self.f!r} has signature {sig}"
            )

    def _normalize(self) -> Callable:
        # Returns g(t, core, v) that drops the arguments f does not take
        f = self.f
        if self.isAutonomous and not self.isVariable:
            return lambda t, core, v: f(*core)
        elif self.isAutonomous:
            return lambda t, core, v: f(*core, v)
        elif not self.isVariable:
            return lambda t, core, v: f(t, *core)
        else:
            return lambda t, core, v: f(t, *core, v)

    def __call__(self, *args):
        if len(args) == self.canonicalArity:
            if self.timeArg:
                return self._call(args[0], args[1:-1], args[-1])
            return self._call(None, args[:-1], args[-1])
        elif len(args) == self.naturalArity:
            return self.f(*args)
        else:
            raise TypeError(
                f"{type(self).__name__} accepts {self.canonicalArity} (canonical) "
                f"or {self.naturalArity} (natural) arguments, got {len(args)}"
            )


def _adapt(
    src: TypedFunction, kind: type[TypedFunction], select: Callable
) -> TypedFunction:
    """
    Build a ``kind`` wrapper with the tags of ``src``

    The core arguments of the new wrapper are mapped to the core arguments of
    ``src`` via ``select``.
    """
    lead = 0 if src.isAutonomous else 1
    trail = 1 if src.isVariable else 0

    def natural(*args):
        t = args[0] if lead else None
        v = args[-1] if trail else None
        return src._call(t, select(args[lead : len(args) - trail]), v)

    return kind(natural, src.timeDependence, src.variableDependence)


class Hamiltonian(TypedFunction):
    """
    A scalar Hamiltonian, ``H(t, x, p, v)``
    """

    coreArgs = ("x", "p")


class HamiltonianVectorField(TypedFunction):
    """
    A Hamiltonian vector field, ``(t, x, p, v) -> (dx, dp)``
    """

    coreArgs = ("x", "p")


class VectorField(TypedFunction):
    """
    A vector field, ``(t, x, v) -> dx``
    """

    coreArgs = ("x",)


class Dynamics(TypedFunction):
    """
    Control system dynamics, ``(t, x, u, v) -> dx``
    """

    coreArgs = ("x", "u")


class Lagrange(TypedFunction):
    """
    A running cost, ``(t, x, u, v) -> float``
    """

    coreArgs = ("x", "u")


class Mayer(TypedFunction):
    """
    A boundary cost, ``(x0, xf, v) -> float``; never depends on time

    Args:
        f: the raw callable
        variableDependence: whether ``f`` takes ``v`` as its last argument
        variable: boolean alternative to ``variableDependence``
    """

    coreArgs = ("x0", "xf")
    timeArg = False

    def __init__(
        self,
        f: Callable,
        variableDependence: Union[VariableDependence, None] = None,
        *,
        variable: Union[bool, None] = None,
    ) -> None:
        super().__init__(f, Autonomous, variableDependence, variable=variable)


class ControlLaw(TypedFunction):
    """
    A control law in state-costate feedback form, ``(t, x, p, v) -> u``
    """

    coreArgs = ("x", "p")

    @classmethod
    def fromFeedback(cls, u: FeedbackControl) -> ControlLaw:
        """
        Convert a state feedback ``u(t, x, v)`` to a law ``(t, x, p, v) -> u``
        that ignores the costate
        """
        return _adapt(u, cls, lambda core: (core[0],))  # type: ignore[return-value]


class FeedbackControl(TypedFunction):
    """
    A control law in state feedback form, ``(t, x, v) -> u``
    """

    coreArgs = ("x",)


class StateConstraint(TypedFunction):
    """
    A pure state constraint, ``(t, x, v) -> g``
    """

    coreArgs = ("x",)


class MixedConstraint(TypedFunction):
    """
    A mixed state-control constraint, ``(t, x, u, v) -> g``
    """

    coreArgs = ("x", "u")

    @classmethod
    def fromStateConstraint(cls, g: StateConstraint) -> MixedConstraint:
        """
        Convert a state constraint ``g(t, x, v)`` to a mixed constraint
        ``(t, x, u, v) -> g`` that ignores the control
        """
        return _adapt(g, cls, lambda core: (core[0],))  # type: ignore[return-value]


class Multiplier(TypedFunction):
    """
    A constraint multiplier in feedback form, ``(t, x, p, v) -> mu``
    """

    coreArgs = ("x", "p")


def wrap(
    f: Callable,
    timeDependence: TimeDependence = Autonomous,
    variableDependence: VariableDependence = Fixed,
    kind: type[TypedFunction] = TypedFunction,
) -> TypedFunction:
    """
    Tag a raw callable

    Args:
        f: the callable
        timeDependence: whether ``f`` takes ``t`` as its first argument
        variableDependence: whether ``f`` takes ``v`` as its last argument
        kind: the role of the function

    Returns:
        the typed function
    """
    if kind is Mayer:
        return Mayer(f, variableDependence)
    return kind(f, timeDependence, variableDependence)


def toTyped(
    f: Callable,
    kind: type[TypedFunction],
    timeDependence: TimeDependence,
    variableDependence: VariableDependence,
) -> TypedFunction:
    """
    Return ``f`` if it is already a ``kind`` wrapper, otherwise wrap it

    Typed functions keep their own tags: they are always callable with the
    canonical argument list.
    """
    if isinstance(f, kind):
        return f
    if isinstance(f, TypedFunction):
        raise TypeError(f"Expecting a {kind.__name__}, got a {type(f).__name__}")
    return wrap(f, timeDependence, variableDependence, kind)
