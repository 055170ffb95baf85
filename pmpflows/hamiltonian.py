"""
Hamiltonian Vector Fields
=========================

A scalar Hamiltonian, :math:`H(t, \\vec{x}, \\vec{p}, \\vec{v})`, defines the
state-costate dynamics through its symplectic gradient,

.. math::
   \\dot{\\vec{x}} = \\frac{\\partial H}{\\partial \\vec{p}}, \\qquad
   \\dot{\\vec{p}} = -\\frac{\\partial H}{\\partial \\vec{x}}.

The gradient is computed by automatic differentiation via :func:`jax.grad`, so a
Hamiltonian must be written with operations that :mod:`jax` can trace: Python
arithmetic, indexing, and :mod:`jax.numpy` functions.

The functions in this module build the right-hand sides consumed by the
:class:`~pmpflows.propagate.Propagator`. All of them share the in-place
signature ``rhs(dz, z, v, t)``: ``dz`` is filled with the derivative of the
state bundle ``z`` at time ``t`` for the parameter vector ``v``.

The state bundle of a Hamiltonian system is :math:`\\vec{z} = [\\vec{x}, \\vec{p}]`
with :math:`n` = ``len(z) // 2``. When :math:`n = 1`, the state and costate are
handed to the user's functions as scalars.

.. autosummary::
   symplecticGradient
   hamiltonianRhs
   hamiltonianVectorFieldRhs
   vectorFieldRhs
   checkGradient

Reference
-----------

.. autofunction:: symplecticGradient
.. autofunction:: hamiltonianRhs
.. autofunction:: hamiltonianVectorFieldRhs
.. autofunction:: vectorFieldRhs
.. autofunction:: checkGradient
"""
import logging
from typing import Callable, Union

import jax
import jax.numpy as jnp
import numpy as np
from numpy.typing import NDArray

from pmpflows import util
from pmpflows.functions import Hamiltonian, HamiltonianVectorField, VectorField
from pmpflows.typing import FloatArray, Vector

logger = logging.getLogger(__name__)


#: Errors raised when a Hamiltonian uses Python control flow or conversions on
#: its traced arguments; such Hamiltonians are differentiated without jit
_UNCOMPILABLE = (
    jax.errors.ConcretizationTypeError,
    jax.errors.TracerArrayConversionError,
    jax.errors.TracerIntegerConversionError,
)


def _gradient(h: Hamiltonian) -> Callable:
    # Gradient of H with respect to the state bundle, grad(z, t, v)
    def g(z, t, v):
        n = z.size // 2
        # jax.grad requires a scalar output; a one-element array is accepted too
        return jnp.reshape(h(t, util.rg(z, 0, n), util.rg(z, n, 2 * n), v), ())

    return jax.grad(g)


def _symplectic(dh: NDArray) -> NDArray:
    n = dh.size // 2
    return np.concatenate((dh[n:], -dh[:n]))


def symplecticGradient(h: Hamiltonian, t: float, z: FloatArray, v) -> NDArray:
    """
    Evaluate the Hamiltonian vector field at a single point

    Args:
        h: the Hamiltonian
        t: the time
        z: the state bundle, ``[x, p]``
        v: the parameter vector

    Returns:
        ``[dH/dp, -dH/dx]`` as a flat array
    """
    z = jnp.asarray(z, dtype=float).reshape(-1)
    return _symplectic(np.asarray(_gradient(h)(z, t, v)))


def hamiltonianRhs(h: Hamiltonian) -> Callable:
    """
    Build the right-hand side of Hamilton's equations from a scalar Hamiltonian

    The gradient is built once and compiled with :func:`jax.jit`, so ``h`` is
    traced once per argument shape rather than at every evaluation. A Hamiltonian
    that branches on, or converts, its arguments in Python cannot be compiled; it
    is differentiated without jit instead.

    Args:
        h: the Hamiltonian, ``H(t, x, p, v)``

    Returns:
        ``rhs(dz, z, v, t)`` with ``dz[:n] = dH/dp`` and ``dz[n:] = -dH/dx``
    """
    grad = _gradient(h)
    fcn = jax.jit(grad)

    def rhs(dz, z, v, t):
        nonlocal fcn
        zz = jnp.asarray(z, dtype=float)
        try:
            dh = fcn(zz, t, v)
        except _UNCOMPILABLE as err:
            if fcn is grad:
                raise
            logger.debug(f"Differentiating {h} without jit: {type(err).__name__}")
            fcn = grad
            dh = fcn(zz, t, v)
        dz[:] = _symplectic(np.asarray(dh))

    return rhs


def hamiltonianVectorFieldRhs(hv: HamiltonianVectorField) -> Callable:
    """
    Build a right-hand side from a Hamiltonian vector field

    Args:
        hv: the vector field, ``(t, x, p, v) -> (dx, dp)``

    Returns:
        ``rhs(dz, z, v, t)``
    """

    def rhs(dz, z, v, t):
        n = z.size // 2
        dx, dp = hv(t, util.rg(z, 0, n), util.rg(z, n, 2 * n), v)
        dz[:n] = dx
        dz[n:] = dp

    return rhs


def vectorFieldRhs(vf: VectorField) -> Callable:
    """
    Build a right-hand side from a vector field

    Args:
        vf: the vector field, ``(t, x, v) -> dx``

    Returns:
        ``rhs(dx, x, v, t)``
    """

    def rhs(dx, x, v, t):
        dx[:] = vf(t, util.rg(x, 0, x.size), v)

    return rhs


def checkGradient(
    h: Hamiltonian,
    t: float,
    x: Vector,
    p: Vector,
    v: Union[FloatArray, None] = None,
    step: float = 1e-6,
    rtol: float = 1e-6,
    atol: float = 1e-8,
    printTable: bool = False,
) -> bool:
    """
    Compare the automatic-differentiation vector field to finite differences

    Each partial derivative of ``h`` is approximated by a central difference
    with step ``step`` and compared to the gradient computed by :func:`jax.grad`.
    This method is primarily for debugging purposes, e.g., to locate a
    Hamiltonian that :mod:`jax` differentiates through a non-smooth branch.

    Args:
        h: the Hamiltonian
        t: the time
        x: the state
        p: the costate
        v: the parameter vector
        step: the finite difference step
        rtol: the numeric and AD values are equal when the absolute value of
            (numeric - AD)/numeric is less than ``rtol``
        atol: the numeric and AD values are equal when the absolute value of
            (numeric - AD) is less than ``atol``
        printTable: whether or not to print a table of the partial derivatives,
            their numeric and AD values, and the errors between them

    Returns:
        True if each partial derivative satisfies the relative *or* absolute
        tolerance; False otherwise
    """
    from rich.table import Table

    from pmpflows import console

    v = np.array([]) if v is None else v
    z = np.concatenate((util.toArray(x), util.toArray(p)))
    n = z.size // 2

    def hval(zz):
        return float(np.reshape(h(t, util.rg(zz, 0, n), util.rg(zz, n, 2 * n), v), ()))

    grad = np.zeros(z.size)
    for ix in range(z.size):
        dz = np.zeros(z.size)
        dz[ix] = step
        grad[ix] = (hval(z + dz) - hval(z - dz)) / (2 * step)

    numeric = np.concatenate((grad[n:], -grad[:n]))
    analytic = symplecticGradient(h, t, z, v)

    absDiff = abs(numeric - analytic)
    relDiff = absDiff.copy()
    names = [f"dx{i}" for i in range(n)] + [f"dp{i}" for i in range(n)]
    table = Table(
        "Status", "Name", "Numeric", "AD", "Rel Err", "Abs Err", title="Gradient Check"
    )

    equal = True
    for ix in range(z.size):
        if abs(numeric[ix]) > 1e-12:
            relDiff[ix] = absDiff[ix] / abs(numeric[ix])

        relOk = relDiff[ix] <= rtol
        absOk = absDiff[ix] <= atol
        table.add_row(
            "OK" if relOk or absOk else "ERR",
            names[ix],
            f"{numeric[ix]:.4e}",
            f"{analytic[ix]:.4e}",
            f"{relDiff[ix]:.4e}",
            f"{absDiff[ix]:.4e}",
            style="blue" if relOk or absOk else "red",
        )
        if not (relOk or absOk):
            equal = False

    if printTable:
        console.print(table)

    return equal
