"""
Flows
=====

A *flow* maps an initial condition at :math:`t_0` to the solution of a system
of differential equations at :math:`t_f`. Flows are built from the objects
defined in :mod:`pmpflows.functions` with :func:`buildFlow`,

.. code-block:: python

   from pmpflows.flow import buildFlow
   from pmpflows.functions import Hamiltonian

   f = buildFlow(Hamiltonian(lambda x, p: 0.5 * p**2))

and evaluated in one of two modes. The *value* mode returns the terminal
values only,

.. code-block:: python

   xf, pf = f(t0, x0, p0, tf)

while the *trajectory* mode, selected by passing the time span as a pair,
returns the full :class:`~pmpflows.propagate.FlowSolution`,

.. code-block:: python

   sol = f((t0, tf), x0, p0)
   sol(0.5 * (t0 + tf))   # [x(t), p(t)]

In both modes, a parameter vector ``v`` may follow the initial condition (and
the final time in the value mode), and keyword arguments are passed to
:func:`Propagator.propagate() <pmpflows.propagate.Propagator.propagate>`; they
override the solver options of the flow for that call only.

State bundle
------------

A flow integrates a *state bundle*: the concatenation of its components, e.g.,
``[x]`` for a vector field or ``[x, p]`` for a Hamiltonian system. The
:class:`FlowDriver` assembles the bundle from the components passed by the
caller and splits the result back into components. A component passed as a
scalar is returned as a scalar.

Breakpoints and jumps
---------------------

A flow carries a tuple of forced stop times, :attr:`Flow.tstops`, and a tuple of
``(time, delta)`` jumps, :attr:`Flow.jumps`. Both are populated by
:mod:`concatenation <pmpflows.concatenation>`. A jump whose ``delta`` has the
size of the driver's jump component (the costate for Hamiltonian flows) is
added to that component; a jump with the size of the whole bundle is added to
the whole bundle.

.. autosummary::
   buildFlow
   FlowDriver
   Flow
   VectorFieldFlow
   HamiltonianFlow
   ODEFlow

Reference
-----------

.. autofunction:: buildFlow

.. autoclass:: FlowDriver
   :members:

.. autoclass:: Flow
   :members:

.. autoclass:: VectorFieldFlow
   :members:

.. autoclass:: HamiltonianFlow
   :members:

.. autoclass:: ODEFlow
   :members:
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Union

import numpy as np
from numpy.typing import NDArray

from pmpflows import util
from pmpflows.functions import (
    Hamiltonian,
    HamiltonianVectorField,
    TypedFunction,
    VectorField,
    tagsFrom,
)
from pmpflows.hamiltonian import (
    hamiltonianRhs,
    hamiltonianVectorFieldRhs,
    vectorFieldRhs,
)
from pmpflows.propagate import FlowSolution, JumpEvent, Propagator, SolverOptions
from pmpflows.typing import InplaceRhs, Jump

logger = logging.getLogger(__name__)

__all__ = [
    "FlowDriver",
    "Flow",
    "VectorFieldFlow",
    "HamiltonianFlow",
    "ODEFlow",
    "buildFlow",
]


class FlowDriver:
    """
    The integration entry point of a flow

    A driver holds the solver options and the layout of the state bundle. It is
    shared by every flow concatenated onto the flow it was created for.

    Args:
        options: solver options
        nComponents: number of components in the state bundle, e.g., 1 for
            ``[x]`` and 2 for ``[x, p]``
        jumpComponent: index of the component that receives jumps sized like
            one component; if None, jumps must be sized like the whole bundle
    """

    def __init__(
        self,
        options: Union[SolverOptions, None] = None,
        nComponents: int = 1,
        jumpComponent: Union[int, None] = None,
    ) -> None:
        if nComponents < 1:
            raise ValueError("A state bundle has at least one component")
        if jumpComponent is not None and not 0 <= jumpComponent < nComponents:
            raise ValueError(f"jumpComponent must be in [0, {nComponents})")

        #: Propagator: performs the integration
        self.propagator = Propagator(options)
        self.nComponents = nComponents  #: int: number of bundle components
        self.jumpComponent = jumpComponent  #: the component that receives jumps

    def __repr__(self) -> str:
        return util.repr(self, "options", "nComponents", "jumpComponent")

    @property
    def options(self) -> SolverOptions:
        """The solver options"""
        return self.propagator.options

    def __call__(
        self,
        *args,
        rhs: InplaceRhs,
        tstops: Sequence[float] = (),
        jumps: Sequence[Jump] = (),
        **kwargs,
    ):
        """
        Evaluate the flow

        Args:
            args: either ``(t0, *components, tf, [v])`` (value mode) or
                ``((t0, tf), *components, [v])`` (trajectory mode)
            rhs: the in-place right-hand side, ``rhs(dz, z, v, t)``
            tstops: forced stop times
            jumps: ``(time, delta)`` pairs
            kwargs: passed to :func:`~pmpflows.propagate.Propagator.propagate`

        Returns:
            the terminal values in value mode (a tuple when the bundle has more
            than one component), or the :class:`~pmpflows.propagate.FlowSolution`
            in trajectory mode
        """
        tspan, comps, v, trajectory = self.parseArgs(args)
        sol = self.integrate(rhs, tspan, comps, v, tstops, jumps, **kwargs)
        if trajectory:
            return sol
        return self.split(sol.yf, comps)

    def parseArgs(self, args: Sequence) -> tuple:
        """
        Split a flow call into its time span, components, and parameter vector

        Returns:
            ``(tspan, components, v, trajectory)`` where ``v`` is None when not
            given and ``trajectory`` is True for a trajectory-mode call
        """
        n = self.nComponents
        if len(args) > 0 and not util.isScalar(args[0]):
            trajectory = True
            tspan = tuple(float(t) for t in args[0])
            if not len(tspan) == 2:
                raise ValueError("The time span must contain two values, (t0, tf)")
            rest = args[1:]
            if not len(rest) in (n, n + 1):
                raise TypeError(
                    f"Expecting ((t0, tf), {n} component(s), [v]); got {len(args)} arguments"
                )
            comps, v = rest[:n], (rest[n] if len(rest) == n + 1 else None)
        else:
            trajectory = False
            if not len(args) in (n + 2, n + 3):
                raise TypeError(
                    f"Expecting (t0, {n} component(s), tf, [v]); got {len(args)} arguments"
                )
            tspan = (float(args[0]), float(args[n + 1]))
            comps, v = args[1 : n + 1], (args[n + 2] if len(args) == n + 3 else None)

        return tspan, tuple(comps), v, trajectory

    def integrate(
        self,
        rhs: InplaceRhs,
        tspan: tuple[float, float],
        comps: Sequence,
        v,
        tstops: Sequence[float] = (),
        jumps: Sequence[Jump] = (),
        **kwargs,
    ) -> FlowSolution:
        """
        Integrate the state bundle assembled from ``comps``

        Args:
            rhs: the in-place right-hand side, ``rhs(dz, z, v, t)``
            tspan: ``(t0, tf)``
            comps: the bundle components
            v: the parameter vector; None is replaced by an empty array
            tstops: forced stop times
            jumps: ``(time, delta)`` pairs
            kwargs: passed to :func:`~pmpflows.propagate.Propagator.propagate`

        Returns:
            the solution; ``sol.components`` holds the component slices
        """
        arrays = [util.toArray(c) for c in comps]
        sizes = [a.size for a in arrays]
        if len(set(sizes)) > 1:
            raise ValueError(f"Bundle components have mismatched sizes {sizes}")

        z0 = np.concatenate(arrays)
        ixs, start = [], 0
        for size in sizes:
            ixs.append(slice(start, start + size))
            start += size

        scheduled = [self.jumpEvent(t, delta, ixs, z0.size) for t, delta in jumps]
        v = np.array([]) if v is None else v

        sol = self.propagator.propagate(
            rhs, z0, tspan, params=v, tstops=tstops, scheduled=scheduled, **kwargs
        )
        sol.components = tuple(ixs)
        return sol

    def jumpEvent(
        self, t: float, delta: NDArray[np.double], ixs: Sequence[slice], size: int
    ) -> JumpEvent:
        """
        Create the scheduled event for a jump

        Raises:
            ValueError: if the jump has neither the size of the jump component
                nor the size of the bundle
        """
        delta = util.toArray(delta)
        if self.jumpComponent is not None:
            target = ixs[self.jumpComponent]
            if delta.size == target.stop - target.start:
                return JumpEvent(t, delta, target)

        if delta.size == size:
            return JumpEvent(t, delta)

        raise ValueError(
            f"Jump at t = {t} has size {delta.size}; it must match the "
            + (
                "jump component or the state bundle"
                if self.jumpComponent is not None
                else "state"
            )
        )

    def split(self, z: NDArray[np.double], comps: Sequence):
        """
        Split a bundle into components shaped like ``comps``
        """
        n = z.size // self.nComponents
        out = tuple(
            util.unwrap(z[ix * n : (ix + 1) * n], util.isScalar(c))
            for ix, c in enumerate(comps)
        )
        return out if len(out) > 1 else out[0]


class Flow:
    """
    A solution flow

    Flows are immutable: :mod:`concatenation <pmpflows.concatenation>` builds
    new flows and never modifies its operands.

    Args:
        driver: the integration entry point
        rhs: the in-place right-hand side, ``rhs(dz, z, v, t)``
        tstops: forced stop times
        jumps: ``(time, delta)`` pairs
    """

    def __init__(
        self,
        driver: FlowDriver,
        rhs: InplaceRhs,
        tstops: Sequence[float] = (),
        jumps: Sequence[Jump] = (),
    ) -> None:
        if not isinstance(driver, FlowDriver):
            raise TypeError("driver must be a FlowDriver")

        self._driver = driver
        self._rhs = rhs
        self._tstops = util.uniqueSorted(tstops)

        frozen = []
        for t, delta in jumps:
            delta = util.toArray(delta)
            delta.flags.writeable = False
            frozen.append((float(t), delta))
        self._jumps = tuple(frozen)

    def __repr__(self) -> str:
        return util.repr(self, "driver", "tstops", "jumps")

    @property
    def driver(self) -> FlowDriver:
        """The integration entry point"""
        return self._driver

    @property
    def rhs(self) -> InplaceRhs:
        """The in-place right-hand side, ``rhs(dz, z, v, t)``"""
        return self._rhs

    @property
    def tstops(self) -> tuple[float, ...]:
        """Sorted, unique forced stop times"""
        return self._tstops

    @property
    def jumps(self) -> tuple[Jump, ...]:
        """``(time, delta)`` pairs in the order they are applied"""
        return self._jumps

    def __call__(self, *args, **kwargs):
        """
        Evaluate the flow; see :func:`FlowDriver.__call__`

        A ``tstops`` keyword is merged with the flow's own stop times.
        """
        tstops = util.uniqueSorted(self._tstops, util.toList(kwargs.pop("tstops", ())))
        return self._driver(
            *args, rhs=self._rhs, tstops=tstops, jumps=self._jumps, **kwargs
        )

    def __mul__(self, other):
        from pmpflows.concatenation import concatenate

        return concatenate(self, other)

    def derived(self, rhs: InplaceRhs, tstops: Sequence[float], jumps: Sequence) -> Flow:
        """
        Create a flow of the same class that shares this flow's driver

        Args:
            rhs: the new right-hand side
            tstops: the new stop times
            jumps: the new jumps

        Returns:
            the new flow
        """
        return type(self)(self._driver, rhs, tstops, jumps)


class VectorFieldFlow(Flow):
    """
    The flow of a vector field, ``x' = V(t, x, v)``; called as
    ``f(t0, x0, tf, [v])`` or ``f((t0, tf), x0, [v])``
    """


class ODEFlow(Flow):
    """
    The flow of a plain right-hand side callable, ``x' = f(t, x, v)``, tagged
    with boolean ``autonomous`` and ``variable`` flags; called like a
    :class:`VectorFieldFlow`
    """


class HamiltonianFlow(Flow):
    """
    The flow of a Hamiltonian system in the ``[x, p]`` bundle; called as
    ``f(t0, x0, p0, tf, [v])`` or ``f((t0, tf), x0, p0, [v])``
    """


def buildFlow(
    obj,
    *args,
    options: Union[SolverOptions, None] = None,
    autonomous: bool = True,
    variable: bool = False,
    **kwargs,
) -> Flow:
    """
    Build the flow of a system

    Args:
        obj: the system. Dispatches on its type:

            - :class:`~pmpflows.ocp.OptimalControlModel` ->
              :class:`~pmpflows.ocpflow.OptimalControlFlow`; ``args`` hold the
              control law and, optionally, a constraint and its multiplier
            - :class:`~pmpflows.functions.Hamiltonian` or
              :class:`~pmpflows.functions.HamiltonianVectorField` ->
              :class:`HamiltonianFlow`
            - :class:`~pmpflows.functions.VectorField` -> :class:`VectorFieldFlow`
            - any other callable -> :class:`ODEFlow`, the right-hand side
              ``f(t, x, v)`` tagged via ``autonomous`` and ``variable``

        options: solver options
        autonomous: whether or not a plain callable is independent of time
        variable: whether or not a plain callable depends on a parameter vector
        kwargs: solver option values that replace some of the ``options``

    Returns:
        the flow
    """
    from pmpflows.ocp import OptimalControlModel
    from pmpflows.ocpflow import OptimalControlFlow

    options = (SolverOptions() if options is None else options).merged(**kwargs)

    if isinstance(obj, OptimalControlModel):
        return OptimalControlFlow.build(obj, *args, options=options)

    if args:
        raise TypeError(f"Unexpected arguments for a {type(obj).__name__} flow")

    if isinstance(obj, Hamiltonian):
        return HamiltonianFlow(FlowDriver(options, 2, 1), hamiltonianRhs(obj))
    elif isinstance(obj, HamiltonianVectorField):
        return HamiltonianFlow(FlowDriver(options, 2, 1), hamiltonianVectorFieldRhs(obj))
    elif isinstance(obj, VectorField):
        return VectorFieldFlow(FlowDriver(options, 1), vectorFieldRhs(obj))
    elif isinstance(obj, TypedFunction):
        raise TypeError(f"Cannot build a flow from a {type(obj).__name__}")
    elif callable(obj):
        vf = VectorField(obj, *tagsFrom(autonomous, variable))
        return ODEFlow(FlowDriver(options, 1), vectorFieldRhs(vf))
    else:
        raise TypeError(f"Cannot build a flow from a {type(obj).__name__}")
