"""
Optimal Control Flows
=====================

Pontryagin's maximum principle turns an optimal control problem into a
Hamiltonian system. Given an :class:`~pmpflows.ocp.OptimalControlModel` and a
control law in feedback form, :math:`u(t, x, p, v)`, the *pseudo-Hamiltonian*
of the problem,

.. math::
   H(t, x, p, v) = p \\cdot f(t, x, u, v) + s \\, p^0 f^0(t, x, u, v)
      + \\mu(t, x, p, v) \\cdot g(t, x, u, v),

defines the flow of the extremals. Here, :math:`p^0 = -1` is the cost
multiplier (normal case), :math:`s = 1` for a minimization and :math:`s = -1`
for a maximization, and the last term is included when a constraint,
:math:`g`, and its multiplier, :math:`\\mu`, are given.

.. code-block:: python

   ocp = OptimalControlModel(
       2, 1, dynamics=lambda x, u: [x[1], u], lagrange=lambda x, u: 0.5 * u**2
   )
   f = buildFlow(ocp, lambda x, p: p[1])

   xf, pf = f(t0, x0, p0, tf)            # terminal state and costate
   sol = f((t0, tf), x0, p0).solution()  # state, costate, control, objective

The control law may be a raw callable, a :class:`~pmpflows.functions.ControlLaw`,
or a :class:`~pmpflows.functions.FeedbackControl` (which ignores the costate).
The constraint may be a raw callable, a
:class:`~pmpflows.functions.MixedConstraint`, or a
:class:`~pmpflows.functions.StateConstraint`. Raw callables are tagged like the
model functions.

.. note::
   The Hamiltonian is differentiated by :mod:`jax`, so the model functions, the
   control law, the constraint, and the multiplier must be traceable: use Python
   arithmetic, indexing, lists, and :mod:`jax.numpy`.

Parameter vector
----------------

When the problem has a parameter vector and none is passed to the flow, it is
inferred from the time span for problems whose only parameters are free times:
``tf`` for a free final time, ``t0`` for a free initial time, and
``[t0, tf]`` when both are free. Passing a parameter vector to the flow of a
problem without one is an error.

.. autosummary::
   makeH
   createHamiltonian
   OptimalControlFlow
   OptimalControlFlowSolution
   OptimalControlSolution

Reference
-----------

.. autofunction:: makeH
.. autofunction:: createHamiltonian

.. autoclass:: OptimalControlFlow
   :members:

.. autoclass:: OptimalControlFlowSolution
   :members:

.. autoclass:: OptimalControlSolution
   :members:
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Callable, Union

import jax.numpy as jnp
import numpy as np
from numpy.typing import NDArray

from pmpflows import util
from pmpflows.exceptions import DynamicsMissingError
from pmpflows.flow import Flow, FlowDriver
from pmpflows.functions import (
    ControlLaw,
    Dynamics,
    FeedbackControl,
    Hamiltonian,
    Lagrange,
    MixedConstraint,
    Multiplier,
    NonAutonomous,
    NonFixed,
    StateConstraint,
    toTyped,
)
from pmpflows.hamiltonian import hamiltonianRhs
from pmpflows.ocp import Criterion, OptimalControlModel
from pmpflows.propagate import FlowSolution, Propagator, SolverOptions
from pmpflows.typing import FloatArray

logger = logging.getLogger(__name__)


def _dot(a, b):
    return jnp.sum(jnp.asarray(a) * jnp.asarray(b))


def makeH(
    f: Dynamics,
    u: ControlLaw,
    f0: Union[Lagrange, None] = None,
    p0: float = -1.0,
    s: float = 1.0,
    g: Union[MixedConstraint, None] = None,
    mu: Union[Multiplier, None] = None,
) -> Hamiltonian:
    """
    Build the pseudo-Hamiltonian of a control system

    Args:
        f: the dynamics
        u: the control law
        f0: the running cost, if any
        p0: the cost multiplier
        s: +1 for a minimization, -1 for a maximization
        g: the mixed constraint, if any
        mu: the multiplier of ``g``; required when ``g`` is given

    Returns:
        the Hamiltonian, ``H(t, x, p, v)``
    """

    def H(t, x, p, v):
        uu = u(t, x, p, v)
        h = _dot(p, f(t, x, uu, v))
        if f0 is not None:
            h = h + s * p0 * _dot(1.0, f0(t, x, uu, v))
        if g is not None:
            h = h + _dot(mu(t, x, p, v), g(t, x, uu, v))
        return h

    return Hamiltonian(H, NonAutonomous, NonFixed)


def createHamiltonian(
    ocp: OptimalControlModel,
    u: Callable,
    g: Union[Callable, None] = None,
    mu: Union[Callable, None] = None,
) -> tuple[Hamiltonian, ControlLaw]:
    """
    Build the pseudo-Hamiltonian of an optimal control problem

    Args:
        ocp: the problem
        u: the control law; a raw callable, a
            :class:`~pmpflows.functions.ControlLaw`, or a
            :class:`~pmpflows.functions.FeedbackControl`
        g: a constraint; a raw callable (mixed constraint), a
            :class:`~pmpflows.functions.MixedConstraint`, or a
            :class:`~pmpflows.functions.StateConstraint`
        mu: the multiplier associated with ``g``; a raw callable or a
            :class:`~pmpflows.functions.Multiplier`

    Returns:
        the Hamiltonian and the control law as a
        :class:`~pmpflows.functions.ControlLaw`

    Raises:
        DynamicsMissingError: if the problem has no dynamics
        ValueError: if only one of ``g`` and ``mu`` is given
    """
    f = ocp.dynamics()
    if f is None:
        raise DynamicsMissingError("The optimal control problem has no dynamics")
    if (g is None) != (mu is None):
        raise ValueError("A constraint and its multiplier must be given together")

    tags = ocp.tags()
    if isinstance(u, FeedbackControl):
        u = ControlLaw.fromFeedback(u)
    u = toTyped(u, ControlLaw, *tags)

    if g is not None:
        if isinstance(g, StateConstraint):
            g = MixedConstraint.fromStateConstraint(g)
        g = toTyped(g, MixedConstraint, *tags)
        mu = toTyped(mu, Multiplier, *tags)

    s = 1.0 if ocp.criterion() == Criterion.MIN else -1.0
    H = makeH(f, u, ocp.lagrange(), -1.0, s, g, mu)  # type: ignore[arg-type]
    return H, u  # type: ignore[return-value]


class OptimalControlFlow(Flow):
    """
    The flow of the extremals of an optimal control problem

    Called as ``f(t0, x0, p0, tf, [v])``, which returns ``(xf, pf)``, or as
    ``f((t0, tf), x0, p0, [v])``, which returns an
    :class:`OptimalControlFlowSolution`. Jumps are applied to the costate.

    Args:
        driver: the integration entry point
        rhs: the in-place right-hand side, ``rhs(dz, z, v, t)``
        feedbackControl: the control law
        ocp: the problem
        tstops: forced stop times
        jumps: ``(time, delta)`` pairs
    """

    def __init__(
        self,
        driver: FlowDriver,
        rhs: Callable,
        feedbackControl: ControlLaw,
        ocp: OptimalControlModel,
        tstops: Sequence[float] = (),
        jumps: Sequence = (),
    ) -> None:
        super().__init__(driver, rhs, tstops, jumps)
        self._feedbackControl = feedbackControl
        self._ocp = ocp

    def __repr__(self) -> str:
        return util.repr(self, "ocp", "feedbackControl", "tstops", "jumps")

    @classmethod
    def build(
        cls,
        ocp: OptimalControlModel,
        u: Callable,
        g: Union[Callable, None] = None,
        mu: Union[Callable, None] = None,
        *,
        options: Union[SolverOptions, None] = None,
    ) -> OptimalControlFlow:
        """
        Build the flow of an optimal control problem; see :func:`createHamiltonian`
        """
        H, u = createHamiltonian(ocp, u, g, mu)
        return cls(FlowDriver(options, 2, 1), hamiltonianRhs(H), u, ocp)

    @property
    def feedbackControl(self) -> ControlLaw:
        """The control law, ``u(t, x, p, v)``"""
        return self._feedbackControl

    @property
    def ocp(self) -> OptimalControlModel:
        """The optimal control problem"""
        return self._ocp

    def derived(
        self,
        rhs: Callable,
        tstops: Sequence[float],
        jumps: Sequence,
        feedbackControl: Union[ControlLaw, None] = None,
    ) -> OptimalControlFlow:
        return type(self)(
            self.driver,
            rhs,
            self._feedbackControl if feedbackControl is None else feedbackControl,
            self._ocp,
            tstops,
            jumps,
        )

    def defaultVariable(self, t0: float, tf: float):
        """
        Infer the parameter vector from the time span

        Returns:
            ``tf``, ``t0``, or ``[t0, tf]`` for problems whose parameters are
            free times, an empty array otherwise
        """
        ocp = self._ocp
        freeT0, freeTf = ocp.hasFreeInitialTime(), ocp.hasFreeFinalTime()
        q = ocp.variableDimension()
        if freeT0 and freeTf and q == 2:
            return np.array([t0, tf])
        elif freeTf and q == 1:
            return tf
        elif freeT0 and q == 1:
            return t0
        return np.array([])

    def __call__(self, *args, **kwargs):
        tspan, comps, v, trajectory = self.driver.parseArgs(args)

        n = self._ocp.stateDimension()
        if not util.toArray(comps[0]).size == n:
            raise ValueError(
                f"Initial state has size {util.toArray(comps[0]).size}; the problem "
                f"has {n} state variable(s)"
            )
        if v is not None and not self._ocp.isVariable():
            raise TypeError("The problem has no variable; do not pass one to the flow")
        if v is None:
            v = self.defaultVariable(*tspan)

        tstops = util.uniqueSorted(self.tstops, util.toList(kwargs.pop("tstops", ())))
        sol = self.driver.integrate(
            self.rhs, tspan, comps, v, tstops, self.jumps, **kwargs
        )
        if trajectory:
            return OptimalControlFlowSolution(
                sol, self._feedbackControl, self._ocp, v, util.isScalar(comps[0])
            )
        return self.driver.split(sol.yf, comps)


class OptimalControlFlowSolution:
    """
    The trajectory of an optimal control flow, with what is needed to build an
    :class:`OptimalControlSolution`

    Calling the object evaluates the ``[x, p]`` trajectory.

    Args:
        trajectory: the integrated ``[x, p]`` trajectory
        feedbackControl: the control law
        ocp: the problem
        variable: the parameter vector used in the integration
        scalarState: whether or not the state is reported as a scalar
    """

    def __init__(
        self,
        trajectory: FlowSolution,
        feedbackControl: ControlLaw,
        ocp: OptimalControlModel,
        variable,
        scalarState: bool = False,
    ) -> None:
        self.trajectory = trajectory  #: FlowSolution: the ``[x, p]`` trajectory
        self.feedbackControl = feedbackControl  #: ControlLaw: the control law
        self.ocp = ocp  #: OptimalControlModel: the problem
        self.variable = variable  #: the parameter vector
        self.scalarState = scalarState  #: bool: whether ``x`` is a scalar

    def __repr__(self) -> str:
        return util.repr(self, "ocp", "variable")

    def __call__(self, t: Union[float, FloatArray]) -> NDArray[np.double]:
        return self.trajectory(t)

    @property
    def t(self) -> NDArray[np.double]:
        """The saved times"""
        return self.trajectory.t

    @property
    def y(self) -> NDArray[np.double]:
        """The saved ``[x, p]`` states, one column per time"""
        return self.trajectory.y

    def solution(self, **kwargs) -> OptimalControlSolution:
        """
        Build the solution of the optimal control problem

        Args:
            kwargs: solver options for the integration of the running cost

        Returns:
            the solution
        """
        return OptimalControlSolution(self, **kwargs)


class OptimalControlSolution:
    """
    State, costate, and control curves along an extremal, and its objective

    The objective is the Mayer cost of the endpoints plus the integral of the
    running cost. If the running cost cannot be integrated, the objective is
    ``nan`` and a warning is logged; the curves remain available.

    Args:
        flowSolution: the trajectory of the optimal control flow
        kwargs: solver options for the integration of the running cost
    """

    def __init__(self, flowSolution: OptimalControlFlowSolution, **kwargs) -> None:
        self._traj = flowSolution.trajectory
        self._u = flowSolution.feedbackControl
        self._scalar = flowSolution.scalarState
        self._n = flowSolution.ocp.stateDimension()

        self.ocp = flowSolution.ocp  #: OptimalControlModel: the problem
        self.variable = flowSolution.variable  #: the parameter vector
        self.timeGrid = np.array(self._traj.t)  #: the saved times

        #: float: the objective value, ``nan`` if it cannot be evaluated
        self.objective = self._objective(**kwargs)

    def __repr__(self) -> str:
        return util.repr(self, "ocp", "variable", "objective")

    @property
    def t0(self) -> float:
        """The initial time"""
        return self._traj.segments[0][0]

    @property
    def tf(self) -> float:
        """The final time"""
        return self._traj.segments[-1][1]

    def _split(self, z: NDArray[np.double]):
        return util.rg(z, 0, self._n), util.rg(z, self._n, 2 * self._n)

    def _curve(self, t, fcn: Callable):
        if util.isScalar(t):
            return fcn(float(t))
        return np.array([fcn(float(tt)) for tt in np.asarray(t)])

    def state(self, t: Union[float, FloatArray]):
        """
        Evaluate the state

        Returns:
            ``x(t)``; one row per time if ``t`` is an array
        """
        return self._curve(t, lambda tt: self._pick(self._traj(tt)[: self._n]))

    def costate(self, t: Union[float, FloatArray]):
        """
        Evaluate the costate

        Returns:
            ``p(t)``; one row per time if ``t`` is an array
        """
        return self._curve(t, lambda tt: self._pick(self._traj(tt)[self._n :]))

    def control(self, t: Union[float, FloatArray]):
        """
        Evaluate the control law along the extremal

        Returns:
            ``u(t, x(t), p(t), v)``; one row per time if ``t`` is an array
        """

        def fcn(tt):
            x, p = self._split(self._traj(tt))
            return np.asarray(self._u(tt, x, p, self.variable), dtype=float)

        return self._curve(t, fcn)

    def _pick(self, val: NDArray[np.double]):
        return util.unwrap(val, self._scalar)

    def _objective(self, **kwargs) -> float:
        ocp = self.ocp
        v = self.variable
        obj = 0.0

        try:
            if ocp.hasMayerCost():
                x0 = self._split(self._traj.y0)[0]
                xf = self._split(self._traj.yf)[0]
                obj += float(np.reshape(ocp.mayer()(x0, xf, v), ()))

            if ocp.hasLagrangeCost():
                obj += self._integrateLagrange(**kwargs)
        except RuntimeError as err:
            logger.warning(f"Cannot evaluate the objective: {err}")
            return np.nan

        return obj

    def _integrateLagrange(self, **kwargs) -> float:
        lag = self.ocp.lagrange()
        u, v = self._u, self.variable
        traj = self._traj

        def rhs(dy, y, params, t):
            x, p = self._split(traj(t))
            dy[0] = float(np.reshape(lag(t, x, u(t, x, p, v), v), ()))

        options = traj.options.merged(saveat=(), dense_output=False, **kwargs)
        sol = Propagator(options).propagate(
            rhs, [0.0], (self.t0, self.tf), tstops=traj.tstops
        )
        return float(sol.yf[0])
