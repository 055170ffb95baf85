"""
Propagation
===========

Propagation, or numerical integration, is delegated to
:func:`scipy.integrate.solve_ivp`. The :class:`Propagator` class adds what the
flows of this library need on top of it: forced stops at prescribed times,
scheduled events that modify the state at those times (e.g., costate jumps), and
a solution object that stitches the integrated segments back together.

A propagator is created for a set of :class:`SolverOptions`. After construction,
it can be called many times with different right-hand sides, initial conditions,
time spans, and/or parameters.

.. code-block:: python

   prop = Propagator(SolverOptions(method="RK45", atol=1e-8))

   def rhs(dy, y, v, t):
       dy[:] = -y

   sol = prop.propagate(rhs, [1.0], (0.0, 2.0), tstops=[1.0])
   sol(0.5)    # interpolated state
   sol.yf      # state at the final time

The output from :func:`~Propagator.propagate` is a :class:`FlowSolution`, a
"bunch object" with the fields of the :func:`~scipy.integrate.solve_ivp` output
(``t``, ``y``, ``sol``, ``t_events``, ...) plus ``yf``, the state at the end of
the propagation, and the metadata needed to recreate the propagation.

Solver options
--------------

The integration method and tolerances are collected in an immutable
:class:`SolverOptions` object. Keyword arguments passed to
:func:`Propagator.propagate` override the options for that call only.

Breakpoints and scheduled events
--------------------------------

The time span is split at every forced stop time and every scheduled event time
that lies strictly inside it; each piece is integrated separately. Scheduled
events (:class:`ScheduledEvent`, :class:`JumpEvent`) are applied to the state at
their time, in the order they were given, before integration resumes.

Within a piece, the right-hand side is never evaluated exactly at the ends of
the piece; the time passed to it is kept one floating-point increment inside.
A right-hand side that switches at a breakpoint, e.g.,
``F(t) if t < t1 else G(t)``, is thus always evaluated on the branch that is
active across the piece.

Events
------

Root-finding events in the :func:`~scipy.integrate.solve_ivp` sense are defined
via :class:`AbstractEvent`, e.g.,

.. code-block:: python

   # Stop the propagation when the first variable reaches 2
   prop.propagate(rhs, y0, tspan, events=[VariableValueEvent(0, 2.0, terminal=True)])

Reference
==========

.. autoclass:: SolverOptions
   :members:

.. autoclass:: Propagator
   :members:

.. autoclass:: FlowSolution
   :members:

.. autoclass:: PiecewiseSolution
   :members:

.. autoclass:: ScheduledEvent
   :members:

.. autoclass:: JumpEvent
   :members:

.. autoclass:: AbstractEvent
   :members:

.. autoclass:: VariableValueEvent
   :members:
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field, fields, replace
from typing import Callable, Union

import numpy as np
from numba import njit
from numpy.typing import NDArray
from scipy.integrate import solve_ivp
from scipy.integrate._ivp.ivp import OdeResult

from pmpflows import util
from pmpflows.exceptions import IntegrationFailure
from pmpflows.typing import FloatArray, override

logger = logging.getLogger(__name__)

# solve_ivp arguments that are set by the propagator itself
_RESERVED = ("args", "t_eval", "dense_output")


@dataclass(frozen=True)
class SolverOptions:
    """
    Configuration of the numerical integration

    Args:
        method: integration method; passed as the ``method`` argument to
            :func:`~scipy.integrate.solve_ivp`
        atol: absolute tolerance
        rtol: relative tolerance
        dense_output: whether or not the solutions keep an interpolant
        saveat: times at which the solution is saved; if empty, every
            integration step is saved
        max_step: maximum step size
        extra: other keyword arguments passed to :func:`~scipy.integrate.solve_ivp`
    """

    method: str = "DOP853"
    atol: float = 1e-10
    rtol: float = 1e-10
    dense_output: bool = True
    saveat: tuple[float, ...] = ()
    max_step: float = np.inf
    extra: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.atol > 0 or not self.rtol > 0:
            raise ValueError("Tolerances must be positive")

        object.__setattr__(self, "saveat", tuple(float(t) for t in util.toList(self.saveat)))
        object.__setattr__(self, "extra", dict(self.extra))
        for key in _RESERVED:
            if key in self.extra:
                raise ValueError(f"'{key}' is set by the propagator and cannot be an option")

    def merged(self, **kwargs) -> SolverOptions:
        """
        Create a copy of the options with some values replaced

        Args:
            kwargs: new option values; names that are not fields of this class
                are stored in :attr:`extra`

        Returns:
            the new options
        """
        if not kwargs:
            return self

        names = {f.name for f in fields(self)} - {"extra"}
        extra = dict(self.extra)
        extra.update({k: v for k, v in kwargs.items() if k not in names})
        return replace(
            self, extra=extra, **{k: v for k, v in kwargs.items() if k in names}
        )

    def solverKwargs(self) -> dict:
        """
        Keyword arguments for :func:`~scipy.integrate.solve_ivp`
        """
        kwargs = {
            "method": self.method,
            "atol": self.atol,
            "rtol": self.rtol,
            "max_step": self.max_step,
        }
        kwargs.update(self.extra)
        return kwargs


class ScheduledEvent:
    """
    A modification of the state that occurs at a prescribed time

    Args:
        time: the time of the event
        apply: a function that accepts a copy of the state and returns the new
            state
    """

    def __init__(self, time: float, apply: Callable) -> None:
        self.time = float(time)  #: float: the time of the event
        self._apply = apply

    def __repr__(self) -> str:
        return util.repr(self, "time")

    def apply(self, y: NDArray[np.double]) -> NDArray[np.double]:
        """
        Apply the event to a state

        Args:
            y: the state; it is not modified

        Returns:
            the updated state
        """
        out = np.array(self._apply(np.array(y, copy=True)), dtype=float).reshape(-1)
        if not out.size == y.size:
            raise ValueError(
                f"Event at t = {self.time} changed the state size from {y.size} to {out.size}"
            )
        return out


class JumpEvent(ScheduledEvent):
    """
    Add a vector to part of the state at a prescribed time

    Args:
        time: the time of the jump
        delta: the vector to add
        ixs: the part of the state that jumps; the whole state if None
    """

    def __init__(
        self, time: float, delta: FloatArray, ixs: Union[slice, None] = None
    ) -> None:
        super().__init__(time, self._jump)
        self.delta = util.toArray(delta)  #: the jump
        self.ixs = slice(None) if ixs is None else ixs  #: the part that jumps

    def __repr__(self) -> str:
        return util.repr(self, "time", "delta", "ixs")

    def _jump(self, y: NDArray[np.double]) -> NDArray[np.double]:
        target = y[self.ixs]
        if not target.size == self.delta.size:
            raise ValueError(
                f"Jump at t = {self.time} has size {self.delta.size}, but applies "
                f"to {target.size} variables"
            )
        y[self.ixs] = target + self.delta
        return y


class PiecewiseSolution:
    """
    An interpolant assembled from the interpolants of consecutive segments

    At a breakpoint, the value of the segment that *starts* there is returned,
    i.e., the value after any scheduled events.

    Args:
        segments: a sequence of ``(tStart, tEnd, interpolant)`` tuples in the
            order of integration
    """

    def __init__(self, segments: Sequence[tuple[float, float, Callable]]) -> None:
        if len(segments) == 0:
            raise ValueError("At least one segment is required")

        self.segments = tuple(segments)  #: the segments
        t0, tf = segments[0][0], segments[-1][1]
        self.direction: float = 1.0 if tf >= t0 else -1.0  #: integration direction
        self.t_min = min(t0, tf)  #: minimum time
        self.t_max = max(t0, tf)  #: maximum time

    def _segment(self, t: float) -> Callable:
        for start, _, interp in reversed(self.segments):
            if self.direction * (t - start) >= 0:
                return interp
        return self.segments[0][2]

    def __call__(self, t: Union[float, FloatArray]) -> NDArray[np.double]:
        """
        Evaluate the solution

        Args:
            t: a time or an array of times

        Returns:
            the state, or an array with one column per time
        """
        if util.isScalar(t):
            return np.asarray(self._segment(float(t))(float(t)))  # type: ignore
        return np.column_stack([self(tt) for tt in np.asarray(t)])


class FlowSolution(OdeResult):
    """
    The output of :func:`Propagator.propagate`

    Includes the fields of :func:`~scipy.integrate.solve_ivp`'s output,

    - ``t``: the saved times, shape ``(N,)``
    - ``y``: the saved states, shape ``(n, N)``
    - ``sol``: a :class:`PiecewiseSolution`, or None if the options disable
      dense output
    - ``t_events``, ``y_events``: user event occurrences, one entry per event
    - ``nfev``, ``status``, ``message``, ``success``

    and

    - ``y0``: the state at the start of the propagation
    - ``yf``: the state at the end of the propagation
    - ``segments``: the integrated time intervals
    - ``params``, ``tstops``, ``scheduled``, ``events``, ``options``: the inputs
      of the propagation

    A solution is callable: ``sol(t)`` evaluates the interpolant.
    """

    def __call__(self, t: Union[float, FloatArray]) -> NDArray[np.double]:
        if self.sol is None:
            raise RuntimeError(
                "The propagation did not keep an interpolant; use dense_output=True"
            )
        return self.sol(t)


class Propagator:
    """
    Create a propagator object.

    This class primarily wraps the :func:`scipy.integrate.solve_ivp` method

    Args:
        options: the default solver options
        kwargs: values that replace some of the ``options``
    """

    def __init__(self, options: Union[SolverOptions, None] = None, **kwargs) -> None:
        options = SolverOptions() if options is None else options
        if not isinstance(options, SolverOptions):
            raise TypeError("options must be a SolverOptions object")

        self.options: SolverOptions = options.merged(**kwargs)  #: solver options

    def __repr__(self) -> str:
        return util.repr(self, "options")

    @property
    def method(self) -> str:
        """The numerical integration method"""
        return self.options.method

    @property
    def atol(self) -> float:
        """Absolute tolerance"""
        return self.options.atol

    @property
    def rtol(self) -> float:
        """Relative tolerance"""
        return self.options.rtol

    def propagate(
        self,
        rhs: Callable,
        y0: FloatArray,
        tspan: FloatArray,
        *,
        params: Union[FloatArray, None] = None,
        tstops: Sequence[float] = (),
        scheduled: Sequence[ScheduledEvent] = (),
        events: Sequence[AbstractEvent] = (),
        **kwargs,
    ) -> FlowSolution:
        """
        Perform a propagation

        Args:
            rhs: the right-hand side, ``rhs(dy, y, params, t)``, which fills
                ``dy`` with the derivative of ``y``
            y0: initial state vector
            tspan: a 2-element vector defining the start and end times
                for the propagation; the end time may precede the start time
            params: parameters that are passed to ``rhs``
            tstops: times at which the integration must stop and restart
            scheduled: state modifications applied at prescribed times
            events: root-finding events for the propagation
            kwargs: option values for this propagation only; see
                :class:`SolverOptions`

        Returns:
            the solution

        Raises:
            RuntimeError: if any of the objects in ``events`` are not derived
                from the :class:`AbstractEvent` base class
            IntegrationFailure: if the integrator fails
        """
        for key in _RESERVED:
            if key in kwargs:
                logger.warning(f"Ignoring '{key}' passed to propagate()")
                kwargs.pop(key)

        options = self.options.merged(**kwargs)
        params = np.array([]) if params is None else params

        y = np.array(y0, ndmin=1, dtype=float, copy=True).reshape(-1)
        yStart = y.copy()
        t0, tf = float(tspan[0]), float(tspan[1])
        direction = 1.0 if tf >= t0 else -1.0
        lo, hi = min(t0, tf), max(t0, tf)

        for event in events:
            if not isinstance(event, AbstractEvent):
                raise RuntimeError(f"Event is not derived from AbstractEvent:\n{event}")
        eventFcns = [event.solverFunction() for event in events]

        scheduled = tuple(ev for ev in scheduled if lo < ev.time < hi)
        breaks = sorted(
            {float(t) for t in tstops if lo < t < hi} | {ev.time for ev in scheduled},
            reverse=direction < 0,
        )
        nodes = [t0] + breaks + [tf]
        saveat = np.asarray(options.saveat, dtype=float)

        ts, ys, interps, intervals = [], [], [], []
        tEvents = [[] for _ in eventFcns]
        yEvents = [[] for _ in eventFcns]
        nfev, status, message = 0, 0, "The solver successfully reached the end of the integration interval."

        for ix in range(len(nodes) - 1):
            a, b = nodes[ix], nodes[ix + 1]
            last = ix == len(nodes) - 2

            # Scheduled events at the start of this segment
            for ev in scheduled:
                if ev.time == a:
                    y = ev.apply(y)
                    logger.debug(f"Applied {type(ev).__name__} at t = {a}")

            tEval = None
            if saveat.size > 0:
                inside = direction * (saveat - a) >= 0
                inside &= direction * (b - saveat) >= 0 if last else direction * (b - saveat) > 0
                tEval = saveat[inside][np.argsort(direction * saveat[inside])]

            if a == b:
                # zero-length span
                ts.append(np.array([a]) if tEval is None or tEval.size else np.array([]))
                ys.append(y[:, None] if ts[-1].size else np.empty((y.size, 0)))
                interps.append((a, b, _Constant(y)))
                intervals.append((a, b))
                continue

            res = solve_ivp(
                _segmentFun(rhs, a, b),
                (a, b),
                y,
                args=(params,),
                t_eval=tEval,
                dense_output=True,
                events=eventFcns if eventFcns else None,
                **options.solverKwargs(),
            )
            nfev += res.nfev
            logger.debug(f"Integrated segment [{a}, {b}] with {res.nfev} evaluations")

            # solve_ivp returns empty lists when no t_eval point lies in the segment
            tSeg = np.asarray(res.t, dtype=float).reshape(-1)
            ySeg = np.asarray(res.y, dtype=float).reshape(y.size, tSeg.size)

            if res.status == -1:
                raise IntegrationFailure(res.message, float(tSeg[-1]) if tSeg.size else a)

            for ie in range(len(eventFcns)):
                tEvents[ie].extend(res.t_events[ie])
                yEvents[ie].extend(res.y_events[ie])

            if res.status == 1:
                tEnd = max(
                    (float(t) for tev in res.t_events for t in tev),
                    key=lambda t: direction * t,
                )
            else:
                tEnd = b

            y = np.asarray(ySeg[:, -1] if tEval is None else res.sol(tEnd), dtype=float)
            ts.append(tSeg)
            ys.append(ySeg)
            interps.append((a, tEnd, res.sol))
            intervals.append((a, tEnd))

            if res.status == 1:
                status, message = 1, res.message
                break

        sol = FlowSolution(
            t=np.concatenate(ts),
            y=np.concatenate(ys, axis=1),
            sol=PiecewiseSolution(interps) if options.dense_output else None,
            t_events=[np.asarray(tev) for tev in tEvents] if eventFcns else None,
            y_events=[np.asarray(yev) for yev in yEvents] if eventFcns else None,
            nfev=nfev,
            status=status,
            message=message,
            success=status >= 0,
        )

        sol.y0 = yStart
        sol.yf = y
        sol.segments = tuple(intervals)
        sol.params = params
        sol.tstops = tuple(breaks)
        sol.scheduled = scheduled
        sol.events = tuple(events)
        sol.options = options
        return sol


class _Constant:
    """Interpolant of a zero-length segment"""

    def __init__(self, y: NDArray[np.double]) -> None:
        self.y = np.array(y, copy=True)

    def __call__(self, t):
        return np.array(self.y, copy=True)


def _segmentFun(rhs: Callable, a: float, b: float) -> Callable:
    """
    Wrap an in-place right-hand side into a ``solve_ivp`` function that never
    evaluates ``rhs`` exactly at ``a`` or ``b``
    """
    tLow, tHigh = sorted((np.nextafter(a, b), np.nextafter(b, a)))
    if tLow > tHigh:
        tLow = tHigh = 0.5 * (a + b)

    def fun(t, y, params):
        dy = np.zeros_like(y)
        rhs(dy, y, params, min(max(t, tLow), tHigh))
        return dy

    return fun


class AbstractEvent(ABC):
    """
    Defines an abstract event object

    Args:
        terminal: defines how the event interacts with the
            proapgation. If ``True``, the propagation will stop at the first occurrence
            of this event. If an :class:`int` is passed, the propagation will
            end after the specified number of occurrences within a segment.
        direction: defines event direction. If less than zero,
            the event is only triggered when ``eval`` moves from positive to
            negative values. A positive value triggers in the opposite direction,
            and ``0`` will trigger the event in either direction.

    Per the :func:`scipy.integrate.solve_ivp` documentation, an event is a
    function that:

    - has a signature ``event(t, y)``; additional arguments must be in the ``args``
      input to the ``solve_ivp`` function.
    - returns a :class:`float`
    - *might* have a ``terminal`` attribute that dictates the propagation
      termination behavior
    - *might* have a ``direction`` attribute that dictates the direction of
      a zero crossing.

    This interface provides the :func:`eval` function to serve as this function.
    The :func:`Propagator.propagate` function passes the parameter vector in the
    ``args`` argument to the ``solve_ivp`` function. Accordingly, :func:`eval`
    includes that extra argument in its signature. The :attr:`terminal`
    and :attr:`direction` attributes are attached to a per-event function built by
    :func:`solverFunction`, which is called automatically by
    :func:`Propagator.propagate`.
    """

    def __init__(self, terminal: bool = False, direction: float = 0.0) -> None:
        if not isinstance(terminal, bool):
            try:
                terminal = int(terminal)
            except Exception:
                raise TypeError("terminal input must be boolean or a number")

        try:
            direction = float(direction)
        except Exception:
            raise TypeError("direction input must be a number")

        if isinstance(terminal, int) and terminal < 0:
            logger.warning("Unexpected negative value for 'terminal'")

        self.terminal = terminal  #: bool: whether or not to terminate propagation
        self.direction = direction  #: float: event direction

    def solverFunction(self) -> Callable:
        """
        Build the function handed to :func:`scipy.integrate.solve_ivp`

        The function carries this event's :attr:`terminal` and :attr:`direction`
        values. A new function is built for each event, so events of the same
        class keep their own settings.

        .. note::
           The user does not need to call this method; it is called automatically
           before each propagation by the :func:`Propagator.propagate` function.

        Returns:
            a function ``fcn(t, y, params)`` with ``terminal`` and ``direction``
            attributes
        """

        def fcn(t, y, params):
            return self.eval(t, y, params)

        fcn.terminal = self.terminal  # type: ignore
        fcn.direction = self.direction  # type: ignore
        return fcn

    @abstractmethod
    def eval(self, t: float, y: Sequence[float], params: Sequence[float]) -> float:
        """
        Event evaluation method

        Args:
            t: independent variable value
            y: state vector
            params: extra parameters passed from the integrator

        Returns:
            the event value. The event occurs when this value is zero
        """
        pass


class VariableValueEvent(AbstractEvent):
    """
    Occurs where a variable equals a specified value

    Args:
        varIx: index of the variable within the state vector
        varValue: the value of the variable
        terminal: defines how the event interacts with the
            proapgation. If ``True``, the propagation will stop at the first occurrence
            of this event.
        direction: defines event direction. If less than zero,
            the event is only triggered when ``eval`` moves from positive to
            negative values. A positive value triggers in the opposite direction,
            and ``0`` will trigger the event in either direction.
    """

    def __init__(
        self,
        varIx: int,
        varValue: float,
        terminal: bool = False,
        direction: float = 0.0,
    ) -> None:
        super().__init__(terminal, direction)
        self._ix = varIx
        self._val = varValue

    def __repr__(self) -> str:
        return util.repr(self, "terminal", "direction")

    @override
    def eval(self, t, y, params) -> float:
        return self._eval(y, self._ix, self._val)

    @staticmethod
    @njit
    def _eval(y: FloatArray, ix: int, val: float) -> float:
        return float(val - y[ix])
