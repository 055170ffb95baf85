"""
Concatenation
=============

Flows are concatenated into *switched* flows. Given two flows of the same kind,
``F`` and ``G``, and a switching time :math:`t_1`,

.. code-block:: python

   H = F * (t1, G)

is a new flow that follows ``F`` for :math:`t < t_1` and ``G`` for
:math:`t \\geq t_1`. A jump in the state bundle may be added at the switch,

.. code-block:: python

   H = F * (t1, dp, G)

For Hamiltonian and optimal control flows, a jump sized like the costate is
added to the costate; a jump sized like the whole bundle is added to the whole
bundle (see :class:`~pmpflows.flow.FlowDriver`).

Longer chains are built by repeated pairwise concatenation,

.. code-block:: python

   H = F * (t1, G) * (t2, K)

and equal ``F * (t1, G * (t2, K))`` when :math:`t_1 < t_2`.

Rules
-----

- The stop times of the result are the sorted union of the stop times of both
  operands and the switching time.
- The jumps of the result are the jumps of ``F``, then those of ``G``, then the
  jump at the switch, if any. Jumps at the same time are applied in this order.
- The result uses the driver of ``F``, i.e., its solver options and state
  bundle layout. In a chain, the leftmost flow's solver options are used
  throughout.
- A switching time outside the span of a later call is simply never reached.
- The operands are never modified.

For optimal control flows, the feedback control law switches along with the
right-hand side; the combined law depends on time and on the parameter vector,
and the optimal control model of ``F`` is kept.

.. autosummary::
   concatenate

Reference
-----------

.. autofunction:: concatenate
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Callable

from pmpflows import util
from pmpflows.flow import Flow
from pmpflows.functions import ControlLaw, NonAutonomous, NonFixed

logger = logging.getLogger(__name__)


def concatenate(F: Flow, switch: Sequence) -> Flow:
    """
    Concatenate two flows

    Args:
        F: the flow active before the switch
        switch: ``(tSwitch, G)`` or ``(tSwitch, delta, G)`` where ``G`` is the
            flow active from the switch on and ``delta`` is a jump applied at
            the switch

    Returns:
        the switched flow, an object of the same class as ``F``

    Raises:
        TypeError: if ``switch`` is malformed or ``G`` is not the same kind of
            flow as ``F``
    """
    if not isinstance(switch, (tuple, list)) or not len(switch) in (2, 3):
        raise TypeError("Expecting (tSwitch, flow) or (tSwitch, jump, flow)")

    tSwitch = float(switch[0])
    G = switch[-1]
    if not type(G) is type(F):
        raise TypeError(
            f"Cannot concatenate a {type(G).__name__} onto a {type(F).__name__}"
        )

    tstops = _concatTstops(F, G, tSwitch)
    jumps = _concatJumps(F, G, tSwitch, switch[1] if len(switch) == 3 else None)
    rhs = _concatRhs(F.rhs, G.rhs, tSwitch)

    if hasattr(F, "feedbackControl"):
        u = _concatFeedbackControl(F.feedbackControl, G.feedbackControl, tSwitch)
        return F.derived(rhs, tstops, jumps, feedbackControl=u)
    return F.derived(rhs, tstops, jumps)


def _concatRhs(rhsF: Callable, rhsG: Callable, tSwitch: float) -> Callable:
    def rhs(dz, z, v, t):
        if t < tSwitch:
            return rhsF(dz, z, v, t)
        return rhsG(dz, z, v, t)

    return rhs


def _concatTstops(F: Flow, G: Flow, tSwitch: float) -> tuple[float, ...]:
    return util.uniqueSorted(F.tstops, G.tstops, [tSwitch])


def _concatJumps(F: Flow, G: Flow, tSwitch: float, delta) -> list:
    jumps = list(F.jumps) + list(G.jumps)
    if delta is not None:
        jumps.append((tSwitch, util.toArray(delta)))
    return jumps


def _concatFeedbackControl(uF: ControlLaw, uG: ControlLaw, tSwitch: float) -> ControlLaw:
    # Piecewise in time, so never autonomous
    def u(t, x, p, v):
        if t < tSwitch:
            return uF(t, x, p, v)
        return uG(t, x, p, v)

    return ControlLaw(u, NonAutonomous, NonFixed)
