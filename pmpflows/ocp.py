"""
Optimal Control Models
======================

An :class:`OptimalControlModel` collects the data of an optimal control
problem that the flows need: the dimensions, the dynamics, the costs, the
optimization criterion, and the time and variable dependence shared by the
user functions,

.. math::
   \\min_{u, v} \\; g(x(t_0), x(t_f), v) + \\int_{t_0}^{t_f} f^0(t, x, u, v) \\, dt
   \\quad \\text{s.t.} \\quad \\dot{x} = f(t, x, u, v).

.. code-block:: python

   ocp = OptimalControlModel(
       2, 1,
       dynamics=lambda x, u: [x[1], u],
       lagrange=lambda x, u: 0.5 * u**2,
   )

Raw callables are wrapped in :class:`~pmpflows.functions.Dynamics`,
:class:`~pmpflows.functions.Lagrange`, and :class:`~pmpflows.functions.Mayer`
with the tags of the model: ``autonomous`` sets the time dependence and a
positive ``variableDimension`` makes them depend on the parameter vector
``v``. Functions that are already wrapped keep their own tags.

The parameter vector may hold free initial and/or final times; the model records
whether they are free so that the flows can infer a default parameter vector
from the time span.

.. autosummary::
   Criterion
   OptimalControlModel

Reference
-----------

.. autoclass:: Criterion
   :members:

.. autoclass:: OptimalControlModel
   :members:
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Union

from pmpflows import util
from pmpflows.functions import Autonomous, Dynamics, Lagrange, Mayer, tagsFrom, toTyped

logger = logging.getLogger(__name__)


class Criterion(Enum):
    """
    Optimization direction
    """

    MIN = "min"
    """Minimize the objective"""

    MAX = "max"
    """Maximize the objective"""


class OptimalControlModel:
    """
    An optimal control problem

    Args:
        stateDimension: number of state variables
        controlDimension: number of control variables
        dynamics: the dynamics, ``f(t, x, u, v)``
        lagrange: the running cost, ``f0(t, x, u, v)``
        mayer: the boundary cost, ``g(x0, xf, v)``
        criterion: "min", "max", or a :class:`Criterion`
        autonomous: whether or not the raw functions are independent of time
        variableDimension: size of the parameter vector; the raw functions take
            ``v`` as their last argument when it is positive
        freeInitialTime: whether or not the initial time is part of ``v``
        freeFinalTime: whether or not the final time is part of ``v``
    """

    def __init__(
        self,
        stateDimension: int,
        controlDimension: int,
        dynamics: Union[Callable, None] = None,
        *,
        lagrange: Union[Callable, None] = None,
        mayer: Union[Callable, None] = None,
        criterion: Union[str, Criterion] = "min",
        autonomous: bool = True,
        variableDimension: int = 0,
        freeInitialTime: bool = False,
        freeFinalTime: bool = False,
    ) -> None:
        if stateDimension < 1 or controlDimension < 0 or variableDimension < 0:
            raise ValueError("Dimensions must be non-negative; the state is required")

        nFree = int(freeInitialTime) + int(freeFinalTime)
        if nFree > variableDimension:
            raise ValueError(
                f"{nFree} free time(s) do not fit in a variable of size {variableDimension}"
            )

        self._n = int(stateDimension)
        self._m = int(controlDimension)
        self._q = int(variableDimension)
        self._freeT0 = bool(freeInitialTime)
        self._freeTf = bool(freeFinalTime)
        self._criterion = Criterion(criterion)
        self._tags = tagsFrom(autonomous, self._q > 0)

        self._dynamics = None if dynamics is None else toTyped(dynamics, Dynamics, *self._tags)
        self._lagrange = None if lagrange is None else toTyped(lagrange, Lagrange, *self._tags)
        self._mayer = None if mayer is None else toTyped(mayer, Mayer, *self._tags)

    def __repr__(self) -> str:
        return util.repr(self, "_n", "_m", "_q", "_criterion", "_tags")

    def stateDimension(self) -> int:
        return self._n

    def controlDimension(self) -> int:
        return self._m

    def variableDimension(self) -> int:
        return self._q

    def hasFreeInitialTime(self) -> bool:
        return self._freeT0

    def hasFreeFinalTime(self) -> bool:
        return self._freeTf

    def hasMayerCost(self) -> bool:
        return self._mayer is not None

    def hasLagrangeCost(self) -> bool:
        return self._lagrange is not None

    def dynamics(self) -> Union[Dynamics, None]:
        """The dynamics, or None if not defined"""
        return self._dynamics

    def mayer(self) -> Union[Mayer, None]:
        """The boundary cost, or None if not defined"""
        return self._mayer

    def lagrange(self) -> Union[Lagrange, None]:
        """The running cost, or None if not defined"""
        return self._lagrange

    def criterion(self) -> Criterion:
        return self._criterion

    def isAutonomous(self) -> bool:
        """Whether or not the model functions are tagged as time independent"""
        return self._tags[0] == Autonomous

    def isVariable(self) -> bool:
        """Whether or not the model has a parameter vector"""
        return self._q > 0

    def tags(self) -> tuple:
        """The (time, variable) dependence tags of the model"""
        return self._tags
