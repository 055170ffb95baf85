"""
Exceptions
==========

Errors raised by the library. Argument errors (wrong sizes, wrong types) are
reported with the builtin :class:`ValueError` and :class:`TypeError`; the classes
below flag failures that are specific to building and evaluating flows.

.. autosummary::
   FlowError
   ConstructionError
   DynamicsMissingError
   IntegrationFailure

Reference
-----------

.. autoexception:: FlowError
.. autoexception:: ConstructionError
.. autoexception:: DynamicsMissingError
.. autoexception:: IntegrationFailure
"""


class FlowError(Exception):
    """
    Base class for all errors raised by the library
    """

    pass


class ConstructionError(FlowError, TypeError):
    """
    The arity of a wrapped function does not match its time and variable
    dependence tags
    """

    pass


class DynamicsMissingError(FlowError):
    """
    An optimal control model does not define the dynamics needed to build its
    Hamiltonian
    """

    pass


class IntegrationFailure(FlowError, RuntimeError):
    """
    The numerical integrator reported a failure

    Args:
        message: the message reported by the integrator
        t: the time at which the integration stopped, if known
    """

    def __init__(self, message: str, t: float = float("nan")) -> None:
        super().__init__(message)
        self.message = message  #: str: the integrator's message
        self.t = t  #: float: the time at which the integration stopped
