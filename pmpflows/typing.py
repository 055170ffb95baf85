"""
Type aliases shared by the flows
"""
from collections.abc import Sequence
from typing import Any, Callable, Union

import numpy as np
import numpy.typing as npT

#: An array-like object of floats
FloatArray = Union[Sequence[float], Sequence[np.double], npT.NDArray[np.double]]

#: A state, costate, or variable: a scalar or an array-like object of floats
Vector = Union[float, FloatArray]

#: An in-place right-hand side, ``rhs(dz, z, v, t)``, that fills ``dz``
InplaceRhs = Callable[[npT.NDArray[np.double], npT.NDArray[np.double], Any, float], None]

#: A jump in the state bundle, ``(time, delta)``
Jump = tuple[float, npT.NDArray[np.double]]

try:
    # Works for python 3.12+
    from typing import override  # type: ignore
except ImportError:
    from overrides import override  # type: ignore
