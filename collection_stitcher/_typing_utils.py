"""Type aliases shared by the stitching modules.

This module provides commonly used type aliases for numpy arrays and numeric types
used throughout the package.
"""
from typing import Any, Sequence, Union

import numpy as np
import numpy.typing as npt

# Array type aliases
NumArray = npt.NDArray[Any]
FloatArray = npt.NDArray[np.float64]
IntArray = npt.NDArray[np.int64]
BoolArray = npt.NDArray[np.bool_]

# Numeric type aliases
Float = Union[float, np.floating]

# Coordinates in mosaic space, ordered (x, y[, z])
Vector = Union[Sequence[float], FloatArray]
