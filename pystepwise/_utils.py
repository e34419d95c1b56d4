"""
Utility functions.
"""

import numpy as np


def check_array(X, name='X', dtype=np.float64, allow_nan=False):
    """Validate array input (NaN marks a missing value when allowed)."""
    X = np.asarray(X, dtype=dtype)
    if X.ndim != 2:
        raise ValueError(f"{name} must be 2-dimensional")
    if np.any(np.isinf(X)) or (not allow_nan and np.any(np.isnan(X))):
        raise ValueError(f"{name} contains NaN or Inf")
    return X


def check_vector(y, name='y', dtype=np.float64, allow_nan=False):
    """Validate vector input (NaN marks a missing value when allowed)."""
    y = np.asarray(y, dtype=dtype)
    if y.ndim != 1:
        raise ValueError(f"{name} must be 1-dimensional")
    if np.any(np.isinf(y)) or (not allow_nan and np.any(np.isnan(y))):
        raise ValueError(f"{name} contains NaN or Inf")
    return y
