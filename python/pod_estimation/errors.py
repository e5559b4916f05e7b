"""
Pod Estimation — Error Types
============================

Typed failures raised by the filter and its configuration layer.
Every error derives from EstimationError so callers can trap the whole
family in one place, and also from the matching builtin/numpy type so
generic handlers (ValueError, LinAlgError) keep working.

License: MIT
"""

from typing import Optional, Tuple

import numpy as np


class EstimationError(Exception):
    """Base class for all pod_estimation errors."""


class ConfigurationError(EstimationError, ValueError):
    """Invalid filter configuration value."""


class NotConfiguredError(EstimationError, RuntimeError):
    """A cycle was requested before the models and initial state were set."""


class DimensionMismatchError(EstimationError, ValueError):
    """
    A supplied matrix or vector does not match the filter dimensions.

    Attributes:
        name: Name of the offending matrix/vector (e.g. "H", "z")
        expected: Expected shape
        actual: Shape that was supplied
    """

    def __init__(self, name: str, expected: Tuple[int, ...], actual: Tuple[int, ...]):
        self.name = name
        self.expected = tuple(expected)
        self.actual = tuple(actual)
        super().__init__(
            f"{name} has shape {self.actual}, expected {self.expected}"
        )


class SingularMatrixError(EstimationError, np.linalg.LinAlgError):
    """
    A matrix that must be inverted is singular or numerically singular.

    Attributes:
        name: Name of the matrix (e.g. "S" for the innovation covariance)
        condition: Condition number at the time of failure, if known
    """

    def __init__(self, name: str, condition: Optional[float] = None):
        self.name = name
        self.condition = condition
        msg = f"{name} is singular"
        if condition is not None:
            msg += f" (condition number {condition:.3e})"
        super().__init__(msg)
