"""
Pod Estimation: adaptive multivariate state estimation for pod control.

Fuses noisy multi-sensor measurements into a state estimate for the
control and fault-detection loops.

Features:
- Linear Kalman filter with optional control input
- Online Q/R re-estimation from a sliding innovation window
- Shape-checked model configuration
- Transactional cycles with typed errors (no NaN propagation)

Example:
    >>> from pod_estimation import KalmanMultivariate
    >>> kf = KalmanMultivariate(dim_x=1, dim_z=1)
    >>> kf.set_models(A=[[1.0]], Q=[[0.01]], H=[[1.0]], R=[[0.1]])
    >>> kf.set_initial([0.0], [[1.0]])
    >>> kf.filter([1.0])

MIT License
"""

from .adaptive_noise import InnovationWindowEstimator
from .config import FilterConfig
from .diagnostics import compute_nees, compute_nis, is_positive_semidefinite, symmetrize
from .errors import (
    ConfigurationError,
    DimensionMismatchError,
    EstimationError,
    NotConfiguredError,
    SingularMatrixError,
)
from .kalman import EstimateSnapshot, KalmanMultivariate
from .models import ModelConfig, build_constant_acceleration, build_constant_velocity

__version__ = "1.0.0"
__license__ = "MIT"

__all__ = [
    # Filter
    "KalmanMultivariate",
    "EstimateSnapshot",
    "FilterConfig",
    "ModelConfig",
    "InnovationWindowEstimator",
    # Errors
    "EstimationError",
    "ConfigurationError",
    "DimensionMismatchError",
    "NotConfiguredError",
    "SingularMatrixError",
    # Models
    "build_constant_velocity",
    "build_constant_acceleration",
    # Diagnostics
    "compute_nis",
    "compute_nees",
    "is_positive_semidefinite",
    "symmetrize",
]
