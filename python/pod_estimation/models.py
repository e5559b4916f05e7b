"""
Pod Estimation — Model Configuration
====================================

Storage for the dynamics and measurement models of a linear filter:

    x_k = A x_{k-1} + B u_k + w,   w ~ N(0, Q)
    z_k = H x_k + v,               v ~ N(0, R)

plus the initial condition (x0, P0). Every setter validates shapes against
the fixed dimensions (n, m, k) and stores float64 copies, so callers can
never alias the filter's internal matrices.

Also provides 1-D kinematic model builders for a pod travelling along a
straight track.

License: MIT
"""

from typing import Optional, Tuple

import numpy as np

from .errors import DimensionMismatchError, NotConfiguredError


def as_matrix(name: str, value, shape: Tuple[int, int]) -> np.ndarray:
    """
    Convert to a float64 matrix copy of the given shape.

    1x1 matrices may be given as scalars and single-row matrices as 1-D
    arrays.

    Raises:
        DimensionMismatchError: if the shape does not match
        ValueError: if the matrix contains NaN or Inf
    """
    M = np.atleast_2d(np.array(value, dtype=np.float64))
    if M.shape != tuple(shape):
        raise DimensionMismatchError(name, shape, M.shape)
    if not np.all(np.isfinite(M)):
        raise ValueError(f"{name} contains NaN or infinite values")
    return M


def as_vector(name: str, value, length: int) -> np.ndarray:
    """
    Convert to a 1-D float64 vector copy of the given length.

    Column vectors of shape (length, 1) are accepted and flattened.
    """
    v = np.atleast_1d(np.array(value, dtype=np.float64))
    if v.ndim == 2 and v.shape[1] == 1:
        v = v[:, 0]
    if v.shape != (length,):
        raise DimensionMismatchError(name, (length,), v.shape)
    if not np.all(np.isfinite(v)):
        raise ValueError(f"{name} contains NaN or infinite values")
    return v


class ModelConfig:
    """
    Validated container for A, B, Q, H, R and the initial condition.

    Setters only store; nothing is recomputed as a side effect.

    Usage:
        model = ModelConfig(dim_x=2, dim_z=1)
        model.set_dynamics_model(A, Q)
        model.set_measurement_model(H, R)
        model.set_initial(x0, P0)
    """

    def __init__(self, dim_x: int, dim_z: int, dim_u: int = 0):
        self.dim_x = dim_x
        self.dim_z = dim_z
        self.dim_u = dim_u

        self.A: Optional[np.ndarray] = None
        self.B: Optional[np.ndarray] = None
        self.Q: Optional[np.ndarray] = None
        self.H: Optional[np.ndarray] = None
        self.R: Optional[np.ndarray] = None

        self.x0: Optional[np.ndarray] = None
        self.P0: Optional[np.ndarray] = None
        self.I: Optional[np.ndarray] = None

    # -------------------------------------------------------------------------
    # Setters
    # -------------------------------------------------------------------------

    def set_dynamics_model(self, A, Q, B=None):
        """
        Set the state transition model.

        Args:
            A: State transition matrix (n x n)
            Q: Process noise covariance (n x n)
            B: Control matrix (n x k), only for filters built with dim_u > 0
        """
        n = self.dim_x
        A = as_matrix("A", A, (n, n))
        Q = as_matrix("Q", Q, (n, n))
        if B is not None:
            if self.dim_u == 0:
                raise DimensionMismatchError("B", (n, 0), np.shape(np.atleast_2d(B)))
            B = as_matrix("B", B, (n, self.dim_u))

        self.A = A
        self.Q = Q
        if B is not None:
            self.B = B

    def set_measurement_model(self, H, R):
        """
        Set the measurement model.

        Args:
            H: Observation matrix (m x n)
            R: Measurement noise covariance (m x m)
        """
        H = as_matrix("H", H, (self.dim_z, self.dim_x))
        R = as_matrix("R", R, (self.dim_z, self.dim_z))
        self.H = H
        self.R = R

    def set_models(self, A, Q, H, R, B=None):
        """Set dynamics and measurement models in one call."""
        # Validate everything before storing anything
        n, m = self.dim_x, self.dim_z
        as_matrix("H", H, (m, n))
        as_matrix("R", R, (m, m))
        self.set_dynamics_model(A, Q, B=B)
        self.set_measurement_model(H, R)

    def set_initial(self, x0, P0):
        """Set the initial state and covariance; derives the identity I."""
        n = self.dim_x
        x0 = as_vector("x0", x0, n)
        P0 = as_matrix("P0", P0, (n, n))
        self.x0 = x0
        self.P0 = P0
        self.I = np.eye(n)

    def update_A(self, A):
        """Replace the state transition matrix (time-varying systems)."""
        self.A = as_matrix("A", A, (self.dim_x, self.dim_x))

    def update_R(self, R):
        """Replace the measurement noise covariance (time-varying sensors)."""
        self.R = as_matrix("R", R, (self.dim_z, self.dim_z))

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @property
    def is_complete(self) -> bool:
        return all(M is not None for M in (self.A, self.Q, self.H, self.R, self.x0, self.P0))

    def require_complete(self, with_control: bool = False):
        missing = [name for name in ("A", "Q", "H", "R", "x0", "P0")
                   if getattr(self, name) is None]
        if with_control and self.B is None:
            missing.append("B")
        if missing:
            raise NotConfiguredError(
                f"Filter not configured, missing {', '.join(missing)}. "
                "Call set_models() and set_initial() first."
            )


# =============================================================================
# Kinematic model builders
# =============================================================================

def build_constant_velocity(dt: float, q: float) -> Tuple[np.ndarray, np.ndarray]:
    """
    Build 1-D Constant Velocity model matrices.

    State: [s, v] (track position, velocity)

    Args:
        dt: Sample period [s]
        q: Process noise intensity (white acceleration)

    Returns:
        A: State transition matrix (2x2)
        Q: Process noise matrix (2x2)
    """
    A = np.array([
        [1, dt],
        [0, 1]
    ], dtype=np.float64)

    Q = q * np.array([
        [dt**4/4, dt**3/2],
        [dt**3/2, dt**2]
    ], dtype=np.float64)

    return A, Q


def build_constant_acceleration(dt: float, q: float) -> Tuple[np.ndarray, np.ndarray]:
    """
    Build 1-D Constant Acceleration model matrices.

    State: [s, v, a]

    Args:
        dt: Sample period [s]
        q: Process noise intensity (white jerk)

    Returns:
        A: State transition matrix (3x3)
        Q: Process noise matrix (3x3)
    """
    A = np.array([
        [1, dt, dt**2/2],
        [0, 1, dt],
        [0, 0, 1]
    ], dtype=np.float64)

    Q = q * np.array([
        [dt**5/20, dt**4/8, dt**3/6],
        [dt**4/8, dt**3/3, dt**2/2],
        [dt**3/6, dt**2/2, dt]
    ], dtype=np.float64)

    return A, Q
