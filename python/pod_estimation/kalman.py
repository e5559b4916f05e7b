"""
Pod Estimation — Adaptive Multivariate Kalman Filter
====================================================

Predict/correct recursive filter for sensor fusion on the pod. When
adaptive mode is enabled, Q and R are re-estimated online from a sliding
window of innovations (see adaptive_noise.py).

One cycle, in this exact order:

    1. x⁻ = A x (+ B u)
    2. ν  = z - H x⁻                       → innovation window
    3. (adaptive, warmed up) Q = K C K',  R = C - H P H'
    4. P⁻ = A P A' + Q
    5. S  = H P⁻ H' + R
       K  = P⁻ H' S⁻¹
       x  = x⁻ + K ν
       P  = (I - K H) P⁻

Step 3 uses the gain from the previous cycle and sees this cycle's
innovation before the refreshed Q enters step 4.

A cycle is transactional: if any step fails, x, P, K, Q, R, the innovation
window and the iteration counter keep their pre-cycle values.

Not thread-safe. Callers feeding one instance from several threads must
hold a lock across each filter() call.

Example:
    kf = KalmanMultivariate(dim_x=2, dim_z=1, adaptive=True, window_size=20)
    kf.set_models(A, Q, H, R)
    kf.set_initial(x0, P0)
    for z in measurements:
        kf.filter(z)
        x = kf.state_estimate

License: MIT
"""

import logging
import warnings
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union

import numpy as np
import scipy.linalg

from .adaptive_noise import InnovationWindowEstimator
from .config import FilterConfig, resolve_config
from .diagnostics import symmetrize
from .errors import ConfigurationError, SingularMatrixError
from .models import ModelConfig, as_vector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EstimateSnapshot:
    """Immutable copy of the filter output after a cycle."""
    x: np.ndarray            # State estimate (n,)
    P: np.ndarray            # State covariance (n, n)
    iteration: int           # Completed cycles

    def std(self) -> np.ndarray:
        """Per-state standard deviation."""
        return np.sqrt(np.clip(np.diag(self.P), 0.0, None))


class KalmanMultivariate:
    """
    Linear Kalman filter with optional windowed Q/R adaptation.

    Dimensions (n, m, k) are fixed at construction and every matrix or
    vector supplied later is checked against them.
    """

    def __init__(self,
                 dim_x: Optional[int] = None,
                 dim_z: Optional[int] = None,
                 dim_u: int = 0,
                 adaptive: bool = False,
                 window_size: int = 20,
                 config: Optional[Union[FilterConfig, Dict[str, Any]]] = None):
        """
        Args:
            dim_x: State dimension n
            dim_z: Measurement dimension m
            dim_u: Control dimension k (0 = no control input)
            adaptive: Enable online Q/R re-estimation
            window_size: Innovation window capacity L
            config: Full configuration; overrides the keyword arguments
        """
        if config is None and (dim_x is None or dim_z is None):
            raise ConfigurationError("dim_x and dim_z are required when no config is given")
        self.config = resolve_config(config, dim_x=dim_x, dim_z=dim_z, dim_u=dim_u,
                                     adaptive=adaptive, window_size=window_size)
        cfg = self.config
        self.dim_x = cfg.dim_x
        self.dim_z = cfg.dim_z
        self.dim_u = cfg.dim_u

        self.model = ModelConfig(cfg.dim_x, cfg.dim_z, cfg.dim_u)
        self._estimator = (InnovationWindowEstimator(cfg.dim_x, cfg.dim_z, cfg)
                           if cfg.adaptive else None)

        self._x: Optional[np.ndarray] = None
        self._P: Optional[np.ndarray] = None
        # No gain exists before the first correction
        self._K = np.zeros((cfg.dim_x, cfg.dim_z))
        self._innovation: Optional[np.ndarray] = None
        self._S: Optional[np.ndarray] = None
        self._iteration = 0

        logger.info("KalmanMultivariate created (n=%d, m=%d, k=%d, adaptive=%s, L=%d)",
                    cfg.dim_x, cfg.dim_z, cfg.dim_u, cfg.adaptive, cfg.window_size)

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def set_dynamics_model(self, A, Q, B=None):
        """Set A, Q and optionally the control matrix B."""
        self.model.set_dynamics_model(A, Q, B=B)

    def set_measurement_model(self, H, R):
        """Set H and R."""
        self.model.set_measurement_model(H, R)

    def set_models(self, A, Q, H, R, B=None):
        """Set dynamics and measurement models together."""
        self.model.set_models(A, Q, H, R, B=B)

    def set_initial(self, x0, P0):
        """Set the initial state estimate and covariance."""
        self.model.set_initial(x0, P0)
        self._x = self.model.x0.copy()
        self._P = self.model.P0.copy()

    def update_A(self, A):
        self.model.update_A(A)

    def update_R(self, R):
        self.model.update_R(R)

    # -------------------------------------------------------------------------
    # Cycle
    # -------------------------------------------------------------------------

    def filter(self, z, u=None):
        """
        Run one predict/correct cycle.

        Args:
            z: Measurement vector (m,)
            u: Control vector (k,), optional

        Raises:
            DimensionMismatchError: z or u has the wrong length
            SingularMatrixError: innovation covariance is not invertible
            NotConfiguredError: models or initial state not set
        """
        model = self.model
        model.require_complete()
        z = as_vector("z", z, self.dim_z)
        if u is not None:
            u = as_vector("u", u, self.dim_u)
            model.require_complete(with_control=True)

        A, H, I = model.A, model.H, model.I
        Q, R = model.Q, model.R
        iteration = self._iteration + 1

        # 1. Predict state
        x = A @ self._x
        if u is not None:
            x = x + model.B @ u

        # 2. Innovation against the predicted state
        innovation = z - H @ x

        checkpoint = self._estimator.checkpoint() if self._estimator is not None else None
        try:
            # 3. Adaptive refresh of Q and R
            if self._estimator is not None:
                self._estimator.observe(innovation, iteration)
                noise = self._estimator.noise_models(self._K, self._P, H, iteration)
                if noise is not None:
                    Q, R = noise

            # 4. Predict covariance
            P = A @ self._P @ A.T + Q

            # 5. Correct
            S = H @ P @ H.T + R
            K = self._gain(P, H, S)
            x = x + K @ innovation
            P = (I - K @ H) @ P
            if self.config.symmetrize:
                P = symmetrize(P)

            if not (np.all(np.isfinite(x)) and np.all(np.isfinite(P))):
                raise SingularMatrixError("S")
        except Exception as e:
            if checkpoint is not None:
                self._estimator.restore(checkpoint)
            if isinstance(e, SingularMatrixError):
                logger.warning("Cycle %d skipped: %s", iteration, e)
            raise

        # Commit
        self._x = x
        self._P = P
        self._K = K
        self._S = S
        self._innovation = innovation
        model.Q = Q
        model.R = R
        self._iteration = iteration

        if self.config.debug:
            logger.debug("cycle %d: |ν|=%.4g trace(P)=%.4g",
                         iteration, np.linalg.norm(innovation), np.trace(P))

    run_cycle = filter

    def _gain(self, P: np.ndarray, H: np.ndarray, S: np.ndarray) -> np.ndarray:
        """K = P H' S⁻¹, via an LU factorisation of S rather than an inverse."""
        if not np.all(np.isfinite(S)):
            raise SingularMatrixError("S")
        cond = None
        if self.config.singular_cond is not None:
            cond = float(np.linalg.cond(S))
            if not np.isfinite(cond) or cond > self.config.singular_cond:
                raise SingularMatrixError("S", cond)
        try:
            with warnings.catch_warnings():
                # Exact zero pivots are reported below
                warnings.simplefilter("ignore", scipy.linalg.LinAlgWarning)
                lu_piv = scipy.linalg.lu_factor(S)
        except np.linalg.LinAlgError:
            raise SingularMatrixError("S", cond) from None
        if np.any(np.diag(lu_piv[0]) == 0.0):
            raise SingularMatrixError("S", cond)
        # K' = S'⁻¹ (P H')'
        Kt = scipy.linalg.lu_solve(lu_piv, (P @ H.T).T, trans=1)
        return Kt.T

    def process_batch(self, measurements, controls=None) -> Tuple[np.ndarray, np.ndarray]:
        """
        Filter a sequence of measurements.

        Args:
            measurements: (T, m) array
            controls: Optional (T, k) array

        Returns:
            x_hist: (T, n) state estimates
            P_hist: (T, n, n) covariances
        """
        measurements = np.asarray(measurements, dtype=np.float64)
        if measurements.ndim == 1 and self.dim_z == 1:
            measurements = measurements.reshape(-1, 1)
        T = len(measurements)
        if controls is not None:
            controls = np.asarray(controls, dtype=np.float64).reshape(T, -1)

        x_hist = np.zeros((T, self.dim_x))
        P_hist = np.zeros((T, self.dim_x, self.dim_x))
        for k in range(T):
            u = controls[k] if controls is not None else None
            self.filter(measurements[k], u)
            x_hist[k] = self._x
            P_hist[k] = self._P
        return x_hist, P_hist

    # -------------------------------------------------------------------------
    # Read-only views
    # -------------------------------------------------------------------------

    @staticmethod
    def _copy(M: Optional[np.ndarray]) -> Optional[np.ndarray]:
        return None if M is None else M.copy()

    @property
    def state_estimate(self) -> Optional[np.ndarray]:
        """Current state estimate x (copy)."""
        return self._copy(self._x)

    @property
    def state_covariance(self) -> Optional[np.ndarray]:
        """Current state covariance P (copy)."""
        return self._copy(self._P)

    def get_state_estimate(self) -> Optional[np.ndarray]:
        return self.state_estimate

    def get_state_covariance(self) -> Optional[np.ndarray]:
        return self.state_covariance

    def snapshot(self) -> EstimateSnapshot:
        return EstimateSnapshot(self.state_estimate, self.state_covariance, self._iteration)

    @property
    def iteration(self) -> int:
        """Number of completed cycles."""
        return self._iteration

    @property
    def A(self) -> Optional[np.ndarray]:
        return self._copy(self.model.A)

    @property
    def B(self) -> Optional[np.ndarray]:
        return self._copy(self.model.B)

    @property
    def H(self) -> Optional[np.ndarray]:
        return self._copy(self.model.H)

    @property
    def Q(self) -> Optional[np.ndarray]:
        """Current process noise covariance (adapted once warmed up)."""
        return self._copy(self.model.Q)

    @property
    def R(self) -> Optional[np.ndarray]:
        """Current measurement noise covariance (adapted once warmed up)."""
        return self._copy(self.model.R)

    @property
    def gain(self) -> np.ndarray:
        """Kalman gain from the last completed cycle."""
        return self._K.copy()

    @property
    def innovation(self) -> Optional[np.ndarray]:
        """Innovation of the last completed cycle."""
        return self._copy(self._innovation)

    @property
    def innovation_covariance(self) -> Optional[np.ndarray]:
        """Innovation covariance S of the last completed cycle."""
        return self._copy(self._S)

    @property
    def adaptive(self) -> bool:
        return self._estimator is not None

    @property
    def window(self) -> Tuple[np.ndarray, ...]:
        """Innovation window, oldest first (empty when not adaptive)."""
        return self._estimator.window if self._estimator is not None else ()

    @property
    def sample_covariance(self) -> Optional[np.ndarray]:
        """Rolling innovation covariance C (None when not adaptive)."""
        return self._estimator.C if self._estimator is not None else None
