"""
Pod Estimation — Adaptive Noise Estimation
==========================================

Windowed innovation-based estimation of the process (Q) and measurement (R)
noise covariances.

The estimator keeps the last L innovations ν_k = z_k - H x_k^- in a FIFO
window and maintains their mean outer product incrementally:

    C ≈ (1/N) Σ ν ν'      (N = window occupancy)

Once L cycles have been processed the noise models are refreshed:

    Q̂ = K C K'            (K from the previous cycle)
    R̂ = C - H P H'

This assumes near-zero-mean innovations. Before warm-up the operator
supplied Q and R are left untouched.

Reference:
    Mehra, R.K. (1970) "On the identification of variances and
    adaptive Kalman filtering"

License: MIT
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from .config import FilterConfig
from .diagnostics import is_positive_semidefinite

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EstimatorCheckpoint:
    """Saved estimator state for rolling back a failed cycle."""
    window: Tuple[np.ndarray, ...]
    C: np.ndarray
    evictions: int


class InnovationWindowEstimator:
    """
    Sliding-window innovation covariance estimator.

    Usage:
        est = InnovationWindowEstimator(dim_x=2, dim_z=1, config=cfg)
        est.observe(innovation, iteration)
        noise = est.noise_models(K_prev, P, H, iteration)
        if noise is not None:
            Q, R = noise
    """

    def __init__(self, dim_x: int, dim_z: int, config: Optional[FilterConfig] = None):
        """
        Args:
            dim_x: State dimension
            dim_z: Measurement dimension
            config: Filter configuration (window_size, recompute_interval)
        """
        self.dim_x = dim_x
        self.dim_z = dim_z
        self.config = config or FilterConfig(dim_x=dim_x, dim_z=dim_z, adaptive=True)
        self.window_size = self.config.window_size

        self._window: deque = deque()
        self._C = np.zeros((dim_z, dim_z))
        self._evictions = 0

    @property
    def C(self) -> np.ndarray:
        """Current rolling innovation covariance estimate."""
        return self._C.copy()

    @property
    def window(self) -> Tuple[np.ndarray, ...]:
        """Innovations currently held, oldest first."""
        return tuple(v.copy() for v in self._window)

    def __len__(self) -> int:
        return len(self._window)

    def is_warmed_up(self, iteration: int) -> bool:
        return iteration >= self.window_size

    def observe(self, innovation: np.ndarray, iteration: int):
        """
        Push an innovation and update the rolling covariance.

        Args:
            innovation: ν = z - H x^- for this cycle (dim_z,)
            iteration: Current cycle number, already incremented (>= 1)
        """
        L = self.window_size
        prev_size = min(iteration - 1, L)
        new_size = min(iteration, L)

        evicted = len(self._window) >= L
        if evicted:
            old = self._window.popleft()
            self._C = self._C - np.outer(old, old) / prev_size
            self._evictions += 1

        new = np.array(innovation, dtype=np.float64)
        self._window.append(new)

        if self._window:
            self._C = self._C * (prev_size / new_size) + np.outer(new, new) / new_size

        interval = self.config.recompute_interval
        if interval and evicted and self._evictions % interval == 0:
            self.recompute()

        if self.config.debug:
            logger.debug("iteration=%d |ν|=%.4g window=%d trace(C)=%.4g",
                         iteration, np.linalg.norm(new), len(self._window), np.trace(self._C))

    def recompute(self):
        """Rebuild C exactly as the mean outer product of the window."""
        C = np.zeros((self.dim_z, self.dim_z))
        for v in self._window:
            C += np.outer(v, v)
        if self._window:
            C /= len(self._window)

        drift = float(np.max(np.abs(C - self._C)))
        logger.debug("Recomputed innovation covariance, max drift %.3e", drift)
        if not is_positive_semidefinite(self._C):
            logger.warning("Rolling innovation covariance lost positive semi-definiteness; "
                           "replaced by recomputed estimate")
        self._C = C

    def noise_models(self,
                     K: np.ndarray,
                     P: np.ndarray,
                     H: np.ndarray,
                     iteration: int) -> Optional[Tuple[np.ndarray, np.ndarray]]:
        """
        Derive refreshed (Q, R) once warmed up.

        Args:
            K: Kalman gain from the previous cycle (dim_x, dim_z)
            P: State covariance before this cycle's prediction
            H: Observation matrix
            iteration: Current cycle number

        Returns:
            (Q, R) when iteration >= window_size, otherwise None
        """
        if not self.is_warmed_up(iteration):
            return None

        Q = K @ self._C @ K.T
        R = self._C - H @ P @ H.T

        if iteration == self.window_size:
            logger.info("Adaptive noise estimation active after %d cycles", iteration)
        return Q, R

    # -------------------------------------------------------------------------
    # Rollback support
    # -------------------------------------------------------------------------

    def checkpoint(self) -> EstimatorCheckpoint:
        # Stored innovations are never mutated in place, a shallow copy suffices
        return EstimatorCheckpoint(tuple(self._window), self._C.copy(), self._evictions)

    def restore(self, checkpoint: EstimatorCheckpoint):
        self._window = deque(checkpoint.window)
        self._C = checkpoint.C
        self._evictions = checkpoint.evictions
