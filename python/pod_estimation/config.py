"""
Pod Estimation — Filter Configuration
=====================================

Construction-time parameters for KalmanMultivariate. Dimensions are fixed
for the lifetime of a filter instance.

License: MIT
"""

from dataclasses import dataclass, fields
from typing import Any, Dict, Optional, Union

from .errors import ConfigurationError


@dataclass(frozen=True)
class FilterConfig:
    """
    Configuration for an adaptive multivariate Kalman filter.

    Args:
        dim_x: State dimension n
        dim_z: Measurement dimension m
        dim_u: Control dimension k (0 = no control input)
        adaptive: Re-estimate Q and R online from the innovation window
        window_size: Innovation window capacity L (also the warm-up length)
        recompute_interval: Rebuild the sample covariance from the window
            every N evictions (0 = incremental updates only)
        singular_cond: Optional condition number above which the innovation
            covariance is rejected (None = reject only when S cannot be factored)
        symmetrize: Re-symmetrize P after each correction
        debug: Emit per-cycle DEBUG log records
    """
    dim_x: int
    dim_z: int
    dim_u: int = 0

    adaptive: bool = False
    window_size: int = 20

    # Drift mitigation for the rolling covariance
    recompute_interval: int = 0

    # Opt-in ill-conditioning guard on S
    singular_cond: Optional[float] = None

    symmetrize: bool = False
    debug: bool = False

    def __post_init__(self):
        for name in ("dim_x", "dim_z"):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 1:
                raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")
        if not isinstance(self.dim_u, int) or self.dim_u < 0:
            raise ConfigurationError(f"dim_u must be a non-negative integer, got {self.dim_u!r}")
        if not isinstance(self.window_size, int) or self.window_size < 1:
            raise ConfigurationError(
                f"window_size must be a positive integer, got {self.window_size!r}"
            )
        if not isinstance(self.recompute_interval, int) or self.recompute_interval < 0:
            raise ConfigurationError(
                f"recompute_interval must be a non-negative integer, got {self.recompute_interval!r}"
            )
        if self.singular_cond is not None and not self.singular_cond > 1.0:
            raise ConfigurationError(f"singular_cond must be > 1, got {self.singular_cond!r}")

    @property
    def has_control(self) -> bool:
        return self.dim_u > 0

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> "FilterConfig":
        """Build a config from a plain dict, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise ConfigurationError(
                f"Unknown config keys {sorted(unknown)}. Available: {sorted(known)}"
            )
        return cls(**values)


def resolve_config(config: Optional[Union[FilterConfig, Dict[str, Any]]] = None,
                   **kwargs) -> FilterConfig:
    """
    Normalize the config argument accepted by the filter constructor.

    An explicit config object or dict wins; otherwise keyword arguments
    (dim_x, dim_z, ...) are used.
    """
    if config is None:
        return FilterConfig.from_dict({k: v for k, v in kwargs.items() if v is not None})
    if isinstance(config, dict):
        return FilterConfig.from_dict(config)
    if isinstance(config, FilterConfig):
        return config
    raise ConfigurationError(f"config must be FilterConfig or dict, got {type(config).__name__}")
