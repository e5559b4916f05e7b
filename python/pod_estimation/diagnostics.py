"""
Pod Estimation — Filter Diagnostics
===================================

Consistency metrics and covariance sanity checks.

License: MIT
"""

import numpy as np
import scipy.linalg

from .errors import SingularMatrixError


def symmetrize(M: np.ndarray) -> np.ndarray:
    """Return (M + M') / 2."""
    return (M + M.T) / 2


def is_positive_semidefinite(M: np.ndarray, tol: float = 1e-9) -> bool:
    """Check that the symmetric part of M has no eigenvalue below -tol."""
    eigvals = np.linalg.eigvalsh(symmetrize(M))
    return bool(np.all(eigvals >= -tol))


def compute_nis(innovation: np.ndarray, S: np.ndarray) -> float:
    """
    Compute Normalized Innovation Squared (NIS).

    NIS should be chi-squared distributed with dim_z degrees of freedom.
    Expected value = dim_z when filter is consistent.

    Args:
        innovation: Innovation vector
        S: Innovation covariance

    Returns:
        NIS value

    Raises:
        SingularMatrixError: if S cannot be factored
    """
    innovation = np.atleast_1d(innovation)
    try:
        w = scipy.linalg.solve(S, innovation)
    except np.linalg.LinAlgError:
        raise SingularMatrixError("S") from None
    return float(innovation @ w)


def compute_nees(x_true: np.ndarray, x_est: np.ndarray, P: np.ndarray) -> float:
    """
    Compute Normalized Estimation Error Squared (NEES).

    NEES should be chi-squared distributed with dim_x degrees of freedom.
    Expected value = dim_x when filter is consistent.

    Args:
        x_true: True state
        x_est: Estimated state
        P: State covariance

    Returns:
        NEES value
    """
    e = np.atleast_1d(x_true - x_est)
    try:
        w = scipy.linalg.solve(P, e)
    except np.linalg.LinAlgError:
        raise SingularMatrixError("P") from None
    return float(e @ w)
