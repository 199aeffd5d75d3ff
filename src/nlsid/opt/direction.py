#########################################################################################
##
##                            SEARCH DIRECTION STRATEGIES
##                                (opt/direction.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import warnings
from dataclasses import dataclass

import numpy as np

from ..utils.logger import LoggerManager
from .exceptions import NumericalFailure, RankDeficiencyWarning
from .options import Algorithm


__all__ = [
    "Direction",
    "truncated_svd_solve",
    "gauss_newton_direction",
    "robust_gauss_newton_direction",
    "steepest_descent_direction",
    "search_direction",
]

logger = LoggerManager().get_logger(__name__)


# RESULT ================================================================================

@dataclass
class Direction:
    """Search direction and the numerical rank it was computed with.

    ``rank`` is ``None`` for strategies that do not decompose the Jacobian.
    """

    p: np.ndarray
    rank: int | None = None

    @property
    def stalled(self) -> bool:
        """True when a rank-revealing strategy found no usable component."""
        return self.rank == 0


# LINEAR ALGEBRA ========================================================================

def truncated_svd_solve(
    A: np.ndarray,
    b: np.ndarray,
    tol: float,
) -> tuple[np.ndarray, int]:
    """Least-squares solution of ``A x = b`` over the dominant singular subspace.

    With ``A = U S V^T``, only components with singular value above ``tol``
    are kept::

        x = sum_{i <= k} (u_i^T b / s_i) v_i

    Parameters
    ----------
    A : np.ndarray
        Matrix of shape ``(m, n)``.
    b : np.ndarray
        Right-hand side of shape ``(m,)``.
    tol : float
        Singular values ``<= tol`` are discarded.

    Returns
    -------
    x : np.ndarray
        Solution of shape ``(n,)``; zero when no singular value is retained.
    rank : int
        Number of retained singular values.
    """
    A = np.asarray(A, dtype=float)
    b = np.asarray(b, dtype=float).reshape(-1)
    n = A.shape[1]

    if A.size == 0:
        return np.zeros(n), 0

    U, s, Vt = np.linalg.svd(A, full_matrices=False)
    k = int(np.count_nonzero(s > tol))
    if k == 0:
        return np.zeros(n), 0

    coef = (U[:, :k].T @ b) / s[:k]
    return Vt[:k].T @ coef, k


# STRATEGIES ============================================================================

def gauss_newton_direction(J: np.ndarray, residual: np.ndarray) -> Direction:
    """Solve the normal equations ``(J^T J) p = -J^T eps``.

    Raises
    ------
    NumericalFailure
        If ``J^T J`` is singular.
    """
    grad = J.T @ residual
    try:
        p = -np.linalg.solve(J.T @ J, grad)
    except np.linalg.LinAlgError as err:
        raise NumericalFailure(
            "normal equations are singular; use robust Gauss-Newton"
        ) from err
    return Direction(p=p)


def robust_gauss_newton_direction(
    J: np.ndarray,
    residual: np.ndarray,
    svtol: float,
) -> Direction:
    """Gauss-Newton direction by truncated SVD of the Jacobian.

    Emits a :class:`RankDeficiencyWarning` and returns the zero direction when
    no singular value exceeds ``svtol``.
    """
    p, rank = truncated_svd_solve(J, -np.asarray(residual, dtype=float), svtol)
    if rank == 0 and J.shape[1] > 0:
        logger.warning("Jacobian is numerically zero (no singular value > %g)", svtol)
        warnings.warn(
            f"Jacobian is numerically zero: no singular value exceeds svtol={svtol}",
            RankDeficiencyWarning,
            stacklevel=2,
        )
    return Direction(p=p, rank=rank)


def steepest_descent_direction(J: np.ndarray, residual: np.ndarray) -> Direction:
    """Negative gradient ``-J^T eps``."""
    return Direction(p=-(J.T @ residual))


def search_direction(
    algorithm: Algorithm,
    J: np.ndarray,
    residual: np.ndarray,
    svtol: float,
) -> Direction:
    """Dispatch to the line-search strategy selected by ``algorithm``."""
    if algorithm is Algorithm.GAUSS_NEWTON:
        return gauss_newton_direction(J, residual)
    if algorithm is Algorithm.ROBUST_GAUSS_NEWTON:
        return robust_gauss_newton_direction(J, residual, svtol)
    if algorithm is Algorithm.STEEPEST_DESCENT:
        return steepest_descent_direction(J, residual)
    raise ValueError(f"{algorithm} does not use a line search direction")
