#########################################################################################
##
##                           BACKTRACKING ARMIJO LINE SEARCH
##                               (opt/line_search.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

import numpy as np

from .exceptions import NumericalFailure


# slope of the sufficient decrease condition
ARMIJO_C1 = 1e-4

# step length contraction factor
CONTRACTION = 0.5


# RESULT ================================================================================

@dataclass
class LineSearchResult:
    """Outcome of one backtracking search.

    Attributes
    ----------
    alpha : float
        Accepted step length.
    cost : float
        Cost at the accepted step length.
    evaluations : int
        Number of trial costs computed.
    satisfied : bool
        Whether the sufficient decrease condition held. When ``False`` the
        search ran out of contractions and ``alpha`` is the best length tried.
    """

    alpha: float
    cost: float
    evaluations: int
    satisfied: bool


# SEARCH ================================================================================

def backtracking(
    cost_at: Callable[[float], float],
    cost0: float,
    slope: float,
    maxhalf: int,
    c1: float = ARMIJO_C1,
    rho: float = CONTRACTION,
) -> LineSearchResult:
    """Backtrack from ``alpha = 1`` until ``cost_at(alpha) <= cost0 + c1 alpha slope``.

    Parameters
    ----------
    cost_at : callable
        Cost of the trial point ``eta + alpha p``.
    cost0 : float
        Cost at ``alpha = 0``.
    slope : float
        Directional derivative ``grad^T p``.
    maxhalf : int
        Maximum number of trial costs (the first full step included).
    c1 : float
        Sufficient decrease slope.
    rho : float
        Contraction factor applied after every failed trial.

    Returns
    -------
    LineSearchResult

    Raises
    ------
    NumericalFailure
        If no trial produced a finite cost.
    """
    alpha = 1.0
    best_alpha, best_cost = None, np.inf

    for j in range(1, maxhalf + 1):
        cost = cost_at(alpha)

        if np.isfinite(cost):
            if cost <= cost0 + c1 * alpha * slope:
                return LineSearchResult(alpha=alpha, cost=cost, evaluations=j, satisfied=True)
            if best_alpha is None or cost < best_cost:
                best_alpha, best_cost = alpha, cost

        if j < maxhalf:
            alpha *= rho

    if best_alpha is None:
        raise NumericalFailure(
            "Terminated due to infinite or NaN cost in every line search trial"
        )
    return LineSearchResult(alpha=best_alpha, cost=best_cost, evaluations=maxhalf, satisfied=False)
