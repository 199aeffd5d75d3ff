#########################################################################################
##
##                          CONVERGENCE AND TERMINATION MONITOR
##                                (opt/termination.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from enum import Enum

import numpy as np


# REASONS ===============================================================================

class TerminationReason(Enum):
    """Why an optimization run stopped. The value is the human-readable text."""

    MAX_ITERATIONS = "Maximum number of iterations maxiter has been performed."
    COST_INCREASED = "Cost function increased."
    SMALL_COST_DECREASE = "Relative decrease in the cost function < ctol."
    SMALL_GRADIENT = "Norm of the gradient is smaller than gtol."
    SMALL_STEP = "Relative difference in the optimization variable < ctol."
    RANK_DEFICIENT = "Jacobian is numerically rank zero; the search stalled."
    NO_FREE_PARAMETERS = "No free parameters; nothing to optimize."

    @property
    def text(self) -> str:
        return self.value

    def __str__(self) -> str:
        return self.value


# MONITOR ===============================================================================

class ConvergenceMonitor:
    """Stopping criteria shared by the line search and Levenberg-Marquardt paths.

    Parameters
    ----------
    maxiter : int
        Maximum number of iterations.
    gtol : float
        Gradient tolerance.
    ctol : float
        Relative cost decrease tolerance (line search) and relative step
        tolerance (Levenberg-Marquardt).
    """

    def __init__(self, maxiter: int, gtol: float, ctol: float):
        self.maxiter = int(maxiter)
        self.gtol = float(gtol)
        self.ctol = float(ctol)


    @classmethod
    def from_options(cls, options) -> "ConvergenceMonitor":
        return cls(options.maxiter, options.gtol, options.ctol)


    def check_line_search(
        self,
        iteration: int,
        cost_old: float,
        cost_new: float,
        gradient: np.ndarray,
    ) -> TerminationReason | None:
        """Criteria of the line search methods, first match wins.

        1. ``iteration`` reached ``maxiter``
        2. the cost increased
        3. relative cost decrease below ``ctol``
        4. gradient 2-norm below ``gtol``
        """
        if iteration >= self.maxiter:
            return TerminationReason.MAX_ITERATIONS
        if cost_new > cost_old:
            return TerminationReason.COST_INCREASED
        if cost_old - cost_new < self.ctol * cost_old:
            return TerminationReason.SMALL_COST_DECREASE
        if np.linalg.norm(gradient) < self.gtol:
            return TerminationReason.SMALL_GRADIENT
        return None


    def gradient_converged(self, gradient: np.ndarray) -> bool:
        """Levenberg-Marquardt gradient test on the infinity norm."""
        if gradient.size == 0:
            return True
        return bool(np.linalg.norm(gradient, np.inf) <= self.gtol)


    def step_converged(self, step: np.ndarray, eta: np.ndarray) -> bool:
        """Levenberg-Marquardt step test ``|p| <= ctol (|eta| + ctol)``."""
        return bool(np.linalg.norm(step) <= self.ctol * (np.linalg.norm(eta) + self.ctol))


    def iterations_exhausted(self, iteration: int) -> bool:
        return iteration >= self.maxiter
