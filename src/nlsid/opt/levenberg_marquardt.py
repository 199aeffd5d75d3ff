#########################################################################################
##
##                          LEVENBERG-MARQUARDT CONTROLLER
##                           (opt/levenberg_marquardt.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

import numpy as np

from .cost import CostEvaluation, CostEvaluator
from .direction import truncated_svd_solve
from .exceptions import NumericalFailure
from .iteration_log import IterationRecord
from .termination import ConvergenceMonitor, TerminationReason


# OUTCOME ===============================================================================

@dataclass
class LMOutcome:
    """Final state of a Levenberg-Marquardt run."""

    th: np.ndarray
    x0: np.ndarray | None
    evaluation: CostEvaluation
    reason: TerminationReason


# CONTROLLER ============================================================================

class LevenbergMarquardt:
    """Damped Gauss-Newton with adaptive damping.

    Every iteration solves the damped least-squares problem::

        [ J           ]       [ eps ]
        [ sqrt(mu) I  ] p = - [  0  ]

    by truncated SVD and accepts the step when the gain ratio between the
    actual and the predicted cost reduction is positive.

    Parameters
    ----------
    tau : float
        Initial damping relative to ``max(diag(J^T J))``.
    svtol : float
        Singular values ``<= svtol`` of the stacked matrix are discarded.

    Attributes
    ----------
    mu : float
        Current damping.
    nu : float
        Current damping growth factor.
    """

    def __init__(self, tau: float = 1e-3, svtol: float = 1e-4):
        self.tau = float(tau)
        self.svtol = float(svtol)
        self.mu = 0.0
        self.nu = 2.0


    def initialize(self, J: np.ndarray) -> None:
        """Reset the damping state from the Jacobian at the starting point."""
        diag = np.einsum("ij,ij->j", J, J)
        self.mu = self.tau * float(diag.max()) if diag.size else 0.0
        self.nu = 2.0


    def damped_step(self, J: np.ndarray, residual: np.ndarray) -> np.ndarray:
        """Candidate step from the stacked damped system."""
        n = J.shape[1]
        A = np.vstack([J, np.sqrt(self.mu) * np.eye(n)])
        b = np.concatenate([residual, np.zeros(n)])
        step, _ = truncated_svd_solve(A, -b, self.svtol)
        return step


    def gain_ratio(
        self,
        cost_old: float,
        cost_new: float,
        step: np.ndarray,
        gradient: np.ndarray,
    ) -> float:
        """Actual over predicted reduction ``(V - Vnew) / (0.5 p^T (mu p - g))``.

        Non-finite trial costs and a non-positive prediction give a
        non-positive ratio, so the step is rejected.
        """
        predicted = 0.5 * float(step @ (self.mu * step - gradient))
        if not np.isfinite(cost_new) or predicted <= 0.0:
            return -np.inf
        return (cost_old - cost_new) / predicted


    def accept(self, rho: float) -> None:
        """Shrink the damping after an accepted step."""
        factor = max(1.0 / 3.0, 1.0 - (2.0 * rho - 1.0) ** 3)
        self.mu *= min(1.0, factor)
        self.nu = 2.0


    def reject(self) -> None:
        """Grow the damping after a rejected step."""
        self.mu *= self.nu
        self.nu *= 2.0


    def minimize(
        self,
        evaluator: CostEvaluator,
        th: np.ndarray,
        x0: np.ndarray | None,
        monitor: ConvergenceMonitor,
        on_iteration: Callable[[IterationRecord], None],
        *,
        initial: CostEvaluation | None = None,
        snapshots: bool = False,
    ) -> LMOutcome:
        """Iterate from ``th``/``x0`` until a stopping criterion fires.

        Parameters
        ----------
        evaluator : CostEvaluator
            Residual evaluator of the run.
        th, x0 : np.ndarray
            Starting vectors (not modified).
        monitor : ConvergenceMonitor
            Supplies ``maxiter``, ``gtol`` and ``ctol``.
        on_iteration : callable
            Receives the :class:`IterationRecord` of every iteration.
        initial : CostEvaluation, optional
            Evaluation with Jacobian at the starting point, if already known.
        snapshots : bool
            Attach a model snapshot to every record.

        Raises
        ------
        NumericalFailure
            If the cost at an accepted point is not finite.
        """
        free = evaluator.free
        zero = np.zeros(free.size)

        current = initial if initial is not None else evaluator.evaluate(th, x0, zero)
        if not current.is_finite:
            raise NumericalFailure("Terminated due to infinite or NaN cost")

        grad = current.gradient
        self.initialize(current.jacobian)

        iteration = 0
        reason = TerminationReason.SMALL_GRADIENT if monitor.gradient_converged(grad) else None

        while reason is None and not monitor.iterations_exhausted(iteration):
            iteration += 1

            eta = free.gather(th, x0)
            step = self.damped_step(current.jacobian, current.residual)

            if monitor.step_converged(step, eta):
                reason = TerminationReason.SMALL_STEP
                break

            cost_new = evaluator.cost(th, x0, step)
            rho = self.gain_ratio(current.cost, cost_new, step, grad)

            if rho > 0.0:
                th, x0 = free.apply(th, x0, step)
                current = evaluator.evaluate(th, x0, zero)
                if not current.is_finite:
                    raise NumericalFailure("Terminated due to infinite or NaN cost")
                grad = current.gradient
                self.accept(rho)
                step_length = 1.0
                if monitor.gradient_converged(grad):
                    reason = TerminationReason.SMALL_GRADIENT
            else:
                self.reject()
                step_length = 0.0

            on_iteration(IterationRecord(
                iteration=iteration,
                eta=free.gather(th, x0),
                cost=current.cost,
                gradient=grad,
                step_length=step_length,
                evaluations=2 if rho > 0.0 else 1,
                damping=self.mu,
                model=evaluator.snapshot(th, x0) if snapshots else None,
            ))

        if monitor.iterations_exhausted(iteration):
            reason = TerminationReason.MAX_ITERATIONS

        return LMOutcome(th=th, x0=x0, evaluation=current, reason=reason)
