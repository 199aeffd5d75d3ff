#########################################################################################
##
##                              PER-ITERATION DIAGNOSTICS
##                              (opt/iteration_log.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np


# RECORD ================================================================================

@dataclass(frozen=True)
class IterationRecord:
    """State after one iteration.

    Attributes
    ----------
    iteration : int
        1-based iteration counter.
    eta : np.ndarray
        Reduced iterate after the iteration.
    cost : float
        Cost at ``eta``.
    gradient : np.ndarray
        Gradient ``J^T eps`` the step was computed from.
    step_length : float
        Accepted line-search step length (1 or 0 for accepted or rejected
        Levenberg-Marquardt steps).
    evaluations : int
        Trial cost evaluations of the iteration.
    damping : float, optional
        Levenberg-Marquardt damping after the iteration.
    model : object, optional
        Model snapshot carrying the iterate.
    """

    iteration: int
    eta: np.ndarray
    cost: float
    gradient: np.ndarray
    step_length: float
    evaluations: int = 1
    damping: float | None = None
    model: Any = None


# LOG ===================================================================================

class IterationLog:
    """Append-only record of a run, owned by that run.

    Parameters
    ----------
    eta0 : array_like
        Starting iterate.
    cost0 : float
        Cost at the starting iterate.
    """

    def __init__(self, eta0: np.ndarray, cost0: float):
        self.eta0 = np.array(eta0, dtype=float).reshape(-1)
        self.cost0 = float(cost0)
        self._records: list[IterationRecord] = []


    def append(self, record: IterationRecord) -> None:
        self._records.append(record)


    def __len__(self) -> int:
        return len(self._records)


    def __iter__(self):
        return iter(self._records)


    def __getitem__(self, idx: int) -> IterationRecord:
        return self._records[idx]


    @property
    def records(self) -> tuple[IterationRecord, ...]:
        return tuple(self._records)


    @property
    def iterates(self) -> np.ndarray:
        """Starting iterate followed by every iterate, shape ``(n, len + 1)``."""
        cols = [self.eta0] + [r.eta for r in self._records]
        return np.column_stack(cols) if self.eta0.size else np.zeros((0, len(cols)))


    @property
    def costs(self) -> np.ndarray:
        """Cost after every iteration, shape ``(len,)``."""
        return np.array([r.cost for r in self._records], dtype=float)


    @property
    def gradients(self) -> np.ndarray:
        """Gradient of every iteration, shape ``(n, len)``."""
        if not self._records:
            return np.zeros((self.eta0.size, 0))
        return np.column_stack([r.gradient for r in self._records])


    @property
    def gradient_norms(self) -> np.ndarray:
        return np.array([np.linalg.norm(r.gradient) for r in self._records], dtype=float)


    @property
    def step_lengths(self) -> np.ndarray:
        return np.array([r.step_length for r in self._records], dtype=float)


    @property
    def dampings(self) -> np.ndarray:
        """Levenberg-Marquardt damping per iteration (NaN on line search runs)."""
        return np.array(
            [np.nan if r.damping is None else r.damping for r in self._records],
            dtype=float,
        )


    @property
    def models(self) -> list:
        return [r.model for r in self._records if r.model is not None]
