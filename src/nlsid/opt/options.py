#########################################################################################
##
##                               OPTIMIZER CONFIGURATION
##                                  (opt/options.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, Sequence

import numpy as np

from .exceptions import ConfigurationError


# ENUMS =================================================================================

class Algorithm(str, Enum):
    """Search strategy of the optimizer."""

    GAUSS_NEWTON = "gn"
    ROBUST_GAUSS_NEWTON = "rgn"
    LEVENBERG_MARQUARDT = "lm"
    STEEPEST_DESCENT = "sd"

    @classmethod
    def parse(cls, value: "Algorithm | str") -> "Algorithm":
        """Accept an ``Algorithm``, its short code or its long name."""
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower().replace("_", "-")
        alg = _ALGORITHM_ALIASES.get(key)
        if alg is None:
            raise ConfigurationError(
                f"unknown algorithm {value!r}; expected one of "
                f"{sorted(_ALGORITHM_ALIASES)}"
            )
        return alg

    @property
    def uses_line_search(self) -> bool:
        return self is not Algorithm.LEVENBERG_MARQUARDT


_ALGORITHM_ALIASES = {
    "gn": Algorithm.GAUSS_NEWTON,
    "gauss-newton": Algorithm.GAUSS_NEWTON,
    "rgn": Algorithm.ROBUST_GAUSS_NEWTON,
    "robust-gauss-newton": Algorithm.ROBUST_GAUSS_NEWTON,
    "lm": Algorithm.LEVENBERG_MARQUARDT,
    "levenberg-marquardt": Algorithm.LEVENBERG_MARQUARDT,
    "sd": Algorithm.STEEPEST_DESCENT,
    "steepest-descent": Algorithm.STEEPEST_DESCENT,
}


class StallPolicy(str, Enum):
    """What robust Gauss-Newton does when the Jacobian is numerically rank zero.

    ``CONTINUE`` keeps iterating with a zero direction (the stalled iteration
    counts toward ``maxiter``); ``TERMINATE`` ends the run immediately.
    """

    CONTINUE = "continue"
    TERMINATE = "terminate"

    @classmethod
    def parse(cls, value: "StallPolicy | str") -> "StallPolicy":
        try:
            return cls(value)
        except ValueError:
            raise ConfigurationError(
                f"unknown stall policy {value!r}; expected 'continue' or 'terminate'"
            ) from None


# HELPERS ===============================================================================

def _as_mask(mask, name: str) -> np.ndarray | None:
    if mask is None:
        return None
    arr = np.asarray(mask).reshape(-1)
    if arr.size and not np.all(np.isin(arr, (0, 1))):
        raise ConfigurationError(f"{name} must contain only 0/1 or boolean entries")
    return arr.astype(bool)


def _positive(value, name: str, integer: bool = False):
    if integer:
        if int(value) != value or value < 1:
            raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")
        return int(value)
    value = float(value)
    if not np.isfinite(value) or value < 0.0:
        raise ConfigurationError(f"{name} must be a non-negative finite number, got {value!r}")
    return value


# OPTIONS ===============================================================================

@dataclass
class NLSOptions:
    """Options of a single optimization run.

    Parameters
    ----------
    algorithm : Algorithm or str
        ``"gn"`` Gauss-Newton, ``"rgn"`` robust Gauss-Newton, ``"lm"``
        Levenberg-Marquardt, ``"sd"`` steepest descent (long names accepted).
    thmask : sequence of bool, optional
        Free-coordinate mask of the parameter vector; all free by default.
    x0mask : sequence of bool, optional
        Free-coordinate mask of the initial state; all free by default, all
        fixed when per-dataset initial states ``x0`` are given.
    x0 : sequence of array_like, optional
        Known initial state for each dataset of a dynamic problem.
    maxiter : int
        Maximum number of outer iterations.
    maxhalf : int
        Maximum number of step-length contractions in the line search.
    gtol : float
        Tolerance on the gradient norm.
    ctol : float
        Minimum relative decrease of the cost (line search methods) or
        relative step size (Levenberg-Marquardt).
    svtol : float
        Singular values of the Jacobian at or below this are discarded.
    lmtau : float
        Initial Levenberg-Marquardt damping relative to ``max(diag(J^T J))``.
    estimate_noise : bool
        Estimate the measurement noise covariance from the final residuals.
    noise_floor : float
        Diagonal floor added to the estimated noise covariance.
    numgrad : bool
        Use the numerical Jacobian even if the model provides an analytic one.
    stall_policy : StallPolicy or str
        See :class:`StallPolicy`.
    verbose : bool
        Log the iteration table at INFO level.
    callback : callable, optional
        Called with every :class:`IterationRecord` after it is logged.
    """

    algorithm: Algorithm | str = Algorithm.GAUSS_NEWTON
    thmask: Sequence[bool] | None = None
    x0mask: Sequence[bool] | None = None
    x0: Sequence[Sequence[float]] | None = None
    maxiter: int = 50
    maxhalf: int = 50
    gtol: float = 1e-4
    ctol: float = 1e-4
    svtol: float = 1e-4
    lmtau: float = 1e-3
    estimate_noise: bool = False
    noise_floor: float = float(np.finfo(float).eps)
    numgrad: bool = False
    stall_policy: StallPolicy | str = StallPolicy.CONTINUE
    verbose: bool = False
    callback: Callable[[Any], None] | None = None


    def __post_init__(self) -> None:
        self.algorithm = Algorithm.parse(self.algorithm)
        self.stall_policy = StallPolicy.parse(self.stall_policy)

        self.thmask = _as_mask(self.thmask, "thmask")
        self.x0mask = _as_mask(self.x0mask, "x0mask")

        if self.x0 is not None:
            if isinstance(self.x0, np.ndarray) and self.x0.ndim == 1:
                raise ConfigurationError(
                    "x0 must be a sequence with one initial state per dataset"
                )
            self.x0 = [np.asarray(x, dtype=float).reshape(-1) for x in self.x0]

        self.maxiter = _positive(self.maxiter, "maxiter", integer=True)
        self.maxhalf = _positive(self.maxhalf, "maxhalf", integer=True)
        self.gtol = _positive(self.gtol, "gtol")
        self.ctol = _positive(self.ctol, "ctol")
        self.svtol = _positive(self.svtol, "svtol")
        self.lmtau = _positive(self.lmtau, "lmtau")
        self.noise_floor = _positive(self.noise_floor, "noise_floor")

        if self.callback is not None and not callable(self.callback):
            raise ConfigurationError("callback must be callable")


    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "NLSOptions":
        """Build options from a plain mapping, rejecting unknown keys."""
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(mapping) - known)
        if unknown:
            raise ConfigurationError(f"unknown option(s): {', '.join(unknown)}")
        return cls(**dict(mapping))


    def replace(self, **changes) -> "NLSOptions":
        """Return a validated copy with ``changes`` applied."""
        if not changes:
            return dataclasses.replace(self)
        return self.from_mapping({**self._as_dict(), **changes})


    def _as_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in dataclasses.fields(self)}
