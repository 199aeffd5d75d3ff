#########################################################################################
##
##                        NONLINEAR LEAST-SQUARES ESTIMATION
##                                   (opt/nls.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

import numpy as np

from ..models import as_model
from ..utils.logger import LoggerManager
from ..utils.timeseries_data import TimeSeriesData
from .cost import CostEvaluation, CostEvaluator, make_cost
from .direction import search_direction
from .exceptions import ConfigurationError, NumericalFailure
from .iteration_log import IterationLog, IterationRecord
from .levenberg_marquardt import LevenbergMarquardt
from .line_search import backtracking
from .masks import FreeCoordinates
from .options import Algorithm, NLSOptions, StallPolicy
from .termination import ConvergenceMonitor, TerminationReason
from .uncertainty import UncertaintyEstimate, estimate_uncertainty


__all__ = [
    "NLSResult",
    "nls",
    "solve",
]

logger = LoggerManager().get_logger(__name__)

# largest parameter count tried when a static model comes without ``th``
MAX_PROBED_PARAMETERS = 10


# RESULT ================================================================================

@dataclass
class NLSResult:
    """Outcome of :func:`nls`.

    Attributes
    ----------
    log : IterationLog
        Per-iteration iterates, costs, gradients and step lengths.
    solution : np.ndarray
        Final reduced iterate (free entries of ``th`` then of ``x0``).
    termination : TerminationReason
        The single criterion that stopped the run.
    cost : float
        Cost at the solution.
    uncertainty : UncertaintyEstimate
        Noise and parameter covariance at the solution.
    algorithm : Algorithm
        Search strategy used.
    """

    log: IterationLog
    solution: np.ndarray
    termination: TerminationReason
    cost: float
    uncertainty: UncertaintyEstimate
    algorithm: Algorithm


    @property
    def term(self) -> str:
        """Termination reason as text."""
        return self.termination.text


    @property
    def iterations(self) -> int:
        return len(self.log)


    @property
    def iterates(self) -> np.ndarray:
        return self.log.iterates


    @property
    def costs(self) -> np.ndarray:
        return self.log.costs


    @property
    def gradients(self) -> np.ndarray:
        return self.log.gradients


    @property
    def step_lengths(self) -> np.ndarray:
        return self.log.step_lengths


    @property
    def models(self) -> list:
        return self.log.models


    @property
    def covariance(self) -> np.ndarray:
        """Covariance of the stacked ``[th; x0]`` vector."""
        return self.uncertainty.covariance


    @property
    def information(self) -> np.ndarray:
        return self.uncertainty.information


    @property
    def noise_covariance(self) -> np.ndarray:
        return self.uncertainty.noise_covariance


    def display(self) -> None:
        """Print a short summary of the run."""
        print("=" * 60)
        print("Nonlinear Least-Squares Results")
        print("=" * 60)
        print(f"  algorithm    : {self.algorithm.name.lower().replace('_', '-')}")
        print(f"  iterations   : {self.iterations}")
        print(f"  initial cost : {self.log.cost0:.6g}")
        print(f"  final cost   : {self.cost:.6g}")
        print(f"  termination  : {self.term}")
        print("=" * 60)


    def plot(self, *, figsize: tuple = (10, 4)):
        """Plot the cost and gradient-norm trajectories on log scales.

        Returns
        -------
        fig : matplotlib.figure.Figure
        axes : np.ndarray of matplotlib.axes.Axes, shape (2,)
        """
        import matplotlib.pyplot as plt

        fig, axes = plt.subplots(1, 2, figsize=figsize)
        it = np.arange(len(self.log) + 1)

        axes[0].semilogy(it, np.r_[self.log.cost0, self.costs], marker="o")
        axes[0].set_xlabel("Iteration")
        axes[0].set_ylabel("Cost")
        axes[0].set_title("Cost")
        axes[0].grid(True, alpha=0.3)

        axes[1].semilogy(it[1:], self.log.gradient_norms, marker="o")
        axes[1].set_xlabel("Iteration")
        axes[1].set_ylabel("Gradient norm")
        axes[1].set_title("Gradient")
        axes[1].grid(True, alpha=0.3)

        fig.suptitle(self.term)
        fig.tight_layout()
        return fig, axes


# REPORTING =============================================================================

class _IterationReporter:
    """Appends records to the log, writes the iteration table and calls the callback."""

    def __init__(self, log: IterationLog, options: NLSOptions):
        self.log = log
        self.level = logging.INFO if options.verbose else logging.DEBUG
        self.callback = options.callback
        self.lm = not options.algorithm.uses_line_search
        self.alg = options.algorithm.value


    def header(self) -> None:
        col = "mu" if self.lm else "BT"
        logger.log(self.level, "-" * 53)
        logger.log(self.level, "%4s%14s%14s%14s%6s", "Iter", "Cost", "Grad. norm", col, "Alg")
        logger.log(self.level, "-" * 53)
        logger.log(self.level, "%4i%14.3e%14s%14s%6s", 0, self.log.cost0, "-", "-", self.alg)


    def __call__(self, record: IterationRecord) -> None:
        self.log.append(record)

        extra = f"{record.damping:14.3e}" if self.lm else f"{record.evaluations:14d}"
        logger.log(
            self.level, "%4i%14.3e%14.3e%s%6s",
            record.iteration, record.cost, np.linalg.norm(record.gradient), extra, self.alg,
        )
        if self.callback is not None:
            self.callback(record)


# DRIVERS ===============================================================================

def _line_search_method(
    evaluator: CostEvaluator,
    th: np.ndarray,
    x0: np.ndarray | None,
    current: CostEvaluation,
    options: NLSOptions,
    report: _IterationReporter,
    snapshots: bool,
):
    """Gauss-Newton, robust Gauss-Newton and steepest descent with backtracking."""
    free = evaluator.free
    zero = np.zeros(free.size)
    monitor = ConvergenceMonitor.from_options(options)

    iteration = 0
    reason = None

    while reason is None:
        iteration += 1

        if not current.is_finite:
            raise NumericalFailure("Terminated due to infinite or NaN cost", log=report.log)
        grad = current.gradient

        # 1. search direction
        try:
            direction = search_direction(
                options.algorithm, current.jacobian, current.residual, options.svtol,
            )
        except NumericalFailure as err:
            err.log = report.log
            raise

        if direction.stalled and options.stall_policy is StallPolicy.TERMINATE:
            report(IterationRecord(
                iteration=iteration,
                eta=free.gather(th, x0),
                cost=current.cost,
                gradient=grad,
                step_length=0.0,
                evaluations=0,
                model=evaluator.snapshot(th, x0) if snapshots else None,
            ))
            reason = TerminationReason.RANK_DEFICIENT
            break

        p = direction.p

        # 2. step length
        try:
            search = backtracking(
                lambda alpha: evaluator.cost(th, x0, alpha * p),
                current.cost,
                float(grad @ p),
                options.maxhalf,
            )
        except NumericalFailure as err:
            err.log = report.log
            raise

        # 3. update
        th, x0 = free.apply(th, x0, search.alpha * p)
        cost_old = current.cost
        current = evaluator.evaluate(th, x0, zero)

        report(IterationRecord(
            iteration=iteration,
            eta=free.gather(th, x0),
            cost=current.cost,
            gradient=grad,
            step_length=search.alpha,
            evaluations=search.evaluations,
            model=evaluator.snapshot(th, x0) if snapshots else None,
        ))

        # 4. stopping criteria
        reason = monitor.check_line_search(iteration, cost_old, current.cost, grad)

    return th, x0, current, reason


# SETUP =================================================================================

def _as_options(options, kwargs) -> NLSOptions:
    if options is None:
        return NLSOptions.from_mapping(kwargs)
    if isinstance(options, Mapping):
        return NLSOptions.from_mapping({**options, **kwargs})
    if isinstance(options, NLSOptions):
        return options.replace(**kwargs)
    raise ConfigurationError(f"options must be NLSOptions or a mapping, got {type(options).__name__}")


def _as_datasets(data) -> list[TimeSeriesData]:
    if data is None:
        return []
    if isinstance(data, TimeSeriesData):
        return [data]
    if isinstance(data, Mapping):
        try:
            return [TimeSeriesData.from_mapping(data)]
        except ValueError as err:
            raise ConfigurationError(str(err)) from err
    if isinstance(data, Sequence) and not isinstance(data, (str, bytes)):
        if not data:
            return []
        for d in data:
            if not isinstance(d, TimeSeriesData):
                raise ConfigurationError(
                    "data as a sequence must consist of TimeSeriesData objects"
                )
        return list(data)
    raise ConfigurationError(f"unrecognized format of data: {type(data).__name__}")


def _infer_parameters(model, t):
    """Give a static model without ``th`` a zero vector of the first size ``h`` accepts."""
    for n in range(1, MAX_PROBED_PARAMETERS + 1):
        th = np.zeros(n)
        try:
            model.evaluate(th, t)
        except (TypeError, ValueError, IndexError):
            continue
        logger.debug("inferred %d parameter(s) for %s", n, model.name)
        return dataclasses.replace(model, th=th)

    raise ConfigurationError(
        f"h gives an error for th=zeros(n) with every n <= {MAX_PROBED_PARAMETERS}; "
        "give the model an initial th"
    )


def _fitted_model(evaluator, th, x0, uncertainty: UncertaintyEstimate, options):
    fitted = evaluator.snapshot(th, x0)
    changes: dict[str, Any] = dict(
        information=uncertainty.information,
        covariance=uncertainty.param_covariance,
        x0_covariance=uncertainty.x0_covariance,
    )
    if options.estimate_noise:
        changes["noise_cov"] = uncertainty.noise_covariance
    return dataclasses.replace(fitted, **changes)


# ENTRY POINT ===========================================================================

def nls(model, data=None, *, options: NLSOptions | Mapping | None = None, **kwargs):
    """Fit ``model`` to ``data`` by nonlinear least squares.

    Three problem shapes share the same engine:

    1. ``data is None`` and a static model: pure optimization,
       ``th_hat = argmin h(th)^T h(th)``.
    2. Observations and a static model: curve fitting of ``h(t, th)``.
    3. Observations and a :class:`~nlsid.models.DynamicModel`: calibration
       of ``th`` and ``x0`` by simulating the model over every dataset.

    Parameters
    ----------
    model : StaticModel, DynamicModel, callable or mapping
        Model definition, see :func:`nlsid.models.as_model`.
    data : TimeSeriesData, sequence of TimeSeriesData or mapping, optional
        Observations. A sequence holds independently sampled datasets of a
        dynamic model; a mapping has keys ``t``, ``y`` and optional ``u``.
    options : NLSOptions or mapping, optional
        Run configuration.
    **kwargs
        :class:`NLSOptions` fields, overriding ``options``.

    Returns
    -------
    fitted_model : StaticModel or DynamicModel
        Copy of the model with the estimated ``th``/``x0`` and their
        covariances.
    result : NLSResult

    Raises
    ------
    ConfigurationError
        Invalid model, data or options, detected before the first iteration.
    NumericalFailure
        Infinite or NaN cost, or singular Gauss-Newton normal equations.

    Example
    -------
    .. code-block:: python

        h = lambda t, th: th[0] * (1 - np.exp(-th[1] * t))
        data = TimeSeriesData(time=t, data=y)
        mhat, res = nls(StaticModel(h=h, th=[1.0, 1.0]), data, algorithm="rgn")
        print(mhat.th, res.term)
    """
    options = _as_options(options, kwargs)
    model = as_model(model)
    datasets = _as_datasets(data)

    if model.is_simulatable:
        if not datasets:
            raise ConfigurationError("dynamic models are calibrated against data")
        if options.algorithm is Algorithm.LEVENBERG_MARQUARDT:
            raise ConfigurationError(
                "Levenberg-Marquardt is available for static models only"
            )
    elif model.th is None:
        model = _infer_parameters(model, datasets[0].time if datasets else None)

    x0mask = options.x0mask
    if x0mask is None and options.x0 is not None:
        x0mask = np.zeros(model.nx, dtype=bool)

    free = FreeCoordinates(model.nth, model.nx, options.thmask, x0mask)
    evaluator = make_cost(model, datasets, free, options)
    logger.debug(
        "%d residuals, %d free coordinates, %s", evaluator.n_residuals, free.size, options.algorithm.value,
    )

    th = np.array(model.th, dtype=float)
    x0 = np.array(model.x0, dtype=float) if model.is_simulatable else None
    snapshots = bool(datasets)

    manager = LoggerManager()
    old_level = manager.level
    if options.verbose and old_level > logging.INFO:
        manager.set_level(logging.INFO)

    try:
        current = evaluator.evaluate(th, x0, np.zeros(free.size))
        log = IterationLog(free.gather(th, x0), current.cost)
        report = _IterationReporter(log, options)

        if free.size == 0:
            reason = TerminationReason.NO_FREE_PARAMETERS
        else:
            report.header()
            if options.algorithm.uses_line_search:
                th, x0, current, reason = _line_search_method(
                    evaluator, th, x0, current, options, report, snapshots,
                )
            else:
                controller = LevenbergMarquardt(tau=options.lmtau, svtol=options.svtol)
                try:
                    outcome = controller.minimize(
                        evaluator, th, x0,
                        ConvergenceMonitor.from_options(options),
                        report,
                        initial=current,
                        snapshots=snapshots,
                    )
                except NumericalFailure as err:
                    err.log = log
                    raise
                th, x0, current, reason = outcome.th, outcome.x0, outcome.evaluation, outcome.reason

        logger.log(report.level, reason.text)
    finally:
        if manager.level != old_level:
            manager.set_level(old_level)

    solution = free.gather(th, x0)
    uncertainty = estimate_uncertainty(
        current, free, evaluator.ny, options,
        external_noise_cov=model.noise_cov,
        values=solution,
    )

    result = NLSResult(
        log=log,
        solution=solution,
        termination=reason,
        cost=current.cost,
        uncertainty=uncertainty,
        algorithm=options.algorithm,
    )
    return _fitted_model(evaluator, th, x0, uncertainty, options), result


solve = nls
