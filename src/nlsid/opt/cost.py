#########################################################################################
##
##                          RESIDUAL AND COST EVALUATION
##                                  (opt/cost.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from .exceptions import ConfigurationError
from .masks import FreeCoordinates


__all__ = [
    "CostEvaluation",
    "CostEvaluator",
    "StaticCost",
    "DynamicCost",
    "make_cost",
]

# perturbation of the central differences on static models
STATIC_FD_STEP = float(np.sqrt(np.finfo(float).eps))

# relative perturbation (and its floor) of the central differences on simulations
DYNAMIC_FD_REL_STEP = 1e-4
DYNAMIC_FD_FLOOR = 1e-4


# HELPERS ===============================================================================

def _check_noise(model, ny: int) -> np.ndarray | None:
    """Validate the noise statistics of ``model`` against ``ny``, return the mean."""
    if model.noise_mean is not None and model.noise_mean.size != ny:
        raise ConfigurationError(
            f"noise_mean must have length ny={ny}, got {model.noise_mean.size}"
        )
    if model.noise_cov is not None and model.noise_cov.shape != (ny, ny):
        raise ConfigurationError(
            f"noise_cov must have shape ({ny}, {ny}), got {model.noise_cov.shape}"
        )
    return model.noise_mean


# RESULT ================================================================================

@dataclass
class CostEvaluation:
    """Cost, residual and (optionally) Jacobian at one trial point.

    Attributes
    ----------
    cost : float
        ``residual @ residual``.
    residual : np.ndarray
        Prediction minus observation, stacked sample by sample, shape ``(M,)``.
    jacobian : np.ndarray or None
        ``d residual / d eta``, shape ``(M, n)``.
    """

    cost: float
    residual: np.ndarray
    jacobian: np.ndarray | None = None


    @property
    def gradient(self) -> np.ndarray:
        """``J^T eps``; requires the Jacobian."""
        if self.jacobian is None:
            raise ValueError("gradient requires an evaluation with the Jacobian")
        return self.jacobian.T @ self.residual


    @property
    def is_finite(self) -> bool:
        return bool(np.isfinite(self.cost))


# BASE ==================================================================================

class CostEvaluator:
    """Common interface of the static and dynamic residual evaluators.

    Subclasses implement :meth:`_residual` (the stacked residual at full
    ``th``/``x0`` vectors) and :meth:`_jacobian` (its derivative with respect
    to the free coordinates).

    Parameters
    ----------
    model : StaticModel or DynamicModel
        Model definition; never mutated.
    free : FreeCoordinates
        Masks of the run.
    """

    def __init__(self, model, free: FreeCoordinates):
        self.model = model
        self.free = free
        self.ny = 1
        self.n_samples = 0


    @property
    def n_residuals(self) -> int:
        return self.ny * self.n_samples


    def evaluate(
        self,
        th: np.ndarray,
        x0: np.ndarray | None,
        step: np.ndarray,
        *,
        jacobian: bool = True,
    ) -> CostEvaluation:
        """Evaluate at the trial point ``base + step``.

        Parameters
        ----------
        th, x0 : np.ndarray
            Base parameter and initial-state vectors (left untouched).
        step : np.ndarray
            Step in the reduced iterate, applied at the free coordinates.
        jacobian : bool
            Also compute the Jacobian with respect to the reduced iterate.

        Returns
        -------
        CostEvaluation
        """
        th_t, x0_t = self.free.apply(th, x0, step)
        residual = self._residual(th_t, x0_t)
        cost = float(residual @ residual)

        jac = self._jacobian(th_t, x0_t, residual) if jacobian else None
        return CostEvaluation(cost=cost, residual=residual, jacobian=jac)


    def cost(self, th: np.ndarray, x0: np.ndarray | None, step: np.ndarray) -> float:
        """Cost only, at ``base + step``."""
        return self.evaluate(th, x0, step, jacobian=False).cost


    def snapshot(self, th: np.ndarray, x0: np.ndarray | None):
        """Copy of the model carrying the given vectors."""
        return self.model.with_values(th, x0)


    def _residual(self, th, x0) -> np.ndarray:
        raise NotImplementedError


    def _jacobian(self, th, x0, residual) -> np.ndarray:
        raise NotImplementedError


# STATIC ================================================================================

class StaticCost(CostEvaluator):
    """Residuals of a static model: ``h(th)`` or ``h(t, th)`` minus observations.

    Parameters
    ----------
    model : StaticModel
        Model with an initial ``th``.
    data : TimeSeriesData, optional
        Observations; ``None`` for a pure optimization problem, in which case
        the whole residual is a single sample with ``ny = len(h(th))``.
    free : FreeCoordinates
        Masks of the run.
    numgrad : bool
        Ignore the analytic Jacobian of the model.
    """

    def __init__(self, model, data, free: FreeCoordinates, numgrad: bool = False):
        super().__init__(model, free)
        self.t = None if data is None else data.time
        self.use_analytic = model.jacobian is not None and not numgrad

        pred = model.evaluate(model.th, self.t)

        if data is None:
            self.ny = pred.size
            self.n_samples = 1
            self.observed = np.zeros(pred.size)
        else:
            self.ny = data.ny
            self.n_samples = data.length
            self.observed = data.outputs.reshape(-1)
            self._as_outputs(pred)

        self.noise_mean = _check_noise(model, self.ny)


    def _as_outputs(self, pred: np.ndarray) -> np.ndarray:
        """Align a prediction on the ``(n, ny)`` layout of the observations.

        ``(ny, n)`` predictions are transposed, the same rule that
        :class:`TimeSeriesData` applies to the observations. Flat predictions
        are accepted for single-output data and pure optimization only.
        """
        n, ny = self.n_samples, self.ny
        if pred.shape == (n, ny):
            return pred
        if pred.shape == (ny, n):
            return pred.T
        if pred.size == n * ny and (self.t is None or ny == 1):
            return pred.reshape(n, ny)
        raise ConfigurationError(
            f"model output has shape {pred.shape} but the data has {n} samples of "
            f"{ny} output(s); h(t, th) must match the shape of y"
        )


    def _predict(self, th: np.ndarray) -> np.ndarray:
        pred = self._as_outputs(self.model.evaluate(th, self.t))
        if self.noise_mean is not None:
            pred = pred + self.noise_mean
        return pred.reshape(-1)


    def _residual(self, th, x0) -> np.ndarray:
        return self._predict(th) - self.observed


    def _jacobian(self, th, x0, residual) -> np.ndarray:
        idx = self.free.th_index
        m = residual.size

        if self.use_analytic:
            jac = self.model.evaluate_jacobian(th, self.t)
            if jac.shape == (m, self.free.nth):
                return jac[:, idx]
            if jac.shape == (self.free.nth, m):
                return jac.T[:, idx]
            raise ConfigurationError(
                f"analytic Jacobian has shape {jac.shape}, expected "
                f"({m}, {self.free.nth})"
            )

        mu = STATIC_FD_STEP
        jac = np.empty((m, idx.size))
        for i, j in enumerate(idx):
            e = np.zeros_like(th)
            e[j] = mu
            jac[:, i] = (self._predict(th + e) - self._predict(th - e)) / (2.0 * mu)
        return jac


# DYNAMIC ===============================================================================

class DynamicCost(CostEvaluator):
    """Residuals of a simulated model against one or more datasets.

    Every dataset is simulated independently and contributes its own residual
    block; the blocks are stacked into one residual vector.

    Parameters
    ----------
    model : DynamicModel
        Model with ``th`` and ``x0``.
    datasets : sequence of TimeSeriesData
        Observed series, each with its own time base and inputs.
    free : FreeCoordinates
        Masks of the run.
    initial_states : sequence of array_like, optional
        Known initial state of every dataset, replacing the model ``x0``.
    """

    def __init__(
        self,
        model,
        datasets: Sequence,
        free: FreeCoordinates,
        initial_states: Sequence[np.ndarray] | None = None,
    ):
        super().__init__(model, free)
        self.datasets = list(datasets)

        if not self.datasets:
            raise ConfigurationError("at least one dataset is required")

        if initial_states is not None:
            if len(initial_states) != len(self.datasets):
                raise ConfigurationError(
                    "x0 as a sequence must have one initial state per dataset "
                    f"({len(self.datasets)}), got {len(initial_states)}"
                )
            for k, x in enumerate(initial_states):
                if np.size(x) != model.nx:
                    raise ConfigurationError(
                        f"initial state {k} has length {np.size(x)}, expected nx={model.nx}"
                    )
            if free.n2:
                raise ConfigurationError(
                    "initial states are fixed per dataset; x0mask must not free any state"
                )
        self.initial_states = initial_states

        ny = {d.ny for d in self.datasets}
        if len(ny) != 1:
            raise ConfigurationError("all datasets must have the same number of outputs")
        self.ny = ny.pop()
        self.n_samples = sum(d.length for d in self.datasets)
        self.observed = [d.outputs for d in self.datasets]

        self.noise_mean = _check_noise(model, self.ny)


    def _initial_state(self, k: int, x0: np.ndarray) -> np.ndarray:
        if self.initial_states is None:
            return x0
        return np.asarray(self.initial_states[k], dtype=float).reshape(-1)


    def _simulate(self, th, x0, k: int) -> np.ndarray:
        data = self.datasets[k]
        y = self.model.with_values(th, x0).simulate(data)
        if y.shape != self.observed[k].shape:
            raise ConfigurationError(
                f"simulated output of dataset {k} has shape {y.shape}, "
                f"observations have shape {self.observed[k].shape}"
            )
        if self.noise_mean is not None:
            y = y + self.noise_mean
        return y


    def _residual(self, th, x0) -> np.ndarray:
        blocks = [
            (self._simulate(th, self._initial_state(k, x0), k) - self.observed[k]).reshape(-1)
            for k in range(len(self.datasets))
        ]
        return np.concatenate(blocks)


    def _jacobian(self, th, x0, residual) -> np.ndarray:
        blocks = []
        for k in range(len(self.datasets)):
            x0_k = self._initial_state(k, x0)
            cols = []

            for j in self.free.th_index:
                h = DYNAMIC_FD_REL_STEP * max(abs(th[j]), DYNAMIC_FD_FLOOR)
                e = np.zeros_like(th)
                e[j] = 0.5 * h
                y1 = self._simulate(th + e, x0_k, k)
                y2 = self._simulate(th - e, x0_k, k)
                cols.append(((y1 - y2) / h).reshape(-1))

            for j in self.free.x0_index:
                h = DYNAMIC_FD_REL_STEP * max(abs(x0_k[j]), DYNAMIC_FD_FLOOR)
                e = np.zeros_like(x0_k)
                e[j] = 0.5 * h
                y1 = self._simulate(th, x0_k + e, k)
                y2 = self._simulate(th, x0_k - e, k)
                cols.append(((y1 - y2) / h).reshape(-1))

            n_k = self.datasets[k].length * self.ny
            blocks.append(np.column_stack(cols) if cols else np.zeros((n_k, 0)))

        return np.vstack(blocks)


# FACTORY ===============================================================================

def make_cost(model, datasets, free: FreeCoordinates, options) -> CostEvaluator:
    """Select the evaluator by model capability.

    Parameters
    ----------
    model : StaticModel or DynamicModel
    datasets : list of TimeSeriesData
        Empty for a pure optimization problem.
    free : FreeCoordinates
    options : NLSOptions
    """
    if model.is_simulatable:
        return DynamicCost(model, datasets, free, initial_states=options.x0)

    if len(datasets) > 1:
        raise ConfigurationError("static models are fitted against a single dataset")
    if options.x0 is not None:
        raise ConfigurationError("x0 applies to dynamic models only")
    data = datasets[0] if datasets else None
    return StaticCost(model, data, free, numgrad=options.numgrad)
