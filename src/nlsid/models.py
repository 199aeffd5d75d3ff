#########################################################################################
##
##                          MODEL VARIANTS FOR LEAST-SQUARES FITTING
##                                    (models.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Mapping

import numpy as np

from .opt.exceptions import ConfigurationError


__all__ = [
    "StaticModel",
    "DynamicModel",
    "as_model",
]


# HELPERS ===============================================================================

def _vector(value) -> np.ndarray | None:
    if value is None:
        return None
    return np.asarray(value, dtype=float).reshape(-1)


def _matrix(value) -> np.ndarray | None:
    if value is None:
        return None
    return np.atleast_2d(np.asarray(value, dtype=float))


# STATIC MODEL ==========================================================================

@dataclass
class StaticModel:
    """Model without dynamics: a residual function or a parametric curve.

    Without data the model is a pure optimization problem and ``h`` is called
    as ``h(th)``. With data it is a curve ``h(t, th)`` evaluated on the time
    base (independent variable) of the data.

    Parameters
    ----------
    h : callable
        ``h(th)`` or ``h(t, th)``.
    th : array_like, optional
        Initial parameter vector. When omitted the parameter count is inferred
        by probing ``h`` with zero vectors.
    jacobian : callable, optional
        Analytic Jacobian ``dh/dth`` with the signature of ``h``, returning an
        array of shape ``(len(h), nth)``.
    noise_cov : array_like, optional
        Covariance ``(ny, ny)`` of the measurement noise.
    noise_mean : array_like, optional
        Mean ``(ny,)`` of the measurement noise, added to every prediction.
    name : str
        Label used in summaries.

    Notes
    -----
    ``information``, ``covariance`` and ``x0_covariance`` are filled in on the
    fitted copy returned by :func:`nlsid.opt.nls`.
    """

    h: Callable[..., Any]
    th: np.ndarray | None = None
    jacobian: Callable[..., Any] | None = None
    noise_cov: np.ndarray | None = None
    noise_mean: np.ndarray | None = None
    name: str = "static model"

    information: np.ndarray | None = field(default=None, repr=False)
    covariance: np.ndarray | None = field(default=None, repr=False)
    x0_covariance: np.ndarray | None = field(default=None, repr=False)

    is_simulatable = False


    def __post_init__(self) -> None:
        if not callable(self.h):
            raise ConfigurationError("StaticModel.h must be callable")
        if self.jacobian is not None and not callable(self.jacobian):
            raise ConfigurationError("StaticModel.jacobian must be callable")
        self.th = _vector(self.th)
        self.noise_cov = _matrix(self.noise_cov)
        self.noise_mean = _vector(self.noise_mean)


    @property
    def x0(self) -> np.ndarray:
        return np.zeros(0)


    @property
    def nth(self) -> int:
        return 0 if self.th is None else self.th.size


    @property
    def nx(self) -> int:
        return 0


    def evaluate(self, th: np.ndarray, t: np.ndarray | None = None) -> np.ndarray:
        """Evaluate ``h`` at ``th`` (on the time base ``t`` if given)."""
        out = self.h(th) if t is None else self.h(t, th)
        return np.asarray(out, dtype=float)


    def evaluate_jacobian(self, th: np.ndarray, t: np.ndarray | None = None) -> np.ndarray:
        """Evaluate the analytic Jacobian at ``th``."""
        out = self.jacobian(th) if t is None else self.jacobian(t, th)
        return np.atleast_2d(np.asarray(out, dtype=float))


    def with_values(self, th: np.ndarray, x0: np.ndarray | None = None) -> "StaticModel":
        """Copy of the model with a new parameter vector (``x0`` is ignored)."""
        return dataclasses.replace(self, th=np.array(th, dtype=float))


# DYNAMIC MODEL =========================================================================

@dataclass
class DynamicModel:
    """State-space model simulated forward in time.

    Continuous time (``fs is None``)::

        x'(t) = f(t, x(t), u(t), th)
        y(t)  = h(t, x(t), u(t), th)

    Discrete time (sample rate ``fs``)::

        x[k+1] = f(t_k, x[k], u[k], th)
        y[k]   = h(t_k, x[k], u[k], th)

    Parameters
    ----------
    f : callable
        State equation ``f(t, x, u, th)``.
    h : callable
        Output equation ``h(t, x, u, th)``.
    x0 : array_like
        Initial state (empty for models without states).
    th : array_like
        Parameter vector.
    fs : float, optional
        Sample rate of a discrete-time model.
    simulator : callable, optional
        ``simulator(model, data) -> (n, ny)`` array of predicted outputs.
        Defaults to :func:`nlsid.simulation.simulate`.
    hold : {'zoh', 'linear'}
        How the default simulator holds inputs between samples.
    method : str
        Integration method of :func:`scipy.integrate.solve_ivp`.
    rtol, atol : float
        Integrator tolerances.
    noise_cov : array_like, optional
        Covariance ``(ny, ny)`` of the measurement noise.
    noise_mean : array_like, optional
        Mean ``(ny,)`` of the measurement noise, added to every prediction.
    name : str
        Label used in summaries.

    Example
    -------
    .. code-block:: python

        # first-order decay with unknown rate and initial value
        m = DynamicModel(
            f=lambda t, x, u, th: -th[0] * x,
            h=lambda t, x, u, th: x,
            x0=[1.0],
            th=[0.5],
        )
    """

    f: Callable[..., Any]
    h: Callable[..., Any]
    x0: np.ndarray = field(default_factory=lambda: np.zeros(0))
    th: np.ndarray = field(default_factory=lambda: np.zeros(0))
    fs: float | None = None
    simulator: Callable[..., Any] | None = field(default=None, repr=False)
    hold: Literal["zoh", "linear"] = "zoh"
    method: str = "RK45"
    rtol: float = 1e-8
    atol: float = 1e-10
    noise_cov: np.ndarray | None = None
    noise_mean: np.ndarray | None = None
    name: str = "dynamic model"

    information: np.ndarray | None = field(default=None, repr=False)
    covariance: np.ndarray | None = field(default=None, repr=False)
    x0_covariance: np.ndarray | None = field(default=None, repr=False)

    is_simulatable = True


    def __post_init__(self) -> None:
        if not callable(self.f) or not callable(self.h):
            raise ConfigurationError("DynamicModel.f and DynamicModel.h must be callable")
        if self.simulator is not None and not callable(self.simulator):
            raise ConfigurationError("DynamicModel.simulator must be callable")
        if self.hold not in ("zoh", "linear"):
            raise ConfigurationError(f"hold must be 'zoh' or 'linear', got {self.hold!r}")
        if self.fs is not None and not float(self.fs) > 0.0:
            raise ConfigurationError("fs must be positive for a discrete-time model")
        self.x0 = _vector(self.x0)
        self.th = _vector(self.th)
        self.noise_cov = _matrix(self.noise_cov)
        self.noise_mean = _vector(self.noise_mean)


    @property
    def nth(self) -> int:
        return self.th.size


    @property
    def nx(self) -> int:
        return self.x0.size


    @property
    def is_discrete(self) -> bool:
        return self.fs is not None


    def simulate(self, data) -> np.ndarray:
        """Predicted outputs on the time base of ``data``, shape ``(n, ny)``."""
        if self.simulator is None:
            from .simulation import simulate
            out = simulate(self, data)
        else:
            out = self.simulator(self, data)

        y = getattr(out, "data", out)
        return np.asarray(y, dtype=float).reshape(data.length, -1)


    def with_values(self, th: np.ndarray, x0: np.ndarray | None = None) -> "DynamicModel":
        """Copy of the model with new parameter and initial-state vectors."""
        return dataclasses.replace(
            self,
            th=np.array(th, dtype=float),
            x0=np.array(self.x0 if x0 is None else x0, dtype=float),
        )


# COERCION ==============================================================================

def as_model(obj) -> StaticModel | DynamicModel:
    """Resolve the supported model definitions into a model variant.

    Accepts a :class:`StaticModel` or :class:`DynamicModel` (returned as is),
    a plain callable ``h`` or a mapping with key ``h`` and optional ``th`` and
    ``J``/``jacobian``.
    """
    if isinstance(obj, (StaticModel, DynamicModel)):
        return obj

    if isinstance(obj, Mapping):
        if "h" not in obj:
            raise ConfigurationError("model definition is not recognized: missing 'h'")
        if "f" in obj:
            try:
                return DynamicModel(**dict(obj))
            except TypeError as err:
                raise ConfigurationError(f"model definition is not recognized: {err}") from err
        jac = obj.get("jacobian", obj.get("J"))
        return StaticModel(h=obj["h"], th=obj.get("th"), jacobian=jac)

    if callable(obj):
        return StaticModel(h=obj)

    raise ConfigurationError(
        f"model definition is not recognized: {type(obj).__name__}"
    )
