#########################################################################################
##
##                        FORWARD SIMULATION OF DYNAMIC MODELS
##                                  (simulation.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import numpy as np
from scipy.integrate import solve_ivp

from .opt.exceptions import SimulationError


__all__ = ["simulate"]


# INPUT HOLD ============================================================================

def _interp_at(tt: float, t_arr: np.ndarray, u_arr: np.ndarray) -> np.ndarray:
    """Linear interpolation of the input samples at scalar time tt.

    Parameters
    ----------
    tt : float
        Query time; clamped to the endpoints outside ``[t_arr[0], t_arr[-1]]``.
    t_arr : np.ndarray
        Strictly increasing sample times, shape ``(n,)``.
    u_arr : np.ndarray
        Input samples, shape ``(n, nu)``.

    Returns
    -------
    np.ndarray
        Interpolated input, shape ``(nu,)``.
    """
    idx = int(np.searchsorted(t_arr, tt, side="left"))

    if idx == 0:
        return u_arr[0, :].copy()
    if idx >= len(t_arr):
        return u_arr[-1, :].copy()

    alpha = (tt - t_arr[idx - 1]) / (t_arr[idx] - t_arr[idx - 1])
    return u_arr[idx - 1, :] + alpha * (u_arr[idx, :] - u_arr[idx - 1, :])


def _zoh_at(tt: float, t_arr: np.ndarray, u_arr: np.ndarray) -> np.ndarray:
    """Zero-order hold: the input sample at the latest time at or before ``tt``."""
    idx = int(np.searchsorted(t_arr, tt, side="right")) - 1
    idx = max(0, min(len(t_arr) - 1, idx))
    return u_arr[idx, :].copy()


def _input_signal(model, data):
    """Return ``u(t)`` for the model and data, an empty vector without inputs."""
    u_arr = data.inputs
    if u_arr is None:
        empty = np.zeros(0)
        return lambda tt: empty

    hold = _interp_at if model.hold == "linear" else _zoh_at
    t_arr = data.time
    return lambda tt: hold(tt, t_arr, u_arr)


# SIMULATION ============================================================================

def _outputs(model, t, x, u_at) -> np.ndarray:
    th = model.th
    rows = [
        np.asarray(model.h(tk, x[k], u_at(tk), th), dtype=float).reshape(-1)
        for k, tk in enumerate(t)
    ]
    return np.vstack(rows)


def _simulate_discrete(model, data, u_at) -> np.ndarray:
    t = data.time
    x = np.empty((t.size, model.nx))
    xk = np.array(model.x0, dtype=float)
    for k, tk in enumerate(t):
        x[k] = xk
        if k + 1 < t.size:
            xk = np.asarray(model.f(tk, xk, u_at(tk), model.th), dtype=float).reshape(-1)
    return _outputs(model, t, x, u_at)


def _simulate_continuous(model, data, u_at) -> np.ndarray:
    t = data.time

    if model.nx == 0 or t.size == 1:
        x = np.tile(np.asarray(model.x0, dtype=float), (t.size, 1))
        return _outputs(model, t, x, u_at)

    def rhs(tt, xx, uu=None):
        uu = u_at(tt) if uu is None else uu
        return np.asarray(model.f(tt, xx, uu, model.th), dtype=float).reshape(-1)

    # zero-order held inputs are discontinuous at the sample times, so the
    # integrator is restarted on every sample interval with the input frozen
    if data.inputs is not None and model.hold == "zoh":
        x = np.empty((t.size, model.nx))
        x[0] = model.x0
        for k in range(t.size - 1):
            sol = solve_ivp(
                rhs, (t[k], t[k + 1]), x[k], args=(u_at(t[k]),),
                method=model.method, rtol=model.rtol, atol=model.atol,
            )
            if not sol.success:
                raise SimulationError(f"integration failed at t={t[k]}: {sol.message}")
            x[k + 1] = sol.y[:, -1]
        return _outputs(model, t, x, u_at)

    sol = solve_ivp(
        rhs, (t[0], t[-1]), np.asarray(model.x0, dtype=float),
        method=model.method, t_eval=t, rtol=model.rtol, atol=model.atol,
    )
    if not sol.success:
        raise SimulationError(f"integration failed: {sol.message}")
    return _outputs(model, t, sol.y.T, u_at)


def simulate(model, data) -> np.ndarray:
    """Simulate ``model`` over the time base and inputs of ``data``.

    Parameters
    ----------
    model : DynamicModel
        Model snapshot; its ``th`` and ``x0`` are used as given.
    data : TimeSeriesData
        Supplies the sample times and, optionally, the input signal.

    Returns
    -------
    np.ndarray
        Predicted outputs, shape ``(n, ny)``.

    Raises
    ------
    SimulationError
        If :func:`scipy.integrate.solve_ivp` reports failure.
    """
    u_at = _input_signal(model, data)
    if model.is_discrete:
        return _simulate_discrete(model, data, u_at)
    return _simulate_continuous(model, data, u_at)
