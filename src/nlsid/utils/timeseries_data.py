#########################################################################################
##
##                             TIME SERIES DATA CONTAINER
##                            (utils/timeseries_data.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import numpy as np
import matplotlib.pyplot as plt


# HELPERS ===============================================================================

def _align_on_time(values, n: int, what: str) -> np.ndarray:
    """Normalize ``values`` to 1D or 2D with time aligned on axis 0."""
    y = np.asarray(values, dtype=float)

    if y.ndim == 1:
        if y.size != n:
            raise ValueError(f"TimeSeriesData requires time and {what} with same length")
        return y
    if y.ndim == 2:
        if y.shape[0] == n:
            return y
        if y.shape[1] == n:
            return y.T
        raise ValueError(f"TimeSeriesData requires {what} to align with time on one axis")

    raise ValueError(f"TimeSeriesData supports 1D or 2D {what} only")


# CLASS =================================================================================

class TimeSeriesData:

    """Observed time series.

    Stores a sample time base, the observed outputs and, for input-driven
    models, the input signal applied during the experiment. The time base is
    required to be strictly increasing. Outputs and inputs are normalized to
    be 1D or 2D with time aligned on axis 0.

    Parameters
    ----------
    time : array_like
        Time (or independent variable) vector of shape (n,).
    data : array_like
        Observed outputs of shape (n,), (n, ny), or (ny, n). If time is
        aligned on axis 1, the input is transposed automatically.
    input : array_like, optional
        Input signal of shape (n,), (n, nu), or (nu, n).
    name : str, optional
        Signal name for display and plotting.
    unit : str, optional
        Time unit label used for plotting.

    Notes
    -----
    The `time_info` dictionary stores simple plotting metadata:
    - `time_range`: dict with `start` and `end`
    - `units`: display string for the time axis
    """

    def __init__(
        self,
        time: np.ndarray,
        data: np.ndarray,
        input: np.ndarray | None = None,
        name: str = "measurement",
        unit: str = "s",
    ):
        t = np.asarray(time, dtype=float).reshape(-1)

        if t.size < 1:
            raise ValueError("TimeSeriesData requires at least 1 sample")
        if t.size > 1 and not np.all(np.diff(t) > 0):
            raise ValueError("TimeSeriesData requires strictly increasing time")

        self.time = t
        self.data = _align_on_time(data, t.size, "data")
        self.input = None if input is None else _align_on_time(input, t.size, "input")
        self.name = str(name)

        self.time_info = {
            'time_range':
                {
                    'start': t[0],
                    'end': t[-1]
                },
            'units' : unit,
            }


    @classmethod
    def from_mapping(cls, mapping) -> "TimeSeriesData":
        """Build from a mapping with keys ``t``, ``y`` and optional ``u``."""
        y = mapping.get("y")
        if y is None or np.size(y) == 0:
            raise ValueError("data mapping must have a non-empty field 'y'")
        t = mapping.get("t")
        if t is None or np.size(t) == 0:
            raise ValueError("data mapping must have a non-empty field 't'")
        return cls(time=t, data=y, input=mapping.get("u"), name=mapping.get("name", "measurement"))


    def plot(
        self,
        *,
        marker: str = "o",
        markersize: float = 6.0,
        markevery: int | None = None,
        linewidth: float = 1.5,
        alpha: float = 0.6,
    ):
        """Plot the observed outputs.

        Parameters
        ----------
        marker : str, optional
            Marker style passed to `matplotlib.pyplot.plot`.
        markersize : float, optional
            Marker size passed to `matplotlib.pyplot.plot`.
        markevery : int, optional
            Plot every Nth marker. Use `None` to plot markers for all samples.
        linewidth : float, optional
            Line width passed to `matplotlib.pyplot.plot`.
        alpha : float, optional
            Alpha transparency passed to `matplotlib.pyplot.plot`.

        Returns
        -------
        fig : matplotlib.figure.Figure
        ax : matplotlib.axes.Axes

        Notes
        -----
        For 2D data, each column is treated as an independent channel and plotted
        as a separate trace.
        """
        fig, ax = plt.subplots(figsize=(8, 4))
        plot_kws = dict(
            marker=marker,
            markersize=markersize,
            markevery=markevery,
            linewidth=linewidth,
            alpha=alpha,
        )

        if self.data.ndim == 1:
            ax.plot(self.time, self.data, label=self.name, **plot_kws)
        else:
            for i in range(self.data.shape[1]):
                ax.plot(self.time, self.data[:, i], label=f"{self.name}_{i}", **plot_kws)

        ax.set_xlabel(f"Time ({self.time_info['units']})")
        ax.set_ylabel("Measurement")
        ax.set_title(f"Time Series: {self.name}")
        ax.legend()
        ax.grid(True)
        fig.tight_layout()
        return fig, ax


    @property
    def outputs(self) -> np.ndarray:
        """Observed outputs as a ``(n, ny)`` array."""
        return self.data.reshape(self.length, -1)


    @property
    def inputs(self) -> np.ndarray | None:
        """Input signal as a ``(n, nu)`` array, or ``None``."""
        if self.input is None:
            return None
        return self.input.reshape(self.length, -1)


    @property
    def ny(self) -> int:
        """Number of output channels."""
        return 1 if self.data.ndim == 1 else self.data.shape[1]


    @property
    def nu(self) -> int:
        """Number of input channels."""
        if self.input is None:
            return 0
        return 1 if self.input.ndim == 1 else self.input.shape[1]


    @property
    def length(self) -> int:
        """Number of samples."""
        return self.time.size


    @property
    def duration(self) -> float:
        """Signal duration in time units."""
        return float(self.time[-1] - self.time[0])


    def __repr__(self) -> str:
        return (
            f"TimeSeriesData(name={self.name!r}, length={self.length}, "
            f"ny={self.ny}, nu={self.nu})"
        )
