#########################################################################################
##
##                       POST-FIT UNCERTAINTY AND IDENTIFIABILITY
##                               (opt/uncertainty.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import numpy as np

from .masks import FreeCoordinates


__all__ = [
    "estimate_noise_covariance",
    "information_matrix",
    "psd_covariance",
    "estimate_uncertainty",
    "UncertaintyEstimate",
]

# relative eigenvalue jitter added to reported covariances
PSD_JITTER = 1e-14


# NOISE AND INFORMATION =================================================================

def estimate_noise_covariance(
    residual: np.ndarray,
    ny: int,
    *,
    estimate: bool = False,
    floor: float = float(np.finfo(float).eps),
    external: np.ndarray | None = None,
) -> np.ndarray:
    """Measurement noise covariance used to weight the information matrix.

    Parameters
    ----------
    residual : np.ndarray
        Stacked residual, ``N * ny`` entries, sample-major.
    ny : int
        Output dimension.
    estimate : bool
        Estimate from the residual: ``floor * I + E^T E / N`` with ``E`` the
        ``(N, ny)`` residual blocks.
    floor : float
        Diagonal floor of the estimate.
    external : np.ndarray, optional
        Known noise covariance, used when not estimating.

    Returns
    -------
    np.ndarray
        ``(ny, ny)`` covariance; the identity when nothing else is available.
    """
    if estimate:
        E = np.asarray(residual, dtype=float).reshape(-1, ny)
        n = E.shape[0]
        return floor * np.eye(ny) + E.T @ E / n

    if external is not None:
        R = np.atleast_2d(np.asarray(external, dtype=float))
        if R.shape != (ny, ny):
            raise ValueError(f"noise covariance must have shape ({ny}, {ny}), got {R.shape}")
        return R

    return np.eye(ny)


def information_matrix(J: np.ndarray, noise_cov: np.ndarray, ny: int) -> np.ndarray:
    """Fisher information ``sum_k J_k^T pinv(R) J_k`` over the per-sample blocks.

    ``J_k`` are the ``ny`` rows of ``J`` belonging to sample ``k``.
    """
    m, n = J.shape
    blocks = J.reshape(m // ny, ny, n)
    W = np.linalg.pinv(noise_cov)
    return np.einsum("kia,ij,kjb->ab", blocks, W, blocks)


def psd_covariance(info: np.ndarray) -> np.ndarray:
    """``pinv(info)``, symmetrized and lifted by a tiny multiple of its top eigenvalue."""
    if info.size == 0:
        return np.zeros_like(info)

    P = np.linalg.pinv(info)
    P = 0.5 * (P + P.T)

    ev_max = float(np.max(np.linalg.eigvalsh(P)))
    if ev_max > 0.0:
        P = P + ev_max * PSD_JITTER * np.eye(P.shape[0])
    return P


def _build_stats(fim: np.ndarray) -> dict:
    """Covariance, std_errors, correlation, eigenvalues, condition_number of a FIM."""
    n_p = fim.shape[0]

    covariance = psd_covariance(fim)
    std_errors = np.sqrt(np.maximum(np.diag(covariance), 0.0))

    denom = np.outer(std_errors, std_errors)
    corr = np.divide(covariance, denom, out=np.zeros((n_p, n_p)), where=denom > 0.0)
    np.fill_diagonal(corr, 1.0)

    if n_p:
        eigenvalues = np.sort(np.linalg.eigvalsh(fim))[::-1]
    else:
        eigenvalues = np.zeros(0)

    pos_ev = eigenvalues[eigenvalues > 0.0]
    if n_p and len(pos_ev) == n_p:
        condition_number = float(pos_ev[0] / pos_ev[-1])
    else:
        condition_number = np.inf

    return dict(
        covariance=covariance,
        std_errors=std_errors,
        correlation=corr,
        eigenvalues=eigenvalues,
        condition_number=condition_number,
    )


# RESULT ================================================================================

class UncertaintyEstimate:
    """Noise and parameter covariance after a fit.

    Parameters
    ----------
    information : np.ndarray
        Information matrix of the free coordinates, shape ``(n, n)``.
    noise_covariance : np.ndarray
        Noise covariance used as weight, shape ``(ny, ny)``.
    free : FreeCoordinates
        Masks of the run.
    values : np.ndarray, optional
        Values of the free coordinates, for the display table.

    Attributes
    ----------
    information : np.ndarray
        Information matrix scattered into the full ``(nth+nx, nth+nx)`` shape.
    covariance : np.ndarray
        ``pinv`` of the free information, scattered into the full shape,
        symmetrized and positive semidefinite.
    param_covariance : np.ndarray
        Covariance of ``th`` alone, from the parameter block of the information.
    x0_covariance : np.ndarray
        Covariance of ``x0`` alone, from the initial-state block.
    std_errors, correlation, eigenvalues, condition_number
        Statistics of the free coordinates.

    Notes
    -----
    Zero rows and columns of the full matrices correspond to fixed
    coordinates.
    """

    def __init__(
        self,
        information: np.ndarray,
        noise_covariance: np.ndarray,
        free: FreeCoordinates,
        values: np.ndarray | None = None,
    ):
        self.free = free
        self.noise_covariance = np.asarray(noise_covariance, dtype=float)
        self.free_information = np.asarray(information, dtype=float)

        nth, ntot = free.nth, free.nth + free.nx
        idx = free.full_index

        self.information = np.zeros((ntot, ntot))
        self.information[np.ix_(idx, idx)] = self.free_information

        stats = _build_stats(self.free_information)
        self.covariance = np.zeros((ntot, ntot))
        self.covariance[np.ix_(idx, idx)] = stats["covariance"]

        self.param_covariance = self._block_covariance(free.th_index, free.nth)
        self.x0_covariance = self._block_covariance(free.x0_index, free.nx, offset=nth)

        self.std_errors = stats["std_errors"]
        self.correlation = stats["correlation"]
        self.eigenvalues = stats["eigenvalues"]
        self.condition_number = stats["condition_number"]

        self.names = (
            [f"th[{j}]" for j in free.th_index] + [f"x0[{j}]" for j in free.x0_index]
        )
        self.values = None if values is None else np.asarray(values, dtype=float)


    def _block_covariance(self, index: np.ndarray, n: int, offset: int = 0) -> np.ndarray:
        """Covariance of one sub-vector from its own block of the information."""
        idx = offset + index
        P = np.zeros((n, n))
        P[np.ix_(index, index)] = psd_covariance(self.information[np.ix_(idx, idx)])
        return P


    # DISPLAY ===========================================================================

    def display(self) -> None:
        """Print the standard errors of the free coordinates and the conditioning."""
        W    = 72
        line = "=" * W
        dash = "-" * W

        print(line)
        print("  Parameter Uncertainty")
        print(line)
        print(f"  {'Coordinate':<14} {'Value':>12} {'Std Error':>12} {'Rel Error':>10}")
        print(dash)

        for i, name in enumerate(self.names):
            se = self.std_errors[i]
            if self.values is None:
                print(f"  {name:<14} {'':>12} {se:>12.4g}")
                continue
            val = self.values[i]
            rel_str = f"{se / abs(val) * 100:.2f}%" if abs(val) > 1e-15 else "N/A"
            print(f"  {name:<14} {val:>12.4g} {se:>12.4g} {rel_str:>10}")

        print(dash)
        print(f"  Information condition number : {self.condition_number:.3g}")
        print(line)


    # PLOT ==============================================================================

    def plot(self, *, figsize: tuple = (11, 4.5)):
        """Plot the correlation matrix heatmap and the information eigenvalue spectrum.

        Returns
        -------
        fig : matplotlib.figure.Figure
        axes : np.ndarray of matplotlib.axes.Axes, shape (2,)
        """
        import matplotlib.pyplot as plt
        import matplotlib.colors as mcolors

        n_p = len(self.names)
        fig, axes = plt.subplots(1, 2, figsize=figsize)

        ax = axes[0]
        norm = mcolors.TwoSlopeNorm(vmin=-1.0, vcenter=0.0, vmax=1.0)
        im   = ax.imshow(self.correlation, cmap="RdBu_r", norm=norm, aspect="auto")
        fig.colorbar(im, ax=ax, label="Correlation")
        ax.set_xticks(range(n_p))
        ax.set_yticks(range(n_p))
        ax.set_xticklabels(self.names, rotation=45, ha="right", fontsize=9)
        ax.set_yticklabels(self.names, fontsize=9)
        ax.set_title("Parameter Correlation Matrix")

        ax2 = axes[1]
        ev  = self.eigenvalues
        pos = ev > 0.0
        ax2.bar(range(len(ev)), np.abs(ev), color=["steelblue" if p else "salmon" for p in pos])
        if np.count_nonzero(pos) > 1 and ev[pos].max() / ev[pos].min() > 100.0:
            ax2.set_yscale("log")
        ax2.set_xticks(range(len(ev)))
        ax2.set_xticklabels([f"λ{i + 1}" for i in range(len(ev))], fontsize=9)
        ax2.set_xlabel("Eigendirection")
        ax2.set_ylabel("Eigenvalue magnitude")
        ax2.set_title("Information Eigenvalue Spectrum")
        ax2.grid(True, axis="y", alpha=0.3)

        fig.tight_layout()
        return fig, axes


# ESTIMATOR =============================================================================

def estimate_uncertainty(
    evaluation,
    free: FreeCoordinates,
    ny: int,
    options,
    external_noise_cov: np.ndarray | None = None,
    values: np.ndarray | None = None,
) -> UncertaintyEstimate:
    """Run the uncertainty estimator once on the final evaluation.

    Parameters
    ----------
    evaluation : CostEvaluation
        Residual and Jacobian at the solution.
    free : FreeCoordinates
        Masks of the run.
    ny : int
        Output dimension.
    options : NLSOptions
        Supplies ``estimate_noise`` and ``noise_floor``.
    external_noise_cov : np.ndarray, optional
        Noise covariance carried by the model.
    values : np.ndarray, optional
        Final reduced iterate.
    """
    R = estimate_noise_covariance(
        evaluation.residual,
        ny,
        estimate=options.estimate_noise,
        floor=options.noise_floor,
        external=external_noise_cov,
    )
    info = information_matrix(evaluation.jacobian, R, ny)
    return UncertaintyEstimate(info, R, free, values=values)
