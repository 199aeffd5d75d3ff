#########################################################################################
##
##                        FREE COORDINATES AND THE REDUCED ITERATE
##                                   (opt/masks.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import numpy as np

from .exceptions import ConfigurationError


# CLASS =================================================================================

class FreeCoordinates:
    """Masks selecting the free entries of ``th`` and ``x0``.

    The optimizer moves in the reduced iterate ``eta``, the free entries of
    ``th`` followed by the free entries of ``x0``. Fixed entries keep their
    initial value for the whole run.

    Parameters
    ----------
    nth : int
        Length of the parameter vector.
    nx : int
        Length of the initial-state vector (0 for static problems).
    thmask, x0mask : array_like of bool, optional
        Free-coordinate masks; all coordinates are free when omitted.
    """

    def __init__(self, nth: int, nx: int = 0, thmask=None, x0mask=None):
        self.nth = int(nth)
        self.nx = int(nx)
        self.thmask = self._check(thmask, self.nth, "thmask", "nth")
        self.x0mask = self._check(x0mask, self.nx, "x0mask", "nx")

        self.th_index = np.flatnonzero(self.thmask)
        self.x0_index = np.flatnonzero(self.x0mask)


    @staticmethod
    def _check(mask, n: int, name: str, size_name: str) -> np.ndarray:
        if mask is None or (np.size(mask) == 0 and n > 0):
            return np.ones(n, dtype=bool)
        arr = np.asarray(mask, dtype=bool).reshape(-1)
        if arr.size != n:
            raise ConfigurationError(
                f"length of {name} must equal {size_name}={n}, got {arr.size}"
            )
        return arr


    @property
    def n1(self) -> int:
        """Number of free parameters."""
        return self.th_index.size


    @property
    def n2(self) -> int:
        """Number of free initial states."""
        return self.x0_index.size


    @property
    def size(self) -> int:
        """Length of the reduced iterate."""
        return self.n1 + self.n2


    @property
    def full_index(self) -> np.ndarray:
        """Positions of the free coordinates in the stacked ``[th; x0]`` vector."""
        return np.concatenate([self.th_index, self.nth + self.x0_index]).astype(int)


    def split(self, step: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Split a reduced vector into its ``th`` part and its ``x0`` part."""
        step = np.asarray(step, dtype=float).reshape(-1)
        if step.size != self.size:
            raise ValueError(f"expected a reduced vector of length {self.size}, got {step.size}")
        return step[:self.n1], step[self.n1:]


    def gather(self, th: np.ndarray, x0: np.ndarray | None = None) -> np.ndarray:
        """Reduced iterate ``eta`` of the given full vectors."""
        th = np.asarray(th, dtype=float).reshape(-1)
        parts = [th[self.th_index]]
        if self.nx:
            parts.append(np.asarray(x0, dtype=float).reshape(-1)[self.x0_index])
        return np.concatenate(parts)


    def apply(
        self,
        th: np.ndarray,
        x0: np.ndarray | None,
        step: np.ndarray,
    ) -> tuple[np.ndarray, np.ndarray | None]:
        """Return copies of ``th`` and ``x0`` with ``step`` added at the free entries."""
        dth, dx0 = self.split(step)

        th_new = np.array(th, dtype=float).reshape(-1)
        th_new[self.th_index] += dth

        if x0 is None:
            return th_new, None
        x0_new = np.array(x0, dtype=float).reshape(-1)
        x0_new[self.x0_index] += dx0
        return th_new, x0_new


    def __repr__(self) -> str:
        return f"FreeCoordinates(nth={self.nth}, nx={self.nx}, free={self.size})"
