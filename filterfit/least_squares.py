"""
Weighted linear least squares by singular value decomposition

The fit functions are supplied as the columns of a design matrix. Individual
coefficients can be forced to zero, which removes their column from the
decomposition without changing the indexing of the results.
"""

import math
from typing import List, Optional, Set

import numpy as np
from scipy import linalg

from filterfit.uncertain import UncertainValue, ZERO


SINGULAR_VALUE_TOLERANCE = 1.0e-12
MAX_SIGMA = 1.0e300
MIN_SIGMA = 1.0e-20


class LinearLeastSquares:
    """
    Solves y ~ design @ c weighted by 1/sigma

    Results are computed lazily and cached until the data or the set of
    zeroed coefficients change.
    """

    def __init__(self):
        self._y: Optional[np.ndarray] = None
        self._sigma: Optional[np.ndarray] = None
        self._design: Optional[np.ndarray] = None
        self._zeroed: Set[int] = set()
        self._results: Optional[List[UncertainValue]] = None
        self._covariance: Optional[np.ndarray] = None

    def set_data(self, y, sigma, design):
        """
        Set the data to fit

        Rows whose sigma is >= 1e300 carry no information and are dropped.

        Args:
            y: Data values (n,)
            sigma: One-sigma error for each data value (n,)
            design: Fit functions evaluated at each data point (n, m)
        """
        y = np.asarray(y, dtype=float)
        sigma = np.asarray(sigma, dtype=float)
        design = np.asarray(design, dtype=float)
        if design.ndim == 1:
            design = design[:, None]
        if sigma.shape != y.shape or design.shape[0] != len(y):
            raise ValueError(f"Inconsistent shapes: y {y.shape}, sigma {sigma.shape}, design {design.shape}")
        keep = sigma < MAX_SIGMA
        self._y = y[keep]
        self._sigma = sigma[keep]
        self._design = design[keep]
        self._reevaluate()

    @property
    def function_count(self) -> int:
        return 0 if self._design is None else self._design.shape[1]

    @property
    def data_count(self) -> int:
        return 0 if self._y is None else len(self._y)

    def _reevaluate(self):
        self._results = None
        self._covariance = None

    def zero_fit_coefficient(self, index: int, zero: bool = True):
        """Force (or stop forcing) the index-th coefficient to zero"""
        if zero and index not in self._zeroed:
            self._zeroed.add(index)
            self._reevaluate()
        elif not zero and index in self._zeroed:
            self._zeroed.discard(index)
            self._reevaluate()

    def clear_zeroed_coefficients(self):
        if self._zeroed:
            self._zeroed.clear()
            self._reevaluate()

    def is_zero_fit_coefficient(self, index: int) -> bool:
        return index in self._zeroed

    @property
    def non_zeroed_count(self) -> int:
        return sum(1 for j in range(self.function_count) if j not in self._zeroed)

    def _edit_singular_values(self, w: np.ndarray) -> np.ndarray:
        """Zero singular values below max(w) * SINGULAR_VALUE_TOLERANCE"""
        w = w.copy()
        if len(w) > 0:
            w[w < w.max() * SINGULAR_VALUE_TOLERANCE] = 0.0
        return w

    def _perform(self):
        if self._y is None:
            raise ValueError("No data specified for the linear least squares fit.")
        n_tot = self.function_count
        nz_index = np.array([j for j in range(n_tot) if j not in self._zeroed], dtype=int)
        coefficients = np.zeros(n_tot)
        covariance = np.zeros((n_tot, n_tot))
        if len(nz_index) > 0 and self.data_count > 0:
            sigma = np.maximum(self._sigma, MIN_SIGMA)
            a = self._design[:, nz_index] / sigma[:, None]
            u, s, vt = linalg.svd(a, full_matrices=False)
            w = self._edit_singular_values(s)
            inv_w = np.divide(1.0, w, out=np.zeros_like(w), where=w != 0.0)
            v = vt.T
            cov = (v * (inv_w * inv_w)) @ v.T
            b = self._y / sigma
            fcs = v @ (inv_w * (u.T @ b))
            coefficients[nz_index] = fcs
            covariance[np.ix_(nz_index, nz_index)] = cov
        results = [ZERO] * n_tot
        for j in nz_index:
            results[j] = UncertainValue(float(coefficients[j]), math.sqrt(max(covariance[j, j], 0.0)))
        self._results = results
        self._covariance = covariance

    def results(self) -> List[UncertainValue]:
        """
        Fit coefficients with one-sigma uncertainties

        Returns:
            One UncertainValue per fit function; zeroed functions report ZERO
        """
        if self._results is None:
            self._perform()
        return list(self._results)

    def fit_parameters(self) -> np.ndarray:
        return np.array([uv.value for uv in self.results()])

    @property
    def covariance(self) -> np.ndarray:
        if self._covariance is None:
            self._perform()
        return self._covariance.copy()

    def chi_squared(self, coefficients=None) -> float:
        """
        Chi-squared for the specified coefficients (the best fit if None)

        Args:
            coefficients: Sequence of floats or UncertainValue, one per fit function
        """
        if coefficients is None:
            coefficients = self.fit_parameters()
        c = np.array([float(v) for v in coefficients])
        if len(c) != self.function_count:
            raise ValueError(f"Expected {self.function_count} coefficients, got {len(c)}")
        resid = (self._design @ c - self._y) / self._sigma
        return float(np.sum(resid * resid))
