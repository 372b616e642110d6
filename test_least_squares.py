"""
Tests for the weighted linear least-squares solver and uncertain values
"""

import math

import numpy as np
import pytest

from filterfit.least_squares import LinearLeastSquares
from filterfit.uncertain import NAN, UncertainValue, ZERO, safe_weighted_mean


@pytest.fixture
def problem():
    x = np.linspace(0.0, 1.0, 50)
    design = np.column_stack([np.ones_like(x), x, x * x])
    y = design @ np.array([2.0, 3.0, -1.0])
    return y, np.full_like(y, 0.1), design


def test_exact_fit(problem):
    lls = LinearLeastSquares()
    lls.set_data(*problem)
    values = [uv.value for uv in lls.results()]
    assert values == pytest.approx([2.0, 3.0, -1.0])
    assert lls.chi_squared() == pytest.approx(0.0, abs=1.0e-12)
    assert all(uv.sigma > 0.0 for uv in lls.results())


def test_zeroed_coefficient(problem):
    y, sigma, design = problem
    lls = LinearLeastSquares()
    lls.zero_fit_coefficient(2)
    lls.set_data(y, sigma, design)
    results = lls.results()
    assert results[2] is ZERO
    assert lls.is_zero_fit_coefficient(2)
    assert lls.non_zeroed_count == 2
    assert lls.covariance[2, 2] == 0.0
    # Zero flags persist across new data
    lls.set_data(y, sigma, design)
    assert lls.results()[2] is ZERO
    lls.clear_zeroed_coefficients()
    assert lls.results()[2].value == pytest.approx(-1.0)


def test_chi_squared_of_trial_coefficients(problem):
    lls = LinearLeastSquares()
    lls.set_data(*problem)
    trial = [UncertainValue(2.0, 0.0), UncertainValue(3.0, 0.0), ZERO]
    # Residual x^2 at each point over sigma 0.1
    x = np.linspace(0.0, 1.0, 50)
    assert lls.chi_squared(trial) == pytest.approx(np.sum((x * x / 0.1) ** 2))
    with pytest.raises(ValueError):
        lls.chi_squared([1.0])


def test_weights(problem):
    y, sigma, design = problem
    y = y.copy()
    y[0] += 100.0
    sigma = sigma.copy()
    sigma[0] = 1.0e300  # carries no information
    lls = LinearLeastSquares()
    lls.set_data(y, sigma, design)
    assert lls.data_count == 49
    assert [uv.value for uv in lls.results()] == pytest.approx([2.0, 3.0, -1.0])


def test_degenerate_columns():
    x = np.linspace(0.0, 1.0, 20)
    design = np.column_stack([x, x])
    lls = LinearLeastSquares()
    lls.set_data(2.0 * x, np.ones_like(x), design)
    values = [uv.value for uv in lls.results()]
    assert sum(values) == pytest.approx(2.0)
    assert all(math.isfinite(v) for v in values)


def test_inconsistent_shapes():
    lls = LinearLeastSquares()
    with pytest.raises(ValueError):
        lls.set_data(np.ones(5), np.ones(4), np.ones((5, 2)))
    with pytest.raises(ValueError):
        lls.results()


def test_single_column():
    lls = LinearLeastSquares()
    lls.set_data([1.0, 2.0, 3.0], [1.0, 1.0, 1.0], [0.5, 1.0, 1.5])
    assert lls.function_count == 1
    assert lls.results()[0].value == pytest.approx(2.0)


def test_uncertain_value():
    uv = UncertainValue(-0.02, 0.01)
    assert uv.nonnegative() == UncertainValue(0.0, 0.01)
    assert uv.significance == pytest.approx(-2.0)
    assert uv.fractional_uncertainty == pytest.approx(0.5)
    assert math.isnan(ZERO.significance)
    assert UncertainValue(1.0, 0.0).significance == math.inf
    assert uv.scaled(-2.0) == UncertainValue(0.04, 0.02)


def test_safe_weighted_mean():
    mean = safe_weighted_mean([UncertainValue(1.0, 1.0), UncertainValue(3.0, 1.0), ZERO])
    assert mean.value == pytest.approx(2.0)
    assert mean.sigma == pytest.approx(math.sqrt(0.5))
    assert safe_weighted_mean([ZERO]) is NAN
