"""
Tests for the culling strategies, run against a stand-in fit
"""

import logging
from types import SimpleNamespace

import pytest

from filterfit.culling import (
    CompoundCullingStrategy, CullByAverageUncertainty, CullByBrightest, CullByChiSquared,
    CullByFamilies, CullByOptimal, CullByVariance, CullingStrategy, CullWithinFamily,
    DontCull, SpecialCulling
)
from filterfit.uncertain import UncertainValue
from filterfit.xray_data import XRayTransition, XRayTransitionSet


def line(element, name, energy, weight=1.0, family='K'):
    return XRayTransition(element, name, family=family, shell=family, energy=energy, weight=weight)


FE_KA = XRayTransitionSet([line('Fe', 'Ka1', 6400.0)])
FE_KB = XRayTransitionSet([line('Fe', 'Kb1', 7058.0, 0.12)])
CU_KA = XRayTransitionSet([line('Cu', 'Ka1', 8040.0)])
CU_KB = XRayTransitionSet([line('Cu', 'Kb1', 8905.0, 0.12)])


def entry(xrts, value, sigma, peak_integral=1.0e5):
    return SimpleNamespace(
        element=xrts.element, transition_set=xrts,
        k_ratio=UncertainValue(value, sigma), peak_integral=peak_integral
    )


class FakeFit:
    def __init__(self, entries, chi_squared=None):
        self.reference_entries = tuple(entries)
        self._chi_squared = chi_squared

    @property
    def elements(self):
        seen = []
        for e in self.reference_entries:
            if e.element not in seen:
                seen.append(e.element)
        return seen

    def chi_squared(self, coefficients=None):
        return self._chi_squared(coefficients)


def params_of(fit):
    return [e.k_ratio for e in fit.reference_entries]


def test_cull_by_variance():
    fit = FakeFit([entry(FE_KA, 0.5, 0.01), entry(CU_KA, 0.001, 0.01), entry(CU_KB, 0.002, 0.02)])
    assert CullByVariance(3.0).propose(fit, params_of(fit)) == {'Cu'}


def test_cull_by_variance_ignores_zeroed():
    fit = FakeFit([entry(FE_KA, 0.0, 0.0)])
    assert CullByVariance(3.0).propose(fit, params_of(fit)) == set()


def test_cull_by_variance_zeroed_roi_does_not_shield_element():
    # The zeroed Cu Ka coefficient is skipped, the weak Cu Kb decides
    fit = FakeFit([entry(FE_KA, 0.5, 0.01), entry(CU_KA, 0.0, 0.0), entry(CU_KB, 0.002, 0.02)])
    assert CullByVariance(3.0).propose(fit, params_of(fit)) == {'Cu'}


def test_cull_by_chi_squared():
    def chi2(coefficients):
        if coefficients is None:
            return 100.0
        values = [float(c) for c in coefficients]
        if values[0] == 0.0:
            return 1000.0  # Fe matters
        return 100.5  # Cu doesn't

    fit = FakeFit([entry(FE_KA, 0.5, 0.01), entry(CU_KA, 0.01, 0.01)], chi2)
    assert CullByChiSquared(1.01).propose(fit, params_of(fit)) == {'Cu'}


def test_cull_within_family():
    # Kb1 visible without Ka1 is implausible
    fit = FakeFit([entry(FE_KA, 0.001, 0.01), entry(FE_KB, 0.5, 0.01),
                   entry(CU_KA, 0.5, 0.01), entry(CU_KB, 0.5, 0.01)])
    assert CullWithinFamily(3.0).propose(fit, params_of(fit)) == {'Fe'}


def test_cull_by_families():
    fit = FakeFit([entry(FE_KA, 0.5, 0.01), entry(CU_KA, 0.01, 0.01)])
    assert CullByFamilies(3.0).propose(fit, params_of(fit)) == {'Cu'}


def test_cull_by_families_missing_k():
    fe_la = XRayTransitionSet([line('Fe', 'La1', 705.0, family='L')])
    fit = FakeFit([entry(FE_KA, 0.001, 0.01, peak_integral=2.0e5),
                   entry(fe_la, 0.5, 0.01, peak_integral=1.0e4)])
    assert CullByFamilies(3.0).propose(fit, params_of(fit)) == {'Fe'}


def test_cull_by_optimal():
    fit = FakeFit([entry(FE_KA, 0.5, 0.01), entry(FE_KB, 0.0, 0.01),
                   entry(CU_KA, 0.01, 0.01), entry(CU_KB, 0.5, 0.01)])
    strategy = CullByOptimal(3.0, [FE_KA, FE_KB, CU_KA, CU_KB])
    assert strategy.optimal['Fe'].name == 'Ka1'
    assert strategy.propose(fit, params_of(fit)) == {'Cu'}


def test_cull_by_average_uncertainty():
    fit = FakeFit([entry(FE_KA, 0.1, 0.01), entry(CU_KA, 0.01, 0.01), entry(CU_KB, 0.02, 0.01)])
    assert CullByAverageUncertainty(5.0, 3.0).propose(fit, params_of(fit)) == {'Cu'}


def test_cull_by_brightest():
    fit = FakeFit([
        entry(FE_KA, 0.5, 0.01, peak_integral=2.0e5), entry(FE_KB, 0.0, 0.01, peak_integral=2.0e4),
        entry(CU_KB, 0.5, 0.01, peak_integral=2.0e4), entry(CU_KA, 0.01, 0.01, peak_integral=2.0e5),
    ])
    assert CullByBrightest(3.0).propose(fit, params_of(fit)) == {'Cu'}


def test_special_culling():
    special = SpecialCulling()
    special.add('Cu', when_present='Fe')
    assert special.trigger('Cu') == 'Fe'
    assert special.removed('Fe') == 'Cu'
    assert special.removed('Cu') is None
    fit = FakeFit([entry(FE_KA, 0.5, 0.001), entry(CU_KA, 0.01, 0.005)])
    assert special.propose(fit, params_of(fit)) == {'Cu'}
    # A strong Cu signal survives
    fit = FakeFit([entry(FE_KA, 0.5, 0.001), entry(CU_KA, 0.5, 0.005)])
    assert special.propose(fit, params_of(fit)) == set()


def test_dont_cull():
    fit = FakeFit([entry(FE_KA, 0.001, 0.01), entry(CU_KA, 0.001, 0.01)])
    strategy = DontCull(CullByVariance(3.0), [FE_KA])
    assert strategy.propose(fit, params_of(fit)) == {'Cu'}


def test_compound_is_union():
    fit = FakeFit([entry(FE_KA, 0.001, 0.01, peak_integral=2.0e5), entry(CU_KA, 0.5, 0.01)])
    fe_only = CullByVariance(3.0)
    never = CullByBrightest(-1.0)
    compound = CompoundCullingStrategy([never])
    assert compound.propose(fit, params_of(fit)) == set()
    compound.prepend(fe_only)
    assert compound.strategies == [fe_only, never]
    assert compound.propose(fit, params_of(fit)) == {'Fe'}
    compound.remove(fe_only)
    assert len(compound) == 1
    compound.clear()
    assert len(compound) == 0
    assert compound.propose(fit, params_of(fit)) == set()


def test_failure_is_an_empty_proposal(caplog):
    class Broken(CullingStrategy):
        def compute(self, fit, params):
            raise ZeroDivisionError()

    fit = FakeFit([entry(FE_KA, 0.5, 0.01)])
    compound = CompoundCullingStrategy([Broken(), CullByVariance(1.0e9)])
    with caplog.at_level(logging.WARNING, logger='filterfit.culling'):
        assert compound.propose(fit, params_of(fit)) == {'Fe'}
    assert 'Broken' in caplog.text


def test_strategies_are_abstract():
    with pytest.raises(TypeError):
        CullingStrategy()
