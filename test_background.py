"""
Tests for background estimation, ROI spectra and the peak search
"""

import numpy as np
import pytest

from conftest import BACKGROUND, CU_KA, FE_KA, REFERENCE_AREA, peak_spectrum
from filterfit.background import BackgroundModeler, fit_line
from filterfit.peak_search import PeakSearch
from filterfit.roi import RegionOfInterest
from filterfit.spectrum import Spectrum
from filterfit.xray_data import XRayTransition


def test_fit_line():
    x = np.arange(10.0)
    coeffs, chi2 = fit_line(x, 2.0 + 0.5 * x, np.ones(10))
    assert coeffs == pytest.approx([0.5, 2.0])
    assert np.polyval(coeffs, 20.0) == pytest.approx(12.0)
    assert chi2 == pytest.approx(0.0, abs=1.0e-9)
    # Residuals of 1 and -1 at unit sigma
    _, chi2 = fit_line([0.0, 0.0, 1.0, 1.0], [1.0, 3.0, 1.0, 3.0], np.ones(4))
    assert chi2 == pytest.approx(4.0)
    # A single position falls back to the weighted mean
    coeffs, _ = fit_line([3.0, 3.0], [4.0, 6.0], [1.0, 1.0])
    assert np.polyval(coeffs, 100.0) == pytest.approx(5.0)


def test_flat_background_estimate():
    spec = Spectrum(counts=np.full(200, 100.0))
    level, err, n = BackgroundModeler.estimate_low_background(spec, 100)
    assert level == pytest.approx(100.0)
    assert err >= 1.0
    assert n >= 6
    level, _, _ = BackgroundModeler.estimate_high_background(spec, 100)
    assert level == pytest.approx(100.0)


def test_sloped_background_estimate():
    spec = Spectrum(counts=200.0 - 0.5 * np.arange(200))
    level, _, _ = BackgroundModeler.estimate_high_background(spec, 50)
    assert level == pytest.approx(175.0, rel=1.0e-3)


def test_background_corrected_integral(detector, fe_reference):
    net, sigma, gross, bkg = BackgroundModeler.background_corrected_integral(fe_reference, 6100.0, 6700.0)
    assert net == pytest.approx(REFERENCE_AREA, rel=0.01)
    assert bkg == pytest.approx(61 * BACKGROUND, rel=0.05)
    assert gross == pytest.approx(net + bkg)
    assert sigma == pytest.approx(np.sqrt(gross), rel=0.1)


@pytest.mark.parametrize("model", ['naive', 'linear'])
def test_roi_spectrum(detector, fe_roi, fe_reference, model):
    roi_spec = BackgroundModeler.roi_spectrum(fe_reference, fe_roi, detector, model=model)
    assert roi_spec.num_channels == fe_reference.num_channels
    assert roi_spec.counts[100] == 0.0
    assert roi_spec.total_counts == pytest.approx(REFERENCE_AREA, rel=0.01)


def test_roi_spectrum_rejects_unknown_model(detector, fe_roi, fe_reference):
    with pytest.raises(ValueError):
        BackgroundModeler.roi_spectrum(fe_reference, fe_roi, detector, model='spline')


def test_peak_rois(detector, unknown):
    rois = PeakSearch.peak_rois(unknown, detector)
    assert len(rois) == 2
    (fe_lo, fe_hi), (cu_lo, cu_hi) = rois
    assert fe_lo <= unknown.channel_for_energy(FE_KA.energy) <= fe_hi
    assert cu_lo <= unknown.channel_for_energy(CU_KA.energy) <= cu_hi


def test_find_peaks(detector, unknown):
    energies = PeakSearch.find_peaks(unknown, detector)
    assert len(energies) == 2
    assert energies[0] == pytest.approx(FE_KA.energy, abs=20.0)
    assert energies[1] == pytest.approx(CU_KA.energy, abs=20.0)


def test_flat_spectrum_has_no_peaks(detector):
    flat = peak_spectrum(detector, [])
    assert PeakSearch.peak_rois(flat, detector) == []


def test_roi_spectrum_models_absorption_edge(detector):
    # Si K edge (1839 eV) inside a low-energy ROI: the continuum steps down
    si_ka = XRayTransition('Si', 'Ka1', iupac='KL3', family='K', shell='K', energy=1740.0, weight=1.0)
    roi = RegionOfInterest(1500.0, 2100.0, frozenset([si_ka]))
    counts = np.where(np.arange(detector.channel_count) < 184, 100.0, 60.0)
    spec = Spectrum(counts=counts, channel_width=10.0)
    roi_spec = BackgroundModeler.roi_spectrum(spec, roi, detector, model='naive')
    assert roi_spec.counts[150:177] == pytest.approx(np.zeros(27), abs=1.0e-6)
    assert roi_spec.counts[189:210] == pytest.approx(np.zeros(21), abs=1.0e-6)
    assert roi_spec.counts[183] > 0.0
    assert roi_spec.counts[100] == 0.0
