"""
Tests for the zero-sum fitting filters and filtered spectra
"""

import numpy as np
import pytest

from conftest import FE_KA, REFERENCE_AREA, peak_spectrum
from filterfit.filtered_spectrum import ERROR_SENTINEL, FilteredSpectrum, apply_filter
from filterfit.filters import (
    FILTER_KINDS, TopHatFilter, create_filter, default_variance_correction_factor
)


@pytest.mark.parametrize("kind", sorted(FILTER_KINDS))
def test_filters_sum_to_zero(kind):
    f = create_filter(kind, 130.0, 10.0)
    assert f.zero_sum()
    assert len(f) % 2 == 1
    assert f.variance_correction_factor > 0.0


def test_top_hat_shape():
    f = TopHatFilter(130.0, 10.0)
    assert (f.m, f.n) == (6, 6)
    kernel = f.kernel
    assert len(kernel) == 25
    assert kernel[0] == -1.0 and kernel[-1] == -1.0
    assert kernel[12] == pytest.approx(12.0 / 13.0)
    assert f.variance_correction_factor == pytest.approx(default_variance_correction_factor(6, 13))


def test_top_hat_minimum_width():
    assert TopHatFilter(10.0, 10.0).m == 2


def test_kernel_is_a_copy():
    f = TopHatFilter(130.0, 10.0)
    kernel = f.kernel
    kernel[:] = 0.0
    assert f.zero_sum() and f.kernel[0] == -1.0


def test_create_filter_rejects_unknown_kind():
    with pytest.raises(ValueError):
        create_filter('boxcar', 130.0, 10.0)
    with pytest.raises(ValueError):
        TopHatFilter(0.0, 10.0)


def test_constant_filters_to_zero():
    kernel = TopHatFilter(130.0, 10.0).kernel
    filtered, errors = apply_filter(np.full(200, 50.0), kernel, 0, 200, 1.0)
    assert np.allclose(filtered, 0.0, atol=1.0e-9)
    assert np.all(errors > 0.0)


def test_zero_counts_get_sentinel_error():
    kernel = TopHatFilter(130.0, 10.0).kernel
    _, errors = apply_filter(np.zeros(100), kernel, 0, 100, 1.0)
    assert np.all(errors == ERROR_SENTINEL)


def test_reference_filtered_spectrum(detector, fe_roi, fe_reference):
    f = TopHatFilter(detector.fwhm_at_mnka, detector.channel_width)
    fs = FilteredSpectrum(fe_reference, f, 'Fe', fe_roi)
    assert fs.is_reference
    assert fs.normalization == pytest.approx(1.0 / 60.0)
    assert len(fs.filtered_data) == fe_reference.num_channels
    # Window [610, 670) widened by at most half the kernel on each side
    nz = fs.non_zero_interval
    assert 598 <= nz.low <= 610 and 670 <= nz.high <= 683
    assert fs.filtered_data[640] > 0.0
    assert fs.transition_set.element == 'Fe'
    assert fs.same_region_of_interest('Fe', fe_roi)


def test_unknown_filtered_spectrum(detector, fe_reference):
    f = TopHatFilter(detector.fwhm_at_mnka, detector.channel_width)
    fs = FilteredSpectrum(fe_reference, f)
    assert not fs.is_reference
    assert len(fs.transition_set) == 0
    assert np.argmax(fs.filtered_data) in (639, 640)
    assert abs(fs.filtered_data[100]) < 1.0e-9


def test_zero_peak_discriminator(detector):
    spec = peak_spectrum(detector, [(FE_KA.energy, REFERENCE_AREA)])
    spec.counts[:20] = 1.0e4
    spec.metadata['zero_peak_discriminator'] = 200.0
    fs = FilteredSpectrum(spec, TopHatFilter(130.0, 10.0))
    # Channels below the discriminator are replaced, so no false peak appears
    assert np.allclose(fs.filtered_data[:40], 0.0, atol=1.0e-9)


def test_element_must_be_in_roi(detector, fe_roi, fe_reference):
    with pytest.raises(ValueError):
        FilteredSpectrum(fe_reference, TopHatFilter(130.0, 10.0), 'Cu', fe_roi)
