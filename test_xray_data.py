"""
Tests for the X-ray line tables, detector model and regions of interest
"""

import numpy as np
import pytest

from conftest import CU_KA, FE_KA
from filterfit.detector import MN_KA_ENERGY, EDSDetector
from filterfit.exceptions import IncompatibleSpectrumError
from filterfit.roi import RegionOfInterest, RegionOfInterestSet
from filterfit.spectrum import Spectrum
from filterfit.xray_data import (
    XRayTransitionSet, atomic_number, edge_energy, element_symbol, get_family_transitions,
    get_transition, sorted_elements, strongest_transition
)


def test_element_lookup():
    assert atomic_number('Fe') == 26
    assert element_symbol(29) == 'Cu'
    assert sorted_elements(['Cu', 'O', 'Fe', 'Cu']) == ['O', 'Fe', 'Cu']


def test_fe_lines():
    ka1 = get_transition('Fe', 'Ka1')
    assert ka1.energy == pytest.approx(6404.0, abs=5.0)
    assert ka1.family == 'K' and ka1.shell == 'K'
    assert ka1.weight == pytest.approx(1.0)
    kb1 = get_transition('Fe', 'Kb1')
    assert 0.05 < kb1.weight < 0.5
    assert edge_energy('Fe', 'K') == pytest.approx(7112.0, abs=5.0)


def test_family_transitions():
    k_lines = get_family_transitions('Cu', 'K', 0.0101)
    assert 'Ka1' in k_lines
    assert k_lines.element == 'Cu'
    assert k_lines.heaviest().name == 'Ka1'
    assert all(xrt.weight >= 0.0101 for xrt in k_lines)
    assert strongest_transition('Cu', 'K').name == 'Ka1'


def test_missing_lines():
    # Be has no L lines
    assert get_transition('Be', 'La1') is None
    assert len(get_family_transitions('Be', 'L')) == 0


def test_transition_set_identity():
    a = XRayTransitionSet([FE_KA])
    b = XRayTransitionSet([FE_KA, FE_KA])
    assert a == b and hash(a) == hash(b)
    assert FE_KA in a and 'Ka1' in a and 'Kb1' not in a
    assert sorted([XRayTransitionSet([CU_KA]), a]) == [a, XRayTransitionSet([CU_KA])]
    with pytest.raises(ValueError):
        XRayTransitionSet([FE_KA, CU_KA])


def test_detector_resolution():
    det = EDSDetector(fwhm_at_mnka=130.0)
    assert det.predict_fwhm(MN_KA_ENERGY) == pytest.approx(130.0)
    assert det.predict_fwhm(1000.0) < 130.0 < det.predict_fwhm(10000.0)
    assert det.gaussian_width(6400.0, 0.5) == pytest.approx(0.5 * det.predict_fwhm(6400.0), rel=1.0e-3)
    assert det.channel_for_energy(det.energy_for_channel(37) + 0.5 * det.channel_width) == 37


def test_detector_visibility():
    det = EDSDetector()
    fe_ka = get_transition('Fe', 'Ka1')
    assert det.is_visible(fe_ka, 20.0e3)
    assert not det.is_visible(fe_ka, 5.0e3)
    lines = det.visible_transitions('Fe', 20.0e3)
    assert 'Ka1' in lines


def test_detector_scale_check():
    det = EDSDetector(channel_width=10.0)
    det.check_spectrum_scale(Spectrum(counts=np.ones(2048), channel_width=10.05))
    with pytest.raises(IncompatibleSpectrumError):
        det.check_spectrum_scale(Spectrum(counts=np.ones(2048), channel_width=20.0))
    with pytest.raises(IncompatibleSpectrumError):
        det.check_spectrum_scale(Spectrum(counts=np.ones(2048), channel_width=10.0, zero_offset=-500.0))


def test_detector_round_trip(tmp_path):
    det = EDSDetector(channel_width=5.0, fwhm_at_mnka=125.0, name="SDD")
    path = tmp_path / "detector.json"
    det.save(str(path))
    assert EDSDetector.load(str(path)) == det


def test_roi_set_merges_close_lines(detector):
    rois = RegionOfInterestSet(detector)
    rois.add(get_family_transitions('Fe', 'K', 0.0101))
    rois.add(get_family_transitions('Cu', 'K', 0.0101))
    assert rois.elements == ['Fe', 'Cu']
    for roi in rois:
        assert roi.low_energy < roi.high_energy
    # Ka1/Ka2 are never split across ROIs
    fe_rois = [roi for roi in rois if 'Fe' in roi.elements]
    assert any('Ka1' in roi.transition_set('Fe') and 'Ka2' in roi.transition_set('Fe') for roi in fe_rois)


def test_roi_basics(fe_roi):
    assert fe_roi.elements == ['Fe']
    assert fe_roi.contains(6400.0)
    assert fe_roi.transition_set() == XRayTransitionSet([FE_KA])
    with pytest.raises(ValueError):
        RegionOfInterest(100.0, 50.0)
    spec = Spectrum(counts=np.ones(1024))
    assert fe_roi.channel_window(spec) == (610, 670)


def test_spectrum_dose():
    spec = Spectrum(counts=np.ones(10), live_time=30.0, probe_current=2.0)
    assert spec.dose == 60.0
    with pytest.raises(IncompatibleSpectrumError):
        _ = Spectrum(counts=np.ones(10), live_time=0.0).dose
    with pytest.raises(ValueError):
        Spectrum(counts=[])
