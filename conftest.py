"""
Shared fixtures: a 10 eV/channel detector and noise-free Fe/Cu spectra

Lines and ROIs are built by hand so the fit tests don't depend on the
xraylib line tables.
"""

import numpy as np
import pytest

from filterfit.detector import EDSDetector
from filterfit.roi import RegionOfInterest
from filterfit.spectrum import Spectrum
from filterfit.xray_data import XRayTransition


FE_KA = XRayTransition('Fe', 'Ka1', iupac='KL3', family='K', shell='K', energy=6400.0, weight=1.0)
CU_KA = XRayTransition('Cu', 'Ka1', iupac='KL3', family='K', shell='K', energy=8040.0, weight=1.0)

REFERENCE_AREA = 2.0e5
BACKGROUND = 10.0


def peak_spectrum(detector, lines, background=BACKGROUND, live_time=60.0, probe_current=1.0, name="Spectrum"):
    """Gaussian lines [(energy eV, area counts)] on a flat background, no noise"""
    energy = detector.zero_offset + detector.channel_width * (np.arange(detector.channel_count) + 0.5)
    counts = np.full(detector.channel_count, background)
    for center, area in lines:
        sigma = detector.predict_fwhm(center) / 2.354820045
        counts += area * detector.channel_width * np.exp(-0.5 * ((energy - center) / sigma) ** 2) \
            / (sigma * np.sqrt(2.0 * np.pi))
    return Spectrum(
        counts=counts,
        channel_width=detector.channel_width,
        zero_offset=detector.zero_offset,
        live_time=live_time,
        real_time=live_time,
        probe_current=probe_current,
        name=name
    )


@pytest.fixture
def detector():
    return EDSDetector(channel_count=2048, channel_width=10.0, zero_offset=0.0, fwhm_at_mnka=130.0, name="Test EDS")


@pytest.fixture
def fe_roi():
    return RegionOfInterest(6100.0, 6700.0, frozenset([FE_KA]))


@pytest.fixture
def cu_roi():
    return RegionOfInterest(7740.0, 8340.0, frozenset([CU_KA]))


@pytest.fixture
def fe_reference(detector):
    return peak_spectrum(detector, [(FE_KA.energy, REFERENCE_AREA)], name="Fe std")


@pytest.fixture
def cu_reference(detector):
    return peak_spectrum(detector, [(CU_KA.energy, REFERENCE_AREA)], name="Cu std")


@pytest.fixture
def unknown(detector):
    """30% of the Fe reference and 50% of the Cu reference"""
    return peak_spectrum(
        detector,
        [(FE_KA.energy, 0.3 * REFERENCE_AREA), (CU_KA.energy, 0.5 * REFERENCE_AREA)],
        name="Unknown"
    )
