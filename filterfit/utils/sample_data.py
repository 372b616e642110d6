"""
Generate synthetic EDS spectra for testing and demonstrations
"""

import numpy as np

from filterfit.detector import EDSDetector
from filterfit.spectrum import Spectrum


def _gaussian_peak(energy, center, area, fwhm):
    """Gaussian peak with the specified area (counts)"""
    sigma = fwhm / 2.354820045
    return area * np.exp(-0.5 * ((energy - center) / sigma) ** 2) / (sigma * np.sqrt(2.0 * np.pi))


def _generate_background(energy, beam_energy, intensity):
    """Kramers-like continuum with low-energy absorption roll-off"""
    e = np.maximum(energy, 1.0)
    continuum = intensity * np.maximum(beam_energy - e, 0.0) / e
    return continuum * (1.0 - np.exp(-(e / 1500.0) ** 3))


def generate_spectrum(detector: EDSDetector, lines, beam_energy=20.0e3, live_time=60.0,
                      probe_current=1.0, background=0.5, noise=True, seed=None, name="Synthetic"):
    """
    Generate a synthetic spectrum on a detector's energy scale

    Args:
        detector: Energy calibration and resolution
        lines: Iterable of (energy eV, counts per nA*s) pairs
        beam_energy: Beam energy in eV
        live_time: Live time in seconds
        probe_current: Probe current in nA
        background: Continuum intensity per nA*s
        noise: Add Poisson noise
        seed: Seed for the random generator
        name: Spectrum name

    Returns:
        Spectrum
    """
    dose = live_time * probe_current
    energy = detector.zero_offset + detector.channel_width * (np.arange(detector.channel_count) + 0.5)
    counts = _generate_background(energy, beam_energy, background * dose)
    for center, intensity in lines:
        counts += detector.channel_width * _gaussian_peak(
            energy, center, intensity * dose, detector.predict_fwhm(center)
        )
    if noise:
        rng = np.random.default_rng(seed)
        counts = rng.poisson(counts).astype(float)
    return Spectrum(
        counts=counts,
        channel_width=detector.channel_width,
        zero_offset=detector.zero_offset,
        live_time=live_time,
        real_time=live_time,
        probe_current=probe_current,
        beam_energy=beam_energy,
        name=name,
        metadata={'description': 'Synthetic EDS spectrum'}
    )


def generate_mixture(detector: EDSDetector, references, k_ratios, live_time=60.0, probe_current=1.0,
                     background=0.5, noise=True, seed=None, name="Unknown"):
    """
    Generate an unknown as a mixture of pure-element line sets

    Args:
        detector: Energy calibration and resolution
        references: Dict of element -> list of (energy eV, counts per nA*s)
            describing the pure reference
        k_ratios: Dict of element -> k-ratio; each element's lines are scaled by it
        live_time: Live time in seconds
        probe_current: Probe current in nA
        background: Continuum intensity per nA*s
        noise: Add Poisson noise
        seed: Seed for the random generator
        name: Spectrum name

    Returns:
        Spectrum
    """
    lines = []
    for element, k in k_ratios.items():
        lines.extend((energy, k * intensity) for energy, intensity in references[element])
    return generate_spectrum(detector, lines, live_time=live_time, probe_current=probe_current,
                             background=background, noise=noise, seed=seed, name=name)
