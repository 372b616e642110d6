"""
Peak search for seeding the fit with likely elements
"""

from typing import List, Set, Tuple

import numpy as np
from scipy import ndimage, signal

from filterfit.detector import EDSDetector
from filterfit.filtered_spectrum import apply_filter
from filterfit.filters import GaussianFilter
from filterfit.spectrum import Spectrum
from filterfit.xray_data import (
    MAX_ATOMIC_NUMBER, MIN_ATOMIC_NUMBER, edge_energy, element_symbol, strongest_transition
)


SMOOTHING_WINDOW = 13
SMOOTHING_ORDER = 2
LIKELY_SHELLS = ('K', 'L3', 'M5')


class PeakSearch:
    """Locate statistically significant peaks in a spectrum"""

    @staticmethod
    def significance(spectrum: Spectrum, detector: EDSDetector) -> np.ndarray:
        """
        Filtered counts over their one-sigma error, channel by channel

        The spectrum is smoothed (Savitzky-Golay) and then filtered with a
        zero-sum Gaussian kernel as wide as the detector resolution at Mn Ka.
        """
        counts = spectrum.counts
        if len(counts) >= SMOOTHING_WINDOW:
            counts = signal.savgol_filter(counts, SMOOTHING_WINDOW, SMOOTHING_ORDER, mode='nearest')
        counts = np.maximum(counts, 0.0)
        kernel = GaussianFilter(detector.fwhm_at_mnka, spectrum.channel_width).kernel
        filtered, errors = apply_filter(counts, kernel, 0, len(counts), 1.0)
        return np.divide(filtered, errors, out=np.zeros_like(filtered), where=errors > 0.0)

    @staticmethod
    def peak_rois(spectrum: Spectrum, detector: EDSDetector, threshold: float = 3.0) -> List[Tuple[int, int]]:
        """
        Runs of channels where the peak significance exceeds threshold

        Args:
            spectrum: Spectrum to search
            detector: Detector (sets the filter width)
            threshold: Significance threshold

        Returns:
            List of inclusive (low channel, high channel) pairs in channel order
        """
        above = PeakSearch.significance(spectrum, detector) > threshold
        labels, _ = ndimage.label(above)
        rois = []
        for sl in ndimage.find_objects(labels):
            rois.append((int(sl[0].start), int(sl[0].stop) - 1))
        return rois

    @staticmethod
    def find_peaks(spectrum: Spectrum, detector: EDSDetector, threshold: float = 3.0) -> List[float]:
        """
        Energies (eV) of local significance maxima above threshold
        """
        sig = PeakSearch.significance(spectrum, detector)
        distance = max(1, int(round(0.5 * detector.fwhm_at_mnka / spectrum.channel_width)))
        peak_indices, _ = signal.find_peaks(sig, height=threshold, distance=distance)
        half = 0.5 * spectrum.channel_width
        return [spectrum.min_energy_for_channel(int(i)) + half for i in peak_indices]

    @staticmethod
    def likely_elements(spectrum: Spectrum, detector: EDSDetector, beam_energy: float,
                        threshold: float = 3.0) -> Set[str]:
        """
        Elements whose strongest accessible line falls inside a peak

        For each element from Be to U the line tested is the strongest line of
        the first of K, L3, M5 whose edge lies below half the beam energy
        (the K line when none does).

        Args:
            spectrum: Spectrum to search
            detector: Detector
            beam_energy: Beam energy in eV
            threshold: Peak significance threshold

        Returns:
            Set of element symbols
        """
        rois = PeakSearch.peak_rois(spectrum, detector, threshold)
        result = set()
        for z in range(MIN_ATOMIC_NUMBER, MAX_ATOMIC_NUMBER + 1):
            elm = element_symbol(z)
            best = None
            for shell in LIKELY_SHELLS:
                edge = edge_energy(elm, shell)
                if edge is not None and edge < 0.5 * beam_energy:
                    best = strongest_transition(elm, shell)
                if best is not None:
                    break
            if best is None and edge_energy(elm, 'K') is not None:
                best = strongest_transition(elm, 'K')
            if best is None:
                continue
            ch = spectrum.channel_for_energy(best.energy)
            if any(lo <= ch <= hi for lo, hi in rois):
                result.add(elm)
        return result
