"""
Background modeling for EDS spectra

Background levels beside a peak are estimated by weighted linear regression
over a window of adjacent channels whose width adapts to minimize the error.
These estimates drive the background-corrected peak integrals used to screen
references and the background-subtracted ROI spectra used for residuals.
"""

import math
from typing import List, Tuple

import numpy as np

from filterfit.roi import RegionOfInterest
from filterfit.spectrum import Spectrum
from filterfit.xray_data import edge_energy


MIN_BINS = 5
MAX_BINS = 50
EDGE_BACKGROUND_EXTENT = 3
BACKGROUND_MODELS = ('naive', 'linear')


def fit_line(x, y, sigma) -> Tuple[np.ndarray, float]:
    """
    Weighted straight-line fit

    Args:
        x: Channel positions
        y: Counts
        sigma: One-sigma error on each count

    Returns:
        (polynomial coefficients for np.polyval, chi-squared)
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    sigma = np.asarray(sigma, dtype=float)
    if np.ptp(x) == 0.0:
        # all points at one x
        w = 1.0 / (sigma * sigma)
        coeffs = np.array([0.0, np.sum(w * y) / np.sum(w)])
    else:
        coeffs = np.polyfit(x, y, 1, w=1.0 / sigma)
    chi2 = float(np.sum(((y - np.polyval(coeffs, x)) / sigma) ** 2))
    return coeffs, chi2


def _count_sigma(counts):
    counts = np.asarray(counts, dtype=float)
    return np.sqrt(np.maximum(counts, 1.0))


class BackgroundModeler:
    """Background estimation and removal for EDS spectra"""

    @staticmethod
    def _estimate_background(counts, start, step):
        """
        Walk away from start in direction step, fitting a line to at least
        MIN_BINS and at most MAX_BINS channels and keeping the window with the
        smallest normalized error

        Returns:
            [level at start, one-sigma error, channels used]
        """
        n = len(counts)

        def bound(ch):
            return min(max(ch, 0), n - 1)

        end = bound(start + step * MIN_BINS)
        end2 = bound(start + step * MAX_BINS)
        channels = np.arange(start, end2 + step, step)
        y = counts[channels].astype(float)
        sigma = _count_sigma(y)
        first = abs(end - start) + 1
        coeffs, chi2 = fit_line(channels[:first], y[:first], sigma[:first])
        best_ch = end
        best_res = float(np.polyval(coeffs, start))
        best_err = math.sqrt(chi2) / first
        if best_err < 2.0:
            for size in range(first + 1, len(channels) + 1):
                coeffs, chi2 = fit_line(channels[:size], y[:size], sigma[:size])
                err = math.sqrt(chi2) / size
                if err < best_err:
                    best_res = float(np.polyval(coeffs, start))
                    best_err = err
                    best_ch = int(channels[size - 1])
        else:
            # A line is a poor model here so try a short constant model
            best_ch = start
            best_res = float(counts[start])
            best_err = math.sqrt(max(best_res, 0.0))
            for size in range(2, first + 1):
                window = y[:size]
                err = math.sqrt(np.var(window, ddof=1) / size)
                if err < best_err:
                    best_res = float(np.mean(window))
                    best_err = err
            best_err /= max(1.0, math.sqrt(max(best_res, 0.0)))
        return [best_res, max(1.0, math.sqrt(max(best_res, 0.0)) * best_err), abs(start - best_ch) + 1]

    @staticmethod
    def estimate_low_background(spectrum: Spectrum, channel: int) -> List[float]:
        """
        Estimate the background level at channel using channels below it

        Args:
            spectrum: Spectrum
            channel: Channel at which to evaluate the background

        Returns:
            [level, one-sigma error, channels used]
        """
        counts = spectrum.counts
        if channel <= 0:
            level = float(counts[0])
            return [level, max(1.0, math.sqrt(max(level, 0.0)) * float(_count_sigma(level))), 1]
        return BackgroundModeler._estimate_background(counts, min(channel, len(counts) - 1), -1)

    @staticmethod
    def estimate_high_background(spectrum: Spectrum, channel: int) -> List[float]:
        """
        Estimate the background level at channel using channels above it

        Returns:
            [level, one-sigma error, channels used]
        """
        counts = spectrum.counts
        if channel >= len(counts) - 1:
            level = float(counts[-1])
            return [level, max(1.0, math.sqrt(max(level, 0.0)) * float(_count_sigma(level))), 1]
        return BackgroundModeler._estimate_background(counts, max(channel, 0), 1)

    @staticmethod
    def background_corrected_integral(spectrum: Spectrum, energy_min: float, energy_max: float) -> List[float]:
        """
        Integrate the counts between two energies less a linear background

        Args:
            spectrum: Spectrum
            energy_min: Low energy in eV
            energy_max: High energy in eV

        Returns:
            [net integral, one-sigma error, gross integral, background integral]
        """
        lo = spectrum.bound(spectrum.channel_for_energy(energy_min))
        hi = spectrum.bound(spectrum.channel_for_energy(energy_max))
        if lo > hi:
            lo, hi = hi, lo
        low = BackgroundModeler.estimate_low_background(spectrum, lo - 1)
        high = BackgroundModeler.estimate_high_background(spectrum, hi + 1)
        total = low[0] + high[0]
        a = 0.5 * total * (hi - lo + 1)
        da = (math.sqrt(low[1] ** 2 + high[1] ** 2) / total) * a if total != 0.0 else 1.0
        gross = float(np.sum(spectrum.counts[lo:hi + 1]))
        sigma2 = da * da + gross
        sigma = math.sqrt(sigma2) if sigma2 >= 0.0 else math.sqrt(max(1.0, gross - a))
        return [gross - a, sigma, gross, a]

    @staticmethod
    def _edge_line(spectrum: Spectrum, center: int) -> np.ndarray:
        channels = np.array([spectrum.bound(center + i)
                             for i in range(-EDGE_BACKGROUND_EXTENT, EDGE_BACKGROUND_EXTENT)])
        y = spectrum.counts[channels]
        return fit_line(channels, y, _count_sigma(y))[0]

    @staticmethod
    def _interpolated(spectrum: Spectrum, lo: int, hi: int) -> np.ndarray:
        low_bkgd = BackgroundModeler.estimate_low_background(spectrum, lo)[0]
        high_bkgd = BackgroundModeler.estimate_high_background(spectrum, hi)[0]
        ch = np.arange(lo, hi)
        return spectrum.counts[lo:hi] - (low_bkgd + (high_bkgd - low_bkgd) * (ch - lo) / (hi - lo))

    @staticmethod
    def _edge_modeled(spectrum: Spectrum, roi: RegionOfInterest, detector, lo: int, hi: int):
        """
        Background across an absorption edge inside the ROI, or None when
        the heaviest line's edge isn't inside the ROI or shows no step
        """
        transitions = list(roi.transitions)
        if not transitions:
            return None
        heaviest = max(transitions, key=lambda t: t.weight)
        edge = edge_energy(heaviest.element, heaviest.shell)
        if edge is None:
            return None
        low = BackgroundModeler._edge_line(spectrum, lo)
        high = BackgroundModeler._edge_line(spectrum, hi)
        edge_ch = spectrum.channel_for_energy(edge)
        if not (lo < edge_ch < hi and np.polyval(low, edge_ch) > np.polyval(high, edge_ch)):
            return None
        width = int(round(detector.fwhm_at_mnka / spectrum.channel_width)) // 2
        low_edge = max(lo, edge_ch - width)
        high_edge = min(hi, edge_ch + width)
        y0 = np.polyval(low, low_edge)
        y1 = np.polyval(high, high_edge)
        ch = np.arange(lo, hi)
        ramp = y0 + (y1 - y0) * (ch - low_edge) / max(high_edge - low_edge, 1)
        bkgd = np.where(ch < low_edge, np.polyval(low, ch),
                        np.where(ch < high_edge, ramp, np.polyval(high, ch)))
        return spectrum.counts[lo:hi] - bkgd

    @staticmethod
    def roi_spectrum(spectrum: Spectrum, roi: RegionOfInterest, detector,
                     model_threshold: float = 2.5e3, model: str = 'naive') -> Spectrum:
        """
        Background-subtracted counts inside a region of interest

        Args:
            spectrum: Source spectrum
            roi: Region of interest
            detector: EDSDetector (resolution sets the edge transition width)
            model_threshold: ROIs starting below this energy (eV) get the
                edge-aware model
            model: 'naive' (edge-aware below the threshold) or 'linear'
                (straight interpolation between background estimates)

        Returns:
            Spectrum with the net counts inside the ROI and zero elsewhere
        """
        if model not in BACKGROUND_MODELS:
            raise ValueError(f"Unknown background model: {model}")
        low_energy = roi.low_energy
        if model == 'linear':
            low_energy -= 1.5 * detector.fwhm_at_mnka
        lo = spectrum.bound(spectrum.channel_for_energy(low_energy))
        hi = spectrum.bound(spectrum.channel_for_energy(roi.high_energy))
        if lo > hi:
            lo, hi = hi, lo
        if lo == hi:
            hi = lo + 1
        data = None
        if model == 'naive' and spectrum.min_energy_for_channel(lo) < model_threshold:
            data = BackgroundModeler._edge_modeled(spectrum, roi, detector, lo, hi)
        if data is None:
            data = BackgroundModeler._interpolated(spectrum, lo, hi)
        counts = np.zeros(spectrum.num_channels)
        end = min(hi, spectrum.num_channels)
        counts[lo:end] = data[:end - lo]
        return spectrum.with_counts(counts, name=f"ROI[{spectrum.name}, {roi}]")
