"""
Filtered spectra: a raw spectrum convolved with a fitting filter

A reference filtered spectrum is restricted to one region of interest of one
element; the unknown is filtered over all channels. Both are normalized by the
electron dose so that references and unknowns share a common scale.
"""

from typing import Optional

import numpy as np

from filterfit.filters import FittingFilter
from filterfit.intervals import Interval, non_zero_interval
from filterfit.roi import RegionOfInterest
from filterfit.spectrum import Spectrum
from filterfit.xray_data import XRayTransitionSet


ERROR_SENTINEL = np.finfo(float).max


def zero_peak_discriminator_channel(spectrum: Spectrum) -> int:
    """Channel of the zero-peak discriminator (metadata 'zero_peak_discriminator', eV) or 0"""
    zpd = spectrum.metadata.get('zero_peak_discriminator')
    if zpd is None:
        return 0
    return spectrum.bound(spectrum.channel_for_energy(float(zpd)))


def apply_filter(raw, kernel, low_channel, channel_count, normalization):
    """
    Slide a kernel over a block of raw counts

    The kernel runs half its length past each end of raw, with samples beyond
    the block replaced by the nearest edge sample. Channels the kernel never
    reaches stay zero.

    Args:
        raw: Raw counts of the block
        kernel: Filter coefficients
        low_channel: Channel index of raw[0] in the full spectrum
        channel_count: Length of the output arrays
        normalization: Factor applied to the filtered values and errors

    Returns:
        (filtered, errors) arrays of length channel_count
    """
    raw = np.asarray(raw, dtype=float)
    kernel = np.asarray(kernel, dtype=float)
    filtered = np.zeros(channel_count)
    errors = np.zeros(channel_count)
    flen = len(kernel)
    hl = flen // 2
    ol = flen - hl
    # output offsets si in [-hl, len(raw) + ol)
    si = np.arange(-hl, len(raw) + ol)
    idx = np.clip(si[:, None] - hl + np.arange(flen)[None, :], 0, len(raw) - 1)
    samples = raw[idx]
    sums = samples @ kernel
    errs = samples @ (kernel * kernel)
    channels = si + low_channel
    valid = (channels >= 0) & (channels < channel_count)
    channels = channels[valid]
    sums = sums[valid]
    errs = errs[valid]
    filtered[channels] = normalization * sums
    with np.errstate(invalid='ignore'):
        errors[channels] = np.where(errs > 0.0, normalization * np.sqrt(np.maximum(errs, 0.0)), ERROR_SENTINEL)
    return filtered, errors


class FilteredSpectrum:
    """
    A spectrum after convolution with a zero-sum fitting filter

    Computation is lazy: filtered data, errors and the non-zero interval are
    computed on first access and cached.
    """

    def __init__(self, spectrum: Spectrum, fitting_filter: FittingFilter,
                 element: Optional[str] = None, roi: Optional[RegionOfInterest] = None):
        """
        Args:
            spectrum: Raw spectrum (must carry a dose)
            fitting_filter: Zero-sum filter
            element: Reference element (None for the unknown)
            roi: Region of interest for a reference (None for the unknown)

        Raises:
            IncompatibleSpectrumError: If the spectrum has no live time or probe current
        """
        if roi is not None and element not in roi.elements:
            raise ValueError(f"{element} has no lines in {roi}")
        self.spectrum = spectrum
        self.filter = fitting_filter
        self.element = element
        self.roi = roi
        self.normalization = 1.0 / spectrum.dose
        self._filtered: Optional[np.ndarray] = None
        self._errors: Optional[np.ndarray] = None
        self._non_zero: Optional[Interval] = None

    @property
    def is_reference(self) -> bool:
        return self.roi is not None

    @property
    def transition_set(self) -> XRayTransitionSet:
        if self.roi is None:
            return XRayTransitionSet()
        return self.roi.transition_set(self.element)

    def _compute(self):
        spec = self.spectrum
        lld = zero_peak_discriminator_channel(spec)
        if self.roi is not None:
            low = spec.bound(max(lld, spec.channel_for_energy(self.roi.low_energy)))
            high = spec.bound(spec.channel_for_energy(self.roi.high_energy))
            raw = spec.counts[low:max(high, low + 1)]
        else:
            low = 0
            raw = spec.counts.copy()
            raw[:lld] = raw[lld]
        self._filtered, self._errors = apply_filter(
            raw, self.filter.kernel, low, spec.num_channels, self.normalization
        )
        self._non_zero = non_zero_interval(self._filtered)

    @property
    def filtered_data(self) -> np.ndarray:
        if self._filtered is None:
            self._compute()
        return self._filtered

    @property
    def errors(self) -> np.ndarray:
        """Per-channel one-sigma error of the filtered data"""
        if self._errors is None:
            self._compute()
        return self._errors

    @property
    def non_zero_interval(self) -> Interval:
        if self._non_zero is None:
            self._compute()
        return self._non_zero

    def same_region_of_interest(self, element: str, roi: RegionOfInterest) -> bool:
        return element == self.element and roi == self.roi

    def __len__(self):
        return self.spectrum.num_channels

    def __str__(self):
        if self.roi is None:
            return f"Filtered[{self.spectrum}]"
        return f"Filtered[{self.element}, {self.roi}, {self.spectrum}]"

    def __repr__(self):
        return f"FilteredSpectrum({self}, filter={self.filter!r})"
