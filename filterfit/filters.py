"""
Zero-sum fitting filters for filter-fit spectral unmixing

A fitting filter is a symmetric convolution kernel summing to zero so that a
locally constant (or linear) background filters to zero while peaks survive.
Each filter carries a variance correction factor converting a fit
coefficient's variance in the filtered domain into a count-statistical one
(Schamber, in "X-Ray Fluorescence Analysis of Environmental Samples",
ed. T. Dzubay).
"""

import numpy as np


ZERO_SUM_TOLERANCE = 1.0e-6


def default_variance_correction_factor(lower_width, upper_width):
    """
    Variance correction for a filter with negative lobes of width lower_width
    and a positive lobe of width upper_width

    Returns:
        2*u*l / (u + 2*l)
    """
    return (2.0 * upper_width * lower_width) / (upper_width + 2.0 * lower_width)


class FittingFilter:
    """Base class holding a kernel and its variance correction factor"""

    def __init__(self, width, channel_width):
        """
        Args:
            width: Target filter width in eV (usually the FWHM at Mn Ka)
            channel_width: eV per channel
        """
        if not width > 0.0:
            raise ValueError(f"Filter width must be positive, got {width}")
        if not channel_width > 0.0:
            raise ValueError(f"Channel width must be positive, got {channel_width}")
        self.width = float(width)
        self.channel_width = float(channel_width)
        self._kernel = np.zeros(1)
        self._vcf = 1.0
        self.name = "Filter"

    @property
    def kernel(self):
        """Copy of the filter coefficients"""
        return self._kernel.copy()

    @property
    def variance_correction_factor(self):
        return self._vcf

    @property
    def filter_width(self):
        """Full width of the kernel in eV"""
        return self.channel_width * len(self._kernel)

    def __len__(self):
        return len(self._kernel)

    def zero_sum(self):
        return abs(float(np.sum(self._kernel))) < ZERO_SUM_TOLERANCE

    def _finish(self, kernel, vcf, name):
        kernel = np.asarray(kernel, dtype=float)
        kernel.setflags(write=False)
        self._kernel = kernel
        self._vcf = vcf
        self.name = name

    def __str__(self):
        return self.name

    def __repr__(self):
        return f"{type(self).__name__}({self.name}, vcf={self._vcf:.4g})"


class TopHatFilter(FittingFilter):
    """
    Standard top-hat filter

    A positive plateau 2m+1 channels wide, scaled to 2n/(2m+1), flanked by
    two negative lobes of n channels at -1.
    """

    def __init__(self, width, channel_width):
        super().__init__(width, channel_width)
        # (2*m+1)*channel_width ~ width
        m = max((int(round(width / channel_width)) - 1) // 2, 2)
        n = m
        kernel = np.full(2 * n + 2 * m + 1, -1.0)
        kernel[n:n + 2 * m + 1] = (2.0 * n) / (2.0 * m + 1.0)
        self.m = m
        self.n = n
        self._finish(kernel, default_variance_correction_factor(m, 2 * m + 1),
                     f"TopHat[m={m}, n={n}]")


def _odd_length(width, channel_width):
    tmp = int(round(2.0 * width / channel_width))
    return tmp, 2 * (tmp // 2) + 1


class GaussianFilter(FittingFilter):
    """Gaussian kernel offset to give zero sum"""

    def __init__(self, width, channel_width):
        super().__init__(width, channel_width)
        tmp, length = _odd_length(width, channel_width)
        w = length / 6.0
        x = (np.arange(length) - length // 2) / w
        kernel = np.exp(-x * x)
        kernel -= kernel.mean()
        self._finish(kernel, default_variance_correction_factor(tmp, 2 * tmp + 1),
                     f"Gaussian[w={w:.1f}]")


class SavitzkyGolayFilter(FittingFilter):
    """Quadratic Savitzky-Golay smoothing kernel offset to give zero sum"""

    def __init__(self, width, channel_width):
        super().__init__(width, channel_width)
        tmp, length = _odd_length(width, channel_width)
        m = float(length // 2)
        norm = (2.0 * m - 1.0) * (2.0 * m + 1.0) * (2.0 * m + 3.0)
        j = np.arange(length) - m
        kernel = 3.0 * (3.0 * m * m + 3.0 * m - 1.0 - 5.0 * j * j) / norm - 1.0 / length
        self._finish(kernel, default_variance_correction_factor(tmp, 2 * tmp + 1),
                     f"Savitzky-Golay[m={m:.1f}]")


class D2GaussianFilter(FittingFilter):
    """Negative second derivative of a Gaussian, offset to give zero sum"""

    def __init__(self, width, channel_width):
        super().__init__(width, channel_width)
        tmp, length = _odd_length(width, channel_width)
        w = length / 6.0
        x = length * (np.arange(length) - length // 2) / max(length - 1, 1)
        y = -(x / w) ** 2
        kernel = (2.0 * np.exp(y) / w) * (1.0 + 2.0 * y)
        kernel -= kernel.mean()
        self._finish(kernel, default_variance_correction_factor(tmp, 2 * tmp + 1),
                     f"d2G/dE2[m={w:.1f}]")


FILTER_KINDS = {
    'top_hat': TopHatFilter,
    'gaussian': GaussianFilter,
    'savitzky_golay': SavitzkyGolayFilter,
    'd2_gaussian': D2GaussianFilter,
}


def create_filter(kind, width, channel_width):
    """
    Build a fitting filter by name

    Args:
        kind: 'top_hat', 'gaussian', 'savitzky_golay' or 'd2_gaussian'
        width: Filter width in eV
        channel_width: eV per channel

    Returns:
        FittingFilter
    """
    try:
        cls = FILTER_KINDS[kind.lower()]
    except KeyError:
        raise ValueError(f"Unknown filter kind: {kind}") from None
    return cls(width, channel_width)
