"""
Values carrying a one-sigma uncertainty (k-ratios, fit coefficients)
"""

import math
from dataclasses import dataclass
from typing import Iterable


@dataclass(frozen=True)
class UncertainValue:
    """
    A value with an associated standard uncertainty

    Attributes:
        value: Best estimate
        sigma: One-sigma uncertainty (non-negative)
    """
    value: float
    sigma: float = 0.0

    @property
    def variance(self) -> float:
        return self.sigma * self.sigma

    @property
    def fractional_uncertainty(self) -> float:
        """sigma/|value| (NaN for a zero value)"""
        if self.value == 0.0:
            return math.nan
        return abs(self.sigma / self.value)

    @property
    def significance(self) -> float:
        """
        Signal-to-noise ratio value/sigma

        Returns +inf/-inf for an exact non-zero value and NaN for an exact zero,
        matching IEEE division.
        """
        if self.sigma == 0.0:
            if self.value == 0.0:
                return math.nan
            return math.copysign(math.inf, self.value)
        return self.value / self.sigma

    def is_nan(self) -> bool:
        return math.isnan(self.value)

    def nonnegative(self) -> 'UncertainValue':
        """Clamp the value at zero while keeping the uncertainty"""
        if self.value >= 0.0:
            return self
        return UncertainValue(0.0, self.sigma)

    def scaled(self, factor: float) -> 'UncertainValue':
        return UncertainValue(factor * self.value, abs(factor) * self.sigma)

    def __float__(self):
        return float(self.value)

    def __str__(self):
        return f"{self.value:.5g} ± {self.sigma:.2g}"


ZERO = UncertainValue(0.0, 0.0)
NAN = UncertainValue(math.nan, math.nan)


def safe_weighted_mean(values: Iterable[UncertainValue]) -> UncertainValue:
    """
    Inverse-variance weighted mean

    Entries with zero (or NaN) variance carry no usable weight and are skipped.

    Args:
        values: Iterable of UncertainValue

    Returns:
        Weighted mean, or NAN when no entry has a usable variance
    """
    weight_sum = 0.0
    weighted = 0.0
    for uv in values:
        var = uv.variance
        if not (var > 0.0) or math.isinf(var):
            continue
        weight_sum += 1.0 / var
        weighted += uv.value / var
    if weight_sum == 0.0:
        return NAN
    return UncertainValue(weighted / weight_sum, math.sqrt(1.0 / weight_sum))
