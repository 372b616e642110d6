"""
Filter-fit spectral unmixing for EDS/EPMA

Measures k-ratios by fitting a filtered unknown spectrum as a linear
combination of filtered reference spectra.
"""

from filterfit.culling import (
    CompoundCullingStrategy, CullByAverageUncertainty, CullByBrightest, CullByChiSquared,
    CullByFamilies, CullByOptimal, CullByVariance, CullingStrategy, CullWithinFamily,
    DontCull, SpecialCulling
)
from filterfit.detector import EDSDetector
from filterfit.exceptions import (
    EmptyReferenceError, FilterFitError, IncompatibleSpectrumError, RegionOfInterestError
)
from filterfit.filtered_spectrum import FilteredSpectrum
from filterfit.filters import (
    D2GaussianFilter, FittingFilter, GaussianFilter, SavitzkyGolayFilter, TopHatFilter, create_filter
)
from filterfit.fitting import FilterFit, FilterFitConfig, KRatioSet, ReferenceEntry
from filterfit.intervals import Interval
from filterfit.roi import RegionOfInterest, RegionOfInterestSet
from filterfit.spectrum import Spectrum
from filterfit.uncertain import UncertainValue

__version__ = "0.1.0"
