"""
Exceptions raised by the filter-fit engine
"""


class FilterFitError(ValueError):
    """Base class for configuration errors surfaced to the caller"""


class IncompatibleSpectrumError(FilterFitError):
    """The spectrum's energy scale or acquisition metadata can't be used with the detector"""


class RegionOfInterestError(FilterFitError):
    """A region of interest doesn't belong to exactly one element"""


class EmptyReferenceError(FilterFitError):
    """A reference spectrum yields no region of interest with a significant peak"""
