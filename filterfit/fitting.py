"""
Filter-fit engine: expresses a filtered unknown spectrum as a weighted sum of
filtered reference spectra

Every spectrum is convolved with a zero-sum fitting filter, which removes the
slowly varying continuum. The filtered unknown is then fit by weighted linear
least squares over the channels where at least one active reference is
non-zero. Fit coefficients are k-ratios. An outer loop drops references that
fit negative, and elements a culling strategy rejects, and re-fits until no
further change occurs.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple, Union

import numpy as np
import pandas as pd

from filterfit.background import BACKGROUND_MODELS, BackgroundModeler
from filterfit.culling import CullingStrategy
from filterfit.detector import EDSDetector
from filterfit.exceptions import EmptyReferenceError, FilterFitError, RegionOfInterestError
from filterfit.filtered_spectrum import ERROR_SENTINEL, FilteredSpectrum
from filterfit.filters import FILTER_KINDS, create_filter
from filterfit.intervals import Interval, add_interval, extract, validate
from filterfit.least_squares import LinearLeastSquares
from filterfit.peak_search import PeakSearch
from filterfit.roi import RegionOfInterest, RegionOfInterestSet
from filterfit.spectrum import Spectrum
from filterfit.uncertain import UncertainValue, ZERO
from filterfit.xray_data import (
    FAMILY_EDGE, XRayTransitionSet, edge_energy, get_family_transitions,
    get_transition, sorted_elements
)

logger = logging.getLogger(__name__)


MIN_FAMILY_WEIGHT = 0.0101
MIN_BEAM_ENERGY = 1.0e3  # eV
MAX_BEAM_ENERGY = 4.5e5  # eV
PEAK_THRESHOLD = 3.0

# Line whose visibility decides whether a family is fit
_FAMILY_PROBE = (('K', 'Ka1'), ('L', 'La1'), ('M', 'Ma1'))


@dataclass
class FilterFitConfig:
    """Configuration for a filter fit"""
    # Screen out elements without peaks before fitting
    strip_unlikely: bool = True
    # ROIs starting below this energy (eV) get the edge-aware background model
    residual_model_threshold: float = 2.5e3
    culling_strategy: Optional[CullingStrategy] = None

    # Fitting filter
    filter_kind: str = 'top_hat'
    filter_width: Optional[float] = None  # eV, None for the detector FWHM at Mn Ka

    # 'naive' or 'linear'
    background_model: str = 'naive'

    # Thresholds
    scale_tolerance: float = 0.01
    reference_significance: float = 3.0
    likely_threshold: float = 3.0

    def __post_init__(self):
        if self.filter_kind not in FILTER_KINDS:
            raise ValueError(f"Unknown filter kind: {self.filter_kind}")
        if self.filter_width is not None and not self.filter_width > 0.0:
            raise ValueError(f"Filter width must be positive, got {self.filter_width}")
        if self.background_model not in BACKGROUND_MODELS:
            raise ValueError(f"Unknown background model: {self.background_model}")
        if not self.scale_tolerance > 0.0:
            raise ValueError(f"Scale tolerance must be positive, got {self.scale_tolerance}")
        if self.culling_strategy is not None and not isinstance(self.culling_strategy, CullingStrategy):
            raise TypeError(f"Not a culling strategy: {self.culling_strategy!r}")


class ReferenceEntry:
    """
    One filtered reference: an element, one of its ROIs and the current k-ratio

    The peak integral and the background-subtracted ROI spectrum are computed
    on first use and kept until invalidated.
    """

    def __init__(self, filtered: FilteredSpectrum):
        self.filtered = filtered
        self.k_ratio: UncertainValue = ZERO
        self._peak_integral: Optional[float] = None
        self._roi_spectrum: Optional[Spectrum] = None

    @property
    def element(self) -> str:
        return self.filtered.element

    @property
    def roi(self) -> RegionOfInterest:
        return self.filtered.roi

    @property
    def transition_set(self) -> XRayTransitionSet:
        return self.filtered.transition_set

    @property
    def spectrum(self) -> Spectrum:
        """The raw reference spectrum"""
        return self.filtered.spectrum

    @property
    def normalization(self) -> float:
        return self.filtered.normalization

    @property
    def non_zero_interval(self) -> Interval:
        return self.filtered.non_zero_interval

    @property
    def peak_integral(self) -> float:
        """Background-corrected reference counts in the ROI"""
        if self._peak_integral is None:
            self._peak_integral = BackgroundModeler.background_corrected_integral(
                self.spectrum, self.roi.low_energy, self.roi.high_energy
            )[0]
        return self._peak_integral

    def roi_spectrum(self, detector: EDSDetector, model_threshold: float, model: str) -> Spectrum:
        if self._roi_spectrum is None:
            self._roi_spectrum = BackgroundModeler.roi_spectrum(
                self.spectrum, self.roi, detector, model_threshold, model
            )
        return self._roi_spectrum

    def invalidate_roi_spectrum(self):
        self._roi_spectrum = None

    def __str__(self):
        return f"Filtered[{self.spectrum}, {self.roi}]"


class KRatioSet:
    """K-ratios keyed by transition set"""

    def __init__(self, values: Optional[Dict[XRayTransitionSet, UncertainValue]] = None):
        self._values: Dict[XRayTransitionSet, UncertainValue] = dict(values or {})

    def add(self, transition_set: XRayTransitionSet, k_ratio: UncertainValue):
        self._values[transition_set] = k_ratio

    def get(self, transition_set: XRayTransitionSet, default=None) -> Optional[UncertainValue]:
        return self._values.get(transition_set, default)

    def __getitem__(self, transition_set):
        return self._values[transition_set]

    def __contains__(self, transition_set):
        return transition_set in self._values

    def __iter__(self):
        return iter(sorted(self._values))

    def __len__(self):
        return len(self._values)

    def items(self) -> List[Tuple[XRayTransitionSet, UncertainValue]]:
        return [(xrts, self._values[xrts]) for xrts in sorted(self._values)]

    @property
    def elements(self) -> List[str]:
        return sorted_elements(xrts.element for xrts in self._values)

    def for_element(self, element: str) -> 'KRatioSet':
        return KRatioSet({x: v for x, v in self._values.items() if x.element == element})

    def non_zero(self) -> 'KRatioSet':
        """The k-ratios with a non-zero value"""
        return KRatioSet({x: v for x, v in self._values.items() if v.value != 0.0})

    def optimal(self, element: str) -> Optional[Tuple[XRayTransitionSet, UncertainValue]]:
        """
        The most significant k-ratio for an element

        Returns:
            (transition set, k-ratio), or None when the element has no k-ratios
        """
        best = None
        best_sig = -math.inf
        for xrts, kr in self.for_element(element).items():
            sig = kr.significance
            if math.isnan(sig):
                sig = -math.inf
            if best is None or sig > best_sig:
                best = (xrts, kr)
                best_sig = sig
        return best

    def to_dataframe(self) -> pd.DataFrame:
        """One row per transition set: element, lines, k-ratio and uncertainty"""
        rows = []
        for xrts, kr in self.items():
            heaviest = xrts.heaviest()
            rows.append({
                'element': xrts.element,
                'line': heaviest.name if heaviest else '',
                'transitions': str(xrts),
                'k_ratio': kr.value,
                'sigma': kr.sigma,
            })
        return pd.DataFrame(rows, columns=['element', 'line', 'transitions', 'k_ratio', 'sigma'])

    def __str__(self):
        return "{" + ", ".join(f"{x}: {v}" for x, v in self.items()) + "}"


def _replace_nan(data: np.ndarray) -> np.ndarray:
    """NaN samples take the previous sample's value (0 at the start)"""
    data = data.copy()
    for i in range(len(data)):
        if math.isnan(data[i]):
            data[i] = data[i - 1] if i > 0 else 0.0
    return data


def _replace_nan_or_small(data: np.ndarray) -> np.ndarray:
    """NaN or non-positive errors take the previous error (a huge error at the start)"""
    data = data.copy()
    for i in range(len(data)):
        if math.isnan(data[i]) or data[i] < 1.0e-100:
            data[i] = data[i - 1] if i > 0 else ERROR_SENTINEL
    return data


class FilterFit:
    """
    Filter-fit of an unknown spectrum against per-element reference spectra

    Results are computed by perform(), which runs only when something has
    changed since the last fit (references, unknown or options).
    """

    def __init__(self, detector: EDSDetector, beam_energy: float, config: Optional[FilterFitConfig] = None):
        """
        Args:
            detector: Detector whose calibration every spectrum must share
            beam_energy: Beam energy in eV
            config: Fit options (defaults if None)
        """
        if not (MIN_BEAM_ENERGY < beam_energy < MAX_BEAM_ENERGY):
            raise FilterFitError(f"Beam energy {beam_energy:g} eV is out of range")
        self.detector = detector
        self.beam_energy = float(beam_energy)
        self.config = config or FilterFitConfig()
        width = self.config.filter_width or detector.fwhm_at_mnka
        self.filter = create_filter(self.config.filter_kind, width, detector.channel_width)
        self._entries: List[ReferenceEntry] = []
        self._solver = LinearLeastSquares()
        self._unknown: Optional[FilteredSpectrum] = None
        self._explicitly_zero: Set[str] = set()
        self._strip_unlikely = self.config.strip_unlikely
        self._residual_model_threshold = self.config.residual_model_threshold
        self._culling_strategy = self.config.culling_strategy
        self._background_model = self.config.background_model
        self._dirty = True
        self.iteration_count = 0
        self.removal_history: List[FrozenSet[str]] = []

    def _mark_dirty(self):
        self._dirty = True

    def _check_spectrum(self, spectrum: Spectrum) -> float:
        """
        Raises IncompatibleSpectrumError for a foreign energy scale or a
        missing dose

        Returns:
            The spectrum's dose (nA*s)
        """
        self.detector.check_spectrum_scale(spectrum, self.config.scale_tolerance)
        return spectrum.dose

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    # ----- references -----

    def _visible_transitions(self, element: str, reference: Spectrum) -> XRayTransitionSet:
        """Lines of each family whose edge lies inside the reference's energy span and below the beam energy"""
        e_min = reference.min_energy_for_channel(reference.smallest_nonzero_channel())
        e_max = reference.max_energy_for_channel(reference.num_channels)
        lines = []
        for family, probe in _FAMILY_PROBE:
            xrt = get_transition(element, probe)
            if xrt is None or not self.detector.is_visible(xrt, self.beam_energy):
                continue
            edge = edge_energy(element, FAMILY_EDGE[family])
            family_lines = get_family_transitions(element, family, MIN_FAMILY_WEIGHT)
            if edge is not None and e_min < edge < self.beam_energy and edge < e_max and len(family_lines) > 0:
                lines.extend(family_lines)
        return XRayTransitionSet(lines)

    def _filter_reference(self, reference: Spectrum, rois: Iterable[RegionOfInterest],
                          element: str) -> List[ReferenceEntry]:
        entries = []
        for roi in rois:
            bci = BackgroundModeler.background_corrected_integral(reference, roi.low_energy, roi.high_energy)
            if bci[0] / bci[1] > self.config.reference_significance:
                entries.append(ReferenceEntry(FilteredSpectrum(reference, self.filter, element, roi)))
            else:
                logger.debug("Dropping %s for %s: peak is not significant (%.1f sigma)",
                             roi, element, bci[0] / bci[1])
        return entries

    def add_reference(self, element_or_roi: Union[str, RegionOfInterest], reference: Spectrum) -> List[ReferenceEntry]:
        """
        Register a reference spectrum

        With an element, every visible family of the element is split into
        ROIs and each ROI with a significant peak becomes a reference entry,
        replacing any prior entries for the element. With an ROI, that ROI
        alone is added.

        Args:
            element_or_roi: Element symbol or single-element RegionOfInterest
            reference: Reference spectrum

        Returns:
            The entries added

        Raises:
            IncompatibleSpectrumError: If the reference's calibration doesn't match
                the detector or it has no dose
            RegionOfInterestError: If the ROI doesn't hold exactly one element
            EmptyReferenceError: If no ROI of the reference holds a significant peak
        """
        self._check_spectrum(reference)
        if isinstance(element_or_roi, RegionOfInterest):
            roi = element_or_roi
            elements = roi.elements
            if len(elements) != 1:
                raise RegionOfInterestError(f"{roi} must contain lines of exactly one element, not {len(elements)}")
            element = elements[0]
            rois = [roi]
        else:
            element = element_or_roi
            rois = RegionOfInterestSet(self.detector)
            rois.add(self._visible_transitions(element, reference))
        added = self._filter_reference(reference, rois, element)
        if not added:
            raise EmptyReferenceError(f"{reference} has no significant peak for {element}")
        if isinstance(element_or_roi, RegionOfInterest):
            self._entries = [e for e in self._entries if not e.filtered.same_region_of_interest(element, roi)]
        else:
            self._entries = [e for e in self._entries if e.element != element]
        self._entries.extend(added)
        self._mark_dirty()
        logger.info("Added %d reference ROI(s) for %s from %s", len(added), element, reference)
        return added

    def remove_reference(self, element: str):
        """Remove every reference entry for an element"""
        self._entries = [e for e in self._entries if e.element != element]
        self._mark_dirty()

    def force_zero(self, elements: Iterable[str]):
        """Replace the set of elements excluded from the fit by the caller"""
        self._explicitly_zero = set(elements)
        self._mark_dirty()

    @property
    def forced_zero(self) -> Set[str]:
        return set(self._explicitly_zero)

    @property
    def elements(self) -> List[str]:
        """Elements with at least one reference entry"""
        return sorted_elements(e.element for e in self._entries)

    @property
    def transitions(self) -> List[XRayTransitionSet]:
        return sorted({e.transition_set for e in self._entries})

    @property
    def reference_entries(self) -> Tuple[ReferenceEntry, ...]:
        return tuple(self._entries)

    def get_reference(self, transition_set: XRayTransitionSet) -> Optional[Spectrum]:
        """The raw reference spectrum fitting a transition set (None if absent)"""
        for entry in self._entries:
            if entry.transition_set == transition_set:
                return entry.spectrum
        return None

    def get_filtered_spectra(self, element: str) -> List[FilteredSpectrum]:
        return [e.filtered for e in self._entries if e.element == element]

    def get_peak_integral(self, roi: RegionOfInterest) -> float:
        """Background-corrected reference counts for an ROI (0 if no entry has it)"""
        elements = roi.elements
        if len(elements) != 1:
            raise RegionOfInterestError(f"{roi} must contain lines of exactly one element, not {len(elements)}")
        for entry in self._entries:
            if entry.filtered.same_region_of_interest(elements[0], roi):
                return entry.peak_integral
        return 0.0

    # ----- options -----

    @property
    def strip_unlikely(self) -> bool:
        """
        When True, elements whose strongest line doesn't fall in a peak of the
        unknown are removed before fitting. This speeds the fit considerably
        but can drop elements present at trace levels.
        """
        return self._strip_unlikely

    @strip_unlikely.setter
    def strip_unlikely(self, value: bool):
        if self._strip_unlikely != value:
            self._strip_unlikely = value
            self._mark_dirty()

    @property
    def residual_model_threshold(self) -> float:
        return self._residual_model_threshold

    @residual_model_threshold.setter
    def residual_model_threshold(self, value: float):
        if self._residual_model_threshold != value:
            self._residual_model_threshold = value
            for entry in self._entries:
                entry.invalidate_roi_spectrum()

    @property
    def background_model(self) -> str:
        return self._background_model

    @background_model.setter
    def background_model(self, value: str):
        if value not in BACKGROUND_MODELS:
            raise ValueError(f"Unknown background model: {value}")
        if self._background_model != value:
            self._background_model = value
            for entry in self._entries:
                entry.invalidate_roi_spectrum()

    @property
    def culling_strategy(self) -> Optional[CullingStrategy]:
        return self._culling_strategy

    @culling_strategy.setter
    def culling_strategy(self, strategy: Optional[CullingStrategy]):
        if self._culling_strategy is not strategy:
            self._culling_strategy = strategy
            self._solver.clear_zeroed_coefficients()
            self._mark_dirty()

    # ----- fitting -----

    def chi_squared(self, coefficients=None) -> float:
        """Chi-squared of the current iteration's fit for the given coefficients (best fit if None)"""
        return self._solver.chi_squared(coefficients)

    def _update_unknown(self, unknown: Spectrum):
        if self._unknown is None or unknown is not self._unknown.spectrum:
            self._check_spectrum(unknown)
            self._unknown = FilteredSpectrum(unknown, self.filter)
            self._mark_dirty()
        self.perform()

    def perform(self):
        """
        Fit the filtered unknown (a no-op unless something changed)

        Each pass fits the active references, zeroes any that fit negative,
        applies the culling strategy and clamps the k-ratios at zero. Passes
        repeat while references are being dropped.

        Raises:
            FilterFitError: If no unknown spectrum has been specified
        """
        if not self._dirty:
            return
        if self._unknown is None:
            raise FilterFitError("No unknown spectrum has been specified")
        solver = self._solver
        entries = self._entries
        unknown = self._unknown
        solver.clear_zeroed_coefficients()
        remove = set(self._explicitly_zero)
        removed: Set[str] = set()
        if self._strip_unlikely:
            likely = PeakSearch.likely_elements(
                unknown.spectrum, self.detector, self.beam_energy, self.config.likely_threshold
            )
            unlikely = {e.element for e in entries if e.element not in likely}
            if unlikely:
                logger.debug("Stripping unlikely elements: %s", sorted_elements(unlikely))
            remove |= unlikely
        for entry in entries:
            entry.k_ratio = ZERO
        vcf = self.filter.variance_correction_factor
        history = []
        iteration = 0
        repeat = True
        while repeat:
            repeat = False
            iteration += 1
            removed |= remove
            cover = ()
            for j, entry in enumerate(entries):
                if entry.element in removed:
                    solver.zero_fit_coefficient(j, True)
                if not solver.is_zero_fit_coefficient(j):
                    cover = add_interval(cover, entry.non_zero_interval)
            remove = set()
            validate(cover)
            y = _replace_nan(extract(unknown.filtered_data, cover))
            errs = _replace_nan_or_small(extract(unknown.errors, cover))
            design = np.zeros((len(y), len(entries)))
            for j, entry in enumerate(entries):
                design[:, j] = _replace_nan(extract(entry.filtered.filtered_data, cover))
            solver.set_data(y, errs, design)
            params = solver.results()
            # Schamber in "X-Ray Fluorescence Analysis of Environmental Samples" (T. Dzubay, ed.)
            for j, entry in enumerate(entries):
                if not solver.is_zero_fit_coefficient(j):
                    uv = params[j]
                    entry.k_ratio = UncertainValue(uv.value, math.sqrt(vcf * uv.variance))
                    if uv.value < 0.0:
                        solver.zero_fit_coefficient(j, True)
                        repeat = True
            if self._culling_strategy is not None:
                remove |= self._culling_strategy.propose(self, params)
            for entry in entries:
                if entry.element in remove or entry.element in removed:
                    entry.k_ratio = UncertainValue(0.0, entry.k_ratio.sigma)
                entry.k_ratio = entry.k_ratio.nonnegative()
            repeat = repeat or not remove <= removed
            history.append(frozenset(removed | remove))
            logger.debug("Iteration %d: %d active reference(s) over %d channel(s), removing %s",
                         iteration, solver.non_zeroed_count, len(y), sorted(remove - removed))
            if solver.non_zeroed_count == 0:
                logger.info("Every reference has been removed from the fit of %s", unknown.spectrum)
                break
        self.iteration_count = iteration
        self.removal_history = history
        self._dirty = False
        logger.info("Filter fit of %s finished after %d iteration(s)", unknown.spectrum, iteration)

    # ----- results -----

    def get_k_ratios(self, unknown: Spectrum) -> KRatioSet:
        """
        Fit the unknown (if necessary) and return the k-ratios

        Args:
            unknown: The unknown spectrum

        Returns:
            KRatioSet with one entry per reference transition set
        """
        self._update_unknown(unknown)
        result = KRatioSet()
        for entry in self._entries:
            result.add(entry.transition_set, entry.k_ratio)
        return result

    def get_fit_event_count(self, unknown: Spectrum, strip: Optional[Iterable[str]] = None) -> float:
        """
        Number of X-ray events in the unknown explained by the fit

        Args:
            unknown: The unknown spectrum
            strip: Elements to leave out of the count (None for none)
        """
        self._update_unknown(unknown)
        strip = set(strip) if strip is not None else set()
        unk_norm = self._unknown.normalization
        total = 0.0
        for entry in self._entries:
            if entry.element not in strip:
                norm = max(0.0, entry.k_ratio.value) * (entry.normalization / unk_norm)
                if norm > 0.0:
                    total += norm * entry.peak_integral
        return total

    def get_fit_metric(self, unknown: Spectrum) -> float:
        """
        Fraction of the unknown's peak counts the fit leaves unexplained

        Returns:
            0.0 for a perfect fit up to 1.0 for a terrible one
        """
        self._update_unknown(unknown)
        peak_counts = 0.0
        for lo, hi in PeakSearch.peak_rois(unknown, self.detector, PEAK_THRESHOLD):
            peak_counts += BackgroundModeler.background_corrected_integral(
                unknown, unknown.min_energy_for_channel(lo), unknown.max_energy_for_channel(hi)
            )[0]
        explained = self.get_fit_event_count(unknown)
        if peak_counts == 0.0:
            return 0.0 if explained == 0.0 else 1.0
        return min(1.0, abs(1.0 - explained / peak_counts))

    def get_residual_spectrum(self, unknown: Spectrum, elements: Optional[Iterable[str]] = None) -> Spectrum:
        """
        The unknown less the background-subtracted references scaled by their k-ratios

        Args:
            unknown: The unknown spectrum
            elements: Only subtract these elements (all if None)
        """
        self._update_unknown(unknown)
        elements = set(elements) if elements is not None else None
        unk_norm = self._unknown.normalization
        counts = unknown.counts.copy()
        for entry in self._entries:
            norm = max(0.0, entry.k_ratio.value * (entry.normalization / unk_norm))
            if norm > 0.0 and (elements is None or entry.element in elements):
                roi_spec = entry.roi_spectrum(self.detector, self._residual_model_threshold, self._background_model)
                counts -= norm * roi_spec.counts
        result = unknown.with_counts(counts, name=f"Residual[{unknown}]")
        result.metadata['comment'] = f"Filter = {self.filter}"
        return result

    def get_filtered_residual(self, unknown: Spectrum) -> Spectrum:
        """
        The filtered unknown less the filtered references scaled by their
        k-ratios. Large structure here points at elements missing from the fit.
        """
        self._update_unknown(unknown)
        data = self._unknown.filtered_data.copy()
        for entry in self._entries:
            data -= max(0.0, entry.k_ratio.value) * entry.filtered.filtered_data
        return unknown.with_counts(data, name=f"Filtered residual[{unknown}]")

    def __repr__(self):
        return (f"FilterFit({self.detector.name}, E0={self.beam_energy:g} eV, "
                f"{len(self._entries)} reference(s), filter={self.filter})")
