"""
Regions of interest: energy spans around groups of characteristic lines
"""

from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Optional, Tuple

from filterfit.xray_data import XRayTransition, XRayTransitionSet, sorted_elements


MIN_INTENSITY = 0.9999e-3
EXTRA_LOW = 0.6
EXTRA_HIGH = 0.6


@dataclass(frozen=True)
class RegionOfInterest:
    """
    An energy span [low_energy, high_energy] (eV) and the lines it covers
    """
    low_energy: float
    high_energy: float
    transitions: FrozenSet[XRayTransition] = frozenset()

    def __post_init__(self):
        if self.high_energy < self.low_energy:
            raise ValueError(f"Empty region of interest [{self.low_energy}, {self.high_energy}]")
        object.__setattr__(self, 'transitions', frozenset(self.transitions))

    @property
    def elements(self) -> List[str]:
        return sorted_elements(t.element for t in self.transitions)

    def transition_set(self, element: Optional[str] = None) -> XRayTransitionSet:
        """Lines of one element inside this ROI (the only element if None)"""
        if element is None:
            elms = self.elements
            if len(elms) != 1:
                raise ValueError(f"ROI {self} holds {len(elms)} elements")
            element = elms[0]
        return XRayTransitionSet(t for t in self.transitions if t.element == element)

    def contains(self, energy: float) -> bool:
        return self.low_energy <= energy <= self.high_energy

    def intersects(self, other: 'RegionOfInterest') -> bool:
        return self.low_energy <= other.high_energy and self.high_energy >= other.low_energy

    def merged(self, other: 'RegionOfInterest') -> 'RegionOfInterest':
        return RegionOfInterest(
            min(self.low_energy, other.low_energy),
            max(self.high_energy, other.high_energy),
            self.transitions | other.transitions
        )

    def with_transition(self, transition: XRayTransition) -> 'RegionOfInterest':
        return RegionOfInterest(self.low_energy, self.high_energy, self.transitions | {transition})

    def channel_window(self, spectrum) -> Tuple[int, int]:
        """Bounded channel range [low, high) covered by this ROI in spectrum"""
        low = spectrum.bound(spectrum.channel_for_energy(self.low_energy))
        high = spectrum.bound(spectrum.channel_for_energy(self.high_energy))
        return low, max(high, low + 1)

    def __lt__(self, other):
        return (self.low_energy, self.high_energy) < (other.low_energy, other.high_energy)

    def __str__(self):
        names = ", ".join(str(t) for t in sorted(self.transitions, key=lambda t: t.energy))
        return f"ROI[{self.low_energy:.0f} eV, {self.high_energy:.0f} eV: {names}]"


class RegionOfInterestSet:
    """
    Collects lines into non-overlapping regions of interest

    Each line with weight above min_weight spans its energy plus the detector
    half-width at which the line falls to min_weight/weight of its height,
    extended by extra_low/extra_high. Intersecting spans are merged.
    """

    def __init__(self, detector, min_weight: float = MIN_INTENSITY,
                 extra_low: Optional[float] = None, extra_high: Optional[float] = None):
        self.detector = detector
        self.min_weight = min_weight
        self.extra_low = EXTRA_LOW * detector.fwhm_at_mnka if extra_low is None else extra_low
        self.extra_high = EXTRA_HIGH * detector.fwhm_at_mnka if extra_high is None else extra_high
        self._rois: List[RegionOfInterest] = []

    def span(self, transition: XRayTransition) -> Optional[RegionOfInterest]:
        """The ROI a single line would occupy (None for lines too weak to matter)"""
        if transition.weight <= self.min_weight:
            return None
        half = self.detector.gaussian_width(transition.energy, self.min_weight / transition.weight)
        return RegionOfInterest(
            transition.energy - (half + self.extra_low),
            transition.energy + (half + self.extra_high),
            frozenset([transition])
        )

    def add_transition(self, transition: XRayTransition):
        roi = self.span(transition)
        if roi is not None:
            self.add_roi(roi)
        else:
            self._rois = [r.with_transition(transition) if r.contains(transition.energy) else r
                          for r in self._rois]

    def add(self, transitions: Iterable[XRayTransition]):
        for xrt in transitions:
            self.add_transition(xrt)

    def add_roi(self, new_roi: RegionOfInterest):
        keep = []
        for roi in self._rois:
            if roi.intersects(new_roi):
                new_roi = new_roi.merged(roi)
            else:
                keep.append(roi)
        keep.append(new_roi)
        self._rois = sorted(keep)

    @property
    def elements(self) -> List[str]:
        return sorted_elements(e for roi in self._rois for e in roi.elements)

    def __iter__(self):
        return iter(list(self._rois))

    def __len__(self):
        return len(self._rois)

    def __str__(self):
        return "[" + "; ".join(str(r) for r in self._rois) + "]"
