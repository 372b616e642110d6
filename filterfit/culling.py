"""
Culling strategies: statistical tests that remove unsupported elements from
a filter fit

Each strategy looks at the current fit (reference entries, their k-ratios and
the raw fit coefficients) and proposes a set of elements to remove. Strategies
never modify the fit. FilterFit calls propose(), which turns any internal
failure into an empty proposal so one faulty strategy cannot abort a fit.
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Sequence, Set

from filterfit.uncertain import UncertainValue, ZERO, safe_weighted_mean
from filterfit.xray_data import XRayTransitionSet, atomic_number, strongest_transition

logger = logging.getLogger(__name__)


class CullingStrategy(ABC):
    """Base class for strategies proposing elements to drop from a fit"""

    @abstractmethod
    def compute(self, fit, params: Sequence[UncertainValue]) -> Set[str]:
        """
        Elements the fit does not support

        Args:
            fit: The FilterFit being performed
            params: Raw fit coefficients, one per reference entry (zeroed
                entries included)

        Returns:
            Set of element symbols to remove
        """

    def propose(self, fit, params: Sequence[UncertainValue]) -> Set[str]:
        """compute() with failures reported as an empty proposal"""
        try:
            return set(self.compute(fit, params) or ())
        except Exception:
            logger.warning("%s failed; proposing no removals", self, exc_info=True)
            return set()

    def __str__(self):
        return type(self).__name__


def _entries_for(fit, element):
    return [(j, entry) for j, entry in enumerate(fit.reference_entries) if entry.element == element]


class CullByVariance(CullingStrategy):
    """
    Considers all the evidence (fit coefficients) associated with an element
    and keeps only elements whose weighted mean exceeds significance sigma
    """

    def __init__(self, significance: float):
        self.significance = significance

    def compute(self, fit, params):
        remove = set()
        for elm in fit.elements:
            mean = safe_weighted_mean(params[j] for j, _ in _entries_for(fit, elm))
            if not mean.is_nan() and mean.value < self.significance * mean.sigma:
                remove.add(elm)
        return remove

    def __str__(self):
        return f"CullByVariance[{self.significance:g}]"


class CullByChiSquared(CullingStrategy):
    """
    Removes an element when zeroing all its coefficients worsens chi-squared
    by less than a factor of threshold
    """

    def __init__(self, threshold: float = 1.01):
        self.threshold = threshold

    def compute(self, fit, params):
        remove = set()
        checked = set()
        entries = fit.reference_entries
        none = fit.chi_squared()
        for j, entry in enumerate(entries):
            elm = entry.element
            if params[j].value != 0.0 and elm not in checked:
                checked.add(elm)
                dup = [ZERO if e.element == elm else params[i] for i, e in enumerate(entries)]
                if fit.chi_squared(dup) < self.threshold * none:
                    remove.add(elm)
        return remove

    def __str__(self):
        return f"CullByChiSquared[{self.threshold:g}]"


class CullWithinFamily(CullingStrategy):
    """
    Removes an element when a minor line is clearly present but the dominant
    line of the same family is not
    """

    MINOR_LINES = {
        'Ka1': ('Kb1',),
        'La1': ('Lb1', 'Lb2', 'Lg1', 'Lg3', 'Ll'),
        'Ma1': ('Mb', 'Mz1', 'Mg', 'M2N4'),
    }

    def __init__(self, threshold: float = 3.0):
        self.threshold = threshold

    def compute(self, fit, params):
        # (element, line) pairs with solid evidence
        present = set()
        for entry in fit.reference_entries:
            if entry.k_ratio.significance > self.threshold:
                for major, minors in self.MINOR_LINES.items():
                    for name in (major,) + minors:
                        if name in entry.transition_set:
                            present.add((entry.element, name))
        remove = set()
        for elm in fit.elements:
            for major, minors in self.MINOR_LINES.items():
                if any((elm, m) in present for m in minors) and (elm, major) not in present:
                    remove.add(elm)
        return remove


class CullByFamilies(CullingStrategy):
    """
    Removes an element when no family shows adequate signal, or when a
    higher-energy family is visible while the brighter lower family is not
    """

    def __init__(self, threshold: float = 3.0):
        self.threshold = threshold

    def compute(self, fit, params):
        remove = set()
        for elm in fit.elements:
            best = {'Ka1': None, 'La1': None, 'Ma1': None}
            sig = {'Ka1': 0.0, 'La1': 0.0, 'Ma1': 0.0}
            for _, entry in _entries_for(fit, elm):
                for name in best:
                    if name in entry.transition_set:
                        best[name] = entry
                        sig[name] = entry.k_ratio.significance
            k_s, l_s, m_s = sig['Ka1'], sig['La1'], sig['Ma1']
            fp_k, fp_l, fp_m = best['Ka1'], best['La1'], best['Ma1']
            thr = self.threshold
            # no evidence
            if k_s < thr and l_s < thr and m_s < thr:
                remove.add(elm)
            # L visible but the more intense K isn't
            if (fp_l is not None and l_s > thr and fp_k is not None
                    and fp_k.peak_integral > fp_l.peak_integral and k_s < thr):
                remove.add(elm)
            # M visible but the more intense L isn't
            if (fp_l is not None and m_s > thr and fp_m is not None
                    and fp_l.peak_integral > fp_m.peak_integral and l_s < thr):
                remove.add(elm)
        return remove


class CullByOptimal(CullingStrategy):
    """
    Tests only the optimal line of each element: the heaviest line of its
    transition set, or the strongest L3 line for Ge and heavier elements
    whose heaviest line is in the K family (high-Z K lines are often weakly
    excited)
    """

    def __init__(self, sigma: float, transition_sets: Iterable[XRayTransitionSet]):
        self.sigma = sigma
        self.optimal = {}
        ge = atomic_number('Ge')
        for xrts in transition_sets:
            elm = xrts.element
            wt = xrts.heaviest()
            if elm is None or wt is None:
                continue
            if atomic_number(elm) >= ge and wt.family == 'K':
                l3 = strongest_transition(elm, 'L3')
                if l3 is not None:
                    wt = l3
            self.optimal.setdefault(elm, wt)

    def compute(self, fit, params):
        remove = set()
        for elm in fit.elements:
            opt = self.optimal.get(elm)
            if opt is None:
                continue
            for _, entry in _entries_for(fit, elm):
                if opt in entry.transition_set:
                    kr = entry.k_ratio
                    keep = (kr.value > 0.0 and kr.sigma <= 0.0) or \
                        (kr.sigma > 0.0 and max(0.0, kr.value) / kr.sigma > self.sigma)
                    if not keep:
                        remove.add(elm)
                    break
        return remove


class CullByAverageUncertainty(CullingStrategy):
    """
    Keeps an element when one entry exceeds one_above sigma or the entries
    average more than avg_above sigma
    """

    def __init__(self, one_above: float, avg_above: float):
        self.one_above = one_above
        self.avg_above = avg_above

    def compute(self, fit, params):
        remove = set()
        for elm in fit.elements:
            keep = False
            total = 0.0
            cx = 0
            for _, entry in _entries_for(fit, elm):
                kr = entry.k_ratio
                if kr.value != 0.0 and kr.sigma > 0.0:
                    uu = max(0.0, kr.value) / kr.sigma
                    total += uu
                    cx += 1
                    if uu > self.one_above:
                        keep = True
                        break
            if not (keep or cx == 0 or total > self.avg_above * cx):
                remove.add(elm)
        return remove


class CullByBrightest(CullingStrategy):
    """
    Removes an element when its brightest reference line (most reference
    counts) isn't clearly present in the unknown
    """

    def __init__(self, threshold: float):
        self.threshold = threshold

    def compute(self, fit, params):
        remove = set()
        for elm in fit.elements:
            best = None
            for _, entry in _entries_for(fit, elm):
                if best is None or (entry.k_ratio.sigma != 0.0 and entry.peak_integral > best.peak_integral):
                    best = entry
            if best is not None and best.k_ratio.significance < self.threshold:
                remove.add(elm)
        return remove


class SpecialCulling(CullingStrategy):
    """
    Removes a minor element when a trigger element is present with much
    stronger support. Used to suppress known false positives such as an
    escape or sum peak of a major element matching a minor element's line.
    """

    def __init__(self, rules: Optional[Dict[str, str]] = None):
        self._rules: Dict[str, str] = dict(rules or {})

    def add(self, remove: str, when_present: str):
        self._rules[remove] = when_present

    def removed(self, trigger: str) -> Optional[str]:
        """The element removed when trigger is present"""
        for rem, present in self._rules.items():
            if present == trigger:
                return rem
        return None

    def trigger(self, remove: str) -> Optional[str]:
        """The element whose presence removes remove"""
        return self._rules.get(remove)

    def compute(self, fit, params):
        remove = set()
        for rem, present in self._rules.items():
            remove_uvs = []
            present_uvs = []
            for entry in fit.reference_entries:
                kr = entry.k_ratio
                if not math.isnan(kr.fractional_uncertainty):
                    if entry.element == rem:
                        remove_uvs.append(kr)
                    if entry.element == present:
                        present_uvs.append(kr)
            if not remove_uvs or not present_uvs:
                continue
            remove_uv = safe_weighted_mean(remove_uvs)
            present_uv = safe_weighted_mean(present_uvs)
            if remove_uv.value > 0.0:
                present_sn = present_uv.significance
                remove_sn = remove_uv.significance
                if not (math.isnan(present_sn) or math.isnan(remove_sn)):
                    if present_sn > 5.0 * remove_sn and remove_sn < 6.0:
                        remove.add(rem)
        return remove


class DontCull(CullingStrategy):
    """
    Wraps another strategy but never removes an element while any of the
    listed transition sets fits with a positive coefficient
    """

    def __init__(self, base: CullingStrategy, transition_sets: Iterable[XRayTransitionSet]):
        self.base = base
        self.keep = set(transition_sets)

    def compute(self, fit, params):
        remove = self.base.propose(fit, params)
        for j, entry in enumerate(fit.reference_entries):
            if entry.transition_set in self.keep and params[j].value > 0.0:
                remove.discard(entry.element)
        return remove

    def __str__(self):
        return f"DontCull[{self.base}]"


class CompoundCullingStrategy(CullingStrategy):
    """Runs an ordered list of strategies and removes the union of their proposals"""

    def __init__(self, strategies: Iterable[CullingStrategy] = ()):
        self._strategies: List[CullingStrategy] = list(strategies)

    @property
    def strategies(self) -> List[CullingStrategy]:
        return list(self._strategies)

    def compute(self, fit, params):
        remove = set()
        for cs in self._strategies:
            remove |= cs.propose(fit, params)
        return remove

    def prepend(self, strategy: CullingStrategy):
        self._strategies.insert(0, strategy)

    def append(self, strategy: CullingStrategy):
        self._strategies.append(strategy)

    def remove(self, strategy: CullingStrategy):
        if strategy in self._strategies:
            self._strategies.remove(strategy)

    def clear(self):
        self._strategies.clear()

    def __len__(self):
        return len(self._strategies)

    def __str__(self):
        return "Compound[" + ", ".join(str(cs) for cs in self._strategies) + "]"
