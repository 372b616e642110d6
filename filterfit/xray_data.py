"""
X-ray emission line and edge data using xraylib

Energies are returned in eV. Lookups go through lru_cache so every table
entry is read from xraylib once and then shared read-only.
"""

import functools
from dataclasses import dataclass, field
from typing import Iterable, Optional, Tuple

import xraylib as xrl


FAMILIES = ('K', 'L', 'M')

# Siegbahn-style name, IUPAC label, family, ionized shell
LINE_TABLE = (
    ('Ka1', 'KL3', 'K', 'K'),
    ('Ka2', 'KL2', 'K', 'K'),
    ('Kb1', 'KM3', 'K', 'K'),
    ('Kb3', 'KM2', 'K', 'K'),
    ('Kb2', 'KN3', 'K', 'K'),
    ('La1', 'L3M5', 'L', 'L3'),
    ('La2', 'L3M4', 'L', 'L3'),
    ('Lb1', 'L2M4', 'L', 'L2'),
    ('Lb2', 'L3N5', 'L', 'L3'),
    ('Lb3', 'L1M3', 'L', 'L1'),
    ('Lb4', 'L1M2', 'L', 'L1'),
    ('Lg1', 'L2N4', 'L', 'L2'),
    ('Lg3', 'L1N3', 'L', 'L1'),
    ('Ll', 'L3M1', 'L', 'L3'),
    ('Ln', 'L2M1', 'L', 'L2'),
    ('Ma1', 'M5N7', 'M', 'M5'),
    ('Ma2', 'M5N6', 'M', 'M5'),
    ('Mb', 'M4N6', 'M', 'M4'),
    ('Mg', 'M3N5', 'M', 'M3'),
    ('Mz1', 'M5N3', 'M', 'M5'),
    ('M2N4', 'M2N4', 'M', 'M2'),
)

_LINE_BY_NAME = {entry[0]: entry for entry in LINE_TABLE}

# Relative ionization weights (shell occupancy)
_SHELL_OCCUPANCY = {
    'K': 2.0,
    'L1': 2.0, 'L2': 2.0, 'L3': 4.0,
    'M1': 2.0, 'M2': 2.0, 'M3': 4.0, 'M4': 4.0, 'M5': 6.0,
}

# Shell whose edge determines whether a family can be excited
FAMILY_EDGE = {'K': 'K', 'L': 'L3', 'M': 'M5'}

MIN_ATOMIC_NUMBER = 4
MAX_ATOMIC_NUMBER = 92


@dataclass(frozen=True)
class XRayTransition:
    """
    A characteristic X-ray line

    Identity is (element, name); energy and weight ride along.

    Attributes:
        element: Element symbol
        name: Siegbahn-style line name ('Ka1', 'La1', ...)
        iupac: IUPAC label ('KL3', 'L3M5', ...)
        family: 'K', 'L' or 'M'
        shell: Ionized (destination) shell
        energy: Line energy in eV
        weight: Intensity relative to the strongest line in the family
    """
    element: str
    name: str
    iupac: str = field(compare=False, default='')
    family: str = field(compare=False, default='K')
    shell: str = field(compare=False, default='K')
    energy: float = field(compare=False, default=0.0)
    weight: float = field(compare=False, default=1.0)

    def __str__(self):
        return f"{self.element} {self.name}"


class XRayTransitionSet:
    """An immutable, energy-ordered collection of transitions of one element"""

    def __init__(self, transitions: Iterable[XRayTransition] = ()):
        unique = {}
        for xrt in transitions:
            unique[(xrt.element, xrt.name)] = xrt
        self._transitions = tuple(sorted(unique.values(), key=lambda t: (t.energy, t.name)))
        elements = {t.element for t in self._transitions}
        if len(elements) > 1:
            raise ValueError(f"Transition set mixes elements: {sorted(elements)}")
        self._key = frozenset(unique)

    @property
    def element(self) -> Optional[str]:
        return self._transitions[0].element if self._transitions else None

    @property
    def transitions(self) -> Tuple[XRayTransition, ...]:
        return self._transitions

    def find(self, name: str) -> Optional[XRayTransition]:
        for xrt in self._transitions:
            if xrt.name == name:
                return xrt
        return None

    def heaviest(self) -> Optional[XRayTransition]:
        """The transition with the largest family-normalized weight"""
        if not self._transitions:
            return None
        return max(self._transitions, key=lambda t: t.weight)

    def __contains__(self, item):
        if isinstance(item, XRayTransition):
            return (item.element, item.name) in self._key
        return self.find(item) is not None

    def __iter__(self):
        return iter(self._transitions)

    def __len__(self):
        return len(self._transitions)

    def __eq__(self, other):
        return isinstance(other, XRayTransitionSet) and self._key == other._key

    def __hash__(self):
        return hash(self._key)

    def __lt__(self, other):
        return self._sort_key() < other._sort_key()

    def _sort_key(self):
        heaviest = self.heaviest()
        return (atomic_number(self.element) if self.element else 0, heaviest.energy if heaviest else 0.0)

    def __str__(self):
        if not self._transitions:
            return "Empty"
        best = self.heaviest()
        others = len(self._transitions) - 1
        return f"{best}" + (f" + {others} other{'s' if others > 1 else ''}" if others else "")

    def __repr__(self):
        return f"XRayTransitionSet({[str(t) for t in self._transitions]})"


@functools.lru_cache(maxsize=None)
def atomic_number(symbol: str) -> int:
    """Atomic number for an element symbol"""
    return int(xrl.SymbolToAtomicNumber(symbol))


@functools.lru_cache(maxsize=None)
def element_symbol(z: int) -> str:
    return xrl.AtomicNumberToSymbol(z)


def element_sort_key(symbol: str) -> int:
    return atomic_number(symbol)


def sorted_elements(elements: Iterable[str]):
    return sorted(set(elements), key=element_sort_key)


@functools.lru_cache(maxsize=None)
def edge_energy(element: str, shell: str) -> Optional[float]:
    """
    Absorption edge energy in eV

    Returns:
        Edge energy, or None if the shell doesn't exist for the element
    """
    try:
        e = xrl.EdgeEnergy(atomic_number(element), getattr(xrl, f"{shell}_SHELL"))
    except ValueError:
        return None
    return 1000.0 * e if e > 0.0 else None


@functools.lru_cache(maxsize=None)
def _raw_line(element: str, name: str):
    """(energy eV, unnormalized intensity) for a line, or None"""
    entry = _LINE_BY_NAME.get(name)
    if entry is None:
        raise ValueError(f"Unknown X-ray line: {name}")
    _, iupac, _, shell = entry
    z = atomic_number(element)
    macro = getattr(xrl, f"{iupac}_LINE")
    try:
        energy = xrl.LineEnergy(z, macro)
        rate = xrl.RadRate(z, macro)
        yld = xrl.FluorYield(z, getattr(xrl, f"{shell}_SHELL"))
    except ValueError:
        return None
    if energy <= 0.0 or rate <= 0.0:
        return None
    return 1000.0 * energy, rate * yld * _SHELL_OCCUPANCY[shell]


@functools.lru_cache(maxsize=None)
def _family_norm(element: str, family: str) -> float:
    best = 0.0
    for name, _, fam, _ in LINE_TABLE:
        if fam == family:
            raw = _raw_line(element, name)
            if raw is not None:
                best = max(best, raw[1])
    return best


@functools.lru_cache(maxsize=None)
def get_transition(element: str, name: str) -> Optional[XRayTransition]:
    """
    Look up a characteristic line

    Args:
        element: Element symbol
        name: Line name from LINE_TABLE

    Returns:
        XRayTransition, or None if the line doesn't exist for the element
    """
    raw = _raw_line(element, name)
    if raw is None:
        return None
    _, iupac, family, shell = _LINE_BY_NAME[name]
    norm = _family_norm(element, family)
    return XRayTransition(
        element=element,
        name=name,
        iupac=iupac,
        family=family,
        shell=shell,
        energy=raw[0],
        weight=raw[1] / norm if norm > 0.0 else 0.0
    )


@functools.lru_cache(maxsize=None)
def get_family_transitions(element: str, family: str, min_weight: float = 0.0) -> XRayTransitionSet:
    """All lines in a family with weight >= min_weight"""
    lines = []
    for name, _, fam, _ in LINE_TABLE:
        if fam != family:
            continue
        xrt = get_transition(element, name)
        if xrt is not None and xrt.weight >= min_weight:
            lines.append(xrt)
    return XRayTransitionSet(lines)


def strongest_transition(element: str, shell: str) -> Optional[XRayTransition]:
    """The most intense line that ionizes the specified shell"""
    best = None
    for name, _, _, sh in LINE_TABLE:
        if sh == shell:
            xrt = get_transition(element, name)
            if xrt is not None and (best is None or xrt.weight > best.weight):
                best = xrt
    return best
