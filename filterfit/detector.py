"""
EDS detector calibration and resolution model

The resolution model is the standard detector form

    FWHM(E) = sqrt(FWHM_0^2 + 2.355^2 * epsilon * E)

anchored so that FWHM(Mn Ka) equals the configured resolution. It is used to
size the fitting filter and the regions of interest around each line.
"""

import json
import math
from dataclasses import dataclass, asdict
from typing import Dict

from filterfit.exceptions import IncompatibleSpectrumError
from filterfit.xray_data import (
    FAMILIES, XRayTransition, XRayTransitionSet, edge_energy, get_family_transitions
)


MN_KA_ENERGY = 5898.7  # eV
FWHM_TO_SIGMA = 2.354820045


@dataclass
class EDSDetector:
    """
    Energy calibration and resolution of an energy-dispersive detector

    Attributes:
        channel_count: Number of channels
        channel_width: eV per channel
        zero_offset: Energy of the low edge of channel 0 (eV)
        fwhm_at_mnka: Resolution at Mn Ka (eV)
        fano: Fano factor
        ev_per_pair: Mean energy per electron-hole pair (eV)
        min_energy: Lowest line energy the detector can see (eV)
        name: Display name
    """
    channel_count: int = 2048
    channel_width: float = 10.0
    zero_offset: float = 0.0
    fwhm_at_mnka: float = 130.0
    fano: float = 0.12
    ev_per_pair: float = 3.64
    min_energy: float = 100.0
    name: str = "EDS"

    def __post_init__(self):
        if self.channel_count <= 0:
            raise ValueError(f"Channel count must be positive, got {self.channel_count}")
        if not self.channel_width > 0.0:
            raise ValueError(f"Channel width must be positive, got {self.channel_width}")
        if not self.fwhm_at_mnka > 0.0:
            raise ValueError(f"FWHM at Mn Ka must be positive, got {self.fwhm_at_mnka}")

    @property
    def epsilon(self) -> float:
        """Fano factor times energy per pair (eV)"""
        return self.fano * self.ev_per_pair

    @property
    def fwhm_0(self) -> float:
        """Electronic noise contribution (eV)"""
        noise2 = self.fwhm_at_mnka ** 2 - FWHM_TO_SIGMA ** 2 * self.epsilon * MN_KA_ENERGY
        return math.sqrt(max(0.0, noise2))

    def predict_fwhm(self, energy: float) -> float:
        """
        Predict FWHM at given energy

        Args:
            energy: Photon energy in eV

        Returns:
            FWHM in eV
        """
        return math.sqrt(self.fwhm_0 ** 2 + FWHM_TO_SIGMA ** 2 * self.epsilon * max(energy, 0.0))

    def gaussian_width(self, energy: float, fraction: float) -> float:
        """
        Half-width at which a line at energy falls to fraction of its height

        Args:
            energy: Line energy in eV
            fraction: Fraction of the peak height (clipped into (0, 1))

        Returns:
            Half-width in eV
        """
        fraction = min(max(fraction, 1.0e-300), 1.0)
        sigma = self.predict_fwhm(energy) / FWHM_TO_SIGMA
        return sigma * math.sqrt(-2.0 * math.log(fraction))

    def channel_for_energy(self, energy: float) -> int:
        return int(math.floor((energy - self.zero_offset) / self.channel_width))

    def energy_for_channel(self, channel: int) -> float:
        return self.zero_offset + channel * self.channel_width

    def is_visible(self, transition: XRayTransition, beam_energy: float) -> bool:
        """
        Can this line be excited by the beam and detected?

        Args:
            transition: X-ray line
            beam_energy: Beam energy in eV
        """
        if transition.energy < self.min_energy:
            return False
        edge = edge_energy(transition.element, transition.shell)
        if edge is None:
            edge = transition.energy
        return edge < beam_energy

    def visible_transitions(self, element: str, beam_energy: float,
                            min_weight: float = 0.0) -> XRayTransitionSet:
        """All visible lines of an element at this beam energy"""
        lines = []
        for family in FAMILIES:
            for xrt in get_family_transitions(element, family, min_weight):
                if self.is_visible(xrt, beam_energy):
                    lines.append(xrt)
        return XRayTransitionSet(lines)

    def check_spectrum_scale(self, spectrum, tolerance: float = 0.01):
        """
        Verify that a spectrum shares this detector's energy calibration

        Args:
            spectrum: Spectrum to check
            tolerance: Fractional tolerance

        Raises:
            IncompatibleSpectrumError: If channel width or zero offset differ
        """
        if abs(spectrum.channel_width - self.channel_width) > self.channel_width * tolerance:
            raise IncompatibleSpectrumError(
                f"The channel widths for {spectrum} and {self.name} don't match "
                f"({spectrum.channel_width:g} eV vs {self.channel_width:g} eV)"
            )
        span = spectrum.num_channels * spectrum.channel_width
        if abs(spectrum.zero_offset - self.zero_offset) > span * tolerance:
            raise IncompatibleSpectrumError(
                f"The zero offsets for {spectrum} and {self.name} don't match "
                f"({spectrum.zero_offset:g} eV vs {self.zero_offset:g} eV)"
            )

    def to_dict(self) -> Dict:
        """Convert to dictionary for JSON serialization"""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> 'EDSDetector':
        """Create from dictionary"""
        return cls(**data)

    def save(self, filepath: str):
        """Save detector calibration to JSON file"""
        with open(filepath, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, filepath: str) -> 'EDSDetector':
        """Load detector calibration from JSON file"""
        with open(filepath, 'r') as f:
            data = json.load(f)
        return cls.from_dict(data)

    def __repr__(self):
        return (f"EDSDetector(name={self.name!r}, channels={self.channel_count}, "
                f"{self.channel_width:g} eV/ch, FWHM(Mn Ka)={self.fwhm_at_mnka:.1f} eV)")
