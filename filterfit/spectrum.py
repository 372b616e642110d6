"""
Spectrum data class for EDS analysis
"""

import math
import numpy as np
from dataclasses import dataclass, field
from typing import Optional, Dict, Any

from filterfit.exceptions import IncompatibleSpectrumError


@dataclass(eq=False)
class Spectrum:
    """
    Container for an energy-dispersive X-ray spectrum

    Energies are in eV. Channel i spans
    [zero_offset + i*channel_width, zero_offset + (i+1)*channel_width).

    Attributes:
        counts: Counts in each channel
        channel_width: Energy width of a channel in eV
        zero_offset: Energy of the low edge of channel 0 in eV
        live_time: Acquisition live time in seconds
        real_time: Acquisition real time in seconds
        probe_current: Average probe current in nA
        beam_energy: Incident beam energy in eV (None if unknown)
        name: Display name
        metadata: Additional metadata dictionary
    """
    counts: np.ndarray
    channel_width: float = 10.0
    zero_offset: float = 0.0
    live_time: float = 60.0
    real_time: float = 60.0
    probe_current: float = 1.0
    beam_energy: Optional[float] = None
    name: str = "Spectrum"
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Validate spectrum data after initialization"""
        self.counts = np.asarray(self.counts, dtype=np.float64)

        if self.counts.ndim != 1:
            raise ValueError("Counts must be a one-dimensional array")

        if len(self.counts) == 0:
            raise ValueError("Spectrum cannot be empty")

        if not self.channel_width > 0.0:
            raise ValueError(f"Channel width must be positive, got {self.channel_width}")

    @property
    def num_channels(self):
        """Return number of channels in spectrum"""
        return len(self.counts)

    @property
    def energy(self):
        """Energy of the low edge of each channel in eV"""
        return self.zero_offset + self.channel_width * np.arange(self.num_channels)

    @property
    def total_counts(self):
        """Return total counts in spectrum"""
        return float(np.sum(self.counts))

    @property
    def dose(self):
        """
        Electron dose (live time * probe current) in nA*s

        Raises:
            IncompatibleSpectrumError: If live time or probe current is unavailable
        """
        if not (self.probe_current and self.probe_current > 0.0):
            raise IncompatibleSpectrumError(f"The probe current is unavailable for {self.name}")
        if not (self.live_time and self.live_time > 0.0):
            raise IncompatibleSpectrumError(f"The live-time is unavailable for {self.name}")
        return self.live_time * self.probe_current

    def channel_for_energy(self, energy):
        """Channel containing the specified energy (may fall outside the spectrum)"""
        return int(math.floor((energy - self.zero_offset) / self.channel_width))

    def bound(self, channel):
        """Clamp a channel index to [0, num_channels)"""
        return min(max(channel, 0), self.num_channels - 1)

    def min_energy_for_channel(self, channel):
        return self.zero_offset + channel * self.channel_width

    def max_energy_for_channel(self, channel):
        return self.zero_offset + (channel + 1) * self.channel_width

    def smallest_nonzero_channel(self):
        """Index of the first channel with positive counts (0 if none)"""
        nz = np.flatnonzero(self.counts > 0.0)
        return int(nz[0]) if len(nz) > 0 else 0

    def scaled(self, factor, name=None):
        """Return a copy with the counts multiplied by factor"""
        result = self.copy()
        result.counts = result.counts * factor
        if name is not None:
            result.name = name
        return result

    def with_counts(self, counts, name=None):
        """Return a spectrum sharing this calibration and acquisition data"""
        return Spectrum(
            counts=np.asarray(counts, dtype=np.float64).copy(),
            channel_width=self.channel_width,
            zero_offset=self.zero_offset,
            live_time=self.live_time,
            real_time=self.real_time,
            probe_current=self.probe_current,
            beam_energy=self.beam_energy,
            name=name if name is not None else self.name,
            metadata=self.metadata.copy()
        )

    def copy(self):
        """Create a deep copy of the spectrum"""
        return self.with_counts(self.counts)

    def to_dict(self):
        """Convert spectrum to dictionary for serialization"""
        return {
            'counts': self.counts.tolist(),
            'channel_width': self.channel_width,
            'zero_offset': self.zero_offset,
            'live_time': self.live_time,
            'real_time': self.real_time,
            'probe_current': self.probe_current,
            'beam_energy': self.beam_energy,
            'name': self.name,
            'metadata': self.metadata
        }

    @classmethod
    def from_dict(cls, data):
        """Create spectrum from dictionary"""
        return cls(
            counts=np.array(data['counts']),
            channel_width=data.get('channel_width', 10.0),
            zero_offset=data.get('zero_offset', 0.0),
            live_time=data.get('live_time', 60.0),
            real_time=data.get('real_time', 60.0),
            probe_current=data.get('probe_current', 1.0),
            beam_energy=data.get('beam_energy'),
            name=data.get('name', 'Spectrum'),
            metadata=data.get('metadata', {})
        )

    def __str__(self):
        return self.name

    def __repr__(self):
        return (f"Spectrum(name={self.name!r}, channels={self.num_channels}, "
                f"channel_width={self.channel_width:g} eV, "
                f"total_counts={self.total_counts:.0f})")
