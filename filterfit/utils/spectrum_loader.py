"""
Utility functions for loading EDS spectrum files
"""

import numpy as np
import pandas as pd
from pathlib import Path
from typing import Dict, Tuple

from filterfit.spectrum import Spectrum


# EMSA keywords copied onto Spectrum fields (key -> (field, scale))
_EMSA_FIELDS = {
    'LIVETIME': ('live_time', 1.0),
    'REALTIME': ('real_time', 1.0),
    'BEAMKV': ('beam_energy', 1000.0),  # kV -> eV
    'PROBECUR': ('probe_current', 1.0),
}


def _parse_value(value: str):
    """Convert a header value to int or float where possible"""
    try:
        if '.' in value or 'E' in value.upper():
            return float(value)
        return int(value)
    except ValueError:
        return value  # Keep as string


def read_emsa(filepath: str) -> Tuple[np.ndarray, Dict]:
    """
    Read counts and header from an EMSA/MSA file

    Args:
        filepath: Path to spectrum file (.msa, .emsa, .txt)

    Returns:
        Tuple of (counts, header dict keyed by EMSA keyword without '#')
    """
    filepath = Path(filepath)

    if not filepath.exists():
        raise FileNotFoundError(f"Spectrum file not found: {filepath}")

    with open(filepath, 'r') as f:
        lines = f.readlines()

    header = {}
    data_start = None

    for i, line in enumerate(lines):
        line = line.strip()

        if line.startswith('#SPECTRUM'):
            data_start = i + 1
            break

        if line.startswith('#'):
            parts = line[1:].split(':', 1)
            if len(parts) == 2:
                header[parts[0].strip().upper()] = _parse_value(parts[1].strip())

    if data_start is None:
        raise ValueError("Could not find #SPECTRUM marker in file")

    # XY data holds (energy, count) pairs; Y data holds counts only
    xy = str(header.get('DATATYPE', 'Y')).upper() == 'XY'
    counts = []
    for line in lines[data_start:]:
        line = line.strip()
        if not line or line.startswith('#'):
            continue
        try:
            values = [float(p) for p in line.split(',') if p.strip()]
        except ValueError:
            continue
        if not values:
            continue
        if xy:
            counts.append(values[-1])
        else:
            counts.extend(values)

    if len(counts) == 0:
        raise ValueError("No spectrum data found in file")

    return np.array(counts), header


def load_spectrum(filepath: str) -> Spectrum:
    """
    Load an EDS spectrum from an EMSA/MSA file

    The energy scale (XPERCHAN, OFFSET) is taken as eV when XUNITS is eV
    and as keV otherwise.

    Args:
        filepath: Path to spectrum file

    Returns:
        Spectrum
    """
    counts, header = read_emsa(filepath)
    scale = 1.0 if str(header.get('XUNITS', 'eV')).strip().lower() == 'ev' else 1000.0
    kwargs = {
        'channel_width': float(header.get('XPERCHAN', 0.01 if scale > 1.0 else 10.0)) * scale,
        'zero_offset': float(header.get('OFFSET', 0.0)) * scale,
        'name': str(header.get('TITLE', Path(filepath).stem)),
    }
    for key, (attr, factor) in _EMSA_FIELDS.items():
        if key in header:
            kwargs[attr] = float(header[key]) * factor
    metadata = {'file_path': str(filepath), 'header': header}
    return Spectrum(counts=counts, metadata=metadata, **kwargs)


def load_csv_spectrum(filepath: str, channel_width: float = 10.0, zero_offset: float = 0.0,
                      live_time: float = 60.0, probe_current: float = 1.0) -> Spectrum:
    """
    Load an EDS spectrum from a CSV file

    A column whose name contains 'count' or 'intensity' holds the counts;
    otherwise the last column is used. Calibration and dose are not stored in
    CSV files so they are passed in.

    Args:
        filepath: Path to CSV file
        channel_width: eV per channel
        zero_offset: Energy of channel 0 in eV
        live_time: Live time in seconds
        probe_current: Probe current in nA

    Returns:
        Spectrum
    """
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"Spectrum file not found: {filepath}")

    df = pd.read_csv(filepath)
    counts_col = None
    for col in df.columns:
        col_lower = str(col).lower()
        if 'count' in col_lower or 'intensity' in col_lower:
            counts_col = col

    counts = df[counts_col].values if counts_col is not None else df.iloc[:, -1].values
    return Spectrum(
        counts=counts.astype(float),
        channel_width=channel_width,
        zero_offset=zero_offset,
        live_time=live_time,
        real_time=live_time,
        probe_current=probe_current,
        name=filepath.stem,
        metadata={'file_path': str(filepath)}
    )
