"""
File I/O handler for EDS spectra and filter-fit results
"""

import numpy as np
import pandas as pd
from pathlib import Path

from filterfit.fitting import KRatioSet
from filterfit.spectrum import Spectrum
from filterfit.utils.spectrum_loader import load_csv_spectrum, load_spectrum as load_emsa_spectrum


class IOHandler:
    """Handler for loading and saving spectra and k-ratios"""

    def load_spectrum(self, file_path: str, **csv_options) -> Spectrum:
        """
        Load spectrum from file

        Args:
            file_path: Path to spectrum file
            **csv_options: Calibration and dose for CSV files (see load_csv_spectrum)

        Returns:
            Spectrum object

        Raises:
            ValueError: If file format is not supported
        """
        file_path = Path(file_path)
        suffix = file_path.suffix.lower()

        if suffix in ['.msa', '.emsa', '.txt']:
            return load_emsa_spectrum(file_path)
        elif suffix == '.csv':
            return load_csv_spectrum(file_path, **csv_options)
        else:
            raise ValueError(f"Unsupported file format: {suffix}")

    def save_spectrum(self, spectrum: Spectrum, file_path: str, format: str = 'auto'):
        """
        Save spectrum to file

        Args:
            spectrum: Spectrum object to save
            file_path: Output file path
            format: 'msa', 'csv' or 'auto' to detect from extension
        """
        file_path = Path(file_path)

        if format == 'auto':
            format = 'csv' if file_path.suffix.lower() == '.csv' else 'msa'

        if format == 'msa':
            self._save_emsa_spectrum(spectrum, file_path)
        elif format == 'csv':
            self._save_csv_spectrum(spectrum, file_path)
        else:
            raise ValueError(f"Unsupported save format: {format}")

    def _save_emsa_spectrum(self, spectrum: Spectrum, file_path: Path):
        """Save spectrum as EMSA/MSA Y data with energies in eV"""
        header = [
            ('FORMAT', 'EMSA/MAS Spectral Data File'),
            ('VERSION', '1.0'),
            ('TITLE', spectrum.name),
            ('NPOINTS', spectrum.num_channels),
            ('NCOLUMNS', 1),
            ('XUNITS', 'eV'),
            ('YUNITS', 'counts'),
            ('DATATYPE', 'Y'),
            ('XPERCHAN', spectrum.channel_width),
            ('OFFSET', spectrum.zero_offset),
            ('LIVETIME', spectrum.live_time),
            ('REALTIME', spectrum.real_time),
            ('PROBECUR', spectrum.probe_current),
        ]
        if spectrum.beam_energy is not None:
            header.append(('BEAMKV', spectrum.beam_energy / 1000.0))
        with open(file_path, 'w') as f:
            for key, value in header:
                f.write(f"#{key:<13}: {value}\n")
            f.write("#SPECTRUM    : Spectral Data Starts Here\n")
            for value in spectrum.counts:
                f.write(f"{value:.6g}\n")
            f.write("#ENDOFDATA   : \n")

    def _save_csv_spectrum(self, spectrum: Spectrum, file_path: Path):
        """Save spectrum as CSV file"""
        df = pd.DataFrame({
            'Energy (eV)': spectrum.energy,
            'Counts': spectrum.counts
        })
        df.to_csv(file_path, index=False)

    def export_k_ratios(self, k_ratios: KRatioSet, file_path: str, name: str = ''):
        """
        Export k-ratios to CSV

        Args:
            k_ratios: Results of FilterFit.get_k_ratios
            file_path: Output file path
            name: Unknown spectrum name stored in a leading 'spectrum' column
        """
        df = k_ratios.to_dataframe()
        if name:
            df.insert(0, 'spectrum', name)
        df.to_csv(Path(file_path), index=False)

    def export_results(self, results: list, file_path: str):
        """
        Export one row per result dictionary (batch k-ratios, fit metrics)

        Args:
            results: List of result dictionaries
            file_path: Output file path
        """
        df = pd.DataFrame(results)
        df = df.replace([np.inf, -np.inf], np.nan)
        df.to_csv(Path(file_path), index=False)
