"""
Spectrum and atlas file loading.

Atlas: one wavelength per line, no header; blank lines and '#' comments are
ignored.

Spectra: CSV files with a 'flux' column (or a single unnamed column) in one
directory. An optional 'observations.csv' manifest with columns file, obs_day
supplies observation days; without it files are ordered by name and numbered
0..n-1.
"""

import logging
from pathlib import Path
from typing import List, Tuple

import numpy as np
import pandas as pd

from .errors import AtlasError, InputError

log = logging.getLogger(__name__)

MANIFEST_NAME = 'observations.csv'


def load_atlas(path) -> np.ndarray:
    """Read an atlas line list; returns sorted wavelengths."""
    path = Path(path)
    if not path.exists():
        raise AtlasError(f"Atlas file not found: {path}")

    waves = []
    with open(path) as f:
        for lineno, raw in enumerate(f, 1):
            text = raw.split('#', 1)[0].strip()
            if not text:
                continue
            try:
                waves.append(float(text))
            except ValueError:
                raise AtlasError(f"{path}:{lineno}: not a wavelength: {raw.strip()!r}") from None

    atlas = np.sort(np.array(waves, dtype=float))
    if atlas.size == 0:
        raise AtlasError(f"Atlas file {path} contains no wavelengths")
    if not np.all(np.isfinite(atlas)):
        raise AtlasError(f"Atlas file {path} contains non-finite wavelengths")
    return atlas


def load_spectrum(path) -> np.ndarray:
    """Flux array of one spectrum CSV."""
    path = Path(path)
    if not path.exists():
        raise InputError(f"Spectrum not found: {path}")

    try:
        spec = pd.read_csv(path)
    except pd.errors.EmptyDataError:
        raise InputError(f"Spectrum {path} is empty") from None

    if 'flux' in spec.columns:
        flux = spec['flux']
    elif spec.shape[1] == 1:
        # Headerless single column: the first value was read as the header
        spec = pd.read_csv(path, header=None)
        flux = spec.iloc[:, 0]
    else:
        raise InputError(f"Spectrum {path} has no 'flux' column")

    flux = pd.to_numeric(flux, errors='coerce').to_numpy(dtype=float)
    if flux.size == 0:
        raise InputError(f"Spectrum {path} is empty")
    return flux


def discover_spectra(directory) -> List[Tuple[Path, float]]:
    """
    Spectra in `directory` with their observation days, sorted by day.

    Returns:
        List of (path, obs_day)
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise InputError(f"Not a directory: {directory}")

    manifest = directory / MANIFEST_NAME
    if manifest.exists():
        obs = pd.read_csv(manifest)
        missing = {'file', 'obs_day'} - set(obs.columns)
        if missing:
            raise InputError(f"{manifest} lacks columns {sorted(missing)}")
        entries = []
        for _, row in obs.iterrows():
            path = directory / str(row['file'])
            if not path.exists():
                log.warning("Manifest lists missing file %s", path)
            entries.append((path, float(row['obs_day'])))
        return sorted(entries, key=lambda e: e[1])

    files = sorted(p for p in directory.glob('*.csv') if p.name != MANIFEST_NAME)
    return [(p, float(i)) for i, p in enumerate(files)]
