"""
Measurement tables: one row per measured line parameter.

Rows for one physical line in one observation form a contiguous 4-tuple in
the fixed order center, ew, gwidth, lwidth. Rows flagged `sentinel` mark the
end of a list and are never used or changed.
"""

from pathlib import Path

import numpy as np
import pandas as pd

from .errors import InputError

PARAMS = ('center', 'ew', 'gwidth', 'lwidth')
TUPLE_SIZE = len(PARAMS)

# Measurement / template status
INACTIVE = -1
NO_OPINION = 0
ACTIVE = 1

REQUIRED_COLUMNS = ('file', 'path', 'rest_wavelength', 'param', 'value', 'error')

DEFAULTS = {
    'obs_day': np.nan,
    'object': None,
    'status': ACTIVE,
    'neighbor_offset': np.inf,
    'chi2': 1.0,
    'doppler_residual': 0.0,
    'doppler_error': 0.0,
    'sentinel': False,
}


def prepare_table(table: pd.DataFrame, source: str = 'measurement table') -> pd.DataFrame:
    """
    Validate a measurement table and fill optional columns with defaults.

    Raises:
        InputError: missing columns, no measured rows, or unknown parameter names
    """
    missing = [c for c in REQUIRED_COLUMNS if c not in table.columns]
    if missing:
        raise InputError(f"{source}: missing required columns {missing}")

    out = table.copy().reset_index(drop=True)
    for col, default in DEFAULTS.items():
        if col not in out.columns:
            out[col] = default
    out['sentinel'] = out['sentinel'].fillna(False).astype(bool)
    out['status'] = out['status'].fillna(ACTIVE).astype(int)

    measured = out[~out['sentinel']]
    if len(measured) == 0:
        raise InputError(f"{source}: no measurements")

    unknown = sorted(set(measured['param']) - set(PARAMS))
    if unknown:
        raise InputError(f"{source}: unknown parameter names {unknown}")
    return out


def load_measurements(path) -> pd.DataFrame:
    """Read a measurement table from CSV."""
    path = Path(path)
    if not path.exists():
        raise InputError(f"Measurement table not found: {path}")
    try:
        table = pd.read_csv(path)
    except pd.errors.EmptyDataError as e:
        raise InputError(f"Measurement table {path} is empty") from e
    return prepare_table(table, source=str(path))


def line_tuples(table: pd.DataFrame) -> np.ndarray:
    """
    Row indices of every measured line as an (n_lines, 4) array.

    Column k holds the row of PARAMS[k]. Sentinel rows are skipped.

    Raises:
        InputError: a line's parameters are not a contiguous, ordered 4-tuple
    """
    measured = np.flatnonzero(~table['sentinel'].to_numpy(dtype=bool))
    if measured.size % TUPLE_SIZE:
        raise InputError(f"{measured.size} measured rows is not a multiple of {TUPLE_SIZE}")

    tuples = measured.reshape(-1, TUPLE_SIZE)
    params = table['param'].to_numpy()
    files = table['file'].to_numpy()
    waves = table['rest_wavelength'].to_numpy(dtype=float)
    for row in tuples:
        if np.any(np.diff(row) != 1):
            raise InputError(f"Parameter tuple at rows {row.tolist()} is interrupted")
        if tuple(params[row]) != PARAMS:
            raise InputError(
                f"Rows {row.tolist()} hold {tuple(params[row])}, expected {PARAMS}"
            )
        if len(set(files[row])) != 1 or np.ptp(waves[row]) != 0:
            raise InputError(f"Rows {row.tolist()} mix different lines or files")
    return tuples


def make_table(records) -> pd.DataFrame:
    """
    Build a measurement table from per-line records.

    Each record is a dict with line-level keys (file, path, rest_wavelength,
    chi2, ...) plus a 'params' mapping of parameter name -> (value, error) or
    (value, error, status). Rows are laid out as contiguous 4-tuples.
    """
    rows = []
    for rec in records:
        base = {k: v for k, v in rec.items() if k != 'params'}
        for name in PARAMS:
            entry = rec['params'][name]
            value, error = entry[0], entry[1]
            status = entry[2] if len(entry) > 2 else ACTIVE
            rows.append({**base, 'param': name, 'value': value, 'error': error,
                         'status': status})
    return prepare_table(pd.DataFrame(rows))
