"""
Per-directory table of dispersion coefficients.

Accepted solutions are keyed by observation day. Rows can be re-edited
(`override`), rejected (`exclude`) or flagged by a batch pass that compares
each coefficient set with its neighbours in time (`mark_outliers`). Saving
drops excluded and flagged rows unless asked to keep them.

CSV layout:
    obs_day, file, ref_pixel, c0, c1, ..., n_lines, rms, overridden, excluded, outlier
"""

import logging
from pathlib import Path
from typing import Dict, List

import numpy as np
import pandas as pd

from .dispersion import DispersionSolution
from .errors import InputError

log = logging.getLogger(__name__)

MAD_TO_SIGMA = 1.4826


class CoefficientTable:
    """Dispersion solutions indexed by observation day."""

    def __init__(self):
        self.rows: Dict[float, dict] = {}

    def add(self, obs_day: float, file: str, solution: DispersionSolution,
            n_lines: int = 0, rms: float = np.nan):
        obs_day = float(obs_day)
        if obs_day in self.rows:
            log.warning("Replacing solution for day %.5f (%s) with %s",
                        obs_day, self.rows[obs_day]['file'], file)
        self.rows[obs_day] = {
            'obs_day': obs_day,
            'file': str(file),
            'ref_pixel': float(solution.ref_pixel),
            'coeffs': np.array(solution.coeffs, dtype=float),
            'n_lines': int(n_lines),
            'rms': float(rms),
            'overridden': False,
            'excluded': False,
            'outlier': False,
        }

    def _row(self, obs_day: float) -> dict:
        try:
            return self.rows[float(obs_day)]
        except KeyError:
            raise InputError(f"No solution recorded for day {obs_day}") from None

    def override(self, obs_day: float, coeffs):
        """Replace the coefficients of one row by hand."""
        row = self._row(obs_day)
        row['coeffs'] = np.atleast_1d(np.asarray(coeffs, dtype=float))
        row['overridden'] = True
        row['outlier'] = False

    def exclude(self, obs_day: float, excluded: bool = True):
        self._row(obs_day)['excluded'] = bool(excluded)

    def solution(self, obs_day: float) -> DispersionSolution:
        row = self._row(obs_day)
        return DispersionSolution(row['coeffs'], row['ref_pixel'])

    @property
    def days(self) -> List[float]:
        return sorted(self.rows)

    def __len__(self):
        return len(self.rows)

    def __contains__(self, obs_day):
        return float(obs_day) in self.rows

    # -------------------------------------------------------------------------
    # Batch outlier marking
    # -------------------------------------------------------------------------

    def _coefficient_matrix(self, days) -> np.ndarray:
        width = max(len(self.rows[d]['coeffs']) for d in days)
        matrix = np.full((len(days), width), np.nan)
        for i, d in enumerate(days):
            c = self.rows[d]['coeffs']
            matrix[i, :len(c)] = c
        return matrix

    def mark_outliers(self, neighbor_window: int = 2, cut: float = 3.0) -> List[float]:
        """
        Flag coefficient sets inconsistent with their neighbours in time.

        For each non-excluded row, every coefficient is compared with the median
        of up to `neighbor_window` rows on each side. A row is flagged when any
        deviation exceeds `cut` robust sigmas (1.4826 * MAD of that coefficient
        over all rows). Coefficients with zero spread are not tested. Overridden
        rows serve as neighbours but are never flagged.

        Returns:
            Observation days flagged in this pass
        """
        days = [d for d in self.days if not self.rows[d]['excluded']]
        for d in self.rows:
            self.rows[d]['outlier'] = False
        if len(days) < 3:
            return []

        matrix = self._coefficient_matrix(days)
        med = np.nanmedian(matrix, axis=0)
        sigma = MAD_TO_SIGMA * np.nanmedian(np.abs(matrix - med), axis=0)

        flagged = []
        for i, d in enumerate(days):
            if self.rows[d]['overridden']:
                continue
            lo, hi = max(0, i - neighbor_window), min(len(days), i + neighbor_window + 1)
            neighbors = np.delete(matrix[lo:hi], i - lo, axis=0)
            if len(neighbors) < 2:
                continue
            dev = np.abs(matrix[i] - np.nanmedian(neighbors, axis=0))
            testable = np.isfinite(dev) & (sigma > 0)
            if np.any(dev[testable] > cut * sigma[testable]):
                self.rows[d]['outlier'] = True
                flagged.append(d)
                log.warning("Day %.5f (%s) deviates from its neighbours", d, self.rows[d]['file'])
        return flagged

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def to_frame(self, keep_flagged: bool = True) -> pd.DataFrame:
        days = [d for d in self.days
                if keep_flagged or not (self.rows[d]['excluded'] or self.rows[d]['outlier'])]
        columns = ['obs_day', 'file', 'ref_pixel']
        if not days:
            return pd.DataFrame(columns=columns + ['c0', 'n_lines', 'rms',
                                                   'overridden', 'excluded', 'outlier'])
        matrix = self._coefficient_matrix(days)
        records = []
        for d, coeffs in zip(days, matrix):
            row = self.rows[d]
            rec = {k: row[k] for k in columns}
            rec.update({f'c{k}': v for k, v in enumerate(coeffs)})
            rec.update({k: row[k] for k in ('n_lines', 'rms', 'overridden', 'excluded', 'outlier')})
            records.append(rec)
        return pd.DataFrame(records)

    def save(self, path, keep_flagged: bool = False) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.to_frame(keep_flagged=keep_flagged).to_csv(path, index=False)
        return path

    @classmethod
    def load(cls, path) -> 'CoefficientTable':
        path = Path(path)
        if not path.exists():
            raise InputError(f"Coefficient table not found: {path}")
        df = pd.read_csv(path)
        coeff_cols = sorted((c for c in df.columns if c[0] == 'c' and c[1:].isdigit()),
                            key=lambda c: int(c[1:]))
        if 'obs_day' not in df.columns or not coeff_cols:
            raise InputError(f"{path} is not a coefficient table")

        table = cls()
        for _, r in df.iterrows():
            coeffs = r[coeff_cols].to_numpy(dtype=float)
            coeffs = coeffs[:int(np.max(np.flatnonzero(np.isfinite(coeffs)), initial=0)) + 1]
            table.add(r['obs_day'], r.get('file', ''),
                      DispersionSolution(coeffs, r.get('ref_pixel', 0.0)),
                      n_lines=int(r.get('n_lines', 0)), rms=r.get('rms', np.nan))
            row = table.rows[float(r['obs_day'])]
            for flag in ('overridden', 'excluded', 'outlier'):
                row[flag] = bool(r.get(flag, False))
        return table
