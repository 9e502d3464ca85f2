"""
Prior line-parameter template.

A template lists, for every physical line and kinematic path, the value,
two-sided limits, fixed flag and status of each line parameter. A run works on
a deep copy of an immutable baseline and writes it back only when asked.

JSON layout:

    {"lines": [
        {"rest_wavelength": 6300.304, "path": "earth",
         "params": {"center": {"value": 6300.3, "limits": [6300.2, 6300.4],
                               "fixed": false, "status": 0},
                    "ew": {...}, "gwidth": {...}, "lwidth": {...}}}
    ]}
"""

import copy
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import numpy as np

from .errors import InputError
from .measurements import NO_OPINION, PARAMS

WAVELENGTH_TOLERANCE = 1e-4


@dataclass
class ParamPrior:
    value: float
    limits: Tuple[float, float] = (-np.inf, np.inf)
    fixed: bool = False
    status: int = NO_OPINION

    def to_dict(self) -> dict:
        return {'value': float(self.value),
                'limits': [float(self.limits[0]), float(self.limits[1])],
                'fixed': bool(self.fixed),
                'status': int(self.status)}

    @classmethod
    def from_dict(cls, d: dict) -> 'ParamPrior':
        limits = d.get('limits') or [None, None]
        lo = -np.inf if limits[0] is None else float(limits[0])
        hi = np.inf if limits[1] is None else float(limits[1])
        return cls(value=float(d['value']), limits=(lo, hi),
                   fixed=bool(d.get('fixed', False)),
                   status=int(d.get('status', NO_OPINION)))


@dataclass
class LinePrior:
    rest_wavelength: float
    path: str
    params: Dict[str, ParamPrior] = field(default_factory=dict)

    def __post_init__(self):
        missing = [p for p in PARAMS if p not in self.params]
        if missing:
            raise InputError(f"Template line {self.rest_wavelength} ({self.path}) "
                             f"lacks parameters {missing}")


class PriorTemplate:
    """Mutable collection of LinePrior entries."""

    def __init__(self, lines: Optional[List[LinePrior]] = None):
        self.lines: List[LinePrior] = list(lines or [])

    # -------------------------------------------------------------------------
    # Construction / persistence
    # -------------------------------------------------------------------------

    def copy(self) -> 'PriorTemplate':
        """Deep copy; a run mutates the copy, never the baseline."""
        return PriorTemplate(copy.deepcopy(self.lines))

    @classmethod
    def from_dict(cls, data: dict) -> 'PriorTemplate':
        try:
            entries = data['lines']
        except (KeyError, TypeError) as e:
            raise InputError("Template has no 'lines' list") from e
        lines = []
        for entry in entries:
            params = {name: ParamPrior.from_dict(p) for name, p in entry['params'].items()}
            lines.append(LinePrior(rest_wavelength=float(entry['rest_wavelength']),
                                   path=str(entry['path']), params=params))
        return cls(lines)

    def to_dict(self) -> dict:
        return {'lines': [
            {'rest_wavelength': float(line.rest_wavelength),
             'path': line.path,
             'params': {name: line.params[name].to_dict() for name in PARAMS}}
            for line in self.lines
        ]}

    @classmethod
    def load(cls, path) -> 'PriorTemplate':
        path = Path(path)
        if not path.exists():
            raise InputError(f"Template not found: {path}")
        with open(path) as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise InputError(f"Template {path} is not valid JSON: {e}") from e
        return cls.from_dict(data)

    def save(self, path):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def find(self, rest_wavelength: float, path_matches) -> List[int]:
        """Indices of lines at `rest_wavelength` whose path satisfies `path_matches(path)`."""
        return [i for i, line in enumerate(self.lines)
                if abs(line.rest_wavelength - rest_wavelength) <= WAVELENGTH_TOLERANCE
                and path_matches(line.path)]

    def snapshot_line(self, index: int) -> LinePrior:
        return copy.deepcopy(self.lines[index])

    def restore_line(self, index: int, snapshot: LinePrior):
        self.lines[index] = copy.deepcopy(snapshot)

    def __len__(self):
        return len(self.lines)

    def __iter__(self):
        return iter(self.lines)
