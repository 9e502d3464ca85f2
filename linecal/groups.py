"""
Doppler groups: measurements that share a kinematic path.

A kinematic path is the ordered list of bodies a line's Doppler shift derives
from, e.g. "sun->jupiter->earth" for sunlight reflected by Jupiter. With
`generic_object=True` the observation's own target is replaced by the
placeholder "object", so the same kind of line from different targets lands
in one group. Template paths may name a target directly; any target seen in
the measurements is normalised the same way when they are looked up.

Group keys are small integers handed out by a `GroupRegistry`. A registry is
built for one run and thrown away afterwards; keys are never persisted.
"""

from typing import Dict, Iterable, Optional, Tuple

import numpy as np
import pandas as pd

from .errors import InputError

GENERIC_OBJECT = 'object'
PATH_SEPARATOR = '->'

KIND_TERRESTRIAL = 'terrestrial'
KIND_OBJECT = 'object'
KIND_SOURCE = 'source'


def parse_path(path) -> Tuple[str, ...]:
    """Split a path string ("sun->object->earth" or "sun,object,earth")."""
    if isinstance(path, (tuple, list)):
        parts = [str(p) for p in path]
    else:
        text = str(path).replace(',', PATH_SEPARATOR)
        parts = text.split(PATH_SEPARATOR)
    parts = tuple(p.strip().lower() for p in parts if p.strip())
    if not parts:
        raise InputError(f"Empty kinematic path: {path!r}")
    return parts


def normalize_path(path, obj: Optional[str] = None, generic_object: bool = True) -> Tuple[str, ...]:
    """Parse a path and, if requested, replace the specific object by 'object'."""
    parts = parse_path(path)
    if generic_object and obj is not None and str(obj).strip():
        name = str(obj).strip().lower()
        parts = tuple(GENERIC_OBJECT if p == name else p for p in parts)
    return parts


def format_path(parts: Iterable[str]) -> str:
    return PATH_SEPARATOR.join(parts)


def path_kind(parts: Tuple[str, ...], objects: Iterable[str] = ()) -> str:
    """Classify a normalised path; `objects` are target names kept unnormalised."""
    if parts == ('earth',):
        return KIND_TERRESTRIAL
    if parts[0] == GENERIC_OBJECT or parts[0] in objects:
        return KIND_OBJECT
    return KIND_SOURCE


class GroupRegistry:
    """
    Run-local mapping between normalised kinematic paths and group keys.

    `objects` holds the observed target names. Paths looked up without an
    explicit object (template paths) have any of these names replaced by the
    placeholder when `generic_object` is set.
    """

    def __init__(self, paths: Iterable[Tuple[str, ...]] = (), generic_object: bool = True,
                 objects: Iterable[str] = ()):
        self.generic_object = generic_object
        self.objects = frozenset(str(o).strip().lower() for o in objects if str(o).strip())
        self._keys: Dict[Tuple[str, ...], int] = {}
        self._paths: Dict[int, Tuple[str, ...]] = {}
        for parts in sorted(set(paths)):
            self._register(parts)

    def _register(self, parts: Tuple[str, ...]) -> int:
        key = len(self._keys)
        self._keys[parts] = key
        self._paths[key] = parts
        return key

    @classmethod
    def from_table(cls, table: pd.DataFrame, generic_object: bool = True) -> 'GroupRegistry':
        """Build a fresh registry from the paths present in a measurement table."""
        rows = _measured_rows(table)
        objects = _objects(rows)
        registry = cls(generic_object=generic_object, objects=[o for o in objects if o is not None])
        paths = {registry._normalize(p, o) for p, o in zip(rows['path'], objects)}
        return cls(paths, generic_object=generic_object, objects=registry.objects)

    def _normalize(self, path, obj: Optional[str]) -> Tuple[str, ...]:
        parts = normalize_path(path, obj, self.generic_object)
        if obj is None and self.generic_object:
            parts = tuple(GENERIC_OBJECT if p in self.objects else p for p in parts)
        return parts

    def key(self, path, obj: Optional[str] = None) -> int:
        """Group key for a path, registering it if unseen."""
        parts = self._normalize(path, obj)
        if parts not in self._keys:
            return self._register(parts)
        return self._keys[parts]

    def lookup(self, path, obj: Optional[str] = None) -> Optional[int]:
        """Group key for a path, or None if it is not registered."""
        return self._keys.get(self._normalize(path, obj))

    def path(self, key: int) -> Tuple[str, ...]:
        return self._paths[key]

    def kind(self, key: int) -> str:
        return path_kind(self._paths[key], self.objects)

    def label(self, key: int) -> str:
        return f"group {key} ({format_path(self._paths[key])})"

    @property
    def keys(self):
        return sorted(self._paths)

    def __len__(self):
        return len(self._keys)

    def __contains__(self, key):
        return key in self._paths


def _objects(table: pd.DataFrame):
    if 'object' in table.columns:
        return [None if pd.isna(o) else o for o in table['object']]
    return [None] * len(table)


def _measured_rows(table: pd.DataFrame) -> pd.DataFrame:
    if 'sentinel' in table.columns:
        return table[~table['sentinel'].astype(bool)]
    return table


def assign_groups(table: pd.DataFrame, generic_object: bool = True):
    """
    Attach a fresh `group` column to a measurement table.

    Any `group` column already present is discarded: it may come from an
    earlier run with an incompatible numbering. Sentinel rows get group -1.

    Returns:
        (table copy with 'group' column, GroupRegistry)
    """
    registry = GroupRegistry.from_table(table, generic_object=generic_object)
    out = table.copy()
    groups = np.full(len(table), -1, dtype=int)
    measured = np.ones(len(table), dtype=bool)
    if 'sentinel' in table.columns:
        measured = ~table['sentinel'].astype(bool).to_numpy()
    rows = table[measured]
    groups[measured] = [registry.key(p, o) for p, o in zip(rows['path'], _objects(rows))]
    out['group'] = groups
    return out, registry
