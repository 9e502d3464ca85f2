"""
Robust Statistics & Prior Updater
=================================

Turns a table of repeated line-parameter measurements into an updated prior
template.

For every (Doppler group, physical line) pair:
    1. Line-level filter chain: not inactive, reduced chi-square, Doppler,
       neighbour separation.
    2. Per parameter: finite and not inactive, then not pegged at the
       previous template limits.
    3. With at least `min_good_samples` survivors the parameter becomes
       active with value = median and limits = median +/- std; otherwise it
       is marked no-opinion and left alone.

The Doppler residual is measured and reported but never written back: it
is degenerate with the line centre fitted at the same time.

After the last line of a group the Gaussian and Lorentzian widths are pooled
over the whole group (mean, with the mean individual error as spread, or the
largest error for terrestrial groups) and every template line of the group
gets mean +/- 2 spread, clipped at zero. Object groups are measurement
targets: their Lorentzian width is pinned to zero, both widths are fixed and
the equivalent width is only required to be non-negative.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from . import filters
from .config import LinecalConfig, get_config
from .errors import InputError
from .groups import KIND_OBJECT, KIND_TERRESTRIAL, GroupRegistry, assign_groups
from .measurements import ACTIVE, INACTIVE, NO_OPINION, PARAMS, line_tuples, prepare_table
from .priors import PriorTemplate
from .review import Command, Navigator

log = logging.getLogger(__name__)

WIDTH_PARAMS = ('gwidth', 'lwidth')


@dataclass
class ParamUpdate:
    param: str
    n_good: int
    median: float = np.nan
    std: float = np.nan
    status: int = NO_OPINION
    written: bool = False
    values: np.ndarray = field(default_factory=lambda: np.array([]))
    errors: np.ndarray = field(default_factory=lambda: np.array([]))


@dataclass
class LineUpdate:
    group: int
    rest_wavelength: float
    template_indices: List[int]
    n_obs: int
    n_line_good: int
    params: Dict[str, ParamUpdate] = field(default_factory=dict)
    doppler_median: float = np.nan
    doppler_std: float = np.nan
    notes: List[str] = field(default_factory=list)


@dataclass
class GroupWidths:
    group: int
    kind: str
    param: str
    n: int
    mean: float = np.nan
    spread: float = np.nan
    applied: bool = False


@dataclass
class PriorUpdateResult:
    template: PriorTemplate
    registry: GroupRegistry
    updates: List[LineUpdate]
    group_widths: List[GroupWidths]
    notes: List[str]
    aborted: bool = False


@dataclass
class _Pair:
    group: int
    rest_wavelength: float
    rows: np.ndarray          # (n_obs, 4) row indices
    template_indices: List[int]


# =============================================================================
# PER-LINE STATISTICS
# =============================================================================

def _note(notes: List[str], message: str):
    notes.append(message)
    log.info(message)


def _line_filter(table: pd.DataFrame, rows: np.ndarray, config: LinecalConfig,
                 context: str) -> filters.FilterResult:
    """Line-level filter chain over the observations of one line."""
    center = rows[:, 0]
    status = table['status'].to_numpy()[rows]
    chi2 = table['chi2'].to_numpy(dtype=float)[center]
    dres = table['doppler_residual'].to_numpy(dtype=float)[center]
    derr = table['doppler_error'].to_numpy(dtype=float)[center]
    sep = table['neighbor_offset'].to_numpy(dtype=float)[center]

    keep = config.min_cut_survivors
    r = filters.apply(np.any(status != INACTIVE, axis=1), filters.start(len(rows)))
    r = filters.apply_or_keep(filters.chi2_cut(chi2, config.chi2_cut), r, keep,
                              'chi-square cut', context)
    r = filters.apply_or_keep(filters.doppler_cut(dres, derr, config.doppler_cut), r, keep,
                              'Doppler cut', context)
    r = filters.apply_or_keep(filters.separation_cut(sep, config.separation_cut), r, keep,
                              'separation cut', context)
    return r


def update_line(table: pd.DataFrame, pair: _Pair, template: PriorTemplate,
                config: LinecalConfig, context: str) -> LineUpdate:
    """Filter one line's measurements and write its parameter statistics."""
    rows = pair.rows
    update = LineUpdate(group=pair.group, rest_wavelength=pair.rest_wavelength,
                        template_indices=list(pair.template_indices),
                        n_obs=len(rows), n_line_good=0)
    lines = [template.lines[i] for i in pair.template_indices]

    r = _line_filter(table, rows, config, context)
    update.n_line_good = r.n_good

    # Doppler residual: diagnostics only
    dres = table['doppler_residual'].to_numpy(dtype=float)[rows[r.good, 0]]
    dres = dres[np.isfinite(dres)]
    if dres.size >= 2:
        update.doppler_median = float(np.median(dres))
        update.doppler_std = float(np.std(dres, ddof=1))
        log.info("%s: Doppler residual %.4g +/- %.4g (n=%d, not written)",
                 context, update.doppler_median, update.doppler_std, dres.size)

    if r.n_good < 2:
        _note(update.notes, f"{context}: only {r.n_good} of {r.n_total} observations "
                            f"survive the line cuts; all parameters left as no-opinion")
        for name in PARAMS:
            update.params[name] = ParamUpdate(param=name, n_good=r.n_good)
            for line in lines:
                line.params[name].status = NO_OPINION
        return update

    values = table['value'].to_numpy(dtype=float)
    errors = table['error'].to_numpy(dtype=float)
    status = table['status'].to_numpy()

    for k, name in enumerate(PARAMS):
        col = rows[:, k]
        vals, errs = values[col], errors[col]
        rp = filters.apply(np.isfinite(vals) & (status[col] != INACTIVE), r)
        previous_limits = lines[0].params[name].limits
        rp = filters.apply_or_keep(
            filters.close_to_bound_cut(vals, previous_limits, config.close_to_bound_fraction),
            rp, config.min_cut_survivors, f'{name} close-to-bound cut', context)

        good_vals, good_errs = vals[rp.good], errs[rp.good]
        pu = ParamUpdate(param=name, n_good=rp.n_good, values=good_vals, errors=good_errs)
        if rp.n_good >= 2:
            pu.median = float(np.median(good_vals))
            pu.std = float(np.std(good_vals, ddof=1))

        if rp.n_good < config.min_good_samples:
            pu.status = NO_OPINION
            _note(update.notes, f"{context}: {name} has {rp.n_good} good samples "
                                f"(< {config.min_good_samples}); left unaltered")
            for line in lines:
                line.params[name].status = NO_OPINION
        else:
            pu.status = ACTIVE
            pu.written = True
            for line in lines:
                prior = line.params[name]
                prior.status = ACTIVE
                prior.value = pu.median
                prior.limits = (pu.median - pu.std, pu.median + pu.std)
        update.params[name] = pu

    return update


# =============================================================================
# GROUP-LEVEL WIDTHS
# =============================================================================

def update_group_widths(group: int, updates: List[LineUpdate], template: PriorTemplate,
                        registry: GroupRegistry, config: LinecalConfig,
                        notes: Optional[List[str]] = None) -> List[GroupWidths]:
    """Pool the widths of a group's lines and write them to all its template lines."""
    notes = notes if notes is not None else []
    kind = registry.kind(group)
    label = registry.label(group)
    indices = [i for i, line in enumerate(template.lines) if registry.lookup(line.path) == group]

    results = []
    for name in WIDTH_PARAMS:
        vals = np.concatenate([u.params[name].values for u in updates if name in u.params]
                              or [np.array([])])
        errs = np.concatenate([u.params[name].errors for u in updates if name in u.params]
                              or [np.array([])])
        gw = GroupWidths(group=group, kind=kind, param=name, n=int(vals.size))
        if vals.size >= config.min_good_samples:
            # Mean rather than median: few points make the median too coarse
            gw.mean = float(np.mean(vals))
            finite_errs = np.abs(errs[np.isfinite(errs)])
            if finite_errs.size == 0:
                gw.spread = 0.0
            elif kind == KIND_TERRESTRIAL:
                gw.spread = float(np.max(finite_errs))
            else:
                gw.spread = float(np.mean(finite_errs))
            gw.applied = True
            for i in indices:
                prior = template.lines[i].params[name]
                prior.value = gw.mean
                prior.limits = (max(0.0, gw.mean - 2 * gw.spread), gw.mean + 2 * gw.spread)
                prior.status = ACTIVE
        else:
            _note(notes, f"{label}: {name} pooled over {vals.size} samples "
                         f"(< {config.min_good_samples}); group width left unaltered")
        results.append(gw)

    if kind == KIND_OBJECT:
        for i in indices:
            params = template.lines[i].params
            params['lwidth'].value = 0.0
            params['lwidth'].limits = (0.0, 0.0)
            params['lwidth'].fixed = True
            params['gwidth'].fixed = True
            params['ew'].limits = (0.0, np.inf)
    return results


# =============================================================================
# DRIVER
# =============================================================================

def _describe(update: LineUpdate, registry: GroupRegistry) -> str:
    lines = [f"{registry.label(update.group)} | line {update.rest_wavelength:.4f} | "
             f"{update.n_line_good}/{update.n_obs} observations pass line cuts"]
    for name, pu in update.params.items():
        state = 'active' if pu.status == ACTIVE else 'no-opinion'
        lines.append(f"  {name:7s} n={pu.n_good:3d} median={pu.median:.6g} "
                     f"std={pu.std:.3g} -> {state}")
    if np.isfinite(update.doppler_median):
        lines.append(f"  doppler median={update.doppler_median:.4g} "
                     f"std={update.doppler_std:.3g} (diagnostic)")
    return "\n".join(lines)


def _collect_pairs(table: pd.DataFrame, tuples: np.ndarray, template: PriorTemplate,
                   registry: GroupRegistry, notes: List[str]) -> List[_Pair]:
    center = tuples[:, 0]
    groups = table['group'].to_numpy()[center]
    waves = table['rest_wavelength'].to_numpy(dtype=float)[center]
    keys = np.round(waves, 6)

    pairs = []
    for group in sorted(set(groups.tolist())):
        in_group = groups == group
        for wave in sorted(set(keys[in_group].tolist())):
            sel = in_group & (keys == wave)
            t_idx = template.find(wave, lambda path, g=group: registry.lookup(path) == g)
            if not t_idx:
                message = (f"{registry.label(group)}, line {wave:.4f}: no template entry; "
                           f"{int(sel.sum())} observations skipped")
                notes.append(message)
                log.warning(message)
                continue
            pairs.append(_Pair(group=int(group), rest_wavelength=float(wave),
                               rows=tuples[sel], template_indices=t_idx))
    return pairs


def update_priors(measurements: pd.DataFrame, baseline: PriorTemplate,
                  config: LinecalConfig = None, reviewer=None,
                  interactive: bool = False) -> PriorUpdateResult:
    """
    Run the full quality-control pass and return an updated template copy.

    Args:
        measurements: Measurement table (see linecal.measurements)
        baseline: Baseline template; never modified
        config: Configuration (default: global config)
        reviewer: Callable(description) -> Command used when interactive
        interactive: Pause after every line for a review command

    Returns:
        PriorUpdateResult. `aborted` is True when the reviewer quit early;
        the template then holds everything processed before the quit.
    """
    config = config or get_config()
    config.validate()

    table = prepare_table(measurements)
    tuples = line_tuples(table)
    table, registry = assign_groups(table, generic_object=config.generic_object)
    template = baseline.copy()
    notes: List[str] = []

    pairs = _collect_pairs(table, tuples, template, registry, notes)
    if not pairs:
        raise InputError("No (group, line) pair of the measurement table matches the template")

    nav = Navigator(len(pairs), interactive=interactive)
    snapshots: Dict[int, list] = {}
    updates: Dict[int, LineUpdate] = {}
    group_widths: Dict[int, List[GroupWidths]] = {}

    while not nav.done:
        pos = nav.position
        pair = pairs[pos]
        if pos in snapshots:
            for i, snap in zip(pair.template_indices, snapshots[pos]):
                template.restore_line(i, snap)
        else:
            snapshots[pos] = [template.snapshot_line(i) for i in pair.template_indices]

        context = f"{registry.label(pair.group)}, line {pair.rest_wavelength:.4f}"
        update = update_line(table, pair, template, config, context)
        updates[pos] = update
        notes.extend(update.notes)

        command = nav.ask(reviewer, _describe(update, registry))
        last_in_group = pos == len(pairs) - 1 or pairs[pos + 1].group != pair.group
        nav.step(command)

        if command in (Command.NEXT, Command.RUN) and last_in_group:
            members = [updates[p] for p in range(len(pairs))
                       if pairs[p].group == pair.group and p in updates]
            group_widths[pair.group] = update_group_widths(
                pair.group, members, template, registry, config, notes)

    if nav.quit:
        log.warning("Review quit at item %d of %d; later groups skipped",
                    nav.position + 1, len(pairs))

    return PriorUpdateResult(
        template=template,
        registry=registry,
        updates=[updates[p] for p in sorted(updates)],
        group_widths=[gw for g in sorted(group_widths) for gw in group_widths[g]],
        notes=notes,
        aborted=nav.quit,
    )
