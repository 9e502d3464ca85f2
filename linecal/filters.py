"""
Robust Filter Chain
===================

Successively narrows a set of measurement indices with boolean cuts.

Each stage is an immutable `FilterResult` holding survivors and rejects in
the index space of the ORIGINAL array, so stages compose as

    r = start(n)
    r = apply(chi2 <= 5, r)
    r = apply(separation >= 0.3, r)

Stage k+1 only ever looks at points that passed stage k. Once a stage
leaves nothing, every later stage leaves nothing and reports every original
index as bad, without evaluating its test.
"""

import logging
from dataclasses import dataclass

import numpy as np

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class FilterResult:
    """Survivors and rejects of one filter stage, in original-index space."""

    good: np.ndarray
    bad: np.ndarray
    n_total: int

    @property
    def n_good(self) -> int:
        return int(self.good.size)

    @property
    def n_bad(self) -> int:
        return int(self.bad.size)

    @property
    def empty(self) -> bool:
        return self.good.size == 0

    def mask(self) -> np.ndarray:
        """Boolean mask of survivors over the original array."""
        m = np.zeros(self.n_total, dtype=bool)
        m[self.good] = True
        return m


def start(n_total: int) -> FilterResult:
    """Initial stage: every index is good."""
    return FilterResult(good=np.arange(n_total, dtype=int),
                        bad=np.array([], dtype=int),
                        n_total=int(n_total))


def _from_good(good: np.ndarray, n_total: int) -> FilterResult:
    good = np.asarray(good, dtype=int)
    bad = np.setdiff1d(np.arange(n_total, dtype=int), good, assume_unique=True)
    return FilterResult(good=good, bad=bad, n_total=n_total)


def apply(test, previous: FilterResult = None) -> FilterResult:
    """
    Apply one boolean cut on top of a previous stage.

    Parameters:
        test: Boolean array aligned either with the original array (length
              n_total) or with the current survivors (length previous.n_good).
              Only the currently good entries are looked at.
        previous: Result of the previous stage (default: everything good)

    Returns:
        New FilterResult; `good` and `bad` are indices into the original array
    """
    test = np.asarray(test)
    if previous is None:
        previous = start(test.size)

    if previous.empty:
        return FilterResult(good=np.array([], dtype=int),
                            bad=np.arange(previous.n_total, dtype=int),
                            n_total=previous.n_total)

    if test.size == previous.n_total:
        passed = test[previous.good]
    elif test.size == previous.n_good:
        passed = test
    else:
        raise ValueError(
            f"Filter test has {test.size} entries; expected {previous.n_total} "
            f"(original) or {previous.n_good} (current survivors)"
        )

    passed = np.asarray(passed, dtype=bool)
    return _from_good(previous.good[passed], previous.n_total)


def apply_or_keep(test, previous: FilterResult, min_survivors: int = 2,
                  label: str = 'cut', context: str = '') -> FilterResult:
    """
    Apply a cut, but keep the previous stage if the cut leaves too few points.

    An already short input is passed through the cut unchanged in behaviour:
    falling back only happens when the cut itself causes the shortfall.
    """
    result = apply(test, previous)
    if result.n_good < min_survivors <= previous.n_good:
        log.warning("%s: %s leaves %d of %d points (< %d); keeping pre-cut set",
                    context or 'filter', label, result.n_good, previous.n_good, min_survivors)
        return previous
    return result


def chain(tests, previous: FilterResult = None) -> FilterResult:
    """Apply a sequence of tests in order."""
    result = previous
    for test in tests:
        result = apply(test, result)
    return result


# =============================================================================
# NAMED CUTS
# =============================================================================
# Each returns a boolean array over the original measurements; NaN metrics
# never pass.

def chi2_cut(chi2, limit: float) -> np.ndarray:
    """Reduced chi-square of the producing fit must not exceed `limit`."""
    chi2 = np.asarray(chi2, dtype=float)
    return np.isfinite(chi2) & (chi2 <= limit)


def doppler_cut(residual, error, limit: float) -> np.ndarray:
    """Doppler residual plus its error must stay within `limit`."""
    residual = np.asarray(residual, dtype=float)
    error = np.asarray(error, dtype=float)
    combined = np.abs(residual) + np.abs(error)
    return np.isfinite(combined) & (combined <= limit)


def separation_cut(neighbor_offset, minimum: float) -> np.ndarray:
    """Line must be at least `minimum` away from its nearest neighbour (inf: no neighbour)."""
    offset = np.abs(np.asarray(neighbor_offset, dtype=float))
    return ~np.isnan(offset) & (offset >= minimum)


def close_to_bound_cut(values, limits, fraction: float) -> np.ndarray:
    """
    Reject values pegged at (or outside) the previous template limits.

    A value passes when it lies at least `fraction * (hi - lo)` inside both
    bounds. Unbounded or degenerate limits impose nothing beyond finiteness.
    """
    values = np.asarray(values, dtype=float)
    lo, hi = float(limits[0]), float(limits[1])
    ok = np.isfinite(values)
    if not (np.isfinite(lo) and np.isfinite(hi)) or hi <= lo:
        return ok
    margin = fraction * (hi - lo)
    return ok & (values - lo >= margin) & (hi - values >= margin)
