"""
Line association: extracted line centres -> atlas wavelengths.

Two phases:
    1. Anchor search - shift the zero-order coefficient of the guess so one
       (line, atlas) pairing is exact; keep the shift that leaves the smallest
       total squared distance over all lines.
    2. Greedy assignment - repeatedly take the smallest remaining
       (prediction, atlas) distance, then drop that row and column.

Matches whose residual exceeds median + cut * mean absolute deviation are
rejected; they are reported but not used by the dispersion fit.
"""

import logging
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np

from .config import LinecalConfig, get_config
from .dispersion import DispersionSolution
from .errors import InputError

log = logging.getLogger(__name__)


@dataclass
class Match:
    line: int          # index into the extracted centres
    atlas: int         # index into the atlas
    distance: float    # |predicted - atlas|


@dataclass
class AssociationResult:
    solution: DispersionSolution   # anchor-shifted guess
    shift: float
    anchor: Tuple[int, int]
    matches: List[Match]
    keep: np.ndarray               # per match: survived outlier rejection
    threshold: float
    pixels: np.ndarray             # per match
    wavelengths: np.ndarray        # per match (atlas values)

    @property
    def n_rejected(self) -> int:
        return int(np.sum(~self.keep))

    @property
    def good_pixels(self) -> np.ndarray:
        return self.pixels[self.keep]

    @property
    def good_wavelengths(self) -> np.ndarray:
        return self.wavelengths[self.keep]

    @property
    def distances(self) -> np.ndarray:
        return np.array([m.distance for m in self.matches])


def greedy_assign(predicted, atlas) -> List[Match]:
    """
    Approximate one-to-one assignment of predictions to atlas lines.

    Takes the globally smallest distance, records it and excludes its row
    and column, until every prediction is matched or the atlas runs out.
    """
    predicted = np.asarray(predicted, dtype=float)
    atlas = np.asarray(atlas, dtype=float)
    if predicted.size == 0 or atlas.size == 0:
        return []

    dist = np.abs(predicted[:, None] - atlas[None, :])
    order = np.argsort(dist, axis=None, kind='stable')
    used_rows, used_cols = set(), set()
    matches = []
    n_max = min(predicted.size, atlas.size)
    for flat in order:
        i, j = np.unravel_index(flat, dist.shape)
        if i in used_rows or j in used_cols:
            continue
        matches.append(Match(line=int(i), atlas=int(j), distance=float(dist[i, j])))
        used_rows.add(i)
        used_cols.add(j)
        if len(matches) == n_max:
            break
    matches.sort(key=lambda m: m.line)
    return matches


def _score(predicted, atlas, cap: float) -> float:
    return float(sum(min(m.distance ** 2, cap) for m in greedy_assign(predicted, atlas)))


def anchor_search(centers, atlas, solution: DispersionSolution, window: float):
    """
    Best zero-order shift of `solution`.

    Every (line, atlas) pair closer than `window` in wavelength is a candidate
    anchor; its score is the summed squared greedy-match distance of all lines
    under the shifted solution, each term capped at window**2 so that a single
    unmatched line cannot pick the anchor.

    Returns:
        (shift, (line index, atlas index), score)
    """
    centers = np.asarray(centers, dtype=float)
    atlas = np.asarray(atlas, dtype=float)
    predicted = solution(centers)

    best = None
    for i, w in enumerate(predicted):
        for j in np.flatnonzero(np.abs(atlas - w) <= window):
            shift = float(atlas[j] - w)
            score = _score(predicted + shift, atlas, window ** 2)
            if best is None or score < best[2]:
                best = (shift, (i, int(j)), score)

    if best is None:
        raise InputError(f"No atlas line within {window} of any extracted line; "
                         "check the initial dispersion guess")
    return best


def reject_outliers(residuals, cut: float):
    """
    Keep mask for residuals <= median + cut * mean |residual - median|.

    Returns:
        (keep mask, threshold)
    """
    residuals = np.abs(np.asarray(residuals, dtype=float))
    if residuals.size == 0:
        return np.zeros(0, dtype=bool), np.nan
    med = np.median(residuals)
    threshold = med + cut * np.mean(np.abs(residuals - med))
    return residuals <= threshold, float(threshold)


def associate_lines(centers, atlas, guess: DispersionSolution,
                    config: LinecalConfig = None, name: str = 'spectrum') -> AssociationResult:
    """
    Match extracted line centres (pixels) to atlas wavelengths.

    Parameters:
        centers: Extracted line centres in original detector pixels
        atlas: Reference wavelengths
        guess: Initial dispersion solution
        config: Uses anchor_window and outlier_cut

    Returns:
        AssociationResult; `keep` marks the matches for the dispersion fit
    """
    config = config or get_config()
    centers = np.asarray(centers, dtype=float)
    atlas = np.asarray(atlas, dtype=float)

    shift, anchor, score = anchor_search(centers, atlas, guess, config.anchor_window)
    solution = guess.shifted(shift)
    log.info("%s: anchor line %d -> %.4f, shift %.4f (score %.4g)",
             name, anchor[0], atlas[anchor[1]], shift, score)

    matches = greedy_assign(solution(centers), atlas)
    keep, threshold = reject_outliers([m.distance for m in matches], config.outlier_cut)
    for m, k in zip(matches, keep):
        if not k:
            log.warning("%s: rejecting line at pixel %.2f -> %.4f (residual %.4f > %.4f)",
                        name, centers[m.line], atlas[m.atlas], m.distance, threshold)

    return AssociationResult(
        solution=solution, shift=shift, anchor=anchor, matches=matches,
        keep=np.asarray(keep, dtype=bool), threshold=threshold,
        pixels=np.array([centers[m.line] for m in matches]),
        wavelengths=np.array([atlas[m.atlas] for m in matches]),
    )
