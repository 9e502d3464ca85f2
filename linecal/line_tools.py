"""
Line Tools - Voigt Profiles and Iterative Line Extraction
========================================================

This module fits an unknown comparison-lamp spectrum as a sum of Voigt
emission profiles on top of a polynomial continuum.

KEY FUNCTIONS:
    1. voigt()                - Area-normalised Voigt profile
    2. multi_voigt()          - Continuum + N Voigt profiles from a flat vector
    3. trim_spectrum()        - Drop non-finite / zero edges, keep detector pixels
    4. expected_line_count()  - How many atlas lines the current guess puts on the chip
    5. extract_lines()        - Greedy residual-peak extraction with joint refits

EXTRACTION APPROACH:
    1. Target count: atlas lines inside the window times the expected fraction
    2. Seed a profile at the maximum of (spectrum - model)
    3. Jointly refit every profile plus the continuum with bounded curve_fit
    4. Stop when reduced chi-square stops improving or the target is reached
    5. One last unbounded joint refit of everything

Profiles are parameterised by (center, gwidth, lwidth, area): centre in
detector pixels, Gaussian FWHM, Lorentzian FWHM and integrated area.
"""

# =============================================================================
# IMPORTS
# =============================================================================
import logging
from dataclasses import dataclass, field
from typing import List

import numpy as np
from scipy.optimize import curve_fit
from scipy.special import voigt_profile

from .config import LinecalConfig, get_config
from .dispersion import DispersionSolution
from .errors import ConvergenceError, InputError

log = logging.getLogger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================
FWHM_TO_SIGMA = 1.0 / (2.0 * np.sqrt(2.0 * np.log(2.0)))
GAUSS_AREA_PER_FWHM = np.sqrt(np.pi / (4.0 * np.log(2.0)))  # area / (height * FWHM)
MIN_GAUSSIAN_WIDTH = 1e-3  # keeps the profile defined when the Lorentzian part is zero
N_LINE_PARAMS = 4


# =============================================================================
# PROFILES
# =============================================================================

def voigt(x, center, gwidth, lwidth, area):
    """Voigt profile with integrated `area`; widths are FWHM."""
    sigma = np.abs(gwidth) * FWHM_TO_SIGMA
    gamma = np.abs(lwidth) / 2.0
    return area * voigt_profile(np.asarray(x, dtype=float) - center, sigma, gamma)


def multi_voigt(x, params, n_cont: int, x_mid: float):
    """
    Polynomial continuum plus Voigt profiles.

    `params` holds n_cont continuum coefficients (lowest order first, in
    x - x_mid) followed by (center, gwidth, lwidth, area) for each line.
    """
    x = np.asarray(x, dtype=float)
    params = np.asarray(params, dtype=float)
    result = np.polynomial.polynomial.polyval(x - x_mid, params[:n_cont])
    n_lines = (len(params) - n_cont) // N_LINE_PARAMS
    for i in range(n_lines):
        idx = n_cont + i * N_LINE_PARAMS
        result = result + voigt(x, *params[idx:idx + N_LINE_PARAMS])
    return result


# =============================================================================
# DATA CONTAINERS
# =============================================================================

@dataclass
class DetectedLine:
    center: float
    gwidth: float
    lwidth: float
    area: float
    center_err: float = np.nan
    gwidth_err: float = np.nan
    lwidth_err: float = np.nan
    area_err: float = np.nan

    def to_dict(self) -> dict:
        return {k: float(v) for k, v in self.__dict__.items()}


@dataclass
class TrimmedSpectrum:
    flux: np.ndarray           # kept samples
    pixels: np.ndarray         # their original detector pixel positions
    first: int                 # first kept index of the original array
    n_original: int
    ref_pixel: float           # reference pixel on the original detector

    @property
    def ref_pixel_trimmed(self) -> float:
        """Reference pixel expressed in trimmed-array coordinates."""
        return self.ref_pixel - self.first


@dataclass
class ExtractionResult:
    lines: List[DetectedLine]
    continuum_coeffs: np.ndarray
    x_mid: float
    spectrum: TrimmedSpectrum
    model: np.ndarray
    reduced_chi2: float
    n_target: int
    n_atlas_in_window: int
    chi2_history: List[float] = field(default_factory=list)

    @property
    def centers(self) -> np.ndarray:
        return np.array([line.center for line in self.lines])

    @property
    def residual(self) -> np.ndarray:
        return self.spectrum.flux - self.model


# =============================================================================
# PREPROCESSING
# =============================================================================

def trim_spectrum(flux, ref_pixel: float = None) -> TrimmedSpectrum:
    """
    Drop leading/trailing samples that are non-finite or exactly zero.

    Pixel positions stay those of the original detector, so the reference
    pixel (default: centre of the untrimmed array) keeps its meaning.
    """
    flux = np.asarray(flux, dtype=float)
    if flux.ndim != 1:
        raise InputError(f"Spectrum must be 1-D, got shape {flux.shape}")
    usable = np.flatnonzero(np.isfinite(flux) & (flux != 0))
    if usable.size == 0:
        raise InputError("Spectrum has no finite, non-zero samples")

    first, last = int(usable[0]), int(usable[-1])
    if ref_pixel is None:
        ref_pixel = (flux.size - 1) / 2.0
    return TrimmedSpectrum(flux=flux[first:last + 1].copy(),
                           pixels=np.arange(first, last + 1, dtype=float),
                           first=first, n_original=flux.size, ref_pixel=float(ref_pixel))


def expected_line_count(atlas, solution: DispersionSolution, pixels, fraction: float):
    """
    Atlas lines that the current solution puts inside the pixel window.

    Returns:
        (number of atlas lines in the window, target line count)
    """
    atlas = np.asarray(atlas, dtype=float)
    ends = solution(np.array([np.min(pixels), np.max(pixels)]))
    lo, hi = float(np.min(ends)), float(np.max(ends))
    n_in = int(np.sum((atlas >= lo) & (atlas <= hi)))
    if n_in == 0:
        raise InputError(f"No atlas lines between {lo:.3f} and {hi:.3f} under the current guess")
    # Not every atlas line is visible; the fraction is kept conservative
    target = max(1, int(np.floor(n_in * fraction)))
    return n_in, target


# =============================================================================
# FITTING
# =============================================================================

def _reduced_chi2(residuals, n_free: int) -> float:
    chi2 = float(np.sum(residuals ** 2))
    dof = residuals.size - n_free
    return chi2 / dof if dof > 0 else chi2


def _bounds(n_cont: int, n_lines: int, config: LinecalConfig):
    lower = [-np.inf] * n_cont
    upper = [np.inf] * n_cont
    for _ in range(n_lines):
        lower.extend([-np.inf, MIN_GAUSSIAN_WIDTH, 0.0, 0.0])
        upper.extend([np.inf, config.max_gaussian_width, config.max_lorentzian_width, np.inf])
    return np.array(lower), np.array(upper)


def _free_mask(n_cont: int, n_lines: int, width_fixed) -> np.ndarray:
    free = np.ones(n_cont + N_LINE_PARAMS * n_lines, dtype=bool)
    for i in range(n_lines):
        idx = n_cont + i * N_LINE_PARAMS
        free[idx + 1] = not width_fixed[0]
        free[idx + 2] = not width_fixed[1]
    return free


def _joint_fit(x, y, full, free, n_cont, x_mid, maxfev, bounds=None):
    """Fit the free entries of `full`; returns (params, 1-sigma errors)."""
    def model(xx, *p_free):
        p = full.copy()
        p[free] = p_free
        return multi_voigt(xx, p, n_cont, x_mid)

    p0 = full[free]
    kwargs = {'maxfev': maxfev}
    if bounds is not None:
        lo, hi = bounds[0][free], bounds[1][free]
        p0 = np.clip(p0, lo, hi)
        kwargs['bounds'] = (lo, hi)

    popt, pcov = curve_fit(model, x, y, p0=p0, **kwargs)

    params = full.copy()
    params[free] = popt
    errors = np.full(full.shape, np.nan)
    errors[free] = np.sqrt(np.abs(np.diag(pcov)))
    return params, errors


def extract_lines(flux, guess: DispersionSolution, atlas, config: LinecalConfig = None,
                  name: str = 'spectrum') -> ExtractionResult:
    """
    Extract emission lines by greedy residual-peak subtraction.

    Parameters:
        flux: 1-D intensity array indexed by detector pixel
        guess: Initial dispersion solution (reference pixel on the original detector)
        atlas: Reference wavelengths
        config: Configuration (continuum_degree, expected_line_fraction,
                width_fixed, initial/max widths, max_iterations)
        name: Label used in messages

    Returns:
        ExtractionResult with exactly the target number of lines

    Raises:
        InputError: unusable spectrum or no atlas line in the window
        ConvergenceError: a fit failed or the line count missed the target
    """
    config = config or get_config()
    spec = trim_spectrum(flux, guess.ref_pixel)
    n_atlas, n_target = expected_line_count(atlas, guess, spec.pixels,
                                            config.expected_line_fraction)

    ok = np.isfinite(spec.flux)
    x, y = spec.pixels[ok], spec.flux[ok]
    x_mid = float(np.mean(x))
    n_cont = config.continuum_degree + 1
    width_fixed = config.width_fixed

    full = np.zeros(n_cont)
    full[0] = np.median(y)
    chi2_prev = _reduced_chi2(y - multi_voigt(x, full, n_cont, x_mid), n_cont)
    history = [chi2_prev]

    n_lines = 0
    while n_lines < n_target:
        residual = y - multi_voigt(x, full, n_cont, x_mid)
        k = int(np.argmax(residual))
        height = float(residual[k])
        if height <= 0:
            log.info("%s: no positive residual left after %d lines", name, n_lines)
            break

        g0 = config.initial_gaussian_width
        seed = np.array([x[k], g0, 0.0, height * g0 * GAUSS_AREA_PER_FWHM])
        trial = np.concatenate([full, seed])
        free = _free_mask(n_cont, n_lines + 1, width_fixed)
        try:
            trial, _ = _joint_fit(x, y, trial, free, n_cont, x_mid, config.max_iterations,
                                  bounds=_bounds(n_cont, n_lines + 1, config))
        except (RuntimeError, ValueError) as e:
            raise ConvergenceError(f"{name}: fit with {n_lines + 1} lines failed: {e}") from e

        chi2 = _reduced_chi2(y - multi_voigt(x, trial, n_cont, x_mid), int(free.sum()))
        if not chi2 < chi2_prev:
            log.info("%s: reduced chi2 %.4g did not improve on %.4g; stopping at %d lines",
                     name, chi2, chi2_prev, n_lines)
            break
        full, chi2_prev = trial, chi2
        history.append(chi2)
        n_lines += 1

    if n_lines != n_target:
        raise ConvergenceError(
            f"{name}: extracted {n_lines} lines but {n_target} were expected "
            f"({n_atlas} atlas lines in window x {config.expected_line_fraction})"
        )

    # Final joint refit of everything, without bounds
    free = _free_mask(n_cont, n_lines, width_fixed)
    try:
        full, errors = _joint_fit(x, y, full, free, n_cont, x_mid, config.max_iterations)
    except (RuntimeError, ValueError) as e:
        raise ConvergenceError(f"{name}: final refit failed: {e}") from e

    lines = []
    for i in range(n_lines):
        idx = n_cont + i * N_LINE_PARAMS
        c, g, l, a = full[idx:idx + N_LINE_PARAMS]
        ce, ge, le, ae = errors[idx:idx + N_LINE_PARAMS]
        lines.append(DetectedLine(center=float(c), gwidth=float(abs(g)), lwidth=float(abs(l)),
                                  area=float(a), center_err=float(ce), gwidth_err=float(ge),
                                  lwidth_err=float(le), area_err=float(ae)))
    lines.sort(key=lambda line: line.center)

    model = multi_voigt(spec.pixels, full, n_cont, x_mid)
    chi2 = _reduced_chi2(y - multi_voigt(x, full, n_cont, x_mid), int(free.sum()))
    history.append(chi2)

    return ExtractionResult(lines=lines, continuum_coeffs=full[:n_cont].copy(), x_mid=x_mid,
                            spectrum=spec, model=model, reduced_chi2=chi2,
                            n_target=n_target, n_atlas_in_window=n_atlas,
                            chi2_history=history)
