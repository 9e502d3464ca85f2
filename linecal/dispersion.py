"""
Dispersion solutions: polynomial pixel -> wavelength relations.

    wavelength = sum_k coeffs[k] * (pixel - ref_pixel)**k

Coefficients are stored lowest order first.
"""

from dataclasses import dataclass, field

import numpy as np
from numpy.polynomial import polynomial as P

from .errors import ConvergenceError


@dataclass(frozen=True)
class DispersionSolution:
    coeffs: np.ndarray
    ref_pixel: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, 'coeffs', np.atleast_1d(np.asarray(self.coeffs, dtype=float)))

    @property
    def order(self) -> int:
        return len(self.coeffs) - 1

    def __call__(self, pixels):
        """Wavelength at the given (original detector) pixel positions."""
        return P.polyval(np.asarray(pixels, dtype=float) - self.ref_pixel, self.coeffs)

    def shifted(self, delta: float) -> 'DispersionSolution':
        """Same solution with the zero-order coefficient moved by `delta`."""
        coeffs = self.coeffs.copy()
        coeffs[0] += delta
        return DispersionSolution(coeffs, self.ref_pixel)


@dataclass
class DispersionFit:
    solution: DispersionSolution
    pixels: np.ndarray
    wavelengths: np.ndarray
    residuals: np.ndarray = field(default_factory=lambda: np.array([]))

    @property
    def rms(self) -> float:
        if self.residuals.size == 0:
            return float('nan')
        return float(np.sqrt(np.mean(self.residuals ** 2)))

    @property
    def n_lines(self) -> int:
        return int(self.pixels.size)


def fit_dispersion(pixels, wavelengths, order: int, ref_pixel: float = 0.0) -> DispersionFit:
    """
    Least-squares polynomial of `order` through (pixel, wavelength) pairs.

    Raises:
        ConvergenceError: fewer than order + 1 usable pairs
    """
    pixels = np.asarray(pixels, dtype=float)
    wavelengths = np.asarray(wavelengths, dtype=float)
    ok = np.isfinite(pixels) & np.isfinite(wavelengths)
    pixels, wavelengths = pixels[ok], wavelengths[ok]

    if pixels.size < order + 1:
        raise ConvergenceError(
            f"Need at least {order + 1} line pairs for an order-{order} dispersion, "
            f"got {pixels.size}"
        )

    coeffs = P.polyfit(pixels - ref_pixel, wavelengths, order)
    solution = DispersionSolution(coeffs, ref_pixel)
    residuals = wavelengths - solution(pixels)
    return DispersionFit(solution=solution, pixels=pixels, wavelengths=wavelengths,
                         residuals=residuals)
