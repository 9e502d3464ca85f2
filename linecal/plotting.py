"""
Diagnostic Plots
================

PNG figures for reviewing a calibration:
    - plot_extraction(): spectrum, extracted-line model and residuals
    - plot_dispersion(): associated lines and dispersion fit residuals
    - plot_coefficients(): coefficient table against observation day
"""

from pathlib import Path
from typing import Optional

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import numpy as np


def _save(fig, outfile: Path) -> str:
    try:
        outfile.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(outfile, dpi=120, bbox_inches='tight')
    finally:
        plt.close(fig)
    return str(outfile)


def plot_extraction(extraction, name: str, output_dir: Path) -> str:
    """
    Spectrum with the fitted multi-Voigt model and residual panel.

    Returns:
        Path of the saved PNG
    """
    spec = extraction.spectrum
    x, y = spec.pixels, spec.flux
    residual = extraction.residual

    fig, (ax1, ax2) = plt.subplots(2, 1, figsize=(10, 6), height_ratios=[3, 1], sharex=True)

    ax1.plot(x, y, 'k-', lw=1.0, alpha=0.9, label='Data')
    ax1.plot(x, extraction.model, 'r-', lw=1.2, label=f'Model ({len(extraction.lines)} lines)')
    for line in extraction.lines:
        ax1.axvline(line.center, color='green', ls='--', alpha=0.4, lw=1)
    ax1.set_title(f'{name} | target {extraction.n_target} lines | '
                  f'reduced chi2 = {extraction.reduced_chi2:.3g}', fontsize=11, weight='bold')
    ax1.set_ylabel('Counts')
    ax1.legend(loc='upper right', fontsize=9)

    ax2.plot(x, residual, 'k-', lw=0.8)
    ax2.axhline(0, color='gray', ls='-', alpha=0.5)
    ax2.set_xlabel('Pixel')
    ax2.set_ylabel('Residual')
    rms = np.sqrt(np.nanmean(residual ** 2))
    ax2.text(0.02, 0.95, f'RMS={rms:.3g}', transform=ax2.transAxes, fontsize=10, va='top')

    fig.tight_layout()
    return _save(fig, Path(output_dir) / 'extraction' / f'{name}.png')


def plot_dispersion(fit, association, name: str, output_dir: Path) -> str:
    """
    Wavelength vs pixel with the fitted polynomial, and fit residuals.

    Rejected associations are drawn as red crosses.
    """
    keep = association.keep
    pix_all, wave_all = association.pixels, association.wavelengths
    grid = np.linspace(np.min(pix_all), np.max(pix_all), 200)

    fig, (ax1, ax2) = plt.subplots(2, 1, figsize=(10, 6), height_ratios=[3, 1], sharex=True)

    ax1.plot(pix_all[keep], wave_all[keep], 'ko', ms=4, label='Associated')
    if np.any(~keep):
        ax1.plot(pix_all[~keep], wave_all[~keep], 'rx', ms=6, label='Rejected')
    ax1.plot(grid, fit.solution(grid), 'b-', lw=1.0, label=f'Order {fit.solution.order}')
    ax1.set_ylabel('Wavelength')
    ax1.set_title(f'{name} | {fit.n_lines} lines | RMS = {fit.rms:.4g}', fontsize=11, weight='bold')
    ax1.legend(loc='lower right', fontsize=9)

    ax2.plot(pix_all, wave_all - fit.solution(pix_all), 'k.', ms=4)
    if np.any(~keep):
        ax2.plot(pix_all[~keep], (wave_all - fit.solution(pix_all))[~keep], 'rx', ms=6)
    ax2.axhline(0, color='gray', ls='-', alpha=0.5)
    ax2.set_xlabel('Pixel')
    ax2.set_ylabel('Residual')

    fig.tight_layout()
    return _save(fig, Path(output_dir) / 'dispersion' / f'{name}.png')


def plot_coefficients(table, output_dir: Path, filename: str = 'coefficients.png') -> Optional[str]:
    """Each coefficient against observation day; flagged rows in red."""
    df = table.to_frame(keep_flagged=True)
    coeff_cols = [c for c in df.columns if c.startswith('c') and c[1:].isdigit()]
    if df.empty or not coeff_cols:
        return None

    fig, axes = plt.subplots(len(coeff_cols), 1, figsize=(8, 2.2 * len(coeff_cols)),
                             sharex=True, squeeze=False)
    bad = (df['excluded'] | df['outlier']).to_numpy(dtype=bool)
    for ax, col in zip(axes[:, 0], coeff_cols):
        ax.plot(df['obs_day'][~bad], df[col][~bad], 'ko', ms=4)
        ax.plot(df['obs_day'][bad], df[col][bad], 'rx', ms=6)
        ax.set_ylabel(col)
    axes[-1, 0].set_xlabel('Observation day')

    fig.tight_layout()
    return _save(fig, Path(output_dir) / filename)
