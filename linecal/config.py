"""
Linecal Configuration
=====================

Configuration for the line quality-control and wavelength-calibration engines.

Every option can be overridden from the environment (or a ~/.env file) with
an upper-case LINECAL_ prefix, e.g.:

    LINECAL_MIN_GOOD_SAMPLES=7
    LINECAL_FIT_ORDER=3
    LINECAL_WIDTH_FIXED=true,false

Usage:
    from linecal.config import get_config
    cfg = get_config()
    print(cfg.fit_order, cfg.outlier_cut)
"""

import os
from pathlib import Path
from dataclasses import dataclass, field, fields
from typing import Optional, Tuple

from dotenv import load_dotenv

load_dotenv(Path.home() / '.env')

ENV_PREFIX = 'LINECAL_'


def _parse_bool(text: str) -> bool:
    return text.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class LinecalConfig:
    """Configuration for the linecal pipelines."""

    # Statistics gating
    min_good_samples: int = 5
    min_cut_survivors: int = 2

    # Filter-chain thresholds
    chi2_cut: float = 5.0
    doppler_cut: float = 3.0
    separation_cut: float = 0.0
    close_to_bound_fraction: float = 0.02

    # Dispersion polynomial shape
    fit_order: int = 2
    continuum_degree: int = 1

    # Line extraction
    expected_line_fraction: float = 0.5
    max_iterations: int = 5000
    width_fixed: Tuple[bool, bool] = (False, False)
    initial_gaussian_width: float = 2.0
    max_gaussian_width: float = 10.0
    max_lorentzian_width: float = 10.0

    # Association and batch outliers
    outlier_cut: float = 3.0
    anchor_window: float = 5.0
    neighbor_window: int = 2

    # Grouping
    generic_object: bool = True

    # Worker configuration for parallel processing of files
    workers: int = 4

    # Output directory
    output_dir: Optional[Path] = field(default=None)

    def __post_init__(self):
        """Load overrides from environment."""
        for f in fields(self):
            raw = os.getenv(ENV_PREFIX + f.name.upper())
            if raw is None or raw == '':
                continue
            current = getattr(self, f.name)
            if f.name == 'width_fixed':
                parts = [p for p in raw.replace(';', ',').split(',') if p.strip()]
                if len(parts) != 2:
                    raise ValueError(f"{ENV_PREFIX}WIDTH_FIXED needs two booleans, got {raw!r}")
                value = (_parse_bool(parts[0]), _parse_bool(parts[1]))
            elif f.name == 'output_dir':
                value = Path(raw).expanduser()
            elif isinstance(current, bool):
                value = _parse_bool(raw)
            elif isinstance(current, int):
                value = int(raw)
            else:
                value = float(raw)
            setattr(self, f.name, value)

        self.width_fixed = tuple(bool(w) for w in self.width_fixed)

        if self.output_dir is None:
            self.output_dir = Path.home() / 'linecal_output'
        else:
            self.output_dir = Path(self.output_dir)

    def validate(self):
        """Validate configuration."""
        if self.min_good_samples < 2:
            raise ValueError(
                f"min_good_samples must be at least 2 (median and spread need two points), "
                f"got {self.min_good_samples}"
            )
        if self.min_cut_survivors < 1:
            raise ValueError(f"min_cut_survivors must be positive, got {self.min_cut_survivors}")
        if self.fit_order < 0 or self.continuum_degree < 0:
            raise ValueError("fit_order and continuum_degree must be non-negative")
        if not 0.0 < self.expected_line_fraction <= 1.0:
            raise ValueError(
                f"expected_line_fraction must be in (0, 1], got {self.expected_line_fraction}"
            )
        if not 0.0 <= self.close_to_bound_fraction < 0.5:
            raise ValueError(
                f"close_to_bound_fraction must be in [0, 0.5), got {self.close_to_bound_fraction}"
            )
        if self.outlier_cut <= 0 or self.anchor_window <= 0:
            raise ValueError("outlier_cut and anchor_window must be positive")
        if self.initial_gaussian_width <= 0 or self.max_gaussian_width <= 0:
            raise ValueError("Gaussian widths must be positive")
        if self.max_lorentzian_width < 0:
            raise ValueError("max_lorentzian_width must be non-negative")
        if len(self.width_fixed) != 2:
            raise ValueError("width_fixed must be a (gaussian, lorentzian) pair")
        if self.max_iterations < 1 or self.workers < 1 or self.neighbor_window < 1:
            raise ValueError("max_iterations, workers and neighbor_window must be positive")
        return True


# Global config instance (lazy-loaded)
_config: Optional[LinecalConfig] = None


def get_config() -> LinecalConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = LinecalConfig()
    return _config


def set_config(**kwargs) -> LinecalConfig:
    """Create a new configuration with custom settings."""
    global _config
    _config = LinecalConfig(**kwargs)
    return _config
