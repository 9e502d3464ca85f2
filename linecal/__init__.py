"""Linecal - Spectral-line prior QC and wavelength calibration package."""

from .association import associate_lines, anchor_search, greedy_assign, reject_outliers
from .config import LinecalConfig, get_config, set_config
from .dispersion import DispersionSolution, fit_dispersion
from .errors import AtlasError, ConvergenceError, InputError, LinecalError
from .groups import GroupRegistry, assign_groups
from .line_stats import update_priors
from .line_tools import extract_lines, voigt
from .priors import PriorTemplate
from .review import Command, Navigator
from .solutions import CoefficientTable

__all__ = [
    'associate_lines',
    'anchor_search',
    'greedy_assign',
    'reject_outliers',
    'LinecalConfig',
    'get_config',
    'set_config',
    'DispersionSolution',
    'fit_dispersion',
    'AtlasError',
    'ConvergenceError',
    'InputError',
    'LinecalError',
    'GroupRegistry',
    'assign_groups',
    'update_priors',
    'extract_lines',
    'voigt',
    'PriorTemplate',
    'Command',
    'Navigator',
    'CoefficientTable',
]
