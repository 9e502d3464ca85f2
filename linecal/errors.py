"""
Exception types raised by the calibration and quality-control engines.

Batch drivers catch `LinecalError` per file and keep going; everything else
propagates.
"""


class LinecalError(Exception):
    """Base class for all linecal failures."""


class InputError(LinecalError):
    """Missing, empty or malformed input (tables, groups, lines, spectra)."""


class AtlasError(InputError):
    """Atlas line-list file could not be read."""


class ConvergenceError(LinecalError):
    """Line extraction or a nonlinear fit did not converge to a usable result."""
