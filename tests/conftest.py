import os

import numpy as np
import pytest

from linecal.config import ENV_PREFIX, LinecalConfig
from linecal.measurements import make_table
from linecal.priors import LinePrior, ParamPrior, PriorTemplate


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep LINECAL_* settings of the developer's shell out of the tests."""
    for name in list(os.environ):
        if name.startswith(ENV_PREFIX):
            monkeypatch.delenv(name)


@pytest.fixture
def config(tmp_path):
    return LinecalConfig(output_dir=tmp_path / 'out', workers=2)


def line_record(file, path, wave, center, ew=50.0, gwidth=0.1, lwidth=0.05,
                err=0.01, **extra):
    rec = {'file': file, 'path': path, 'rest_wavelength': wave,
           'params': {'center': (center, err), 'ew': (ew, err * 10),
                      'gwidth': (gwidth, err), 'lwidth': (lwidth, err)}}
    rec.update(extra)
    return rec


def template_line(wave, path, center=None, ew=40.0, gwidth=0.12, lwidth=0.03):
    center = wave if center is None else center
    return LinePrior(rest_wavelength=wave, path=path, params={
        'center': ParamPrior(center, (center - 1.0, center + 1.0)),
        'ew': ParamPrior(ew, (0.0, 200.0)),
        'gwidth': ParamPrior(gwidth, (0.0, 1.0)),
        'lwidth': ParamPrior(lwidth, (0.0, 1.0)),
    })


@pytest.fixture
def make_records():
    """n observations of one line with a little scatter around fixed values."""
    def _make(n, wave=6300.304, path='earth', offset=0.0, **extra):
        rng = np.random.default_rng(42)
        return [line_record(f'obs{i:02d}.fits', path, wave,
                            center=wave + offset + 0.001 * rng.standard_normal(),
                            ew=50.0 + rng.standard_normal(),
                            gwidth=0.10 + 0.001 * rng.standard_normal(),
                            lwidth=0.05 + 0.001 * rng.standard_normal(),
                            **extra)
                for i in range(n)]
    return _make


@pytest.fixture
def baseline():
    return PriorTemplate([
        template_line(6300.304, 'earth'),
        template_line(6302.4936, 'sun->object->earth'),
    ])


@pytest.fixture
def table_of():
    return make_table


LAMP_LINES = [(60.0, 100.0), (140.0, 80.0), (230.0, 60.0)]  # (pixel, area)


@pytest.fixture
def lamp_flux():
    """Three noiseless Voigt lines on a flat continuum of 10 over 300 pixels."""
    from linecal.line_tools import voigt
    x = np.arange(300, dtype=float)
    flux = np.full(x.size, 10.0)
    for center, area in LAMP_LINES:
        flux += voigt(x, center, 3.0, 0.5, area)
    return flux


@pytest.fixture
def lamp_atlas():
    # Under 6000 + 0.1 * pixel the lines sit at 6006, 6014 and 6023
    return np.array([6006.0, 6014.0, 6023.0, 6100.0])


@pytest.fixture
def lamp_config(tmp_path):
    return LinecalConfig(continuum_degree=0, expected_line_fraction=1.0, fit_order=1,
                         workers=2, output_dir=tmp_path / 'out')
