from pathlib import Path

import pytest

from linecal import config as config_module
from linecal.config import LinecalConfig, get_config, set_config


def test_defaults():
    cfg = LinecalConfig()
    assert cfg.min_good_samples == 5
    assert cfg.outlier_cut == 3.0
    assert cfg.width_fixed == (False, False)
    assert cfg.output_dir == Path.home() / 'linecal_output'
    assert cfg.validate()


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv('LINECAL_MIN_GOOD_SAMPLES', '7')
    monkeypatch.setenv('LINECAL_CHI2_CUT', '2.5')
    monkeypatch.setenv('LINECAL_WIDTH_FIXED', 'true,false')
    monkeypatch.setenv('LINECAL_GENERIC_OBJECT', 'no')
    monkeypatch.setenv('LINECAL_OUTPUT_DIR', '/tmp/linecal-test')
    cfg = LinecalConfig()
    assert cfg.min_good_samples == 7
    assert cfg.chi2_cut == 2.5
    assert cfg.width_fixed == (True, False)
    assert cfg.generic_object is False
    assert cfg.output_dir == Path('/tmp/linecal-test')


def test_bad_width_fixed_override(monkeypatch):
    monkeypatch.setenv('LINECAL_WIDTH_FIXED', 'true')
    with pytest.raises(ValueError):
        LinecalConfig()


@pytest.mark.parametrize('kwargs', [
    {'min_good_samples': 1},
    {'expected_line_fraction': 0.0},
    {'expected_line_fraction': 1.5},
    {'close_to_bound_fraction': 0.5},
    {'outlier_cut': 0.0},
    {'workers': 0},
    {'fit_order': -1},
])
def test_validate_rejects(kwargs):
    with pytest.raises(ValueError):
        LinecalConfig(**kwargs).validate()


def test_set_config_replaces_global(monkeypatch):
    monkeypatch.setattr(config_module, '_config', None)
    assert get_config() is get_config()
    cfg = set_config(fit_order=3)
    assert get_config() is cfg
    assert cfg.fit_order == 3
