import json

import numpy as np
import pytest

from linecal.errors import InputError
from linecal.measurements import ACTIVE
from linecal.priors import ParamPrior, PriorTemplate


def test_save_and_load_keep_infinite_limits(baseline, tmp_path):
    baseline.lines[0].params['ew'] = ParamPrior(40.0, (0.0, np.inf), status=ACTIVE)
    path = tmp_path / 'priors.json'
    baseline.save(path)

    loaded = PriorTemplate.load(path)
    assert len(loaded) == 2
    assert loaded.lines[0].params['ew'].limits == (0.0, np.inf)
    assert loaded.lines[0].params['ew'].status == ACTIVE
    assert loaded.to_dict() == baseline.to_dict()


def test_copy_is_deep(baseline):
    clone = baseline.copy()
    clone.lines[0].params['center'].value = 0.0
    assert baseline.lines[0].params['center'].value == 6300.304


def test_snapshot_and_restore(baseline):
    snap = baseline.snapshot_line(1)
    baseline.lines[1].params['gwidth'].value = 5.0
    baseline.restore_line(1, snap)
    assert baseline.lines[1].params['gwidth'].value == 0.12


def test_find_by_wavelength_and_path(baseline):
    assert baseline.find(6300.304, lambda p: p == 'earth') == [0]
    assert baseline.find(6300.304, lambda p: p != 'earth') == []
    assert baseline.find(6302.49361, lambda p: True) == [1]


def test_missing_parameter_is_rejected():
    data = {'lines': [{'rest_wavelength': 6300.0, 'path': 'earth',
                       'params': {'center': {'value': 6300.0}}}]}
    with pytest.raises(InputError):
        PriorTemplate.from_dict(data)


def test_load_errors(tmp_path):
    with pytest.raises(InputError):
        PriorTemplate.load(tmp_path / 'nope.json')
    bad = tmp_path / 'bad.json'
    bad.write_text('{not json')
    with pytest.raises(InputError):
        PriorTemplate.load(bad)
    (tmp_path / 'nolines.json').write_text(json.dumps({'entries': []}))
    with pytest.raises(InputError):
        PriorTemplate.load(tmp_path / 'nolines.json')
