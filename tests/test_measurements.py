import pandas as pd
import pytest

from linecal.errors import InputError
from linecal.measurements import (ACTIVE, PARAMS, line_tuples, load_measurements,
                                  make_table, prepare_table)


def test_make_table_lays_out_contiguous_tuples(make_records):
    table = make_table(make_records(3))
    assert len(table) == 12
    assert tuple(table['param'][:4]) == PARAMS
    assert line_tuples(table).tolist() == [[0, 1, 2, 3], [4, 5, 6, 7], [8, 9, 10, 11]]
    assert (table['status'] == ACTIVE).all()


def test_line_tuples_skip_sentinel_rows(make_records):
    table = make_table(make_records(2))
    sentinel = pd.DataFrame([{'file': '', 'path': None, 'rest_wavelength': 0.0,
                              'param': 'center', 'value': 0.0, 'error': 0.0,
                              'sentinel': True}])
    table = prepare_table(pd.concat([table, sentinel], ignore_index=True))
    assert line_tuples(table).tolist() == [[0, 1, 2, 3], [4, 5, 6, 7]]


def test_line_tuples_reject_broken_order(make_records):
    table = make_table(make_records(2))
    table.loc[[1, 2], 'param'] = ['gwidth', 'ew']
    with pytest.raises(InputError):
        line_tuples(table)


def test_prepare_table_errors():
    with pytest.raises(InputError, match='missing required columns'):
        prepare_table(pd.DataFrame({'file': ['a']}))
    empty = pd.DataFrame(columns=['file', 'path', 'rest_wavelength', 'param', 'value', 'error'])
    with pytest.raises(InputError, match='no measurements'):
        prepare_table(empty)


def test_load_measurements(tmp_path, make_records):
    path = tmp_path / 'measurements.csv'
    make_table(make_records(2)).to_csv(path, index=False)
    table = load_measurements(path)
    assert len(table) == 8

    with pytest.raises(InputError):
        load_measurements(tmp_path / 'missing.csv')
    (tmp_path / 'empty.csv').write_text('')
    with pytest.raises(InputError):
        load_measurements(tmp_path / 'empty.csv')
