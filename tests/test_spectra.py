import numpy as np
import pandas as pd
import pytest

from linecal.errors import AtlasError, InputError
from linecal.spectra import discover_spectra, load_atlas, load_spectrum


def test_load_atlas_skips_comments_and_sorts(tmp_path):
    path = tmp_path / 'atlas.txt'
    path.write_text("# ThAr\n6310.0\n\n6300.0  # strong\n6302.5\n")
    assert load_atlas(path).tolist() == [6300.0, 6302.5, 6310.0]


@pytest.mark.parametrize('text', ['', '# nothing\n\n', '6300.0\nsix\n'])
def test_bad_atlas(tmp_path, text):
    path = tmp_path / 'atlas.txt'
    path.write_text(text)
    with pytest.raises(AtlasError):
        load_atlas(path)


def test_missing_atlas_is_an_input_error(tmp_path):
    with pytest.raises(InputError):
        load_atlas(tmp_path / 'none.txt')


def test_load_spectrum_flux_column_and_headerless(tmp_path):
    pd.DataFrame({'pixel': [0, 1, 2], 'flux': [1.0, 2.0, 3.0]}).to_csv(tmp_path / 'a.csv',
                                                                       index=False)
    assert load_spectrum(tmp_path / 'a.csv').tolist() == [1.0, 2.0, 3.0]

    (tmp_path / 'b.csv').write_text("4.0\n5.0\n6.0\n")
    assert load_spectrum(tmp_path / 'b.csv').tolist() == [4.0, 5.0, 6.0]

    pd.DataFrame({'x': [1], 'y': [2]}).to_csv(tmp_path / 'c.csv', index=False)
    with pytest.raises(InputError):
        load_spectrum(tmp_path / 'c.csv')


def test_discover_with_manifest(tmp_path):
    for name in ('late.csv', 'early.csv'):
        pd.DataFrame({'flux': np.ones(3)}).to_csv(tmp_path / name, index=False)
    pd.DataFrame({'file': ['late.csv', 'early.csv'], 'obs_day': [120.5, 110.25]}).to_csv(
        tmp_path / 'observations.csv', index=False)

    found = discover_spectra(tmp_path)
    assert [(p.name, d) for p, d in found] == [('early.csv', 110.25), ('late.csv', 120.5)]


def test_discover_without_manifest(tmp_path):
    for name in ('b.csv', 'a.csv'):
        pd.DataFrame({'flux': np.ones(3)}).to_csv(tmp_path / name, index=False)
    found = discover_spectra(tmp_path)
    assert [(p.name, d) for p, d in found] == [('a.csv', 0.0), ('b.csv', 1.0)]

    with pytest.raises(InputError):
        discover_spectra(tmp_path / 'missing')
