import numpy as np
import pytest

from linecal import filters


def test_apply_returns_original_indices():
    r = filters.apply(np.array([True, False, True, True, False]))
    r = filters.apply(np.array([True, True, False, True, True]), r)
    assert r.good.tolist() == [0, 3]
    assert r.bad.tolist() == [1, 2, 4]
    assert r.n_good == 2 and r.n_bad == 3


def test_apply_accepts_test_aligned_with_survivors():
    r = filters.apply(np.array([True, False, True, True]))
    r = filters.apply(np.array([False, True, True]), r)
    assert r.good.tolist() == [2, 3]


def test_apply_rejects_misaligned_test():
    r = filters.apply(np.array([True, False, True, True]))
    with pytest.raises(ValueError):
        filters.apply(np.array([True, False]), r)


def test_trivially_true_stage_changes_nothing():
    rng = np.random.default_rng(1)
    for _ in range(20):
        r = filters.apply(rng.random(30) > 0.4)
        r2 = filters.apply(np.ones(30, dtype=bool), r)
        assert r2.n_good == r.n_good
        assert r2.bad.tolist() == r.bad.tolist()


def test_empty_result_propagates():
    r = filters.apply(np.zeros(6, dtype=bool))
    assert r.empty
    for test in (np.ones(6, dtype=bool), np.array([True, False] * 3)):
        r = filters.apply(test, r)
        assert r.n_good == 0
        assert r.bad.tolist() == list(range(6))


def test_empty_result_skips_test_evaluation():
    r = filters.apply(np.zeros(4, dtype=bool))
    # A wrongly sized test would raise if it were looked at
    r = filters.apply(np.ones(99, dtype=bool), r)
    assert r.bad.tolist() == [0, 1, 2, 3]


def test_chain_matches_sequential_apply():
    a = np.array([True, True, False, True])
    b = np.array([False, True, True, True])
    assert filters.chain([a, b]).good.tolist() == filters.apply(b, filters.apply(a)).good.tolist()


def test_apply_or_keep_falls_back_and_warns(caplog):
    r = filters.start(5)
    with caplog.at_level('WARNING'):
        kept = filters.apply_or_keep(np.array([True, False, False, False, False]), r,
                                     min_survivors=2, label='chi-square cut', context='line 1')
    assert kept is r
    assert 'chi-square cut' in caplog.text and 'line 1' in caplog.text


def test_apply_or_keep_passes_short_input_through():
    r = filters.apply(np.array([True, False, False]))
    out = filters.apply_or_keep(np.array([False, False, False]), r, min_survivors=2)
    assert out.empty


def test_named_cuts():
    assert filters.chi2_cut([1.0, 6.0, np.nan], 5.0).tolist() == [True, False, False]
    assert filters.doppler_cut([1.0, -2.5, 0.0], [1.0, 1.0, np.nan], 3.0).tolist() == \
        [True, False, False]
    assert filters.separation_cut([0.5, -0.1, np.inf, np.nan], 0.2).tolist() == \
        [True, False, True, False]


def test_close_to_bound_cut():
    values = np.array([0.0, 0.01, 0.5, 0.99, 1.0])
    assert filters.close_to_bound_cut(values, (0.0, 1.0), 0.02).tolist() == \
        [False, False, True, False, False]
    assert filters.close_to_bound_cut(values, (-np.inf, np.inf), 0.02).all()
