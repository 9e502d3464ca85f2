import numpy as np
import pytest

from linecal.config import LinecalConfig
from linecal.errors import InputError
from linecal.line_stats import update_priors
from linecal.measurements import ACTIVE, INACTIVE, NO_OPINION, make_table
from linecal.priors import LinePrior, ParamPrior, PriorTemplate
from linecal.review import Command


def scripted(commands):
    calls = []

    def review(description):
        calls.append(description)
        return commands.pop(0)
    return review, calls


def centers_of(records):
    return np.array([r['params']['center'][0] for r in records])


def test_below_min_good_samples_leaves_value(make_records, baseline, config):
    records = make_records(config.min_good_samples - 1)
    result = update_priors(make_table(records), baseline, config)

    center = result.template.lines[0].params['center']
    assert center.status == NO_OPINION
    assert center.value == baseline.lines[0].params['center'].value
    assert center.limits == baseline.lines[0].params['center'].limits
    assert any('good samples' in n for n in result.notes)


def test_min_good_samples_activates_median(make_records, baseline, config):
    records = make_records(config.min_good_samples)
    result = update_priors(make_table(records), baseline, config)

    centers = centers_of(records)
    center = result.template.lines[0].params['center']
    assert center.status == ACTIVE
    assert center.value == pytest.approx(np.median(centers))
    std = np.std(centers, ddof=1)
    assert center.limits == pytest.approx((np.median(centers) - std, np.median(centers) + std))


def test_baseline_is_not_modified(make_records, baseline, config):
    before = baseline.to_dict()
    update_priors(make_table(make_records(8)), baseline, config)
    assert baseline.to_dict() == before


def test_doppler_residual_is_reported_not_written(make_records, baseline, config):
    records = make_records(6, doppler_residual=0.5, doppler_error=0.1)
    result = update_priors(make_table(records), baseline, config)

    update = result.updates[0]
    assert update.doppler_median == pytest.approx(0.5)
    assert set(result.template.lines[0].params) == {'center', 'ew', 'gwidth', 'lwidth'}
    assert result.template.lines[0].params['center'].value == \
        pytest.approx(np.median(centers_of(records)))


def test_inactive_and_bad_fits_are_filtered(make_records, baseline, config):
    records = make_records(8)
    records[0]['chi2'] = 50.0
    for r in records[1:]:
        r['chi2'] = 1.0
    records[1]['params']['center'] = (9999.0, 0.01, INACTIVE)
    result = update_priors(make_table(records), baseline, config)

    update = result.updates[0]
    assert update.n_line_good == 7
    assert update.params['center'].n_good == 6


def test_too_few_line_survivors_gives_no_opinion(make_records, baseline, config):
    records = make_records(1)
    result = update_priors(make_table(records), baseline, config)
    assert all(p.status == NO_OPINION for p in result.template.lines[0].params.values())


def test_terrestrial_group_widths_use_max_error(make_records, baseline, config):
    records = make_records(6)
    records[0]['params']['gwidth'] = (records[0]['params']['gwidth'][0], 0.03)
    result = update_priors(make_table(records), baseline, config)

    gwidth = result.template.lines[0].params['gwidth']
    values = [r['params']['gwidth'][0] for r in records]
    assert gwidth.value == pytest.approx(np.mean(values))
    assert gwidth.limits[1] - gwidth.value == pytest.approx(2 * 0.03)
    assert gwidth.limits[0] == pytest.approx(gwidth.value - 2 * 0.03)
    widths = {gw.param: gw for gw in result.group_widths}
    assert widths['gwidth'].kind == 'terrestrial' and widths['gwidth'].applied


def test_source_group_widths_use_mean_error(make_records, baseline, config):
    records = make_records(6, wave=6302.4936, path='sun->object->earth')
    records[0]['params']['gwidth'] = (records[0]['params']['gwidth'][0], 0.04)
    result = update_priors(make_table(records), baseline, config)

    gwidth = result.template.lines[1].params['gwidth']
    mean = np.mean([r['params']['gwidth'][0] for r in records])
    spread = np.mean([0.04] + [0.01] * 5)
    assert gwidth.value == pytest.approx(mean)
    assert gwidth.limits == pytest.approx((mean - 2 * spread, mean + 2 * spread))
    widths = {gw.param: gw for gw in result.group_widths}
    assert widths['gwidth'].kind == 'source'
    assert not result.template.lines[1].params['lwidth'].fixed


def test_group_width_lower_limit_is_clipped_at_zero(make_records, baseline, config):
    records = make_records(6, wave=6302.4936, path='sun->object->earth')
    for r in records:
        r['params']['gwidth'] = (r['params']['gwidth'][0], 0.08)
    result = update_priors(make_table(records), baseline, config)

    gwidth = result.template.lines[1].params['gwidth']
    assert gwidth.limits[0] == 0.0
    assert gwidth.limits[1] == pytest.approx(gwidth.value + 0.16)


def test_template_path_may_name_the_target(make_records, config):
    template = PriorTemplate([LinePrior(6302.4936, 'sun->jupiter->earth', params={
        'center': ParamPrior(6302.4936, (6301.5, 6303.5)),
        'ew': ParamPrior(40.0, (0.0, 200.0)),
        'gwidth': ParamPrior(0.12, (0.0, 1.0)),
        'lwidth': ParamPrior(0.03, (0.0, 1.0)),
    })])
    records = make_records(6, wave=6302.4936, path='sun->jupiter->earth', object='jupiter')
    result = update_priors(make_table(records), template, config)

    assert len(result.updates) == 1
    assert result.template.lines[0].params['center'].status == ACTIVE


def test_object_group_pins_widths(make_records, config):
    template = PriorTemplate([LinePrior(6300.304, 'object->earth', params={
        'center': ParamPrior(6300.304, (6299.3, 6301.3)),
        'ew': ParamPrior(40.0, (0.0, 200.0)),
        'gwidth': ParamPrior(0.12, (0.0, 1.0)),
        'lwidth': ParamPrior(0.03, (0.0, 1.0)),
    })])
    records = make_records(6, path='io->earth', object='io')
    result = update_priors(make_table(records), template, config)

    params = result.template.lines[0].params
    assert params['lwidth'].value == 0.0
    assert params['lwidth'].limits == (0.0, 0.0)
    assert params['lwidth'].fixed and params['gwidth'].fixed
    assert params['ew'].limits == (0.0, np.inf)
    assert params['gwidth'].value == pytest.approx(
        np.mean([r['params']['gwidth'][0] for r in records]))


def _two_line_table(make_records):
    return make_table(make_records(6) +
                      make_records(6, wave=6302.4936, path='sun->object->earth'))


def test_previous_revisits_and_restores(make_records, baseline, config):
    reviewer, calls = scripted([Command.NEXT, Command.PREVIOUS, Command.NEXT, Command.NEXT])
    result = update_priors(_two_line_table(make_records), baseline, config,
                           reviewer=reviewer, interactive=True)

    assert len(calls) == 4
    assert calls[0] == calls[2]
    assert not result.aborted
    assert len(result.updates) == 2
    assert result.template.lines[1].params['center'].status == ACTIVE


def test_run_finishes_without_asking(make_records, baseline, config):
    reviewer, calls = scripted([Command.RUN])
    result = update_priors(_two_line_table(make_records), baseline, config,
                           reviewer=reviewer, interactive=True)
    assert len(calls) == 1
    assert len(result.updates) == 2
    assert not result.aborted


def test_quit_keeps_processed_lines(make_records, baseline, config):
    reviewer, calls = scripted([Command.QUIT])
    result = update_priors(_two_line_table(make_records), baseline, config,
                           reviewer=reviewer, interactive=True)

    assert result.aborted
    assert len(result.updates) == 1
    assert result.group_widths == []
    assert result.template.lines[0].params['center'].status == ACTIVE
    assert result.template.lines[1].params['center'].value == \
        baseline.lines[1].params['center'].value
    assert result.template.lines[1].params['center'].status == NO_OPINION


def test_unmatched_lines_are_skipped(make_records, baseline, config):
    records = make_records(6) + make_records(6, wave=7000.0)
    result = update_priors(make_table(records), baseline, config)
    assert len(result.updates) == 1
    assert any('no template entry' in n for n in result.notes)


def test_no_matching_line_is_an_input_error(make_records, baseline, config):
    with pytest.raises(InputError):
        update_priors(make_table(make_records(6, wave=7000.0)), baseline, config)


def test_min_good_samples_is_configurable(make_records, baseline):
    config = LinecalConfig(min_good_samples=3)
    result = update_priors(make_table(make_records(3)), baseline, config)
    assert result.template.lines[0].params['ew'].status == ACTIVE
