import numpy as np
import pytest

from alphashaker.exceptions import MapNotEstimatedError
from alphashaker.model.matches import ValidationLevel
from alphashaker.scoring.target_decoy import (
    TargetDecoyMap,
    _fdr_to_q_values,
    monotonic_envelope,
)
from alphashaker.validation.validator import validation_level

SCENARIO_POINTS = [(0.9, False), (0.8, False), (0.7, True), (0.6, False)]


def scenario_map(higher_is_better=True):
    target_decoy_map = TargetDecoyMap(higher_is_better=higher_is_better, name="scenario")
    sign = 1 if higher_is_better else -1
    for score, is_decoy in SCENARIO_POINTS:
        target_decoy_map.add_point(sign * score, is_decoy)
    target_decoy_map.estimate_probabilities()
    return target_decoy_map


def test_monotonic_envelope():
    values = np.array([0.0, 0.2, 0.1, 0.5, 0.3])
    assert np.allclose(monotonic_envelope(values), [0.0, 0.2, 0.2, 0.5, 0.5])


def test_fdr_to_q_values():
    fdr = np.array([0.0, 0.5, 0.2, 0.3])
    assert np.allclose(_fdr_to_q_values(fdr), [0.0, 0.2, 0.2, 0.3])


def test_scenario_curve():
    target_decoy_map = scenario_map()

    assert np.allclose(target_decoy_map.scores, [0.9, 0.8, 0.7, 0.6])
    assert list(target_decoy_map.n_target_cumulative) == [1, 2, 2, 3]
    assert list(target_decoy_map.n_decoy_cumulative) == [0, 0, 1, 1]
    assert np.allclose(target_decoy_map.raw_pep, [0.0, 0.0, 0.5, 1 / 3])
    assert np.allclose(target_decoy_map.pep, [0.0, 0.0, 0.5, 0.5])


@pytest.mark.parametrize("higher_is_better", [True, False])
def test_scenario_threshold_at_25_percent(higher_is_better):
    target_decoy_map = scenario_map(higher_is_better)
    sign = 1 if higher_is_better else -1

    # when
    results = target_decoy_map.get_fdr_threshold(25.0)

    # then
    assert results.has_threshold
    assert sign * results.score_threshold >= 0.7
    assert results.n_target == 2
    assert results.n_decoy == 0

    levels = {
        score: validation_level(sign * score, results)
        for score, is_decoy in SCENARIO_POINTS
        if not is_decoy
    }
    assert levels[0.9] == ValidationLevel.CONFIDENT
    assert levels[0.8] == ValidationLevel.CONFIDENT
    assert levels[0.6] != ValidationLevel.CONFIDENT


@pytest.mark.parametrize(
    "score, expected_pep",
    [
        # more stringent than all points
        (1.0, 0.0),
        (0.9, 0.0),
        # between observed scores the next more stringent point decides
        (0.75, 0.0),
        (0.7, 0.5),
        (0.65, 0.5),
        # less stringent than all points
        (0.1, 0.5),
    ],
)
def test_get_probability_step_lookup(score, expected_pep):
    target_decoy_map = scenario_map()
    assert target_decoy_map.get_probability(score) == pytest.approx(expected_pep)


def test_get_probabilities_matches_scalar_lookup():
    target_decoy_map = scenario_map()
    scores = np.array([1.0, 0.85, 0.7, 0.65, 0.1])

    assert np.allclose(
        target_decoy_map.get_probabilities(scores),
        [target_decoy_map.get_probability(s) for s in scores],
    )


def test_pep_non_decreasing_as_stringency_relaxes():
    rng = np.random.default_rng(7)
    target_decoy_map = TargetDecoyMap()
    target_decoy_map.add_points(rng.normal(3, 1, 500), np.zeros(500, dtype=bool))
    target_decoy_map.add_points(rng.normal(1, 1, 300), np.ones(300, dtype=bool))

    target_decoy_map.estimate_probabilities()

    assert target_decoy_map.can_estimate
    assert np.all(np.diff(target_decoy_map.pep) >= 0)
    assert np.all((target_decoy_map.pep >= 0) & (target_decoy_map.pep <= 1))


def test_re_estimation_is_bit_identical():
    rng = np.random.default_rng(3)
    target_decoy_map = TargetDecoyMap()
    target_decoy_map.add_points(rng.normal(3, 1, 200), rng.random(200) < 0.3)

    target_decoy_map.estimate_probabilities()
    first = target_decoy_map.to_df()
    target_decoy_map.estimate_probabilities()
    second = target_decoy_map.to_df()

    assert first.equals(second)
    assert np.array_equal(first["pep"].to_numpy(), second["pep"].to_numpy())


def test_without_decoys_probabilities_default_to_one():
    target_decoy_map = TargetDecoyMap()
    target_decoy_map.add_points([3.0, 2.0, 1.0], [False, False, False])

    target_decoy_map.estimate_probabilities()

    assert not target_decoy_map.can_estimate
    assert target_decoy_map.get_probability(3.0) == 1.0
    assert not target_decoy_map.get_fdr_threshold(1.0).has_threshold


def test_lookup_with_pending_points_raises():
    target_decoy_map = scenario_map()

    target_decoy_map.add_point(0.95, False)

    with pytest.raises(MapNotEstimatedError):
        target_decoy_map.get_probability(0.9)
    with pytest.raises(MapNotEstimatedError):
        target_decoy_map.get_fdr_threshold(1.0)


def test_add_point_rejects_nan():
    with pytest.raises(ValueError):
        TargetDecoyMap().add_point(float("nan"), False)


def test_merge_equals_single_map():
    rng = np.random.default_rng(11)
    scores = rng.normal(2, 1, 100)
    decoys = rng.random(100) < 0.4

    single = TargetDecoyMap()
    single.add_points(scores, decoys)
    single.estimate_probabilities()

    first, second = TargetDecoyMap(), TargetDecoyMap()
    first.add_points(scores[:50], decoys[:50])
    second.add_points(scores[50:], decoys[50:])
    first.merge(second)
    first.estimate_probabilities()

    assert first.n_decoys == single.n_decoys
    assert np.array_equal(first.pep, single.pep)


def test_merge_rejects_different_orientation():
    with pytest.raises(ValueError):
        TargetDecoyMap(higher_is_better=True).merge(TargetDecoyMap(higher_is_better=False))


def test_target_decoy_ratio_scales_decoys():
    target_decoy_map = TargetDecoyMap(target_decoy_ratio=0.5)
    target_decoy_map.add_points([0.9, 0.8, 0.7, 0.6], [False, False, True, False])

    target_decoy_map.estimate_probabilities()

    assert np.allclose(target_decoy_map.raw_pep, [0.0, 0.0, 0.25, 1 / 6])


@pytest.mark.parametrize("higher_is_better", [True, False])
def test_flat_pep_curve_does_not_widen_confident_set(higher_is_better):
    # one early decoy lifts the PEP curve to 1.0 for every less stringent score
    points = [
        (10, False),
        (9, True),
        (8, False),
        (7, False),
        (6, False),
        (5, False),
        (4, True),
        (3, True),
        (2, True),
    ]
    sign = 1 if higher_is_better else -1
    target_decoy_map = TargetDecoyMap(higher_is_better=higher_is_better)
    for score, is_decoy in points:
        target_decoy_map.add_point(sign * score, is_decoy)
    target_decoy_map.estimate_probabilities()

    # when
    results = target_decoy_map.get_fdr_threshold(20.0)

    # then
    assert results.score_threshold == sign * 5
    assert results.pep_threshold == 1.0

    confident = [
        is_decoy
        for score, is_decoy in points
        if validation_level(sign * score, results) == ValidationLevel.CONFIDENT
    ]
    assert len(confident) == 6
    assert sum(confident) == 1
    assert sum(confident) / (len(confident) - sum(confident)) <= 0.2
