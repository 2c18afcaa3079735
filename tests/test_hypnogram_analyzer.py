from __future__ import annotations

from itertools import permutations

import numpy as np
import pytest

from hypnokit import DataIntegrityError, HypnogramAnalyzer, decode_transition, transition_code

EPISODE_HYPNOGRAM = [1, 1, 1, 3, 1, 2, 1, 2, 2, 1, 1, 3, 3, 2, 2, 2, 3, 3, 3, 2]


def test_state_epoch_counts_per_block():
    analyzer = HypnogramAnalyzer([1, 2, 3, 1, 2, 3, 1, 1, 1, 1, 1, 1, 2, 3, 2, 3, 2, 3], block=3)

    counts = analyzer.state_epoch_counts()
    assert np.array_equal(counts, np.array([
        [1, 1, 3, 3, 0, 0],
        [1, 1, 0, 0, 2, 1],
        [1, 1, 0, 0, 1, 2],
    ]))
    assert np.array_equal(counts.sum(axis=0), np.full(6, 3))


def test_state_total_durations_and_minutes():
    analyzer = HypnogramAnalyzer([1, 1, 2, 3, 3, 3], epoch=20)

    assert np.array_equal(analyzer.state_total_durations(), np.array([[40], [20], [60]]))
    assert np.allclose(analyzer.state_total_minutes(), np.array([[40], [20], [60]]) / 60)


def test_state_proportions_with_four_states():
    analyzer = HypnogramAnalyzer([1, 1, 1, 1, 1, 1, 2, 2, 1, 2, 3, 4], block=4,
                                 states=["REM", "NREM", "Wake", "Art"])

    proportions = analyzer.state_proportions()
    assert np.allclose(proportions, np.array([
        [1, 0.5, 0.25],
        [0, 0.5, 0.25],
        [0, 0, 0.25],
        [0, 0, 0.25],
    ]))
    assert np.allclose(proportions.sum(axis=0), 1.0)


def test_state_episode_counts():
    analyzer = HypnogramAnalyzer(EPISODE_HYPNOGRAM, block=5)

    counts = analyzer.state_episode_counts()
    assert np.array_equal(counts, np.array([
        [2, 2, 0, 0],
        [0, 2, 1, 1],
        [1, 0, 1, 1],
    ]))


def test_episode_counts_sum_to_episode_starts_per_block():
    hypnogram = np.array(EPISODE_HYPNOGRAM)
    analyzer = HypnogramAnalyzer(hypnogram, block=5)

    starts = np.diff(np.concatenate(([0], hypnogram))) != 0
    assert np.array_equal(analyzer.state_episode_counts().sum(axis=0),
                          starts.reshape(4, 5).sum(axis=1))


def test_state_episode_durations_attributed_to_starting_block():
    analyzer = HypnogramAnalyzer(EPISODE_HYPNOGRAM, block=5)

    durations = analyzer.state_episode_durations()
    assert durations == [
        [[30, 10], [10, 20], [], []],
        [[], [10, 20], [30], [10]],
        [[10], [], [20], [30]],
    ]


def test_episode_durations_cover_every_epoch():
    rng = np.random.default_rng(7)
    hypnogram = rng.integers(1, 4, size=120)
    analyzer = HypnogramAnalyzer(hypnogram, epoch=4, block=12)

    durations = analyzer.state_episode_durations()
    per_state = np.array([sum(sum(cell) for cell in row) / 4 for row in durations])
    assert np.array_equal(per_state, analyzer.state_epoch_counts().sum(axis=1))


def test_state_episode_duration_mean_and_std():
    analyzer = HypnogramAnalyzer(EPISODE_HYPNOGRAM, block=5)

    mean = analyzer.state_episode_duration_mean()
    expected = np.array([
        [20, 15, np.nan, np.nan],
        [np.nan, 15, 30, 10],
        [10, np.nan, 20, 30],
    ])
    assert np.allclose(mean, expected, equal_nan=True)

    std = analyzer.state_episode_duration_std()
    assert std[0, 0] == pytest.approx(np.sqrt(200))
    assert std[0, 1] == pytest.approx(np.sqrt(50))
    assert std[1, 2] == 0
    assert np.isnan(std[0, 2])


def test_state_transitions_counts():
    analyzer = HypnogramAnalyzer([1, 1, 2, 3, 3, 2, 3, 1, 1, 2, 1, 3, 1])

    table = analyzer.state_transitions()
    assert list(table.columns) == ["Before", "After", "Count", "Count_1"]
    assert table["Before"].tolist() == ["REM", "REM", "NREM", "NREM", "Wake", "Wake"]
    assert table["After"].tolist() == ["NREM", "Wake", "Wake", "REM", "REM", "NREM"]
    assert table["Count"].tolist() == [2, 1, 2, 1, 2, 1]


def test_transition_pairs_order():
    analyzer = HypnogramAnalyzer([1, 2, 3])

    assert analyzer.transition_pairs() == [(1, 2), (1, 3), (2, 3), (2, 1), (3, 1), (3, 2)]


def test_transitions_counted_in_block_of_preceding_epoch():
    analyzer = HypnogramAnalyzer([1, 1, 1, 2, 2, 2], block=3)

    counts = analyzer.transition_counts()
    # (1, 2) is the first pair
    assert np.array_equal(counts[0], np.array([1, 0]))
    table = analyzer.state_transitions()
    assert table.loc[0, "Count_1"] == 1
    assert table.loc[0, "Count_2"] == 0


def test_is_transition_and_transition_count():
    analyzer = HypnogramAnalyzer([1, 2, 1, 2, 3])

    assert np.array_equal(analyzer.is_transition(1, 2), np.array([True, False, True, False]))
    assert analyzer.transition_count(1, 2) == 2
    assert analyzer.transition_count(3, 1) == 0


def test_transition_encoding_is_injective():
    for nstates in range(2, 10):
        pairs = list(permutations(range(1, nstates + 1), 2))
        codes = {transition_code(before, after) for before, after in pairs}
        assert len(codes) == len(pairs)
        for before, after in pairs:
            assert decode_transition(transition_code(before, after)) == (before, after)


def test_decode_transition_rejects_invalid_codes():
    with pytest.raises(ValueError):
        decode_transition(0)
    with pytest.raises(ValueError):
        decode_transition(5)


def test_hypnogram_trimmed_to_whole_blocks():
    analyzer = HypnogramAnalyzer([1] * 14, block=4)

    assert analyzer.nblocks == 3
    assert analyzer.hyplen == 12
    assert analyzer.hypnogram.size == 12
    assert analyzer.blocked.shape == (4, 3)


def test_nan_labels_are_reported_by_position():
    with pytest.raises(DataIntegrityError) as excinfo:
        HypnogramAnalyzer([1, 2, np.nan, 3, np.nan])

    assert excinfo.value.positions == [2, 4]


def test_labels_outside_state_range_are_rejected():
    with pytest.raises(DataIntegrityError):
        HypnogramAnalyzer([1, 2, 4])
    with pytest.raises(DataIntegrityError):
        HypnogramAnalyzer([0, 1, 2])
    with pytest.raises(DataIntegrityError):
        HypnogramAnalyzer([1, 1.5, 2])


def test_hypnogram_shorter_than_a_block_is_rejected():
    with pytest.raises(DataIntegrityError):
        HypnogramAnalyzer([1, 2, 3], block=5)
    with pytest.raises(DataIntegrityError):
        HypnogramAnalyzer([])


def test_aggregates_are_idempotent():
    analyzer = HypnogramAnalyzer(EPISODE_HYPNOGRAM, block=5)

    assert np.array_equal(analyzer.state_epoch_counts(), analyzer.state_epoch_counts())
    assert np.array_equal(analyzer.state_episode_duration_mean(),
                          analyzer.state_episode_duration_mean(), equal_nan=True)
    assert analyzer.state_transitions().equals(analyzer.state_transitions())


def test_summary_has_one_row_per_state_and_block():
    analyzer = HypnogramAnalyzer(EPISODE_HYPNOGRAM, block=5)

    summary = analyzer.summary()
    assert len(summary) == 3 * 4
    first = summary.iloc[0]
    assert first["state"] == "REM"
    assert first["block"] == 1
    assert first["episodes"] == 2
    assert first["episode_mean_s"] == 20
