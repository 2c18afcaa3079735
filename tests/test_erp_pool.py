from __future__ import annotations

import matplotlib.pyplot as plt
import numpy as np
import pytest

from hypnokit import ConfigurationError, DataIntegrityError, ERPool

# one sample per millisecond keeps window arithmetic readable
SRATE = 1000


@pytest.fixture
def pool():
    eeg = np.arange(100, dtype=float)
    return ERPool(eeg, [10, 20, 30], [1, 2, 1], srate=SRATE, baseline=2, response=3)


def test_trials_are_time_locked_to_onsets(pool):
    trials = pool.trials(1)

    assert trials.shape == (2, 5)
    assert np.array_equal(trials[0], [9, 10, 11, 12, 13])
    assert np.array_equal(trials[1], [29, 30, 31, 32, 33])
    assert np.array_equal(pool.trials(2), [[19, 20, 21, 22, 23]])
    assert np.array_equal(pool.codes, [1, 2])


def test_average_and_time_range(pool):
    assert np.array_equal(pool.average(1), [19, 20, 21, 22, 23])
    assert np.allclose(pool.time_range(), [-1, 0, 1, 2, 3])
    # the onset sample sits at time 0
    assert pool.trials(2)[0][np.flatnonzero(pool.time_range() == 0)[0]] == 20


def test_unknown_code_gives_empty_trials(pool):
    assert pool.trials(7).shape == (0, 5)
    assert np.isnan(pool.average(7)).all()


def test_window_changes_mark_trials_dirty(pool):
    pool.trials(1)
    assert not pool.is_dirty

    pool.baseline = 4
    assert pool.is_dirty
    assert np.array_equal(pool.trials(1)[0], np.arange(7, 14))

    pool.srate = 2000
    assert pool.baseline_samples == 8
    assert pool.response_samples == 6
    assert pool.time_range()[-1] == pytest.approx(3)


def test_invalid_windows_are_rolled_back(pool):
    with pytest.raises(ConfigurationError):
        pool.response = 0
    with pytest.raises(ConfigurationError):
        pool.response = 0.1
    assert pool.response == 3
    assert pool.response_samples == 3
    with pytest.raises(ConfigurationError):
        pool.baseline = -1


def test_events_must_fit_in_the_signal():
    eeg = np.zeros(100)

    with pytest.raises(DataIntegrityError) as info:
        ERPool(eeg, [0, 50, 98], [1, 1, 1], srate=SRATE, baseline=2, response=3).trials(1)
    assert info.value.positions == [0, 2]


def test_event_inputs_are_checked():
    eeg = np.zeros(100)

    with pytest.raises(DataIntegrityError):
        ERPool(eeg, [10, 20], [1], srate=SRATE)
    with pytest.raises(DataIntegrityError) as info:
        ERPool(eeg, [10, 20.5, np.nan], [1, 1, 1], srate=SRATE)
    assert info.value.positions == [1, 2]


def test_plot_draws_one_average_per_code(pool):
    fig, ax = plt.subplots()

    assert pool.plot(ax=ax) is ax
    # two averages plus the onset marker
    assert len(ax.lines) == 3
    assert ax.get_xlim() == (-2, 3)
    plt.close(fig)
