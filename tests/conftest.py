from __future__ import annotations

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest

from hypnokit import Marker, signal_gen

SRATE = 400
EPOCH = 10

# one pure tone per vigilance state: (frequency Hz, amplitude)
STATE_WAVES = {1: [[5, 1.0]], 2: [[10, 2.0]], 3: [[20, 1.0]]}


@pytest.fixture
def scenario_markers():
    return [
        Marker(1234, 1901, "SWD"),
        Marker(4022, 6234, "SWD"),
        Marker(7182, 8302, "Art"),
        Marker(9100, 9900, "Art"),
        Marker(13400, 15985, "SWD"),
    ]


@pytest.fixture
def hypnogram():
    return np.array([1, 1, 2, 2, 3, 3, 1, 1, 2, 2, 3, 3])


@pytest.fixture
def state_eeg(hypnogram):
    """EEG whose spectral content is fully determined by the state of each epoch."""
    return np.concatenate([signal_gen(EPOCH, SRATE, STATE_WAVES[s])[0] for s in hypnogram])


@pytest.fixture
def alpha_signal():
    signal, _ = signal_gen(60, SRATE, [[10, 1.0]], noise=0.1, rng=0)
    return signal
