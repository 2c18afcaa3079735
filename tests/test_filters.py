from __future__ import annotations

import numpy as np
import pytest
from scipy.signal import welch

from hypnokit import ConfigurationError, notch_band, signal_gen

SRATE = 400


def _power_at(signal, hz):
    freqs, pxx = welch(signal, fs=SRATE, nperseg=800)
    return pxx[np.flatnonzero(np.isclose(freqs, hz))[0]]


def test_notch_band_removes_mains_and_keeps_eeg():
    signal, _ = signal_gen(30, SRATE, [[10, 1.0], [50, 1.0]])

    filtered = notch_band(signal, SRATE)

    assert filtered.shape == signal.shape
    assert _power_at(filtered, 50) < _power_at(signal, 50) * 1e-2
    assert 0.5 < _power_at(filtered, 10) / _power_at(signal, 10) < 1.5


def test_notch_band_removes_out_of_band_content():
    signal, _ = signal_gen(30, SRATE, [[10, 1.0], [120, 1.0]])

    filtered = notch_band(signal, SRATE)
    assert _power_at(filtered, 120) < _power_at(signal, 120) * 1e-2


def test_notch_frequency_override():
    signal, _ = signal_gen(30, SRATE, [[10, 1.0], [60, 1.0]])

    filtered = notch_band(signal, SRATE, notch_low=59, notch_high=61, band_pass_high=65, band_stop_high=80)
    assert _power_at(filtered, 60) < _power_at(signal, 60) * 1e-2


def test_filter_edges_must_stay_below_nyquist():
    signal, _ = signal_gen(10, 100, [[10, 1.0]])

    with pytest.raises(ConfigurationError):
        notch_band(signal, 100)


def test_unknown_filter_parameter():
    with pytest.raises(ConfigurationError):
        notch_band(np.zeros(4000), SRATE, q_factor=30)


def test_signal_gen_shapes_and_noise():
    signal, t = signal_gen(2, SRATE, [[5, 1.0], [12, 0.5]])

    assert signal.size == t.size == 800
    assert t[1] == pytest.approx(1 / SRATE)
    assert np.abs(signal).max() <= 1.5

    a, _ = signal_gen(2, SRATE, [[5, 1.0]], noise=0.2, rng=3)
    b, _ = signal_gen(2, SRATE, [[5, 1.0]], noise=0.2, rng=3)
    assert np.array_equal(a, b)
    with pytest.raises(ConfigurationError):
        signal_gen(2, SRATE, [5, 1.0, 3])
