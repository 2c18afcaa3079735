from __future__ import annotations

import numpy as np
import pytest
from pyedflib import highlevel

from hypnokit import ConfigurationError, EDFLoader, RecordingFacade, signal_gen

SRATE = 200


@pytest.fixture
def edf_path(tmp_path):
    eeg, _ = signal_gen(30, SRATE, [[10, 40.0]])
    emg, _ = signal_gen(30, SRATE, [[50, 20.0]])
    headers = highlevel.make_signal_headers(["EEG", "EMG"], dimension="uV", sample_frequency=SRATE,
                                            physical_min=-100, physical_max=100)
    path = tmp_path / "mouse01.edf"
    highlevel.write_edf(str(path), [eeg, emg], headers)
    return path, eeg, emg


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        EDFLoader(tmp_path / "absent.edf")


def test_inspect_reports_channels(edf_path):
    path, _, _ = edf_path
    loader = EDFLoader(path)

    info = loader.inspect()
    assert loader.labels == ["EEG", "EMG"]
    assert info["n_signals"] == 2
    assert info["duration"] == pytest.approx(30)
    assert info["signals"][0]["sample_rate"] == SRATE
    assert info["signals"][1]["n_samples"] == 30 * SRATE


def test_read_signal_by_label_or_index(edf_path):
    path, eeg, emg = edf_path
    loader = EDFLoader(path)

    data, rate = loader.read_signal("eeg")
    assert rate == SRATE
    assert np.allclose(data, eeg, atol=0.01)
    data, _ = loader.read_signal(1, duration=5)
    assert data.size == 5 * SRATE
    assert np.allclose(data, emg[:5 * SRATE], atol=0.01)
    with pytest.raises(ConfigurationError):
        loader.read_signal("ECG")
    with pytest.raises(ConfigurationError):
        loader.read_signal(2)


def test_load_signals(edf_path):
    path, _, _ = edf_path
    loader = EDFLoader(path)

    signals = loader.load_signals(["EMG"])
    assert list(signals) == ["EMG"]
    assert signals["EMG"]["sample_rate"] == SRATE
    assert loader.signals_dict is signals


def test_to_recording_uses_file_sample_rate(edf_path):
    path, _, _ = edf_path
    recording = EDFLoader(path).to_recording(eeg="EEG", emg="EMG", hypnogram=[1, 2, 3], hz_max=40)

    assert isinstance(recording, RecordingFacade)
    assert recording.config.srate == SRATE
    assert recording.n_epochs == 3
    assert recording.frequencies[-1] == pytest.approx(40)
    assert recording.emg.size == 30 * SRATE
