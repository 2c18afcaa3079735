from __future__ import annotations

import matplotlib.pyplot as plt
import numpy as np
import pytest
from scipy.signal import get_window, welch

from hypnokit import ConfigurationError, DataIntegrityError, SpectralEstimator, signal_gen

SRATE = 400


def test_epochs_and_frequency_grid(alpha_signal):
    est = SpectralEstimator(alpha_signal, SRATE)

    assert est.num_epochs == 6
    assert est.samples_per_epoch == 4000
    assert est.samples_per_kernel == 800
    assert est.frequencies[1] == pytest.approx(0.5)
    assert est.frequencies[-1] == pytest.approx(200)
    assert est.hz_range[0] == 0
    assert est.hz_range[-1] == pytest.approx(30)
    assert est.spectra().shape == (61, 6)


def test_spectra_match_scipy_welch(alpha_signal):
    est = SpectralEstimator(alpha_signal, SRATE)

    _, expected = welch(alpha_signal[4000:8000], fs=SRATE, window=get_window("hann", 800, fftbins=False),
                        nperseg=800, noverlap=400, nfft=800, detrend=False, scaling="density")
    assert np.allclose(est.spectra()[:, 1], expected[:61])


def test_spectral_peak_at_signal_frequency(alpha_signal):
    est = SpectralEstimator(alpha_signal, SRATE)

    hz, power = est.power_density_curve()
    assert hz[np.argmax(power)] == pytest.approx(10)
    assert est.max_power >= power.max()
    assert np.all(est.band_power("alpha") > est.band_power("Delta"))


def test_log_spectra_in_decibels(alpha_signal):
    est = SpectralEstimator(alpha_signal, SRATE)

    log = est.log_spectra()
    assert np.allclose(log, 10 * np.log10(est.spectra()))
    assert est.min_log_power == pytest.approx(log.min())
    assert est.max_log_power == pytest.approx(log.max())
    assert np.array_equal(est.spectrogram(), log)


def test_epoch_selection_by_index_and_mask(alpha_signal):
    est = SpectralEstimator(alpha_signal, SRATE)

    mask = np.array([True, False, True, False, False, False])
    assert np.array_equal(est.spectra(mask), est.spectra([0, 2]))
    assert est.band_power("All", [3]).shape == (1,)
    assert est.mean_band_power("All", mask) == pytest.approx(est.band_power("All", [0, 2]).mean())
    with pytest.raises(ConfigurationError):
        est.spectra(np.array([True, False]))


def test_parameter_writes_mark_estimate_dirty(alpha_signal):
    est = SpectralEstimator(alpha_signal, SRATE)
    est.spectra()
    assert not est.is_dirty

    assert est.configure(hz_max=30, window="hann") is False
    assert not est.is_dirty

    assert est.configure(hz_max=20) is True
    assert est.is_dirty
    assert est.spectra().shape == (41, 6)
    assert not est.is_dirty

    est.kernel_size = 1
    assert est.is_dirty
    assert est.samples_per_kernel == 400
    assert est.hz_range[1] == pytest.approx(1.0)


def test_repeated_reads_are_identical(alpha_signal):
    est = SpectralEstimator(alpha_signal, SRATE)

    assert np.array_equal(est.spectra(), est.spectra())
    assert np.array_equal(est.band_power("Theta"), est.band_power("Theta"))


def test_invalid_parameters_are_rejected(alpha_signal):
    with pytest.raises(ConfigurationError):
        SpectralEstimator(alpha_signal, SRATE, window="triangle")
    with pytest.raises(ConfigurationError):
        SpectralEstimator(alpha_signal, -1)
    with pytest.raises(ConfigurationError):
        SpectralEstimator(alpha_signal, SRATE, kernel_overlap=1)
    with pytest.raises(ConfigurationError):
        SpectralEstimator(alpha_signal, SRATE, hz_min=40, hz_max=30)


def test_rejected_write_leaves_estimator_unchanged(alpha_signal):
    est = SpectralEstimator(alpha_signal, SRATE)

    with pytest.raises(ConfigurationError):
        est.kernel_size = 20
    assert est.kernel_size == 2
    assert est.samples_per_kernel == 800


def test_signal_must_be_a_vector():
    with pytest.raises(DataIntegrityError):
        SpectralEstimator(np.zeros((4, 4000)), SRATE)
    with pytest.raises(DataIntegrityError):
        SpectralEstimator([], SRATE)
    est = SpectralEstimator(np.zeros((3000, 1)), SRATE)
    assert est.num_epochs == 0
    assert est.spectra().shape == (61, 0)


def test_zero_epoch_treats_whole_signal_as_one_epoch():
    signal, _ = signal_gen(3.5, SRATE, [[8, 1.0]])
    est = SpectralEstimator(signal, SRATE, epoch=0)

    assert est.num_epochs == 1
    assert est.samples_per_epoch == signal.size
    assert est.spectra().shape == (61, 1)


def test_frequency_bands(alpha_signal):
    est = SpectralEstimator(alpha_signal, SRATE, bands={"Spindle": [11, 16]})

    assert est.frequency_bands["Delta"] == (0.5, 5.0)
    assert est.band_power("spindle").shape == (6,)
    est.set_frequency_bands({"Delta": (1, 4)})
    assert est.get_analysis_info()["frequency_bands"]["Delta"] == (1.0, 4.0)
    with pytest.raises(ConfigurationError):
        est.band_power("Kappa")


def test_kaiser_window(alpha_signal):
    est = SpectralEstimator(alpha_signal, SRATE, window="kaiser")

    assert est.window == "kaiser"
    assert np.all(np.isfinite(est.spectra()))


def test_plots_draw_on_given_axes(alpha_signal):
    est = SpectralEstimator(alpha_signal, SRATE)
    fig, (ax1, ax2) = plt.subplots(1, 2)

    assert est.plot_power_density_curve(ax=ax1) is ax1
    assert est.plot_spectrogram(ax=ax2) is ax2
    assert len(ax1.lines) == 1
    assert len(ax2.images) == 1
    plt.close(fig)
