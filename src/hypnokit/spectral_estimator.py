"""
SpectralEstimator - Epoch-wise Welch Power Spectral Density
===========================================================

This module provides power spectral density estimates for single EEG/EMG
channels, computed epoch by epoch with Welch's method. The signal is cut
into consecutive, non-overlapping epochs of fixed duration and a spectrum
is estimated for each of them by averaging periodograms of overlapping,
windowed kernels.

Features:
- Welch estimation with hann, hamming, blackman, blackman-harris or kaiser kernels
- Frequency-of-interest slicing (HzMin/HzMax) cached once per parameter change
- Named frequency bands (Delta, Theta, Alpha, Sigma, Beta, Gamma, All)
- Lazy recomputation: parameter writes only mark the estimate dirty
- Log-power spectrograms and mean power density curves for plotting
"""

import logging

import numpy as np
import matplotlib.pyplot as plt
from scipy.signal import welch, get_window

from .config import (
    check_non_negative,
    check_overlap,
    check_positive,
    normalize_window,
    parse_bands,
)
from .errors import ConfigurationError, DataIntegrityError

logger = logging.getLogger('hypnokit')

DEFAULT_BANDS = {
    "Delta": (0.5, 5.0),
    "Theta": (6.0, 9.5),
    "Alpha": (8.0, 15.0),
    "Sigma": (10.5, 15.0),
    "Beta": (15.5, 30.0),
    "Gamma": (30.0, 60.0),
    "All": (0.0, 60.0),
}

# kaiser(N) without an explicit beta
KAISER_BETA = 0.5

# absolute tolerance when matching grid frequencies against band edges
_HZ_TOL = 1e-9


class SpectralEstimator:
    """
    Welch power spectral density estimates over fixed-length epochs.

    The frequency grid has a resolution of ``1 / kernel_size`` Hz and spans
    ``[0, srate / 2]``; only the Nyquist ceiling depends on the sampling
    rate. Spectra are returned restricted to the frequencies of interest
    ``[hz_min, hz_max]``, one column per epoch.

    Writing any of ``srate``, ``epoch``, ``kernel_size``, ``kernel_overlap``,
    ``window``, ``hz_min`` or ``hz_max`` re-derives the sample counts and the
    frequency grid immediately and marks the Welch estimate dirty; the
    estimate itself is recomputed on the next read.

    Parameters
    ----------
    signal : array_like
        One-dimensional sequence of samples.
    srate : float
        Sampling rate in Hz.
    epoch : float, default=10
        Epoch duration in seconds. ``0`` treats the whole signal as a single
        epoch, which is how isolated event fragments are analysed.
    kernel_size : float, default=2
        Welch kernel length in seconds; must not exceed the epoch.
    kernel_overlap : float, default=0.5
        Fraction of kernel overlap, in ``[0, 1)``.
    window : {'hann', 'hamming', 'blackman', 'blackmanharris', 'kaiser'}, default='hann'
        Kernel window function.
    hz_min, hz_max : float, default=0, 30
        Frequencies of interest, inclusive.
    bands : dict, optional
        Band definitions ``{name: (low_hz, high_hz)}`` merged over
        ``DEFAULT_BANDS``.

    Raises
    ------
    DataIntegrityError
        If the signal is not a non-empty one-dimensional numeric vector.
    ConfigurationError
        If any scalar parameter is out of range or the window is unknown.
    """

    def __init__(self, signal, srate, epoch=10, kernel_size=2, kernel_overlap=0.5,
                 window='hann', hz_min=0, hz_max=30, bands=None):
        self._signal = as_signal(signal)

        self._srate = check_positive(srate, 'srate')
        self._epoch = check_non_negative(epoch, 'epoch')
        self._kernel_size = check_positive(kernel_size, 'kernel_size')
        self._kernel_overlap = check_overlap(kernel_overlap)
        self._window = normalize_window(window)
        self._hz_min = check_non_negative(hz_min, 'hz_min')
        self._hz_max = check_non_negative(hz_max, 'hz_max')

        self.frequency_bands = dict(DEFAULT_BANDS)
        if bands:
            self.frequency_bands.update(parse_bands(bands))

        # Welch cache
        self._pxx = None
        self._dirty = True
        self.max_power = None
        self.min_power = None
        self.max_log_power = None
        self.min_log_power = None

        self._update_parameters()

    # ========================================================================
    # PUBLIC PROPERTIES - Observable parameters
    # ========================================================================

    @property
    def signal(self):
        return self._signal

    @property
    def srate(self):
        return self._srate

    @srate.setter
    def srate(self, value):
        self._assign('_srate', check_positive(value, 'srate'))

    @property
    def epoch(self):
        return self._epoch

    @epoch.setter
    def epoch(self, value):
        self._assign('_epoch', check_non_negative(value, 'epoch'))

    @property
    def kernel_size(self):
        return self._kernel_size

    @kernel_size.setter
    def kernel_size(self, value):
        self._assign('_kernel_size', check_positive(value, 'kernel_size'))

    @property
    def kernel_overlap(self):
        return self._kernel_overlap

    @kernel_overlap.setter
    def kernel_overlap(self, value):
        self._assign('_kernel_overlap', check_overlap(value))

    @property
    def window(self):
        return self._window

    @window.setter
    def window(self, value):
        self._assign('_window', normalize_window(value))

    @property
    def hz_min(self):
        return self._hz_min

    @hz_min.setter
    def hz_min(self, value):
        self._assign('_hz_min', check_non_negative(value, 'hz_min'))

    @property
    def hz_max(self):
        return self._hz_max

    @hz_max.setter
    def hz_max(self, value):
        self._assign('_hz_max', check_non_negative(value, 'hz_max'))

    # ========================================================================
    # PUBLIC PROPERTIES - Derived, read-only
    # ========================================================================

    @property
    def num_epochs(self):
        return self._num_epochs

    @property
    def samples_per_epoch(self):
        return self._spe

    @property
    def samples_per_kernel(self):
        return self._spk

    @property
    def frequencies(self):
        """The full frequency grid, ``0 : 1/kernel_size : srate/2``."""
        return self._freqs.copy()

    @property
    def hz_range(self):
        """The frequencies of interest, i.e. the rows returned by ``spectra``."""
        return self._freqs[self._hz_rng]

    @property
    def is_dirty(self):
        return self._dirty

    # ========================================================================
    # PUBLIC METHODS - Configuration
    # ========================================================================

    def configure(self, **params):
        """
        Write several observable parameters at once.

        Parameters
        ----------
        **params
            Any of ``srate``, ``epoch``, ``kernel_size``, ``kernel_overlap``,
            ``window``, ``hz_min``, ``hz_max``.

        Returns
        -------
        bool
            True if at least one value changed (and the estimate is now
            dirty), False if every value was already in place.
        """
        validators = {
            'srate': lambda v: check_positive(v, 'srate'),
            'epoch': lambda v: check_non_negative(v, 'epoch'),
            'kernel_size': lambda v: check_positive(v, 'kernel_size'),
            'kernel_overlap': check_overlap,
            'window': normalize_window,
            'hz_min': lambda v: check_non_negative(v, 'hz_min'),
            'hz_max': lambda v: check_non_negative(v, 'hz_max'),
        }
        unknown = set(params) - set(validators)
        if unknown:
            raise ConfigurationError(f"Unknown spectral parameter(s): {sorted(unknown)}")

        changes = {}
        for name, value in params.items():
            value = validators[name](value)
            if getattr(self, f'_{name}') != value:
                changes[f'_{name}'] = value
        if not changes:
            return False

        self._assign_many(changes)
        return True

    def set_frequency_bands(self, bands_dict):
        """
        Add or replace named frequency bands.

        Parameters
        ----------
        bands_dict : dict
            Mapping ``{band_name: (low_hz, high_hz)}``. Existing bands with
            the same name are replaced, the others are kept.
        """
        self.frequency_bands.update(parse_bands(bands_dict))
        logger.debug(f"Updated frequency bands: {self.frequency_bands}")

    def get_analysis_info(self):
        """
        Current estimator settings, for documentation and reproducibility.

        Returns
        -------
        dict
            Sampling rate, epoch, kernel settings, window, frequencies of
            interest, band definitions and the number of epochs.
        """
        return {
            'srate': self._srate,
            'epoch': self._epoch,
            'kernel_size': self._kernel_size,
            'kernel_overlap': self._kernel_overlap,
            'window': self._window,
            'hz_min': self._hz_min,
            'hz_max': self._hz_max,
            'frequency_bands': dict(self.frequency_bands),
            'num_epochs': self._num_epochs,
        }

    # ========================================================================
    # PUBLIC METHODS - Spectra
    # ========================================================================

    def spectra(self, epochs=None):
        """
        Power spectra for the frequencies of interest.

        Parameters
        ----------
        epochs : array_like of int or bool, optional
            0-based epoch indices or a boolean mask over all epochs. If
            None, every epoch is returned.

        Returns
        -------
        numpy.ndarray
            Matrix of shape ``(len(hz_range), n_selected_epochs)``; each
            column is the spectrum of one epoch.
        """
        if self._dirty:
            self._compute_welch()
        return self._pxx[self._hz_rng][:, self._select(epochs)]

    def log_spectra(self, epochs=None):
        """
        Spectra in decibels (``10 * log10`` of power).

        Also records the minimum and maximum log power of the returned
        matrix in ``min_log_power`` / ``max_log_power``, which plotting code
        uses to fix a colour scale.
        """
        with np.errstate(divide='ignore'):
            rv = 10 * np.log10(self.spectra(epochs))
        if rv.size:
            self.min_log_power = float(np.min(rv))
            self.max_log_power = float(np.max(rv))
        return rv

    def band_power(self, band, epochs=None):
        """
        Mean power within a named band, one value per epoch.

        The band range is independent of ``hz_min``/``hz_max``: all grid
        frequencies within the band edges (inclusive) are averaged.

        Parameters
        ----------
        band : str
            Band name, matched case-insensitively against ``frequency_bands``.
        epochs : array_like of int or bool, optional
            Epoch selection, as in ``spectra``.

        Returns
        -------
        numpy.ndarray
            One value per selected epoch.
        """
        if self._dirty:
            self._compute_welch()
        rows = self._band_rows(band)
        return self._pxx[rows][:, self._select(epochs)].mean(axis=0)

    def mean_power(self, epochs=None):
        """Mean power density across the selected epochs, one value per frequency of interest."""
        return self.spectra(epochs).mean(axis=1)

    def mean_band_power(self, band, epochs=None):
        """Mean band power across the selected epochs."""
        return float(self.band_power(band, epochs).mean())

    def power_density_curve(self, epochs=None):
        """
        Frequencies of interest and the mean power density over the selected epochs.

        Returns
        -------
        tuple of numpy.ndarray
            ``(hz_range, mean_power)``
        """
        return self.hz_range, self.mean_power(epochs)

    def spectrogram(self, epochs=None):
        """Log-power matrix (frequency x epoch), as drawn by ``plot_spectrogram``."""
        return self.log_spectra(epochs)

    # ========================================================================
    # PUBLIC METHODS - Visualization
    # ========================================================================

    def plot_power_density_curve(self, epochs=None, ax=None):
        """
        Draw the mean power density curve on a logarithmic power axis.

        Parameters
        ----------
        epochs : array_like of int or bool, optional
            Epoch selection, as in ``spectra``.
        ax : matplotlib.axes.Axes, optional
            Target axes; a new figure is created if omitted.

        Returns
        -------
        matplotlib.axes.Axes
        """
        if ax is None:
            _, ax = plt.subplots(figsize=(8, 4))
        hz, power = self.power_density_curve(epochs)
        ax.semilogy(hz, power)
        ax.set_xlabel('Frequency (Hz)')
        ax.set_ylabel('Power density')
        ax.grid(True, alpha=0.3)
        return ax

    def plot_spectrogram(self, epochs=None, ax=None):
        """
        Draw the log-power spectrogram, frequency on the vertical axis.

        Returns
        -------
        matplotlib.axes.Axes
        """
        if ax is None:
            _, ax = plt.subplots(figsize=(12, 4))
        image = self.spectrogram(epochs)
        hz = self.hz_range
        ax.imshow(image, origin='lower', aspect='auto', cmap='jet',
                  extent=(0, image.shape[1], hz[0], hz[-1]) if hz.size else None)
        ax.tick_params(direction='out')
        ax.set_xlabel('Epoch')
        ax.set_ylabel('Frequency (Hz)')
        return ax

    # ========================================================================
    # PRIVATE METHODS
    # ========================================================================

    def _assign(self, attribute, value):
        self._assign_many({attribute: value})

    def _assign_many(self, changes):
        """Apply parameter writes, re-derive, and roll back if the combination is invalid."""
        previous = {name: getattr(self, name) for name in changes}
        for name, value in changes.items():
            setattr(self, name, value)
        try:
            self._update_parameters()
        except ConfigurationError:
            for name, value in previous.items():
                setattr(self, name, value)
            raise

    def _update_parameters(self):
        """Re-derive sample counts, kernel window and frequency grid; mark spectra dirty."""
        if self._hz_min > self._hz_max:
            raise ConfigurationError(f"hz_min ({self._hz_min}) must not exceed hz_max ({self._hz_max})")

        spk = int(round(self._kernel_size * self._srate))
        if spk < 2:
            raise ConfigurationError(
                f"kernel_size ({self._kernel_size} s) spans fewer than two samples at {self._srate} Hz"
            )

        n = self._signal.size
        if self._epoch == 0:
            # the whole signal is the epoch
            spe = n
            num_epochs = 1
        else:
            spe = int(round(self._epoch * self._srate))
            num_epochs = n // spe
        if spe < spk:
            raise ConfigurationError(
                f"kernel ({spk} samples) is longer than the epoch ({spe} samples)"
            )

        if self._window == 'kaiser':
            win = get_window(('kaiser', KAISER_BETA), spk, fftbins=False)
        else:
            win = get_window(self._window, spk, fftbins=False)

        freqs = np.fft.rfftfreq(spk, d=1.0 / self._srate)
        hz_rng = np.flatnonzero((freqs >= self._hz_min - _HZ_TOL) & (freqs <= self._hz_max + _HZ_TOL))

        self._spk = spk
        self._spe = spe
        self._num_epochs = num_epochs
        self._samples = num_epochs * spe
        self._win = win
        self._freqs = freqs
        self._hz_rng = hz_rng
        self._dirty = True
        logger.debug(f"Spectral parameters updated: {num_epochs} epochs of {spe} samples, "
                     f"kernel {spk} samples, {hz_rng.size} frequencies of interest")

    def _compute_welch(self):
        if self._num_epochs == 0:
            self._pxx = np.zeros((self._freqs.size, 0))
            self.max_power = self.min_power = np.nan
            self._dirty = False
            return

        # one row per epoch
        data = self._signal[:self._samples].reshape(self._num_epochs, self._spe)
        _, pxx = welch(data, fs=self._srate, window=self._win, nperseg=self._spk,
                       noverlap=int(self._spk * self._kernel_overlap), nfft=self._spk,
                       detrend=False, scaling='density', axis=-1)
        self._pxx = pxx.T

        roi = self._pxx[self._hz_rng]
        self.max_power = float(roi.max()) if roi.size else np.nan
        self.min_power = float(roi.min()) if roi.size else np.nan
        self._dirty = False
        logger.debug(f"Welch estimate computed for {self._num_epochs} epochs")

    def _select(self, epochs):
        if epochs is None:
            return slice(None)
        sel = np.atleast_1d(np.asarray(epochs))
        if sel.dtype == bool:
            if sel.size != self._num_epochs:
                raise ConfigurationError(
                    f"Boolean epoch mask has {sel.size} elements, expected {self._num_epochs}"
                )
            return sel
        return sel.astype(int)

    def _band_rows(self, band):
        edges = None
        for name, value in self.frequency_bands.items():
            if name.lower() == str(band).lower():
                edges = value
                break
        if edges is None:
            raise ConfigurationError(
                f"Unknown band '{band}'. Available: {list(self.frequency_bands)}"
            )
        low, high = edges
        rows = np.flatnonzero((self._freqs >= low - _HZ_TOL) & (self._freqs <= high + _HZ_TOL))
        if rows.size == 0:
            raise ConfigurationError(
                f"Band '{band}' ({low}-{high} Hz) contains no frequency of the grid "
                f"(resolution {1 / self._kernel_size} Hz, Nyquist {self._srate / 2} Hz)"
            )
        return rows


def as_signal(signal):
    """Read-only 1-D float copy of ``signal``; column and row vectors are flattened."""
    try:
        arr = np.array(signal, dtype=float)
    except (TypeError, ValueError):
        raise DataIntegrityError("signal must be a numeric vector") from None
    if arr.ndim != 1:
        if arr.ndim == 2 and 1 in arr.shape:
            arr = arr.reshape(-1)
        else:
            raise DataIntegrityError(f"signal must be one-dimensional, got shape {arr.shape}")
    if arr.size == 0:
        raise DataIntegrityError("signal is empty")
    arr.flags.writeable = False
    return arr
