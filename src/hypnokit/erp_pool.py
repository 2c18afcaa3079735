"""
ERPool - Event-Related Potential Pooling
========================================

Cuts a continuous EEG into fixed windows time-locked to stimulus events and
pools them per event code (e.g. 1 = standard, 2 = oddball).

Every window spans ``baseline`` milliseconds before the onset and
``response`` milliseconds after it. The onset sample itself closes the
baseline, so a window holds ``baseline_samples + response_samples``
samples and ``time_range`` runs from ``-baseline + 1/kHz`` to ``response``.

The trial matrix is built lazily: changing ``srate``, ``baseline`` or
``response`` only marks it dirty, and it is rebuilt on the next read.
"""

import logging

import numpy as np
import matplotlib.pyplot as plt

from .config import check_non_negative, check_positive
from .errors import ConfigurationError, DataIntegrityError
from .spectral_estimator import as_signal

logger = logging.getLogger('hypnokit')


class ERPool:
    """
    Stimulus-locked trials of an EEG signal, grouped by event code.

    Parameters
    ----------
    eeg : array_like
        One-dimensional signal.
    event_times : array_like of int
        0-based sample index of each stimulus onset.
    event_codes : array_like of int
        Event type of each onset; same length as ``event_times``.
    srate : float, default=4000
        Sampling rate in Hz.
    baseline : float, default=200
        Milliseconds analysed before each onset.
    response : float, default=600
        Milliseconds analysed after each onset.

    Raises
    ------
    DataIntegrityError
        If times and codes differ in length or a time is not a sample index.
    ConfigurationError
        If a window parameter is out of range.
    """

    def __init__(self, eeg, event_times, event_codes, srate=4000, baseline=200, response=600):
        self._eeg = as_signal(eeg)
        times = np.asarray(event_times, dtype=float).reshape(-1)
        codes = np.asarray(event_codes).reshape(-1)
        if times.size != codes.size:
            raise DataIntegrityError(
                f"event_times ({times.size}) and event_codes ({codes.size}) differ in length"
            )
        with np.errstate(invalid='ignore'):
            bad = np.flatnonzero(~np.isfinite(times) | (np.mod(times, 1) != 0))
        if bad.size:
            raise DataIntegrityError("event_times must be integer sample indices", bad)
        self._times = times.astype(np.int64)
        self._codes = codes

        self._srate = check_positive(srate, 'srate')
        self._baseline = check_non_negative(baseline, 'baseline')
        self._response = check_positive(response, 'response')

        self._trials = None
        self._dirty = True
        self._update_parameters()

    # ========================================================================
    # PUBLIC PROPERTIES
    # ========================================================================

    @property
    def srate(self):
        return self._srate

    @srate.setter
    def srate(self, value):
        self._assign('_srate', check_positive(value, 'srate'))

    @property
    def baseline(self):
        return self._baseline

    @baseline.setter
    def baseline(self, value):
        self._assign('_baseline', check_non_negative(value, 'baseline'))

    @property
    def response(self):
        return self._response

    @response.setter
    def response(self, value):
        self._assign('_response', check_positive(value, 'response'))

    @property
    def codes(self):
        """The distinct event codes, sorted."""
        return np.unique(self._codes)

    @property
    def baseline_samples(self):
        return self._bl_samples

    @property
    def response_samples(self):
        return self._rs_samples

    @property
    def is_dirty(self):
        return self._dirty

    # ========================================================================
    # PUBLIC METHODS
    # ========================================================================

    def trials(self, code):
        """
        Responses time-locked to the events of type ``code``.

        Returns
        -------
        numpy.ndarray
            ``(n_trials, baseline_samples + response_samples)``, one row per
            repetition in event order. Zero rows if the code never occurs.
        """
        if self._dirty:
            self._build_trials()
        return self._trials[self._codes == code]

    def average(self, code):
        """Mean response to ``code``; NaN everywhere if the code never occurs."""
        rows = self.trials(code)
        if rows.shape[0] == 0:
            logger.warning(f"No trials with event code {code}")
            return np.full(rows.shape[1], np.nan)
        return rows.mean(axis=0)

    def time_range(self):
        """Time of each window sample in milliseconds relative to the onset."""
        step = 1000.0 / self._srate
        return (np.arange(self._bl_samples + self._rs_samples) - self._bl_samples + 1) * step

    def plot(self, codes=None, ax=None):
        """
        Draw the average response of each event code.

        Parameters
        ----------
        codes : int or list of int, optional
            Codes to draw; all codes found in the events by default.
        ax : matplotlib.axes.Axes, optional
            Target axes; a new figure is created if omitted.

        Returns
        -------
        matplotlib.axes.Axes
        """
        if ax is None:
            _, ax = plt.subplots(figsize=(8, 4))
        codes = self.codes if codes is None else np.atleast_1d(codes)
        t = self.time_range()
        for code in codes:
            ax.plot(t, self.average(code), label=str(code))
        ax.axvline(0, color='k', linewidth=0.8, alpha=0.5)
        ax.set_xlim(-self._baseline, self._response)
        ax.set_xlabel('Time (ms)')
        ax.set_ylabel('Amplitude')
        ax.legend(title='Code')
        return ax

    # ========================================================================
    # PRIVATE METHODS
    # ========================================================================

    def _assign(self, attribute, value):
        previous = getattr(self, attribute)
        setattr(self, attribute, value)
        try:
            self._update_parameters()
        except ConfigurationError:
            setattr(self, attribute, previous)
            self._update_parameters()
            raise

    def _update_parameters(self):
        khz = self._srate / 1000.0
        # windows are whole samples
        self._bl_samples = int(round(self._baseline * khz))
        self._rs_samples = int(round(self._response * khz))
        if self._rs_samples < 1:
            raise ConfigurationError(
                f"response ({self._response} ms) spans no sample at {self._srate} Hz"
            )
        self._dirty = True

    def _build_trials(self):
        bl, rs = self._bl_samples, self._rs_samples
        first = self._times - bl + 1
        last = self._times + rs
        outside = np.flatnonzero((first < 0) | (last >= self._eeg.size))
        if outside.size:
            raise DataIntegrityError(
                f"{outside.size} event window(s) extend beyond the signal ({self._eeg.size} samples)",
                outside.tolist(),
            )

        # one row of window offsets broadcast over every onset
        offsets = np.arange(-bl + 1, rs + 1)
        self._trials = self._eeg[self._times[:, None] + offsets[None, :]]
        self._dirty = False
        logger.debug(f"Built {self._times.size} trials of {bl + rs} samples")
