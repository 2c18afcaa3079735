"""
RecordingFacade - Combined Analysis of One Scored Recording
===========================================================

A recording bundles up to two signals (EEG, EMG), a hypnogram and a list of
event markers under one resolved configuration. The facade owns the
derived analyzers and keeps them consistent:

- ``SpectralEstimator`` over the EEG, for epoch spectra and band powers
- ``HypnogramAnalyzer`` over the hypnogram, aligned to the signal epochs
- ``EventRegistry`` over the markers, which also yields the exclusion mask

Every mutator updates its field and then calls ``recompute()``. The Welch
estimate itself stays lazy: it is only recomputed when a spectral
parameter actually changed.

Spectral aggregation modes
--------------------------
``spectrum(mode)`` averages epoch spectra per vigilance state, skipping
epochs excluded by artifact markers, and optionally normalizes them as a
percentage of the mean power in the ``All`` band:

==========================  =====================================================
Mode                        Result
==========================  =====================================================
RAW                         per-state mean spectrum, ``(nstates, nfreq)``
RAW_BINNED                  the same per block, ``(nblocks, nstates, nfreq)``
STATE                       RAW over each state's whole-recording All power
STATE_BINNED                RAW_BINNED over each state's per-block All power
TOTAL                       RAW over the whole-recording All power
TOTAL_BINNED                RAW_BINNED over each block's All power
STATE_BINNED_OVERALL        RAW_BINNED over each state's whole-recording All power
TOTAL_BINNED_OVERALL        RAW_BINNED over the whole-recording All power
==========================  =====================================================
"""

import logging
from dataclasses import asdict
from enum import Enum

import numpy as np
from tqdm import tqdm

from .config import load_config
from .errors import ConfigurationError, DataIntegrityError, HypnokitError, MissingInputError
from .event_registry import EventRegistry, as_marker, as_markers
from .filters import notch_band
from .hypnogram_analyzer import HypnogramAnalyzer, validate_hypnogram
from .spectral_estimator import SpectralEstimator, as_signal

logger = logging.getLogger('hypnokit')


class _KeywordMode(Enum):

    @classmethod
    def coerce(cls, value):
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ConfigurationError(
                f"Unknown {cls.__name__} '{value}'. Choose from {[m.value for m in cls]}"
            ) from None

    @classmethod
    def from_keywords(cls, *keywords):
        """Map a set of legacy keywords (case-insensitive) to a mode."""
        given = frozenset(str(k).lower() for k in keywords)
        unknown = given - cls._keywords()
        if unknown:
            raise ConfigurationError(f"Unknown {cls.__name__} keyword(s): {sorted(unknown)}")
        try:
            return cls._keyword_table()[given]
        except KeyError:
            raise ConfigurationError(
                f"Keyword combination {sorted(given)} does not select a {cls.__name__}"
            ) from None

    @classmethod
    def _keywords(cls):
        return frozenset().union(*cls._keyword_table())


class SpectrumMode(_KeywordMode):
    RAW = 'raw'
    RAW_BINNED = 'raw-binned'
    STATE = 'state'
    STATE_BINNED = 'state-binned'
    TOTAL = 'total'
    TOTAL_BINNED = 'total-binned'
    STATE_BINNED_OVERALL = 'state-binned-overall'
    TOTAL_BINNED_OVERALL = 'total-binned-overall'

    @property
    def binned(self):
        return self not in (SpectrumMode.RAW, SpectrumMode.STATE, SpectrumMode.TOTAL)

    @classmethod
    def _keyword_table(cls):
        return {
            frozenset(): cls.RAW,
            frozenset({'bin'}): cls.RAW_BINNED,
            frozenset({'normstate'}): cls.STATE,
            frozenset({'normstate', 'bin'}): cls.STATE_BINNED,
            frozenset({'normtot'}): cls.TOTAL,
            frozenset({'normtot', 'bin'}): cls.TOTAL_BINNED,
            frozenset({'normstate', 'bin', 'all'}): cls.STATE_BINNED_OVERALL,
            frozenset({'normtot', 'bin', 'all'}): cls.TOTAL_BINNED_OVERALL,
        }


class PowerMode(_KeywordMode):
    OVERALL = 'overall'
    BINNED = 'binned'
    STATE = 'state'
    STATE_BINNED = 'state-binned'

    @classmethod
    def _keyword_table(cls):
        return {
            frozenset(): cls.OVERALL,
            frozenset({'bin'}): cls.BINNED,
            frozenset({'state'}): cls.STATE,
            frozenset({'state', 'bin'}): cls.STATE_BINNED,
        }


class PadPolicy(Enum):
    """How an event fragment is rounded to a whole number of Welch kernels."""
    EXTEND = 'extend'
    TRUNCATE = 'truncate'
    STRICT = 'strict'

    @classmethod
    def coerce(cls, value):
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ConfigurationError(
                f"Unknown pad policy '{value}'. Choose from {[m.value for m in cls]}"
            ) from None


def nanmean(values, axis=None):
    """Mean ignoring NaN; NaN (without a runtime warning) where nothing is left."""
    values = np.asarray(values, dtype=float)
    valid = ~np.isnan(values)
    count = valid.sum(axis=axis)
    total = np.where(valid, values, 0.0).sum(axis=axis)
    with np.errstate(invalid='ignore', divide='ignore'):
        return np.where(count > 0, total / np.maximum(count, 1), np.nan)


class RecordingFacade:
    """
    One scored recording: signals, hypnogram, markers and their analyses.

    Parameters
    ----------
    eeg, emg : array_like, optional
        Signals sampled at ``srate``.
    hypnogram : array_like of int, optional
        One state code per epoch.
    markers : iterable of Marker or dict, or pandas.DataFrame, optional
        Scored events.
    config_file : str or pathlib.Path, optional
        YAML file merged over the packaged defaults.
    **overrides
        Configuration values merged last (see ``hypnokit.config``).

    Notes
    -----
    The number of epochs is ``floor(len(signal) / (srate * epoch))`` (EEG
    first, EMG otherwise), intersected with the hypnogram length. With a
    hypnogram, aggregates use only the first ``nblocks * block`` of those
    epochs.
    """

    def __init__(self, eeg=None, emg=None, hypnogram=None, markers=None, config_file=None, **overrides):
        self.config = load_config(config_file, **overrides)
        self._eeg = None if eeg is None else as_signal(eeg)
        self._emg = None if emg is None else as_signal(emg)
        self._hypnogram = None if hypnogram is None else validate_hypnogram(hypnogram, self.config.nstates)
        self._has_markers = markers is not None
        self._registry = EventRegistry(markers, **self._event_params())

        self._estimator = None
        self._analyzer = None
        self._n_epochs = 0
        self._excluded = np.zeros(0, dtype=bool)
        self.recompute()

    # ========================================================================
    # INPUTS AND CONFIGURATION
    # ========================================================================

    @property
    def eeg(self):
        return self._eeg

    @eeg.setter
    def eeg(self, value):
        eeg = None if value is None else as_signal(value)
        self._apply((self, '_eeg', eeg), (self, '_estimator', None))

    @property
    def emg(self):
        return self._emg

    @emg.setter
    def emg(self, value):
        emg = None if value is None else as_signal(value)
        self._apply((self, '_emg', emg))

    @property
    def hypnogram(self):
        """The hypnogram aligned to the signal epochs (read-only)."""
        if self._hypnogram is None:
            return None
        return self._hypnogram[:self._n_epochs]

    @hypnogram.setter
    def hypnogram(self, value):
        hypnogram = None if value is None else validate_hypnogram(value, self.config.nstates)
        self._apply((self, '_hypnogram', hypnogram))

    @property
    def markers(self):
        """Copies of the markers; edit them through the facade methods."""
        return as_markers(self._registry.markers)

    @markers.setter
    def markers(self, value):
        self._apply((self._registry, 'markers', as_markers(value)),
                    (self, '_has_markers', value is not None))

    def add_marker(self, marker):
        """Append a ``Marker`` (or a dict record) and recompute."""
        self._apply((self._registry, 'markers', self._registry.markers + [as_marker(marker)]),
                    (self, '_has_markers', True))

    def remove_marker(self, index):
        """Drop the marker at ``index`` (in input order) and recompute."""
        markers = list(self._registry.markers)
        del markers[index]
        self._apply((self._registry, 'markers', markers))

    def configure(self, **params):
        """
        Apply configuration overrides and recompute.

        The update is atomic: if the new values are rejected, the previous
        configuration stays in place.
        """
        self._apply((self, 'config', self.config.replace(**params)))

    def recompute(self):
        """Rebuild every derived structure from the current inputs and configuration."""
        cfg = self.config
        if self._hypnogram is not None and self._hypnogram.size and self._hypnogram.max() > cfg.nstates:
            # the state list may have shrunk since the hypnogram was validated
            validate_hypnogram(self._hypnogram, cfg.nstates)

        self._registry.configure(**self._event_params())

        if self._eeg is not None:
            spectral = dict(srate=cfg.srate, epoch=cfg.epoch, kernel_size=cfg.kernel_size,
                            kernel_overlap=cfg.kernel_overlap, window=cfg.window,
                            hz_min=cfg.hz_min, hz_max=cfg.hz_max)
            if self._estimator is None:
                self._estimator = SpectralEstimator(self._eeg, bands=cfg.bands, **spectral)
            else:
                self._estimator.configure(**spectral)
                self._estimator.set_frequency_bands(cfg.bands)

        n_epochs = self._signal_epochs()
        if self._hypnogram is not None:
            if n_epochs is None:
                n_epochs = self._hypnogram.size
            elif n_epochs != self._hypnogram.size:
                logger.debug(f"Signal spans {n_epochs} epochs, hypnogram {self._hypnogram.size}; "
                             f"using {min(n_epochs, self._hypnogram.size)}")
                n_epochs = min(n_epochs, self._hypnogram.size)
            self._analyzer = HypnogramAnalyzer(self._hypnogram[:n_epochs], epoch=cfg.epoch,
                                               states=cfg.states, block=cfg.block)
        else:
            self._analyzer = None
        self._n_epochs = n_epochs or 0
        self._excluded = self._registry.excluded_epochs(self._n_epochs)
        logger.debug(f"Recording recomputed: {self._n_epochs} epochs, "
                     f"{int(self._excluded.sum())} excluded, {len(self._registry)} markers")

    # ========================================================================
    # SNAPSHOTS
    # ========================================================================

    @property
    def n_epochs(self):
        return self._n_epochs

    @property
    def n_blocks(self):
        return self._layout()[2]

    @property
    def excluded(self):
        """Boolean mask of epochs excluded from spectral aggregation."""
        return self._excluded.copy()

    @property
    def frequencies(self):
        """Frequencies of interest, the last axis of every spectrum."""
        return self._require_estimator().hz_range

    @property
    def estimator(self):
        """The cached ``SpectralEstimator`` over the EEG."""
        return self._require_estimator()

    @property
    def analyzer(self):
        if self._analyzer is None:
            raise MissingInputError("No hypnogram available")
        return self._analyzer

    @property
    def tags(self):
        """Distinct marker tags, sorted."""
        return list(self._registry.tags)

    @property
    def n_current_events(self):
        """Number of markers matching the tag of interest."""
        return self._registry.n_current_events

    def event_table(self):
        """All markers as a ``pandas.DataFrame`` (see ``EventRegistry.to_frame``)."""
        return self._registry.to_frame()

    def get_analysis_info(self):
        """Resolved configuration plus the sizes derived from the inputs."""
        info = asdict(self.config)
        info.update(n_epochs=self._n_epochs, n_excluded=int(self._excluded.sum()),
                    n_markers=len(self._registry), tags=list(self._registry.tags))
        return info

    def spectrogram(self, epochs=None):
        """Log-power matrix (frequency x epoch) of the EEG."""
        return self._require_estimator().spectrogram(epochs)

    def power_density_curve(self, epoch):
        """``(hz_range, power)`` for one 0-based epoch index (or a selection of epochs)."""
        return self._require_estimator().power_density_curve(np.atleast_1d(epoch))

    # ========================================================================
    # SPECTRAL AGGREGATES
    # ========================================================================

    def spectrum(self, mode=SpectrumMode.RAW):
        """
        Per-state power spectra.

        Parameters
        ----------
        mode : SpectrumMode or str, default=SpectrumMode.RAW
            Aggregation and normalization, see the module documentation.

        Returns
        -------
        numpy.ndarray
            ``(nstates, nfreq)`` for RAW, STATE and TOTAL,
            ``(nblocks, nstates, nfreq)`` for the binned modes. States or
            blocks without any contributing epoch yield NaN.
        """
        mode = SpectrumMode.coerce(mode)
        handlers = {
            SpectrumMode.RAW: self._raw_spectrum,
            SpectrumMode.RAW_BINNED: self._raw_binned_spectrum,
            SpectrumMode.STATE: lambda: self._percent(
                self._raw_spectrum(), self.all_power(PowerMode.STATE)[:, None]),
            SpectrumMode.STATE_BINNED: lambda: self._percent(
                self._raw_binned_spectrum(), self.all_power(PowerMode.STATE_BINNED).T[:, :, None]),
            SpectrumMode.TOTAL: lambda: self._percent(
                self._raw_spectrum(), self.all_power(PowerMode.OVERALL)),
            SpectrumMode.TOTAL_BINNED: lambda: self._percent(
                self._raw_binned_spectrum(), self.all_power(PowerMode.BINNED)[:, None, None]),
            SpectrumMode.STATE_BINNED_OVERALL: lambda: self._percent(
                self._raw_binned_spectrum(), self.all_power(PowerMode.STATE)[None, :, None]),
            SpectrumMode.TOTAL_BINNED_OVERALL: lambda: self._percent(
                self._raw_binned_spectrum(), self.all_power(PowerMode.OVERALL)),
        }
        return handlers[mode]()

    def all_power(self, mode=PowerMode.OVERALL):
        """
        Mean power in the ``All`` band over non-excluded epochs.

        Returns
        -------
        float or numpy.ndarray
            A scalar for OVERALL, ``(nblocks,)`` for BINNED, ``(nstates,)``
            for STATE and ``(nstates, nblocks)`` for STATE_BINNED.
        """
        mode = PowerMode.coerce(mode)
        if mode is PowerMode.STATE_BINNED:
            return self.state_band_power('All')

        power = self._epoch_band_power('All')
        _, block, nblocks = self._layout()
        if mode is PowerMode.OVERALL:
            return float(nanmean(power))
        if mode is PowerMode.BINNED:
            return nanmean(power.reshape(nblocks, block), axis=1)

        hyp = self.analyzer.hypnogram
        return np.array([nanmean(power[hyp == s + 1]) for s in range(self.config.nstates)])

    def state_band_power(self, band):
        """Mean power in ``band`` per state (rows) and block (columns), excluded epochs skipped."""
        power = self._epoch_band_power(band)
        analyzer = self.analyzer
        blocked_power = power.reshape(analyzer.nblocks, analyzer.block).T
        blocked = analyzer.blocked
        rv = np.vstack([
            nanmean(np.where(blocked == s + 1, blocked_power, np.nan), axis=0)
            for s in range(analyzer.nstates)
        ])
        self._warn_empty(rv, f"{band} power")
        return rv

    def overall_spectrum(self, binned=False):
        """
        Mean spectrum regardless of state: ``(nfreq,)``, or ``(nblocks, nfreq)`` if ``binned``.
        """
        spectra = self._epoch_spectra()
        if not binned:
            return nanmean(spectra, axis=1)
        _, block, nblocks = self._layout()
        return np.vstack([
            nanmean(spectra[:, b * block:(b + 1) * block], axis=1) for b in range(nblocks)
        ])

    def event_spectra(self, policy=None):
        """
        One power spectrum per event of interest.

        Each fragment ``[start_pos, finish_pos]`` is rounded to a whole
        number of Welch kernels and analysed as a single epoch.

        Parameters
        ----------
        policy : PadPolicy or str, optional
            ``EXTEND`` (default from configuration) rounds up with the
            samples that follow the event; near the end of the recording it
            keeps as many whole kernels as the remaining data allows.
            ``TRUNCATE`` drops the trailing partial kernel. ``STRICT``
            rounds up and raises if that runs past the recording.

        Returns
        -------
        numpy.ndarray
            ``(nfreq, n_events)``; column ``i`` is the spectrum of the
            ``i``-th event of interest.

        Raises
        ------
        DataIntegrityError
            If a fragment cannot hold a single kernel under the policy.
        """
        eeg = self._require_eeg()
        self._require_markers()
        policy = PadPolicy.coerce(self.config.pad_policy if policy is None else policy)
        cfg = self.config
        spk = self._require_estimator().samples_per_kernel

        starts = self._registry.start_positions()
        finishes = self._registry.finish_positions()
        columns = []
        for i in tqdm(range(starts.size), desc="Event spectra", unit="event", disable=not cfg.verbose):
            length = self._padded_length(int(starts[i]), int(finishes[i]), spk, eeg.size, policy, i)
            fragment = eeg[starts[i]:starts[i] + length]
            est = SpectralEstimator(fragment, cfg.srate, epoch=0, kernel_size=cfg.kernel_size,
                                    kernel_overlap=cfg.kernel_overlap, window=cfg.window,
                                    hz_min=cfg.hz_min, hz_max=cfg.hz_max)
            columns.append(est.spectra())
            if cfg.verbose:
                logger.info(f"Marker {i + 1} of {starts.size}")
        if not columns:
            return np.zeros((self.frequencies.size, 0))
        return np.hstack(columns)

    # ========================================================================
    # SIGNAL OPERATIONS
    # ========================================================================

    def filter_eeg(self, **params):
        """Replace the EEG with its notch/band-pass filtered copy."""
        eeg = self._require_eeg()
        self.eeg = notch_band(eeg, self.config.srate, settings=self.config.filter, **params)

    def compute_rms(self, source='eeg'):
        """RMS of each event of interest over the EEG (or ``'emg'``), stored in the markers."""
        self._require_markers()
        signal = self._require_eeg() if source == 'eeg' else self._require_emg()
        return self._registry.compute_rms(signal)

    def replace_tag(self, before, after):
        count = self._registry.replace_tag(before, after)
        self.recompute()
        return count

    # ========================================================================
    # HYPNOGRAM QUERIES
    # ========================================================================

    def state_epoch_counts(self):
        return self.analyzer.state_epoch_counts()

    def state_total_durations(self):
        return self.analyzer.state_total_durations()

    def state_total_minutes(self):
        return self.analyzer.state_total_minutes()

    def state_proportions(self):
        return self.analyzer.state_proportions()

    def state_episode_counts(self):
        return self.analyzer.state_episode_counts()

    def state_episode_durations(self):
        return self.analyzer.state_episode_durations()

    def state_episode_duration_mean(self):
        return self.analyzer.state_episode_duration_mean()

    def state_episode_duration_std(self):
        return self.analyzer.state_episode_duration_std()

    def state_transitions(self):
        return self.analyzer.state_transitions()

    # ========================================================================
    # EVENT QUERIES
    # ========================================================================

    def event_start_times(self):
        self._require_markers()
        return self._registry.start_times()

    def event_end_times(self):
        self._require_markers()
        return self._registry.end_times()

    def event_durations(self):
        self._require_markers()
        return self._registry.durations()

    def event_duration_mean(self):
        self._require_markers()
        return self._registry.duration_mean()

    def event_duration_std(self):
        self._require_markers()
        return self._registry.duration_std()

    def events_per_epoch(self):
        self._require_markers()
        return self._registry.events_per_epoch()

    def events_per_bin(self):
        self._require_markers()
        return self._registry.events_per_bin()

    def event_states(self):
        """States of the epochs in which the events of interest begin, plus the double-check list."""
        self._require_markers()
        if self._hypnogram is None:
            raise MissingInputError("No hypnogram available")
        return self._registry.event_states(self.hypnogram)

    # ========================================================================
    # PRIVATE METHODS
    # ========================================================================

    def _apply(self, *changes):
        """
        Write ``(target, attribute, value)`` triples and recompute.

        If the recomputation fails, every attribute gets its previous value
        back and the derived state is rebuilt from it before re-raising.
        """
        previous = [(target, name, getattr(target, name)) for target, name, _ in changes]
        for target, name, value in changes:
            setattr(target, name, value)
        try:
            self.recompute()
        except HypnokitError:
            for target, name, value in previous:
                setattr(target, name, value)
            self.recompute()
            raise

    def _event_params(self):
        cfg = self.config
        return dict(srate=cfg.srate, epoch=cfg.epoch, toi=cfg.toi, exclude=cfg.exclude,
                    min_pad=cfg.min_pad, bin_hours=cfg.bin_hours)

    def _signal_epochs(self):
        signal = self._eeg if self._eeg is not None else self._emg
        if signal is None:
            return None
        return signal.size // int(round(self.config.srate * self.config.epoch))

    def _layout(self):
        """``(usable_epochs, block, nblocks)`` used to shape every aggregate."""
        if self._analyzer is not None:
            return self._analyzer.hyplen, self._analyzer.block, self._analyzer.nblocks
        if self._n_epochs == 0:
            raise MissingInputError("No signal or hypnogram available")
        block = self.config.block or self._n_epochs
        nblocks = self._n_epochs // block
        if nblocks == 0:
            raise DataIntegrityError(f"{self._n_epochs} epochs are shorter than one block ({block} epochs)")
        return block * nblocks, block, nblocks

    def _epoch_spectra(self):
        """Spectra of the usable epochs, excluded epochs set to NaN."""
        usable = self._layout()[0]
        spectra = np.array(self._require_estimator().spectra(np.arange(usable)), dtype=float)
        spectra[:, self._excluded[:usable]] = np.nan
        return spectra

    def _epoch_band_power(self, band):
        usable = self._layout()[0]
        power = np.array(self._require_estimator().band_power(band, np.arange(usable)), dtype=float)
        power[self._excluded[:usable]] = np.nan
        return power

    def _raw_spectrum(self):
        spectra = self._epoch_spectra()
        hyp = self.analyzer.hypnogram
        rv = np.vstack([nanmean(spectra[:, hyp == s + 1], axis=1) for s in range(self.config.nstates)])
        self._warn_empty(rv, "spectrum")
        return rv

    def _raw_binned_spectrum(self):
        spectra = self._epoch_spectra()
        analyzer = self.analyzer
        rv = np.empty((analyzer.nblocks, analyzer.nstates, spectra.shape[0]))
        for b in range(analyzer.nblocks):
            cols = slice(b * analyzer.block, (b + 1) * analyzer.block)
            states = analyzer.hypnogram[cols]
            block_spectra = spectra[:, cols]
            for s in range(analyzer.nstates):
                rv[b, s] = nanmean(block_spectra[:, states == s + 1], axis=1)
        self._warn_empty(rv, "binned spectrum")
        return rv

    @staticmethod
    def _percent(spectrum, power):
        with np.errstate(invalid='ignore', divide='ignore'):
            return spectrum / power * 100

    def _warn_empty(self, values, what):
        if values.size and np.isnan(values).any():
            logger.warning(f"Some {what} cells have no contributing epochs and are NaN")

    @staticmethod
    def _padded_length(start, finish, spk, n_samples, policy, index):
        length = finish - start + 1
        whole = (length // spk) * spk
        rounded = whole if whole == length else whole + spk
        if finish >= n_samples:
            raise DataIntegrityError(
                f"Event {index} [{start}, {finish}] ends beyond the signal ({n_samples} samples)", [index]
            )

        if policy is PadPolicy.TRUNCATE:
            padded = whole
        elif start + rounded <= n_samples:
            padded = rounded
        elif policy is PadPolicy.STRICT:
            raise DataIntegrityError(
                f"Event {index}: rounding to whole kernels needs {rounded} samples "
                f"but only {n_samples - start} remain", [index]
            )
        else:
            padded = ((n_samples - start) // spk) * spk

        if padded < spk:
            raise DataIntegrityError(
                f"Event {index} ({length} samples) is shorter than one kernel ({spk} samples)", [index]
            )
        return padded

    def _require_eeg(self):
        if self._eeg is None:
            raise MissingInputError("No EEG available")
        return self._eeg

    def _require_emg(self):
        if self._emg is None:
            raise MissingInputError("No EMG available")
        return self._emg

    def _require_estimator(self):
        self._require_eeg()
        return self._estimator

    def _require_markers(self):
        if not self._has_markers:
            raise MissingInputError("No markers available")
