"""
EventRegistry - Tagged Event Markers
====================================

Markers are intervals of the recording labeled by the scorer with a free
text tag (``SWD``, ``ART``, ...). The registry keeps them in input order
and answers:

- counts per tag, with the sorted tag list refreshed on every relabel
- times, durations and histograms of the events of interest (TOI)
- the state of the epoch in which each TOI event begins
- which epochs are excluded from spectral aggregation by artifact tags

The registry owns copies of the markers it is given, so relabeling or
storing RMS values never touches the caller's objects.
"""

import logging
import numbers
from dataclasses import dataclass, field, replace
from typing import Optional

import numpy as np
import pandas as pd

from .config import check_non_negative, check_positive, normalize_tags
from .errors import ConfigurationError, DataIntegrityError

logger = logging.getLogger('hypnokit')


@dataclass
class Marker:
    """
    A tagged interval of the recording.

    ``start_pos`` and ``finish_pos`` are 0-based sample indices; the
    interval includes both ends. ``rms`` is filled by
    ``EventRegistry.compute_rms``; ``extra`` keeps free-form fields written
    by the scoring tool (e.g. the states before and after the event).
    """
    start_pos: int
    finish_pos: int
    tag: str
    rms: Optional[float] = None
    extra: dict = field(default_factory=dict)

    def __post_init__(self):
        for name in ('start_pos', 'finish_pos'):
            value = getattr(self, name)
            if (isinstance(value, bool) or not isinstance(value, numbers.Real)
                    or not np.isfinite(value) or int(value) != value):
                raise DataIntegrityError(f"Marker {name} must be an integer sample index, got {value!r}")
            setattr(self, name, int(value))
        if self.start_pos < 0:
            raise DataIntegrityError(f"Marker start_pos must be non-negative, got {self.start_pos}")
        if self.finish_pos < self.start_pos:
            raise DataIntegrityError(
                f"Marker finish_pos ({self.finish_pos}) precedes start_pos ({self.start_pos})"
            )
        if not isinstance(self.tag, str):
            raise DataIntegrityError(f"Marker tag must be a string, got {self.tag!r}")

    @classmethod
    def from_mapping(cls, record):
        """Build a marker from a dict-like record; unknown fields go to ``extra``."""
        record = dict(record)
        try:
            start = record.pop('start_pos')
            finish = record.pop('finish_pos')
            tag = record.pop('tag')
        except KeyError as exc:
            raise DataIntegrityError(f"Marker record is missing field {exc}") from None
        rms = record.pop('rms', None)
        return cls(start, finish, tag, rms=rms, extra=record)

    @property
    def length(self):
        """Number of samples, both ends included."""
        return self.finish_pos - self.start_pos + 1


def as_marker(marker):
    """A new ``Marker`` built from a ``Marker`` or a dict-like record."""
    if isinstance(marker, Marker):
        return replace(marker, extra=dict(marker.extra))
    return Marker.from_mapping(marker)


def as_markers(markers):
    """Accept ``Marker`` objects, dicts, or a DataFrame with the marker columns; always copies."""
    if markers is None:
        return []
    if isinstance(markers, pd.DataFrame):
        markers = markers.to_dict('records')
    return [as_marker(m) for m in markers]


class EventRegistry:
    """
    Tag-indexed bookkeeping of event markers.

    Parameters
    ----------
    markers : iterable of Marker or dict, optional
        The events. Dict records need ``start_pos``, ``finish_pos`` and
        ``tag``.
    srate : float, default=400
        Sampling rate (Hz) used to convert sample positions to seconds.
    epoch : float, default=10
        Scoring epoch in seconds.
    toi : str or list of str, optional
        Tag(s) of interest. ``None``/``False``/empty selects every event.
    exclude : list of str, default=('ART',)
        Tags whose epochs are excluded from spectral aggregation.
    min_pad : float, default=1
        Seconds after an epoch start within which an event that follows a
        state change is flagged for double-checking.
    bin_hours : float, default=0
        Width of the ``events_per_bin`` histogram bins in hours; ``0`` uses
        a single bin.
    """

    def __init__(self, markers=None, srate=400, epoch=10, toi=None, exclude=('ART',),
                 min_pad=1, bin_hours=0):
        self.markers = as_markers(markers)
        self.srate = check_positive(srate, 'srate')
        self.epoch = check_positive(epoch, 'epoch')
        self.toi = normalize_tags(toi)
        self.exclude = normalize_tags(exclude) or ()
        self.min_pad = check_non_negative(min_pad, 'min_pad')
        self.bin_hours = check_non_negative(bin_hours, 'bin_hours')
        self._refresh()

    def configure(self, **params):
        """Update ``srate``, ``epoch``, ``toi``, ``exclude``, ``min_pad`` or ``bin_hours``."""
        parsers = {
            'srate': lambda v: check_positive(v, 'srate'),
            'epoch': lambda v: check_positive(v, 'epoch'),
            'toi': normalize_tags,
            'exclude': lambda v: normalize_tags(v) or (),
            'min_pad': lambda v: check_non_negative(v, 'min_pad'),
            'bin_hours': lambda v: check_non_negative(v, 'bin_hours'),
        }
        unknown = set(params) - set(parsers)
        if unknown:
            raise ConfigurationError(f"Unknown event parameter(s): {sorted(unknown)}")
        parsed = {name: parsers[name](value) for name, value in params.items()}
        for name, value in parsed.items():
            setattr(self, name, value)
        self._refresh()

    def __len__(self):
        return len(self.markers)

    # ========================================================================
    # Tags
    # ========================================================================

    def tagged(self, tags):
        """Boolean mask over all markers: True where the tag is in ``tags``."""
        wanted = set(normalize_tags(tags) or ())
        return np.array([m.tag in wanted for m in self.markers], dtype=bool)

    def replace_tag(self, before, after):
        """
        Relabel every marker tagged ``before`` (a tag or a list of tags) as ``after``.

        Returns
        -------
        int
            The number of relabeled markers.
        """
        if not isinstance(after, str):
            raise ConfigurationError(f"New tag must be a string, got {after!r}")
        idx = np.flatnonzero(self.tagged(before))
        for i in idx:
            self.markers[i].tag = after
        self._refresh()
        logger.debug(f"Replaced tag {before!r} with {after!r} on {idx.size} markers")
        return int(idx.size)

    def add(self, marker):
        self.markers.append(as_marker(marker))
        self._refresh()

    def remove(self, index):
        del self.markers[index]
        self._refresh()

    def total(self, tag):
        return int(np.sum(self.tagged(tag)))

    def totals(self):
        """Event counts, one per entry of ``tags`` (sorted alphabetically)."""
        return np.array([self.total(t) for t in self.tags], dtype=np.int64)

    # ========================================================================
    # TOI queries
    # ========================================================================

    @property
    def n_current_events(self):
        return int(np.sum(self.toi_mask))

    def start_positions(self):
        return np.array([m.start_pos for m in self._current()], dtype=np.int64)

    def finish_positions(self):
        return np.array([m.finish_pos for m in self._current()], dtype=np.int64)

    def start_times(self):
        """Start times (s) of the events matching the tag of interest."""
        return self.start_positions() / self.srate

    def end_times(self):
        return self.finish_positions() / self.srate

    def durations(self):
        return (self.finish_positions() - self.start_positions()) / self.srate

    def duration_mean(self):
        d = self.durations()
        return float(np.mean(d)) if d.size else np.nan

    def duration_std(self):
        """Sample standard deviation of TOI event durations."""
        d = self.durations()
        if d.size == 0:
            return np.nan
        return float(np.std(d, ddof=1)) if d.size > 1 else 0.0

    def events_per_epoch(self):
        """
        Number of TOI events starting in each epoch.

        Bins are one epoch wide, start at sample 0 and end at the first epoch
        boundary at or after the last start position; the last bin includes
        its right edge.
        """
        sss = self.start_positions()
        if sss.size == 0:
            return np.zeros(0, dtype=np.int64)
        spe = self.epoch * self.srate
        ceiling = np.ceil(sss.max() / spe) * spe
        if ceiling == 0:
            ceiling = spe
        n_bins = int(round(ceiling / spe))
        counts, _ = np.histogram(sss, bins=np.arange(n_bins + 1) * spe)
        return counts.astype(np.int64)

    def events_per_bin(self):
        """
        Number of TOI events starting in each ``bin_hours`` time bin.

        Bins start at time 0. With ``bin_hours == 0`` a single bin spans up
        to the last event start, so the result is the total TOI count.
        """
        times = self.start_times()
        if times.size == 0:
            return np.zeros(0, dtype=np.int64)
        binsec = self.bin_hours * 3600 if self.bin_hours else times.max()
        if binsec == 0:
            return np.array([times.size], dtype=np.int64)
        n_bins = max(1, int(np.ceil(times.max() / binsec)))
        counts, _ = np.histogram(times, bins=np.arange(n_bins + 1) * binsec)
        return counts.astype(np.int64)

    def event_states(self, hypnogram):
        """
        State of the epoch in which each TOI event begins.

        Parameters
        ----------
        hypnogram : array_like of int
            State codes, one per epoch.

        Returns
        -------
        states : numpy.ndarray
            One state code per TOI event.
        warn : list of int
            0-based indices (into the TOI events) of events that begin less
            than ``min_pad`` seconds into an epoch whose state differs from
            the previous epoch: they may belong to the preceding epoch.
        """
        hyp = np.asarray(hypnogram).reshape(-1)
        n_epochs = hyp.size
        states = np.zeros(self.n_current_events, dtype=np.int64)
        warn = []
        for i, pos in enumerate(self.start_positions()):
            epo = self.epoch_of(pos, n_epochs)
            if epo >= n_epochs:
                raise DataIntegrityError(
                    f"Event {i} starts at {pos / self.srate:.3f} s, beyond the {n_epochs}-epoch hypnogram", [i]
                )
            states[i] = hyp[epo]
            offset = pos / self.srate - epo * self.epoch
            if epo > 0 and offset < self.min_pad and states[i] != hyp[epo - 1]:
                warn.append(i)
                logger.warning(f"Double-check event #{i}: starts {offset:.2f} s after a state change")
        return states, warn

    # ========================================================================
    # Epoch arithmetic
    # ========================================================================

    def epoch_of(self, pos, n_epochs=None):
        """
        0-based epoch containing sample ``pos``.

        A position exactly on the end boundary of the last epoch maps back
        to that last epoch rather than one past it.
        """
        epo = int(np.floor(pos / (self.srate * self.epoch)))
        if n_epochs is not None and epo == n_epochs and n_epochs > 0:
            epo = n_epochs - 1
        return epo

    def excluded_epochs(self, n_epochs):
        """
        Boolean mask of epochs overlapped by any marker carrying an exclusion tag.

        Every epoch from the marker's start epoch through its finish epoch
        (inclusive) is excluded. The tag of interest plays no role here.
        """
        excluded = np.zeros(n_epochs, dtype=bool)
        for i in np.flatnonzero(self.tagged(self.exclude)):
            m = self.markers[i]
            first = self.epoch_of(m.start_pos, n_epochs)
            last = self.epoch_of(m.finish_pos, n_epochs)
            excluded[first:last + 1] = True
        return excluded

    # ========================================================================
    # Derived features
    # ========================================================================

    def fragments(self, signal):
        """Signal fragments ``signal[start_pos : finish_pos + 1]`` of the TOI events."""
        signal = np.asarray(signal)
        out = []
        for m in self._current():
            if m.finish_pos >= signal.size:
                raise DataIntegrityError(
                    f"Marker [{m.start_pos}, {m.finish_pos}] ends beyond the signal ({signal.size} samples)"
                )
            out.append(signal[m.start_pos:m.finish_pos + 1])
        return out

    def compute_rms(self, signal):
        """Store the RMS of each TOI event's fragment in ``Marker.rms``; returns the values."""
        values = []
        for m, frag in zip(self._current(), self.fragments(signal)):
            m.rms = float(np.sqrt(np.mean(np.square(frag, dtype=float))))
            values.append(m.rms)
        return np.array(values)

    def to_frame(self):
        """
        All markers as a table.

        Returns
        -------
        pandas.DataFrame
            Columns ``start_index``, ``end_index``, ``duration_samples``,
            ``start_time (s)``, ``end_time (s)``, ``duration_time (s)``,
            ``tag`` and ``rms``.
        """
        starts = np.array([m.start_pos for m in self.markers], dtype=np.int64)
        ends = np.array([m.finish_pos for m in self.markers], dtype=np.int64)
        return pd.DataFrame({
            'start_index': starts,
            'end_index': ends,
            'duration_samples': ends - starts,
            'start_time (s)': starts / self.srate,
            'end_time (s)': ends / self.srate,
            'duration_time (s)': (ends - starts) / self.srate,
            'tag': [m.tag for m in self.markers],
            'rms': [m.rms if m.rms is not None else np.nan for m in self.markers],
        })

    # ========================================================================
    # Private
    # ========================================================================

    def _refresh(self):
        """Recompute the sorted tag list and the TOI mask."""
        self.tags = sorted({m.tag for m in self.markers})
        self.ntags = len(self.tags)
        if self.toi is None:
            self.toi_mask = np.ones(len(self.markers), dtype=bool)
        else:
            self.toi_mask = self.tagged(self.toi)

    def _current(self):
        return [m for m, keep in zip(self.markers, self.toi_mask) if keep]
