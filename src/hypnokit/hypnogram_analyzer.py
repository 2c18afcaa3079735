"""
HypnogramAnalyzer - Descriptive Statistics of Scored Vigilance States
=====================================================================

A hypnogram is an arbitrarily long sequence of epochs (typically a few
seconds each), every epoch labeled with an integer vigilance-state code:
``1`` is the first state in ``states``, ``2`` the second, and so on.

The analyzer reshapes the hypnogram into blocks of consecutive epochs (for
example one block per hour) and reports, per state and per block:

- epoch counts, total durations and proportions of block time
- episode counts, i.e. maximal runs of a single state
- the list of episode durations and their mean / standard deviation
- counts of every ordered state-to-state transition

Transitions are encoded as ``2**(after-1) - 2**(before-1)``; every ordered
pair of distinct states maps to a unique signed integer, so counting a
transition type reduces to comparing a precomputed per-epoch difference
array against a single code.
"""

import logging
from itertools import combinations

import numpy as np
import pandas as pd

from .config import check_positive, normalize_tags
from .errors import ConfigurationError, DataIntegrityError

logger = logging.getLogger('hypnokit')

DEFAULT_STATES = ('REM', 'NREM', 'Wake')

# int64 codes stay exact up to this many states
MAX_STATES = 62


def transition_code(before, after):
    """Signed integer code of the ``before -> after`` transition (1-based state codes)."""
    return (1 << (int(after) - 1)) - (1 << (int(before) - 1))


def decode_transition(code):
    """
    Invert ``transition_code``.

    Returns
    -------
    tuple of int
        ``(before, after)`` state codes.

    Raises
    ------
    ValueError
        If ``code`` is not the code of a transition between distinct states.
    """
    code = int(code)
    magnitude = abs(code)
    if magnitude == 0:
        raise ValueError("0 encodes no transition")
    low = magnitude & -magnitude
    high = magnitude + low
    if high & (high - 1):
        raise ValueError(f"{code} is not a valid transition code")
    low_state = low.bit_length()
    high_state = high.bit_length()
    if code > 0:
        return low_state, high_state
    return high_state, low_state


def validate_hypnogram(hypnogram, nstates=None):
    """
    Check a label sequence and return it as a 1-D int64 array.

    Raises
    ------
    DataIntegrityError
        If the sequence is not one-dimensional, contains NaN/undefined
        labels, non-integer labels, or codes outside ``1..nstates``. The
        offending 0-based positions are reported.
    """
    try:
        arr = np.array(hypnogram, dtype=float)
    except (TypeError, ValueError):
        raise DataIntegrityError("hypnogram must be a numeric vector") from None
    if arr.ndim == 2 and 1 in arr.shape:
        arr = arr.reshape(-1)
    if arr.ndim != 1:
        raise DataIntegrityError(f"hypnogram must be one-dimensional, got shape {arr.shape}")

    nan_positions = np.flatnonzero(np.isnan(arr))
    if nan_positions.size:
        raise DataIntegrityError(
            f"NaNs in hypnogram at positions: {nan_positions.tolist()}", nan_positions
        )
    bad = np.flatnonzero((arr != np.round(arr)) | (arr < 1))
    if bad.size:
        raise DataIntegrityError(
            f"Hypnogram labels must be positive integers; invalid at positions: {bad.tolist()}", bad
        )
    if nstates is not None:
        bad = np.flatnonzero(arr > nstates)
        if bad.size:
            raise DataIntegrityError(
                f"Hypnogram labels exceed the {nstates} defined states at positions: {bad.tolist()}", bad
            )
    return arr.astype(np.int64)


class HypnogramAnalyzer:
    """
    Per-state, per-block statistics of a hypnogram.

    Parameters
    ----------
    hypnogram : array_like of int
        State codes, one per epoch; ``1`` maps to ``states[0]``.
    epoch : float, default=10
        Epoch duration in seconds.
    states : sequence of str, default=('REM', 'NREM', 'Wake')
        State names, in code order.
    block : int, default=0
        Number of epochs per block. ``0`` analyses the whole hypnogram as a
        single block. Otherwise the hypnogram is trimmed to
        ``floor(len / block) * block`` epochs; trailing epochs that do not
        fill a block are discarded.

    Raises
    ------
    DataIntegrityError
        If the hypnogram is empty, shorter than one block, or contains
        invalid labels.
    ConfigurationError
        If ``epoch``, ``states`` or ``block`` are invalid.

    Notes
    -----
    All aggregate methods return ``numpy`` arrays shaped ``(nstates, nblocks)``
    with states in the order given at construction.
    """

    def __init__(self, hypnogram, epoch=10, states=DEFAULT_STATES, block=0):
        self.states = normalize_tags(states)
        if not self.states:
            raise ConfigurationError("states must be a non-empty list of state names")
        if len(self.states) > MAX_STATES:
            raise ConfigurationError(f"At most {MAX_STATES} states are supported, got {len(self.states)}")
        self.nstates = len(self.states)
        self.epoch = check_positive(epoch, 'epoch')
        if isinstance(block, bool) or int(block) != block or block < 0:
            raise ConfigurationError(f"block must be a non-negative integer, got {block!r}")

        hy = validate_hypnogram(hypnogram, self.nstates)
        if hy.size == 0:
            raise DataIntegrityError("hypnogram is empty")

        if block:
            self.block = int(block)
            self.nblocks = hy.size // self.block
        else:
            # whole hypnogram as a single block
            self.block = hy.size
            self.nblocks = 1
        if self.nblocks == 0:
            raise DataIntegrityError(
                f"hypnogram ({hy.size} epochs) is shorter than one block ({self.block} epochs)"
            )

        self.hyplen = self.block * self.nblocks
        if self.hyplen < hy.size:
            logger.debug(f"Hypnogram trimmed from {hy.size} to {self.hyplen} epochs ({self.nblocks} blocks)")

        self.hypnogram = hy[:self.hyplen]
        self.hypnogram.flags.writeable = False

        # column j holds the epochs of block j
        self._blocked = self.hypnogram.reshape(self.nblocks, self.block).T
        codes = np.left_shift(np.int64(1), self.hypnogram - 1)
        changes = np.append(np.diff(codes), 0)
        self._changes = changes.reshape(self.nblocks, self.block).T

    @property
    def blocked(self):
        """The hypnogram as a ``(block, nblocks)`` matrix."""
        return self._blocked.copy()

    # ========================================================================
    # PUBLIC METHODS - Epoch counts and durations
    # ========================================================================

    def state_epoch_counts(self):
        """Number of epochs of each state in each block."""
        rv = np.zeros((self.nstates, self.nblocks), dtype=np.int64)
        for s in range(self.nstates):
            rv[s] = np.sum(self._blocked == s + 1, axis=0)
        return rv

    def state_total_durations(self):
        """Total time (seconds) spent in each state in each block."""
        return self.state_epoch_counts() * self.epoch

    def state_total_minutes(self):
        return self.state_total_durations() / 60

    def state_proportions(self):
        """Fraction of block time spent in each state; columns sum to 1."""
        counts = self.state_epoch_counts()
        return counts / counts.sum(axis=0, keepdims=True)

    # ========================================================================
    # PUBLIC METHODS - Episodes
    # ========================================================================

    def state_episode_counts(self):
        """
        Number of episodes of each state starting in each block.

        An episode starts at the first epoch and wherever the label differs
        from the previous one.
        """
        starts = np.diff(np.concatenate(([0], self.hypnogram))) != 0
        starts = starts.reshape(self.nblocks, self.block).T
        rv = np.zeros((self.nstates, self.nblocks), dtype=np.int64)
        for s in range(self.nstates):
            rv[s] = np.sum((self._blocked == s + 1) & starts, axis=0)
        return rv

    def state_episode_durations(self):
        """
        Episode durations (seconds), grouped by state and block.

        Returns
        -------
        list of list of list of float
            ``rv[s][b]`` holds, in order of occurrence, the durations of the
            episodes of state ``s`` (0-based) beginning in block ``b``. A
            run that crosses a block boundary is attributed entirely to the
            block containing its first epoch.
        """
        rv = [[[] for _ in range(self.nblocks)] for _ in range(self.nstates)]
        hy = self.hypnogram

        c_stg = int(hy[0])  # current state
        c_len = 1           # current run length, in epochs
        c_blo = 0           # block of the current run's first epoch
        for i in range(1, self.hyplen):
            if hy[i] != hy[i - 1]:
                rv[c_stg - 1][c_blo].append(c_len * self.epoch)
                c_stg = int(hy[i])
                c_len = 1
                c_blo = i // self.block
            else:
                c_len += 1
        rv[c_stg - 1][c_blo].append(c_len * self.epoch)
        return rv

    def state_episode_duration_mean(self):
        """Mean episode duration per state and block; NaN where there is no episode."""
        return self._reduce_durations(np.mean)

    def state_episode_duration_std(self):
        """
        Sample standard deviation of episode durations per state and block.

        A single episode yields 0, no episode yields NaN.
        """
        def sample_std(values):
            return np.std(values, ddof=1) if len(values) > 1 else 0.0
        return self._reduce_durations(sample_std)

    # ========================================================================
    # PUBLIC METHODS - Transitions
    # ========================================================================

    def transition_pairs(self):
        """
        Every ordered pair of distinct states, as 1-based codes.

        Pairs ``(i, j)`` with ``i < j`` come first in lexicographic order,
        followed by the same pairs flipped.
        """
        forward = list(combinations(range(1, self.nstates + 1), 2))
        return forward + [(after, before) for before, after in forward]

    def transition_counts(self):
        """Count of each transition type (rows ordered as ``transition_pairs``) per block."""
        pairs = self.transition_pairs()
        rv = np.zeros((len(pairs), self.nblocks), dtype=np.int64)
        for i, (before, after) in enumerate(pairs):
            rv[i] = np.sum(self._changes == transition_code(before, after), axis=0)
        return rv

    def state_transitions(self):
        """
        Table of transition counts.

        Returns
        -------
        pandas.DataFrame
            Columns ``Before`` and ``After`` (state names), ``Count`` (over
            the whole trimmed hypnogram) and ``Count_1`` ... ``Count_<nblocks>``
            (one per block). A transition is counted in the block of its
            ``Before`` epoch.
        """
        pairs = self.transition_pairs()
        counts = self.transition_counts()
        frame = pd.DataFrame({
            'Before': [self.states[before - 1] for before, _ in pairs],
            'After': [self.states[after - 1] for _, after in pairs],
            'Count': counts.sum(axis=1),
        })
        for j in range(self.nblocks):
            frame[f'Count_{j + 1}'] = counts[:, j]
        return frame

    def is_transition(self, before, after):
        """Boolean mask over epochs ``0..hyplen-2``: True where ``before`` is followed by ``after``."""
        return (self.hypnogram[:-1] == before) & (self.hypnogram[1:] == after)

    def transition_count(self, before, after):
        return int(np.sum(self.is_transition(before, after)))

    # ========================================================================
    # PUBLIC METHODS - Export
    # ========================================================================

    def summary(self):
        """
        Long-format table with one row per state and block.

        Returns
        -------
        pandas.DataFrame
            Columns ``state``, ``block``, ``epochs``, ``duration_s``,
            ``proportion``, ``episodes``, ``episode_mean_s``, ``episode_std_s``.
        """
        epochs = self.state_epoch_counts()
        durations = self.state_total_durations()
        proportions = self.state_proportions()
        episodes = self.state_episode_counts()
        means = self.state_episode_duration_mean()
        stds = self.state_episode_duration_std()
        rows = []
        for s, name in enumerate(self.states):
            for b in range(self.nblocks):
                rows.append({
                    'state': name,
                    'block': b + 1,
                    'epochs': epochs[s, b],
                    'duration_s': durations[s, b],
                    'proportion': proportions[s, b],
                    'episodes': episodes[s, b],
                    'episode_mean_s': means[s, b],
                    'episode_std_s': stds[s, b],
                })
        return pd.DataFrame(rows)

    def _reduce_durations(self, func):
        rv = np.full((self.nstates, self.nblocks), np.nan)
        for s, row in enumerate(self.state_episode_durations()):
            for b, values in enumerate(row):
                if values:
                    rv[s, b] = func(values)
        return rv
