import logging
import os

import numpy as np
import pyedflib

from .errors import ConfigurationError, DataIntegrityError
from .recording import RecordingFacade

logger = logging.getLogger('hypnokit')


class EDFLoader:
    def __init__(self, edf_file_path):
        """
        Initializes the EDFLoader with the path of an EDF/EDF+ recording.

        :param edf_file_path: str or path-like, the EDF file to read
        """
        self.edf_file_path = os.fspath(edf_file_path)
        self.signals_dict = None
        # Check for the existence of the EDF file
        if not os.path.exists(self.edf_file_path):
            raise FileNotFoundError(f"EDF file not found: {self.edf_file_path}")
        with pyedflib.EdfReader(self.edf_file_path) as edf:
            self._labels = [label.strip() for label in edf.getSignalLabels()]

    @property
    def labels(self):
        """Channel labels, in file order."""
        return list(self._labels)

    def inspect(self):
        """
        Summarizes the file header and every channel.

        :return: dict with 'header', 'duration' (s), 'n_signals' and a
            'signals' list of per-channel dicts (label, sample_rate,
            physical/digital extrema, n_samples)
        """
        with pyedflib.EdfReader(self.edf_file_path) as edf:
            n = edf.signals_in_file
            signals = []
            for i in range(n):
                signals.append({
                    'label': edf.getLabel(i).strip(),
                    'sample_rate': edf.getSampleFrequency(i),
                    'physical_max': edf.getPhysicalMaximum(i),
                    'physical_min': edf.getPhysicalMinimum(i),
                    'digital_max': edf.getDigitalMaximum(i),
                    'digital_min': edf.getDigitalMinimum(i),
                    'n_samples': int(edf.getNSamples()[i]),
                })
            info = {
                'header': edf.getHeader(),
                'duration': edf.getFileDuration(),
                'n_signals': n,
                'signals': signals,
            }
        logger.info(f"{self.edf_file_path}: {n} signals, {info['duration']} s")
        return info

    def read_signal(self, channel, duration=None):
        """
        Reads one channel.

        :param channel: str or int, channel label (case-insensitive) or index
        :param duration: float, seconds to read from the start (None = whole channel)
        :return: tuple (samples, sample_rate)
        """
        index = self._channel_index(channel)
        with pyedflib.EdfReader(self.edf_file_path) as edf:
            data = edf.readSignal(index)
            rate = edf.getSampleFrequency(index)
        if duration is not None:
            max_samples = int(duration * rate)
            if len(data) > max_samples:
                data = data[:max_samples]
                logger.debug(f"Truncated signal {self._labels[index]} to {duration} seconds ({max_samples} samples)")
        return np.asarray(data, dtype=float), float(rate)

    def load_signals(self, channels=None, duration=None):
        """
        Loads several channels into ``signals_dict``.

        :param channels: list of str or int, channels to load (None = all)
        :param duration: float, seconds to read from the start (None = whole channels)
        :return: dict mapping label to {'data': samples, 'sample_rate': rate}
        """
        if channels is None:
            channels = list(range(len(self._labels)))
            logger.warning(f"Loading all {len(channels)} signals; consider loading a subset to limit memory use")
        signals_dict = {}
        for channel in channels:
            data, rate = self.read_signal(channel, duration)
            signals_dict[self._labels[self._channel_index(channel)]] = {'data': data, 'sample_rate': rate}
        self.signals_dict = signals_dict
        logger.info(f"Loaded {len(signals_dict)} signals from {self.edf_file_path}")
        return signals_dict

    def to_recording(self, eeg=None, emg=None, hypnogram=None, markers=None, duration=None, **config):
        """
        Builds a ``RecordingFacade`` from the EEG and/or EMG channels.

        The sampling rate of the loaded channels is used unless ``srate`` is
        given explicitly.

        :param eeg: str or int, EEG channel
        :param emg: str or int, EMG channel
        :param hypnogram: array_like, state codes, one per epoch
        :param markers: list of markers
        :param duration: float, seconds to read from the start
        :param config: configuration overrides (including ``config_file``)
        """
        if eeg is None and emg is None:
            raise ConfigurationError("Give at least one of eeg or emg channels")
        signals = {}
        rates = set()
        for name, channel in (('eeg', eeg), ('emg', emg)):
            if channel is not None:
                signals[name], rate = self.read_signal(channel, duration)
                rates.add(rate)
        if len(rates) > 1:
            raise DataIntegrityError(f"EEG and EMG sample rates differ: {sorted(rates)}")
        config.setdefault('srate', rates.pop())
        return RecordingFacade(hypnogram=hypnogram, markers=markers, **signals, **config)

    def _channel_index(self, channel):
        if isinstance(channel, (int, np.integer)) and not isinstance(channel, bool):
            if not 0 <= channel < len(self._labels):
                raise ConfigurationError(f"Channel index {channel} out of range (0-{len(self._labels) - 1})")
            return int(channel)
        wanted = str(channel).strip().lower()
        for i, label in enumerate(self._labels):
            if label.lower() == wanted:
                return i
        raise ConfigurationError(f"Channel '{channel}' not found. Available: {self._labels}")
