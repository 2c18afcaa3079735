"""
Notch and band-pass conditioning of raw EEG traces.

The default design removes mains interference with a Butterworth band-stop
filter and limits the signal to the EEG range with a Chebyshev type II
band-pass. Both filters are designed as second-order sections and applied
forward and backward, so the output has no phase distortion.
"""

import logging
from dataclasses import asdict

import numpy as np
from scipy.signal import butter, cheb2ord, cheby2, sosfiltfilt

from .config import FilterSettings, load_config
from .errors import ConfigurationError, DataIntegrityError

logger = logging.getLogger('hypnokit')

# maximum pass-band ripple of the band-pass design, dB
PASSBAND_RIPPLE = 1.0


def default_filter_settings() -> FilterSettings:
    return load_config().filter


def design_notch_band(srate: float, settings: FilterSettings):
    """
    Design the notch and band-pass filters for a sampling rate.

    Returns
    -------
    tuple of numpy.ndarray
        ``(notch_sos, bandpass_sos)``, second-order sections.

    Raises
    ------
    ConfigurationError
        If any band edge reaches the Nyquist frequency.
    """
    nyquist = srate / 2
    highest = max(settings.notch_high, settings.band_stop_high)
    if highest >= nyquist:
        raise ConfigurationError(
            f"Filter edge {highest} Hz is not below the Nyquist frequency ({nyquist} Hz)"
        )

    # the order of a band-stop design is twice the prototype order
    notch = butter(max(1, settings.notch_order // 2), [settings.notch_low, settings.notch_high],
                   btype='bandstop', fs=srate, output='sos')

    stop_atten = min(settings.band_atten_low, settings.band_atten_high)
    order, edges = cheb2ord([settings.band_pass_low, settings.band_pass_high],
                            [settings.band_stop_low, settings.band_stop_high],
                            PASSBAND_RIPPLE, stop_atten, fs=srate)
    bandpass = cheby2(order, stop_atten, edges, btype='bandpass', fs=srate, output='sos')
    logger.debug(f"Designed notch (order {settings.notch_order}) and cheby2 band-pass (order {order})")
    return notch, bandpass


def notch_band(signal, srate, settings=None, **params):
    """
    Apply the notch and band-pass filters to a signal.

    Parameters
    ----------
    signal : array_like
        One-dimensional signal.
    srate : float
        Sampling rate in Hz.
    settings : FilterSettings, optional
        Base filter parameters; the packaged defaults when omitted.
    **params
        Overrides for individual ``FilterSettings`` fields, e.g.
        ``notch_low=59, notch_high=61`` for 60 Hz mains.

    Returns
    -------
    numpy.ndarray
        The filtered signal, same length as the input.
    """
    if settings is None:
        settings = default_filter_settings()
    if params:
        merged = asdict(settings)
        unknown = set(params) - set(merged)
        if unknown:
            raise ConfigurationError(f"Unknown filter parameter(s): {sorted(unknown)}")
        merged.update(params)
        settings = load_config(filter=merged).filter

    data = np.asarray(signal, dtype=float)
    if data.ndim != 1:
        raise DataIntegrityError(f"signal must be one-dimensional, got shape {data.shape}")

    notch, bandpass = design_notch_band(float(srate), settings)
    filtered = sosfiltfilt(bandpass, sosfiltfilt(notch, data))
    logger.info(f"Filtered {data.size} samples at {srate} Hz")
    return filtered
