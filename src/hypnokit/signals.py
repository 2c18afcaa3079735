import numpy as np

from .errors import ConfigurationError


def signal_gen(seconds, srate, params, noise=None, rng=None):
    """
    Synthetic signal made of summed sinusoids.

    Parameters
    ----------
    seconds : float
        Signal duration.
    srate : float
        Sampling rate in Hz.
    params : array_like, shape (n_waves, 2)
        One row per sinusoid: frequency (Hz) and amplitude.
    noise : float, optional
        Amplitude (standard deviation) of added Gaussian white noise.
    rng : numpy.random.Generator or int, optional
        Random generator or seed for the noise.

    Returns
    -------
    signal : numpy.ndarray
        ``int(seconds * srate)`` samples.
    t : numpy.ndarray
        Sample times in seconds, starting at 0.
    """
    waves = np.asarray(params, dtype=float)
    if waves.ndim == 1 and waves.size == 2:
        waves = waves.reshape(1, 2)
    if waves.ndim != 2 or waves.shape[1] != 2:
        raise ConfigurationError("params must be a two-column matrix of (frequency, amplitude) rows")

    t = np.arange(int(round(seconds * srate))) / srate
    signal = np.sum(waves[:, 1:2] * np.sin(2 * np.pi * waves[:, 0:1] * t), axis=0)
    if noise:
        signal = signal + np.random.default_rng(rng).standard_normal(t.size) * noise
    return signal, t
