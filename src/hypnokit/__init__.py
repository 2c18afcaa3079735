__version__ = "0.3.0"

import logging

from .config import RecordingConfig, load_config
from .edf_loader import EDFLoader
from .errors import ConfigurationError, DataIntegrityError, HypnokitError, MissingInputError
from .erp_pool import ERPool
from .event_registry import EventRegistry, Marker
from .filters import notch_band
from .hypnogram_analyzer import HypnogramAnalyzer, decode_transition, transition_code
from .recording import PadPolicy, PowerMode, RecordingFacade, SpectrumMode
from .signals import signal_gen
from .spectral_estimator import SpectralEstimator

def set_log_level(level='INFO'):
    """
    Set logging level for hypnokit package.

    Parameters:
    -----------
    level : str or int
        Logging level. Can be:
        - 'ERROR' or logging.ERROR (40): Error messages
        - 'WARNING' or logging.WARNING (30): Heuristic warnings (events near a state change, empty groups)
        - 'INFO' or logging.INFO (20): Progress over files and events (default)
        - 'DEBUG' or logging.DEBUG (10): Parameter recomputation and Welch estimation

    Examples:
    ---------
    >>> import hypnokit
    >>> hypnokit.set_log_level('WARNING')  # Show warning-level (and above) log statements
    >>> hypnokit.set_log_level('DEBUG')    # Show everything
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    logger = logging.getLogger('hypnokit')
    logger.setLevel(level)

    # Add handler if none exists
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter('%(message)s'))
        logger.addHandler(handler)

        # Prevent propagation to root logger to avoid duplicate messages
        logger.propagate = False

__all__ = ["RecordingFacade",
           "SpectralEstimator",
           "HypnogramAnalyzer",
           "EventRegistry",
           "Marker",
           "SpectrumMode",
           "PowerMode",
           "PadPolicy",
           "ERPool",
           "EDFLoader",
           "RecordingConfig",
           "load_config",
           "notch_band",
           "signal_gen",
           "transition_code",
           "decode_transition",
           "HypnokitError",
           "ConfigurationError",
           "DataIntegrityError",
           "MissingInputError",
           "set_log_level"]
