"""
Exception hierarchy for hypnokit.

Configuration problems and data-integrity problems both derive from
``ValueError`` so that callers that only know about the standard library
still catch them.
"""


class HypnokitError(Exception):
    """Root of all hypnokit errors."""


class ConfigurationError(HypnokitError, ValueError):
    """Bad parameter type, out-of-range value or unknown keyword."""


class DataIntegrityError(HypnokitError, ValueError):
    """
    Input arrays that cannot be analysed as given.

    Parameters
    ----------
    message : str
        Human readable description.
    positions : sequence of int, optional
        0-based indices of the offending elements, when they can be named.
    """

    def __init__(self, message, positions=None):
        super().__init__(message)
        self.positions = list(positions) if positions is not None else []


class MissingInputError(HypnokitError, RuntimeError):
    """An operation needs an input (EEG, hypnogram, markers) not yet supplied."""
