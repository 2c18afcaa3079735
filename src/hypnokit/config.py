from __future__ import annotations

import copy
import numbers
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigurationError

DEFAULTS_PATH = Path(__file__).with_name("defaults.yaml")

WINDOW_KINDS = ("hann", "hamming", "blackman", "blackmanharris", "kaiser")
WINDOW_ALIASES = {"hanning": "hann"}
PAD_POLICIES = ("extend", "truncate", "strict")


@dataclass(frozen=True)
class FilterSettings:
    notch_order: int
    notch_low: float
    notch_high: float
    band_stop_low: float
    band_pass_low: float
    band_pass_high: float
    band_stop_high: float
    band_atten_low: float
    band_atten_high: float


@dataclass(frozen=True)
class RecordingConfig:
    states: tuple[str, ...]
    epoch: float
    block: int
    bin_hours: float
    toi: tuple[str, ...] | None
    srate: float
    kernel_size: float
    kernel_overlap: float
    hz_min: float
    hz_max: float
    window: str
    bands: dict[str, tuple[float, float]]
    min_pad: float
    exclude: tuple[str, ...]
    verbose: bool
    pad_policy: str
    filter: FilterSettings

    @property
    def nstates(self) -> int:
        return len(self.states)

    def replace(self, **overrides: Any) -> RecordingConfig:
        """Return a re-validated copy with ``overrides`` applied."""
        return parse_config(_merge(as_dict(self), overrides))


def load_config(path: str | Path | None = None, **overrides: Any) -> RecordingConfig:
    """
    Resolve the layered configuration.

    Built-in defaults are read from the packaged ``defaults.yaml``; an
    optional user YAML file is merged over them, then keyword overrides are
    merged over the result. Unknown keys at any layer raise
    ``ConfigurationError``.
    """
    raw = _read_yaml(DEFAULTS_PATH)
    if path is not None:
        raw = _merge(raw, _read_yaml(Path(path)))
    raw = _merge(raw, overrides)
    return parse_config(raw)


def parse_config(raw: dict[str, Any]) -> RecordingConfig:
    filter_raw = raw["filter"]
    filter_settings = FilterSettings(
        notch_order=_positive_int(filter_raw["notch_order"], "filter.notch_order"),
        notch_low=_positive(filter_raw["notch_low"], "filter.notch_low"),
        notch_high=_positive(filter_raw["notch_high"], "filter.notch_high"),
        band_stop_low=_positive(filter_raw["band_stop_low"], "filter.band_stop_low"),
        band_pass_low=_positive(filter_raw["band_pass_low"], "filter.band_pass_low"),
        band_pass_high=_positive(filter_raw["band_pass_high"], "filter.band_pass_high"),
        band_stop_high=_positive(filter_raw["band_stop_high"], "filter.band_stop_high"),
        band_atten_low=_positive(filter_raw["band_atten_low"], "filter.band_atten_low"),
        band_atten_high=_positive(filter_raw["band_atten_high"], "filter.band_atten_high"),
    )
    if not filter_settings.notch_low < filter_settings.notch_high:
        raise ConfigurationError("filter.notch_low must be lower than filter.notch_high")
    edges = (
        filter_settings.band_stop_low,
        filter_settings.band_pass_low,
        filter_settings.band_pass_high,
        filter_settings.band_stop_high,
    )
    if list(edges) != sorted(edges) or len(set(edges)) != 4:
        raise ConfigurationError(
            "filter band edges must satisfy band_stop_low < band_pass_low < band_pass_high < band_stop_high"
        )

    hz_min = _non_negative(raw["hz_min"], "hz_min")
    hz_max = _non_negative(raw["hz_max"], "hz_max")
    if hz_min > hz_max:
        raise ConfigurationError(f"hz_min ({hz_min}) must not exceed hz_max ({hz_max})")

    pad_policy = str(raw["pad_policy"]).lower()
    if pad_policy not in PAD_POLICIES:
        raise ConfigurationError(f"pad_policy must be one of {PAD_POLICIES}, got '{raw['pad_policy']}'")

    return RecordingConfig(
        states=_states(raw["states"]),
        epoch=_positive(raw["epoch"], "epoch"),
        block=_non_negative_int(raw["block"], "block"),
        bin_hours=_non_negative(raw["bin_hours"], "bin_hours"),
        toi=normalize_tags(raw["toi"]),
        srate=_positive(raw["srate"], "srate"),
        kernel_size=_positive(raw["kernel_size"], "kernel_size"),
        kernel_overlap=_overlap(raw["kernel_overlap"]),
        hz_min=hz_min,
        hz_max=hz_max,
        window=normalize_window(raw["window"]),
        bands=parse_bands(raw["bands"]),
        min_pad=_non_negative(raw["min_pad"], "min_pad"),
        exclude=normalize_tags(raw["exclude"]) or (),
        verbose=bool(raw["verbose"]),
        pad_policy=pad_policy,
        filter=filter_settings,
    )


def as_dict(config: RecordingConfig) -> dict[str, Any]:
    return {
        "states": list(config.states),
        "epoch": config.epoch,
        "block": config.block,
        "bin_hours": config.bin_hours,
        "toi": list(config.toi) if config.toi is not None else None,
        "srate": config.srate,
        "kernel_size": config.kernel_size,
        "kernel_overlap": config.kernel_overlap,
        "hz_min": config.hz_min,
        "hz_max": config.hz_max,
        "window": config.window,
        "bands": {name: list(edges) for name, edges in config.bands.items()},
        "min_pad": config.min_pad,
        "exclude": list(config.exclude),
        "verbose": config.verbose,
        "pad_policy": config.pad_policy,
        "filter": {
            "notch_order": config.filter.notch_order,
            "notch_low": config.filter.notch_low,
            "notch_high": config.filter.notch_high,
            "band_stop_low": config.filter.band_stop_low,
            "band_pass_low": config.filter.band_pass_low,
            "band_pass_high": config.filter.band_pass_high,
            "band_stop_high": config.filter.band_stop_high,
            "band_atten_low": config.filter.band_atten_low,
            "band_atten_high": config.filter.band_atten_high,
        },
    }


# ============================================================================
# Shared validators, also used by the standalone analyzers
# ============================================================================

def normalize_window(kind: Any) -> str:
    if not isinstance(kind, str):
        raise ConfigurationError(f"window must be a string, got {type(kind).__name__}")
    key = kind.strip().lower().replace("-", "").replace("_", "").replace(" ", "")
    key = WINDOW_ALIASES.get(key, key)
    if key not in WINDOW_KINDS:
        raise ConfigurationError(f"Unknown window kind '{kind}'. Choose from {WINDOW_KINDS}")
    return key


def normalize_tags(tags: Any) -> tuple[str, ...] | None:
    """``None``, ``False``, empty string or empty list all mean "every tag"."""
    if tags is None or tags is False:
        return None
    if isinstance(tags, str):
        return (tags,) if tags else None
    try:
        items = tuple(tags)
    except TypeError:
        raise ConfigurationError(f"Tags must be a string or a list of strings, got {tags!r}") from None
    if not all(isinstance(item, str) for item in items):
        raise ConfigurationError(f"Tags must be strings, got {tags!r}")
    return items or None


def parse_bands(raw: Any) -> dict[str, tuple[float, float]]:
    if not isinstance(raw, dict):
        raise ConfigurationError("bands must be a mapping of band name to [low, high] Hz")
    bands = {}
    for name, edges in raw.items():
        try:
            low, high = (float(edge) for edge in edges)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Band '{name}' must be a [low, high] pair, got {edges!r}") from None
        if low < 0 or low > high:
            raise ConfigurationError(f"Band '{name}' must satisfy 0 <= low <= high, got {edges!r}")
        bands[str(name)] = (low, high)
    return bands


def check_positive(value: Any, name: str) -> float:
    return _positive(value, name)


def check_non_negative(value: Any, name: str) -> float:
    return _non_negative(value, name)


def check_overlap(value: Any) -> float:
    return _overlap(value)


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
    except FileNotFoundError:
        raise ConfigurationError(f"Configuration file not found: {path}") from None
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping")
    return raw


def _merge(base: dict[str, Any], override: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if key not in merged:
            raise ConfigurationError(f"Unknown configuration key '{prefix}{key}'")
        if key == "bands" and not prefix:
            if not isinstance(value, dict):
                raise ConfigurationError("bands must be a mapping of band name to [low, high] Hz")
            merged[key].update(value)
        elif key == "filter" and not prefix:
            if not isinstance(value, dict):
                raise ConfigurationError("filter must be a mapping")
            merged[key] = _merge(merged[key], value, prefix="filter.")
        else:
            merged[key] = value
    return merged


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _positive(value: Any, name: str) -> float:
    if not _is_number(value) or not value > 0:
        raise ConfigurationError(f"{name} must be a positive number, got {value!r}")
    return float(value)


def _non_negative(value: Any, name: str) -> float:
    if not _is_number(value) or not value >= 0:
        raise ConfigurationError(f"{name} must be a non-negative number, got {value!r}")
    return float(value)


def _positive_int(value: Any, name: str) -> int:
    if not _is_number(value) or value <= 0 or int(value) != value:
        raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")
    return int(value)


def _non_negative_int(value: Any, name: str) -> int:
    if not _is_number(value) or value < 0 or int(value) != value:
        raise ConfigurationError(f"{name} must be a non-negative integer, got {value!r}")
    return int(value)


def _overlap(value: Any) -> float:
    if not _is_number(value) or not 0 <= value < 1:
        raise ConfigurationError(f"kernel_overlap must be in [0, 1), got {value!r}")
    return float(value)


def _states(raw: Any) -> tuple[str, ...]:
    states = normalize_tags(raw)
    if not states:
        raise ConfigurationError("states must be a non-empty list of state names")
    if len(set(states)) != len(states):
        raise ConfigurationError(f"state names must be unique, got {list(states)}")
    return states
