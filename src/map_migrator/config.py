from __future__ import annotations

import copy
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping, Optional, Sequence, Tuple

import yaml


PACKAGE_ROOT = Path(__file__).resolve().parent
DEFAULT_CONFIG_PATH = PACKAGE_ROOT / "configs" / "default.yaml"


HARDCODED_DEFAULTS: Dict[str, Any] = {
    "coordinates": "pixel",
    "anomalies": {
        "min_scale": 0.2,
        "max_scale": 5.0,
        "max_shear": 0.5,
    },
    "distribution": {
        "collinear_ratio": 0.01,
        "clustered_ratio": 0.1,
    },
    "quality": {
        "rmse_good": 5.0,
        "rmse_warning": 15.0,
        "aspect_tolerance": 0.1,
        "shear_warning": 0.1,
    },
}


@dataclass(frozen=True)
class ValidatorThresholds:
    """Policy limits for anomaly, distribution and quality classification."""

    min_scale: float = 0.2
    max_scale: float = 5.0
    max_shear: float = 0.5
    collinear_ratio: float = 0.01
    clustered_ratio: float = 0.1
    rmse_good: float = 5.0
    rmse_warning: float = 15.0
    aspect_tolerance: float = 0.1
    shear_warning: float = 0.1

    def __post_init__(self) -> None:
        if not 0.0 < self.min_scale <= 1.0 <= self.max_scale:
            raise ValueError(
                f"Scale band must satisfy 0 < min_scale <= 1 <= max_scale "
                f"(got {self.min_scale}, {self.max_scale})"
            )
        if self.collinear_ratio > self.clustered_ratio:
            raise ValueError("collinear_ratio must not exceed clustered_ratio")
        if self.rmse_good > self.rmse_warning:
            raise ValueError("rmse_good must not exceed rmse_warning")


DEFAULT_THRESHOLDS = ValidatorThresholds()


def load_config(path: str) -> dict:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {p}")
    return yaml.safe_load(p.read_text(encoding="utf-8"))


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    result: Dict[str, Any] = {key: copy.deepcopy(value) for key, value in base.items()}
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(result.get(key), Mapping):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def set_nested(config: MutableMapping[str, Any], path: Sequence[str], value: Any) -> None:
    if not path:
        return
    cursor: MutableMapping[str, Any] = config
    for key in path[:-1]:
        next_value = cursor.get(key)
        if not isinstance(next_value, MutableMapping):
            next_value = {}
            cursor[key] = next_value
        cursor = next_value
    cursor[path[-1]] = value


def parse_override(entry: str) -> Tuple[Tuple[str, ...], Any]:
    """Parse ``anomalies.max_scale=8`` into a key path and a YAML value."""

    if "=" not in entry:
        raise ValueError("--opts expects 'path=value'")
    raw_path, raw_value = entry.split("=", 1)
    path = tuple(part.strip() for part in raw_path.split(".") if part.strip())
    if not path:
        raise ValueError("--opts needs a key path, e.g. anomalies.max_scale")
    try:
        value = yaml.safe_load(raw_value)
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid value for {'.'.join(path)}: {exc}") from exc
    return path, value


def load_config_with_defaults(
    path: Optional[Path] = None, overrides: Sequence[str] = ()
) -> Dict[str, Any]:
    loaded = load_config(str(path)) if path is not None else None
    if loaded is None:
        loaded = {}
    if not isinstance(loaded, Mapping):
        raise ValueError("Config root must be a mapping")
    config = deep_merge(HARDCODED_DEFAULTS, loaded)
    for entry in overrides:
        key_path, value = parse_override(entry)
        set_nested(config, key_path, value)
    return config


def thresholds_from_config(cfg: Mapping[str, Any]) -> ValidatorThresholds:
    known = {f.name for f in fields(ValidatorThresholds)}
    values: Dict[str, float] = {}
    for section in ("anomalies", "distribution", "quality"):
        sub = cfg.get(section) or {}
        if not isinstance(sub, Mapping):
            raise ValueError(f"{section} config must be a mapping")
        for key, value in sub.items():
            if key not in known:
                raise ValueError(f"Unknown threshold {section}.{key}")
            try:
                values[key] = float(value)
            except (TypeError, ValueError) as exc:
                raise ValueError(f"Threshold {section}.{key} must be numeric") from exc
    return ValidatorThresholds(**values)


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_THRESHOLDS",
    "HARDCODED_DEFAULTS",
    "ValidatorThresholds",
    "deep_merge",
    "load_config",
    "load_config_with_defaults",
    "parse_override",
    "set_nested",
    "thresholds_from_config",
]
