from __future__ import annotations

from dataclasses import dataclass
from math import isfinite
from pathlib import Path
from typing import Any, Dict, Mapping

import yaml


class ConfigError(ValueError):
    pass


# Built-in vehicle-type parameters, overridable per type.
VEHICLE_TYPE_DEFAULTS: Dict[str, Any] = {
    "accel": 2.6,
    "decel": 4.5,
    "tau": 1.0,
    "min_gap": 2.5,
    "max_speed": 55.56,
    "length": 5.0,
}


def load_yaml(path: str | Path) -> Dict[str, Any]:
    """Load YAML config into a dict."""
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top-level YAML value must be a mapping")
    return data


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def get_float(params: Mapping[str, Any], key: str, default: float) -> float:
    value = params.get(key, default)
    if value is None or isinstance(value, bool):
        raise ConfigError(f"parameter '{key}' must be a number, got {value!r}")
    try:
        result = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"parameter '{key}' must be a number, got {value!r}") from exc
    if not isfinite(result):
        raise ConfigError(f"parameter '{key}' must be finite, got {value!r}")
    return result


def get_positive_float(params: Mapping[str, Any], key: str, default: float) -> float:
    result = get_float(params, key, default)
    if result <= 0:
        raise ConfigError(f"parameter '{key}' must be positive, got {result}")
    return result


@dataclass
class VehicleType:
    name: str
    params: Dict[str, Any]

    def get(self, key: str, default: Any = None) -> Any:
        return self.params.get(key, default)


@dataclass
class AppConfig:
    raw: Dict[str, Any]

    @classmethod
    def from_files(cls, *paths: str | Path) -> "AppConfig":
        merged: Dict[str, Any] = {}
        for path in paths:
            merged = deep_merge(merged, load_yaml(path))
        return cls(raw=merged)

    def vehicle_type(self, name: str = "default") -> VehicleType:
        types = self.raw.get("vehicle_types", {}) or {}
        if not isinstance(types, dict):
            raise ConfigError("'vehicle_types' must be a mapping")
        if name != "default" and name not in types:
            raise ConfigError(f"unknown vehicle type '{name}'")
        params = deep_merge(VEHICLE_TYPE_DEFAULTS, types.get("default", {}) or {})
        if name != "default":
            params = deep_merge(params, types.get(name) or {})
        return VehicleType(name=name, params=params)
