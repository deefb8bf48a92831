from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Sequence

from .errors import ConfigurationError
from .twist import validate_axis


@dataclass
class DeviceConfig:
    port: str = "/dev/ttyACM0"
    baudrate: int = 9600
    write_timeout: float = 1.0


@dataclass
class HostRuntime:
    queue_maxsize: int = 256
    reconnect_initial_sec: float = 0.5
    reconnect_max_sec: float = 5.0
    stats_log_interval: float = 60.0


@dataclass
class CommutatorConfig:
    rotation_axis: List[float] = field(default_factory=lambda: [0.0, 0.0, 1.0])
    enable: bool = True
    led: bool = True
    sample_interval_ms: float = 0.0
    output_csv: Path | None = None
    device: DeviceConfig = field(default_factory=DeviceConfig)
    host: HostRuntime = field(default_factory=HostRuntime)

    def validate(self) -> "CommutatorConfig":
        validate_axis(self.rotation_axis)
        if self.sample_interval_ms < 0:
            raise ConfigurationError("sample_interval_ms must be non-negative")
        return self


_SECTIONS = ("device", "host")


def _load_json(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"{path}: invalid JSON ({exc})") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: top level must be a JSON object")
    return data


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = data.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"'{name}' must be an object, got {value!r}")
    return value


def _apply_overrides(data: Dict[str, Any], overrides: Sequence[str]) -> Dict[str, Any]:
    # sections are merged key by key; anything else is replaced outright
    merged = {**data, **{name: dict(_section(data, name)) for name in _SECTIONS if name in data}}
    for item in overrides:
        key, value = _parse_override(item)
        _assign_nested(merged, key, value)
    return merged


def _as_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in {"true", "false"}:
        return value.lower() == "true"
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise ConfigurationError(f"{name} must be a boolean, got {value!r}")


def load_config(path: Path | str | None = None, overrides: Sequence[str] | None = None) -> CommutatorConfig:
    """
    Load a commutator host configuration from JSON and apply CLI-style overrides.

    Overrides are dotted `key=value` pairs, e.g.:
        ["rotation_axis=[0,1,0]", "device.baudrate=115200"]
    Without a path only the defaults and overrides apply. Every malformed
    file, override or value raises :class:`ConfigurationError`.
    """
    data = _load_json(Path(path)) if path is not None else {}
    merged = _apply_overrides(data, overrides or [])
    device_data = _section(merged, "device")
    host_data = _section(merged, "host")
    try:
        axis = [float(value) for value in merged.get("rotation_axis", [0.0, 0.0, 1.0])]
        config = CommutatorConfig(
            rotation_axis=axis,
            enable=_as_bool(merged.get("enable", True), "enable"),
            led=_as_bool(merged.get("led", True), "led"),
            sample_interval_ms=float(merged.get("sample_interval_ms", 0.0)),
            output_csv=Path(merged["output_csv"]) if merged.get("output_csv") else None,
            device=DeviceConfig(
                port=str(device_data.get("port", "/dev/ttyACM0")),
                baudrate=int(device_data.get("baudrate", 9600)),
                write_timeout=float(device_data.get("write_timeout", 1.0)),
            ),
            host=HostRuntime(
                queue_maxsize=int(host_data.get("queue_maxsize", 256)),
                reconnect_initial_sec=float(host_data.get("reconnect_initial_sec", 0.5)),
                reconnect_max_sec=float(host_data.get("reconnect_max_sec", 5.0)),
                stats_log_interval=float(host_data.get("stats_log_interval", 60.0)),
            ),
        )
    except ConfigurationError:
        raise
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid configuration value: {exc}") from exc
    return config.validate()


def _parse_override(item: str) -> tuple[str, Any]:
    key, sep, raw_value = item.partition("=")
    key = key.strip()
    if not sep:
        raise ConfigurationError(f"Override '{item}' must use key=value syntax")
    if not key or any(not part for part in key.split(".")):
        raise ConfigurationError(f"Override '{item}' has an empty key")
    return key, _coerce_value(key, raw_value.strip())


def _coerce_value(key: str, raw: str) -> Any:
    lowered = raw.lower()
    if lowered in {"true", "false"}:
        return lowered == "true"
    if lowered in {"null", "none"}:
        return None
    try:
        if "." in raw or "e" in lowered:
            return float(raw)
        return int(raw)
    except ValueError:
        pass
    if raw and raw[0] in "[{" and raw[-1] in "]}":
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Override {key}: {raw!r} is not valid JSON ({exc.msg})") from exc
    return raw


def _assign_nested(target: Dict[str, Any], dotted_key: str, value: Any) -> None:
    *parents, leaf = dotted_key.split(".")
    cursor = target
    for depth, part in enumerate(parents):
        child = cursor.setdefault(part, {})
        if not isinstance(child, dict):
            prefix = ".".join(parents[: depth + 1])
            raise ConfigurationError(f"Override {dotted_key}: '{prefix}' is not a section")
        cursor = child
    cursor[leaf] = value
