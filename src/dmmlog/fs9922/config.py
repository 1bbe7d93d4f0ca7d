from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

OUTPUT_FORMATS = ("human", "si", "json", "keyvalue")
TIME_FORMATS = ("iso", "local", "epochsecms", "human", "none")


@dataclass
class SerialConfig:
    # FS9922-DMM4 meters all talk 2400 baud 8N1. DTR high / RTS low powers
    # the optical RS-232 adaptor.
    baudrate: int = 2400
    bytesize: int = 8
    parity: str = "N"
    stopbits: float = 1
    dtr: bool = True
    rts: bool = False
    exclusive: bool = True


@dataclass
class SyncConfig:
    idle_timeout: float = 0.1


@dataclass
class DecoderConfig:
    legacy_kilo_multiplier: bool = False


@dataclass
class OutputConfig:
    format: str = "human"
    time_format: str = "none"


@dataclass
class DmmConfig:
    serial: SerialConfig = field(default_factory=SerialConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    decoder: DecoderConfig = field(default_factory=DecoderConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    count: Optional[int] = None  # None samples until the stream ends

    def validate(self) -> "DmmConfig":
        if self.output.format not in OUTPUT_FORMATS:
            raise ValueError(f"Unsupported output format '{self.output.format}'")
        if self.output.time_format not in TIME_FORMATS:
            raise ValueError(f"Unsupported time format '{self.output.time_format}'")
        if self.sync.idle_timeout <= 0:
            raise ValueError("sync.idle_timeout must be positive")
        if self.count is not None and self.count < 0:
            raise ValueError("count may not be negative")
        if self.serial.parity.upper() not in {"N", "E", "O", "M", "S"}:
            raise ValueError(f"Unsupported parity '{self.serial.parity}'")
        return self


def _load_json(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {**base}
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merged[key] = _merge(base[key], value)  # type: ignore[index]
        else:
            merged[key] = value
    return merged


def load_config(path: Path | str | None = None, overrides: Sequence[str] | None = None) -> DmmConfig:
    """
    Load a sampler configuration from JSON and apply CLI-style overrides.

    Without a path the built-in defaults are used. Overrides are dotted
    `key=value` pairs, e.g.:
        ["serial.baudrate=2400", "output.format=json", "count=10"]
    """
    data: Dict[str, Any] = _load_json(Path(path)) if path is not None else {}
    override_data: Dict[str, Any] = {}
    for override in overrides or []:
        key, raw_value = _parse_override(override)
        _assign_nested(override_data, key, raw_value)
    merged = _merge(data, override_data)
    serial_data = merged.get("serial") or {}
    sync_data = merged.get("sync") or {}
    decoder_data = merged.get("decoder") or {}
    output_data = merged.get("output") or {}
    count = merged.get("count")
    config = DmmConfig(
        serial=SerialConfig(
            baudrate=int(serial_data.get("baudrate", 2400)),
            bytesize=int(serial_data.get("bytesize", 8)),
            parity=str(serial_data.get("parity", "N")).upper(),
            stopbits=float(serial_data.get("stopbits", 1)),
            dtr=_as_bool(serial_data.get("dtr", True), "serial.dtr"),
            rts=_as_bool(serial_data.get("rts", False), "serial.rts"),
            exclusive=_as_bool(serial_data.get("exclusive", True), "serial.exclusive"),
        ),
        sync=SyncConfig(idle_timeout=float(sync_data.get("idle_timeout", 0.1))),
        decoder=DecoderConfig(
            legacy_kilo_multiplier=_as_bool(
                decoder_data.get("legacy_kilo_multiplier", False), "decoder.legacy_kilo_multiplier"
            ),
        ),
        output=OutputConfig(
            format=str(output_data.get("format", "human")).lower(),
            time_format=str(output_data.get("time_format", "none")).lower(),
        ),
        count=int(count) if count is not None else None,
    )
    return config.validate()


def _parse_override(item: str) -> tuple[str, Any]:
    if "=" not in item:
        raise ValueError(f"Override '{item}' must use key=value syntax")
    key, raw_value = item.split("=", 1)
    key = key.strip()
    if not key:
        raise ValueError("Override key may not be empty")
    value = _coerce_value(raw_value.strip())
    return key, value


def _coerce_value(raw: str) -> Any:
    if raw.lower() in {"true", "false"}:
        return raw.lower() == "true"
    if raw.lower() == "null":
        return None
    try:
        if "." in raw or "e" in raw.lower():
            return float(raw)
        return int(raw)
    except ValueError:
        pass
    if raw.startswith("{") and raw.endswith("}"):
        return json.loads(raw)
    return raw


def _as_bool(value: Any, key: str) -> bool:
    if isinstance(value, str):
        value = _coerce_value(value.strip())
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be true or false, got {value!r}")
    return value


def _assign_nested(target: Dict[str, Any], dotted_key: str, value: Any) -> None:
    cursor = target
    parts = dotted_key.split(".")
    for part in parts[:-1]:
        cursor = cursor.setdefault(part, {})
    cursor[parts[-1]] = value
