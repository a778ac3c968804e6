from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Sequence

from .codec import MAX_CHANNELS
from .errors import ConfigurationError

DEFAULT_PORT = 10001
DEFAULT_SCANLIST = "E000E001E002E003E004E005E006E007"

# Scan lists such as "0E00" would otherwise coerce to numbers.
STRING_KEYS = {"host", "scan.scanlist"}


@dataclass(frozen=True)
class ScanConfig:
    channel_count: int = 6
    timer_scaler: int = 2  # division of the main 14400 Hz timer
    rate_divisor: int = 0
    scanlist: str = DEFAULT_SCANLIST

    def __post_init__(self) -> None:
        if self.channel_count > MAX_CHANNELS:
            raise ConfigurationError(
                f"Requested {self.channel_count} channels exceeds maximum {MAX_CHANNELS} channels"
            )
        if self.channel_count < 1:
            raise ConfigurationError("channel_count must be at least 1")
        if not 0 <= self.timer_scaler <= 0xFF:
            raise ConfigurationError(f"timer_scaler {self.timer_scaler} does not fit in one byte")
        if not 0 <= self.rate_divisor <= 0xFFFF:
            raise ConfigurationError(f"rate_divisor {self.rate_divisor} does not fit in 16 bits")
        if not self.scanlist or not self.scanlist.isascii():
            raise ConfigurationError("scanlist must be a non-empty ASCII string")


@dataclass
class StreamSettings:
    host: str = "di718b"
    port: int = DEFAULT_PORT
    fullscale: float = 20.0  # depends on the installed input amplifier module
    fudge: float = 1.0
    timeout: float = 1.0
    scan: ScanConfig = field(default_factory=ScanConfig)

    @staticmethod
    def from_mapping(data: Dict[str, Any]) -> "StreamSettings":
        defaults = StreamSettings()
        scan_data = data.get("scan") or {}
        if not isinstance(scan_data, dict):
            raise ConfigurationError("'scan' settings must be given as scan.<key>=<value>")
        unknown = set(data) - set(asdict(defaults))
        unknown |= {f"scan.{key}" for key in set(scan_data) - set(asdict(defaults.scan))}
        if unknown:
            raise ConfigurationError(f"Unknown setting(s): {', '.join(sorted(unknown))}")
        try:
            return StreamSettings(
                host=str(data.get("host", defaults.host)),
                port=int(data.get("port", defaults.port)),
                fullscale=float(data.get("fullscale", defaults.fullscale)),
                fudge=float(data.get("fudge", defaults.fudge)),
                timeout=float(data.get("timeout", defaults.timeout)),
                scan=ScanConfig(
                    channel_count=int(scan_data.get("channel_count", defaults.scan.channel_count)),
                    timer_scaler=int(scan_data.get("timer_scaler", defaults.scan.timer_scaler)),
                    rate_divisor=int(scan_data.get("rate_divisor", defaults.scan.rate_divisor)),
                    scanlist=str(scan_data.get("scanlist", defaults.scan.scanlist)),
                ),
            )
        except ConfigurationError:
            raise
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid setting value: {exc}") from exc


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {**base}
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merged[key] = _merge(base[key], value)
        else:
            merged[key] = value
    return merged


def apply_overrides(settings: StreamSettings, overrides: Sequence[str] | None = None) -> StreamSettings:
    """
    Return a copy of ``settings`` with CLI-style overrides applied.

    Overrides are dotted `key=value` pairs, e.g.:
        ["scan.channel_count=8", "fudge=1.018"]
    """
    override_data: Dict[str, Any] = {}
    for override in overrides or []:
        key, value = _parse_override(override)
        _assign_nested(override_data, key, value)
    if not override_data:
        return settings
    return StreamSettings.from_mapping(_merge(asdict(settings), override_data))


def _parse_override(item: str) -> tuple[str, Any]:
    if "=" not in item:
        raise ConfigurationError(f"Override '{item}' must use key=value syntax")
    key, raw_value = item.split("=", 1)
    key = key.strip()
    if not key:
        raise ConfigurationError("Override key may not be empty")
    if key in STRING_KEYS:
        return key, raw_value.strip()
    return key, _coerce_value(raw_value.strip())


def _coerce_value(raw: str) -> Any:
    if raw.lower() in {"true", "false"}:
        return raw.lower() == "true"
    try:
        if raw.lower().startswith("0x"):
            return int(raw, 16)
        if "." in raw or "e" in raw.lower():
            return float(raw)
        return int(raw)
    except ValueError:
        pass
    if (raw.startswith("[") and raw.endswith("]")) or (raw.startswith("{") and raw.endswith("}")):
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Invalid JSON override value {raw!r}") from exc
    return raw


def _assign_nested(target: Dict[str, Any], dotted_key: str, value: Any) -> None:
    cursor = target
    parts = dotted_key.split(".")
    for part in parts[:-1]:
        nested = cursor.setdefault(part, {})
        if not isinstance(nested, dict):
            raise ConfigurationError(f"Override '{dotted_key}' conflicts with '{part}'")
        cursor = nested
    cursor[parts[-1]] = value
