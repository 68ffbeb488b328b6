"""Configuration data structures for scheduler-watcher."""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Mapping, Optional

from .store import DEFAULT_DB_PATH

DEFAULT_INTERVAL = "10s"
DEFAULT_IDENTITY = "task-job"
ENV_PREFIX = "SCHEDULER_WATCHER_"

_UNIT_SECONDS = {
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
    "d": 86400.0,
}
_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)?\s*$", re.IGNORECASE)
_ISO_DURATION_RE = re.compile(
    r"^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$",
    re.IGNORECASE,
)


class ConfigError(ValueError):
    """Raised when a configuration value cannot be used."""


def parse_interval(value: str | int | float | timedelta) -> timedelta:
    """Parse *value* into a positive :class:`timedelta`.

    Accepts a ``timedelta``, a number of seconds, a short form such as
    ``"10s"``, ``"500ms"``, ``"5m"``, ``"1h"`` or ``"1d"``, or an ISO-8601
    duration such as ``"PT10S"``.
    """

    if isinstance(value, timedelta):
        interval = value
    elif isinstance(value, bool):
        raise ConfigError(f"Invalid interval: {value!r}")
    elif isinstance(value, (int, float)):
        interval = timedelta(seconds=value)
    elif isinstance(value, str):
        interval = _parse_interval_text(value)
    else:
        raise ConfigError(f"Invalid interval: {value!r}")

    if interval <= timedelta(0):
        raise ConfigError(f"Interval must be positive: {value!r}")
    return interval


def _parse_interval_text(text: str) -> timedelta:
    match = _DURATION_RE.match(text)
    if match:
        amount = float(match.group(1))
        unit = (match.group(2) or "s").lower()
        return timedelta(seconds=amount * _UNIT_SECONDS[unit])

    iso = _ISO_DURATION_RE.match(text.strip())
    if iso and any(iso.groupdict().values()):
        parts = {key: float(raw) for key, raw in iso.groupdict().items() if raw}
        return timedelta(**parts)

    raise ConfigError(f"Invalid interval: {text!r}")


@dataclass
class WatchOptions:
    """Options for the directory watcher."""

    watch_dir: Optional[Path] = None
    poll_interval: float = 0.5


@dataclass
class ScheduleOptions:
    """Options for the periodic task-creation job."""

    interval: timedelta = field(default_factory=lambda: parse_interval(DEFAULT_INTERVAL))
    identity: str = DEFAULT_IDENTITY
    misfire_grace_time: int = 1


@dataclass
class StoreOptions:
    """Where tasks are persisted."""

    db_path: Path = DEFAULT_DB_PATH


@dataclass
class ApiOptions:
    """Bind address for the HTTP query surface."""

    host: str = "127.0.0.1"
    port: int = 8080


@dataclass
class AppConfig:
    """Complete application configuration."""

    watch: WatchOptions = field(default_factory=WatchOptions)
    schedule: ScheduleOptions = field(default_factory=ScheduleOptions)
    store: StoreOptions = field(default_factory=StoreOptions)
    api: ApiOptions = field(default_factory=ApiOptions)
    log_path: Optional[Path] = None


# config file key -> (env suffix, section, attribute)
_SETTINGS: dict[str, tuple[str, str, str]] = {
    "watchDir": ("WATCH_DIR", "watch", "watch_dir"),
    "pollInterval": ("POLL_INTERVAL", "watch", "poll_interval"),
    "interval": ("INTERVAL", "schedule", "interval"),
    "identity": ("IDENTITY", "schedule", "identity"),
    "misfireGraceTime": ("MISFIRE_GRACE_TIME", "schedule", "misfire_grace_time"),
    "database": ("DB", "store", "db_path"),
    "host": ("HOST", "api", "host"),
    "port": ("PORT", "api", "port"),
    "logPath": ("LOG", "", "log_path"),
}


def load_config(
    path: str | Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> AppConfig:
    """Build an :class:`AppConfig` from defaults, a JSON file and the environment.

    Environment variables (``SCHEDULER_WATCHER_*``) override the file.
    """

    config = AppConfig()

    if path is not None:
        config_path = Path(path).expanduser()
        try:
            raw = json.loads(config_path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise ConfigError(f"Config file not found: {config_path}") from exc
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Invalid config JSON in {config_path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigError(f"Config file must contain a JSON object: {config_path}")
        unknown = sorted(set(raw) - set(_SETTINGS))
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")
        for key, value in raw.items():
            _apply(config, key, value)

    environ = os.environ if env is None else env
    for key, (suffix, _, _) in _SETTINGS.items():
        value = environ.get(ENV_PREFIX + suffix)
        if value not in (None, ""):
            _apply(config, key, value)

    return config


def _apply(config: AppConfig, key: str, value: Any) -> None:
    _, section, attribute = _SETTINGS[key]
    target = getattr(config, section) if section else config
    setattr(target, attribute, _coerce(key, attribute, value))


def _coerce(key: str, attribute: str, value: Any) -> Any:
    try:
        if attribute in {"watch_dir", "db_path", "log_path"}:
            return Path(str(value)).expanduser() if value is not None else None
        if attribute == "interval":
            return parse_interval(value)
        if attribute == "poll_interval":
            seconds = float(value)
            if seconds < 0:
                raise ConfigError(f"{key} must not be negative")
            return seconds
        if attribute in {"port", "misfire_grace_time"}:
            number = int(value)
            if number <= 0:
                raise ConfigError(f"{key} must be positive")
            return number
        return str(value)
    except ConfigError:
        raise
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value for {key}: {value!r}") from exc


__all__ = [
    "ApiOptions",
    "AppConfig",
    "ConfigError",
    "DEFAULT_IDENTITY",
    "DEFAULT_INTERVAL",
    "ScheduleOptions",
    "StoreOptions",
    "WatchOptions",
    "load_config",
    "parse_interval",
]
