"""Configuration for the KBI-1 host.

Settings come from, in increasing priority: built-in defaults, an optional
TOML file, ``KBI1_*`` environment variables, and explicit keyword
arguments to :func:`load_settings`.

Configuration format::

    device_name = "Synclavier KBI-1"
    tick_interval = 1.0
    liveness_timeout = 5
    framing = "drop"        # or "buffer"
    demo_animation = false
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from .protocol.framing import FramingMode

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "synclavier-kbi1" / "config.toml"
DEFAULT_DEVICE_NAME = "Synclavier KBI-1"
ENV_PREFIX = "KBI1_"


@dataclass(frozen=True)
class Settings:
    """Host settings."""

    device_name: str = DEFAULT_DEVICE_NAME
    tick_interval: float = 1.0
    liveness_timeout: int = 5
    framing: FramingMode = FramingMode.DROP
    demo_animation: bool = False

    def __post_init__(self) -> None:
        if self.tick_interval <= 0:
            raise ValueError(f"tick_interval must be positive, got {self.tick_interval}")
        if self.liveness_timeout < 1:
            raise ValueError(f"liveness_timeout must be at least 1, got {self.liveness_timeout}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "device_name": self.device_name,
            "tick_interval": self.tick_interval,
            "liveness_timeout": self.liveness_timeout,
            "framing": self.framing.value,
            "demo_animation": self.demo_animation,
        }


def _coerce(name: str, value: Any) -> Any:
    """Convert a raw file or environment value to the field's type."""
    if name == "framing":
        try:
            return FramingMode(str(value).lower())
        except ValueError:
            raise ValueError(
                f"framing must be one of {[m.value for m in FramingMode]}, got {value!r}"
            ) from None
    if name == "demo_animation":
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    if name == "tick_interval":
        return float(value)
    if name == "liveness_timeout":
        return int(value)
    return str(value)


def _read_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, "rb") as f:
        data = tomllib.load(f)
    logger.debug("Loaded configuration from %s", path)
    return data


def _read_env(environ: dict[str, str]) -> dict[str, Any]:
    values = {}
    for f in fields(Settings):
        key = ENV_PREFIX + f.name.upper()
        if key in environ:
            values[f.name] = environ[key]
    return values


def load_settings(
    config_path: Path | None = None,
    environ: dict[str, str] | None = None,
    **overrides: Any,
) -> Settings:
    """Build ``Settings`` from file, environment and explicit overrides.

    Args:
        config_path: TOML file to read (default: ~/.config/synclavier-kbi1/config.toml).
        environ: Environment mapping (default: ``os.environ``).
        **overrides: Field values that win over everything else. ``None``
            values are ignored so CLI-style optional arguments can be passed
            straight through.

    Raises:
        ValueError: On unknown keys or invalid values.
    """
    known = {f.name for f in fields(Settings)}
    merged: dict[str, Any] = {}

    file_values = _read_file(config_path or DEFAULT_CONFIG_PATH)
    unknown = set(file_values) - known
    if unknown:
        raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")
    merged.update(file_values)
    merged.update(_read_env(dict(os.environ) if environ is None else environ))
    merged.update({k: v for k, v in overrides.items() if v is not None})

    unknown = set(merged) - known
    if unknown:
        raise ValueError(f"Unknown settings: {sorted(unknown)}")

    return replace(Settings(), **{k: _coerce(k, v) for k, v in merged.items()})
