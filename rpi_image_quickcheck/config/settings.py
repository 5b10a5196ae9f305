"""Settings storage for image check configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


SETTINGS_PATH = Path(
    os.environ.get(
        "RPI_IMAGE_QUICKCHECK_SETTINGS_PATH",
        Path.home() / ".config" / "rpi-image-quickcheck" / "settings.json",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_MOUNT_ROOT = "/mnt"
DEFAULT_SCRATCH_PREFIX = "__UUIDCheck"
DEFAULT_SETTLE_TIMEOUT_SECONDS = 30.0

DEFAULT_SETTINGS: dict[str, Any] = {
    "mount_root": DEFAULT_MOUNT_ROOT,
    "scratch_prefix": DEFAULT_SCRATCH_PREFIX,
    "settle_timeout_seconds": DEFAULT_SETTLE_TIMEOUT_SECONDS,
    "log_dir": None,
}


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=dict)


settings_store = SettingsStore()


def load_settings() -> None:
    settings_store.values = dict(DEFAULT_SETTINGS)
    if not SETTINGS_PATH.exists():
        return
    try:
        data = json.loads(SETTINGS_PATH.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return
    if isinstance(data, dict):
        settings_store.values.update(data)


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def get_float(key: str, default: float) -> float:
    value = get_setting(key, default)
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def get_path(key: str, default: str | None = None) -> Path | None:
    value = get_setting(key, default)
    if not value:
        return None
    return Path(value)


load_settings()
