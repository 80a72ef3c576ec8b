"""Runtime configuration for kidguard.

Settings resolve in three layers: defaults in code, ``KIDGUARD_*``
environment variables, then an optional YAML file (``KIDGUARD_CONFIG`` or an
explicit path).  Example YAML::

    storage_url: https://project.supabase.co
    image_fail_open: false
    upload_retry_delays: [0.5, 1.0, 2.0]
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

_ENV_PREFIX = "KIDGUARD_"


@dataclass
class Settings:
    """All tunables for the moderation and media subsystems."""

    data_dir: Path = field(default_factory=lambda: Path.home() / ".kidguard")

    # Object storage
    storage_url: str = ""
    storage_key: str = ""
    media_bucket: str = "content"
    private_buckets: tuple[str, ...] = ("content",)

    # Vision moderation service
    vision_endpoint: str = ""
    vision_api_key: str = ""
    vision_timeout: float = 15.0
    image_fail_open: bool = True

    # Strikes and suspension
    strike_threshold: int = 3
    strike_window_hours: float = 24.0
    suspension_hours: float = 24.0

    # Signed URLs
    signed_url_ttl: int = 3600
    signed_url_margin: int = 600
    signing_timeout: float = 10.0

    # Uploads
    upload_timeout: float = 25.0
    upload_max_attempts: int = 3
    upload_retry_delays: tuple[float, ...] = (0.6, 1.4)
    compress_threshold_mb: float = 6.0
    compress_max_dimension: int = 1600
    compress_quality: int = 85

    @property
    def moderation_dir(self) -> Path:
        return self.data_dir / "moderation"

    @property
    def events_dir(self) -> Path:
        return self.data_dir / "moderation_events"


def _coerce(current: Any, raw: Any) -> Any:
    """Convert *raw* (env string or YAML value) to the type of *current*."""
    if isinstance(current, bool):
        if isinstance(raw, bool):
            return raw
        return str(raw).strip().lower() in ("1", "true", "yes", "on")
    if isinstance(current, Path):
        return Path(raw).expanduser()
    if isinstance(current, tuple):
        items = raw if isinstance(raw, (list, tuple)) else str(raw).split(",")
        items = [i.strip() if isinstance(i, str) else i for i in items if i != ""]
        if current and isinstance(current[0], float):
            return tuple(float(i) for i in items)
        return tuple(str(i) for i in items)
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    return str(raw)


def _apply(settings: Settings, values: dict[str, Any]) -> None:
    for f in fields(settings):
        if f.name in values and values[f.name] is not None:
            setattr(settings, f.name, _coerce(getattr(settings, f.name), values[f.name]))


def load_settings(path: str | Path | None = None) -> Settings:
    """Build :class:`Settings` from defaults, environment and YAML."""
    settings = Settings()

    env_values = {
        f.name: os.environ[_ENV_PREFIX + f.name.upper()]
        for f in fields(settings)
        if _ENV_PREFIX + f.name.upper() in os.environ
    }
    _apply(settings, env_values)

    config_path = path or os.environ.get(_ENV_PREFIX + "CONFIG")
    if config_path:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {config_path} must contain a mapping")
        unknown = set(data) - {f.name for f in fields(settings)}
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(sorted(unknown))}")
        _apply(settings, data)

    return settings
