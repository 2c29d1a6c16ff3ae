"""Settings for the sync layer.

Settings can come from a TOML file::

    [sync]
    base_url         = "https://api.example.com"
    timeout          = 15
    cache_ttl        = 30       # seconds a fetched list counts as fresh
    batch_size       = 10       # bulk-delete limit / fallback chunk size
    pacing_delay     = 0.1      # seconds between single deletes in a chunk
    scroll_page_size = 100

Environment variables (all optional; direct kwargs take precedence):
    DASHSYNC_API_URL     – base URL of the API
    DASHSYNC_API_TOKEN   – static bearer token
    DASHSYNC_TIMEOUT     – per-request timeout in seconds
    DASHSYNC_CACHE_TTL   – freshness window in seconds
    DASHSYNC_BATCH_SIZE  – bulk-delete chunk size
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

_ENV_VARS = {
    "base_url": "DASHSYNC_API_URL",
    "api_token": "DASHSYNC_API_TOKEN",
    "timeout": "DASHSYNC_TIMEOUT",
    "cache_ttl": "DASHSYNC_CACHE_TTL",
    "batch_size": "DASHSYNC_BATCH_SIZE",
}


@dataclass(frozen=True)
class SyncSettings:
    base_url: str = "http://localhost:8000"
    api_prefix: str = "/api/v1"
    api_token: str = ""
    timeout: float = 30.0
    cache_ttl: float = 30.0
    batch_size: int = 10
    pacing_delay: float = 0.1
    scroll_page_size: int = 100
    list_limit: int = 50
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncSettings":
        """Build settings from a mapping; a wrapping ``sync`` table is optional."""
        table = data.get("sync", data)
        known = {f.name: f for f in fields(cls) if f.name != "extra"}
        values: dict[str, Any] = {}
        for key, raw in table.items():
            if key in known:
                values[key] = _coerce(key, raw, known[key].type)
        extra = {k: v for k, v in table.items() if k not in known}
        return cls(**values, extra=extra)

    @classmethod
    def from_env(cls, base: "SyncSettings | None" = None) -> "SyncSettings":
        """Return *base* (or defaults) with any ``DASHSYNC_*`` variables applied."""
        base = base or cls()
        types = {f.name: f.type for f in fields(cls)}
        overrides: dict[str, Any] = {}
        for key, var in _ENV_VARS.items():
            raw = os.getenv(var)
            if raw:
                overrides[key] = _coerce(key, raw, types[key])
        return replace(base, **overrides)

    @classmethod
    def load(cls, path: Path | str | None = None, **overrides: Any) -> "SyncSettings":
        """Resolve settings: kwargs > environment > TOML file > defaults."""
        settings = cls()
        if path is not None:
            with open(path, "rb") as fh:
                settings = cls.from_dict(tomllib.load(fh))
        settings = cls.from_env(settings)
        if overrides:
            types = {f.name: f.type for f in fields(cls)}
            unknown = set(overrides) - set(types)
            if unknown:
                raise TypeError(f"Unknown setting(s): {', '.join(sorted(unknown))}")
            settings = replace(
                settings, **{k: _coerce(k, v, types[k]) for k, v in overrides.items()}
            )
        return settings


def _coerce(key: str, raw: Any, annotation: Any) -> Any:
    # Annotations are strings under postponed evaluation
    kind = annotation if isinstance(annotation, str) else getattr(annotation, "__name__", "")
    try:
        if kind == "int":
            value = int(raw)
            if value <= 0:
                raise ValueError
            return value
        if kind == "float":
            value = float(raw)
            if value < 0:
                raise ValueError
            return value
    except (TypeError, ValueError):
        raise ValueError(f"Invalid value for setting '{key}': {raw!r}") from None
    if kind == "str":
        return str(raw)
    return raw
