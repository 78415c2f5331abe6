"""Configuration helpers and feature flag evaluation."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional


_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_key(name: str) -> str:
    return "HGTOOLS_" + name.upper().replace(".", "_")


@lru_cache(maxsize=None)
def feature_enabled(name: str, default: bool = False) -> bool:
    """Return True when the named feature flag is enabled via environment variable.

    Feature names map to environment variables using the pattern:
        feature.dump.atomic_writes → HGTOOLS_FEATURE_DUMP_ATOMIC_WRITES
    Values are interpreted case-insensitively; "1", "true", "yes", "on" enable the flag.
    """

    raw = os.getenv(_env_key(name))
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE_VALUES


def env_int(name: str, default: int) -> int:
    """Integer setting from HGTOOLS_<NAME>; malformed values fall back to default."""
    raw = os.getenv(_env_key(name))
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    raw = os.getenv(_env_key(name))
    if raw is None or not raw.strip():
        return default
    return raw.strip()
