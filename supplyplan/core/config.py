from __future__ import annotations

import os
from dataclasses import dataclass


_TRUTHY = ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: str
    impact_scheduler_enabled: bool
    impact_scheduler_interval_minutes: int


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def get_settings() -> Settings:
    """Read settings from the environment on every call (cheap, test friendly)."""

    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./supplyplan.db"),
        impact_scheduler_enabled=os.getenv("IMPACT_SCHEDULER_ENABLED", "true").lower() in _TRUTHY,
        impact_scheduler_interval_minutes=_int_env("IMPACT_SCHEDULER_INTERVAL_MINUTES", 60),
    )
