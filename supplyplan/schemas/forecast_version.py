from __future__ import annotations

from pydantic import BaseModel, Field


class ForecastEntry(BaseModel):
    units: float | None = None
    revenue_eur: float | None = None
    profit_eur: float | None = None


class ForecastVersionStats(BaseModel):
    row_count: int = 0
    sku_count: int = 0
    month_count: int = 0


class ForecastVersion(BaseModel):
    id: str
    name: str
    note: str | None = None
    created_at: str
    source_label: str | None = None
    import_mode: str | None = None
    only_active_skus: bool = False
    forecast_import: dict[str, dict[str, ForecastEntry]] = Field(default_factory=dict)
    stats: ForecastVersionStats = Field(default_factory=ForecastVersionStats)


class VersionOpResult(BaseModel):
    """Outcome of a mutating version-store call; ``reason`` is set when ``ok`` is False."""

    ok: bool
    reason: str | None = None
    version: ForecastVersion | None = None


class ForecastVersionCreate(BaseModel):
    name: str | None = None
    note: str | None = None
    created_at: str | None = None
    source_label: str | None = None
    import_mode: str | None = None
    only_active_skus: bool = False
    forecast_import: dict = Field(default_factory=dict)
    activate: bool = False


class ForecastVersionUpdate(BaseModel):
    name: str | None = None
    note: str | None = None


class ForecastVersionList(BaseModel):
    active_version_id: str | None
    items: list[ForecastVersion]
