from __future__ import annotations

import math
from datetime import date
from enum import Enum

from pydantic import BaseModel, Field, field_serializer


class SuggestionConfidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SuggestionStatus(str, Enum):
    OK = "ok"
    INSUFFICIENT_FORECAST = "insufficient_forecast"
    INSUFFICIENT_INVENTORY_SNAPSHOT = "insufficient_inventory_snapshot"


class CoverageDemandSegment(BaseModel):
    month: str
    days_covered: int
    forecast_month_units: float | None
    demand_units_in_window: float
    used_fallback: bool


class FoSuggestionRationale(BaseModel):
    daily_rate_today: float
    daily_rate_eta: float
    safety_stock_days: float
    lead_time_days: float
    operational_coverage_days: float
    target_coverage_total_days: float
    projected_inventory_at_eta: float
    demand_units: float
    doh_today: float | None
    doh_eta: float | None
    doh_end_of_month: float | None
    required_units: int
    net_needed: float
    coverage_demand_breakdown: list[CoverageDemandSegment] = Field(default_factory=list)

    @field_serializer("doh_today", "doh_eta", "doh_end_of_month", when_used="json")
    def _finite_doh(self, value: float | None) -> float | None:
        # Zero demand gives infinite days on hand, which JSON cannot carry.
        if value is None or not math.isfinite(value):
            return None
        return value


class FoSuggestion(BaseModel):
    sku: str
    eta_date: date
    suggested_units: int
    confidence: SuggestionConfidence
    rationale: FoSuggestionRationale
    warnings: list[str]
    order_needed_flag: bool
    status: SuggestionStatus


class MinDohEtaResult(BaseModel):
    eta_date: date | None
    warnings: list[str]
    status: str


class FoSuggestionRequest(BaseModel):
    sku: str
    today: date | None = None
    operational_coverage_days: int | None = Field(None, ge=0, le=730)
    eta_date: date | None = None
    policy_overrides: dict[str, dict] | None = None
    policy_defaults: dict | None = None
