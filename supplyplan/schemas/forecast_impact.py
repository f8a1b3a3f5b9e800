from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class AbcClass(str, Enum):
    A = "A"
    B = "B"
    C = "C"


class FoConflictType(str, Enum):
    UNITS_TOO_SMALL = "units_too_small"
    UNITS_TOO_LARGE = "units_too_large"
    TIMING_TOO_LATE = "timing_too_late"
    TIMING_TOO_EARLY = "timing_too_early"


class ImpactWindows(BaseModel):
    now: str
    months1: list[str]
    months3: list[str]
    months6: list[str]


class ForecastSkuImpactRow(BaseModel):
    sku: str
    alias: str
    abc_class: AbcClass

    delta1_units: float
    delta1_pct: float
    delta3_units: float
    delta3_pct: float
    delta6_units: float
    delta6_pct: float

    delta1_revenue: float | None
    delta3_revenue: float | None
    delta6_revenue: float | None

    flagged: bool
    reasons: list[str]
    first_safety_month: str | None


class FoImpactConflictRow(BaseModel):
    fo_id: str
    sku: str
    alias: str
    abc_class: AbcClass
    supplier_name: str
    supplier_id: str
    conflict_types: list[FoConflictType]

    current_units: int
    current_target_delivery_date: str | None
    current_eta_date: str | None
    first_month_below_safety: str | None

    required_arrival_date: str | None
    required_arrival_month: str | None
    recommended_units: int
    recommended_order_date: str | None
    recommended_arrival_date: str | None
    recommended_arrival_month: str | None
    recommended_coverage_days: float | None
    recommended_status: str

    severity_score: int
    raw_fo: dict = Field(default_factory=dict)


class ForecastImpactSummary(BaseModel):
    compared_at: str
    from_version_id: str | None
    from_version_name: str | None
    to_version_id: str | None
    to_version_name: str | None
    flagged_skus: int
    flagged_ab: int
    fo_conflicts_total: int
    fo_conflicts_open: int


class ForecastImpactResult(BaseModel):
    compared_at: str
    months: ImpactWindows
    sku_rows: list[ForecastSkuImpactRow]
    fo_conflicts: list[FoImpactConflictRow]
    summary: ForecastImpactSummary


class ForecastImpactRequest(BaseModel):
    from_version_id: str | None = None
    to_version_id: str | None = None
    now_month: str | None = Field(None, pattern=r"^\d{4}-\d{2}$")
    persist_summary: bool = False
