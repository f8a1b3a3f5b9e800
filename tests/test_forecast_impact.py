from __future__ import annotations

import dataclasses

import pytest

from supplyplan.schemas.forecast_impact import AbcClass, FoConflictType
from supplyplan.services.abc_classification import AbcClassification, AbcEntry
from supplyplan.services.fo_recommendation import FoRecommendation, FoRecommendationContext
from supplyplan.services.forecast_impact import (
    ImpactCollaborators,
    compute_forecast_impact,
    resolve_comparison_versions,
    resolve_fo_arrival_date,
)
from supplyplan.services.forecast_versioning import append_version, create_forecast_version, set_active_version
from supplyplan.services.inventory_projection import (
    InventoryProjection,
    ProjectionRow,
    get_projection_safety_class,
)
from tests.test_utils import make_forecast_import, make_product, make_snapshot, make_state, make_version


NOW = "2025-04"
MONTHS = ["2025-04", "2025-05", "2025-06"]


def _monthly(units: float) -> dict[str, float]:
    return {month: units for month in MONTHS}


def _row(end_available: float, safety_units: int = 50) -> ProjectionRow:
    return ProjectionRow(
        forecast_units=30,
        has_forecast=True,
        inbound_units=0,
        end_available=end_available,
        safety_days=60,
        safety_units=safety_units,
        doh=None,
        passes_doh=False,
        passes_units=end_available >= safety_units,
        is_covered=end_available >= safety_units,
        forecast_missing=False,
    )


class FakeEngines:
    """Records calls and returns canned ABC classes, projections and recommendations."""

    def __init__(self, recommendations: dict[str, FoRecommendation]) -> None:
        self.recommendations = recommendations
        self.projection_states: list[dict] = []
        self.lead_times: dict[str, int] = {}

    def abc(self, state):
        classes = {"sku-a": AbcClass.A, "sku-r": AbcClass.C, "sku-c": AbcClass.C}
        return AbcClassification(
            months=MONTHS,
            by_sku={
                key: AbcEntry(
                    sku=key.upper(), active=True, price=None, units_6m=None, revenue_6m=None, abc_class=cls
                )
                for key, cls in classes.items()
            },
        )

    def projection(self, state, months, products, snapshot, mode):
        self.projection_states.append(state)
        per_sku = {
            "SKU-A": {month: _row(500) for month in months},
            "SKU-R": {month: _row(10 if month == "2025-05" else 500) for month in months},
            "SKU-C": {month: _row(500) for month in months},
        }
        return InventoryProjection(months=list(months), per_sku_month=per_sku)

    def context(self, state):
        return FoRecommendationContext(
            baseline_month="2025-03",
            planned_sales_by_sku={},
            closing_stock_by_sku={},
            inbound_by_sku={},
        )

    def recommend(self, context, sku, lead_time_days, product, settings, horizon_months):
        self.lead_times[sku] = lead_time_days
        return self.recommendations.get(sku)

    def collaborators(self) -> ImpactCollaborators:
        return ImpactCollaborators(
            compute_abc_classification=self.abc,
            compute_inventory_projection=self.projection,
            get_projection_safety_class=get_projection_safety_class,
            build_fo_recommendation_context=self.context,
            compute_fo_recommendation_for_sku=self.recommend,
        )


def _recommendation(sku: str, units: int, required: str = "2025-06-01", status: str = "ok") -> FoRecommendation:
    return FoRecommendation(
        sku=sku,
        status=status,
        required_arrival_date=required,
        order_date="2025-04-02",
        order_date_adjusted="2025-03-20",
        coverage_days=90,
        recommended_units=units,
    )


def _scenario():
    previous = {
        "id": "fv-old",
        "name": "Old",
        "forecast_import": make_forecast_import(
            {"SKU-A": _monthly(100), "SKU-R": _monthly(100), "SKU-C": _monthly(100)}
        ),
    }
    following = create_forecast_version(
        make_version(
            "fv-new",
            "2025-02-01T00:00:00Z",
            {"SKU-A": _monthly(120), "SKU-R": _monthly(101), "SKU-C": _monthly(100)},
            name="New",
        )
    )
    state = make_state(
        products=[
            make_product("SKU-A", alias="Alpha", avg_selling_price_gross_eur=20),
            make_product("SKU-R", alias="Risky"),
            make_product("SKU-C", alias="Calm"),
        ],
        suppliers=[{"id": "sup-1", "name": "Ningbo Textiles"}],
        fos=[
            {
                "id": "FO-1",
                "sku": "SKU-A",
                "status": "ACTIVE",
                "units": 100,
                "supplier_id": "sup-1",
                "target_delivery_date": "2025-07-15",
                "production_lead_time_days": 30,
                "logistics_lead_time_days": 20,
            },
            {"id": "FO-2", "sku": "SKU-C", "status": "DRAFT", "units": 1000, "target_delivery_date": "2025-04-10"},
            {"id": "FO-3", "sku": "SKU-C", "status": "DRAFT", "units": 310, "target_delivery_date": "2025-06-10"},
            {"id": "FO-4", "sku": "SKU-A", "status": "CONVERTED", "units": 1, "target_delivery_date": "2025-09-01"},
            {"id": "FO-5", "sku": "SKU-R", "status": "PLANNED", "units": 90, "target_delivery_date": "2025-06-05"},
        ],
    )
    engines = FakeEngines(
        {
            "SKU-A": _recommendation("SKU-A", 300),
            "SKU-C": _recommendation("SKU-C", 300),
            "SKU-R": _recommendation("SKU-R", 100),
        }
    )
    return state, previous, following, engines


def test_sku_rows_flag_threshold_and_safety_risk():
    state, previous, following, engines = _scenario()

    result = compute_forecast_impact(state, previous, following, NOW, collaborators=engines.collaborators())

    rows = {row.sku: row for row in result.sku_rows}
    assert [row.sku for row in result.sku_rows] == ["SKU-A", "SKU-R", "SKU-C"]

    alpha = rows["SKU-A"]
    assert alpha.abc_class == AbcClass.A
    assert alpha.alias == "Alpha"
    assert alpha.delta1_units == 20
    assert alpha.delta3_units == 60
    assert alpha.delta3_pct == pytest.approx(20)
    assert alpha.delta3_revenue == 1200
    assert alpha.flagged is True
    assert alpha.reasons == ["abc_threshold"]

    risky = rows["SKU-R"]
    assert risky.delta3_units == 3
    assert risky.flagged is True
    assert risky.reasons == ["safety_risk"]
    assert risky.first_safety_month == "2025-05"

    calm = rows["SKU-C"]
    assert calm.flagged is False
    assert calm.reasons == []
    assert calm.delta6_pct == 0


def test_collaborators_see_next_version_forecast():
    state, previous, following, engines = _scenario()

    compute_forecast_impact(state, previous, following, NOW, collaborators=engines.collaborators())

    seen = engines.projection_states[0]["forecast"]["forecast_import"]
    assert seen["SKU-A"]["2025-04"]["units"] == 120
    assert state["forecast"]["forecast_import"] == {}


def test_abc_classifier_taking_only_state_is_supported():
    state, previous, following, engines = _scenario()
    seen = []

    def classify(workspace_state):
        seen.append(workspace_state)
        entry = AbcEntry(
            sku="SKU-A", active=True, price=None, units_6m=None, revenue_6m=None, abc_class=AbcClass.B
        )
        return AbcClassification(months=MONTHS, by_sku={"sku-a": entry})

    collaborators = dataclasses.replace(engines.collaborators(), compute_abc_classification=classify)
    result = compute_forecast_impact(state, previous, following, NOW, collaborators=collaborators)

    rows = {row.sku: row for row in result.sku_rows}
    assert rows["SKU-A"].abc_class == AbcClass.B
    assert seen[0]["forecast"]["forecast_import"]["SKU-A"]["2025-04"]["units"] == 120


def test_fo_conflicts_types_and_priority():
    state, previous, following, engines = _scenario()

    result = compute_forecast_impact(state, previous, following, NOW, collaborators=engines.collaborators())

    assert [row.fo_id for row in result.fo_conflicts] == ["FO-1", "FO-5", "FO-2"]
    conflicts = {row.fo_id: row for row in result.fo_conflicts}

    late_and_small = conflicts["FO-1"]
    assert late_and_small.conflict_types == [FoConflictType.UNITS_TOO_SMALL, FoConflictType.TIMING_TOO_LATE]
    assert late_and_small.supplier_name == "Ningbo Textiles"
    assert late_and_small.required_arrival_month == "2025-06"
    assert late_and_small.recommended_order_date == "2025-03-20"
    assert late_and_small.severity_score == 202506 - 150
    assert engines.lead_times["SKU-A"] == 50

    risk_driven = conflicts["FO-5"]
    assert risk_driven.conflict_types == [FoConflictType.UNITS_TOO_SMALL, FoConflictType.TIMING_TOO_LATE]
    assert risk_driven.first_month_below_safety == "2025-05"
    assert risk_driven.severity_score == 2000 + 202506 - 150 - 40

    oversized = conflicts["FO-2"]
    assert oversized.conflict_types == [FoConflictType.UNITS_TOO_LARGE, FoConflictType.TIMING_TOO_EARLY]
    assert oversized.supplier_name == "—"
    assert oversized.severity_score == 2000 + 202506 - 20


def test_orders_without_computable_recommendation_are_skipped():
    state, previous, following, engines = _scenario()
    engines.recommendations["SKU-A"] = _recommendation("SKU-A", 0, status="no_fo_needed")

    result = compute_forecast_impact(state, previous, following, NOW, collaborators=engines.collaborators())

    assert "FO-1" not in {row.fo_id for row in result.fo_conflicts}


def test_summary_counts_and_windows():
    state, previous, following, engines = _scenario()

    result = compute_forecast_impact(state, previous, following, NOW, collaborators=engines.collaborators())

    assert result.months.months1 == ["2025-04"]
    assert result.months.months3 == MONTHS
    assert result.months.months6[-1] == "2025-09"
    summary = result.summary
    assert summary.from_version_id == "fv-old"
    assert summary.from_version_name == "Old"
    assert summary.to_version_id == "fv-new"
    assert summary.to_version_name == "New"
    assert summary.flagged_skus == 2
    assert summary.flagged_ab == 1
    assert summary.fo_conflicts_total == 3
    assert summary.fo_conflicts_open == 3


def test_missing_previous_version_counts_everything_as_new():
    state, _, following, engines = _scenario()

    result = compute_forecast_impact(state, None, following, NOW, collaborators=engines.collaborators())

    calm = next(row for row in result.sku_rows if row.sku == "SKU-C")
    assert calm.delta3_units == 300
    assert calm.delta3_pct == 100
    assert result.summary.from_version_id is None


def test_default_collaborators_end_to_end():
    """Real projection, ABC and recommendation engines on a tiny workspace."""
    state = make_state(
        products=[make_product("SKU-1", avg_selling_price_gross_eur=10)],
        snapshots=[make_snapshot("2025-03", {"SKU-1": 50})],
        fos=[
            {
                "id": "FO-9",
                "sku": "SKU-1",
                "status": "ACTIVE",
                "units": 50,
                "target_delivery_date": "2025-09-01",
                "production_lead_time_days": 30,
            }
        ],
    )
    previous = make_version("fv-1", "2025-01-01T00:00:00Z", {"SKU-1": _monthly(100)})
    following = make_version("fv-2", "2025-02-01T00:00:00Z", {"SKU-1": _monthly(200)})

    result = compute_forecast_impact(state, previous, following, NOW)

    (row,) = result.sku_rows
    assert row.abc_class == AbcClass.C
    assert row.reasons == ["abc_threshold", "safety_risk"]
    assert row.first_safety_month == "2025-04"

    (conflict,) = result.fo_conflicts
    assert conflict.fo_id == "FO-9"
    assert FoConflictType.UNITS_TOO_SMALL in conflict.conflict_types
    assert FoConflictType.TIMING_TOO_LATE in conflict.conflict_types
    assert conflict.required_arrival_date == "2025-04-01"
    assert conflict.recommended_units > 50


def test_resolve_fo_arrival_date_prefers_target_delivery():
    assert resolve_fo_arrival_date({"target_delivery_date": "2025-05-01", "eta_date": "2025-06-01"}) == "2025-05-01"
    assert resolve_fo_arrival_date({"eta_date": "bad", "eta": "2025-06-02"}) == "2025-06-02"
    assert resolve_fo_arrival_date({}) is None


def test_resolve_comparison_versions():
    forecast: dict = {}
    for version_id, created_at in (
        ("fv-1", "2025-01-01T00:00:00Z"),
        ("fv-2", "2025-02-01T00:00:00Z"),
        ("fv-3", "2025-03-01T00:00:00Z"),
    ):
        append_version(forecast, make_version(version_id, created_at, {"SKU-1": {"2025-04": 1}}))
    set_active_version(forecast, "fv-2")

    from_version, to_version = resolve_comparison_versions(forecast)
    assert (from_version.id, to_version.id) == ("fv-1", "fv-2")

    from_version, to_version = resolve_comparison_versions(forecast, "fv-3", "fv-1")
    assert (from_version.id, to_version.id) == ("fv-3", "fv-1")

    from_version, to_version = resolve_comparison_versions(forecast, "fv-missing")
    assert from_version is None
    assert to_version.id == "fv-2"

    set_active_version(forecast, "fv-1")
    from_version, to_version = resolve_comparison_versions(forecast)
    assert from_version is None
    assert to_version.id == "fv-1"
