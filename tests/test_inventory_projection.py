from __future__ import annotations

from datetime import date

from supplyplan.services.inventory_projection import (
    SAFETY_LOW,
    SAFETY_NEGATIVE,
    SAFETY_OK,
    ProjectionRow,
    compute_inventory_projection,
    get_forecast_units,
    get_projection_safety_class,
    is_product_active,
    resolve_po_eta,
)
from tests.test_utils import make_forecast_import, make_product, make_state


def _state() -> dict:
    state = make_state(
        products=[make_product("SKU-1"), make_product("SKU-2", active=False)],
        forecast_import=make_forecast_import({"SKU-1": {"2025-04": 30, "2025-05": 30, "2025-07": 30}}),
        snapshots=[
            {"month": "2025-02", "items": [{"sku": "SKU-1", "units": 999}]},
            {"month": "2025-03", "items": [{"sku": "SKU-1", "amazon_units": 40, "three_pl_units": 60}]},
        ],
        pos=[
            {"id": "po-1", "eta_manual": "2025-05-10", "items": [{"sku": "SKU-1", "units": 50}]},
            {"id": "po-2", "eta_manual": "2025-04-10", "sku": "SKU-1", "units": 500, "status": "CANCELLED"},
        ],
        fos=[
            {"id": "fo-1", "sku": "SKU-1", "units": 20, "status": "DRAFT", "target_delivery_date": "2025-07-01"},
            {"id": "fo-2", "sku": "SKU-1", "units": 20, "status": "CONVERTED", "target_delivery_date": "2025-04-01"},
        ],
        settings={"safety_stock_doh_default": 30},
    )
    return state


def test_projection_rolls_stock_forward_from_latest_snapshot():
    projection = compute_inventory_projection(_state(), ["2025-04", "2025-05", "2025-06", "2025-07"])

    rows = projection.per_sku_month["SKU-1"]
    assert projection.snapshot["month"] == "2025-03"
    assert projection.active_skus == {"SKU-1"}
    assert projection.inbound_units["SKU-1"] == {"2025-05": 50, "2025-07": 20}

    april = rows["2025-04"]
    assert april.end_available == 70
    assert april.safety_units == 30
    assert april.doh == 70
    assert april.is_covered is True

    assert rows["2025-05"].end_available == 90
    assert rows["2025-06"].end_available is None
    assert rows["2025-06"].forecast_missing is True
    # Stock stays unknown after the first gap even when forecast resumes.
    assert rows["2025-07"].has_forecast is True
    assert rows["2025-07"].end_available is None


def test_manual_forecast_overrides_import():
    state = _state()
    state["forecast"]["forecast_manual"] = {"SKU-1": {"2025-04": "45"}}

    assert get_forecast_units(state, "SKU-1", "2025-04") == 45
    assert get_forecast_units(state, "SKU-1", "2025-05") == 30
    assert get_forecast_units(state, "SKU-9", "2025-05") is None


def test_safety_classes():
    def row(end_available, safety_units=30, doh=None):
        return ProjectionRow(
            forecast_units=30,
            has_forecast=True,
            inbound_units=0,
            end_available=end_available,
            safety_days=30,
            safety_units=safety_units,
            doh=doh,
            passes_doh=False,
            passes_units=False,
            is_covered=False,
            forecast_missing=False,
        )

    assert get_projection_safety_class(row(-5)) == SAFETY_NEGATIVE
    assert get_projection_safety_class(row(0)) == SAFETY_NEGATIVE
    assert get_projection_safety_class(row(10)) == SAFETY_LOW
    assert get_projection_safety_class(row(30)) == SAFETY_OK
    assert get_projection_safety_class(row(None)) == SAFETY_OK
    assert get_projection_safety_class(None) == SAFETY_OK
    assert get_projection_safety_class(row(100, doh=20), mode="doh") == SAFETY_LOW
    assert get_projection_safety_class(row(100, doh=45), mode="doh") == SAFETY_OK


def test_po_eta_from_lead_times():
    assert resolve_po_eta({"order_date": "2025-01-01", "prod_days": 30, "transit_days": 10}) == date(2025, 2, 10)
    assert resolve_po_eta({"eta_manual": "2025-03-03", "order_date": "2025-01-01"}) == date(2025, 3, 3)
    assert resolve_po_eta({}) is None


def test_product_activity():
    assert is_product_active({"sku": "x"}) is True
    assert is_product_active({"status": "Aktiv"}) is True
    assert is_product_active({"status": "inactive"}) is False
    assert is_product_active({"active": False, "status": "active"}) is False
    assert is_product_active(None) is False
