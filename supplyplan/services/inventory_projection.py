"""Month-level inventory projection used for safety-risk checks.

Starting from the latest inventory snapshot, each month's end stock is
``previous + inbound - forecast``. Once a month has no forecast, every later
month is unknown (``end_available is None``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Iterable, Mapping

from supplyplan.core.months import (
    days_in_month,
    month_key,
    normalize_month_key,
    parse_iso_date,
    to_iso_date,
)
from supplyplan.core.numbers import parse_de_number


SAFETY_OK = ""
SAFETY_LOW = "safety-low"
SAFETY_NEGATIVE = "safety-negative"

DEFAULT_SAFETY_DAYS = 60.0

_PO_ETA_FIELDS = ("eta_manual", "eta_date", "eta")
_FO_ARRIVAL_FIELDS = ("target_delivery_date", "delivery_date", "eta_date")


@dataclass
class ProjectionRow:
    forecast_units: float | None
    has_forecast: bool
    inbound_units: float
    end_available: float | None
    safety_days: float
    safety_units: int | None
    doh: int | None
    passes_doh: bool
    passes_units: bool
    is_covered: bool
    forecast_missing: bool


@dataclass
class InventoryProjection:
    months: list[str]
    per_sku_month: dict[str, dict[str, ProjectionRow]]
    inbound_units: dict[str, dict[str, float]] = field(default_factory=dict)
    snapshot: Mapping[str, Any] | None = None
    projection_mode: str = "units"
    active_skus: set[str] = field(default_factory=set)


def is_product_active(product: Mapping[str, Any] | None) -> bool:
    if not product:
        return False
    if isinstance(product.get("active"), bool):
        return product["active"]
    status = str(product.get("status") or "").strip().lower()
    if not status:
        return True
    return status in ("active", "aktiv")


def get_forecast_units(state: Mapping[str, Any], sku: str, month: str) -> float | None:
    """Manual forecast overrides win over the imported baseline."""

    forecast = state.get("forecast") or {}
    manual = ((forecast.get("forecast_manual") or {}).get(sku) or {}).get(month)
    manual_units = parse_de_number(manual)
    if manual_units is not None:
        return manual_units
    imported = ((forecast.get("forecast_import") or {}).get(sku) or {}).get(month)
    if isinstance(imported, Mapping):
        return parse_de_number(imported.get("units"))
    return None


def snapshot_item_units(item: Mapping[str, Any]) -> float:
    """Closing units of a snapshot line: split channels when present, else legacy ``units``."""

    amazon = parse_de_number(item.get("amazon_units"))
    three_pl = parse_de_number(item.get("three_pl_units"))
    if amazon is not None or three_pl is not None:
        return max(0.0, amazon or 0.0) + max(0.0, three_pl or 0.0)
    legacy = parse_de_number(item.get("units"))
    return max(0.0, legacy) if legacy is not None else 0.0


def get_latest_snapshot(state: Mapping[str, Any]) -> Mapping[str, Any] | None:
    snapshots = [
        snapshot
        for snapshot in ((state.get("inventory") or {}).get("snapshots") or [])
        if isinstance(snapshot, Mapping) and normalize_month_key(snapshot.get("month"))
    ]
    if not snapshots:
        return None
    return max(snapshots, key=lambda snapshot: normalize_month_key(snapshot.get("month")))


def resolve_po_eta(po: Mapping[str, Any]) -> date | None:
    """Manual ETA fields first, then ``order_date + prod_days + transit_days``."""

    manual = next((po.get(name) for name in _PO_ETA_FIELDS if po.get(name)), None)
    manual_iso = to_iso_date(manual)
    if manual_iso:
        return parse_iso_date(manual_iso)
    computed_iso = to_iso_date(po.get("eta_computed"))
    if computed_iso:
        return parse_iso_date(computed_iso)
    order_iso = to_iso_date(po.get("order_date"))
    if not order_iso:
        return None
    prod_days = parse_de_number(po.get("prod_days")) or 0
    transit_days = parse_de_number(po.get("transit_days")) or 0
    return parse_iso_date(order_iso) + timedelta(days=max(0, int(round(prod_days + transit_days))))


def _fo_arrival(fo: Mapping[str, Any]) -> date | None:
    raw = next((fo.get(name) for name in _FO_ARRIVAL_FIELDS if fo.get(name)), None)
    iso = to_iso_date(raw)
    return parse_iso_date(iso) if iso else None


def _is_fo_countable(fo: Mapping[str, Any]) -> bool:
    return str(fo.get("status") or "").upper() not in ("CONVERTED", "CANCELLED")


def _order_lines(record: Mapping[str, Any]) -> list[tuple[str, int]]:
    items = record.get("items")
    if not isinstance(items, list) or not items:
        items = [{"sku": record.get("sku"), "units": record.get("units")}]
    lines = []
    for item in items:
        if not isinstance(item, Mapping):
            continue
        sku = str(item.get("sku") or record.get("sku") or "").strip()
        if not sku:
            continue
        raw = _first_present(item, ("units", "qty", "quantity"), record.get("units"))
        parsed = parse_de_number(raw)
        units = int(round(parsed)) if parsed is not None else 0
        if units:
            lines.append((sku, units))
    return lines


def _first_present(item: Mapping[str, Any], keys: Iterable[str], default: Any) -> Any:
    for key in keys:
        if item.get(key) is not None:
            return item[key]
    return default


def build_inbound_units_map(state: Mapping[str, Any], months: Iterable[str]) -> dict[str, dict[str, float]]:
    month_set = set(months)
    inbound: dict[str, dict[str, float]] = {}

    def add(lines: list[tuple[str, int]], month: str) -> None:
        if month not in month_set:
            return
        for sku, units in lines:
            sku_map = inbound.setdefault(sku, {})
            sku_map[month] = sku_map.get(month, 0) + units

    for po in state.get("pos") or []:
        if not isinstance(po, Mapping) or po.get("archived"):
            continue
        if str(po.get("status") or "").upper() == "CANCELLED":
            continue
        eta = resolve_po_eta(po)
        if eta is not None:
            add(_order_lines(po), month_key(eta))

    for fo in state.get("fos") or []:
        if not isinstance(fo, Mapping) or not _is_fo_countable(fo):
            continue
        arrival = _fo_arrival(fo)
        if arrival is not None:
            add(_order_lines(fo), month_key(arrival))

    return inbound


def _resolve_safety_days(product: Mapping[str, Any], state: Mapping[str, Any]) -> float:
    candidates = (
        product.get("safety_stock_doh_override"),
        (state.get("settings") or {}).get("safety_stock_doh_default"),
        ((state.get("inventory") or {}).get("settings") or {}).get("safety_days"),
    )
    for candidate in candidates:
        value = parse_de_number(candidate)
        if value is not None:
            return value
    return DEFAULT_SAFETY_DAYS


def compute_inventory_projection(
    state: Mapping[str, Any],
    months: Iterable[str],
    products: list[Mapping[str, Any]] | None = None,
    snapshot: Mapping[str, Any] | None = None,
    mode: str = "units",
) -> InventoryProjection:
    month_keys = [key for key in (normalize_month_key(month) for month in months) if key]
    product_list = products if products is not None else list(state.get("products") or [])
    resolved_snapshot = snapshot or get_latest_snapshot(state)
    projection_mode = "doh" if mode == "doh" else "units"

    start_stock: dict[str, float] = {}
    if resolved_snapshot:
        for item in resolved_snapshot.get("items") or []:
            if not isinstance(item, Mapping):
                continue
            sku = str(item.get("sku") or "").strip()
            if sku:
                start_stock[sku] = snapshot_item_units(item)

    inbound_map = build_inbound_units_map(state, month_keys)
    per_sku_month: dict[str, dict[str, ProjectionRow]] = {}
    active_skus: set[str] = set()

    for product in product_list:
        if not isinstance(product, Mapping):
            continue
        sku = str(product.get("sku") or "").strip()
        if not sku:
            continue
        if is_product_active(product):
            active_skus.add(sku)

        previous = start_stock.get(sku, 0.0)
        previous_unknown = False
        safety_days = _resolve_safety_days(product, state)
        month_rows: dict[str, ProjectionRow] = {}

        for month in month_keys:
            forecast_units = get_forecast_units(state, sku, month)
            has_forecast = forecast_units is not None
            inbound_units = inbound_map.get(sku, {}).get(month, 0)
            end_available: float | None = None
            if not previous_unknown and has_forecast:
                end_available = previous + inbound_units - forecast_units
                previous = end_available
            else:
                previous_unknown = True

            days = days_in_month(month)
            daily_demand = forecast_units / days if has_forecast and forecast_units > 0 else None
            doh = (
                max(0, int(round(end_available / daily_demand)))
                if end_available is not None and daily_demand
                else None
            )
            safety_units = int(round(forecast_units / days * safety_days)) if has_forecast else None
            passes_doh = doh is not None and doh >= safety_days
            passes_units = (
                end_available is not None and safety_units is not None and end_available >= safety_units
            )
            month_rows[month] = ProjectionRow(
                forecast_units=forecast_units,
                has_forecast=has_forecast,
                inbound_units=inbound_units,
                end_available=end_available,
                safety_days=safety_days,
                safety_units=safety_units,
                doh=doh,
                passes_doh=passes_doh,
                passes_units=passes_units,
                is_covered=passes_doh if projection_mode == "doh" else passes_units,
                forecast_missing=not has_forecast or previous_unknown,
            )
        per_sku_month[sku] = month_rows

    return InventoryProjection(
        months=month_keys,
        per_sku_month=per_sku_month,
        inbound_units=inbound_map,
        snapshot=resolved_snapshot,
        projection_mode=projection_mode,
        active_skus=active_skus,
    )


def get_projection_safety_class(row: ProjectionRow | None, mode: str = "units") -> str:
    if row is None or row.end_available is None:
        return SAFETY_OK
    if row.end_available <= 0:
        return SAFETY_NEGATIVE
    if mode == "doh":
        if row.doh is not None and row.doh < row.safety_days:
            return SAFETY_LOW
        return SAFETY_OK
    if row.safety_units is not None and row.end_available < row.safety_units:
        return SAFETY_LOW
    return SAFETY_OK
