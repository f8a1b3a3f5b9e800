"""Month-level FO recommendation: when must stock arrive, and how much should it be.

The projection starts at the month after the latest inventory snapshot. The
first month whose days-on-hand drops below the safety days becomes the required
arrival month; the recommended quantity covers the configured coverage window
from that arrival date.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Mapping

from supplyplan.core.months import (
    add_months,
    days_in_month,
    month_key,
    month_start,
    normalize_month_key,
    parse_iso_date,
    to_iso_date,
)
from supplyplan.core.numbers import parse_de_number
from supplyplan.services.fo_suggestion import integrate_demand
from supplyplan.services.inventory_projection import snapshot_item_units


FO_STATUS_VALUES = ("DRAFT", "ACTIVE", "CONVERTED", "ARCHIVED")
FO_LEGACY_STATUS_MAP = {"PLANNED": "ACTIVE", "CANCELLED": "ARCHIVED"}

DEFAULT_SAFETY_DAYS = 60.0
DEFAULT_COVERAGE_DAYS = 90.0
DEFAULT_HORIZON_MONTHS = 12

STATUS_OK = "ok"
STATUS_NO_FO_NEEDED = "no_fo_needed"
STATUS_NO_SNAPSHOT = "no_snapshot"

_INBOUND_DATE_FIELDS = ("arrival_date_de", "arrival_date", "eta_date", "eta_manual", "eta")


def normalize_fo_status(value: object, fallback: str = "DRAFT") -> str:
    raw = str(value or "").strip().upper()
    if not raw:
        return fallback
    if raw in FO_STATUS_VALUES:
        return raw
    return FO_LEGACY_STATUS_MAP.get(raw, fallback)


def is_fo_planning_status(value: object) -> bool:
    return normalize_fo_status(value) in ("DRAFT", "ACTIVE")


@dataclass
class SkuProjectionMonth:
    month: str
    start_stock: float
    inbound: float
    demand: float
    end_stock: float
    avg_daily_demand: float
    doh: float


@dataclass
class SkuProjection:
    sku: str
    baseline_month: str
    months: list[SkuProjectionMonth] = field(default_factory=list)
    missing_forecast_months: list[str] = field(default_factory=list)


@dataclass
class FoRecommendationContext:
    baseline_month: str | None
    planned_sales_by_sku: dict[str, dict[str, float]]
    closing_stock_by_sku: dict[str, dict[str, float]]
    inbound_by_sku: dict[str, dict[str, float]]
    inbound_without_eta_count: int = 0


@dataclass
class FoRecommendation:
    sku: str
    status: str
    baseline_month: str | None = None
    critical_month: str | None = None
    required_arrival_date: str | None = None
    order_date: str | None = None
    order_date_adjusted: str | None = None
    overlap_days: int = 0
    coverage_days: float | None = None
    coverage_demand_units: float = 0.0
    recommended_units_raw: int = 0
    recommended_units: int = 0
    moq_units: int = 0
    moq_applied: bool = False
    stock_at_arrival: float = 0.0
    avg_daily_demand: float = 0.0
    issues: list[dict] = field(default_factory=list)


def _as_positive_number(value: object) -> float | None:
    parsed = parse_de_number(value)
    return max(0.0, parsed) if parsed is not None else None


def _first_positive(*values: object, default: float) -> float:
    for value in values:
        parsed = _as_positive_number(value)
        if parsed is not None:
            return parsed
    return default


def get_latest_closing_snapshot_month(snapshots: list[Mapping[str, Any]] | None) -> str | None:
    months = [
        normalize_month_key(snapshot.get("month"))
        for snapshot in snapshots or []
        if isinstance(snapshot, Mapping)
    ]
    months = [month for month in months if month]
    return max(months) if months else None


def build_planned_sales_by_sku(state: Mapping[str, Any]) -> dict[str, dict[str, float]]:
    """Merge manual forecast overrides over imported units, per SKU and month."""

    forecast = state.get("forecast") or {}
    manual = forecast.get("forecast_manual") or {}
    imported = forecast.get("forecast_import") or {}
    result: dict[str, dict[str, float]] = {}

    for sku_raw in list(imported) + list(manual):
        sku = str(sku_raw or "").strip()
        if not sku or sku in result:
            continue
        manual_months = manual.get(sku) or {}
        import_months = imported.get(sku) or {}
        months: dict[str, float] = {}
        for month in {*import_months, *manual_months}:
            manual_value = parse_de_number(manual_months.get(month))
            if manual_value is not None:
                months[month] = manual_value
                continue
            entry = import_months.get(month)
            import_value = parse_de_number(entry.get("units")) if isinstance(entry, Mapping) else None
            if import_value is not None:
                months[month] = import_value
        result[sku] = months
    return result


def build_closing_stock_by_sku(state: Mapping[str, Any]) -> dict[str, dict[str, float]]:
    result: dict[str, dict[str, float]] = {}
    for snapshot in (state.get("inventory") or {}).get("snapshots") or []:
        if not isinstance(snapshot, Mapping):
            continue
        month = normalize_month_key(snapshot.get("month"))
        if not month:
            continue
        for item in snapshot.get("items") or []:
            if not isinstance(item, Mapping):
                continue
            sku = str(item.get("sku") or "").strip()
            if sku:
                result.setdefault(sku, {})[month] = snapshot_item_units(item)
    return result


def _resolve_inbound_arrival(record: Mapping[str, Any]) -> date | None:
    raw = next((record.get(name) for name in _INBOUND_DATE_FIELDS if record.get(name)), None)
    if raw:
        iso = to_iso_date(raw)
        return parse_iso_date(iso) if iso else None
    order_iso = to_iso_date(record.get("order_date"))
    if not order_iso:
        return None
    prod_days = _first_positive(record.get("prod_days"), record.get("production_lead_time_days"), default=0)
    transit_days = _first_positive(record.get("transit_days"), record.get("logistics_lead_time_days"), default=0)
    return parse_iso_date(order_iso) + timedelta(days=int(round(prod_days + transit_days)))


def _inbound_items(record: Mapping[str, Any]) -> list[tuple[str, float]]:
    items = record.get("items")
    if isinstance(items, list) and items:
        return [
            (str(item.get("sku") or "").strip(), _as_positive_number(item.get("units")) or 0.0)
            for item in items
            if isinstance(item, Mapping)
        ]
    sku = str(record.get("sku") or "").strip()
    return [(sku, _as_positive_number(record.get("units")) or 0.0)] if sku else []


def build_inbound_by_sku(state: Mapping[str, Any]) -> tuple[dict[str, dict[str, float]], int]:
    """Inbound units per SKU and arrival month from POs and planning FOs.

    Returns the map and the number of orders skipped for lack of an arrival date.
    """

    inbound: dict[str, dict[str, float]] = {}
    without_eta = 0
    records = [
        po for po in state.get("pos") or [] if isinstance(po, Mapping) and not po.get("archived")
    ] + [
        fo for fo in state.get("fos") or [] if isinstance(fo, Mapping) and is_fo_planning_status(fo.get("status"))
    ]
    for record in records:
        arrival = _resolve_inbound_arrival(record)
        if arrival is None:
            without_eta += 1
            continue
        month = month_key(arrival)
        for sku, units in _inbound_items(record):
            if not sku or units <= 0:
                continue
            sku_map = inbound.setdefault(sku, {})
            sku_map[month] = sku_map.get(month, 0) + units
    return inbound, without_eta


def build_fo_recommendation_context(state: Mapping[str, Any]) -> FoRecommendationContext:
    inbound, without_eta = build_inbound_by_sku(state)
    return FoRecommendationContext(
        baseline_month=get_latest_closing_snapshot_month((state.get("inventory") or {}).get("snapshots")),
        planned_sales_by_sku=build_planned_sales_by_sku(state),
        closing_stock_by_sku=build_closing_stock_by_sku(state),
        inbound_by_sku=inbound,
        inbound_without_eta_count=without_eta,
    )


def resolve_product_by_sku(products: list[Mapping[str, Any]] | None, sku: str) -> Mapping[str, Any] | None:
    key = str(sku or "").strip().lower()
    if not key:
        return None
    for product in products or []:
        if isinstance(product, Mapping) and str(product.get("sku") or "").strip().lower() == key:
            return product
    return None


def _number(value: object) -> float:
    return parse_de_number(value) or 0.0


def resolve_fo_lead_time_days(
    fo: Mapping[str, Any] | None,
    product: Mapping[str, Any] | None,
    settings: Mapping[str, Any] | None,
) -> int:
    """Order fields first, then product defaults, then global settings; 0 if none is positive."""

    fo = fo or {}
    product = product or {}
    settings = settings or {}
    buffer_days = _number(settings.get("default_buffer_days"))
    candidates = (
        _number(fo.get("production_lead_time_days"))
        + _number(fo.get("logistics_lead_time_days"))
        + _number(fo.get("buffer_days")),
        _number(product.get("production_lead_time_days_default"))
        + _number(product.get("transit_days"))
        + buffer_days,
        _number(settings.get("default_production_lead_time_days"))
        + _number((settings.get("transport_lead_times_days") or {}).get("sea"))
        + buffer_days,
    )
    for candidate in candidates:
        if candidate > 0:
            return int(round(candidate))
    return 0


def build_sku_policy_inputs(state: Mapping[str, Any]) -> tuple[dict[str, dict], dict]:
    """Translate workspace settings and product overrides into calculator policy inputs.

    Returns ``(policy_overrides, policy_defaults)`` in the shape expected by
    ``fo_suggestion.resolve_sku_policy``. Unset values are left out so the
    calculator's own defaults apply.
    """

    settings = state.get("settings") or {}
    defaults = {
        "safety_stock_days_total_de": parse_de_number(settings.get("safety_stock_doh_default")),
        "minimum_stock_days_total_de": parse_de_number(settings.get("minimum_stock_doh_default")),
        "lead_time_days_total": resolve_fo_lead_time_days(None, None, settings) or None,
        "moq_units": parse_de_number(settings.get("moq_default_units")),
        "operational_coverage_days_default": parse_de_number(settings.get("fo_coverage_doh_default")),
    }

    overrides: dict[str, dict] = {}
    for product in state.get("products") or []:
        if not isinstance(product, Mapping):
            continue
        sku = str(product.get("sku") or "").strip()
        if not sku:
            continue
        override = {
            "safety_stock_days_total_de": parse_de_number(product.get("safety_stock_doh_override")),
            "minimum_stock_days_total_de": parse_de_number(product.get("minimum_stock_doh_override")),
            "lead_time_days_total": resolve_fo_lead_time_days(None, product, settings) or None,
            "moq_units": parse_de_number(product.get("moq_override_units") or product.get("moq_units")),
            "operational_coverage_days_override": parse_de_number(product.get("fo_coverage_doh_override")),
        }
        override = {key: value for key, value in override.items() if value is not None}
        if override:
            overrides[sku] = override
    return overrides, {key: value for key, value in defaults.items() if value is not None}


def build_sku_projection(
    sku: str,
    baseline_month: str,
    stock0: float = 0,
    forecast_by_month: Mapping[str, float] | None = None,
    inbound_by_month: Mapping[str, float] | None = None,
    horizon_months: int = DEFAULT_HORIZON_MONTHS,
) -> SkuProjection:
    projection = SkuProjection(sku=sku, baseline_month=baseline_month)
    forecast_by_month = forecast_by_month or {}
    inbound_by_month = inbound_by_month or {}
    start_stock = float(stock0 or 0)

    for offset in range(1, horizon_months + 1):
        month = add_months(baseline_month, offset)
        demand_raw = forecast_by_month.get(month)
        if demand_raw is None:
            projection.missing_forecast_months.append(month)
        demand = parse_de_number(demand_raw) or 0.0
        inbound = float(inbound_by_month.get(month) or 0)
        avg_daily_demand = demand / days_in_month(month) if demand else 0.0
        end_stock = start_stock + inbound - demand
        doh = math.inf if avg_daily_demand == 0 else max(0.0, end_stock / avg_daily_demand)
        projection.months.append(
            SkuProjectionMonth(
                month=month,
                start_stock=start_stock,
                inbound=inbound,
                demand=demand,
                end_stock=end_stock,
                avg_daily_demand=avg_daily_demand,
                doh=doh,
            )
        )
        start_stock = end_stock
    return projection


def count_overlap_days(
    window_start: date,
    window_end: date,
    blackout_start: object,
    blackout_end: object,
) -> int:
    """Days of ``[window_start, window_end)`` that fall inside the inclusive blackout range."""

    start_iso = to_iso_date(blackout_start)
    end_iso = to_iso_date(blackout_end)
    if not start_iso or not end_iso:
        return 0
    overlap_start = max(window_start, parse_iso_date(start_iso))
    overlap_end = min(window_end, parse_iso_date(end_iso) + timedelta(days=1))
    return max(0, (overlap_end - overlap_start).days)


def _issues(projection: SkuProjection, inbound_without_eta_count: int) -> list[dict]:
    issues = []
    if projection.missing_forecast_months:
        issues.append({"code": "MISSING_FORECAST", "count": len(projection.missing_forecast_months)})
    if inbound_without_eta_count > 0:
        issues.append({"code": "INBOUND_WITHOUT_ETA", "count": inbound_without_eta_count})
    return issues


def compute_fo_recommendation_for_sku(
    context: FoRecommendationContext,
    sku: str,
    lead_time_days: float,
    product: Mapping[str, Any] | None,
    settings: Mapping[str, Any] | None,
    horizon_months: int = DEFAULT_HORIZON_MONTHS,
    required_arrival_month: str | None = None,
) -> FoRecommendation | None:
    sku = str(sku or "").strip()
    if not sku:
        return None
    if not context.baseline_month:
        return FoRecommendation(sku=sku, status=STATUS_NO_SNAPSHOT)

    product = product or {}
    settings = settings or {}
    baseline = context.baseline_month
    safety_days = _first_positive(
        product.get("safety_stock_doh_override"),
        settings.get("safety_stock_doh_default"),
        default=DEFAULT_SAFETY_DAYS,
    )
    coverage_days = _first_positive(
        product.get("fo_coverage_doh_override"),
        settings.get("fo_coverage_doh_default"),
        default=DEFAULT_COVERAGE_DAYS,
    )
    moq_units = _first_positive(
        product.get("moq_override_units"),
        product.get("moq_units"),
        settings.get("moq_default_units"),
        default=0.0,
    )

    projection = build_sku_projection(
        sku,
        baseline,
        stock0=(context.closing_stock_by_sku.get(sku) or {}).get(baseline, 0),
        forecast_by_month=context.planned_sales_by_sku.get(sku) or {},
        inbound_by_month=context.inbound_by_sku.get(sku) or {},
        horizon_months=horizon_months,
    )
    issues = _issues(projection, context.inbound_without_eta_count)

    first_risk = next(
        (entry for entry in projection.months if math.isfinite(entry.doh) and entry.doh < safety_days),
        None,
    )
    if first_risk is None:
        return FoRecommendation(sku=sku, status=STATUS_NO_FO_NEEDED, baseline_month=baseline, issues=issues)

    by_month = {entry.month: entry for entry in projection.months}
    if required_arrival_month in by_month and required_arrival_month > baseline:
        selected = by_month[required_arrival_month]
    else:
        selected = first_risk

    arrival = month_start(selected.month)
    order_date = arrival - timedelta(days=int(round(lead_time_days or 0)))
    cny = settings.get("cny") or {}
    overlap_days = count_overlap_days(order_date, arrival, cny.get("start"), cny.get("end"))
    order_date_adjusted = order_date - timedelta(days=overlap_days)

    target_coverage_days = max(1, int(round(coverage_days)))
    demand = integrate_demand(
        context.planned_sales_by_sku,
        sku,
        arrival,
        arrival + timedelta(days=target_coverage_days),
        [],
    )
    recommended_raw = max(0, math.ceil(round(demand.demand_units, 6)))
    moq_floor = max(0, math.ceil(moq_units))
    recommended = recommended_raw
    moq_applied = False
    if 0 < recommended < moq_floor:
        recommended = moq_floor
        moq_applied = True

    return FoRecommendation(
        sku=sku,
        status=STATUS_OK,
        baseline_month=baseline,
        critical_month=first_risk.month,
        required_arrival_date=arrival.isoformat(),
        order_date=order_date.isoformat(),
        order_date_adjusted=order_date_adjusted.isoformat(),
        overlap_days=overlap_days,
        coverage_days=coverage_days,
        coverage_demand_units=demand.demand_units,
        recommended_units_raw=recommended_raw,
        recommended_units=recommended,
        moq_units=moq_floor,
        moq_applied=moq_applied,
        stock_at_arrival=selected.start_stock,
        avg_daily_demand=selected.avg_daily_demand,
        issues=issues,
    )
