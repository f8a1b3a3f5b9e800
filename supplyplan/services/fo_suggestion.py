from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Mapping

from supplyplan.core.months import (
    days_in_month,
    end_of_month,
    month_key,
    next_month_start,
    parse_iso_date,
)
from supplyplan.core.numbers import parse_de_number
from supplyplan.schemas.fo_suggestion import (
    CoverageDemandSegment,
    FoSuggestion,
    FoSuggestionRationale,
    MinDohEtaResult,
    SuggestionConfidence,
    SuggestionStatus,
)


DEFAULT_SAFETY_STOCK_DAYS = 60
DEFAULT_LEAD_TIME_DAYS = 0
DEFAULT_MOQ_UNITS = 0
DEFAULT_OPERATIONAL_COVERAGE_DAYS = 120
DEFAULT_MAX_HORIZON_DAYS = 365

# Raw quantities within this distance of an integer are treated as that integer
# before rounding up, so 40.0000000001 does not become 41.
_ROUNDING_TOLERANCE_DIGITS = 6

PlanMap = Mapping[str, Mapping[str, object]]


@dataclass(frozen=True)
class SkuPolicy:
    safety_stock_days_total_de: float
    minimum_stock_days_total_de: float | None
    lead_time_days_total: float
    moq_units: float
    operational_coverage_days_default: float


@dataclass
class _RateInfo:
    daily_rate: float
    days: int
    missing_forecast: bool
    used_fallback: bool
    forecast_month_units: float | None


@dataclass
class _InventoryInfo:
    inventory_units: float | None
    missing_snapshot: bool
    missing_forecast: bool


@dataclass
class DemandIntegration:
    demand_units: float
    missing_forecast: bool
    fallback_daily_rate: float | None
    breakdown: list[CoverageDemandSegment] = field(default_factory=list)


def _first_not_none(*values):
    for value in values:
        if value is not None:
            return value
    return None


def resolve_sku_policy(
    sku: str,
    overrides: Mapping[str, Mapping] | None = None,
    defaults: Mapping | None = None,
) -> SkuPolicy:
    """Overlay the per-SKU override onto the global defaults."""

    override = (overrides or {}).get(sku) or {}
    defaults = defaults or {}
    return SkuPolicy(
        safety_stock_days_total_de=_first_not_none(
            override.get("safety_stock_days_total_de"),
            defaults.get("safety_stock_days_total_de"),
            DEFAULT_SAFETY_STOCK_DAYS,
        ),
        minimum_stock_days_total_de=_first_not_none(
            override.get("minimum_stock_days_total_de"),
            defaults.get("minimum_stock_days_total_de"),
        ),
        lead_time_days_total=_first_not_none(
            override.get("lead_time_days_total"),
            defaults.get("lead_time_days_total"),
            DEFAULT_LEAD_TIME_DAYS,
        ),
        moq_units=_first_not_none(
            override.get("moq_units"),
            defaults.get("moq_units"),
            DEFAULT_MOQ_UNITS,
        ),
        operational_coverage_days_default=_first_not_none(
            override.get("operational_coverage_days_override"),
            defaults.get("operational_coverage_days_default"),
            DEFAULT_OPERATIONAL_COVERAGE_DAYS,
        ),
    )


def _month_value(data: PlanMap | None, sku: str, month: str) -> float | None:
    raw = ((data or {}).get(sku) or {}).get(month)
    return parse_de_number(raw)


def _daily_rate_for_month(
    plans: PlanMap | None,
    sku: str,
    month: str,
    fallback_daily_rate: float | None,
    warnings: list[str],
) -> _RateInfo:
    planned = _month_value(plans, sku, month)
    days = days_in_month(month)

    if planned is None:
        if fallback_daily_rate is not None:
            warnings.append(f"Forecast missing for {month}; using last available daily rate.")
            return _RateInfo(fallback_daily_rate, days, True, True, None)
        warnings.append(f"Forecast missing for {month}; daily rate assumed 0.")
        return _RateInfo(0.0, days, True, False, None)

    if planned == 0:
        warnings.append(f"Forecast for {month} is zero; demand treated as 0.")

    return _RateInfo(planned / days, days, False, False, planned)


def _daily_rate_for_date(
    plans: PlanMap | None,
    sku: str,
    day: date,
    fallback_daily_rate: float | None,
    warnings: list[str],
) -> float:
    return _daily_rate_for_month(plans, sku, month_key(day), fallback_daily_rate, warnings).daily_rate


def _estimate_inventory_on_date(
    snapshots: PlanMap | None,
    plans: PlanMap | None,
    sku: str,
    day: date,
    fallback_daily_rate: float | None,
    warnings: list[str],
) -> _InventoryInfo:
    """Linear intra-month interpolation from the month's closing stock.

    Beginning-of-month stock is reconstructed as closing + planned sales and
    drawn down evenly per calendar day. No intra-month inbound is modelled.
    """

    month = month_key(day)
    closing = _month_value(snapshots, sku, month)
    if closing is None:
        warnings.append("Latest closing stock snapshot missing.")
        return _InventoryInfo(None, True, False)

    days = days_in_month(month)
    planned = _month_value(plans, sku, month)
    missing_forecast = False
    if planned is None:
        missing_forecast = True
        if fallback_daily_rate is not None:
            planned = fallback_daily_rate * days
            warnings.append(f"Forecast missing for {month}; inventory estimated using fallback rate.")
        else:
            planned = 0.0
            warnings.append(f"Forecast missing for {month}; inventory estimated without sales drawdown.")

    daily_rate = planned / days
    bom_stock = closing + planned
    day_index = day.day - 1
    return _InventoryInfo(bom_stock - day_index * daily_rate, False, missing_forecast)


def integrate_demand(
    plans: PlanMap | None,
    sku: str,
    start: date,
    end: date,
    warnings: list[str],
) -> DemandIntegration:
    """Sum daily-rate x overlap-days for every month touched by ``[start, end)``."""

    cursor = start
    total = 0.0
    fallback_daily_rate: float | None = None
    missing_forecast = False
    breakdown: list[CoverageDemandSegment] = []

    while cursor < end:
        month = month_key(cursor)
        segment_end = min(next_month_start(cursor), end)
        segment_days = (segment_end - cursor).days
        rate_info = _daily_rate_for_month(plans, sku, month, fallback_daily_rate, warnings)
        demand_in_window = rate_info.daily_rate * segment_days
        total += demand_in_window
        breakdown.append(
            CoverageDemandSegment(
                month=month,
                days_covered=segment_days,
                forecast_month_units=rate_info.forecast_month_units,
                demand_units_in_window=demand_in_window,
                used_fallback=rate_info.used_fallback,
            )
        )
        if rate_info.missing_forecast:
            missing_forecast = True
        else:
            fallback_daily_rate = rate_info.daily_rate
        if segment_days >= rate_info.days:
            fallback_daily_rate = rate_info.daily_rate
        cursor = segment_end

    return DemandIntegration(total, missing_forecast, fallback_daily_rate, breakdown)


def compute_doh(inventory_units: float, daily_rate: float) -> float | None:
    """Days on hand; ``inf`` for zero demand, ``None`` for negative/non-finite rates."""

    if daily_rate == 0:
        return math.inf
    if not math.isfinite(daily_rate) or daily_rate < 0:
        return None
    return inventory_units / daily_rate


def _round_up_units(value: float) -> int:
    if not math.isfinite(value) or value <= 0:
        return 0
    return int(math.ceil(round(value, _ROUNDING_TOLERANCE_DIGITS)))


def _whole_days(value: float) -> int:
    """Partial days count as a full day, negative spans as none."""
    return _round_up_units(float(value or 0))


def compute_fo_suggestion(
    sku: str,
    today: date | str | None = None,
    operational_coverage_days: float | None = None,
    eta_date: date | str | None = None,
    policy_overrides: Mapping[str, Mapping] | None = None,
    policy_defaults: Mapping | None = None,
    planned_sales_by_sku: PlanMap | None = None,
    closing_stock_by_sku: PlanMap | None = None,
) -> FoSuggestion:
    """Suggest how many units of ``sku`` to have arrive at the ETA.

    Demand over ``[eta, eta + coverage)`` comes from the monthly plan, stock at
    the ETA from the closing-stock snapshot of the ETA month. Missing data never
    raises: it downgrades ``confidence``/``status`` and adds warnings. Malformed
    dates raise ``InvalidDateError``.
    """

    warnings: list[str] = []
    policy = resolve_sku_policy(sku, policy_overrides, policy_defaults)
    today_date = parse_iso_date(today if today is not None else date.today())
    if eta_date:
        eta = parse_iso_date(eta_date)
    else:
        eta = today_date + timedelta(days=_whole_days(policy.lead_time_days_total))
    coverage_days = (
        operational_coverage_days
        if operational_coverage_days is not None
        else policy.operational_coverage_days_default
    )

    horizon_end = eta + timedelta(days=_whole_days(coverage_days))
    demand_info = integrate_demand(planned_sales_by_sku, sku, eta, horizon_end, warnings)

    confidence = SuggestionConfidence.HIGH
    if demand_info.missing_forecast:
        confidence = SuggestionConfidence.MEDIUM

    fallback = demand_info.fallback_daily_rate
    inventory_info = _estimate_inventory_on_date(
        closing_stock_by_sku, planned_sales_by_sku, sku, eta, fallback, warnings
    )
    if inventory_info.missing_snapshot:
        confidence = SuggestionConfidence.LOW

    projected_inventory_at_eta = inventory_info.inventory_units or 0.0
    if projected_inventory_at_eta < 0:
        projected_inventory_at_eta = 0.0
        warnings.append("Projected inventory at ETA was negative and has been clamped to 0.")

    demand_units = demand_info.demand_units
    required_units = _round_up_units(demand_units)
    net_needed = required_units - projected_inventory_at_eta
    if inventory_info.missing_snapshot:
        net_needed = required_units
        warnings.append("Inventory snapshot missing; suggestion based on demand only.")

    raw_suggested = max(0.0, net_needed) if math.isfinite(net_needed) else 0.0
    suggested_units = _round_up_units(raw_suggested)
    moq_units = _round_up_units(float(policy.moq_units or 0))
    if 0 < suggested_units < moq_units:
        suggested_units = moq_units
        warnings.append(f"MOQ applied; raised suggestion to {moq_units} units.")

    daily_rate_today = _daily_rate_for_date(planned_sales_by_sku, sku, today_date, fallback, warnings)
    daily_rate_eta = _daily_rate_for_date(planned_sales_by_sku, sku, eta, fallback, warnings)

    inventory_today_info = _estimate_inventory_on_date(
        closing_stock_by_sku, planned_sales_by_sku, sku, today_date, fallback, warnings
    )
    inventory_today = inventory_today_info.inventory_units or 0.0
    doh_today = compute_doh(inventory_today, daily_rate_today)
    doh_eta = compute_doh(projected_inventory_at_eta, daily_rate_eta)

    month_end = end_of_month(today_date)
    daily_rate_eom = _daily_rate_for_date(planned_sales_by_sku, sku, month_end, fallback, warnings)
    inventory_eom_info = _estimate_inventory_on_date(
        closing_stock_by_sku, planned_sales_by_sku, sku, month_end, fallback, warnings
    )
    inventory_eom = inventory_eom_info.inventory_units or 0.0
    doh_eom = compute_doh(inventory_eom, daily_rate_eom)
    order_needed_flag = (
        doh_eom is not None
        and doh_eom < policy.safety_stock_days_total_de + policy.lead_time_days_total
    )

    if policy.minimum_stock_days_total_de is not None:
        if doh_today is not None and doh_today < policy.minimum_stock_days_total_de:
            warnings.append("Days-on-hand today is below minimum stock days.")
        if doh_eta is not None and doh_eta < policy.minimum_stock_days_total_de:
            warnings.append("Days-on-hand at ETA is below minimum stock days.")

    if inventory_info.missing_snapshot:
        status = SuggestionStatus.INSUFFICIENT_INVENTORY_SNAPSHOT
    elif demand_info.missing_forecast:
        status = SuggestionStatus.INSUFFICIENT_FORECAST
    else:
        status = SuggestionStatus.OK

    return FoSuggestion(
        sku=sku,
        eta_date=eta,
        suggested_units=suggested_units,
        confidence=confidence,
        rationale=FoSuggestionRationale(
            daily_rate_today=daily_rate_today,
            daily_rate_eta=daily_rate_eta,
            safety_stock_days=policy.safety_stock_days_total_de,
            lead_time_days=policy.lead_time_days_total,
            operational_coverage_days=coverage_days,
            target_coverage_total_days=policy.safety_stock_days_total_de + coverage_days,
            projected_inventory_at_eta=projected_inventory_at_eta,
            demand_units=demand_units,
            doh_today=doh_today,
            doh_eta=doh_eta,
            doh_end_of_month=doh_eom,
            required_units=required_units,
            net_needed=net_needed,
            coverage_demand_breakdown=demand_info.breakdown,
        ),
        warnings=warnings,
        order_needed_flag=order_needed_flag,
        status=status,
    )


def find_eta_for_min_doh(
    sku: str,
    minimum_doh_days: float | None,
    today: date | str | None = None,
    planned_sales_by_sku: PlanMap | None = None,
    closing_stock_by_sku: PlanMap | None = None,
    max_horizon_days: int = DEFAULT_MAX_HORIZON_DAYS,
) -> MinDohEtaResult:
    """Return the first day on which DOH drops below ``minimum_doh_days``."""

    warnings: list[str] = []
    if minimum_doh_days is None or not math.isfinite(minimum_doh_days):
        warnings.append("Minimum DOH threshold missing.")
        return MinDohEtaResult(eta_date=None, warnings=warnings, status="missing_minimum_doh")

    today_date = parse_iso_date(today if today is not None else date.today())
    horizon_end = today_date + timedelta(days=max_horizon_days)
    demand_info = integrate_demand(planned_sales_by_sku, sku, today_date, horizon_end, warnings)
    if demand_info.missing_forecast:
        warnings.append("Forecast is incomplete; ETA is estimated from partial data.")
    fallback = demand_info.fallback_daily_rate

    for offset in range(max_horizon_days + 1):
        current = today_date + timedelta(days=offset)
        inventory_info = _estimate_inventory_on_date(
            closing_stock_by_sku, planned_sales_by_sku, sku, current, fallback, warnings
        )
        if inventory_info.missing_snapshot:
            return MinDohEtaResult(
                eta_date=None, warnings=warnings, status="insufficient_inventory_snapshot"
            )
        inventory = max(0.0, inventory_info.inventory_units or 0.0)
        daily_rate = _daily_rate_for_date(planned_sales_by_sku, sku, current, fallback, warnings)
        doh = compute_doh(inventory, daily_rate)
        if doh is not None and math.isfinite(doh) and doh < minimum_doh_days:
            return MinDohEtaResult(eta_date=current, warnings=warnings, status="ok")

    warnings.append("DOH threshold not reached within horizon.")
    return MinDohEtaResult(eta_date=None, warnings=warnings, status="not_reached")
