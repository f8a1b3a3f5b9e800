"""Forecast impact analysis between two forecast versions.

Compares planned units over rolling 1/3/6-month windows, flags SKUs whose
change crosses their ABC threshold or whose projected stock falls below
safety, and lists open forecast orders (FOs) whose quantity or timing no
longer matches the recommendation derived from the newer forecast.
"""

from __future__ import annotations

import copy
import functools
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Union

from supplyplan.core.months import (
    add_months,
    current_month_key,
    month_range,
    normalize_month_key,
    to_iso_date,
)
from supplyplan.core.numbers import parse_de_number
from supplyplan.schemas.forecast_impact import (
    AbcClass,
    FoConflictType,
    FoImpactConflictRow,
    ForecastImpactResult,
    ForecastImpactSummary,
    ForecastSkuImpactRow,
    ImpactWindows,
)
from supplyplan.schemas.forecast_version import ForecastVersion
from supplyplan.services import abc_classification, fo_recommendation, inventory_projection
from supplyplan.services.forecast_versioning import (
    get_active_forecast_version,
    list_forecast_versions,
    normalize_forecast_import_map,
)
from supplyplan.services.impact_policy import DEFAULT_IMPACT_POLICY, ImpactPolicy, percent_delta


_FO_ARRIVAL_FIELDS = (
    "target_delivery_date",
    "delivery_date",
    "eta_date",
    "eta_manual",
    "eta",
    "arrival_date",
    "arrival_date_de",
)
_RISK_CLASSES = (inventory_projection.SAFETY_LOW, inventory_projection.SAFETY_NEGATIVE)
_NO_SUPPLIER = "—"

VersionLike = Optional[Union[ForecastVersion, Mapping[str, Any]]]


@dataclass(frozen=True)
class ImpactCollaborators:
    """Pluggable inventory, ABC and recommendation engines used by the analyzer."""

    compute_abc_classification: Callable[..., abc_classification.AbcClassification] = (
        abc_classification.compute_abc_classification
    )
    compute_inventory_projection: Callable[..., inventory_projection.InventoryProjection] = (
        inventory_projection.compute_inventory_projection
    )
    get_projection_safety_class: Callable[..., str] = inventory_projection.get_projection_safety_class
    build_fo_recommendation_context: Callable[..., fo_recommendation.FoRecommendationContext] = (
        fo_recommendation.build_fo_recommendation_context
    )
    compute_fo_recommendation_for_sku: Callable[..., fo_recommendation.FoRecommendation | None] = (
        fo_recommendation.compute_fo_recommendation_for_sku
    )


DEFAULT_COLLABORATORS = ImpactCollaborators()


@dataclass
class _SkuRisk:
    has_safety_risk: bool = False
    first_safety_month: str | None = None


@dataclass
class _WindowSum:
    units: float
    revenue: float | None


def _version_attr(version: VersionLike, name: str) -> Any:
    if version is None:
        return None
    if isinstance(version, Mapping):
        return version.get(name)
    return getattr(version, name, None)


def _version_import(version: VersionLike) -> dict:
    if isinstance(version, ForecastVersion):
        return normalize_forecast_import_map(version.model_dump()["forecast_import"])
    return normalize_forecast_import_map(_version_attr(version, "forecast_import") or {})


def _index_by_sku(forecast_import: Mapping[str, Mapping]) -> dict[str, Mapping]:
    return {sku.strip().lower(): months for sku, months in forecast_import.items() if sku.strip()}


def _sum_window(index: Mapping[str, Mapping], sku_key: str, months: list[str]) -> _WindowSum:
    month_map = index.get(sku_key) or {}
    units = 0.0
    revenue = 0.0
    has_revenue = False
    for month in months:
        entry = month_map.get(month)
        if not isinstance(entry, Mapping):
            continue
        units += parse_de_number(entry.get("units")) or 0.0
        entry_revenue = parse_de_number(entry.get("revenue_eur"))
        if entry_revenue is not None:
            revenue += entry_revenue
            has_revenue = True
    return _WindowSum(units, revenue if has_revenue else None)


def _delta_revenue(previous: _WindowSum, next_sum: _WindowSum, delta_units: float, price: float | None) -> float | None:
    if previous.revenue is not None and next_sum.revenue is not None:
        return next_sum.revenue - previous.revenue
    if price is not None:
        return delta_units * price
    return None


def _normalize_abc_class(value: object) -> AbcClass:
    if isinstance(value, AbcClass):
        return value
    candidate = str(value or "").strip().upper()
    return AbcClass(candidate) if candidate in ("A", "B", "C") else AbcClass.C


def _products(state: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    return [product for product in state.get("products") or [] if isinstance(product, Mapping)]


def _alias_map(state: Mapping[str, Any]) -> dict[str, str]:
    aliases = {}
    for product in _products(state):
        sku = str(product.get("sku") or "").strip()
        if sku:
            aliases[sku.lower()] = str(product.get("alias") or sku)
    return aliases


def _price_map(state: Mapping[str, Any]) -> dict[str, float]:
    prices = {}
    for product in _products(state):
        sku = str(product.get("sku") or "").strip()
        price = parse_de_number(product.get("avg_selling_price_gross_eur"))
        if sku and price is not None and price > 0:
            prices[sku.lower()] = price
    return prices


def _supplier_names(state: Mapping[str, Any]) -> dict[str, str]:
    names = {}
    for supplier in state.get("suppliers") or []:
        if not isinstance(supplier, Mapping):
            continue
        supplier_id = str(supplier.get("id") or "").strip()
        if supplier_id:
            names[supplier_id] = str(supplier.get("name") or supplier_id)
    return names


def _abc_map(state: Mapping[str, Any], now_month: str, collaborators: ImpactCollaborators) -> dict[str, AbcClass]:
    compute = collaborators.compute_abc_classification
    if compute is abc_classification.compute_abc_classification:
        # Injected classifiers get the state only.
        compute = functools.partial(compute, now_month=now_month)
    classification = compute(copy.deepcopy(state))
    result = {}
    for key, entry in classification.by_sku.items():
        sku_key = str(key or "").strip().lower()
        if sku_key:
            result[sku_key] = _normalize_abc_class(getattr(entry, "abc_class", None))
    return result


def _risk_map(
    state: Mapping[str, Any],
    now_month: str,
    policy: ImpactPolicy,
    collaborators: ImpactCollaborators,
) -> dict[str, _SkuRisk]:
    months = month_range(now_month, policy.projection_months)
    projection = collaborators.compute_inventory_projection(state, months, _products(state), None, "units")
    risks: dict[str, _SkuRisk] = {}
    for sku_raw, month_rows in projection.per_sku_month.items():
        sku_key = str(sku_raw or "").strip().lower()
        if not sku_key:
            continue
        first_month = next(
            (
                month
                for month in months
                if month in month_rows
                and collaborators.get_projection_safety_class(month_rows[month]) in _RISK_CLASSES
            ),
            None,
        )
        risks[sku_key] = _SkuRisk(has_safety_risk=first_month is not None, first_safety_month=first_month)
    return risks


def resolve_fo_arrival_date(fo: Mapping[str, Any]) -> str | None:
    for name in _FO_ARRIVAL_FIELDS:
        iso = to_iso_date(fo.get(name))
        if iso:
            return iso
    return None


def _conflict_types(
    current_units: int,
    recommended_units: int,
    over_threshold: bool,
    risk: _SkuRisk,
    current_month: str | None,
    required_month: str | None,
) -> list[FoConflictType]:
    types: list[FoConflictType] = []
    if current_units < recommended_units and (over_threshold or risk.has_safety_risk):
        types.append(FoConflictType.UNITS_TOO_SMALL)
    if current_units > recommended_units and over_threshold:
        types.append(FoConflictType.UNITS_TOO_LARGE)
    if current_month and (
        (required_month and current_month > required_month)
        or (risk.first_safety_month and current_month > risk.first_safety_month)
    ):
        types.append(FoConflictType.TIMING_TOO_LATE)
    if (
        current_month
        and required_month
        and current_month < required_month
        and current_units > recommended_units
        and over_threshold
    ):
        types.append(FoConflictType.TIMING_TOO_EARLY)
    return types


def compute_forecast_impact(
    state: Mapping[str, Any],
    from_version: VersionLike,
    to_version: VersionLike,
    now_month: str | None = None,
    *,
    collaborators: ImpactCollaborators | None = None,
    policy: ImpactPolicy | None = None,
) -> ForecastImpactResult:
    collaborators = collaborators or DEFAULT_COLLABORATORS
    policy = policy or DEFAULT_IMPACT_POLICY

    now = normalize_month_key(now_month) or current_month_key()
    months1 = [now]
    months3 = [add_months(now, offset) for offset in range(3)]
    months6 = [add_months(now, offset) for offset in range(6)]
    compared_at = datetime.now(timezone.utc).isoformat()

    previous_import = _version_import(from_version)
    next_import = _version_import(to_version)
    previous_index = _index_by_sku(previous_import)
    next_index = _index_by_sku(next_import)

    # All collaborators see the state as if the newer version were already active.
    state_for_next = copy.deepcopy(dict(state or {}))
    if not isinstance(state_for_next.get("forecast"), dict):
        state_for_next["forecast"] = {}
    state_for_next["forecast"]["forecast_import"] = copy.deepcopy(next_import)

    abc_by_sku = _abc_map(state_for_next, now, collaborators)
    alias_by_sku = _alias_map(state_for_next)
    price_by_sku = _price_map(state_for_next)
    risk_by_sku = _risk_map(state_for_next, now, policy, collaborators)

    sku_keys = set(previous_index) | set(next_index)
    sku_keys.update(
        str(product.get("sku") or "").strip().lower()
        for product in _products(state_for_next)
        if str(product.get("sku") or "").strip()
    )

    sku_rows: list[ForecastSkuImpactRow] = []
    for sku_key in sku_keys:
        abc_class = abc_by_sku.get(sku_key, AbcClass.C)
        deltas = {}
        for label, window in (("1", months1), ("3", months3), ("6", months6)):
            previous = _sum_window(previous_index, sku_key, window)
            following = _sum_window(next_index, sku_key, window)
            delta_units = following.units - previous.units
            deltas[label] = (
                delta_units,
                percent_delta(previous.units, following.units),
                _delta_revenue(previous, following, delta_units, price_by_sku.get(sku_key)),
            )

        risk = risk_by_sku.get(sku_key) or _SkuRisk()
        threshold_hit = policy.threshold_exceeded(abc_class, deltas["3"][1], deltas["3"][0])
        reasons = []
        if threshold_hit:
            reasons.append("abc_threshold")
        if risk.has_safety_risk:
            reasons.append("safety_risk")

        sku_rows.append(
            ForecastSkuImpactRow(
                sku=sku_key.upper(),
                alias=alias_by_sku.get(sku_key) or sku_key.upper(),
                abc_class=abc_class,
                delta1_units=deltas["1"][0],
                delta1_pct=deltas["1"][1],
                delta3_units=deltas["3"][0],
                delta3_pct=deltas["3"][1],
                delta6_units=deltas["6"][0],
                delta6_pct=deltas["6"][1],
                delta1_revenue=deltas["1"][2],
                delta3_revenue=deltas["3"][2],
                delta6_revenue=deltas["6"][2],
                flagged=threshold_hit or risk.has_safety_risk,
                reasons=reasons,
                first_safety_month=risk.first_safety_month,
            )
        )
    sku_rows.sort(key=lambda row: (policy.abc_priority(row.abc_class), -abs(row.delta3_units), row.sku))

    settings = state_for_next.get("settings") or {}
    products = _products(state_for_next)
    supplier_names = _supplier_names(state_for_next)
    context = collaborators.build_fo_recommendation_context(state_for_next)

    conflicts: list[FoImpactConflictRow] = []
    for fo in state_for_next.get("fos") or []:
        if not isinstance(fo, Mapping):
            continue
        if fo_recommendation.normalize_fo_status(fo.get("status")) not in ("ACTIVE", "DRAFT"):
            continue
        fo_id = str(fo.get("id") or "").strip()
        sku_raw = str(fo.get("sku") or "").strip()
        sku_key = sku_raw.lower()
        if not fo_id or not sku_key:
            continue

        product = fo_recommendation.resolve_product_by_sku(products, sku_raw)
        abc_class = abc_by_sku.get(sku_key, AbcClass.C)
        recommendation = collaborators.compute_fo_recommendation_for_sku(
            context,
            sku_raw,
            fo_recommendation.resolve_fo_lead_time_days(fo, product, settings),
            product,
            settings,
            policy.recommendation_horizon_months,
        )
        if recommendation is None or recommendation.status != fo_recommendation.STATUS_OK:
            continue

        required_date = recommendation.required_arrival_date or None
        required_month = required_date[:7] if required_date else None
        recommended_units = max(0, int(round(recommendation.recommended_units or 0)))
        current_units = max(0, int(round(parse_de_number(fo.get("units")) or 0.0)))
        current_arrival = resolve_fo_arrival_date(fo)
        current_month = current_arrival[:7] if current_arrival else None
        risk = risk_by_sku.get(sku_key) or _SkuRisk()

        delta_units = current_units - recommended_units
        if recommended_units > 0:
            delta_pct = delta_units / recommended_units * 100
        else:
            delta_pct = 100.0 if current_units > 0 else 0.0
        over_threshold = policy.threshold_exceeded(abc_class, delta_pct, delta_units)

        types = _conflict_types(
            current_units, recommended_units, over_threshold, risk, current_month, required_month
        )
        if not types:
            continue

        supplier_id = str(fo.get("supplier_id") or "")
        coverage_days = recommendation.coverage_days
        conflicts.append(
            FoImpactConflictRow(
                fo_id=fo_id,
                sku=sku_raw,
                alias=alias_by_sku.get(sku_key) or sku_raw,
                abc_class=abc_class,
                supplier_name=supplier_names.get(supplier_id) or supplier_id or _NO_SUPPLIER,
                supplier_id=supplier_id,
                conflict_types=types,
                current_units=current_units,
                current_target_delivery_date=str(fo.get("target_delivery_date") or "") or None,
                current_eta_date=str(fo.get("eta_date") or "") or None,
                first_month_below_safety=risk.first_safety_month,
                required_arrival_date=required_date,
                required_arrival_month=required_month,
                recommended_units=recommended_units,
                recommended_order_date=recommendation.order_date_adjusted or recommendation.order_date or None,
                recommended_arrival_date=required_date,
                recommended_arrival_month=required_month,
                recommended_coverage_days=max(0.0, coverage_days) if coverage_days is not None else None,
                recommended_status=recommendation.status,
                severity_score=policy.severity_score(abc_class, types, required_month, risk.first_safety_month),
                raw_fo=dict(fo),
            )
        )
    conflicts.sort(key=lambda row: (row.severity_score, row.required_arrival_month or "", row.fo_id))

    flagged = [row for row in sku_rows if row.flagged]
    summary = ForecastImpactSummary(
        compared_at=compared_at,
        from_version_id=_optional_str(_version_attr(from_version, "id")),
        from_version_name=_optional_str(_version_attr(from_version, "name")),
        to_version_id=_optional_str(_version_attr(to_version, "id")),
        to_version_name=_optional_str(_version_attr(to_version, "name")),
        flagged_skus=len(flagged),
        flagged_ab=sum(1 for row in flagged if row.abc_class in (AbcClass.A, AbcClass.B)),
        fo_conflicts_total=len(conflicts),
        fo_conflicts_open=len(conflicts),
    )
    return ForecastImpactResult(
        compared_at=compared_at,
        months=ImpactWindows(now=now, months1=months1, months3=months3, months6=months6),
        sku_rows=sku_rows,
        fo_conflicts=conflicts,
        summary=summary,
    )


def _optional_str(value: object) -> str | None:
    return str(value) if value else None


def resolve_comparison_versions(
    forecast_state: Mapping[str, Any],
    from_version_id: str | None = None,
    to_version_id: str | None = None,
) -> tuple[ForecastVersion | None, ForecastVersion | None]:
    """Pick the versions to compare; defaults are the active baseline and the version before it.

    An explicitly requested id that does not exist resolves to ``None``.
    """

    versions = list_forecast_versions(forecast_state)
    by_id = {version.id: version for version in versions}

    if to_version_id:
        to_version = by_id.get(to_version_id)
    else:
        to_version = get_active_forecast_version(forecast_state)

    if from_version_id:
        return by_id.get(from_version_id), to_version

    from_version = None
    if to_version is not None:
        earlier = [version for version in versions if version.id != to_version.id]
        earlier = [version for version in earlier if version.created_at <= to_version.created_at]
        from_version = earlier[-1] if earlier else None
    return from_version, to_version
