"""Revenue-based ABC tiering of products over the next six forecast months."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from supplyplan.core.months import MONTH_KEY_PATTERN, current_month_key, normalize_month_key
from supplyplan.core.numbers import parse_de_number
from supplyplan.schemas.forecast_impact import AbcClass
from supplyplan.services.inventory_projection import get_forecast_units, is_product_active


ABC_SHARE_A = 0.8
ABC_SHARE_B = 0.95
RANKING_MONTHS = 6


@dataclass
class AbcEntry:
    sku: str
    active: bool
    price: float | None
    units_6m: float | None
    revenue_6m: float | None
    abc_class: AbcClass | None = None
    included_in_ranking: bool = False


@dataclass
class AbcClassification:
    months: list[str]
    by_sku: dict[str, AbcEntry] = field(default_factory=dict)


def _forecast_months(state: Mapping[str, Any]) -> list[str]:
    forecast = state.get("forecast") or {}
    months: set[str] = set()
    for container in ("forecast_import", "forecast_manual"):
        for month_map in (forecast.get(container) or {}).values():
            if not isinstance(month_map, Mapping):
                continue
            months.update(month for month in month_map if MONTH_KEY_PATTERN.match(str(month)))
    return sorted(months)


def compute_abc_classification(state: Mapping[str, Any], now_month: str | None = None) -> AbcClassification:
    """Rank active, priced products by forecast revenue and assign cumulative-share classes.

    Keys of ``by_sku`` are lower-cased SKUs. Products that are inactive or have
    no positive price are listed without a class.
    """

    now = normalize_month_key(now_month) or current_month_key()
    months = [month for month in _forecast_months(state) if month >= now][:RANKING_MONTHS]

    by_sku: dict[str, AbcEntry] = {}
    ranked: list[AbcEntry] = []
    for product in state.get("products") or []:
        if not isinstance(product, Mapping):
            continue
        sku = str(product.get("sku") or "").strip()
        if not sku:
            continue
        active = is_product_active(product)
        price = parse_de_number(product.get("avg_selling_price_gross_eur"))
        priced = price is not None and price > 0

        units_6m = 0.0
        if active and priced:
            for month in months:
                units = get_forecast_units(state, sku, month)
                if units is not None:
                    units_6m += units

        entry = AbcEntry(
            sku=sku,
            active=active,
            price=price,
            units_6m=units_6m if active else None,
            revenue_6m=units_6m * price if active and priced else None,
            included_in_ranking=active and priced,
        )
        if entry.included_in_ranking:
            ranked.append(entry)
        by_sku[sku.lower()] = entry

    total_revenue = sum(entry.revenue_6m or 0 for entry in ranked)
    if total_revenue > 0:
        cumulative = 0.0
        for entry in sorted(ranked, key=lambda item: item.revenue_6m or 0, reverse=True):
            cumulative += entry.revenue_6m or 0
            share = cumulative / total_revenue
            if share <= ABC_SHARE_A:
                entry.abc_class = AbcClass.A
            elif share <= ABC_SHARE_B:
                entry.abc_class = AbcClass.B
            else:
                entry.abc_class = AbcClass.C
    else:
        for entry in ranked:
            entry.abc_class = AbcClass.C

    return AbcClassification(months=months, by_sku=by_sku)
