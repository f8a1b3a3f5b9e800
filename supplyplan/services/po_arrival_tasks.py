from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Mapping

from supplyplan.core.errors import InvalidDateError
from supplyplan.core.months import MONTH_KEY_PATTERN, parse_iso_date, to_iso_date
from supplyplan.core.numbers import parse_de_number
from supplyplan.schemas.po_arrival import PoArrivalTask


_NO_SUPPLIER = "-"


def _key(value: object) -> str:
    return str(value or "").strip().lower()


def _units(value: object) -> int:
    parsed = parse_de_number(value)
    return max(0, int(round(parsed))) if parsed is not None else 0


def _resolve_eta(po: Mapping[str, Any]) -> str | None:
    manual = to_iso_date(po.get("eta_manual") or po.get("eta_date") or po.get("eta"))
    if manual:
        return manual
    order_iso = to_iso_date(po.get("order_date"))
    if not order_iso:
        return None
    prod_days = max(0.0, parse_de_number(po.get("prod_days")) or 0.0)
    transit_days = max(0.0, parse_de_number(po.get("transit_days")) or 0.0)
    eta = parse_iso_date(order_iso) + timedelta(days=int(round(prod_days + transit_days)))
    return eta.isoformat()


def _supplier_lookup(state: Mapping[str, Any]) -> dict[str, str]:
    names: dict[str, str] = {}
    for supplier in state.get("suppliers") or []:
        if not isinstance(supplier, Mapping):
            continue
        name = str(supplier.get("name") or "").strip()
        if not name:
            continue
        if _key(supplier.get("id")):
            names[_key(supplier.get("id"))] = name
        names[_key(name)] = name
    return names


def _alias_lookup(state: Mapping[str, Any]) -> dict[str, str]:
    aliases: dict[str, str] = {}
    for product in state.get("products") or []:
        if not isinstance(product, Mapping):
            continue
        sku = str(product.get("sku") or "").strip()
        if sku:
            aliases[_key(sku)] = str(product.get("alias") or sku)
    return aliases


def _supplier_name(po: Mapping[str, Any], names: Mapping[str, str]) -> str:
    lookup = _key(po.get("supplier_id") or po.get("supplier") or po.get("supplier_name"))
    if lookup and lookup in names:
        return names[lookup]
    return str(po.get("supplier_name") or po.get("supplier") or _NO_SUPPLIER)


def _line_items(po: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    items = po.get("items")
    if isinstance(items, list) and items:
        return [item for item in items if isinstance(item, Mapping)]
    return []


def _sku_aliases(po: Mapping[str, Any], aliases: Mapping[str, str]) -> list[str]:
    items = _line_items(po)
    if items:
        skus = [str(item.get("sku") or "").strip() for item in items]
    else:
        skus = [str(po.get("sku") or "").strip()]
    result: list[str] = []
    for sku in skus:
        if not sku:
            continue
        alias = aliases.get(_key(sku)) or sku
        if alias not in result:
            result.append(alias)
    return result


def _total_units(po: Mapping[str, Any]) -> int:
    items = _line_items(po)
    if items:
        return sum(_units(item.get("units")) for item in items)
    return _units(po.get("units"))


def build_po_arrival_tasks(
    state: Mapping[str, Any],
    month: str,
    today: date | str | None = None,
) -> list[PoArrivalTask]:
    """Arrival worklist for ``month``: POs due that month plus overdue, not yet arrived POs.

    Archived and cancelled POs are ignored, as are POs without a resolvable ETA.
    Pending tasks sort first, then month-relevant ones, then by ETA and PO number.
    """

    if not MONTH_KEY_PATTERN.match(str(month or "")):
        raise InvalidDateError(f"Invalid month: {month!r}")
    today_iso = parse_iso_date(today).isoformat() if today else date.today().isoformat()

    suppliers = _supplier_lookup(state)
    aliases = _alias_lookup(state)
    tasks: list[PoArrivalTask] = []

    for po in state.get("pos") or []:
        if not isinstance(po, Mapping) or po.get("archived"):
            continue
        if str(po.get("status") or "").upper() == "CANCELLED":
            continue
        task_id = str(po.get("id") or po.get("po_no") or "").strip()
        if not task_id:
            continue
        eta = _resolve_eta(po)
        if not eta:
            continue

        arrival = to_iso_date(po.get("arrival_date"))
        month_relevant = eta[:7] == month
        pending = arrival is None
        overdue = pending and eta < today_iso
        if not month_relevant and not overdue:
            continue

        tasks.append(
            PoArrivalTask(
                id=task_id,
                po_number=str(po.get("po_no") or po.get("id") or ""),
                supplier=_supplier_name(po, suppliers),
                sku_aliases=_sku_aliases(po, aliases),
                units=_total_units(po),
                eta_date=eta,
                arrival_date=arrival,
                month_relevant=month_relevant,
                is_overdue=overdue,
                pending=pending,
            )
        )

    tasks.sort(
        key=lambda task: (
            not task.pending,
            not task.month_relevant,
            task.eta_date or "9999-12-31",
            task.po_number,
        )
    )
    return tasks
