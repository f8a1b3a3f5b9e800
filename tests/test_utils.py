from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from supplyplan.models.models import WorkspaceState
from supplyplan.services.workspace_state import WorkspaceStateRepository


def make_product(sku: str, **kwargs) -> dict[str, Any]:
    product = {
        "sku": sku,
        "alias": kwargs.pop("alias", sku),
        "status": kwargs.pop("status", "active"),
    }
    product.update(kwargs)
    return product


def make_forecast_import(units_by_sku: dict[str, dict[str, float]]) -> dict[str, dict[str, dict]]:
    return {
        sku: {month: {"units": units} for month, units in months.items()}
        for sku, months in units_by_sku.items()
    }


def make_snapshot(month: str, units_by_sku: dict[str, float]) -> dict[str, Any]:
    return {
        "month": month,
        "items": [{"sku": sku, "units": units} for sku, units in units_by_sku.items()],
    }


def make_version(version_id: str, created_at: str, units_by_sku: dict[str, dict[str, float]], **kwargs) -> dict:
    version = {
        "id": version_id,
        "name": kwargs.pop("name", version_id),
        "created_at": created_at,
        "source_label": kwargs.pop("source_label", "CSV"),
        "forecast_import": make_forecast_import(units_by_sku),
    }
    version.update(kwargs)
    return version


def make_state(
    products: list[dict] | None = None,
    forecast_import: dict | None = None,
    snapshots: list[dict] | None = None,
    pos: list[dict] | None = None,
    fos: list[dict] | None = None,
    suppliers: list[dict] | None = None,
    settings: dict | None = None,
    versions: list[dict] | None = None,
    active_version_id: str | None = None,
) -> dict[str, Any]:
    forecast: dict[str, Any] = {"forecast_import": forecast_import or {}}
    if versions is not None:
        forecast["versions"] = versions
        forecast["active_version_id"] = active_version_id
    return {
        "settings": settings or {},
        "products": products or [],
        "suppliers": suppliers or [],
        "pos": pos or [],
        "fos": fos or [],
        "forecast": forecast,
        "inventory": {"snapshots": snapshots or [], "settings": {}},
    }


def create_workspace(session: Session, workspace_id: str, payload: dict[str, Any]) -> WorkspaceState:
    return WorkspaceStateRepository(session).replace(workspace_id, payload)
