from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from supplyplan.core.db import get_db
from supplyplan.core.errors import InvalidDateError
from supplyplan.schemas.fo_suggestion import FoSuggestion, FoSuggestionRequest
from supplyplan.services.fo_recommendation import (
    build_closing_stock_by_sku,
    build_planned_sales_by_sku,
    build_sku_policy_inputs,
)
from supplyplan.services.fo_suggestion import compute_fo_suggestion
from supplyplan.services.workspace_state import WorkspaceStateRepository


router = APIRouter()


@router.post("/{workspace_id}/fo-suggestion", response_model=FoSuggestion)
def suggest_forecast_order(
    workspace_id: str,
    payload: FoSuggestionRequest,
    db: Session = Depends(get_db),
) -> FoSuggestion:
    """Suggest an order quantity for one SKU from the workspace's forecast and snapshots.

    Policy values missing from the request come from workspace settings and
    product overrides.
    """
    state = WorkspaceStateRepository(db).load_payload(workspace_id)
    if state is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workspace not found")

    overrides, defaults = build_sku_policy_inputs(state)
    if payload.policy_overrides is not None:
        overrides = payload.policy_overrides
    if payload.policy_defaults is not None:
        defaults = payload.policy_defaults

    try:
        return compute_fo_suggestion(
            sku=payload.sku,
            today=payload.today,
            operational_coverage_days=payload.operational_coverage_days,
            eta_date=payload.eta_date,
            policy_overrides=overrides,
            policy_defaults=defaults,
            planned_sales_by_sku=build_planned_sales_by_sku(state),
            closing_stock_by_sku=build_closing_stock_by_sku(state),
        )
    except InvalidDateError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
