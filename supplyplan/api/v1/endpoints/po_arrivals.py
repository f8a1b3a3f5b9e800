from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from supplyplan.core.db import get_db
from supplyplan.core.errors import InvalidDateError
from supplyplan.schemas.po_arrival import PoArrivalTaskResponse
from supplyplan.services.po_arrival_tasks import build_po_arrival_tasks
from supplyplan.services.workspace_state import WorkspaceStateRepository


router = APIRouter()


@router.get("/{workspace_id}/po-arrivals", response_model=PoArrivalTaskResponse)
def list_po_arrivals(
    workspace_id: str,
    month: str = Query(..., description="Target month, YYYY-MM"),
    today: date | None = Query(None),
    db: Session = Depends(get_db),
) -> PoArrivalTaskResponse:
    state = WorkspaceStateRepository(db).load_payload(workspace_id)
    if state is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workspace not found")
    try:
        items = build_po_arrival_tasks(state, month, today=today)
    except InvalidDateError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return PoArrivalTaskResponse(month=month, items=items)
