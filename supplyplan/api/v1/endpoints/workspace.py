from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from supplyplan.core.db import get_db
from supplyplan.models.models import WorkspaceState
from supplyplan.schemas.workspace import WorkspaceStateRead, WorkspaceStateWrite
from supplyplan.services.workspace_state import WorkspaceStateRepository


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/{workspace_id}/state", response_model=WorkspaceStateRead)
def get_workspace_state(workspace_id: str, db: Session = Depends(get_db)) -> WorkspaceState:
    row = WorkspaceStateRepository(db).get(workspace_id)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workspace not found")
    return row


@router.put("/{workspace_id}/state", response_model=WorkspaceStateRead)
def put_workspace_state(
    workspace_id: str,
    payload: WorkspaceStateWrite,
    db: Session = Depends(get_db),
) -> WorkspaceState:
    """Replace the whole state document; legacy forecast data is migrated on write."""
    row = WorkspaceStateRepository(db).replace(workspace_id, payload.payload)
    logger.info("Workspace %s state replaced", workspace_id)
    return row
