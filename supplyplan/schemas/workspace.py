from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class WorkspaceStateRead(BaseModel):
    workspace_id: str
    revision: int
    updated_at: datetime
    payload: dict

    model_config = ConfigDict(from_attributes=True)


class WorkspaceStateWrite(BaseModel):
    payload: dict = Field(default_factory=dict)
