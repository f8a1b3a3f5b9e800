from __future__ import annotations

from pydantic import BaseModel


class PoArrivalTask(BaseModel):
    id: str
    po_number: str
    supplier: str
    sku_aliases: list[str]
    units: int
    eta_date: str | None
    arrival_date: str | None
    month_relevant: bool
    is_overdue: bool
    pending: bool


class PoArrivalTaskResponse(BaseModel):
    month: str
    items: list[PoArrivalTask]
