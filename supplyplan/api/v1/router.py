from fastapi import APIRouter

from supplyplan.api.v1.endpoints import (
    fo_suggestion,
    forecast,
    po_arrivals,
    workspace,
)

api_router = APIRouter()

api_router.include_router(workspace.router, prefix="/workspaces", tags=["workspace"])
api_router.include_router(fo_suggestion.router, prefix="/workspaces", tags=["fo-suggestion"])
api_router.include_router(forecast.router, prefix="/workspaces", tags=["forecast"])
api_router.include_router(po_arrivals.router, prefix="/workspaces", tags=["po-arrivals"])
