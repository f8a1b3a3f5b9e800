from fastapi import FastAPI

from supplyplan.api.v1.router import api_router
from supplyplan.core.config import get_settings
from supplyplan.services.impact_scheduler import ImpactRefreshScheduler


app = FastAPI(title="Supply Plan Engine")
app.include_router(api_router, prefix="/api/v1")


@app.on_event("startup")
def _startup_event() -> None:
    scheduler = ImpactRefreshScheduler(interval_minutes=get_settings().impact_scheduler_interval_minutes)
    scheduler.start()
    app.state.impact_scheduler = scheduler


@app.on_event("shutdown")
def _shutdown_event() -> None:
    scheduler = getattr(app.state, "impact_scheduler", None)
    if scheduler is not None:
        scheduler.shutdown()


@app.get("/")
def root():
    return {"status": "ok", "message": "supplyplan backend running"}
