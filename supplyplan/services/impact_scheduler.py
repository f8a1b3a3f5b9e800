from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from supplyplan.core.config import get_settings
from supplyplan.core.db import SessionLocal
from supplyplan.services.forecast_impact import compute_forecast_impact, resolve_comparison_versions
from supplyplan.services.workspace_state import WorkspaceStateRepository, forecast_container


logger = logging.getLogger(__name__)


def refresh_impact_summaries(db: Session, now_month: str | None = None) -> int:
    """Recompute ``forecast.last_impact_summary`` for every workspace with two or more versions.

    The comparison is always the version before the active baseline against the
    baseline itself. Returns the number of workspaces refreshed.
    """
    repo = WorkspaceStateRepository(db)
    refreshed = 0
    for workspace_id in repo.list_workspace_ids():
        payload = repo.load_payload(workspace_id) or {}
        from_version, to_version = resolve_comparison_versions(forecast_container(payload))
        if from_version is None or to_version is None:
            continue
        with repo.mutate(workspace_id) as state:
            result = compute_forecast_impact(state, from_version, to_version, now_month)
            forecast_container(state)["last_impact_summary"] = result.summary.model_dump(mode="json")
        logger.info("Refreshed forecast impact summary for workspace %s", workspace_id)
        refreshed += 1
    return refreshed


class ImpactRefreshScheduler:
    """Background scheduler keeping stored impact summaries in step with the calendar.

    The 1/3/6-month windows roll forward every month, so a summary computed at
    import time goes stale. Controlled from FastAPI startup/shutdown events.
    """

    def __init__(self, interval_minutes: int = 60) -> None:
        self._interval_minutes = interval_minutes
        self._scheduler: Optional[BackgroundScheduler] = None

    def start(self) -> None:
        # Feature flag: allow turning scheduler off completely via env.
        if not get_settings().impact_scheduler_enabled:
            logger.warning(
                "ImpactRefreshScheduler disabled via IMPACT_SCHEDULER_ENABLED=%s",
                os.getenv("IMPACT_SCHEDULER_ENABLED"),
            )
            return

        if self._scheduler is not None and self._scheduler.running:
            logger.warning("ImpactRefreshScheduler already running, skipping start")
            return

        scheduler = BackgroundScheduler(timezone="UTC")
        scheduler.add_job(
            self._run_refresh_job,
            trigger=IntervalTrigger(minutes=self._interval_minutes),
            id="forecast_impact_refresh_job",
            replace_existing=True,
            max_instances=1,
            next_run_time=datetime.now(timezone.utc),
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.warning(
            "ImpactRefreshScheduler started with interval %s minutes", self._interval_minutes
        )

    def shutdown(self) -> None:
        if self._scheduler is not None:
            try:
                self._scheduler.shutdown(wait=False)
                logger.warning("ImpactRefreshScheduler stopped")
            finally:
                self._scheduler = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    @staticmethod
    def _run_refresh_job() -> None:
        """Refresh all summaries; failures are logged so they never reach the process."""
        logger.warning("Forecast impact refresh job started")
        db: Session = SessionLocal()
        try:
            count = refresh_impact_summaries(db)
            logger.warning("Forecast impact refresh job refreshed %s workspaces", count)
        except Exception:
            logger.exception("Error while running forecast impact refresh job")
        finally:
            db.close()
