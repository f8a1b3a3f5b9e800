from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from supplyplan.core.db import get_db
from supplyplan.schemas.forecast_impact import ForecastImpactRequest, ForecastImpactResult
from supplyplan.schemas.forecast_version import (
    ForecastVersion,
    ForecastVersionCreate,
    ForecastVersionList,
    ForecastVersionUpdate,
)
from supplyplan.services.forecast_impact import compute_forecast_impact, resolve_comparison_versions
from supplyplan.services.forecast_versioning import (
    REASON_ACTIVE_VERSION,
    append_version,
    delete_version,
    get_forecast_version,
    list_forecast_versions,
    rename_version,
    set_active_version,
)
from supplyplan.services.workspace_state import WorkspaceStateRepository, forecast_container


logger = logging.getLogger(__name__)

router = APIRouter()


def _workspace_not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workspace not found")


def _version_not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Forecast version not found")


@router.get("/{workspace_id}/forecast/versions", response_model=ForecastVersionList)
def list_versions(workspace_id: str, db: Session = Depends(get_db)) -> ForecastVersionList:
    state = WorkspaceStateRepository(db).load_payload(workspace_id)
    if state is None:
        raise _workspace_not_found()
    forecast = forecast_container(state)
    return ForecastVersionList(
        active_version_id=forecast.get("active_version_id"),
        items=list_forecast_versions(forecast),
    )


@router.post(
    "/{workspace_id}/forecast/versions",
    response_model=ForecastVersion,
    status_code=status.HTTP_201_CREATED,
)
def create_version(
    workspace_id: str,
    payload: ForecastVersionCreate,
    db: Session = Depends(get_db),
) -> ForecastVersion:
    data = payload.model_dump(exclude={"activate"}, exclude_none=True)
    with WorkspaceStateRepository(db).mutate(workspace_id, create=True) as state:
        forecast = forecast_container(state)
        version = append_version(forecast, data)
        if payload.activate:
            set_active_version(forecast, version.id)
    logger.info(
        "Workspace %s: forecast version %s appended (activate=%s)",
        workspace_id,
        version.id,
        payload.activate,
    )
    return version


@router.patch("/{workspace_id}/forecast/versions/{version_id}", response_model=ForecastVersion)
def update_version(
    workspace_id: str,
    version_id: str,
    payload: ForecastVersionUpdate,
    db: Session = Depends(get_db),
) -> ForecastVersion:
    try:
        with WorkspaceStateRepository(db).mutate(workspace_id) as state:
            forecast = forecast_container(state)
            if not rename_version(forecast, version_id, name=payload.name, note=payload.note):
                raise _version_not_found()
            version = get_forecast_version(forecast, version_id)
    except KeyError as exc:
        raise _workspace_not_found() from exc
    return version


@router.delete("/{workspace_id}/forecast/versions/{version_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_version(workspace_id: str, version_id: str, db: Session = Depends(get_db)) -> Response:
    try:
        with WorkspaceStateRepository(db).mutate(workspace_id) as state:
            result = delete_version(forecast_container(state), version_id)
            if not result.ok:
                if result.reason == REASON_ACTIVE_VERSION:
                    raise HTTPException(
                        status_code=status.HTTP_409_CONFLICT,
                        detail="Active forecast version cannot be deleted",
                    )
                raise _version_not_found()
    except KeyError as exc:
        raise _workspace_not_found() from exc
    logger.info("Workspace %s: forecast version %s deleted", workspace_id, version_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{workspace_id}/forecast/versions/{version_id}/activate", response_model=ForecastVersion)
def activate_version(workspace_id: str, version_id: str, db: Session = Depends(get_db)) -> ForecastVersion:
    try:
        with WorkspaceStateRepository(db).mutate(workspace_id) as state:
            result = set_active_version(forecast_container(state), version_id)
            if not result.ok:
                raise _version_not_found()
    except KeyError as exc:
        raise _workspace_not_found() from exc
    logger.info("Workspace %s: forecast version %s activated", workspace_id, version_id)
    return result.version


@router.post("/{workspace_id}/forecast/impact", response_model=ForecastImpactResult)
def forecast_impact(
    workspace_id: str,
    payload: ForecastImpactRequest,
    db: Session = Depends(get_db),
) -> ForecastImpactResult:
    """Compare two forecast versions (default: previous vs. active baseline)."""
    repo = WorkspaceStateRepository(db)
    state = repo.load_payload(workspace_id)
    if state is None:
        raise _workspace_not_found()

    forecast = forecast_container(state)
    from_version, to_version = resolve_comparison_versions(
        forecast, payload.from_version_id, payload.to_version_id
    )
    if (payload.from_version_id and from_version is None) or (payload.to_version_id and to_version is None):
        raise _version_not_found()

    result = compute_forecast_impact(state, from_version, to_version, payload.now_month)

    if payload.persist_summary:
        with repo.mutate(workspace_id) as current:
            forecast_container(current)["last_impact_summary"] = result.summary.model_dump(mode="json")
        logger.info(
            "Workspace %s: impact summary stored (%s flagged SKUs, %s FO conflicts)",
            workspace_id,
            result.summary.flagged_skus,
            result.summary.fo_conflicts_total,
        )
    return result
