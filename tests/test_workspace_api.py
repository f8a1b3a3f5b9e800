from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from supplyplan.core.db import get_db
from supplyplan.main import app
from tests.test_utils import make_forecast_import, make_product, make_state


@pytest.fixture
def client(db_session):
    def _get_db_override():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = _get_db_override
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def test_root_reports_status(client):
    resp = client.get("/")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_put_state_migrates_legacy_forecast(client):
    """PUT /workspaces/{id}/state stores the document and builds the first forecast version."""
    payload = make_state(
        products=[make_product("SKU-1")],
        forecast_import=make_forecast_import({"SKU-1": {"2025-04": 100}}),
    )

    resp = client.put("/api/v1/workspaces/ws-legacy/state", json={"payload": payload})
    assert resp.status_code == 200, resp.text
    body = resp.json()

    assert body["workspace_id"] == "ws-legacy"
    assert body["revision"] == 1
    forecast = body["payload"]["forecast"]
    assert len(forecast["versions"]) == 1
    assert forecast["active_version_id"] == forecast["versions"][0]["id"]
    assert forecast["forecast_import"]["SKU-1"]["2025-04"]["units"] == 100


def test_get_state_round_trip_and_revision(client):
    """GET /workspaces/{id}/state returns the latest revision."""
    client.put("/api/v1/workspaces/ws-rt/state", json={"payload": make_state()})
    client.put(
        "/api/v1/workspaces/ws-rt/state",
        json={"payload": make_state(products=[make_product("SKU-9")])},
    )

    resp = client.get("/api/v1/workspaces/ws-rt/state")
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["revision"] == 2
    assert body["payload"]["products"][0]["sku"] == "SKU-9"


def test_get_unknown_workspace_returns_404(client):
    resp = client.get("/api/v1/workspaces/does-not-exist/state")
    assert resp.status_code == 404
