from __future__ import annotations

import copy
import logging
import threading
import weakref
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

from sqlalchemy import select
from sqlalchemy.orm import Session

from supplyplan.models.models import WorkspaceState
from supplyplan.services.forecast_versioning import ensure_containers


logger = logging.getLogger(__name__)

# Entries vanish once no caller holds the lock.
_locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()
_locks_guard = threading.Lock()


def _workspace_lock(workspace_id: str) -> threading.Lock:
    with _locks_guard:
        lock = _locks.get(workspace_id)
        if lock is None:
            lock = threading.Lock()
            _locks[workspace_id] = lock
        return lock


def forecast_container(payload: dict[str, Any]) -> dict[str, Any]:
    """Return ``payload["forecast"]`` with all versioning containers in place."""

    forecast = payload.get("forecast")
    if not isinstance(forecast, dict):
        forecast = {}
        payload["forecast"] = forecast
    ensure_containers(forecast)
    return forecast


class WorkspaceStateRepository:
    """Loads and stores whole workspace state documents.

    Reads are lock free. Every write goes through ``mutate`` (or ``replace``),
    which holds a per-workspace lock so that forecast-version mutations on the
    same document never interleave within this process.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, workspace_id: str) -> WorkspaceState | None:
        return self.db.scalar(select(WorkspaceState).where(WorkspaceState.workspace_id == workspace_id))

    def load_payload(self, workspace_id: str) -> dict[str, Any] | None:
        row = self.get(workspace_id)
        return copy.deepcopy(row.payload) if row is not None else None

    def list_workspace_ids(self) -> list[str]:
        return list(self.db.scalars(select(WorkspaceState.workspace_id).order_by(WorkspaceState.workspace_id)))

    def _store(self, workspace_id: str, payload: dict[str, Any]) -> WorkspaceState:
        row = self.get(workspace_id)
        now = datetime.now(timezone.utc)
        if row is None:
            row = WorkspaceState(workspace_id=workspace_id, payload=payload, revision=1, updated_at=now)
            self.db.add(row)
        else:
            row.payload = payload
            row.revision = (row.revision or 0) + 1
            row.updated_at = now
        self.db.commit()
        self.db.refresh(row)
        logger.info("Stored workspace state %s (revision %s)", workspace_id, row.revision)
        return row

    def replace(self, workspace_id: str, payload: dict[str, Any]) -> WorkspaceState:
        document = copy.deepcopy(payload or {})
        with _workspace_lock(workspace_id):
            forecast_container(document)
            return self._store(workspace_id, document)

    @contextmanager
    def mutate(self, workspace_id: str, create: bool = False) -> Iterator[dict[str, Any]]:
        """Yield a private copy of the state and persist it when the block exits cleanly.

        Raises ``KeyError`` for an unknown workspace unless ``create`` is set.
        Nothing is written if the block raises.
        """

        with _workspace_lock(workspace_id):
            self.db.expire_all()
            payload = self.load_payload(workspace_id)
            if payload is None:
                if not create:
                    raise KeyError(workspace_id)
                payload = {}
            forecast_container(payload)
            yield payload
            self._store(workspace_id, payload)
