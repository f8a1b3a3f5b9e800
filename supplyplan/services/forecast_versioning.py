"""Forecast version store.

Versions live as plain JSON dicts inside the caller's forecast container
(``state["forecast"]`` in a workspace). Every mutating function edits that
container in place; callers must serialize mutations on the same container.
Domain outcomes (unknown id, active baseline) are returned as
``VersionOpResult(ok=False, reason=...)`` and never raised.
"""

from __future__ import annotations

import copy
import uuid
from datetime import datetime, timezone
from typing import Any, Mapping, MutableMapping

from supplyplan.core.months import MONTH_KEY_PATTERN, normalize_month_key
from supplyplan.core.numbers import parse_de_number
from supplyplan.schemas.forecast_version import (
    ForecastEntry,
    ForecastVersion,
    ForecastVersionStats,
    VersionOpResult,
)


REASON_ACTIVE_VERSION = "ACTIVE_VERSION"
REASON_NOT_FOUND = "NOT_FOUND"

NO_BASELINE_LABEL = "Keine Baseline"
VERSION_NAME_PREFIX = "VentoryOne Forecast"
_IMPORT_MODES = ("merge", "overwrite")

ForecastState = MutableMapping[str, Any]


def _new_version_id() -> str:
    return f"fv-{uuid.uuid4().hex[:12]}"


def _format_timestamp(value: datetime) -> str:
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def _now_iso() -> str:
    return _format_timestamp(datetime.now(timezone.utc))


def _parse_timestamp(value: object) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        raw = str(value).strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _to_iso_timestamp_safe(value: object) -> str | None:
    parsed = _parse_timestamp(value)
    return _format_timestamp(parsed) if parsed else None


def format_forecast_version_timestamp(value: datetime | None = None) -> str:
    value = value or datetime.now(timezone.utc)
    return value.astimezone().strftime("%Y-%m-%d %H:%M")


def build_forecast_version_name(value: datetime | None = None) -> str:
    return f"{VERSION_NAME_PREFIX} – {format_forecast_version_timestamp(value)}"


def _normalize_import_mode(value: object) -> str | None:
    if not value:
        return None
    text = str(value).strip().lower()
    return text if text in _IMPORT_MODES else None


def _normalize_forecast_entry(raw: object) -> ForecastEntry | None:
    if raw is None:
        return None
    if isinstance(raw, Mapping):
        source = raw
    elif isinstance(raw, (str, int, float)):
        source = {"units": raw}
    else:
        return None

    units_raw = next(
        (source.get(key) for key in ("units", "qty", "quantity") if source.get(key) is not None),
        None,
    )
    revenue_raw = source.get("revenue_eur", source.get("revenueEur"))
    profit_raw = source.get("profit_eur", source.get("profitEur"))
    return ForecastEntry(
        units=parse_de_number(units_raw),
        revenue_eur=parse_de_number(revenue_raw),
        profit_eur=parse_de_number(profit_raw),
    )


def normalize_forecast_import_map(raw: object) -> dict[str, dict[str, dict]]:
    """Best-effort filter to ``sku -> YYYY-MM -> {units, revenue_eur, profit_eur}``.

    Blank SKUs, invalid months and unusable entries are dropped silently.
    """

    if not isinstance(raw, Mapping):
        return {}
    out: dict[str, dict[str, dict]] = {}
    for sku_raw, month_map_raw in raw.items():
        sku = str(sku_raw or "").strip()
        if not sku or not isinstance(month_map_raw, Mapping):
            continue
        month_map: dict[str, dict] = {}
        for month_raw, entry_raw in month_map_raw.items():
            month = normalize_month_key(month_raw)
            if not month or not MONTH_KEY_PATTERN.match(month):
                continue
            entry = _normalize_forecast_entry(entry_raw)
            if entry is None:
                continue
            month_map[month] = entry.model_dump()
        if month_map:
            out[sku] = month_map
    return out


def compute_forecast_version_stats(forecast_import: Mapping[str, Any]) -> ForecastVersionStats:
    months: set[str] = set()
    row_count = 0
    for month_map in (forecast_import or {}).values():
        if not isinstance(month_map, Mapping):
            continue
        for month in month_map:
            normalized = normalize_month_key(month)
            if not normalized:
                continue
            months.add(normalized)
            row_count += 1
    return ForecastVersionStats(
        row_count=row_count,
        sku_count=len(forecast_import or {}),
        month_count=len(months),
    )


def _non_negative_int(value: object) -> int:
    number = parse_de_number(value)
    return max(0, int(round(number))) if number is not None else 0


def create_forecast_version(data: Mapping[str, Any]) -> ForecastVersion:
    """Build a normalized version record; missing id/name/created_at are generated."""

    created_at = _to_iso_timestamp_safe(data.get("created_at")) or _now_iso()
    default_name = build_forecast_version_name(_parse_timestamp(created_at))
    forecast_import = normalize_forecast_import_map(data.get("forecast_import") or {})

    stats_raw = data.get("stats")
    if isinstance(stats_raw, ForecastVersionStats):
        stats = stats_raw
    elif isinstance(stats_raw, Mapping):
        stats = ForecastVersionStats(
            row_count=_non_negative_int(stats_raw.get("row_count")),
            sku_count=_non_negative_int(stats_raw.get("sku_count")),
            month_count=_non_negative_int(stats_raw.get("month_count")),
        )
    else:
        stats = compute_forecast_version_stats(forecast_import)

    note = data.get("note")
    source_label = data.get("source_label")
    return ForecastVersion(
        id=str(data.get("id") or _new_version_id()),
        name=str(data.get("name") or default_name).strip() or default_name,
        note=None if note is None else str(note),
        created_at=created_at,
        source_label=None if source_label is None else str(source_label),
        import_mode=_normalize_import_mode(data.get("import_mode")),
        only_active_skus=data.get("only_active_skus") is True,
        forecast_import=forecast_import,
        stats=stats,
    )


def _normalize_version_list(raw: object) -> list[ForecastVersion]:
    if not isinstance(raw, list):
        return []
    versions: list[ForecastVersion] = []
    for entry in raw:
        if isinstance(entry, ForecastVersion):
            versions.append(entry)
        elif isinstance(entry, Mapping):
            versions.append(create_forecast_version(entry))
    versions.sort(key=lambda version: version.created_at or "")
    return versions


def _store_versions(state: ForecastState, versions: list[ForecastVersion]) -> None:
    state["versions"] = [version.model_dump() for version in versions]


def _find_version(versions: list[ForecastVersion], version_id: object) -> ForecastVersion | None:
    return next((version for version in versions if version.id == version_id), None)


def get_active_forecast_version(state: Mapping[str, Any] | None) -> ForecastVersion | None:
    """Active version, or the newest one when the active id is missing/stale."""

    versions = _normalize_version_list((state or {}).get("versions"))
    if not versions:
        return None
    active_id = str((state or {}).get("active_version_id") or "").strip()
    if active_id:
        match = _find_version(versions, active_id)
        if match is not None:
            return match
    return versions[-1]


def get_active_forecast_label(state: Mapping[str, Any] | None) -> str:
    active = get_active_forecast_version(state)
    return active.name if active is not None else NO_BASELINE_LABEL


def list_forecast_versions(state: Mapping[str, Any] | None) -> list[ForecastVersion]:
    return _normalize_version_list((state or {}).get("versions"))


def get_forecast_version(state: Mapping[str, Any] | None, version_id: str) -> ForecastVersion | None:
    return _find_version(list_forecast_versions(state), version_id)


def ensure_containers(state: ForecastState) -> ForecastState:
    """Idempotently create missing containers and re-sync the live mirror.

    A state carrying only a legacy ``forecast_import`` (no versions) is migrated
    into a single active version built from that data.
    """

    if not isinstance(state.get("forecast_import"), Mapping):
        state["forecast_import"] = {}
    if not isinstance(state.get("fo_conflict_decisions_by_version"), Mapping):
        state["fo_conflict_decisions_by_version"] = {}
    if "last_impact_summary" not in state:
        state["last_impact_summary"] = None

    versions = _normalize_version_list(state.get("versions"))
    if not versions:
        legacy_import = normalize_forecast_import_map(state.get("forecast_import") or {})
        if legacy_import:
            created_at = _to_iso_timestamp_safe(state.get("last_import_at")) or _now_iso()
            legacy_version = create_forecast_version(
                {
                    "id": state.get("active_version_id") or None,
                    "name": build_forecast_version_name(_parse_timestamp(created_at)),
                    "note": None,
                    "created_at": created_at,
                    "source_label": str(state.get("import_source") or "legacy"),
                    "import_mode": "overwrite",
                    "only_active_skus": False,
                    "forecast_import": legacy_import,
                }
            )
            _store_versions(state, [legacy_version])
            state["active_version_id"] = legacy_version.id
            state["forecast_import"] = copy.deepcopy(state["versions"][0]["forecast_import"])
            return state
        state["versions"] = []
    else:
        _store_versions(state, versions)
        active = _find_version(versions, str(state.get("active_version_id") or "").strip())
        if active is None:
            active = versions[-1]
        state["active_version_id"] = active.id
        state["forecast_import"] = active.model_dump()["forecast_import"]

    if not state.get("active_version_id"):
        state["active_version_id"] = None
    return state


def append_version(state: ForecastState, data: Mapping[str, Any]) -> ForecastVersion:
    """Append a new version (kept sorted by ``created_at``); the active pointer is unchanged."""

    ensure_containers(state)
    versions = _normalize_version_list(state.get("versions"))
    version = create_forecast_version(data)
    versions.append(version)
    versions.sort(key=lambda entry: entry.created_at or "")
    _store_versions(state, versions)
    return version


def rename_version(
    state: ForecastState,
    version_id: str,
    name: str | None = None,
    note: str | None = None,
) -> bool:
    ensure_containers(state)
    versions = _normalize_version_list(state.get("versions"))
    for index, current in enumerate(versions):
        if current.id != version_id:
            continue
        next_name = current.name if name is None else str(name).strip()
        versions[index] = current.model_copy(
            update={
                "name": next_name or current.name,
                "note": current.note if note is None else str(note),
            }
        )
        _store_versions(state, versions)
        return True
    return False


def delete_version(state: ForecastState, version_id: str) -> VersionOpResult:
    """Delete a non-active version together with its conflict decisions."""

    ensure_containers(state)
    active_id = str(state.get("active_version_id") or "")
    if active_id and active_id == version_id:
        return VersionOpResult(ok=False, reason=REASON_ACTIVE_VERSION)

    versions = _normalize_version_list(state.get("versions"))
    remaining = [version for version in versions if version.id != version_id]
    if len(remaining) == len(versions):
        return VersionOpResult(ok=False, reason=REASON_NOT_FOUND)
    _store_versions(state, remaining)

    decisions = dict(state.get("fo_conflict_decisions_by_version") or {})
    decisions.pop(version_id, None)
    state["fo_conflict_decisions_by_version"] = decisions

    summary = state.get("last_impact_summary")
    if isinstance(summary, Mapping):
        referenced = {
            str(summary.get("from_version_id") or ""),
            str(summary.get("to_version_id") or ""),
        }
        if version_id in referenced:
            state["last_impact_summary"] = None
    return VersionOpResult(ok=True)


def set_active_version(
    state: ForecastState,
    version_id: str,
    touch_import_meta: bool = True,
) -> VersionOpResult:
    """Make ``version_id`` the baseline and mirror its forecast into ``forecast_import``."""

    ensure_containers(state)
    versions = _normalize_version_list(state.get("versions"))
    match = _find_version(versions, version_id)
    if match is None:
        return VersionOpResult(ok=False, reason=REASON_NOT_FOUND)

    state["active_version_id"] = match.id
    state["forecast_import"] = match.model_dump()["forecast_import"]
    if touch_import_meta:
        state["last_import_at"] = match.created_at
        state["import_source"] = match.source_label or state.get("import_source") or "CSV"
    return VersionOpResult(ok=True, version=match)
