"""Calendar and month-key helpers.

Month keys are ``YYYY-MM`` strings; dates are plain ``datetime.date`` values
(no time zone, calendar days only).
"""

from __future__ import annotations

import calendar
import re
from datetime import date, datetime, timedelta

from supplyplan.core.errors import InvalidDateError


MONTH_KEY_PATTERN = re.compile(r"^\d{4}-\d{2}$")
ISO_DATE_PATTERN = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_MM_YYYY_PATTERN = re.compile(r"^(\d{2})-(\d{4})$")


def parse_iso_date(value: date | datetime | str) -> date:
    """Parse ``value`` into a ``date``.

    Accepts ``date``/``datetime`` instances and ``YYYY-MM-DD`` strings.
    Anything else raises ``InvalidDateError``.
    """

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise InvalidDateError(f"Invalid date: {value!r}")
    match = ISO_DATE_PATTERN.match(value.strip())
    if not match:
        raise InvalidDateError(f"Invalid ISO date: {value!r}")
    year, month, day = (int(part) for part in match.groups())
    try:
        return date(year, month, day)
    except ValueError as exc:
        raise InvalidDateError(f"Invalid ISO date: {value!r}") from exc


def to_iso_date(value: object) -> str | None:
    """Lenient variant of ``parse_iso_date`` for record fields: ``None`` if invalid."""

    if isinstance(value, (date, datetime)):
        return parse_iso_date(value).isoformat()
    raw = str(value or "").strip()
    if not raw:
        return None
    try:
        return parse_iso_date(raw).isoformat()
    except InvalidDateError:
        return None


def month_key(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def current_month_key() -> str:
    return month_key(date.today())


def normalize_month_key(value: object) -> str | None:
    """Return ``YYYY-MM`` for ``YYYY-MM`` or ``MM-YYYY`` input, else ``None``."""

    if not value:
        return None
    raw = str(value).strip()
    if MONTH_KEY_PATTERN.match(raw):
        return raw
    match = _MM_YYYY_PATTERN.match(raw)
    if match:
        return f"{match.group(2)}-{match.group(1)}"
    return None


def month_index(month: str) -> int | None:
    if not MONTH_KEY_PATTERN.match(month or ""):
        return None
    year, month_number = (int(part) for part in month.split("-"))
    return year * 12 + (month_number - 1)


def add_months(month: str, offset: int) -> str:
    index = month_index(month)
    if index is None:
        return month
    shifted = index + offset
    return f"{shifted // 12:04d}-{shifted % 12 + 1:02d}"


def month_range(start_month: str, months: int) -> list[str]:
    normalized = normalize_month_key(start_month)
    length = max(0, int(round(months or 0)))
    if not normalized or not length:
        return []
    return [add_months(normalized, offset) for offset in range(length)]


def days_in_month(month: str) -> int:
    index = month_index(month)
    if index is None:
        return 30
    return calendar.monthrange(index // 12, index % 12 + 1)[1]


def month_start(month: str) -> date:
    index = month_index(month)
    if index is None:
        raise InvalidDateError(f"Invalid month: {month!r}")
    return date(index // 12, index % 12 + 1, 1)


def next_month_start(value: date) -> date:
    return month_start(add_months(month_key(value), 1))


def end_of_month(value: date) -> date:
    return next_month_start(value) - timedelta(days=1)
