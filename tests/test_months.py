from __future__ import annotations

from datetime import date, datetime

import pytest

from supplyplan.core.errors import InvalidDateError
from supplyplan.core.months import (
    add_months,
    days_in_month,
    end_of_month,
    month_range,
    next_month_start,
    normalize_month_key,
    parse_iso_date,
    to_iso_date,
)


def test_parse_iso_date_accepts_dates_and_strings():
    assert parse_iso_date("2025-02-28") == date(2025, 2, 28)
    assert parse_iso_date(date(2025, 1, 1)) == date(2025, 1, 1)
    assert parse_iso_date(datetime(2025, 1, 1, 13, 30)) == date(2025, 1, 1)


@pytest.mark.parametrize("value", ["2025-02-30", "2025/02/01", "", None, 20250201])
def test_parse_iso_date_rejects_malformed_input(value):
    with pytest.raises(InvalidDateError):
        parse_iso_date(value)


def test_to_iso_date_is_lenient():
    assert to_iso_date("2025-03-01") == "2025-03-01"
    assert to_iso_date("03.01.2025") is None
    assert to_iso_date(None) is None


def test_normalize_month_key():
    assert normalize_month_key("2025-03") == "2025-03"
    assert normalize_month_key("03-2025") == "2025-03"
    assert normalize_month_key("2025-3") is None
    assert normalize_month_key("") is None


def test_month_arithmetic():
    assert add_months("2025-11", 3) == "2026-02"
    assert add_months("2025-01", -1) == "2024-12"
    assert month_range("2025-11", 3) == ["2025-11", "2025-12", "2026-01"]
    assert month_range("bogus", 3) == []
    assert days_in_month("2024-02") == 29
    assert next_month_start(date(2025, 12, 15)) == date(2026, 1, 1)
    assert end_of_month(date(2025, 2, 10)) == date(2025, 2, 28)
