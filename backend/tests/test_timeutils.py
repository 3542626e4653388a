"""
Tests for business-timezone windows and stamps.
"""

from datetime import date, datetime, timezone
from unittest.mock import patch

import pytest

from yardops.core.timeutils import (
    day_window,
    format_stamp,
    month_number,
    month_window,
    resolve_window,
)


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestMonthWindow:
    def test_october_2025_in_chicago(self) -> None:
        start, end = month_window(2025, 10)

        assert start == _utc(2025, 10, 1, 5)
        assert end == _utc(2025, 11, 1, 5)

    def test_december_rolls_into_next_year(self) -> None:
        start, end = month_window(2025, 12)

        assert start == _utc(2025, 12, 1, 6)
        assert end == _utc(2026, 1, 1, 6)

    def test_day_window_across_dst_change(self) -> None:
        start, end = day_window(date(2025, 11, 2))

        assert start == _utc(2025, 11, 2, 5)
        assert end == _utc(2025, 11, 3, 6)


class TestResolveWindow:
    def test_month_and_year(self) -> None:
        assert resolve_window(month="Oct", year=2025) == month_window(2025, 10)

    def test_numeric_month(self) -> None:
        assert resolve_window(month="10", year=2025) == month_window(2025, 10)

    def test_explicit_days_win_and_are_inclusive(self) -> None:
        start, end = resolve_window(
            start="2025-10-05", end="2025-10-06T00:00:00Z", month="Jan", year=2024
        )

        assert start == _utc(2025, 10, 5, 5)
        assert end == _utc(2025, 10, 7, 5)

    def test_start_after_end_rejected(self) -> None:
        with pytest.raises(ValueError):
            resolve_window(start="2025-10-07", end="2025-10-05")

    def test_invalid_month_rejected(self) -> None:
        with pytest.raises(ValueError):
            resolve_window(month="13", year=2025)

    def test_defaults_to_current_month(self) -> None:
        with patch("yardops.core.timeutils.utcnow", return_value=_utc(2025, 10, 19, 12)):
            assert resolve_window() == month_window(2025, 10)

    def test_current_month_uses_business_day(self) -> None:
        # 02:00 UTC on Nov 1 is still Oct 31 in Chicago
        with patch("yardops.core.timeutils.utcnow", return_value=_utc(2025, 11, 1, 2)):
            assert resolve_window() == month_window(2025, 10)


class TestMonthNumber:
    @pytest.mark.parametrize("value", ["Oct", "oct", "October", " OCTOBER "])
    def test_names(self, value: str) -> None:
        assert month_number(value) == 10

    @pytest.mark.parametrize("value", ["Smarch", "Octopus", "Junk", "Octo", ""])
    def test_unknown(self, value: str) -> None:
        with pytest.raises(ValueError, match="Invalid month"):
            month_number(value)

    def test_full_name_and_abbreviation_agree(self) -> None:
        assert month_number("june") == month_number("Jun") == 6


def test_format_stamp() -> None:
    assert format_stamp(_utc(2025, 1, 9, 15, 30)) == "9 Jan, 2025 09:30"
