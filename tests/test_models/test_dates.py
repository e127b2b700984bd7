"""Tests for calendar helpers."""

from datetime import date

from rsuledger.dates import add_months, add_years, iter_months, month_end, month_key


class TestAddMonths:
    def test_simple(self):
        assert add_months(date(2024, 1, 15), 3) == date(2024, 4, 15)

    def test_clamps_to_month_end(self):
        assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)

    def test_crosses_year(self):
        assert add_months(date(2024, 11, 30), 3) == date(2025, 2, 28)

    def test_negative(self):
        assert add_months(date(2024, 3, 31), -1) == date(2024, 2, 29)


class TestAddYears:
    def test_leap_day_maps_to_28th(self):
        assert add_years(date(2024, 2, 29), 2) == date(2026, 2, 28)

    def test_leap_day_to_leap_year(self):
        assert add_years(date(2024, 2, 29), 4) == date(2028, 2, 29)


class TestMonths:
    def test_month_end(self):
        assert month_end(date(2024, 2, 10)) == date(2024, 2, 29)

    def test_month_key(self):
        assert month_key(date(2024, 3, 9)) == "2024-03"

    def test_iter_months_inclusive(self):
        months = list(iter_months(date(2023, 11, 20), date(2024, 2, 1)))
        assert months == [date(2023, 11, 1), date(2023, 12, 1), date(2024, 1, 1), date(2024, 2, 1)]
