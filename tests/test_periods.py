from datetime import date

import pytest

from periods import DateRange, month_range, order_window, shift_month, trailing_months


def test_order_window_runs_through_friday_two_weeks_ahead() -> None:
    monday = date(2025, 10, 13)
    window = order_window(monday)

    assert window.start == monday
    assert window.end == date(2025, 11, 1)
    assert date(2025, 10, 31) in window
    assert date(2025, 11, 1) not in window


def test_order_window_from_friday_and_weekend() -> None:
    assert order_window(date(2025, 10, 17)).end == date(2025, 11, 1)
    assert order_window(date(2025, 10, 18)).end == date(2025, 11, 8)


def test_shift_month_crosses_year_boundaries() -> None:
    assert shift_month(date(2025, 1, 1), -1) == date(2024, 12, 1)
    assert shift_month(date(2024, 11, 1), 2) == date(2025, 1, 1)
    assert shift_month(date(2025, 3, 1), -15) == date(2023, 12, 1)


def test_trailing_months_walks_backwards_from_current_month() -> None:
    months = list(trailing_months(date(2025, 2, 14), limit=3))

    assert months == [date(2025, 2, 1), date(2025, 1, 1), date(2024, 12, 1)]


def test_month_range_is_half_open() -> None:
    span = month_range(date(2024, 2, 17))

    assert span == DateRange(date(2024, 2, 1), date(2024, 3, 1))
    assert len(list(span.days())) == 29


def test_date_range_rejects_inverted_bounds() -> None:
    with pytest.raises(ValueError):
        DateRange(date(2025, 3, 2), date(2025, 3, 1))
