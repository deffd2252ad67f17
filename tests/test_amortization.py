from datetime import date

import pytest

from amortization import (
    MAX_MONTHS,
    InsufficientPaymentError,
    compute_amortization,
    compute_original_schedule,
    format_payoff_date,
    format_time_remaining,
    loan_progress_percent,
    minimum_interest_payment,
    simulate_payoff,
)
from months import add_months


def test_first_row_splits_interest_and_principal() -> None:
    projection = compute_amortization(-5000, 12, 500, date(2025, 1, 15))

    first = projection.schedule[0]
    assert first.month == 1
    assert first.date == date(2025, 1, 15)
    assert first.interest == pytest.approx(50.00)
    assert first.principal == pytest.approx(450.00)
    assert first.balance == pytest.approx(4550.00)


def test_schedule_runs_down_to_zero() -> None:
    start = date(2025, 1, 15)
    projection = compute_amortization(5000, 12, 500, start)

    assert projection.schedule[-1].balance <= 0.01
    assert projection.months_remaining == len(projection.schedule)
    assert projection.payoff_date == add_months(start, projection.months_remaining)
    assert projection.schedule[1].date == date(2025, 2, 15)
    assert projection.total_paid == pytest.approx(5000 + projection.total_interest)
    # the last payment only covers what is left
    assert projection.schedule[-1].payment < 500


def test_zero_rate_is_straight_line() -> None:
    projection = compute_amortization(1200, 0, 100, date(2025, 1, 1))

    assert projection.months_remaining == 12
    assert projection.total_interest == 0
    assert projection.payoff_date == date(2026, 1, 1)


def test_payment_below_interest_fails() -> None:
    with pytest.raises(InsufficientPaymentError):
        compute_amortization(10_000, 12, 100, date(2025, 1, 1))


def test_payment_must_be_positive() -> None:
    with pytest.raises(InsufficientPaymentError):
        compute_amortization(10_000, 5, 0, date(2025, 1, 1))


def test_schedule_is_capped_at_fifty_years() -> None:
    projection = compute_amortization(1000, 0, 1, date(2025, 1, 1))

    assert projection.months_remaining == MAX_MONTHS
    assert projection.schedule[-1].balance == pytest.approx(400)


def test_month_end_start_dates_clamp() -> None:
    projection = compute_amortization(300, 0, 100, date(2025, 1, 31))

    assert [row.date for row in projection.schedule] == [
        date(2025, 1, 31),
        date(2025, 2, 28),
        date(2025, 3, 31),
    ]


def test_original_schedule_starts_at_loan_start() -> None:
    schedule = compute_original_schedule(5000, 12, 500, date(2024, 6, 1))

    assert schedule[0].date == date(2024, 6, 1)
    assert schedule[0].interest == pytest.approx(50.00)


def test_simulation_with_extra_payment_saves_time_and_interest() -> None:
    comparison = simulate_payoff(
        -20_000, 6, 400, extra_payment=5_000, start_date=date(2025, 1, 1)
    )

    assert comparison.months_saved > 0
    assert comparison.interest_saved > 0
    assert comparison.baseline.schedule[0].balance == pytest.approx(19_700)
    assert comparison.accelerated.schedule[0].balance == pytest.approx(14_675)


def test_simulation_with_higher_payment() -> None:
    comparison = simulate_payoff(
        10_000, 12, 200, new_monthly_payment=500, start_date=date(2025, 1, 1)
    )

    assert comparison.accelerated.months_remaining < comparison.baseline.months_remaining


def test_progress_percent() -> None:
    assert loan_progress_percent(-2500, 5000) == pytest.approx(50.0)
    assert loan_progress_percent(-5000, 5000) == 0
    assert loan_progress_percent(-100, 0) == 0.0


def test_minimum_interest_payment() -> None:
    assert minimum_interest_payment(-5000, 12) == pytest.approx(50.0)


def test_formatting_helpers() -> None:
    assert format_payoff_date(date(2029, 12, 1)) == "Dec 2029"
    assert format_time_remaining(59) == "4 yrs, 11 mos"
    assert format_time_remaining(13) == "1 yr, 1 mo"
    assert format_time_remaining(12) == "1 yr"
    assert format_time_remaining(1) == "1 mo"
    assert format_time_remaining(0) == "0 mos"
