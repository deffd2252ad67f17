from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from months import add_months, local_today

MAX_MONTHS = 600  # 50 years
BALANCE_EPSILON = 0.01


class InsufficientPaymentError(ValueError):
    """The monthly payment never pays the loan down."""


@dataclass(frozen=True)
class AmortizationRow:
    month: int
    date: date
    payment: float
    principal: float
    interest: float
    balance: float


@dataclass(frozen=True)
class LoanProjection:
    payoff_date: date
    months_remaining: int
    total_interest: float
    total_paid: float
    schedule: list[AmortizationRow] = field(default_factory=list)


@dataclass(frozen=True)
class PayoffComparison:
    baseline: LoanProjection
    accelerated: LoanProjection

    @property
    def months_saved(self) -> int:
        return self.baseline.months_remaining - self.accelerated.months_remaining

    @property
    def interest_saved(self) -> float:
        return self.baseline.total_interest - self.accelerated.total_interest


def monthly_rate(annual_rate_percent: float) -> float:
    return (annual_rate_percent / 100) / 12


def compute_amortization(
    current_balance: float,
    annual_rate_percent: float,
    monthly_payment: float,
    start_date: Optional[date] = None,
) -> LoanProjection:
    """Project the payoff of a loan month by month.

    ``current_balance`` may be signed (loans are stored negative); only its
    magnitude is amortized. Raises ``InsufficientPaymentError`` when the
    payment does not cover the first month's interest.
    """
    if monthly_payment <= 0:
        raise InsufficientPaymentError("Monthly payment must be greater than zero")

    start = start_date or local_today()
    rate = monthly_rate(annual_rate_percent)
    remaining = abs(current_balance)
    schedule: list[AmortizationRow] = []
    total_interest = 0.0
    month = 1

    while remaining > BALANCE_EPSILON and month <= MAX_MONTHS:
        interest = remaining * rate
        principal = min(monthly_payment - interest, remaining)
        if principal <= 0:
            raise InsufficientPaymentError(
                "Monthly payment must be greater than monthly interest"
            )

        remaining -= principal
        total_interest += interest
        schedule.append(
            AmortizationRow(
                month=month,
                date=add_months(start, month - 1),
                payment=principal + interest,
                principal=principal,
                interest=interest,
                balance=max(remaining, 0.0),
            )
        )
        month += 1

    return LoanProjection(
        payoff_date=add_months(start, len(schedule)),
        months_remaining=len(schedule),
        total_interest=total_interest,
        total_paid=abs(current_balance) + total_interest,
        schedule=schedule,
    )


def compute_original_schedule(
    original_balance: float,
    annual_rate_percent: float,
    monthly_payment: float,
    start_date: date,
) -> list[AmortizationRow]:
    """The "as planned" track, re-run from the original principal and start."""
    projection = compute_amortization(
        original_balance, annual_rate_percent, monthly_payment, start_date
    )
    return projection.schedule


def simulate_payoff(
    current_balance: float,
    annual_rate_percent: float,
    monthly_payment: float,
    *,
    new_monthly_payment: Optional[float] = None,
    extra_payment: float = 0.0,
    start_date: Optional[date] = None,
) -> PayoffComparison:
    start = start_date or local_today()
    baseline = compute_amortization(
        current_balance, annual_rate_percent, monthly_payment, start
    )
    remaining = max(abs(current_balance) - max(extra_payment, 0.0), 0.0)
    accelerated = compute_amortization(
        remaining,
        annual_rate_percent,
        new_monthly_payment if new_monthly_payment is not None else monthly_payment,
        start,
    )
    return PayoffComparison(baseline=baseline, accelerated=accelerated)


def loan_progress_percent(current_balance: float, original_balance: float) -> float:
    if not original_balance:
        return 0.0
    paid = original_balance - abs(current_balance)
    return (paid / original_balance) * 100


def format_payoff_date(value: date) -> str:
    return value.strftime("%b %Y")


def format_row_date(value: date) -> str:
    return value.strftime("%b %d, %Y")


def _plural(count: int, singular: str, plural: str) -> str:
    return f"{count} {singular if count == 1 else plural}"


def format_time_remaining(months_remaining: int) -> str:
    years, months = divmod(months_remaining, 12)
    if years == 0:
        return _plural(months, "mo", "mos")
    if months == 0:
        return _plural(years, "yr", "yrs")
    return f"{_plural(years, 'yr', 'yrs')}, {_plural(months, 'mo', 'mos')}"


def minimum_interest_payment(balance: float, annual_rate_percent: float) -> float:
    return abs(balance) * monthly_rate(annual_rate_percent)
