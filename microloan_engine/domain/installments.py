"""Repayment schedule generation (French / annuity amortization)"""

from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import List
from microloan_engine.domain.models import RepaymentScheduleEntry
from microloan_engine.utils.date_utils import add_months

TWOPLACES = Decimal("0.01")


def as_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize(value: Decimal) -> Decimal:
    return value.quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def calculate_monthly_payment(principal, term_months: int, monthly_rate) -> Decimal:
    """
    Fixed installment for an annuity loan: P·r·(1+r)^n / ((1+r)^n − 1).

    Unrounded, so callers decide where to round. A non-positive term has no
    amortization and the whole principal is due at once.
    """
    principal = as_decimal(principal)
    rate = as_decimal(monthly_rate)
    if term_months <= 0:
        return principal
    if rate == 0:
        return principal / Decimal(term_months)
    factor = (Decimal("1") + rate) ** term_months
    return principal * rate * factor / (factor - Decimal("1"))


def generate_repayment_schedule(
    principal,
    term_months: int,
    monthly_rate,
    start_date: date,
) -> List[RepaymentScheduleEntry]:
    """
    Generate a fixed-payment schedule of ``term_months`` installments.

    Requirements:
    - Interest each month = remaining balance × monthly rate
    - Installment i is due ``i`` calendar months after ``start_date``
    - Monetary fields rounded to 2 decimals
    - Last installment absorbs rounding drift: its principal is the remaining
      balance, so principals sum to the loan amount and the final balance is 0

    Example:
        5000.00 over 12 months at 2% → 12 payments of 472.80 (last one ± cents)
    """
    if term_months <= 0:
        raise ValueError("term_months must be >= 1")

    principal = quantize(as_decimal(principal))
    rate = as_decimal(monthly_rate)
    payment = quantize(calculate_monthly_payment(principal, term_months, rate))

    balance = principal
    schedule = []
    for number in range(1, term_months + 1):
        interest = quantize(balance * rate)
        principal_part = min(quantize(payment - interest), balance)
        total_payment = payment
        if number == term_months:
            principal_part = balance
            total_payment = quantize(principal_part + interest)
        balance = quantize(balance - principal_part)

        schedule.append(
            RepaymentScheduleEntry(
                installment_number=number,
                due_date=add_months(start_date, number),
                principal=principal_part,
                interest=interest,
                total_payment=total_payment,
                remaining_balance=max(balance, Decimal("0.00")),
            )
        )

    return schedule


def total_projected_interest(schedule: List[RepaymentScheduleEntry]) -> Decimal:
    return quantize(sum((entry.interest for entry in schedule), Decimal("0.00")))
