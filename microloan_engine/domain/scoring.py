"""Risk scoring engine - core business logic for credit decisions"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List
from microloan_engine.config import settings
from microloan_engine.domain.installments import calculate_monthly_payment
from microloan_engine.domain.models import LoanApplication, ScoringDetails, ScoringResult
from microloan_engine.domain.reason_codes import CATEGORY_CODES
from microloan_engine.utils.date_utils import utc_now

MAX_REASON_CODES = 3


@dataclass(frozen=True)
class BandThresholds:
    """Minimum rounded score for each band; anything below ``c_min`` is D"""

    a_min: int = 800
    b_min: int = 600
    c_min: int = 400


@dataclass(frozen=True)
class ScoringConfig:
    version: str = settings.scoring_model_version
    weights: Dict[str, float] = field(
        default_factory=lambda: {
            "income": 0.30,
            "debt_to_income": 0.25,
            "employment": 0.20,
            "employment_type": 0.15,
            "credit_history": 0.10,
        }
    )
    bands: BandThresholds = field(default_factory=BandThresholds)


DEFAULT_SCORING_CONFIG = ScoringConfig()


def income_score(monthly_income: float, loan_amount: float) -> int:
    """
    Score the monthly income relative to the requested amount.

    Thresholds (income / loan): 0.5 → 1000, 0.3 → 800, 0.2 → 600, 0.15 → 400, else 200.
    """
    ratio = monthly_income / loan_amount if loan_amount > 0 else 0.0

    if ratio >= 0.5:
        return 1000
    if ratio >= 0.3:
        return 800
    if ratio >= 0.2:
        return 600
    if ratio >= 0.15:
        return 400
    return 200


def debt_to_income_score(
    monthly_income: float,
    current_debts: float,
    loan_amount: float,
    term_months: int,
    monthly_rate=None,
) -> int:
    """
    Score (current debt + new installment) / income; lower is better.

    The installment uses the same monthly rate as the disbursement schedule.
    Thresholds: 0.20 → 1000, 0.30 → 800, 0.40 → 600, 0.50 → 400, else 200.
    """
    rate = settings.monthly_interest_rate if monthly_rate is None else monthly_rate
    installment = float(calculate_monthly_payment(loan_amount, term_months, rate))
    total_debt = (current_debts or 0) + installment
    ratio = total_debt / monthly_income if monthly_income > 0 else math.inf

    if ratio <= 0.20:
        return 1000
    if ratio <= 0.30:
        return 800
    if ratio <= 0.40:
        return 600
    if ratio <= 0.50:
        return 400
    return 200


def employment_score(years_employed: int, months_employed: int) -> int:
    """Score total months with the current employer: 60 / 36 / 24 / 12"""
    total_months = (years_employed or 0) * 12 + (months_employed or 0)

    if total_months >= 60:
        return 1000
    if total_months >= 36:
        return 800
    if total_months >= 24:
        return 600
    if total_months >= 12:
        return 400
    return 200


EMPLOYMENT_TYPE_SCORES = {
    "business_owner": 700,
    "retiree": 600,
    "independent": 500,
}


def employment_type_score(employment_type: str, contract_type: str | None) -> int:
    if employment_type == "employee":
        return 1000 if contract_type == "indefinite" else 800
    return EMPLOYMENT_TYPE_SCORES.get(employment_type, 300)


def credit_history_score(has_credit_history: bool, has_bank_account: bool) -> int:
    if has_credit_history and has_bank_account:
        return 1000
    if has_credit_history:
        return 700
    if has_bank_account:
        return 500
    return 300


def determine_band(score: int, bands: BandThresholds = BandThresholds()) -> str:
    if score >= bands.a_min:
        return "A"
    if score >= bands.b_min:
        return "B"
    if score >= bands.c_min:
        return "C"
    return "D"


def generate_reason_codes(details: ScoringDetails) -> List[str]:
    """
    Map every sub-score to a positive (≥800), warning (≥600) or negative code.

    Categories are evaluated in fixed priority order (income, debt, tenure,
    employment type, credit history) and only the first three codes are kept.
    """
    sub_scores = {
        "income": details.income_score,
        "debt_to_income": details.debt_to_income_score,
        "employment": details.employment_score,
        "employment_type": details.employment_type_score,
        "credit_history": details.credit_history_score,
    }

    codes = []
    for category, (positive, warning, negative) in CATEGORY_CODES.items():
        value = sub_scores[category]
        if value >= 800:
            codes.append(positive)
        elif value >= 600:
            codes.append(warning)
        else:
            codes.append(negative)

    return codes[:MAX_REASON_CODES]


def calculate_score(
    application: LoanApplication,
    config: ScoringConfig = DEFAULT_SCORING_CONFIG,
    monthly_rate=None,
    now: datetime | None = None,
) -> ScoringResult:
    """
    Main entry point: weighted score, band and reason codes for an application.

    Pure function; identical inputs always give the same score, band and codes.
    """
    financial = application.financial
    employment = application.employment

    details = ScoringDetails(
        income_score=income_score(financial.monthly_income, financial.loan_amount),
        debt_to_income_score=debt_to_income_score(
            financial.monthly_income,
            financial.current_debts,
            financial.loan_amount,
            financial.loan_term_months,
            monthly_rate,
        ),
        employment_score=employment_score(employment.years_employed, employment.months_employed),
        employment_type_score=employment_type_score(employment.employment_type, employment.contract_type),
        credit_history_score=credit_history_score(
            application.additional.has_credit_history,
            application.additional.has_bank_account,
        ),
    )

    weights = config.weights
    total = (
        details.income_score * weights["income"]
        + details.debt_to_income_score * weights["debt_to_income"]
        + details.employment_score * weights["employment"]
        + details.employment_type_score * weights["employment_type"]
        + details.credit_history_score * weights["credit_history"]
    )
    # Round half up; float sums like 799.9999 must land on 800
    score = int(math.floor(round(total, 6) + 0.5))

    return ScoringResult(
        score=score,
        band=determine_band(score, config.bands),
        reason_codes=generate_reason_codes(details),
        model_version=config.version,
        calculated_at=now or utc_now(),
        details=details,
    )
