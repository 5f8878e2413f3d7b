"""Pre-scoring application checks.

Errors (missing documentation or consents) make the application invalid.
Warnings flag risk but never block scoring.
"""

from datetime import date
from microloan_engine.config import Settings, settings as default_settings
from microloan_engine.domain import reason_codes
from microloan_engine.domain.installments import calculate_monthly_payment
from microloan_engine.domain.models import LoanApplication, ValidationResult
from microloan_engine.utils.date_utils import age_on

MAX_TOTAL_DEBT_RATIO = 0.50


def validate_application(
    application: LoanApplication,
    settings: Settings = default_settings,
    today: date | None = None,
) -> ValidationResult:
    errors = []
    warnings = []
    codes = []

    def flag(code: str) -> None:
        if code not in codes:
            codes.append(code)

    financial = application.financial
    amount = financial.loan_amount
    term = financial.loan_term_months
    income = financial.monthly_income

    if not settings.min_loan_amount <= amount <= settings.max_loan_amount:
        warnings.append(
            f"Requested amount {amount:.2f} is outside "
            f"[{settings.min_loan_amount:.2f}, {settings.max_loan_amount:.2f}]"
        )
        flag(reason_codes.AMOUNT_OUT_OF_RANGE)

    if not settings.min_term_months <= term <= settings.max_term_months:
        warnings.append(
            f"Requested term {term} months is outside "
            f"[{settings.min_term_months}, {settings.max_term_months}]"
        )
        flag(reason_codes.TERM_OUT_OF_RANGE)

    if application.applicant.birth_date is not None:
        age = age_on(application.applicant.birth_date, today or date.today())
        if age < settings.min_applicant_age:
            warnings.append(f"Applicant age {age} is below the minimum of {settings.min_applicant_age}")
            flag(reason_codes.AGE_BELOW_MINIMUM)

    installment = float(calculate_monthly_payment(amount, term, settings.monthly_interest_rate))
    if income > 0:
        payment_ratio = installment / income
        if payment_ratio > settings.max_payment_to_income_ratio:
            warnings.append(
                f"Monthly installment {installment:.2f} exceeds "
                f"{settings.max_payment_to_income_ratio:.0%} of monthly income {income:.2f}"
            )
            flag(reason_codes.INSTALLMENT_EXCEEDS_CAPACITY)
        if ((financial.current_debts or 0) + installment) / income > MAX_TOTAL_DEBT_RATIO:
            warnings.append("Total debt (current + new installment) exceeds 50% of monthly income")
            flag(reason_codes.INSTALLMENT_EXCEEDS_CAPACITY)
    else:
        warnings.append("Monthly income is missing or zero")
        flag(reason_codes.INSTALLMENT_EXCEEDS_CAPACITY)

    required = {
        "document number": application.applicant.document_number,
        "email": application.applicant.email,
        "employment type": application.employment.employment_type,
    }
    for label, value in required.items():
        if not value:
            errors.append(f"{label} is required")

    consents = application.consents
    if not consents.accept_terms:
        errors.append("Terms and conditions must be accepted")
    if not consents.authorize_credit_check:
        errors.append("Credit check must be authorized")
    if not consents.confirm_truthfulness:
        errors.append("Truthfulness of the information must be confirmed")

    if errors:
        flag(reason_codes.INCOMPLETE_DOCUMENTATION)

    return ValidationResult(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        reason_codes=codes,
    )
