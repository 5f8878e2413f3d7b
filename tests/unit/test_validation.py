"""Unit tests for pre-scoring application validation"""

from datetime import date
from microloan_engine.domain.models import Consents
from microloan_engine.domain.validation import validate_application
from conftest import build_application

TODAY = date(2026, 10, 18)


def test_complete_application_is_clean():
    result = validate_application(build_application(), today=TODAY)

    assert result.is_valid
    assert result.errors == []
    assert result.warnings == []
    assert result.reason_codes == []


def test_amount_out_of_range_is_a_warning():
    result = validate_application(build_application(loan_amount=500), today=TODAY)

    assert result.is_valid
    assert result.reason_codes == ["RC16"]


def test_term_out_of_range_is_a_warning():
    result = validate_application(build_application(loan_term_months=48), today=TODAY)

    assert result.is_valid
    assert result.reason_codes == ["RC17"]


def test_underage_applicant():
    result = validate_application(build_application(birth_date=date(2010, 1, 1)), today=TODAY)

    assert result.is_valid
    assert result.reason_codes == ["RC18"]


def test_installment_above_payment_capacity():
    # 5000 over 12 months -> 472.80, more than half of 900
    result = validate_application(build_application(monthly_income=900), today=TODAY)

    assert result.is_valid
    assert result.reason_codes == ["RC19"]
    assert len(result.warnings) == 2


def test_total_debt_ratio_flags_capacity():
    result = validate_application(build_application(current_debts=1200), today=TODAY)

    assert result.reason_codes == ["RC19"]
    assert len(result.warnings) == 1


def test_zero_income_flags_capacity():
    result = validate_application(build_application(monthly_income=0), today=TODAY)

    assert result.is_valid
    assert "RC19" in result.reason_codes


def test_missing_consents_invalidate_application():
    application = build_application(consents=False)

    result = validate_application(application, today=TODAY)

    assert not result.is_valid
    assert len(result.errors) == 3
    assert result.reason_codes == ["RC20"]


def test_missing_documentation_invalidates_application():
    application = build_application()
    application.applicant.document_number = ""
    application.applicant.email = ""
    application.consents = Consents(accept_terms=True, authorize_credit_check=True, confirm_truthfulness=True)

    result = validate_application(application, today=TODAY)

    assert not result.is_valid
    assert result.errors == ["document number is required", "email is required"]
    assert result.reason_codes == ["RC20"]
