"""Pytest fixtures for testing"""

import pytest
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Generator, List
from sqlalchemy.orm import Session
from microloan_engine.domain.models import (
    AdditionalInfo,
    ApplicantInfo,
    ApplicationStatus,
    Consents,
    EmploymentInfo,
    FinancialInfo,
    LoanApplication,
)
from microloan_engine.infrastructure.audit import AuditLogger
from microloan_engine.infrastructure.database.models import Base, LoanApplicationRecord
from microloan_engine.infrastructure.database.repositories import (
    AccountRepository,
    ApplicationRepository,
    RoutingRepository,
)
from microloan_engine.infrastructure.database.session import create_session_factory

TENANT = "tenant-1"


class RecordingNotifier:
    """Notification sink that keeps what it was asked to send"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[Dict[str, Any]] = []

    async def send(self, recipient_email: str, recipient_name: str, template: str, data: Dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("notification service unavailable")
        self.sent.append(
            {
                "recipient_email": recipient_email,
                "recipient_name": recipient_name,
                "template": template,
                "data": data,
            }
        )

    @property
    def templates(self) -> List[str]:
        return [message["template"] for message in self.sent]


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """In-memory database with a fresh schema per test"""
    SessionLocal = create_session_factory("sqlite://")
    engine = SessionLocal.kw["bind"]
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def audit(db: Session) -> AuditLogger:
    return AuditLogger(db)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


def build_application(
    monthly_income: float = 3000,
    loan_amount: float = 5000,
    loan_term_months: int = 12,
    current_debts: float = 0,
    years_employed: int = 5,
    months_employed: int = 0,
    employment_type: str = "employee",
    contract_type: str | None = "indefinite",
    has_credit_history: bool = True,
    has_bank_account: bool = True,
    district: str = "Miraflores",
    birth_date: date | None = date(1990, 5, 17),
    consents: bool = True,
    status: ApplicationStatus = ApplicationStatus.PENDING,
) -> LoanApplication:
    """In-memory application; the defaults describe a strong band A applicant"""
    return LoanApplication(
        id="app-1",
        tenant_id=TENANT,
        applicant_id="applicant-1",
        applicant=ApplicantInfo(
            first_name="Ana",
            last_name="Quispe",
            email="ana.quispe@example.com",
            district=district,
            document_number="45879632",
            mobile_phone="987654321",
            birth_date=birth_date,
        ),
        financial=FinancialInfo(
            monthly_income=monthly_income,
            loan_amount=loan_amount,
            loan_term_months=loan_term_months,
            current_debts=current_debts,
            loan_purpose="working capital",
        ),
        employment=EmploymentInfo(
            employment_type=employment_type,
            contract_type=contract_type,
            years_employed=years_employed,
            months_employed=months_employed,
            employer_name="Textiles Andinos",
        ),
        additional=AdditionalInfo(has_credit_history=has_credit_history, has_bank_account=has_bank_account),
        consents=Consents(accept_terms=consents, authorize_credit_check=consents, confirm_truthfulness=consents),
        status=status,
    )


@pytest.fixture
def make_application(db: Session):
    """Persist an application, optionally forcing its status (bypasses the state machine)"""

    def _make(status: ApplicationStatus = ApplicationStatus.PENDING, routing=None, **overrides) -> LoanApplication:
        template = build_application(**overrides)
        repo = ApplicationRepository(db)
        application = repo.create(
            TENANT,
            template.applicant_id,
            template.applicant,
            template.financial,
            template.employment,
            template.additional,
            template.consents,
        )
        fields = {}
        if status != ApplicationStatus.PENDING:
            fields["status"] = status
        if routing is not None:
            fields["routing"] = routing
        if fields:
            application = repo.update(TENANT, application.id, **fields)
        db.commit()
        return application

    return _make


@pytest.fixture
def make_branch(db: Session):
    def _make(district: str = "Miraflores", name: str | None = None, is_active: bool = True):
        branch = RoutingRepository(db).create_branch(TENANT, name or f"Branch {district}", district, is_active)
        db.commit()
        return branch

    return _make


@pytest.fixture
def make_agent(db: Session):
    def _make(branch_id: str, current_loan_count: int = 0, max_concurrent_loans: int = 10, is_active: bool = True):
        agent = RoutingRepository(db).create_agent(
            TENANT, branch_id, max_concurrent_loans, current_loan_count, is_active
        )
        db.commit()
        return agent

    return _make


@pytest.fixture
def make_account(db: Session):
    def _make(owner_id: str = "applicant-1", status: str = "active", balance: Decimal = Decimal("0.00")):
        account = AccountRepository(db).create(TENANT, owner_id, status, balance)
        db.commit()
        return account

    return _make


def agent_load(db: Session, agent_id: str) -> int:
    return RoutingRepository(db).get_agent(TENANT, agent_id).current_loan_count


def stored_status(db: Session, application_id: str) -> str:
    db.expire_all()
    return db.get(LoanApplicationRecord, application_id).status
