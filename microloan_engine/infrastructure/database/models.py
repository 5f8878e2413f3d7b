"""SQLAlchemy ORM models backing the loan document store"""

import uuid
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

MONEY = Numeric(14, 2)


def new_id() -> str:
    return str(uuid.uuid4())


class LoanApplicationRecord(Base):
    """Loan application aggregate; nested snapshots are stored as JSON documents"""

    __tablename__ = "loan_application"

    id = Column(Text, primary_key=True, default=new_id)
    tenant_id = Column(Text, nullable=False, index=True)
    applicant_id = Column(Text, nullable=False, index=True)
    applicant = Column(JSON, nullable=False)
    financial = Column(JSON, nullable=False)
    employment = Column(JSON, nullable=False)
    additional = Column(JSON, nullable=False)
    consents = Column(JSON, nullable=False)
    status = Column(Text, nullable=False, default="pending", index=True)
    routing = Column(JSON, nullable=True)
    scoring = Column(JSON, nullable=True)
    decision = Column(JSON, nullable=True)
    validations = Column(JSON, nullable=True)
    disbursement_details = Column(JSON, nullable=True)
    disbursed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)

    transitions = relationship(
        "StateTransitionRecord", back_populates="application", order_by="StateTransitionRecord.id"
    )
    schedule_entries = relationship(
        "RepaymentScheduleEntryRecord",
        back_populates="application",
        order_by="RepaymentScheduleEntryRecord.installment_number",
    )
    accounting_entries = relationship("AccountingEntryRecord", back_populates="application")


class StateTransitionRecord(Base):
    """Append-only status change log, child of an application"""

    __tablename__ = "state_transition"

    id = Column(Integer, primary_key=True, autoincrement=True)
    application_id = Column(Text, ForeignKey("loan_application.id"), nullable=False, index=True)
    from_status = Column(Text, nullable=False)
    to_status = Column(Text, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    user_id = Column(Text, nullable=False)
    reason = Column(Text, nullable=True)

    application = relationship("LoanApplicationRecord", back_populates="transitions")


class RepaymentScheduleEntryRecord(Base):
    """Installment of a disbursed loan; amounts never change after creation"""

    __tablename__ = "repayment_schedule_entry"
    __table_args__ = (UniqueConstraint("application_id", "installment_number"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    application_id = Column(Text, ForeignKey("loan_application.id"), nullable=False, index=True)
    installment_number = Column(Integer, nullable=False)
    due_date = Column(Date, nullable=False)
    principal = Column(MONEY, nullable=False)
    interest = Column(MONEY, nullable=False)
    total_payment = Column(MONEY, nullable=False)
    remaining_balance = Column(MONEY, nullable=False)
    payment_status = Column(Text, nullable=False, default="scheduled")

    application = relationship("LoanApplicationRecord", back_populates="schedule_entries")


class AccountingEntryRecord(Base):
    __tablename__ = "accounting_entry"

    id = Column(Integer, primary_key=True, autoincrement=True)
    application_id = Column(Text, ForeignKey("loan_application.id"), nullable=False, index=True)
    entry_number = Column(Text, nullable=False)
    date = Column(DateTime(timezone=True), nullable=False)
    description = Column(Text, nullable=False)
    debit_account = Column(Text, nullable=False)
    credit_account = Column(Text, nullable=False)
    amount = Column(MONEY, nullable=False)
    reference = Column(Text, nullable=False)

    application = relationship("LoanApplicationRecord", back_populates="accounting_entries")


class LedgerTransactionRecord(Base):
    __tablename__ = "ledger_transaction"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Text, nullable=False, index=True)
    type = Column(Text, nullable=False)
    reference = Column(Text, nullable=False, index=True)
    amount = Column(MONEY, nullable=False)
    description = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AccountRecord(Base):
    __tablename__ = "account"

    id = Column(Text, primary_key=True, default=new_id)
    tenant_id = Column(Text, nullable=False, index=True)
    owner_id = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="pending")
    balance = Column(MONEY, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class BranchRecord(Base):
    __tablename__ = "branch"

    id = Column(Text, primary_key=True, default=new_id)
    tenant_id = Column(Text, nullable=False, index=True)
    name = Column(Text, nullable=False)
    district = Column(Text, nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AgentRecord(Base):
    """Loan officer; current_loan_count is an advisory load counter"""

    __tablename__ = "agent"

    id = Column(Text, primary_key=True, default=new_id)
    tenant_id = Column(Text, nullable=False, index=True)
    branch_id = Column(Text, ForeignKey("branch.id"), nullable=False, index=True)
    max_concurrent_loans = Column(Integer, nullable=False)
    current_loan_count = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class RoutingRuleRecord(Base):
    __tablename__ = "routing_rule"

    id = Column(Text, primary_key=True, default=new_id)
    tenant_id = Column(Text, nullable=False, index=True)
    district = Column(Text, nullable=False, index=True)
    branch_id = Column(Text, ForeignKey("branch.id"), nullable=False)
    priority = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)


class DisbursementRecordRow(Base):
    """Idempotency marker; the primary key makes a request id usable once"""

    __tablename__ = "disbursement_record"

    request_id = Column(Text, primary_key=True)
    tenant_id = Column(Text, nullable=False)
    application_id = Column(Text, ForeignKey("loan_application.id"), nullable=False, index=True)
    amount = Column(MONEY, nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=False)


class TenantScoringConfigRecord(Base):
    """Per-tenant band thresholds overriding the defaults"""

    __tablename__ = "tenant_scoring_config"

    tenant_id = Column(Text, primary_key=True)
    band_a_min = Column(Integer, nullable=False, default=800)
    band_b_min = Column(Integer, nullable=False, default=600)
    band_c_min = Column(Integer, nullable=False, default=400)
    model_version = Column(Text, nullable=True)


class AuditLogRecord(Base):
    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    actor = Column(Text, nullable=False)
    action = Column(Text, nullable=False, index=True)
    entity_type = Column(Text, nullable=False)
    entity_id = Column(Text, nullable=False, index=True)
    before = Column(JSON, nullable=True)
    after = Column(JSON, nullable=True)
    correlation_id = Column(Text, nullable=True)
    context = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
