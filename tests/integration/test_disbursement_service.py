"""Integration tests for idempotent loan disbursement"""

import pytest
from unittest.mock import patch
from datetime import datetime, timezone
from decimal import Decimal
from conftest import TENANT, RecordingNotifier, agent_load, stored_status
from microloan_engine.domain.exceptions import (
    AlreadyDisbursed,
    ApplicationFinalized,
    DuplicateRequest,
    InvalidAccount,
    InvalidLoanTerms,
    InvalidState,
    NotFound,
)
from microloan_engine.domain.models import ApplicationStatus as S, LedgerTransactionType, RoutingInfo
from microloan_engine.infrastructure.database.models import (
    AccountingEntryRecord,
    DisbursementRecordRow,
    LedgerTransactionRecord,
    RepaymentScheduleEntryRecord,
)
from microloan_engine.infrastructure.database.repositories import (
    AccountRepository,
    ApplicationRepository,
    DisbursementRepository,
    LedgerRepository,
)
from microloan_engine.services.decisions import DecisionEngine
from microloan_engine.services.disbursement import DisbursementEngine
from microloan_engine.services.state_manager import ApplicationStateMachine


@pytest.fixture
def engine(db, audit, notifier) -> DisbursementEngine:
    return DisbursementEngine(db, notifier, audit)


def row_counts(db):
    return (
        db.query(RepaymentScheduleEntryRecord).count(),
        db.query(AccountingEntryRecord).count(),
        db.query(LedgerTransactionRecord).count(),
        db.query(DisbursementRecordRow).count(),
    )


def balance(db, account_id):
    db.expire_all()
    return AccountRepository(db).get(TENANT, account_id).balance


@pytest.fixture
def approved(make_application, make_branch, make_agent):
    branch = make_branch("Miraflores")
    agent = make_agent(branch.id, current_loan_count=4)
    application = make_application(
        S.APPROVED,
        routing=RoutingInfo(branch.id, agent.id, datetime.now(timezone.utc), "Miraflores"),
    )
    return application, agent


async def test_disburse_approved_loan(db, engine, notifier, approved, make_account):
    application, agent = approved
    account = make_account(balance=Decimal("150.00"))

    await engine.disburse_loan(TENANT, application.id, "req-001", account.id)

    db.expire_all()
    stored = ApplicationRepository(db).get(TENANT, application.id)
    assert stored.status == S.DISBURSED
    assert stored.disbursed_at is not None
    assert stored.disbursement_details.account_id == account.id
    assert stored.disbursement_details.branch_id == application.routing.branch_id
    assert stored.disbursement_details.amount == Decimal("5000.00")
    assert stored.disbursement_details.request_id == "req-001"

    schedule = engine.get_repayment_schedule(TENANT, application.id)
    assert [entry.installment_number for entry in schedule] == list(range(1, 13))
    assert sum(entry.principal for entry in schedule) == Decimal("5000.00")
    assert schedule[0].total_payment == Decimal("472.80")
    assert schedule[-1].remaining_balance == Decimal("0.00")

    entries = engine.get_accounting_entries(TENANT, application.id)
    assert [entry.entry_number for entry in entries] == ["DISB-req-001", "INT-req-001"]
    assert entries[0].amount == Decimal("5000.00")
    assert entries[1].amount == sum(entry.interest for entry in schedule)

    ledger = LedgerRepository(db)
    loan_postings = ledger.list_by_reference(TENANT, application.id)
    account_postings = ledger.list_by_reference(TENANT, account.id)
    assert [tx.type for tx in loan_postings] == [LedgerTransactionType.DISBURSEMENT]
    assert [tx.type for tx in account_postings] == [LedgerTransactionType.ACCOUNT_CREDIT]
    assert loan_postings[0].amount == account_postings[0].amount == Decimal("5000.00")

    assert balance(db, account.id) == Decimal("5150.00")
    record = DisbursementRepository(db).get("req-001")
    assert record.application_id == application.id
    assert record.amount == Decimal("5000.00")

    assert agent_load(db, agent.id) == 3
    assert notifier.templates == ["loan_disbursed"]
    assert notifier.sent[0]["data"]["installments"] == 12


async def test_same_request_twice_disburses_once(db, engine, approved, make_account):
    application, _ = approved
    account = make_account()
    await engine.disburse_loan(TENANT, application.id, "req-001", account.id)
    counts = row_counts(db)

    with pytest.raises(DuplicateRequest):
        await engine.disburse_loan(TENANT, application.id, "req-001", account.id)

    assert row_counts(db) == counts
    assert balance(db, account.id) == Decimal("5000.00")


async def test_new_request_for_disbursed_loan(db, engine, approved, make_account):
    application, _ = approved
    account = make_account()
    await engine.disburse_loan(TENANT, application.id, "req-001", account.id)
    counts = row_counts(db)

    with pytest.raises(AlreadyDisbursed):
        await engine.disburse_loan(TENANT, application.id, "req-002", account.id)

    assert row_counts(db) == counts
    assert balance(db, account.id) == Decimal("5000.00")


@pytest.mark.parametrize(
    "request_id,expected",
    [("req-001", DuplicateRequest), ("req-002", AlreadyDisbursed)],
)
async def test_concurrent_disbursement_loses_at_write(db, engine, approved, make_account, request_id, expected):
    application, _ = approved
    account = make_account()
    # State as seen by a request that passed its checks before req-001 committed
    stale = ApplicationRepository(db).get(TENANT, application.id)
    await engine.disburse_loan(TENANT, application.id, "req-001", account.id)
    counts = row_counts(db)

    with patch.object(engine, "_check_preconditions", return_value=(stale, account)):
        with pytest.raises(expected):
            await engine.disburse_loan(TENANT, application.id, request_id, account.id)

    assert row_counts(db) == counts
    assert balance(db, account.id) == Decimal("5000.00")
    assert DisbursementRepository(db).get("req-002") is None


async def test_pending_application_is_refused_without_writes(db, engine, make_application, make_account):
    application = make_application(S.PENDING)
    account = make_account()

    with pytest.raises(InvalidState) as exc:
        await engine.disburse_loan(TENANT, application.id, "req-001", account.id)

    assert exc.value.current_status == "pending"
    assert exc.value.expected_status == "approved"
    assert row_counts(db) == (0, 0, 0, 0)
    assert stored_status(db, application.id) == "pending"
    assert balance(db, account.id) == Decimal("0.00")


async def test_unknown_application(engine, make_account):
    account = make_account()

    with pytest.raises(NotFound):
        await engine.disburse_loan(TENANT, "does-not-exist", "req-001", account.id)


@pytest.mark.parametrize(
    "owner_id,status,reason",
    [
        ("applicant-1", "blocked", "status"),
        ("applicant-2", "active", "another applicant"),
    ],
)
async def test_invalid_destination_account(db, engine, approved, make_account, owner_id, status, reason):
    application, _ = approved
    account = make_account(owner_id=owner_id, status=status)

    with pytest.raises(InvalidAccount) as exc:
        await engine.disburse_loan(TENANT, application.id, "req-001", account.id)

    assert reason in exc.value.reason
    assert row_counts(db) == (0, 0, 0, 0)
    assert stored_status(db, application.id) == "approved"


async def test_missing_destination_account(db, engine, approved):
    application, _ = approved

    with pytest.raises(InvalidAccount):
        await engine.disburse_loan(TENANT, application.id, "req-001", "missing-account")

    assert row_counts(db) == (0, 0, 0, 0)


@pytest.mark.parametrize("overrides", [{"loan_amount": 0}, {"loan_term_months": 0}, {"loan_amount": -100}])
async def test_invalid_loan_terms(db, engine, make_application, make_account, overrides):
    application = make_application(S.APPROVED, **overrides)
    account = make_account()

    with pytest.raises(InvalidLoanTerms):
        await engine.disburse_loan(TENANT, application.id, "req-001", account.id)

    assert row_counts(db) == (0, 0, 0, 0)


async def test_notification_failure_keeps_disbursement(db, audit, approved, make_account):
    application, _ = approved
    account = make_account()
    engine = DisbursementEngine(db, RecordingNotifier(fail=True), audit)

    await engine.disburse_loan(TENANT, application.id, "req-001", account.id)

    assert stored_status(db, application.id) == "disbursed"
    assert balance(db, account.id) == Decimal("5000.00")


async def test_disbursed_loan_is_frozen(db, audit, engine, approved, make_account):
    application, _ = approved
    account = make_account()
    await engine.disburse_loan(TENANT, application.id, "req-001", account.id)

    with pytest.raises(ApplicationFinalized):
        ApplicationStateMachine(db, audit).transition_state(TENANT, application.id, S.REJECTED, "analyst-1")
    with pytest.raises(ApplicationFinalized):
        await DecisionEngine(db, None, audit).make_manual_decision(
            TENANT, application.id, "rejected", "changed my mind", "analyst-1"
        )
    with pytest.raises(ApplicationFinalized):
        ApplicationRepository(db).update(TENANT, application.id, routing=None)

    assert stored_status(db, application.id) == "disbursed"
