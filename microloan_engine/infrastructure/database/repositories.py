"""Data access layer: the document store consumed by the engine services.

Repositories add and flush; committing is left to the calling service so a
service decides what forms one atomic unit.
"""

import dataclasses
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from sqlalchemy import case
from sqlalchemy.orm import Session
from microloan_engine.domain.exceptions import ApplicationFinalized, NotFound
from microloan_engine.domain.models import (
    Account,
    AccountingEntry,
    AdditionalInfo,
    Agent,
    ApplicantInfo,
    ApplicationStatus,
    Branch,
    Consents,
    Decision,
    DecisionResult,
    DisbursementDetails,
    DisbursementRecord,
    EmploymentInfo,
    FinancialInfo,
    LedgerTransaction,
    LedgerTransactionType,
    LoanApplication,
    RepaymentScheduleEntry,
    RoutingInfo,
    RoutingRule,
    ScoringDetails,
    ScoringResult,
    StateTransition,
    ValidationResult,
)
from microloan_engine.domain.scoring import BandThresholds, DEFAULT_SCORING_CONFIG, ScoringConfig
from microloan_engine.infrastructure.database.models import (
    AccountRecord,
    AccountingEntryRecord,
    AgentRecord,
    BranchRecord,
    DisbursementRecordRow,
    LedgerTransactionRecord,
    LoanApplicationRecord,
    RepaymentScheduleEntryRecord,
    RoutingRuleRecord,
    StateTransitionRecord,
    TenantScoringConfigRecord,
    new_id,
)
from microloan_engine.utils.date_utils import as_utc, utc_now


# --- JSON document codecs -------------------------------------------------


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return as_utc(datetime.fromisoformat(value)) if value else None


def applicant_to_json(applicant: ApplicantInfo) -> Dict[str, Any]:
    data = dataclasses.asdict(applicant)
    data["birth_date"] = applicant.birth_date.isoformat() if applicant.birth_date else None
    return data


def applicant_from_json(data: Dict[str, Any]) -> ApplicantInfo:
    data = dict(data)
    if data.get("birth_date"):
        data["birth_date"] = date.fromisoformat(data["birth_date"])
    return ApplicantInfo(**data)


def routing_to_json(routing: RoutingInfo) -> Dict[str, Any]:
    return {
        "branch_id": routing.branch_id,
        "agent_id": routing.agent_id,
        "assigned_at": _iso(routing.assigned_at),
        "district": routing.district,
    }


def routing_from_json(data: Dict[str, Any]) -> RoutingInfo:
    return RoutingInfo(
        branch_id=data["branch_id"],
        agent_id=data.get("agent_id"),
        assigned_at=_parse_dt(data.get("assigned_at")),
        district=data["district"],
    )


def scoring_to_json(scoring: ScoringResult) -> Dict[str, Any]:
    return {
        "score": scoring.score,
        "band": scoring.band,
        "reason_codes": list(scoring.reason_codes),
        "model_version": scoring.model_version,
        "calculated_at": _iso(scoring.calculated_at),
        "details": dataclasses.asdict(scoring.details),
    }


def scoring_from_json(data: Dict[str, Any]) -> ScoringResult:
    return ScoringResult(
        score=data["score"],
        band=data["band"],
        reason_codes=list(data["reason_codes"]),
        model_version=data["model_version"],
        calculated_at=_parse_dt(data["calculated_at"]),
        details=ScoringDetails(**data["details"]),
    )


def decision_to_json(decision: Decision) -> Dict[str, Any]:
    return {
        "result": decision.result.value,
        "decided_by": decision.decided_by,
        "decided_at": _iso(decision.decided_at),
        "comments": decision.comments,
        "is_automatic": decision.is_automatic,
    }


def decision_from_json(data: Dict[str, Any]) -> Decision:
    return Decision(
        result=DecisionResult(data["result"]),
        decided_by=data["decided_by"],
        decided_at=_parse_dt(data["decided_at"]),
        comments=data["comments"],
        is_automatic=data["is_automatic"],
    )


def disbursement_details_to_json(details: DisbursementDetails) -> Dict[str, Any]:
    return {
        "account_id": details.account_id,
        "branch_id": details.branch_id,
        "amount": str(details.amount),
        "processed_at": _iso(details.processed_at),
        "request_id": details.request_id,
    }


def disbursement_details_from_json(data: Dict[str, Any]) -> DisbursementDetails:
    return DisbursementDetails(
        account_id=data["account_id"],
        branch_id=data.get("branch_id"),
        amount=Decimal(data["amount"]),
        processed_at=_parse_dt(data["processed_at"]),
        request_id=data["request_id"],
    )


_ENCODERS = {
    "routing": routing_to_json,
    "scoring": scoring_to_json,
    "decision": decision_to_json,
    "validations": dataclasses.asdict,
    "disbursement_details": disbursement_details_to_json,
}


def application_from_record(row: LoanApplicationRecord) -> LoanApplication:
    return LoanApplication(
        id=row.id,
        tenant_id=row.tenant_id,
        applicant_id=row.applicant_id,
        applicant=applicant_from_json(row.applicant),
        financial=FinancialInfo(**row.financial),
        employment=EmploymentInfo(**row.employment),
        additional=AdditionalInfo(**row.additional),
        consents=Consents(**row.consents),
        status=ApplicationStatus(row.status),
        routing=routing_from_json(row.routing) if row.routing else None,
        scoring=scoring_from_json(row.scoring) if row.scoring else None,
        decision=decision_from_json(row.decision) if row.decision else None,
        validations=ValidationResult(**row.validations) if row.validations else None,
        disbursement_details=(
            disbursement_details_from_json(row.disbursement_details) if row.disbursement_details else None
        ),
        disbursed_at=as_utc(row.disbursed_at) if row.disbursed_at else None,
        created_at=as_utc(row.created_at) if row.created_at else None,
        updated_at=as_utc(row.updated_at) if row.updated_at else None,
    )


# --- Repositories -----------------------------------------------------------


class ApplicationRepository:
    """Loan applications and their child collections, keyed by (tenant, id)"""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        tenant_id: str,
        applicant_id: str,
        applicant: ApplicantInfo,
        financial: FinancialInfo,
        employment: EmploymentInfo,
        additional: AdditionalInfo | None = None,
        consents: Consents | None = None,
        application_id: str | None = None,
    ) -> LoanApplication:
        """Intake: persist a new application in ``pending`` status"""
        row = LoanApplicationRecord(
            id=application_id or new_id(),
            tenant_id=tenant_id,
            applicant_id=applicant_id,
            applicant=applicant_to_json(applicant),
            financial=dataclasses.asdict(financial),
            employment=dataclasses.asdict(employment),
            additional=dataclasses.asdict(additional or AdditionalInfo()),
            consents=dataclasses.asdict(consents or Consents()),
            status=ApplicationStatus.PENDING.value,
            created_at=utc_now(),
            updated_at=utc_now(),
        )
        self.db.add(row)
        self.db.flush()
        return application_from_record(row)

    def _get_row(self, tenant_id: str, application_id: str) -> LoanApplicationRecord:
        row = (
            self.db.query(LoanApplicationRecord)
            .filter(
                LoanApplicationRecord.tenant_id == tenant_id,
                LoanApplicationRecord.id == application_id,
            )
            .first()
        )
        if row is None:
            raise NotFound("LoanApplication", application_id, tenant_id)
        return row

    def get(self, tenant_id: str, application_id: str) -> LoanApplication:
        return application_from_record(self._get_row(tenant_id, application_id))

    def update(self, tenant_id: str, application_id: str, **fields: Any) -> LoanApplication:
        """
        Update top-level fields of an application.

        Domain values (routing, scoring, decision, validations, disbursement
        details, status) are encoded into their stored form. Refuses to touch an
        application whose stored status is already ``disbursed``.
        """
        row = self._get_row(tenant_id, application_id)
        if row.status == ApplicationStatus.DISBURSED.value:
            raise ApplicationFinalized(application_id)

        for name, value in fields.items():
            if name == "status":
                value = ApplicationStatus(value).value
            elif name in _ENCODERS and value is not None:
                value = _ENCODERS[name](value)
            elif not hasattr(LoanApplicationRecord, name):
                raise AttributeError(f"LoanApplication has no field {name}")
            setattr(row, name, value)

        row.updated_at = utc_now()
        self.db.flush()
        return application_from_record(row)

    def append_transition(self, application_id: str, transition: StateTransition) -> None:
        self.db.add(
            StateTransitionRecord(
                application_id=application_id,
                from_status=transition.from_status.value,
                to_status=transition.to_status.value,
                timestamp=transition.timestamp,
                user_id=transition.user_id,
                reason=transition.reason,
            )
        )
        self.db.flush()

    def list_transitions(self, tenant_id: str, application_id: str) -> List[StateTransition]:
        """Transition history, newest first"""
        self._get_row(tenant_id, application_id)
        rows = (
            self.db.query(StateTransitionRecord)
            .filter(StateTransitionRecord.application_id == application_id)
            .order_by(StateTransitionRecord.id.desc())
            .all()
        )
        return [
            StateTransition(
                from_status=ApplicationStatus(r.from_status),
                to_status=ApplicationStatus(r.to_status),
                timestamp=as_utc(r.timestamp),
                user_id=r.user_id,
                reason=r.reason,
            )
            for r in rows
        ]

    def add_schedule(self, application_id: str, entries: List[RepaymentScheduleEntry]) -> None:
        for entry in entries:
            self.db.add(
                RepaymentScheduleEntryRecord(
                    application_id=application_id,
                    installment_number=entry.installment_number,
                    due_date=entry.due_date,
                    principal=entry.principal,
                    interest=entry.interest,
                    total_payment=entry.total_payment,
                    remaining_balance=entry.remaining_balance,
                )
            )
        self.db.flush()

    def list_schedule(self, tenant_id: str, application_id: str) -> List[RepaymentScheduleEntry]:
        self._get_row(tenant_id, application_id)
        rows = (
            self.db.query(RepaymentScheduleEntryRecord)
            .filter(RepaymentScheduleEntryRecord.application_id == application_id)
            .order_by(RepaymentScheduleEntryRecord.installment_number)
            .all()
        )
        return [
            RepaymentScheduleEntry(
                installment_number=r.installment_number,
                due_date=r.due_date,
                principal=Decimal(r.principal),
                interest=Decimal(r.interest),
                total_payment=Decimal(r.total_payment),
                remaining_balance=Decimal(r.remaining_balance),
            )
            for r in rows
        ]

    def add_accounting_entries(self, application_id: str, entries: List[AccountingEntry]) -> None:
        for entry in entries:
            self.db.add(
                AccountingEntryRecord(
                    application_id=application_id,
                    entry_number=entry.entry_number,
                    date=entry.date,
                    description=entry.description,
                    debit_account=entry.debit_account,
                    credit_account=entry.credit_account,
                    amount=entry.amount,
                    reference=entry.reference,
                )
            )
        self.db.flush()

    def list_accounting_entries(self, tenant_id: str, application_id: str) -> List[AccountingEntry]:
        self._get_row(tenant_id, application_id)
        rows = (
            self.db.query(AccountingEntryRecord)
            .filter(AccountingEntryRecord.application_id == application_id)
            .order_by(AccountingEntryRecord.date, AccountingEntryRecord.entry_number)
            .all()
        )
        return [
            AccountingEntry(
                entry_number=r.entry_number,
                date=as_utc(r.date),
                description=r.description,
                debit_account=r.debit_account,
                credit_account=r.credit_account,
                amount=Decimal(r.amount),
                reference=r.reference,
            )
            for r in rows
        ]

    def list_decided(self, tenant_id: str, start: datetime, end: datetime) -> List[LoanApplication]:
        """Applications whose current decision was taken within [start, end]"""
        rows = (
            self.db.query(LoanApplicationRecord)
            .filter(
                LoanApplicationRecord.tenant_id == tenant_id,
                LoanApplicationRecord.decision.isnot(None),
            )
            .all()
        )
        applications = [application_from_record(r) for r in rows]
        start, end = as_utc(start), as_utc(end)
        return [
            a for a in applications
            if a.decision is not None and start <= a.decision.decided_at <= end
        ]


class RoutingRepository:
    """Routing rules, branches and agents"""

    def __init__(self, db: Session):
        self.db = db

    def create_branch(self, tenant_id: str, name: str, district: str, is_active: bool = True) -> Branch:
        row = BranchRecord(tenant_id=tenant_id, name=name, district=district, is_active=is_active)
        self.db.add(row)
        self.db.flush()
        return Branch(id=row.id, tenant_id=tenant_id, name=name, district=district, is_active=is_active)

    def create_agent(
        self,
        tenant_id: str,
        branch_id: str,
        max_concurrent_loans: int,
        current_loan_count: int = 0,
        is_active: bool = True,
    ) -> Agent:
        row = AgentRecord(
            tenant_id=tenant_id,
            branch_id=branch_id,
            max_concurrent_loans=max_concurrent_loans,
            current_loan_count=current_loan_count,
            is_active=is_active,
        )
        self.db.add(row)
        self.db.flush()
        return self._agent(row)

    def create_rule(self, tenant_id: str, district: str, branch_id: str, priority: int) -> RoutingRule:
        row = RoutingRuleRecord(
            tenant_id=tenant_id, district=district, branch_id=branch_id, priority=priority, is_active=True
        )
        self.db.add(row)
        self.db.flush()
        return RoutingRule(
            id=row.id, tenant_id=tenant_id, district=district, branch_id=branch_id, priority=priority
        )

    def top_rule_for_district(self, tenant_id: str, district: str) -> Optional[RoutingRule]:
        row = (
            self.db.query(RoutingRuleRecord)
            .filter(
                RoutingRuleRecord.tenant_id == tenant_id,
                RoutingRuleRecord.district == district,
                RoutingRuleRecord.is_active.is_(True),
            )
            .order_by(RoutingRuleRecord.priority.desc())
            .first()
        )
        if row is None:
            return None
        return RoutingRule(
            id=row.id,
            tenant_id=row.tenant_id,
            district=row.district,
            branch_id=row.branch_id,
            priority=row.priority,
            is_active=row.is_active,
        )

    def find_active_branch(self, tenant_id: str, district: str | None = None) -> Optional[Branch]:
        """First active branch, optionally restricted to a district"""
        query = self.db.query(BranchRecord).filter(
            BranchRecord.tenant_id == tenant_id,
            BranchRecord.is_active.is_(True),
        )
        if district is not None:
            query = query.filter(BranchRecord.district == district)
        row = query.order_by(BranchRecord.created_at, BranchRecord.id).first()
        if row is None:
            return None
        return Branch(
            id=row.id, tenant_id=row.tenant_id, name=row.name, district=row.district, is_active=row.is_active
        )

    def get_agent(self, tenant_id: str, agent_id: str) -> Agent:
        row = (
            self.db.query(AgentRecord)
            .filter(AgentRecord.tenant_id == tenant_id, AgentRecord.id == agent_id)
            .first()
        )
        if row is None:
            raise NotFound("Agent", agent_id, tenant_id)
        return self._agent(row)

    def list_agents_with_capacity(self, tenant_id: str, branch_id: str) -> List[Agent]:
        """Active agents below capacity, least loaded first (ties in creation order)"""
        rows = (
            self.db.query(AgentRecord)
            .filter(
                AgentRecord.tenant_id == tenant_id,
                AgentRecord.branch_id == branch_id,
                AgentRecord.is_active.is_(True),
                AgentRecord.current_loan_count < AgentRecord.max_concurrent_loans,
            )
            .order_by(AgentRecord.current_loan_count, AgentRecord.created_at)
            .all()
        )
        return [self._agent(r) for r in rows]

    def claim_agent_slot(self, tenant_id: str, agent_id: str) -> bool:
        """
        Increment an agent's load only if it is still below capacity.

        The check and increment run as one UPDATE, so two concurrent routings
        cannot both take the last slot. Returns False when the slot was gone.
        """
        updated = (
            self.db.query(AgentRecord)
            .filter(
                AgentRecord.tenant_id == tenant_id,
                AgentRecord.id == agent_id,
                AgentRecord.current_loan_count < AgentRecord.max_concurrent_loans,
            )
            .update(
                {AgentRecord.current_loan_count: AgentRecord.current_loan_count + 1},
                synchronize_session=False,
            )
        )
        self.db.flush()
        return updated == 1

    def adjust_agent_load(self, tenant_id: str, agent_id: str, delta: int) -> bool:
        """Add ``delta`` to the stored count regardless of active flag; never below 0"""
        new_count = AgentRecord.current_loan_count + delta
        updated = (
            self.db.query(AgentRecord)
            .filter(AgentRecord.tenant_id == tenant_id, AgentRecord.id == agent_id)
            .update(
                {AgentRecord.current_loan_count: case((new_count < 0, 0), else_=new_count)},
                synchronize_session=False,
            )
        )
        self.db.flush()
        return updated == 1

    def _agent(self, row: AgentRecord) -> Agent:
        self.db.refresh(row)
        return Agent(
            id=row.id,
            tenant_id=row.tenant_id,
            branch_id=row.branch_id,
            max_concurrent_loans=row.max_concurrent_loans,
            current_loan_count=row.current_loan_count,
            is_active=row.is_active,
        )


class AccountRepository:
    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        tenant_id: str,
        owner_id: str,
        status: str = "active",
        balance: Decimal = Decimal("0.00"),
    ) -> Account:
        row = AccountRecord(tenant_id=tenant_id, owner_id=owner_id, status=status, balance=balance)
        self.db.add(row)
        self.db.flush()
        return self._account(row)

    def get(self, tenant_id: str, account_id: str) -> Optional[Account]:
        row = (
            self.db.query(AccountRecord)
            .filter(AccountRecord.tenant_id == tenant_id, AccountRecord.id == account_id)
            .first()
        )
        return self._account(row) if row is not None else None

    def credit(self, tenant_id: str, account_id: str, amount: Decimal) -> None:
        """Add to the balance in the database, not from a previously read value"""
        (
            self.db.query(AccountRecord)
            .filter(AccountRecord.tenant_id == tenant_id, AccountRecord.id == account_id)
            .update(
                {
                    AccountRecord.balance: AccountRecord.balance + amount,
                    AccountRecord.updated_at: utc_now(),
                },
                synchronize_session=False,
            )
        )
        self.db.flush()

    def _account(self, row: AccountRecord) -> Account:
        self.db.refresh(row)
        return Account(
            id=row.id,
            tenant_id=row.tenant_id,
            owner_id=row.owner_id,
            status=row.status,
            balance=Decimal(row.balance),
        )


class LedgerRepository:
    def __init__(self, db: Session):
        self.db = db

    def post(self, tenant_id: str, transaction: LedgerTransaction) -> None:
        self.db.add(
            LedgerTransactionRecord(
                tenant_id=tenant_id,
                type=transaction.type.value,
                reference=transaction.reference,
                amount=transaction.amount,
                description=transaction.description,
            )
        )
        self.db.flush()

    def list_by_reference(self, tenant_id: str, reference: str) -> List[LedgerTransaction]:
        rows = (
            self.db.query(LedgerTransactionRecord)
            .filter(
                LedgerTransactionRecord.tenant_id == tenant_id,
                LedgerTransactionRecord.reference == reference,
            )
            .order_by(LedgerTransactionRecord.id)
            .all()
        )
        return [
            LedgerTransaction(
                type=LedgerTransactionType(r.type),
                reference=r.reference,
                amount=Decimal(r.amount),
                description=r.description,
            )
            for r in rows
        ]


class DisbursementRepository:
    """Durable idempotency records for disbursement requests"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, request_id: str) -> Optional[DisbursementRecord]:
        row = self.db.get(DisbursementRecordRow, request_id)
        if row is None:
            return None
        return DisbursementRecord(
            request_id=row.request_id,
            tenant_id=row.tenant_id,
            application_id=row.application_id,
            amount=Decimal(row.amount),
            processed_at=as_utc(row.processed_at),
        )

    def create(self, record: DisbursementRecord) -> None:
        self.db.add(
            DisbursementRecordRow(
                request_id=record.request_id,
                tenant_id=record.tenant_id,
                application_id=record.application_id,
                amount=record.amount,
                processed_at=record.processed_at,
            )
        )
        self.db.flush()


class TenantConfigRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_scoring_config(self, tenant_id: str) -> ScoringConfig:
        row = self.db.get(TenantScoringConfigRecord, tenant_id)
        if row is None:
            return DEFAULT_SCORING_CONFIG
        return ScoringConfig(
            version=row.model_version or DEFAULT_SCORING_CONFIG.version,
            weights=dict(DEFAULT_SCORING_CONFIG.weights),
            bands=BandThresholds(a_min=row.band_a_min, b_min=row.band_b_min, c_min=row.band_c_min),
        )

    def set_band_thresholds(
        self, tenant_id: str, bands: BandThresholds, model_version: str | None = None
    ) -> None:
        row = self.db.get(TenantScoringConfigRecord, tenant_id)
        if row is None:
            row = TenantScoringConfigRecord(tenant_id=tenant_id)
            self.db.add(row)
        row.band_a_min = bands.a_min
        row.band_b_min = bands.b_min
        row.band_c_min = bands.c_min
        row.model_version = model_version
        self.db.flush()
