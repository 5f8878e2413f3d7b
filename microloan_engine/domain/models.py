"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional


class ApplicationStatus(str, Enum):
    """Lifecycle status of a loan application"""

    PENDING = "pending"
    RECEIVED = "received"
    ROUTED = "routed"
    IN_REVIEW = "in_review"
    DECISION = "decision"
    APPROVED = "approved"
    REJECTED = "rejected"
    OBSERVED = "observed"
    DISBURSED = "disbursed"


class DecisionResult(str, Enum):
    """Outcome of a scoring/review cycle"""

    APPROVED = "approved"
    REJECTED = "rejected"
    OBSERVED = "observed"
    PENDING = "pending"


class LedgerTransactionType(str, Enum):
    DISBURSEMENT = "DISBURSEMENT"
    ACCOUNT_CREDIT = "ACCOUNT_CREDIT"


SYSTEM_ACTOR = "SYSTEM"


@dataclass
class ApplicantInfo:
    """Identity and contact snapshot taken at intake"""

    first_name: str
    last_name: str
    email: str
    district: str
    document_number: str = ""
    mobile_phone: str = ""
    birth_date: Optional[date] = None


@dataclass
class FinancialInfo:
    monthly_income: float
    loan_amount: float
    loan_term_months: int
    current_debts: float = 0.0
    loan_purpose: str = ""


@dataclass
class EmploymentInfo:
    employment_type: str  # employee | business_owner | retiree | independent | other
    contract_type: Optional[str] = None  # indefinite | temporary
    years_employed: int = 0
    months_employed: int = 0
    employer_name: str = ""


@dataclass
class AdditionalInfo:
    has_credit_history: bool = False
    has_bank_account: bool = False


@dataclass
class Consents:
    accept_terms: bool = False
    authorize_credit_check: bool = False
    confirm_truthfulness: bool = False


@dataclass
class RoutingInfo:
    """Branch/agent ownership of an application"""

    branch_id: str
    agent_id: Optional[str]  # None when no agent at the branch has capacity
    assigned_at: Optional[datetime]
    district: str


@dataclass(frozen=True)
class ScoringDetails:
    """Breakdown of the five weighted sub-scores"""

    income_score: int
    debt_to_income_score: int
    employment_score: int
    employment_type_score: int
    credit_history_score: int


@dataclass(frozen=True)
class ScoringResult:
    """Output of the scoring engine"""

    score: int
    band: str
    reason_codes: List[str]
    model_version: str
    calculated_at: datetime
    details: ScoringDetails


@dataclass(frozen=True)
class Decision:
    result: DecisionResult
    decided_by: str
    decided_at: datetime
    comments: str
    is_automatic: bool


@dataclass(frozen=True)
class StateTransition:
    """Append-only status change record"""

    from_status: ApplicationStatus
    to_status: ApplicationStatus
    timestamp: datetime
    user_id: str
    reason: Optional[str] = None


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    reason_codes: List[str] = field(default_factory=list)


@dataclass
class DisbursementDetails:
    account_id: str
    branch_id: Optional[str]
    amount: Decimal
    processed_at: datetime
    request_id: str


@dataclass
class LoanApplication:
    """Aggregate root for a credit application"""

    id: str
    tenant_id: str
    applicant_id: str
    applicant: ApplicantInfo
    financial: FinancialInfo
    employment: EmploymentInfo
    additional: AdditionalInfo = field(default_factory=AdditionalInfo)
    consents: Consents = field(default_factory=Consents)
    status: ApplicationStatus = ApplicationStatus.PENDING
    routing: Optional[RoutingInfo] = None
    scoring: Optional[ScoringResult] = None
    decision: Optional[Decision] = None
    validations: Optional[ValidationResult] = None
    disbursement_details: Optional[DisbursementDetails] = None
    disbursed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def applicant_name(self) -> str:
        return f"{self.applicant.first_name} {self.applicant.last_name}".strip()

    @property
    def is_finalized(self) -> bool:
        return self.status == ApplicationStatus.DISBURSED


@dataclass
class Branch:
    id: str
    tenant_id: str
    name: str
    district: str
    is_active: bool = True


@dataclass
class Agent:
    """Loan officer with a soft capacity counter"""

    id: str
    tenant_id: str
    branch_id: str
    max_concurrent_loans: int
    current_loan_count: int = 0
    is_active: bool = True


@dataclass
class RoutingRule:
    id: str
    tenant_id: str
    district: str
    branch_id: str
    priority: int
    is_active: bool = True


@dataclass
class Account:
    """Destination deposit account for a disbursement"""

    id: str
    tenant_id: str
    owner_id: str
    status: str  # pending | active | blocked | closed | rejected
    balance: Decimal = Decimal("0.00")


@dataclass(frozen=True)
class RepaymentScheduleEntry:
    """Single installment in a repayment schedule"""

    installment_number: int
    due_date: date
    principal: Decimal
    interest: Decimal
    total_payment: Decimal
    remaining_balance: Decimal


@dataclass(frozen=True)
class AccountingEntry:
    """Double-entry bookkeeping line pair"""

    entry_number: str
    date: datetime
    description: str
    debit_account: str
    credit_account: str
    amount: Decimal
    reference: str


@dataclass(frozen=True)
class LedgerTransaction:
    type: LedgerTransactionType
    reference: str
    amount: Decimal
    description: str


@dataclass(frozen=True)
class DisbursementRecord:
    """Idempotency marker keyed by request id"""

    request_id: str
    tenant_id: str
    application_id: str
    amount: Decimal
    processed_at: datetime


@dataclass
class DecisionStatistics:
    total: int = 0
    approved: int = 0
    rejected: int = 0
    observed: int = 0
    automatic: int = 0
    manual: int = 0
    approval_rate: float = 0.0
