"""Idempotent loan disbursement: schedule, accounting entries, ledger postings"""

import time
import logging
from decimal import Decimal
from typing import List, Tuple
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from microloan_engine.config import Settings, settings as default_settings
from microloan_engine.domain.accounting import generate_accounting_entries, generate_ledger_transactions
from microloan_engine.domain.exceptions import (
    AlreadyDisbursed,
    DomainException,
    DuplicateRequest,
    InvalidAccount,
    InvalidLoanTerms,
    InvalidState,
)
from microloan_engine.domain.installments import (
    as_decimal,
    generate_repayment_schedule,
    quantize,
    total_projected_interest,
)
from microloan_engine.domain.models import (
    SYSTEM_ACTOR,
    Account,
    AccountingEntry,
    ApplicationStatus,
    DisbursementDetails,
    DisbursementRecord,
    LoanApplication,
    RepaymentScheduleEntry,
)
from microloan_engine.infrastructure.audit import AuditLogger
from microloan_engine.infrastructure.clients.notifications import (
    LOAN_DISBURSED,
    NotificationClient,
    notify_applicant,
)
from microloan_engine.infrastructure.database.repositories import (
    AccountRepository,
    ApplicationRepository,
    DisbursementRepository,
    LedgerRepository,
    disbursement_details_to_json,
)
from microloan_engine.infrastructure.observability.logging import log_disbursement
from microloan_engine.infrastructure.observability.metrics import record_disbursement, record_disbursement_refused
from microloan_engine.services.state_manager import ApplicationStateMachine
from microloan_engine.utils.date_utils import utc_now

logger = logging.getLogger(__name__)

ACTIVE_ACCOUNT_STATUS = "active"


class DisbursementEngine:
    def __init__(
        self,
        db: Session,
        notifier: NotificationClient | None = None,
        audit: AuditLogger | None = None,
        settings: Settings = default_settings,
    ):
        self.db = db
        self.notifier = notifier
        self.audit = audit or AuditLogger(db)
        self.settings = settings
        self.state_machine = ApplicationStateMachine(db, self.audit)
        self.applications = ApplicationRepository(db)
        self.accounts = AccountRepository(db)
        self.ledger = LedgerRepository(db)
        self.disbursements = DisbursementRepository(db)

    async def disburse_loan(
        self,
        tenant_id: str,
        application_id: str,
        request_id: str,
        destination_account_id: str,
        user_id: str = SYSTEM_ACTOR,
    ) -> None:
        """
        Release the approved principal to the applicant's account.

        Flow:
        1. Check preconditions (request id unused, application approved,
           account active and owned by the applicant, loan terms positive)
        2. Generate the amortization schedule and accounting entries
        3. Post ledger transactions and credit the destination account
        4. Mark the application disbursed and store the idempotency record
        5. Commit all of the above as one transaction
        6. Notify the applicant (best-effort)

        A failed precondition raises before anything is written. A concurrent
        request with the same id loses at commit and gets DuplicateRequest;
        a concurrent request for the same application under another id gets
        AlreadyDisbursed.
        """
        start_time = time.time()

        try:
            application, account = self._check_preconditions(
                tenant_id, application_id, request_id, destination_account_id
            )

            now = utc_now()
            principal = quantize(as_decimal(application.financial.loan_amount))
            schedule = generate_repayment_schedule(
                principal,
                int(application.financial.loan_term_months),
                self.settings.monthly_interest_rate,
                now.date(),
            )
            entries = generate_accounting_entries(
                application.id,
                request_id,
                principal,
                total_projected_interest(schedule),
                application.applicant_name,
                now,
                self.settings,
            )
            self.applications.add_schedule(application.id, schedule)
            self.applications.add_accounting_entries(application.id, entries)

            for transaction in generate_ledger_transactions(application.id, account.id, principal):
                self.ledger.post(tenant_id, transaction)
            self.accounts.credit(tenant_id, account.id, principal)

            details = DisbursementDetails(
                account_id=account.id,
                branch_id=application.routing.branch_id if application.routing else None,
                amount=principal,
                processed_at=now,
                request_id=request_id,
            )
            self.applications.update(tenant_id, application.id, disbursement_details=details, disbursed_at=now)
            self.state_machine.apply_transition(
                application,
                ApplicationStatus.DISBURSED,
                user_id,
                reason=f"Disbursed to account {account.id}",
                correlation_id=request_id,
            )
            self.disbursements.create(
                DisbursementRecord(
                    request_id=request_id,
                    tenant_id=tenant_id,
                    application_id=application.id,
                    amount=principal,
                    processed_at=now,
                )
            )
            self.audit.log(
                actor=user_id,
                action="LOAN_DISBURSED",
                entity_type="LoanApplication",
                entity_id=application.id,
                before=None,
                after=disbursement_details_to_json(details),
                correlation_id=request_id,
                metadata={"installments": len(schedule)},
            )
            self.db.commit()

        except IntegrityError as e:
            # Lost a race: either this request id or this application was disbursed concurrently
            self.db.rollback()
            if self.disbursements.get(request_id) is not None:
                error = DuplicateRequest(request_id)
            else:
                error = AlreadyDisbursed(application_id)
            record_disbursement_refused(type(error).__name__)
            logger.warning(
                f"Disbursement refused: {error}",
                extra={"tenant_id": tenant_id, "application_id": application_id, "request_id": request_id},
            )
            raise error from e

        except DomainException as e:
            self.db.rollback()
            record_disbursement_refused(type(e).__name__)
            logger.warning(
                f"Disbursement refused: {e}",
                extra={"tenant_id": tenant_id, "application_id": application_id, "request_id": request_id},
            )
            raise

        except Exception:
            self.db.rollback()
            raise

        duration_ms = (time.time() - start_time) * 1000
        record_disbursement(principal)
        log_disbursement(tenant_id, application.id, request_id, principal, len(schedule), duration_ms)

        await notify_applicant(
            self.notifier,
            application,
            LOAN_DISBURSED,
            {
                "application_id": application.id,
                "amount": str(principal),
                "account_id": account.id,
                "installments": len(schedule),
                "monthly_payment": str(schedule[0].total_payment),
                "first_due_date": schedule[0].due_date.isoformat(),
            },
        )

    def get_repayment_schedule(self, tenant_id: str, application_id: str) -> List[RepaymentScheduleEntry]:
        return self.applications.list_schedule(tenant_id, application_id)

    def get_accounting_entries(self, tenant_id: str, application_id: str) -> List[AccountingEntry]:
        return self.applications.list_accounting_entries(tenant_id, application_id)

    def _check_preconditions(
        self,
        tenant_id: str,
        application_id: str,
        request_id: str,
        destination_account_id: str,
    ) -> Tuple[LoanApplication, Account]:
        if self.disbursements.get(request_id) is not None:
            raise DuplicateRequest(request_id)

        application = self.applications.get(tenant_id, application_id)
        if application.status == ApplicationStatus.DISBURSED:
            raise AlreadyDisbursed(application_id)
        if application.status != ApplicationStatus.APPROVED:
            raise InvalidState(application_id, application.status.value, ApplicationStatus.APPROVED.value)

        account = self.accounts.get(tenant_id, destination_account_id)
        if account is None:
            raise InvalidAccount(destination_account_id, "account does not exist")
        if account.status != ACTIVE_ACCOUNT_STATUS:
            raise InvalidAccount(destination_account_id, f"account status is {account.status}")
        if account.owner_id != application.applicant_id:
            raise InvalidAccount(destination_account_id, "account belongs to another applicant")

        amount = application.financial.loan_amount
        term = application.financial.loan_term_months
        if not _is_positive_number(amount):
            raise InvalidLoanTerms(application_id, f"loan amount {amount!r} must be a positive number")
        if not _is_positive_number(term) or int(term) != term:
            raise InvalidLoanTerms(application_id, f"loan term {term!r} must be a positive whole number of months")

        return application, account


def _is_positive_number(value) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        return False
    return value > 0
