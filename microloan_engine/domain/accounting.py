"""Accounting entries and ledger postings for a disbursement"""

from datetime import datetime
from decimal import Decimal
from typing import List
from microloan_engine.config import Settings, settings as default_settings
from microloan_engine.domain.installments import quantize
from microloan_engine.domain.models import AccountingEntry, LedgerTransaction, LedgerTransactionType


def generate_accounting_entries(
    application_id: str,
    request_id: str,
    principal: Decimal,
    projected_interest: Decimal,
    applicant_name: str,
    posted_at: datetime,
    settings: Settings = default_settings,
) -> List[AccountingEntry]:
    """
    Two balanced pairs:
    - principal: debit loan portfolio / credit cash
    - projected interest: debit interest receivable / credit interest income

    Entry numbers derive from the request id so regenerating yields the same entries.
    """
    return [
        AccountingEntry(
            entry_number=f"DISB-{request_id}",
            date=posted_at,
            description=f"Loan disbursement - {applicant_name}",
            debit_account=settings.portfolio_account,
            credit_account=settings.cash_account,
            amount=quantize(principal),
            reference=application_id,
        ),
        AccountingEntry(
            entry_number=f"INT-{request_id}",
            date=posted_at,
            description=f"Interest receivable - {applicant_name}",
            debit_account=settings.interest_receivable_account,
            credit_account=settings.interest_income_account,
            amount=quantize(projected_interest),
            reference=application_id,
        ),
    ]


def generate_ledger_transactions(
    application_id: str,
    account_id: str,
    principal: Decimal,
) -> List[LedgerTransaction]:
    amount = quantize(principal)
    return [
        LedgerTransaction(
            type=LedgerTransactionType.DISBURSEMENT,
            reference=application_id,
            amount=amount,
            description=f"Disbursement of loan {application_id}",
        ),
        LedgerTransaction(
            type=LedgerTransactionType.ACCOUNT_CREDIT,
            reference=account_id,
            amount=amount,
            description=f"Credit from loan {application_id}",
        ),
    ]
