"""Application status graph - the single source of truth for legal transitions"""

from typing import Dict, FrozenSet, List
from microloan_engine.domain.exceptions import ApplicationFinalized, InvalidTransition
from microloan_engine.domain.models import ApplicationStatus, LoanApplication

S = ApplicationStatus

TRANSITIONS: Dict[ApplicationStatus, FrozenSet[ApplicationStatus]] = {
    S.PENDING: frozenset({S.RECEIVED}),
    S.RECEIVED: frozenset({S.ROUTED, S.REJECTED}),
    S.ROUTED: frozenset({S.IN_REVIEW, S.REJECTED}),
    S.IN_REVIEW: frozenset({S.DECISION, S.OBSERVED, S.REJECTED}),
    S.DECISION: frozenset({S.APPROVED, S.REJECTED, S.OBSERVED}),
    S.APPROVED: frozenset({S.DISBURSED}),
    S.OBSERVED: frozenset({S.IN_REVIEW}),
    S.REJECTED: frozenset(),
    S.DISBURSED: frozenset(),
}

TERMINAL_STATES = frozenset(status for status, targets in TRANSITIONS.items() if not targets)

# A reviewer's verdict may land on any decision result from these states
MANUAL_DECISION_SOURCES = frozenset({S.IN_REVIEW, S.DECISION, S.OBSERVED})


def is_valid_transition(from_status: ApplicationStatus, to_status: ApplicationStatus) -> bool:
    return ApplicationStatus(to_status) in TRANSITIONS.get(ApplicationStatus(from_status), frozenset())


def valid_next_states(status: ApplicationStatus) -> List[ApplicationStatus]:
    return sorted(TRANSITIONS[ApplicationStatus(status)], key=lambda s: list(ApplicationStatus).index(s))


def is_terminal(status: ApplicationStatus) -> bool:
    return ApplicationStatus(status) in TERMINAL_STATES


def ensure_mutable(application: LoanApplication) -> None:
    """Every write path calls this first: disbursed applications never change"""
    if application.is_finalized:
        raise ApplicationFinalized(application.id)


def ensure_transition(from_status: ApplicationStatus, to_status: ApplicationStatus) -> None:
    if not is_valid_transition(from_status, to_status):
        raise InvalidTransition(ApplicationStatus(from_status).value, ApplicationStatus(to_status).value)
