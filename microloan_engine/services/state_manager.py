"""Application status transitions: validated, logged, audited"""

import logging
from typing import List
from sqlalchemy.orm import Session
from microloan_engine.domain.models import ApplicationStatus, LoanApplication, StateTransition
from microloan_engine.domain.state_machine import (
    ensure_mutable,
    ensure_transition,
    is_terminal,
    valid_next_states,
)
from microloan_engine.infrastructure.audit import AuditLogger
from microloan_engine.infrastructure.database.repositories import ApplicationRepository, RoutingRepository
from microloan_engine.infrastructure.observability.metrics import state_transition_counter
from microloan_engine.utils.date_utils import utc_now

logger = logging.getLogger(__name__)


class ApplicationStateMachine:
    def __init__(self, db: Session, audit: AuditLogger | None = None):
        self.db = db
        self.audit = audit or AuditLogger(db)
        self.applications = ApplicationRepository(db)
        self.routing = RoutingRepository(db)

    def transition_state(
        self,
        tenant_id: str,
        application_id: str,
        new_status: ApplicationStatus,
        user_id: str,
        reason: str | None = None,
    ) -> None:
        """
        Move an application to ``new_status`` and commit.

        Raises NotFound, ApplicationFinalized or InvalidTransition; on any
        failure the session is rolled back and the status is unchanged.
        """
        try:
            application = self.applications.get(tenant_id, application_id)
            self.apply_transition(application, new_status, user_id, reason)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def apply_transition(
        self,
        application: LoanApplication,
        new_status: ApplicationStatus,
        user_id: str,
        reason: str | None = None,
        correlation_id: str | None = None,
        validate: bool = True,
    ) -> LoanApplication:
        """
        Write a transition inside the caller's unit of work (no commit).

        ``validate=False`` skips the transition table for the manual decision
        path; the finalized guard always applies.
        """
        ensure_mutable(application)
        new_status = ApplicationStatus(new_status)
        if validate:
            ensure_transition(application.status, new_status)

        previous = application.status
        updated = self.applications.update(application.tenant_id, application.id, status=new_status)
        self.applications.append_transition(
            application.id,
            StateTransition(
                from_status=previous,
                to_status=new_status,
                timestamp=utc_now(),
                user_id=user_id,
                reason=reason,
            ),
        )
        self.audit.log(
            actor=user_id,
            action="STATUS_CHANGED",
            entity_type="LoanApplication",
            entity_id=application.id,
            before={"status": previous.value},
            after={"status": new_status.value},
            correlation_id=correlation_id,
            metadata={"reason": reason} if reason else None,
        )

        if is_terminal(new_status):
            self._release_agent(updated)

        state_transition_counter.labels(from_status=previous.value, to_status=new_status.value).inc()
        logger.info(
            "Application status changed",
            extra={
                "tenant_id": application.tenant_id,
                "application_id": application.id,
                "from_status": previous.value,
                "to_status": new_status.value,
                "user_id": user_id,
            },
        )
        return updated

    def get_transition_history(self, tenant_id: str, application_id: str) -> List[StateTransition]:
        """Transitions, newest first"""
        return self.applications.list_transitions(tenant_id, application_id)

    def valid_next_states(self, tenant_id: str, application_id: str) -> List[ApplicationStatus]:
        application = self.applications.get(tenant_id, application_id)
        return valid_next_states(application.status)

    def _release_agent(self, application: LoanApplication) -> None:
        # Closed applications no longer count against the officer's load
        if application.routing is None or application.routing.agent_id is None:
            return
        self.routing.adjust_agent_load(application.tenant_id, application.routing.agent_id, -1)
