"""Scoring pipeline and automatic/manual credit decisions"""

import logging
from datetime import datetime
from typing import Tuple
from sqlalchemy.orm import Session
from microloan_engine.config import Settings, settings as default_settings
from microloan_engine.domain.decision_policy import DEFAULT_APPROVAL_COMMENT, outcome_for_band
from microloan_engine.domain.exceptions import InvalidState, InvalidTransition, ValidationError
from microloan_engine.domain.models import (
    SYSTEM_ACTOR,
    ApplicationStatus,
    Decision,
    DecisionResult,
    DecisionStatistics,
    LoanApplication,
    ScoringResult,
)
from microloan_engine.domain.scoring import calculate_score
from microloan_engine.domain.state_machine import MANUAL_DECISION_SOURCES, ensure_mutable, is_valid_transition
from microloan_engine.domain.validation import validate_application
from microloan_engine.infrastructure.audit import AuditLogger
from microloan_engine.infrastructure.clients.notifications import (
    LOAN_APPROVED,
    LOAN_OBSERVED,
    LOAN_REJECTED,
    NotificationClient,
    notify_applicant,
)
from microloan_engine.infrastructure.database.repositories import (
    ApplicationRepository,
    TenantConfigRepository,
    decision_to_json,
    scoring_to_json,
)
from microloan_engine.infrastructure.observability.logging import log_decision
from microloan_engine.infrastructure.observability.metrics import record_decision, score_band_counter
from microloan_engine.services.state_manager import ApplicationStateMachine
from microloan_engine.utils.date_utils import utc_now

logger = logging.getLogger(__name__)

MIN_COMMENT_LENGTH = 5

DECISION_TEMPLATES = {
    DecisionResult.APPROVED: LOAN_APPROVED,
    DecisionResult.REJECTED: LOAN_REJECTED,
    DecisionResult.OBSERVED: LOAN_OBSERVED,
}


class DecisionEngine:
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
        self.tenant_config = TenantConfigRepository(db)

    async def score_application(
        self, tenant_id: str, application_id: str, user_id: str
    ) -> Tuple[ScoringResult, Decision]:
        """
        Full scoring cycle for an application under review.

        Flow:
        1. Validate (warnings are stored, they never block scoring)
        2. Move ``in_review -> decision``; an application already in
           ``decision`` is re-scored in place
        3. Score with the tenant's band thresholds and store the result
        4. Take the automatic decision
        5. An ``observed`` outcome parks the application in ``observed``
        """
        try:
            application = self.applications.get(tenant_id, application_id)
            ensure_mutable(application)

            validations = validate_application(application, self.settings)
            if validations.warnings or validations.errors:
                logger.warning(
                    "Application validation findings",
                    extra={
                        "tenant_id": tenant_id,
                        "application_id": application_id,
                        "errors": validations.errors,
                        "warnings": validations.warnings,
                        "reason_codes": validations.reason_codes,
                    },
                )

            if application.status == ApplicationStatus.IN_REVIEW:
                self.state_machine.apply_transition(
                    application, ApplicationStatus.DECISION, user_id, reason="Scoring started"
                )
            elif application.status != ApplicationStatus.DECISION:
                raise InvalidState(application_id, application.status.value, ApplicationStatus.IN_REVIEW.value)

            config = self.tenant_config.get_scoring_config(tenant_id)
            scoring = calculate_score(application, config, self.settings.monthly_interest_rate)
            self.applications.update(tenant_id, application_id, scoring=scoring, validations=validations)
            self.audit.log(
                actor=user_id,
                action="SCORE_CALCULATED",
                entity_type="LoanApplication",
                entity_id=application_id,
                before=scoring_to_json(application.scoring) if application.scoring else None,
                after=scoring_to_json(scoring),
                correlation_id=application_id,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        score_band_counter.labels(band=scoring.band).inc()
        logger.info(
            "Application scored",
            extra={
                "tenant_id": tenant_id,
                "application_id": application_id,
                "score": scoring.score,
                "band": scoring.band,
                "reason_codes": scoring.reason_codes,
            },
        )

        decision = await self.make_automatic_decision(tenant_id, application_id, scoring)
        if decision.result == DecisionResult.OBSERVED:
            self.state_machine.transition_state(
                tenant_id, application_id, ApplicationStatus.OBSERVED, SYSTEM_ACTOR, reason=decision.comments
            )
        return scoring, decision

    async def make_automatic_decision(
        self, tenant_id: str, application_id: str, scoring: ScoringResult
    ) -> Decision:
        """
        Apply the band policy. Never produces ``approved``.

        A rejection also moves the application to ``rejected`` when its current
        status allows it; ``observed`` leaves the status to the caller.
        """
        outcome = outcome_for_band(scoring.band)
        decision = Decision(
            result=outcome.result,
            decided_by=SYSTEM_ACTOR,
            decided_at=utc_now(),
            comments=outcome.comments,
            is_automatic=True,
        )

        try:
            application = self.applications.get(tenant_id, application_id)
            ensure_mutable(application)
            self.applications.update(tenant_id, application_id, decision=decision)
            self._audit_decision(application, decision, SYSTEM_ACTOR, "AUTOMATIC_DECISION")
            if decision.result == DecisionResult.REJECTED and is_valid_transition(
                application.status, ApplicationStatus.REJECTED
            ):
                self.state_machine.apply_transition(
                    application, ApplicationStatus.REJECTED, SYSTEM_ACTOR, reason=decision.comments
                )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        record_decision(decision.result.value, is_automatic=True)
        log_decision(
            tenant_id,
            application_id,
            decision.result.value,
            True,
            SYSTEM_ACTOR,
            band=scoring.band,
            score=scoring.score,
        )
        await self._notify(application, decision)
        return decision

    async def make_manual_decision(
        self,
        tenant_id: str,
        application_id: str,
        result: DecisionResult,
        comments: str | None,
        user_id: str,
    ) -> Decision:
        """
        Record a reviewer's verdict and set the status to the same value.

        Rejections and observations need a comment of at least 5 characters;
        approvals without one get a default comment.
        """
        result = DecisionResult(result)
        comments = (comments or "").strip()

        try:
            application = self.applications.get(tenant_id, application_id)
            ensure_mutable(application)

            if result == DecisionResult.PENDING:
                raise ValidationError("A manual decision must approve, reject or observe", field="result")
            if result in (DecisionResult.REJECTED, DecisionResult.OBSERVED) and len(comments) < MIN_COMMENT_LENGTH:
                raise ValidationError(
                    f"Comments of at least {MIN_COMMENT_LENGTH} characters are required to {result.value} an application",
                    field="comments",
                )
            if not comments:
                comments = DEFAULT_APPROVAL_COMMENT
            if application.status not in MANUAL_DECISION_SOURCES:
                raise InvalidTransition(application.status.value, result.value)

            decision = Decision(
                result=result,
                decided_by=user_id,
                decided_at=utc_now(),
                comments=comments,
                is_automatic=False,
            )
            self.applications.update(tenant_id, application_id, decision=decision)
            self._audit_decision(application, decision, user_id, "MANUAL_DECISION")
            self.state_machine.apply_transition(
                application,
                ApplicationStatus(result.value),
                user_id,
                reason=comments,
                validate=False,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        record_decision(result.value, is_automatic=False)
        log_decision(tenant_id, application_id, result.value, False, user_id)
        await self._notify(application, decision)
        return decision

    def get_decision_statistics(self, tenant_id: str, start: datetime, end: datetime) -> DecisionStatistics:
        """Counts of decisions dated within [start, end]"""
        stats = DecisionStatistics()
        for application in self.applications.list_decided(tenant_id, start, end):
            decision = application.decision
            stats.total += 1
            if decision.result == DecisionResult.APPROVED:
                stats.approved += 1
            elif decision.result == DecisionResult.REJECTED:
                stats.rejected += 1
            elif decision.result == DecisionResult.OBSERVED:
                stats.observed += 1
            if decision.is_automatic:
                stats.automatic += 1
            else:
                stats.manual += 1

        if stats.total:
            stats.approval_rate = stats.approved / stats.total
        return stats

    def _audit_decision(self, application: LoanApplication, decision: Decision, actor: str, action: str) -> None:
        self.audit.log(
            actor=actor,
            action=action,
            entity_type="LoanApplication",
            entity_id=application.id,
            before=decision_to_json(application.decision) if application.decision else None,
            after=decision_to_json(decision),
            correlation_id=application.id,
            metadata={"status": application.status.value},
        )

    async def _notify(self, application: LoanApplication, decision: Decision) -> None:
        template = DECISION_TEMPLATES.get(decision.result)
        if template is None:
            return
        await notify_applicant(
            self.notifier,
            application,
            template,
            {
                "application_id": application.id,
                "loan_amount": application.financial.loan_amount,
                "loan_term_months": application.financial.loan_term_months,
                "decision": decision.result.value,
                "comments": decision.comments,
            },
        )
