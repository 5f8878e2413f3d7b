"""Branch and loan-officer assignment"""

import logging
from sqlalchemy.orm import Session
from microloan_engine.domain.exceptions import InvalidState, NoBranchAvailable, ValidationError
from microloan_engine.domain.models import SYSTEM_ACTOR, ApplicationStatus, LoanApplication, RoutingInfo
from microloan_engine.domain.state_machine import ensure_mutable
from microloan_engine.infrastructure.audit import AuditLogger
from microloan_engine.infrastructure.database.repositories import (
    ApplicationRepository,
    RoutingRepository,
    routing_to_json,
)
from microloan_engine.infrastructure.observability.metrics import routing_counter
from microloan_engine.services.state_manager import ApplicationStateMachine
from microloan_engine.utils.date_utils import utc_now

logger = logging.getLogger(__name__)


class RoutingAssigner:
    def __init__(
        self,
        db: Session,
        audit: AuditLogger | None = None,
        state_machine: ApplicationStateMachine | None = None,
    ):
        self.db = db
        self.audit = audit or AuditLogger(db)
        self.state_machine = state_machine or ApplicationStateMachine(db, self.audit)
        self.applications = ApplicationRepository(db)
        self.routing = RoutingRepository(db)

    def route_application(self, tenant_id: str, district: str) -> RoutingInfo:
        """
        Resolve a branch for ``district`` and claim a slot on its least loaded agent.

        Branch resolution order:
        1. Active routing rule for the district with the highest priority
        2. Active branch located in the district
        3. Any active branch of the tenant

        When every agent at the branch is at capacity the routing still
        succeeds with ``agent_id=None``.
        """
        try:
            routing = self._route(tenant_id, district)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return routing

    def route_received_application(self, tenant_id: str, application_id: str, user_id: str) -> LoanApplication:
        """Route a ``received`` application by its applicant's district and move it to ``routed``"""
        try:
            application = self.applications.get(tenant_id, application_id)
            ensure_mutable(application)
            if application.status != ApplicationStatus.RECEIVED:
                raise InvalidState(application_id, application.status.value, ApplicationStatus.RECEIVED.value)

            routing = self._route(tenant_id, application.applicant.district)
            self.applications.update(tenant_id, application_id, routing=routing)
            self.audit.log(
                actor=user_id,
                action="APPLICATION_ROUTED",
                entity_type="LoanApplication",
                entity_id=application_id,
                before=None,
                after=routing_to_json(routing),
                correlation_id=application_id,
            )
            updated = self.state_machine.apply_transition(
                application,
                ApplicationStatus.ROUTED,
                user_id,
                reason=f"Assigned to branch {routing.branch_id}",
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return updated

    def reassign_agent(self, tenant_id: str, application_id: str, new_agent_id: str, user_id: str) -> RoutingInfo:
        """
        Hand an application to another agent.

        The previous agent's counter is decremented (never below 0) and the new
        agent's incremented in the same transaction, whether or not either agent
        is still active.
        """
        try:
            application = self.applications.get(tenant_id, application_id)
            ensure_mutable(application)
            if application.routing is None:
                raise ValidationError(f"Application {application_id} has not been routed", field="routing")

            new_agent = self.routing.get_agent(tenant_id, new_agent_id)
            previous = application.routing
            if previous.agent_id == new_agent.id:
                return previous

            if previous.agent_id is not None:
                self.routing.adjust_agent_load(tenant_id, previous.agent_id, -1)
            self.routing.adjust_agent_load(tenant_id, new_agent.id, 1)

            routing = RoutingInfo(
                branch_id=new_agent.branch_id,
                agent_id=new_agent.id,
                assigned_at=utc_now(),
                district=previous.district,
            )
            self.applications.update(tenant_id, application_id, routing=routing)
            self.audit.log(
                actor=user_id,
                action="AGENT_REASSIGNED",
                entity_type="LoanApplication",
                entity_id=application_id,
                before=routing_to_json(previous),
                after=routing_to_json(routing),
                correlation_id=application_id,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Agent reassigned",
            extra={
                "tenant_id": tenant_id,
                "application_id": application_id,
                "previous_agent_id": previous.agent_id,
                "agent_id": new_agent.id,
            },
        )
        return routing

    def create_routing_rule(self, tenant_id: str, district: str, branch_id: str, priority: int) -> str:
        try:
            rule = self.routing.create_rule(tenant_id, district, branch_id, priority)
            self.audit.log(
                actor=SYSTEM_ACTOR,
                action="ROUTING_RULE_CREATED",
                entity_type="RoutingRule",
                entity_id=rule.id,
                before=None,
                after={"district": district, "branch_id": branch_id, "priority": priority},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return rule.id

    def _route(self, tenant_id: str, district: str) -> RoutingInfo:
        branch_id = self._resolve_branch(tenant_id, district)
        agent_id = self._claim_agent(tenant_id, branch_id)

        routing_counter.labels(outcome="assigned" if agent_id else "unassigned").inc()
        if agent_id is None:
            logger.warning(
                "No agent with capacity at branch",
                extra={"tenant_id": tenant_id, "branch_id": branch_id, "district": district},
            )

        return RoutingInfo(
            branch_id=branch_id,
            agent_id=agent_id,
            assigned_at=utc_now() if agent_id else None,
            district=district,
        )

    def _resolve_branch(self, tenant_id: str, district: str) -> str:
        rule = self.routing.top_rule_for_district(tenant_id, district)
        if rule is not None:
            return rule.branch_id

        branch = self.routing.find_active_branch(tenant_id, district)
        if branch is None:
            branch = self.routing.find_active_branch(tenant_id)
        if branch is None:
            raise NoBranchAvailable(tenant_id, district)
        return branch.id

    def _claim_agent(self, tenant_id: str, branch_id: str) -> str | None:
        # Least loaded first; a lost race moves on to the next candidate
        for agent in self.routing.list_agents_with_capacity(tenant_id, branch_id):
            if self.routing.claim_agent_slot(tenant_id, agent.id):
                return agent.id
        return None
