"""Audit-log sink: one row per business event, mirrored to the audit logger"""

import logging
from typing import Any, Dict, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from microloan_engine.infrastructure.database.models import AuditLogRecord
from microloan_engine.infrastructure.observability.logging import get_audit_logger
from microloan_engine.infrastructure.observability.metrics import audit_failure_counter

logger = logging.getLogger(__name__)


class AuditLogger:
    """Writes audit events inside the caller's transaction.

    Each insert runs in a SAVEPOINT so a failed audit write is rolled back on
    its own and never fails the operation that triggered it.
    """

    def __init__(self, db: Session):
        self.db = db
        self.audit_log = get_audit_logger()

    def log(
        self,
        actor: str,
        action: str,
        entity_type: str,
        entity_id: str,
        before: Optional[Dict[str, Any]],
        after: Optional[Dict[str, Any]],
        correlation_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        try:
            with self.db.begin_nested():
                self.db.add(
                    AuditLogRecord(
                        actor=actor,
                        action=action,
                        entity_type=entity_type,
                        entity_id=entity_id,
                        before=before,
                        after=after,
                        correlation_id=correlation_id,
                        context=metadata,
                    )
                )
        except SQLAlchemyError:
            audit_failure_counter.inc()
            logger.exception(
                "Audit write failed",
                extra={"action": action, "entity_type": entity_type, "entity_id": entity_id},
            )
            return

        self.audit_log.info(
            action,
            extra={
                "actor": actor,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "before": before,
                "after": after,
                "correlation_id": correlation_id,
            },
        )
