"""Structured JSON logging for production observability"""

import logging
import sys
from decimal import Decimal
from typing import Any, Dict
from pythonjsonlogger import jsonlogger
from microloan_engine.config import settings
from microloan_engine.utils.date_utils import utc_now

AUDIT_LOGGER_NAME = "microloan_engine.audit"


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = utc_now().isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def get_audit_logger() -> logging.Logger:
    return logging.getLogger(AUDIT_LOGGER_NAME)


def log_decision(
    tenant_id: str,
    application_id: str,
    result: str,
    is_automatic: bool,
    decided_by: str,
    band: str | None = None,
    score: int | None = None,
) -> None:
    """Log structured decision outcome for analysis"""
    logging.getLogger("microloan_engine.decisions").info(
        "Decision completed",
        extra={
            "tenant_id": tenant_id,
            "application_id": application_id,
            "step": "decision_complete",
            "decision_result": result,
            "is_automatic": is_automatic,
            "decided_by": decided_by,
            "band": band,
            "score": score,
        },
    )


def log_disbursement(
    tenant_id: str,
    application_id: str,
    request_id: str,
    amount: Decimal,
    installments: int,
    duration_ms: float,
) -> None:
    """Log structured disbursement outcome"""
    logging.getLogger("microloan_engine.disbursements").info(
        "Disbursement completed",
        extra={
            "tenant_id": tenant_id,
            "application_id": application_id,
            "request_id": request_id,
            "step": "disbursement_complete",
            "amount": str(amount),
            "installments": installments,
            "duration_ms": duration_ms,
        },
    )
