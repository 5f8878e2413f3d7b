"""Notification sink client with exponential backoff retry logic"""

import logging
import httpx
import asyncio
from typing import Dict, Any
from microloan_engine.config import settings
from microloan_engine.domain.models import LoanApplication
from microloan_engine.infrastructure.observability.metrics import (
    notification_failure_counter,
    notification_latency_histogram,
)

logger = logging.getLogger(__name__)

LOAN_APPROVED = "loan_approved"
LOAN_REJECTED = "loan_rejected"
LOAN_OBSERVED = "loan_observed"
LOAN_DISBURSED = "loan_disbursed"


class NotificationClient:
    """Client for the outbound email/notification service"""

    def __init__(self, webhook_url: str | None = None, timeout: float | None = None):
        self.webhook_url = webhook_url or settings.notification_webhook_url
        self.timeout = timeout or settings.http_timeout_seconds
        self.max_retries = settings.notification_max_retries
        self.backoff_base = settings.notification_backoff_base

    async def send(
        self,
        recipient_email: str,
        recipient_name: str,
        template: str,
        data: Dict[str, Any],
    ) -> None:
        """
        Deliver one templated notification.

        Retry strategy:
        - Exponential backoff: 0.5s, 1s, 2s (base * 2^attempt)
        - Retries on 5xx errors and network failures
        - Raises the last error once retries are exhausted; callers treat
          delivery as best-effort
        """
        payload = {
            "recipient_email": recipient_email,
            "recipient_name": recipient_name,
            "template": template,
            "data": data,
        }
        attempt = 0
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            while True:
                try:
                    with notification_latency_histogram.time():
                        response = await client.post(self.webhook_url, json=payload)
                        response.raise_for_status()
                        return  # Success

                except httpx.HTTPStatusError as e:
                    attempt += 1
                    # 4xx will not succeed on retry
                    if e.response.status_code < 500 or attempt >= self.max_retries:
                        raise
                except httpx.RequestError:
                    attempt += 1
                    if attempt >= self.max_retries:
                        raise

                backoff = self.backoff_base * (2 ** (attempt - 1))
                await asyncio.sleep(backoff)


async def notify_applicant(
    notifier: NotificationClient | None,
    application: LoanApplication,
    template: str,
    data: Dict[str, Any],
) -> bool:
    """Fire a notification without letting a delivery failure escape"""
    if notifier is None:
        return False
    try:
        await notifier.send(application.applicant.email, application.applicant_name, template, data)
        return True
    except Exception:
        notification_failure_counter.labels(template=template).inc()
        logger.warning(
            "Notification delivery failed",
            exc_info=True,
            extra={"tenant_id": application.tenant_id, "application_id": application.id, "template": template},
        )
        return False
