"""Integration tests for the audit sink and the notification client"""

import httpx
import pytest
from unittest.mock import AsyncMock, patch
from prometheus_client import REGISTRY
from sqlalchemy.exc import SQLAlchemyError
from conftest import TENANT, stored_status
from microloan_engine.domain.models import ApplicationStatus
from microloan_engine.infrastructure.audit import AuditLogger
from microloan_engine.infrastructure.clients.notifications import NotificationClient, notify_applicant
from microloan_engine.infrastructure.database.models import AuditLogRecord
from microloan_engine.services.state_manager import ApplicationStateMachine

WEBHOOK_URL = "http://notifications.test/send"


def audit_failures() -> float:
    return REGISTRY.get_sample_value("microloan_audit_failures_total") or 0.0


def response(status_code: int) -> httpx.Response:
    return httpx.Response(status_code, request=httpx.Request("POST", WEBHOOK_URL))


@pytest.fixture
def client() -> NotificationClient:
    client = NotificationClient(webhook_url=WEBHOOK_URL)
    client.backoff_base = 0
    return client


def test_audit_event_is_persisted(db, audit, make_application):
    application = make_application(ApplicationStatus.PENDING)

    audit.log(
        actor="analyst-1",
        action="NOTE_ADDED",
        entity_type="LoanApplication",
        entity_id=application.id,
        before=None,
        after={"note": "called applicant"},
        correlation_id="corr-1",
        metadata={"channel": "phone"},
    )
    db.commit()

    row = db.query(AuditLogRecord).filter(AuditLogRecord.action == "NOTE_ADDED").one()
    assert row.actor == "analyst-1"
    assert row.after == {"note": "called applicant"}
    assert row.correlation_id == "corr-1"
    assert row.context == {"channel": "phone"}


def test_audit_failure_does_not_fail_transition(db, make_application):
    application = make_application(ApplicationStatus.PENDING)
    audit = AuditLogger(db)
    failures_before = audit_failures()

    with patch.object(db, "begin_nested", side_effect=SQLAlchemyError("audit table unavailable")):
        ApplicationStateMachine(db, audit).transition_state(
            TENANT, application.id, ApplicationStatus.RECEIVED, "intake"
        )

    assert stored_status(db, application.id) == "received"
    assert audit_failures() == failures_before + 1
    assert db.query(AuditLogRecord).count() == 0


async def test_notification_posts_template_payload(client):
    with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as post:
        post.return_value = response(202)

        await client.send("ana@example.com", "Ana Quispe", "loan_approved", {"application_id": "app-1"})

    post.assert_awaited_once()
    assert post.call_args.args[0] == WEBHOOK_URL
    assert post.call_args.kwargs["json"] == {
        "recipient_email": "ana@example.com",
        "recipient_name": "Ana Quispe",
        "template": "loan_approved",
        "data": {"application_id": "app-1"},
    }


async def test_notification_retries_server_errors(client):
    with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as post:
        post.side_effect = [response(503), response(502), response(200)]

        await client.send("ana@example.com", "Ana Quispe", "loan_observed", {})

    assert post.await_count == 3


async def test_notification_gives_up_after_max_retries(client):
    with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as post:
        post.side_effect = httpx.ConnectError("connection refused")

        with pytest.raises(httpx.ConnectError):
            await client.send("ana@example.com", "Ana Quispe", "loan_rejected", {})

    assert post.await_count == client.max_retries


async def test_notification_does_not_retry_client_errors(client):
    with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as post:
        post.return_value = response(422)

        with pytest.raises(httpx.HTTPStatusError):
            await client.send("ana@example.com", "Ana Quispe", "loan_disbursed", {})

    assert post.await_count == 1


async def test_notify_applicant_swallows_failures(client, make_application):
    application = make_application(ApplicationStatus.APPROVED)

    with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as post:
        post.side_effect = httpx.ConnectError("connection refused")

        delivered = await notify_applicant(client, application, "loan_approved", {})

    assert delivered is False


async def test_notify_applicant_without_sink(make_application):
    application = make_application(ApplicationStatus.APPROVED)

    assert await notify_applicant(None, application, "loan_approved", {}) is False
