"""
Tests for WebhookIngestionPipeline — event-log lifecycle, signature check,
connection resolution and dispatch.
"""

import json
import logging

import pytest
from sqlalchemy import select

from database.models import WebhookEventLog
from fakes import SIGNING_SECRET, FakeWebhook, add_subscription, make_token
from plugins.signing import sign_payload
from utils.schemas import WebhookEventStatus
from webhooks.dispatcher import EventDispatcher
from webhooks.event_log import WebhookEventLogRepository
from webhooks.matcher import SubscriptionMatcher
from webhooks.pipeline import SIGNATURE_FAILED, WebhookIngestionPipeline


def _body(**fields) -> bytes:
    return json.dumps(fields).encode()


def _signed(body: bytes, header: str = "X-Acme-Signature") -> dict:
    return {header: "sha256=" + sign_payload(SIGNING_SECRET, body), "Content-Type": "application/json"}


async def _logs(session_factory):
    async with session_factory() as session:
        return list((await session.execute(select(WebhookEventLog).order_by(WebhookEventLog.id))).scalars())


@pytest.fixture
def received(handlers):
    events = []
    handlers.register("crm.on_event", events.append)
    return events


@pytest.fixture
def event_log(session_factory):
    return WebhookEventLogRepository(session_factory)


def _pipeline(session_factory, event_log, config_store, vault, registry, handlers, ack_on_error=True):
    dispatcher = EventDispatcher(SubscriptionMatcher(session_factory), handlers=handlers)
    return WebhookIngestionPipeline(
        event_log, config_store, vault, dispatcher, registry, ack_on_error=ack_on_error
    )


@pytest.fixture
async def pipeline(session_factory, event_log, config_store, vault, registry, handlers, acme_config, received):
    registry.register(FakeWebhook())
    await add_subscription(session_factory, target_method="crm.on_event")
    return _pipeline(session_factory, event_log, config_store, vault, registry, handlers)


class TestEventLogLifecycle:
    @pytest.mark.asyncio
    async def test_unknown_plugin_writes_no_log(self, session_factory, event_log, config_store, vault, registry, handlers):
        pipeline = _pipeline(session_factory, event_log, config_store, vault, registry, handlers)
        result = await pipeline.handle("nope", None, b"{}", {})
        assert result.status_code == 404
        assert await _logs(session_factory) == []

    @pytest.mark.asyncio
    async def test_missing_config_fails_log(self, session_factory, event_log, config_store, vault, registry, handlers):
        registry.register(FakeWebhook())
        pipeline = _pipeline(session_factory, event_log, config_store, vault, registry, handlers)
        result = await pipeline.handle("acme", None, b"{}", {})

        assert result.status_code == 404
        [log] = await _logs(session_factory)
        assert log.status == WebhookEventStatus.FAILED.value
        assert log.error_message == "Plugin config not found: acme"

    @pytest.mark.asyncio
    async def test_bad_signature_rejected(self, session_factory, pipeline, received):
        body = _body(type="message", team_id="T1")
        result = await pipeline.handle("acme", None, body, {"X-Acme-Signature": "sha256=forged"})

        assert result.status_code == 403
        [log] = await _logs(session_factory)
        assert log.status == WebhookEventStatus.FAILED.value
        assert log.error_message == SIGNATURE_FAILED
        assert log.payload == body.decode()
        assert received == []

    @pytest.mark.asyncio
    async def test_raising_verifier_rejected(
        self, session_factory, event_log, config_store, vault, registry, handlers, acme_config, received
    ):
        class TimestampedWebhook(FakeWebhook):
            def verify_signature(self, config, payload, headers):
                return int(headers["x-acme-timestamp"]) > 0

        registry.register(TimestampedWebhook())
        await add_subscription(session_factory, target_method="crm.on_event")
        await vault.save_oauth_token(make_token())
        pipeline = _pipeline(session_factory, event_log, config_store, vault, registry, handlers)
        body = _body(type="message", team_id="T1")

        result = await pipeline.handle("acme", None, body, {})

        assert result.status_code == 403
        assert json.loads(result.body) == {"error": "Invalid signature"}
        [log] = await _logs(session_factory)
        assert log.status == WebhookEventStatus.FAILED.value
        assert log.error_message == SIGNATURE_FAILED
        assert received == []

    @pytest.mark.asyncio
    async def test_non_utf8_body_logged_with_warning(self, session_factory, pipeline, caplog):
        body = b'{"type": "message", "text": "\xff"}'
        with caplog.at_level(logging.WARNING, logger="webhooks.pipeline"):
            result = await pipeline.handle("acme", None, body, _signed(body))

        assert result.status_code == 200
        assert "not valid UTF-8" in caplog.text
        [log] = await _logs(session_factory)
        assert "�" in log.payload

    @pytest.mark.asyncio
    async def test_terminal_status_written_once(self, event_log):
        log_id = await event_log.create_received("acme", "{}")
        assert await event_log.mark_success(log_id, event_type="message") is True
        assert await event_log.mark_failed(log_id, "late failure") is False
        log = await event_log.get(log_id)
        assert log.status == WebhookEventStatus.SUCCESS
        assert log.error_message is None
        assert log.processed_at is not None


class TestProcessing:
    @pytest.mark.asyncio
    async def test_event_dispatched_to_tenant_connection(self, session_factory, pipeline, vault, received):
        conn_id = await vault.save_oauth_token(make_token(), company_id="co-1")
        body = _body(type="message", team_id="T1", user="U1", text="hello")

        result = await pipeline.handle("acme", None, body, _signed(body))

        assert (result.status_code, result.body) == (200, '{"status":"ok"}')
        [event] = received
        assert (event.event_type, event.connection_id, event.company_id) == ("message", conn_id, "co-1")
        assert event.external_user_id == "U1"

        [log] = await _logs(session_factory)
        assert log.status == WebhookEventStatus.SUCCESS.value
        assert (log.event_type, log.external_id, log.connection_id) == ("message", "T1", conn_id)

    @pytest.mark.asyncio
    async def test_header_names_case_insensitive(self, pipeline, vault, received):
        await vault.save_oauth_token(make_token())
        body = _body(type="message", team_id="T1")
        result = await pipeline.handle("acme", None, body, _signed(body, header="x-ACME-signature"))
        assert result.status_code == 200
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_url_verification_answered_immediately(self, session_factory, pipeline, vault, received):
        await vault.save_oauth_token(make_token())
        body = _body(type="url_verification", team_id="T1", challenge="c-123")

        result = await pipeline.handle("acme", None, body, _signed(body))

        assert result.status_code == 200
        assert json.loads(result.body) == {"challenge": "c-123"}
        assert received == []
        [log] = await _logs(session_factory)
        assert log.status == WebhookEventStatus.SUCCESS.value

    @pytest.mark.asyncio
    async def test_unknown_tenant_logged_but_not_dispatched(self, session_factory, pipeline, received):
        body = _body(type="message", team_id="T-unknown")
        result = await pipeline.handle("acme", None, body, _signed(body))

        assert result.status_code == 200
        assert received == []
        [log] = await _logs(session_factory)
        assert log.status == WebhookEventStatus.SUCCESS.value
        assert log.connection_id is None

    @pytest.mark.asyncio
    async def test_connection_from_url(self, pipeline, vault, received):
        conn_id = await vault.save_oauth_token(make_token())
        body = _body(type="message")
        result = await pipeline.handle("acme", conn_id, body, _signed(body))
        assert result.status_code == 200
        assert received[0].connection_id == conn_id

    @pytest.mark.asyncio
    async def test_connection_of_other_plugin_ignored(self, pipeline, vault, received):
        conn_id = await vault.save_api_key("other", "X1", "key")
        body = _body(type="message")
        await pipeline.handle("acme", conn_id, body, _signed(body))
        assert received == []

    @pytest.mark.asyncio
    async def test_revoked_connection_ignored(self, pipeline, vault, received):
        conn_id = await vault.save_oauth_token(make_token())
        await vault.revoke_connection(conn_id)
        body = _body(type="message", team_id="T1")
        await pipeline.handle("acme", None, body, _signed(body))
        assert received == []

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_fail_webhook(self, session_factory, pipeline, vault, handlers, received):
        def explode(event):
            raise RuntimeError("subscriber down")

        handlers.register("crm.explode", explode)
        await add_subscription(session_factory, target_method="crm.explode")
        await vault.save_oauth_token(make_token())
        body = _body(type="message", team_id="T1")

        result = await pipeline.handle("acme", None, body, _signed(body))

        assert result.status_code == 200
        assert len(received) == 1
        [log] = await _logs(session_factory)
        assert log.status == WebhookEventStatus.SUCCESS.value


class TestProcessingErrors:
    @pytest.mark.asyncio
    async def test_malformed_payload_acknowledged(self, session_factory, pipeline):
        body = b"not json"
        result = await pipeline.handle("acme", None, body, _signed(body))

        assert (result.status_code, result.body) == (200, '{"status":"accepted"}')
        [log] = await _logs(session_factory)
        assert log.status == WebhookEventStatus.FAILED.value
        assert log.error_message

    @pytest.mark.asyncio
    async def test_malformed_payload_500_without_ack(
        self, session_factory, event_log, config_store, vault, registry, handlers, acme_config
    ):
        registry.register(FakeWebhook())
        pipeline = _pipeline(session_factory, event_log, config_store, vault, registry, handlers, ack_on_error=False)
        body = b"not json"
        result = await pipeline.handle("acme", None, body, _signed(body))

        assert result.status_code == 500
        [log] = await _logs(session_factory)
        assert log.status == WebhookEventStatus.FAILED.value
