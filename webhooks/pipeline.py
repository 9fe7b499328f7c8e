"""
WebhookIngestionPipeline — verify, resolve, parse, respond, dispatch, log.

Every request that reaches a plugin with a webhook capability produces
exactly one event-log row: written RECEIVED before any other work, then
moved once to SUCCESS or FAILED.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from credentials.vault import CredentialVault
from plugins.base import WebhookCapability
from plugins.config_store import PluginConfigStore
from plugins.registry import CapabilityRegistry
from utils.schemas import ConnectionInfo, PluginConfig, WebhookResult
from webhooks.dispatcher import EventDispatcher
from webhooks.event_log import WebhookEventLogRepository

logger = logging.getLogger(__name__)

SIGNATURE_FAILED = "signature verification failed"


class WebhookIngestionPipeline:
    def __init__(
        self,
        event_log: WebhookEventLogRepository,
        config_store: PluginConfigStore,
        vault: CredentialVault,
        dispatcher: EventDispatcher,
        registry: Optional[CapabilityRegistry] = None,
        ack_on_error: bool = True,
    ) -> None:
        self._event_log = event_log
        self._config_store = config_store
        self._vault = vault
        self._dispatcher = dispatcher
        self._registry = registry or CapabilityRegistry()
        self._ack_on_error = ack_on_error

    async def handle(
        self,
        plugin_id: str,
        connection_id: Optional[int],
        raw_payload: bytes,
        headers: Mapping[str, str],
    ) -> WebhookResult:
        payload = _decode_payload(plugin_id, raw_payload)
        headers = {k.lower(): v for k, v in headers.items()}
        logger.info("Webhook received: plugin=%s, size=%d", plugin_id, len(raw_payload))

        capability = self._registry.get_webhook(plugin_id)
        if capability is None:
            logger.warning("Webhook capability not found: %s", plugin_id)
            return WebhookResult.error(404, f"Webhook handler not found: {plugin_id}")

        plugin_id = capability.plugin_id
        log_id = await self._event_log.create_received(plugin_id, payload)
        details: Dict[str, Any] = {}

        try:
            config = await self._config_store.get(plugin_id)
            if config is None:
                message = f"Plugin config not found: {plugin_id}"
                await self._event_log.mark_failed(log_id, message)
                return WebhookResult.error(404, message)

            if capability.supports_signature_verification():
                if not self._signature_valid(capability, config, raw_payload, headers):
                    logger.warning("Webhook signature verification failed: plugin=%s", plugin_id)
                    await self._event_log.mark_failed(log_id, SIGNATURE_FAILED)
                    return WebhookResult.error(403, "Invalid signature")

            connection = await self._resolve_connection(
                plugin_id, connection_id, capability, payload, headers
            )
            if connection is not None:
                details["connection_id"] = connection.id

            event = capability.parse_event(payload, headers)
            details["event_type"] = event.event_type
            details["external_id"] = event.external_id
            if connection is not None:
                event = event.with_connection(connection.id, connection.company_id)

            immediate = capability.get_immediate_response(event, payload)

            if event.is_processable() and connection is not None:
                await self._dispatcher.dispatch(event)
            elif connection is None:
                logger.info("No connection for plugin=%s event=%s — not dispatched", plugin_id, event.event_type)

            await self._event_log.mark_success(log_id, **details)
            logger.info("Webhook processed: plugin=%s, event=%s", plugin_id, event.event_type)

            if immediate is not None:
                return WebhookResult.of(immediate)
            return WebhookResult.ok()

        except Exception as exc:
            logger.exception("Webhook processing error: plugin=%s", plugin_id)
            await self._event_log.mark_failed(log_id, str(exc) or type(exc).__name__, **details)
            if self._ack_on_error:
                return WebhookResult.accepted()
            return WebhookResult.error(500, "Webhook processing failed")

    async def _resolve_connection(
        self,
        plugin_id: str,
        connection_id: Optional[int],
        capability: WebhookCapability,
        payload: str,
        headers: Dict[str, str],
    ) -> Optional[ConnectionInfo]:
        if connection_id is not None:
            connection = await self._vault.find_connection(connection_id)
        else:
            external_id = capability.extract_external_id(payload, headers)
            if not external_id or not external_id.strip():
                return None
            connection = await self._vault.find_connection_by_external_id(plugin_id, external_id)

        if connection is None:
            return None
        if connection.plugin_id != plugin_id or not connection.active:
            logger.warning(
                "Connection %s is not an active %s connection — ignored", connection.id, plugin_id
            )
            return None
        return connection

    @staticmethod
    def _signature_valid(
        capability: WebhookCapability,
        config: PluginConfig,
        raw_payload: bytes,
        headers: Dict[str, str],
    ) -> bool:
        # A verifier that raises (missing header, malformed value) rejects the request.
        try:
            return bool(capability.verify_signature(config, raw_payload, headers))
        except Exception as exc:
            logger.warning(
                "Webhook signature verifier raised: plugin=%s, error=%s", capability.plugin_id, exc
            )
            return False


def _decode_payload(plugin_id: str, raw_payload: bytes) -> str:
    try:
        return raw_payload.decode("utf-8")
    except UnicodeDecodeError:
        logger.warning(
            "Webhook body is not valid UTF-8, logging a lossy copy: plugin=%s, size=%d",
            plugin_id,
            len(raw_payload),
        )
        return raw_payload.decode("utf-8", errors="replace")
