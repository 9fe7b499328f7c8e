"""
Centralised gateway builder.

Every entry point (the FastAPI app, tests, scripts) calls `build_gateway`
so the wiring between stores, vault, orchestrator and webhook pipeline
lives in exactly one place.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import Settings, config
from credentials.resolver import CredentialResolver
from credentials.vault import CredentialVault
from oauth.orchestrator import OAuthInstallOrchestrator
from oauth.pkce import PkceStore
from oauth.state import StateStore
from oauth.ttl_store import InMemoryTTLStore, RedisTTLStore, TTLStore
from plugins.config_store import PluginConfigStore
from plugins.executor import ExecutorService
from plugins.registry import CapabilityRegistry
from webhooks.dispatcher import EventDispatcher, SubscriptionFilter
from webhooks.event_log import WebhookEventLogRepository
from webhooks.handlers import InternalHandlerRegistry
from webhooks.matcher import SubscriptionMatcher
from webhooks.pipeline import WebhookIngestionPipeline


@dataclass
class Gateway:
    registry: CapabilityRegistry
    config_store: PluginConfigStore
    vault: CredentialVault
    orchestrator: OAuthInstallOrchestrator
    resolver: CredentialResolver
    executor: ExecutorService
    event_log: WebhookEventLogRepository
    matcher: SubscriptionMatcher
    dispatcher: EventDispatcher
    pipeline: WebhookIngestionPipeline
    ttl_backend: TTLStore

    async def close(self) -> None:
        await self.dispatcher.close()
        if isinstance(self.ttl_backend, RedisTTLStore):
            await self.ttl_backend.close()


def build_ttl_backend(settings: Settings) -> TTLStore:
    if settings.oauth_store_backend == "redis":
        return RedisTTLStore.from_url(settings.redis_url, settings.oauth_store_key_prefix)
    if settings.oauth_store_backend != "memory":
        raise ValueError(f"Unknown OAUTH_STORE_BACKEND: {settings.oauth_store_backend}")
    return InMemoryTTLStore()


def build_gateway(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    settings: Settings = config,
    registry: Optional[CapabilityRegistry] = None,
    handlers: Optional[InternalHandlerRegistry] = None,
    ttl_backend: Optional[TTLStore] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    subscription_filter: Optional[SubscriptionFilter] = None,
) -> Gateway:
    registry = registry or CapabilityRegistry()
    ttl_backend = ttl_backend or build_ttl_backend(settings)

    config_store = PluginConfigStore(session_factory)
    vault = CredentialVault(session_factory, config_store, registry)
    orchestrator = OAuthInstallOrchestrator(
        StateStore(ttl_backend),
        PkceStore(ttl_backend),
        config_store,
        vault,
        registry,
        state_ttl=timedelta(seconds=settings.oauth_state_ttl_seconds),
    )
    resolver = CredentialResolver(vault)
    event_log = WebhookEventLogRepository(session_factory)
    matcher = SubscriptionMatcher(session_factory)
    dispatcher = EventDispatcher(
        matcher,
        handlers=handlers,
        client=http_client,
        subscription_filter=subscription_filter,
        max_workers=settings.dispatch_max_workers,
        timeout_seconds=settings.dispatch_timeout_seconds,
    )
    pipeline = WebhookIngestionPipeline(
        event_log,
        config_store,
        vault,
        dispatcher,
        registry,
        ack_on_error=settings.webhook_ack_on_error,
    )
    return Gateway(
        registry=registry,
        config_store=config_store,
        vault=vault,
        orchestrator=orchestrator,
        resolver=resolver,
        executor=ExecutorService(resolver, registry),
        event_log=event_log,
        matcher=matcher,
        dispatcher=dispatcher,
        pipeline=pipeline,
        ttl_backend=ttl_backend,
    )
