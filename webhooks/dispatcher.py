"""
EventDispatcher — fans a parsed webhook event out to matching subscriptions.

Deliveries run concurrently (bounded by a semaphore), each under its own
timeout.  A failing subscription is logged and reported in its
``DispatchOutcome``; it never affects the others and ``dispatch`` never raises.
Retry is not performed: ``retry_policy`` is stored but inert.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import List, Optional

import httpx

from utils.schemas import DispatchOutcome, SubscriptionInfo, WebhookEvent, WebhookTargetType
from webhooks.handlers import InternalHandlerRegistry
from webhooks.matcher import SubscriptionMatcher

logger = logging.getLogger(__name__)


class SubscriptionFilter(ABC):
    """
    Extension point for ``filter_expr``.

    No expression language is defined; ``PassThroughFilter`` lets every
    event through.  Implement ``evaluate`` to plug one in.
    """

    @abstractmethod
    def evaluate(self, filter_expr: Optional[str], event: WebhookEvent) -> bool:
        ...


class PassThroughFilter(SubscriptionFilter):
    def evaluate(self, filter_expr: Optional[str], event: WebhookEvent) -> bool:
        return True


class DeliveryError(Exception):
    pass


class EventDispatcher:
    def __init__(
        self,
        matcher: SubscriptionMatcher,
        handlers: Optional[InternalHandlerRegistry] = None,
        client: Optional[httpx.AsyncClient] = None,
        subscription_filter: Optional[SubscriptionFilter] = None,
        max_workers: int = 8,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._matcher = matcher
        self._handlers = handlers or InternalHandlerRegistry()
        self._client = client
        self._owns_client = client is None
        self._filter = subscription_filter or PassThroughFilter()
        self._max_workers = max(1, max_workers)
        self._timeout = timeout_seconds

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def dispatch(self, event: WebhookEvent) -> List[DispatchOutcome]:
        try:
            subscriptions = await self._matcher.find_matching(
                event.plugin_id, event.event_type, event.connection_id
            )
        except Exception:
            logger.exception(
                "Subscription lookup failed: plugin=%s, event=%s", event.plugin_id, event.event_type
            )
            return []

        logger.debug(
            "Found %d subscriptions for plugin=%s, event=%s, connection=%s",
            len(subscriptions),
            event.plugin_id,
            event.event_type,
            event.connection_id,
        )
        if not subscriptions:
            return []

        semaphore = asyncio.Semaphore(self._max_workers)

        async def _bounded(subscription: SubscriptionInfo) -> DispatchOutcome:
            async with semaphore:
                return await self._dispatch_one(subscription, event)

        return list(await asyncio.gather(*(_bounded(s) for s in subscriptions)))

    async def _dispatch_one(self, subscription: SubscriptionInfo, event: WebhookEvent) -> DispatchOutcome:
        outcome = DispatchOutcome(
            subscription_id=subscription.id,
            target_type=subscription.target_type,
            delivered=False,
        )
        try:
            if not self._filter.evaluate(subscription.filter_expr, event):
                outcome.skipped = True
                return outcome
            await asyncio.wait_for(self._deliver(subscription, event), timeout=self._timeout)
            outcome.delivered = True
        except asyncio.TimeoutError:
            outcome.error = f"Timed out after {self._timeout}s"
            logger.error("Dispatch timed out: subscriptionId=%s", subscription.id)
        except Exception as exc:
            outcome.error = str(exc) or type(exc).__name__
            logger.error(
                "Dispatch failed: subscriptionId=%s, error=%s", subscription.id, outcome.error
            )
        return outcome

    async def _deliver(self, subscription: SubscriptionInfo, event: WebhookEvent) -> None:
        if subscription.target_type == WebhookTargetType.HTTP:
            await self._deliver_http(subscription, event)
        elif subscription.target_type == WebhookTargetType.INTERNAL:
            await self._deliver_internal(subscription, event)
        else:
            raise DeliveryError(f"Unsupported target type: {subscription.target_type}")

    async def _deliver_http(self, subscription: SubscriptionInfo, event: WebhookEvent) -> None:
        url = subscription.target_url
        if not url:
            raise DeliveryError("HTTP subscription has no target_url")

        logger.info("Dispatching to HTTP: url=%s, event=%s", url, event.event_type)
        start = time.perf_counter()
        try:
            response = await self._ensure_client().post(url, json=event.model_dump(mode="json"))
        except httpx.HTTPError as exc:
            raise DeliveryError(f"HTTP dispatch failed: {exc}") from exc

        if not 200 <= response.status_code < 300:
            raise DeliveryError(f"HTTP dispatch failed: {url} returned {response.status_code}")
        logger.info(
            "HTTP dispatch success: url=%s, status=%s, %.3fs",
            url,
            response.status_code,
            time.perf_counter() - start,
        )

    async def _deliver_internal(self, subscription: SubscriptionInfo, event: WebhookEvent) -> None:
        name = subscription.target_method or ""
        logger.info("Dispatching to internal: method=%s, event=%s", name, event.event_type)
        await self._handlers.invoke(name, event)
        logger.info("Internal dispatch success: method=%s", name)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
