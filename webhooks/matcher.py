"""
SubscriptionMatcher — which subscriptions receive a given event.

A subscription matches when plugin_id is equal, event_type and
connection_id are each NULL (wildcard) or equal, and it is enabled.
"""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import WebhookSubscription
from utils.schemas import SubscriptionInfo, WebhookTargetType


def matches(
    subscription: SubscriptionInfo,
    plugin_id: str,
    event_type: Optional[str],
    connection_id: Optional[int],
) -> bool:
    return (
        subscription.enabled
        and subscription.plugin_id == plugin_id
        and (subscription.event_type is None or subscription.event_type == event_type)
        and (subscription.connection_id is None or subscription.connection_id == connection_id)
    )


class SubscriptionMatcher:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def find_matching(
        self,
        plugin_id: str,
        event_type: Optional[str],
        connection_id: Optional[int],
    ) -> List[SubscriptionInfo]:
        stmt = (
            select(WebhookSubscription)
            .where(
                WebhookSubscription.plugin_id == plugin_id,
                WebhookSubscription.enabled.is_(True),
                or_(
                    WebhookSubscription.event_type.is_(None),
                    WebhookSubscription.event_type == event_type,
                ),
                or_(
                    WebhookSubscription.connection_id.is_(None),
                    WebhookSubscription.connection_id == connection_id,
                ),
            )
            .order_by(WebhookSubscription.id)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_to_info(row) for row in result.scalars().all()]


def _to_info(row: WebhookSubscription) -> SubscriptionInfo:
    return SubscriptionInfo(
        id=row.id,
        plugin_id=row.plugin_id,
        event_type=row.event_type,
        connection_id=row.connection_id,
        target_type=WebhookTargetType(row.target_type),
        target_url=row.target_url,
        target_method=row.target_method,
        filter_expr=row.filter_expr,
        retry_policy=row.retry_policy,
        enabled=bool(row.enabled),
    )
