"""
Webhook event log — one row per inbound request.

Rows are inserted as RECEIVED and moved to SUCCESS or FAILED by a
conditional UPDATE (``WHERE status = 'RECEIVED'``), so a terminal row is
never rewritten.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import WebhookEventLog
from utils.schemas import EventLogInfo, WebhookEventStatus, as_utc, utcnow

logger = logging.getLogger(__name__)

_MAX_ERROR_LENGTH = 2000


class WebhookEventLogRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create_received(self, plugin_id: str, payload: str, connection_id: Optional[int] = None) -> int:
        async with self._session_factory() as session:
            row = WebhookEventLog(
                plugin_id=plugin_id,
                connection_id=connection_id,
                payload=payload,
                status=WebhookEventStatus.RECEIVED.value,
            )
            session.add(row)
            await session.flush()
            log_id = row.id
            await session.commit()
        return log_id

    async def mark_success(self, log_id: int, **details: Any) -> bool:
        return await self._finish(log_id, WebhookEventStatus.SUCCESS, None, details)

    async def mark_failed(self, log_id: int, message: str, **details: Any) -> bool:
        return await self._finish(log_id, WebhookEventStatus.FAILED, message, details)

    async def _finish(
        self,
        log_id: int,
        status: WebhookEventStatus,
        error_message: Optional[str],
        details: dict,
    ) -> bool:
        """Move a RECEIVED row to ``status``.  False if it was already terminal."""
        values = {k: v for k, v in details.items() if k in ("connection_id", "event_type", "external_id")}
        values.update(
            status=status.value,
            error_message=(error_message or "")[:_MAX_ERROR_LENGTH] or None,
            processed_at=utcnow(),
        )
        async with self._session_factory() as session:
            result = await session.execute(
                update(WebhookEventLog)
                .where(
                    WebhookEventLog.id == log_id,
                    WebhookEventLog.status == WebhookEventStatus.RECEIVED.value,
                )
                .values(**values)
            )
            await session.commit()
        if result.rowcount != 1:
            logger.error("Event log %s already terminal — %s ignored", log_id, status.value)
            return False
        return True

    async def get(self, log_id: int) -> Optional[EventLogInfo]:
        async with self._session_factory() as session:
            row = await session.get(WebhookEventLog, log_id)
            return _to_info(row) if row else None

    async def list_logs(
        self,
        plugin_id: Optional[str] = None,
        status: Optional[WebhookEventStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[EventLogInfo]:
        stmt = select(WebhookEventLog).order_by(WebhookEventLog.id.desc()).limit(limit).offset(offset)
        if plugin_id is not None:
            stmt = stmt.where(WebhookEventLog.plugin_id == plugin_id)
        if status is not None:
            stmt = stmt.where(WebhookEventLog.status == status.value)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_to_info(r) for r in result.scalars().all()]


def _to_info(row: WebhookEventLog) -> EventLogInfo:
    return EventLogInfo(
        id=row.id,
        plugin_id=row.plugin_id,
        connection_id=row.connection_id,
        event_type=row.event_type,
        external_id=row.external_id,
        payload=row.payload,
        status=WebhookEventStatus(row.status),
        error_message=row.error_message,
        processed_at=as_utc(row.processed_at),
        created_at=as_utc(row.created_at),
    )
