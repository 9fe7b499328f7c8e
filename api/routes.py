"""
Management REST routes — plugins, connections, webhook logs, execute.

Route prefix: /api/v1
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from api.dependencies import get_gateway
from core.gateway_factory import Gateway
from utils.errors import ErrorCode, NotFoundError, ValidationError
from utils.schemas import (
    ApiKeyConnectionRequest,
    ConnectionInfo,
    EventLogInfo,
    ExecuteRequest,
    PluginSummary,
    WebhookEventStatus,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/plugins")
async def list_plugins(gateway: Gateway = Depends(get_gateway)) -> List[PluginSummary]:
    """Registered plugins and the capabilities each provides."""
    return gateway.registry.describe()


@router.get("/connections")
async def list_connections(
    company_id: Optional[str] = Query(None),
    plugin_id: Optional[str] = Query(None),
    include_revoked: bool = Query(False),
    gateway: Gateway = Depends(get_gateway),
) -> List[ConnectionInfo]:
    return await gateway.vault.list_connections(
        company_id=company_id, plugin_id=plugin_id, active_only=not include_revoked
    )


@router.post("/connections/api-key", status_code=201)
async def create_api_key_connection(
    body: ApiKeyConnectionRequest,
    gateway: Gateway = Depends(get_gateway),
) -> Dict[str, Any]:
    if not body.external_id.strip() or not body.api_key.strip():
        raise ValidationError("external_id and api_key must not be blank")
    connection_id = await gateway.vault.save_api_key(
        body.plugin_id,
        body.external_id,
        body.api_key,
        api_secret=body.api_secret,
        external_name=body.external_name,
        metadata=body.metadata,
        company_id=body.company_id,
        user_id=body.user_id,
        scope=body.scope,
    )
    return {"connection_id": connection_id}


@router.delete("/connections/{connection_id}")
async def revoke_connection(
    connection_id: int,
    hard: bool = Query(False),
    gateway: Gateway = Depends(get_gateway),
) -> Dict[str, Any]:
    """Revoke a connection; `hard=true` deletes it with its credentials instead."""
    if hard:
        found = await gateway.vault.delete_connection(connection_id)
    else:
        found = await gateway.vault.revoke_connection(connection_id)
    if not found:
        raise NotFoundError(
            f"Connection not found: {connection_id}", code=ErrorCode.CONNECTION_NOT_FOUND
        )
    return {"status": "deleted" if hard else "revoked", "connection_id": connection_id}


@router.get("/webhook-logs")
async def list_webhook_logs(
    plugin_id: Optional[str] = Query(None),
    status: Optional[WebhookEventStatus] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    gateway: Gateway = Depends(get_gateway),
) -> List[EventLogInfo]:
    return await gateway.event_log.list_logs(plugin_id=plugin_id, status=status, limit=limit, offset=offset)


@router.get("/webhook-logs/{log_id}")
async def get_webhook_log(log_id: int, gateway: Gateway = Depends(get_gateway)) -> EventLogInfo:
    log = await gateway.event_log.get(log_id)
    if log is None:
        raise NotFoundError(f"Webhook log not found: {log_id}", code=ErrorCode.LOG_NOT_FOUND)
    return log


@router.post("/execute")
async def execute(body: ExecuteRequest, gateway: Gateway = Depends(get_gateway)) -> JSONResponse:
    """Run a plugin action; the HTTP status mirrors the action result."""
    result = await gateway.executor.execute(body)
    return JSONResponse(result.model_dump(mode="json"), status_code=result.status_code)
