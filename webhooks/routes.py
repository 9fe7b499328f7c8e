"""
Inbound webhook routes.

Route prefix: /webhook
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from api.dependencies import get_gateway
from core.gateway_factory import Gateway

router = APIRouter(tags=["webhooks"])


async def _handle(gateway: Gateway, plugin_id: str, connection_id, request: Request) -> Response:
    body = await request.body()
    result = await gateway.pipeline.handle(plugin_id, connection_id, body, dict(request.headers))
    return Response(content=result.body, status_code=result.status_code, media_type=result.content_type)


@router.post("/{plugin_id}")
async def receive_webhook(
    plugin_id: str,
    request: Request,
    gateway: Gateway = Depends(get_gateway),
) -> Response:
    return await _handle(gateway, plugin_id, None, request)


@router.post("/{plugin_id}/{connection_id}")
async def receive_connection_webhook(
    plugin_id: str,
    connection_id: int,
    request: Request,
    gateway: Gateway = Depends(get_gateway),
) -> Response:
    return await _handle(gateway, plugin_id, connection_id, request)
