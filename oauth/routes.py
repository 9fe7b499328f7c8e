"""
OAuth install routes — start install and provider callback.

Route prefix: /oauth
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse, RedirectResponse, Response

from api.dependencies import get_gateway
from config.settings import config
from core.gateway_factory import Gateway
from utils.errors import OAuthInstallError
from utils.schemas import ScopeType

logger = logging.getLogger(__name__)

router = APIRouter(tags=["oauth"])


def _redirect_uri(request: Request, plugin_id: str) -> str:
    base = config.oauth_redirect_base or str(request.base_url)
    return f"{base.rstrip('/')}/oauth/{plugin_id}/callback"


@router.get("/{plugin_id}/install")
async def start_install(
    plugin_id: str,
    request: Request,
    gateway: Gateway = Depends(get_gateway),
) -> Response:
    """Redirect the browser to the provider's consent screen."""
    try:
        authorization_url = await gateway.orchestrator.start_install(
            plugin_id, _redirect_uri(request, plugin_id)
        )
    except OAuthInstallError as exc:
        return PlainTextResponse(exc.message, status_code=exc.status_code)
    return RedirectResponse(authorization_url, status_code=302)


@router.get("/{plugin_id}/callback")
async def oauth_callback(
    plugin_id: str,
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    company_id: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    gateway: Gateway = Depends(get_gateway),
) -> PlainTextResponse:
    """Provider redirects here after consent."""
    try:
        await gateway.orchestrator.handle_callback(
            plugin_id,
            code,
            state,
            _redirect_uri(request, plugin_id),
            error=error,
            company_id=company_id,
            user_id=user_id,
            scope=ScopeType.USER if user_id else ScopeType.WORKSPACE,
        )
    except OAuthInstallError as exc:
        return PlainTextResponse(exc.message, status_code=exc.status_code)
    return PlainTextResponse("Installation successful! You can close this window.")
