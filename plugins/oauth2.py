"""
StandardOAuth2Capability — authorization-code flow over ``httpx``.

Most providers differ only in endpoints, scopes and how the connected
account is identified.  Subclasses set the class attributes and implement
``fetch_identity``; code exchange, PKCE and refresh are handled here.
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import httpx

from plugins.base import OAuthCapability
from utils.errors import OAuthError
from utils.schemas import PluginConfig, TokenInfo

logger = logging.getLogger(__name__)

Identity = Tuple[str, Optional[str], Dict[str, Any]]


class StandardOAuth2Capability(OAuthCapability):
    authorize_url: str = ""
    token_url: str = ""
    scopes: List[str] = []
    scope_separator: str = " "
    pkce: bool = False
    timeout_seconds: float = 10.0

    def __init__(self, client: Optional[httpx.AsyncClient] = None) -> None:
        self._client = client

    def requires_pkce(self) -> bool:
        return self.pkce

    # ── authorize ───────────────────────────────────────────────────────

    def authorization_params(self, config: PluginConfig, state: str, redirect_uri: str) -> Dict[str, str]:
        params = {
            "client_id": config.client_id or "",
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "state": state,
        }
        if self.scopes:
            params["scope"] = self.scope_separator.join(self.scopes)
        challenge = config.metadata.get("code_challenge")
        if challenge:
            params["code_challenge"] = challenge
            params["code_challenge_method"] = config.metadata.get("code_challenge_method", "S256")
        return params

    def build_authorization_url(self, config: PluginConfig, state: str, redirect_uri: str) -> str:
        return f"{self.authorize_url}?{urlencode(self.authorization_params(config, state, redirect_uri))}"

    # ── token endpoint ──────────────────────────────────────────────────

    async def _post_token(self, data: Dict[str, str]) -> Dict[str, Any]:
        if self._client is not None:
            resp = await self._client.post(
                self.token_url, data=data, headers={"Accept": "application/json"}
            )
        else:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                resp = await client.post(
                    self.token_url, data=data, headers={"Accept": "application/json"}
                )
        try:
            payload = resp.json()
        except ValueError as exc:
            raise OAuthError(
                f"{self.plugin_id} token endpoint returned non-JSON (HTTP {resp.status_code})"
            ) from exc
        if resp.status_code >= 400 or "error" in payload or payload.get("ok") is False:
            detail = payload.get("error_description") or payload.get("error") or resp.status_code
            raise OAuthError(f"{self.plugin_id} token request failed: {detail}")
        if not payload.get("access_token"):
            raise OAuthError(f"{self.plugin_id} token response has no access_token")
        return payload

    @staticmethod
    def _expires_at(payload: Dict[str, Any]) -> Optional[datetime]:
        expires_in = payload.get("expires_in")
        if expires_in in (None, ""):
            return None
        return datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))

    async def exchange_code(self, config: PluginConfig, code: str, redirect_uri: str) -> TokenInfo:
        data = {
            "grant_type": "authorization_code",
            "client_id": config.client_id or "",
            "client_secret": config.client_secret or "",
            "code": code,
            "redirect_uri": redirect_uri,
        }
        verifier = config.metadata.get("code_verifier")
        if verifier:
            data["code_verifier"] = verifier

        try:
            payload = await self._post_token(data)
        except httpx.HTTPError as exc:
            raise OAuthError(f"{self.plugin_id} token request failed: {exc}") from exc

        external_id, external_name, metadata = await self.fetch_identity(config, payload)
        return TokenInfo(
            plugin_id=self.plugin_id,
            external_id=external_id,
            external_name=external_name,
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            scope=payload.get("scope"),
            expires_at=self._expires_at(payload),
            metadata=metadata,
        )

    async def refresh_token(self, config: PluginConfig, refresh_token: str) -> Optional[TokenInfo]:
        data = {
            "grant_type": "refresh_token",
            "client_id": config.client_id or "",
            "client_secret": config.client_secret or "",
            "refresh_token": refresh_token,
        }
        try:
            payload = await self._post_token(data)
        except httpx.HTTPError as exc:
            raise OAuthError(f"{self.plugin_id} token refresh failed: {exc}") from exc
        return TokenInfo(
            plugin_id=self.plugin_id,
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            scope=payload.get("scope"),
            expires_at=self._expires_at(payload),
        )

    @abstractmethod
    async def fetch_identity(self, config: PluginConfig, token_payload: Dict[str, Any]) -> Identity:
        """
        Identify the connected account.

        Returns ``(external_id, external_name, metadata)``.  Providers that
        put the account in the token response read it from ``token_payload``;
        others call their profile endpoint with the new access token.
        """
        ...
