"""
OAuthInstallOrchestrator — drives the install → provider consent → callback flow.

  start_install    plugin checks → state (+ PKCE challenge) → authorization URL
  handle_callback  plugin checks → consume PKCE verifier → consume state →
                   code exchange → CredentialVault.save_oauth_token

State and verifier are consumed before the code exchange, so a callback can
never be replayed even when the exchange itself fails.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from credentials.vault import CredentialVault
from oauth.pkce import CODE_CHALLENGE_METHOD, PkceStore
from oauth.state import StateStore
from plugins.base import OAuthCapability
from plugins.config_store import PluginConfigStore
from plugins.registry import CapabilityRegistry
from utils.errors import ErrorCode, OAuthInstallError
from utils.schemas import PluginConfig, ScopeType

logger = logging.getLogger(__name__)

DEFAULT_STATE_TTL = timedelta(minutes=10)


class OAuthInstallOrchestrator:
    def __init__(
        self,
        state_store: StateStore,
        pkce_store: PkceStore,
        config_store: PluginConfigStore,
        vault: CredentialVault,
        registry: Optional[CapabilityRegistry] = None,
        state_ttl: timedelta = DEFAULT_STATE_TTL,
    ) -> None:
        self._state_store = state_store
        self._pkce_store = pkce_store
        self._config_store = config_store
        self._vault = vault
        self._registry = registry or CapabilityRegistry()
        self._state_ttl = state_ttl

    async def start_install(self, plugin_id: str, redirect_uri: str) -> str:
        """Return the provider authorization URL the browser should be sent to."""
        capability = self._require_capability(plugin_id)
        config = await self._require_config(capability.plugin_id)

        state = await self._state_store.generate_and_store(capability.plugin_id, self._state_ttl)
        if capability.requires_pkce():
            challenge = await self._pkce_store.generate_and_store_challenge(state, self._state_ttl)
            config = config.with_metadata(
                code_challenge=challenge,
                code_challenge_method=CODE_CHALLENGE_METHOD,
            )
            logger.debug("PKCE enabled for plugin: %s", plugin_id)

        authorization_url = capability.build_authorization_url(config, state, redirect_uri)
        logger.info("Starting OAuth for plugin: %s", plugin_id)
        return authorization_url

    async def handle_callback(
        self,
        plugin_id: str,
        code: Optional[str],
        state: Optional[str],
        redirect_uri: str,
        error: Optional[str] = None,
        company_id: Optional[str] = None,
        user_id: Optional[str] = None,
        scope: ScopeType = ScopeType.WORKSPACE,
    ) -> int:
        """Complete the install and return the connection id."""
        if error:
            logger.warning("OAuth error for plugin %s: %s", plugin_id, error)
            raise OAuthInstallError(400, ErrorCode.PROVIDER_ERROR, f"Installation failed: {error}")

        capability = self._require_capability(plugin_id)
        config = await self._require_config(capability.plugin_id)

        code_verifier = None
        if capability.requires_pkce():
            code_verifier = await self._pkce_store.consume_code_verifier(state or "")
            if code_verifier is None:
                logger.warning("PKCE code_verifier not found for plugin %s", plugin_id)
                raise OAuthInstallError(
                    400, ErrorCode.PKCE_INVALID, "Invalid PKCE state. Please try again."
                )

        if not await self._state_store.validate_and_consume(capability.plugin_id, state or ""):
            logger.warning("Invalid state for plugin %s", plugin_id)
            raise OAuthInstallError(400, ErrorCode.STATE_INVALID, "Invalid state. Please try again.")

        if not code:
            raise OAuthInstallError(400, ErrorCode.CODE_MISSING, "Missing authorization code.")

        if code_verifier is not None:
            config = config.with_metadata(code_verifier=code_verifier)

        try:
            token_info = await capability.exchange_code(config, code, redirect_uri)
            connection_id = await self._vault.save_oauth_token(
                token_info, company_id=company_id, user_id=user_id, scope=scope
            )
        except Exception as exc:
            logger.exception("OAuth failed for plugin %s: %s", plugin_id, exc)
            raise OAuthInstallError(
                500, ErrorCode.INSTALL_FAILED, f"Installation failed: {exc}"
            ) from exc

        logger.info(
            "OAuth successful for plugin %s: %s (%s) - connectionId=%s",
            plugin_id,
            token_info.external_name,
            token_info.external_id,
            connection_id,
        )
        return connection_id

    # ── checks ──────────────────────────────────────────────────────────

    def _require_capability(self, plugin_id: str) -> OAuthCapability:
        capability = self._registry.get_oauth(plugin_id)
        if capability is None:
            logger.warning("OAuth capability not found for plugin: %s", plugin_id)
            raise OAuthInstallError(404, ErrorCode.PLUGIN_UNKNOWN, f"Unknown plugin: {plugin_id}")
        return capability

    async def _require_config(self, plugin_id: str) -> PluginConfig:
        config = await self._config_store.get(plugin_id)
        if config is None:
            logger.warning("Plugin config not found: %s", plugin_id)
            raise OAuthInstallError(
                404, ErrorCode.PLUGIN_NOT_CONFIGURED, f"Plugin not configured: {plugin_id}"
            )
        return config
