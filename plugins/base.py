"""
Capability contracts implemented by plugins.

A plugin provides any subset of three capabilities, each keyed by its
``plugin_id``:

  • OAuthCapability    — authorization URL, code exchange, refresh
  • WebhookCapability  — signature check, tenant resolution, event parsing
  • ExecutorCapability — named actions run with a stored credential
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from utils.schemas import (
    ExecuteRequest,
    ExecuteResponse,
    ImmediateResponse,
    PluginConfig,
    TokenInfo,
    WebhookEvent,
)


class OAuthCapability(ABC):
    """Abstract base for OAuth2 install flows."""

    @property
    @abstractmethod
    def plugin_id(self) -> str:
        """Unique slug: 'slack', 'jira', 'google-calendar', …"""
        ...

    @abstractmethod
    def build_authorization_url(self, config: PluginConfig, state: str, redirect_uri: str) -> str:
        """
        Build the provider's authorization URL.

        When PKCE is required, ``config.metadata`` carries ``code_challenge``
        and ``code_challenge_method``.
        """
        ...

    @abstractmethod
    async def exchange_code(self, config: PluginConfig, code: str, redirect_uri: str) -> TokenInfo:
        """
        Exchange the authorization code for tokens.

        ``config.metadata["code_verifier"]`` is set when PKCE is required.
        Raises ``OAuthError`` when the provider rejects the request.
        """
        ...

    async def refresh_token(self, config: PluginConfig, refresh_token: str) -> Optional[TokenInfo]:
        """
        Exchange a refresh token for a new access token.

        Returns None when the provider has no refresh flow.
        """
        return None

    def requires_pkce(self) -> bool:
        return False


class WebhookCapability(ABC):
    """Abstract base for inbound webhook handling."""

    @property
    @abstractmethod
    def plugin_id(self) -> str:
        ...

    def supports_signature_verification(self) -> bool:
        return False

    def verify_signature(self, config: PluginConfig, payload: bytes, headers: Dict[str, str]) -> bool:
        """Only called when ``supports_signature_verification()`` is True."""
        return True

    @abstractmethod
    def extract_external_id(self, payload: str, headers: Dict[str, str]) -> Optional[str]:
        """Identify the tenant (workspace, site, account) the payload belongs to."""
        ...

    @abstractmethod
    def parse_event(self, payload: str, headers: Dict[str, str]) -> WebhookEvent:
        ...

    def get_immediate_response(self, event: WebhookEvent, payload: str) -> Optional[ImmediateResponse]:
        """Response the provider expects synchronously, e.g. a URL verification challenge."""
        return None


class ExecutorCapability(ABC):
    """Abstract base for action execution against the provider API."""

    @property
    @abstractmethod
    def plugin_id(self) -> str:
        ...

    @abstractmethod
    def supported_actions(self) -> List[str]:
        ...

    def supports_action(self, action: str) -> bool:
        return action in self.supported_actions()

    @abstractmethod
    async def execute(self, request: ExecuteRequest) -> ExecuteResponse:
        ...
