"""
Pydantic schemas shared across the gateway: plugin config, tokens,
credentials, webhook events and execute requests.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════════


class ScopeType(str, Enum):
    WORKSPACE = "WORKSPACE"
    USER = "USER"


class ConnectionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    REVOKED = "REVOKED"


class PluginStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class WebhookEventStatus(str, Enum):
    RECEIVED = "RECEIVED"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class WebhookTargetType(str, Enum):
    HTTP = "HTTP"
    INTERNAL = "INTERNAL"


# ═══════════════════════════════════════════════════════════════════════════════
# Plugin config / OAuth tokens
# ═══════════════════════════════════════════════════════════════════════════════


class PluginConfig(BaseModel):
    """Per-plugin client configuration handed to capabilities."""

    plugin_id: str
    display_name: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    secrets: Dict[str, str] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def get_secret(self, name: str) -> Optional[str]:
        return self.secrets.get(name)

    def with_metadata(self, **extra: Any) -> "PluginConfig":
        """Return a copy with ``extra`` merged into metadata."""
        merged = dict(self.metadata)
        merged.update(extra)
        return self.model_copy(update={"metadata": merged})


class TokenInfo(BaseModel):
    """Normalized result of a code exchange or a refresh."""

    plugin_id: str
    external_id: str = ""
    external_name: Optional[str] = None
    access_token: str
    refresh_token: Optional[str] = None
    scope: Optional[str] = None
    expires_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class CredentialInfo(BaseModel):
    """Decrypted credential material for one connection."""

    connection_id: Optional[int] = None
    plugin_id: Optional[str] = None
    external_id: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    scope: Optional[str] = None
    expires_at: Optional[datetime] = None
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ConnectionInfo(BaseModel):
    id: int
    plugin_id: str
    scope: ScopeType = ScopeType.WORKSPACE
    company_id: Optional[str] = None
    user_id: Optional[str] = None
    external_id: str
    external_name: Optional[str] = None
    status: ConnectionStatus
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def active(self) -> bool:
        return self.status == ConnectionStatus.ACTIVE


# ═══════════════════════════════════════════════════════════════════════════════
# Webhooks
# ═══════════════════════════════════════════════════════════════════════════════

# Handshake / liveness events that carry nothing to deliver.
NON_PROCESSABLE_EVENT_TYPES = frozenset(
    {"url_verification", "ping", "verification", "challenge", "unknown"}
)


class WebhookEvent(BaseModel):
    plugin_id: str
    event_type: str
    external_id: Optional[str] = None
    external_user_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)
    data: Dict[str, Any] = Field(default_factory=dict)
    connection_id: Optional[int] = None
    company_id: Optional[str] = None

    def is_processable(self) -> bool:
        return bool(self.event_type) and self.event_type not in NON_PROCESSABLE_EVENT_TYPES

    def with_connection(self, connection_id: int, company_id: Optional[str]) -> "WebhookEvent":
        return self.model_copy(update={"connection_id": connection_id, "company_id": company_id})


class ImmediateResponse(BaseModel):
    """Response a provider expects in the same turn (e.g. a URL handshake)."""

    status_code: int = 200
    content_type: str = "application/json"
    body: str = ""


class WebhookResult(BaseModel):
    status_code: int
    content_type: str = "application/json"
    body: str
    processed: bool = False

    @classmethod
    def ok(cls) -> "WebhookResult":
        return cls(status_code=200, body='{"status":"ok"}', processed=True)

    @classmethod
    def accepted(cls) -> "WebhookResult":
        return cls(status_code=200, body='{"status":"accepted"}')

    @classmethod
    def error(cls, status_code: int, message: str) -> "WebhookResult":
        return cls(status_code=status_code, body=json.dumps({"error": message}))

    @classmethod
    def of(cls, response: ImmediateResponse) -> "WebhookResult":
        return cls(
            status_code=response.status_code,
            content_type=response.content_type or "application/json",
            body=response.body,
            processed=True,
        )


class SubscriptionInfo(BaseModel):
    id: int
    plugin_id: str
    event_type: Optional[str] = None
    connection_id: Optional[int] = None
    target_type: WebhookTargetType
    target_url: Optional[str] = None
    target_method: Optional[str] = None
    filter_expr: Optional[str] = None
    retry_policy: Optional[Dict[str, Any]] = None
    enabled: bool = True


class DispatchOutcome(BaseModel):
    subscription_id: int
    target_type: WebhookTargetType
    delivered: bool
    skipped: bool = False
    error: Optional[str] = None


class EventLogInfo(BaseModel):
    id: int
    plugin_id: str
    connection_id: Optional[int] = None
    event_type: Optional[str] = None
    external_id: Optional[str] = None
    payload: str
    status: WebhookEventStatus
    error_message: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


# ═══════════════════════════════════════════════════════════════════════════════
# Execute
# ═══════════════════════════════════════════════════════════════════════════════


class ExecuteRequest(BaseModel):
    plugin_id: str
    action: str
    params: Dict[str, Any] = Field(default_factory=dict)
    credential: Optional[CredentialInfo] = None

    def get_string_param(self, *names: str) -> Optional[str]:
        for name in names:
            value = self.params.get(name)
            if value is not None and str(value).strip():
                return str(value)
        return None


class ExecuteResponse(BaseModel):
    success: bool
    status_code: int = 200
    body: Any = None
    error: Optional[str] = None

    @classmethod
    def failure(cls, status_code: int, error: str) -> "ExecuteResponse":
        return cls(success=False, status_code=status_code, error=error)


class ApiKeyConnectionRequest(BaseModel):
    plugin_id: str
    external_id: str
    external_name: Optional[str] = None
    api_key: str
    api_secret: Optional[str] = None
    company_id: Optional[str] = None
    user_id: Optional[str] = None
    scope: ScopeType = ScopeType.WORKSPACE
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PluginSummary(BaseModel):
    plugin_id: str
    oauth: bool = False
    webhook: bool = False
    executor: bool = False
    actions: List[str] = Field(default_factory=list)
