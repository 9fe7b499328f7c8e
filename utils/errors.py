"""
Gateway error taxonomy.

Every error carries an HTTP status and a short machine code so routes can
translate it without inspecting messages.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    PLUGIN_UNKNOWN = "PLUGIN_UNKNOWN"
    PLUGIN_NOT_CONFIGURED = "PLUGIN_NOT_CONFIGURED"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    CODE_MISSING = "CODE_MISSING"
    STATE_INVALID = "STATE_INVALID"
    PKCE_INVALID = "PKCE_INVALID"
    INSTALL_FAILED = "INSTALL_FAILED"
    INVALID_REQUEST = "INVALID_REQUEST"
    CONNECTION_NOT_FOUND = "CONNECTION_NOT_FOUND"
    LOG_NOT_FOUND = "LOG_NOT_FOUND"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class GatewayError(Exception):
    status_code: int = 500
    default_code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        *,
        code: Optional[ErrorCode] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"error": self.code.value, "message": self.message}


class NotFoundError(GatewayError):
    status_code = 404
    default_code = ErrorCode.PLUGIN_UNKNOWN


class ValidationError(GatewayError):
    status_code = 400
    default_code = ErrorCode.INVALID_REQUEST


class UpstreamError(GatewayError):
    status_code = 500
    default_code = ErrorCode.UPSTREAM_ERROR


class OAuthError(UpstreamError):
    """Raised by OAuth capabilities when the provider rejects a token request."""


class OAuthInstallError(GatewayError):
    """Install / callback failure surfaced to the browser as plain text."""

    def __init__(self, status_code: int, code: ErrorCode, message: str) -> None:
        super().__init__(message, code=code, status_code=status_code)
