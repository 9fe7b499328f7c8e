"""
FastAPI dependencies (shared across routes).
"""

from __future__ import annotations

from typing import Optional

from core.gateway_factory import Gateway, build_gateway

_gateway: Optional[Gateway] = None


def get_gateway() -> Gateway:
    """Process-wide gateway wired to the application database.

    Tests replace it with ``app.dependency_overrides[get_gateway]``.
    """
    global _gateway
    if _gateway is None:
        from database.session import async_session_factory

        _gateway = build_gateway(async_session_factory)
    return _gateway


async def shutdown_gateway() -> None:
    global _gateway
    if _gateway is not None:
        await _gateway.close()
        _gateway = None
