"""
ExecutorService — validates and runs a plugin action with its credential.
"""

from __future__ import annotations

import logging
from typing import Optional

from credentials.resolver import CredentialResolver
from plugins.registry import CapabilityRegistry
from utils.schemas import ExecuteRequest, ExecuteResponse

logger = logging.getLogger(__name__)


class ExecutorService:
    def __init__(self, resolver: CredentialResolver, registry: Optional[CapabilityRegistry] = None) -> None:
        self._resolver = resolver
        self._registry = registry or CapabilityRegistry()

    async def execute(self, request: ExecuteRequest) -> ExecuteResponse:
        if not request.plugin_id or not request.plugin_id.strip():
            return ExecuteResponse.failure(400, "pluginId is required")

        executor = self._registry.get_executor(request.plugin_id)
        if executor is None:
            return ExecuteResponse.failure(404, f"Plugin not found: {request.plugin_id}")

        if not request.action or not request.action.strip():
            return ExecuteResponse.failure(400, "action is required")
        if not executor.supports_action(request.action):
            return ExecuteResponse.failure(400, f"Unsupported action: {request.action}")

        enriched = await self._resolver.enrich(request)
        try:
            logger.debug("Executing plugin=%s action=%s", request.plugin_id, request.action)
            return await executor.execute(enriched)
        except Exception as exc:
            logger.exception("Plugin execution failed: %s/%s", request.plugin_id, request.action)
            return ExecuteResponse.failure(500, f"Execution failed: {exc}")
