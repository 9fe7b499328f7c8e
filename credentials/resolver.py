"""
CredentialResolver — attaches the stored credential to an execute request.
"""

from __future__ import annotations

import logging

from credentials.vault import CredentialVault
from utils.schemas import ExecuteRequest

logger = logging.getLogger(__name__)

EXTERNAL_ID_PARAMS = ("externalId", "external_id")


class CredentialResolver:
    def __init__(self, vault: CredentialVault) -> None:
        self._vault = vault

    async def enrich(self, request: ExecuteRequest) -> ExecuteRequest:
        """
        Return ``request`` with its credential filled in.

        1. A request that already carries a credential passes through.
        2. No external id → returned unchanged (some actions need no credential).
        3. Expired credential → one refresh attempt; on failure the stale
           credential is used and the provider reports its own auth error.
        """
        if request.credential is not None:
            return request

        external_id = request.get_string_param(*EXTERNAL_ID_PARAMS)
        if external_id is None:
            logger.warning(
                "Skipping credential enrichment: missing externalId for plugin=%s, action=%s",
                request.plugin_id,
                request.action,
            )
            return request

        credential = await self._vault.get_credential_info(request.plugin_id, external_id)
        if credential is None:
            logger.info("No credential for %s/%s", request.plugin_id, external_id)
            return request

        if self._vault.is_expired(credential):
            refreshed = await self._vault.refresh_and_save(request.plugin_id, external_id)
            if refreshed is not None:
                credential = refreshed
            else:
                logger.warning(
                    "Using stale credential for %s/%s — refresh unavailable",
                    request.plugin_id,
                    external_id,
                )

        return request.model_copy(update={"credential": credential})
