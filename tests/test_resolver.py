"""
Tests for CredentialResolver.enrich.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from credentials.resolver import CredentialResolver
from utils.schemas import CredentialInfo, ExecuteRequest

STORED = CredentialInfo(connection_id=1, plugin_id="acme", external_id="T1", access_token="at-1")
REFRESHED = CredentialInfo(connection_id=1, plugin_id="acme", external_id="T1", access_token="at-2")


def _vault(credential=STORED, expired=False, refreshed=None):
    vault = MagicMock()
    vault.get_credential_info = AsyncMock(return_value=credential)
    vault.is_expired = MagicMock(return_value=expired)
    vault.refresh_and_save = AsyncMock(return_value=refreshed)
    return vault


def _request(**params) -> ExecuteRequest:
    return ExecuteRequest(plugin_id="acme", action="send_message", params=params)


class TestCredentialResolver:
    @pytest.mark.asyncio
    async def test_existing_credential_passes_through(self):
        vault = _vault()
        request = _request(externalId="T1").model_copy(update={"credential": REFRESHED})
        result = await CredentialResolver(vault).enrich(request)
        assert result is request
        vault.get_credential_info.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_external_id_returns_request_unchanged(self):
        vault = _vault()
        request = _request(channel="C1")
        result = await CredentialResolver(vault).enrich(request)
        assert result is request
        assert result.credential is None
        vault.get_credential_info.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_attaches_stored_credential(self):
        vault = _vault()
        result = await CredentialResolver(vault).enrich(_request(externalId="T1"))
        assert result.credential == STORED
        vault.get_credential_info.assert_awaited_once_with("acme", "T1")
        vault.refresh_and_save.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_snake_case_param_accepted(self):
        vault = _vault()
        result = await CredentialResolver(vault).enrich(_request(external_id="T1"))
        assert result.credential == STORED

    @pytest.mark.asyncio
    async def test_unknown_account_left_without_credential(self):
        vault = _vault(credential=None)
        result = await CredentialResolver(vault).enrich(_request(externalId="T9"))
        assert result.credential is None

    @pytest.mark.asyncio
    async def test_expired_credential_refreshed(self):
        vault = _vault(expired=True, refreshed=REFRESHED)
        result = await CredentialResolver(vault).enrich(_request(externalId="T1"))
        assert result.credential.access_token == "at-2"
        vault.refresh_and_save.assert_awaited_once_with("acme", "T1")

    @pytest.mark.asyncio
    async def test_failed_refresh_falls_back_to_stale_credential(self):
        vault = _vault(expired=True, refreshed=None)
        result = await CredentialResolver(vault).enrich(_request(externalId="T1"))
        assert result.credential.access_token == "at-1"
