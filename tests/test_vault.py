"""
Tests for CredentialVault — upsert semantics, expiry and refresh.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy import func, select

from credentials.vault import CredentialVault
from database.models import ApiKeyCredential, OAuthCredential, PluginConnection
from fakes import FakeOAuth, make_token
from utils.errors import OAuthError
from utils.schemas import ConnectionStatus, CredentialInfo, ScopeType

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


async def _count(session_factory, model) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


class TestSave:
    @pytest.mark.asyncio
    async def test_creates_active_connection(self, vault):
        conn_id = await vault.save_oauth_token(
            make_token(), company_id="co-1", user_id="u-1", scope=ScopeType.USER
        )
        connection = await vault.find_connection(conn_id)
        assert connection.status == ConnectionStatus.ACTIVE
        assert connection.scope == ScopeType.USER
        assert connection.company_id == "co-1"
        assert connection.external_name == "Acme Corp"
        assert connection.metadata == {"bot_user_id": "B1"}

    @pytest.mark.asyncio
    async def test_saving_same_account_twice_updates_in_place(self, session_factory, vault):
        first = await vault.save_oauth_token(make_token(access_token="at-1"))
        second = await vault.save_oauth_token(make_token(access_token="at-2"))

        assert first == second
        assert await _count(session_factory, PluginConnection) == 1
        assert await _count(session_factory, OAuthCredential) == 1
        assert (await vault.get_credential_info("acme", "T1")).access_token == "at-2"

    @pytest.mark.asyncio
    async def test_refresh_token_kept_when_provider_omits_it(self, vault):
        await vault.save_oauth_token(make_token(refresh_token="rt-1"))
        await vault.save_oauth_token(make_token(access_token="at-2", refresh_token=None))
        credential = await vault.get_credential_info("acme", "T1")
        assert credential.access_token == "at-2"
        assert credential.refresh_token == "rt-1"

    @pytest.mark.asyncio
    async def test_reinstall_reactivates_revoked_connection(self, vault):
        conn_id = await vault.save_oauth_token(make_token())
        await vault.revoke_connection(conn_id)
        assert await vault.save_oauth_token(make_token()) == conn_id
        assert (await vault.find_connection(conn_id)).status == ConnectionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_api_key_replaces_oauth_credential(self, session_factory, vault):
        conn_id = await vault.save_oauth_token(make_token())
        assert await vault.save_api_key("acme", "T1", "key-1", api_secret="sec-1") == conn_id

        credential = await vault.get_credential_info("acme", "T1")
        assert credential.api_key == "key-1"
        assert credential.api_secret == "sec-1"
        assert credential.access_token is None
        assert await _count(session_factory, OAuthCredential) == 0
        assert await _count(session_factory, ApiKeyCredential) == 1

    @pytest.mark.asyncio
    async def test_lost_insert_race_is_retried_as_update(self, session_factory, vault):
        conn_id = await vault.save_oauth_token(make_token(access_token="at-1"))

        original = CredentialVault._find
        calls = []

        async def racing_find(session, plugin_id, external_id):
            calls.append(external_id)
            if len(calls) == 1:
                return None  # row committed by the other writer after our lookup
            return await original(session, plugin_id, external_id)

        with patch.object(CredentialVault, "_find", staticmethod(racing_find)):
            retried = await vault.save_oauth_token(make_token(access_token="at-2"))

        assert retried == conn_id
        assert len(calls) == 2
        assert await _count(session_factory, PluginConnection) == 1
        assert (await vault.get_credential_info("acme", "T1")).access_token == "at-2"


class TestLookup:
    @pytest.mark.asyncio
    async def test_unknown_account(self, vault):
        assert await vault.get_credential_info("acme", "nope") is None
        assert await vault.find_connection(999) is None

    @pytest.mark.asyncio
    async def test_revoked_connection_has_no_credential(self, vault):
        conn_id = await vault.save_oauth_token(make_token())
        assert await vault.revoke_connection(conn_id) is True
        assert await vault.get_credential_info("acme", "T1") is None
        assert (await vault.find_connection_by_external_id("acme", "T1")).status == ConnectionStatus.REVOKED

    @pytest.mark.asyncio
    async def test_list_connections_filters(self, vault):
        a = await vault.save_oauth_token(make_token(external_id="T1"), company_id="co-1")
        b = await vault.save_oauth_token(make_token(external_id="T2"), company_id="co-1")
        await vault.save_api_key("other", "X1", "key", company_id="co-2")
        await vault.revoke_connection(b)

        assert [c.id for c in await vault.list_connections(company_id="co-1")] == [a]
        assert [c.id for c in await vault.list_connections(company_id="co-1", active_only=False)] == [a, b]
        assert [c.external_id for c in await vault.list_connections(plugin_id="other")] == ["X1"]

    @pytest.mark.asyncio
    async def test_delete_removes_credentials(self, session_factory, vault):
        conn_id = await vault.save_oauth_token(make_token())
        assert await vault.delete_connection(conn_id) is True
        assert await vault.delete_connection(conn_id) is False
        assert await _count(session_factory, OAuthCredential) == 0

    @pytest.mark.asyncio
    async def test_revoke_unknown(self, vault):
        assert await vault.revoke_connection(12345) is False


class TestExpiry:
    def test_past_expiry(self):
        credential = CredentialInfo(access_token="a", expires_at=NOW - timedelta(seconds=1))
        assert CredentialVault.is_expired(credential, now=NOW)

    def test_future_expiry(self):
        credential = CredentialInfo(access_token="a", expires_at=NOW + timedelta(minutes=5))
        assert not CredentialVault.is_expired(credential, now=NOW)

    def test_naive_expiry_treated_as_utc(self):
        credential = CredentialInfo(access_token="a", expires_at=datetime(2026, 1, 1, 11, 0))
        assert CredentialVault.is_expired(credential, now=NOW)

    def test_no_expiry_with_refresh_token(self):
        assert CredentialVault.is_expired(CredentialInfo(access_token="a", refresh_token="r"), now=NOW)

    def test_no_expiry_without_refresh_token(self):
        assert not CredentialVault.is_expired(CredentialInfo(access_token="a"), now=NOW)


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_rotates_and_persists(self, vault, registry, acme_config):
        new_expiry = datetime.now(timezone.utc) + timedelta(hours=2)
        oauth = FakeOAuth(
            refreshed=make_token(external_id="", access_token="at-2", refresh_token=None, expires_at=new_expiry)
        )
        registry.register(oauth)
        await vault.save_oauth_token(make_token(refresh_token="rt-1"))

        refreshed = await vault.refresh_and_save("acme", "T1")

        assert oauth.refreshes == ["rt-1"]
        assert refreshed.access_token == "at-2"
        assert refreshed.refresh_token == "rt-1"
        stored = await vault.get_credential_info("acme", "T1")
        assert stored.access_token == "at-2"
        assert stored.expires_at == new_expiry

    @pytest.mark.asyncio
    async def test_provider_failure_leaves_credential_untouched(self, vault, registry, acme_config):
        registry.register(FakeOAuth(refresh_error=OAuthError("invalid_grant")))
        await vault.save_oauth_token(make_token())

        assert await vault.refresh_and_save("acme", "T1") is None
        assert (await vault.get_credential_info("acme", "T1")).access_token == "at-1"

    @pytest.mark.asyncio
    async def test_no_refresh_without_config(self, vault, registry):
        oauth = FakeOAuth(refreshed=make_token(access_token="at-2"))
        registry.register(oauth)
        await vault.save_oauth_token(make_token())
        assert await vault.refresh_and_save("acme", "T1") is None
        assert oauth.refreshes == []

    @pytest.mark.asyncio
    async def test_no_refresh_without_refresh_token(self, vault, registry, acme_config):
        oauth = FakeOAuth(refreshed=make_token(access_token="at-2"))
        registry.register(oauth)
        await vault.save_oauth_token(make_token(refresh_token=None))
        assert await vault.refresh_and_save("acme", "T1") is None
        assert oauth.refreshes == []

    @pytest.mark.asyncio
    async def test_no_refresh_for_unknown_plugin(self, vault):
        await vault.save_oauth_token(make_token())
        assert await vault.refresh_and_save("acme", "T1") is None
