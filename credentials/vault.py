"""
CredentialVault — the only writer of connections and their credentials.

Create-or-update is keyed on the (plugin_id, external_id) unique constraint.
When two installs for the same account race, the loser's INSERT fails on
that constraint and is replayed as an UPDATE.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import ApiKeyCredential, OAuthCredential, PluginConnection
from plugins.config_store import PluginConfigStore
from plugins.registry import CapabilityRegistry
from utils.schemas import (
    ConnectionInfo,
    ConnectionStatus,
    CredentialInfo,
    ScopeType,
    TokenInfo,
    as_utc,
    utcnow,
)

logger = logging.getLogger(__name__)


class CredentialVault:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config_store: PluginConfigStore,
        registry: Optional[CapabilityRegistry] = None,
    ) -> None:
        self._session_factory = session_factory
        self._config_store = config_store
        self._registry = registry or CapabilityRegistry()

    # ── save ────────────────────────────────────────────────────────────

    async def save_oauth_token(
        self,
        token_info: TokenInfo,
        company_id: Optional[str] = None,
        user_id: Optional[str] = None,
        scope: ScopeType = ScopeType.WORKSPACE,
    ) -> int:
        """Create or update the connection for ``token_info`` and return its id."""
        return await self._upsert_with_retry(
            token_info.plugin_id,
            token_info.external_id,
            token_info.external_name,
            token_info.metadata,
            company_id,
            user_id,
            scope,
            make_oauth=lambda: OAuthCredential(
                access_token=token_info.access_token,
                refresh_token=token_info.refresh_token,
                scope=token_info.scope,
                expires_at=token_info.expires_at,
            ),
        )

    async def save_api_key(
        self,
        plugin_id: str,
        external_id: str,
        api_key: str,
        api_secret: Optional[str] = None,
        external_name: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        company_id: Optional[str] = None,
        user_id: Optional[str] = None,
        scope: ScopeType = ScopeType.WORKSPACE,
    ) -> int:
        return await self._upsert_with_retry(
            plugin_id,
            external_id,
            external_name,
            metadata,
            company_id,
            user_id,
            scope,
            make_api_key=lambda: ApiKeyCredential(api_key=api_key, api_secret=api_secret),
        )

    async def _upsert_with_retry(
        self,
        plugin_id: str,
        external_id: str,
        external_name: Optional[str],
        metadata: Optional[Dict[str, Any]],
        company_id: Optional[str],
        user_id: Optional[str],
        scope: ScopeType,
        *,
        make_oauth: Optional[Callable[[], OAuthCredential]] = None,
        make_api_key: Optional[Callable[[], ApiKeyCredential]] = None,
    ) -> int:
        args = (plugin_id, external_id, external_name, metadata, company_id, user_id, scope)
        try:
            return await self._upsert(
                *args,
                oauth=make_oauth() if make_oauth else None,
                api_key=make_api_key() if make_api_key else None,
            )
        except IntegrityError:
            # Lost an insert race on (plugin_id, external_id): the row exists now.
            logger.info("Concurrent save for %s/%s — retrying as update", plugin_id, external_id)
            return await self._upsert(
                *args,
                oauth=make_oauth() if make_oauth else None,
                api_key=make_api_key() if make_api_key else None,
            )

    async def _upsert(
        self,
        plugin_id: str,
        external_id: str,
        external_name: Optional[str],
        metadata: Optional[Dict[str, Any]],
        company_id: Optional[str],
        user_id: Optional[str],
        scope: ScopeType,
        *,
        oauth: Optional[OAuthCredential] = None,
        api_key: Optional[ApiKeyCredential] = None,
    ) -> int:
        async with self._session_factory() as session:
            conn = await self._find(session, plugin_id, external_id)
            if conn is not None:
                if external_name:
                    conn.external_name = external_name
                if metadata is not None:
                    conn.metadata_ = dict(metadata)
                conn.status = ConnectionStatus.ACTIVE.value
                conn.updated_at = utcnow()
                if oauth is not None:
                    self._update_oauth(conn, oauth)
                    conn.api_key_credential = None
                if api_key is not None:
                    self._update_api_key(conn, api_key)
                    conn.oauth_credential = None
                action = "Updated"
            else:
                conn = PluginConnection(
                    plugin_id=plugin_id,
                    scope_type=scope.value,
                    company_id=company_id,
                    user_id=user_id,
                    external_id=external_id,
                    external_name=external_name,
                    metadata_=dict(metadata or {}),
                    status=ConnectionStatus.ACTIVE.value,
                    oauth_credential=oauth,
                    api_key_credential=api_key,
                )
                session.add(conn)
                action = "Created"

            await session.flush()
            conn_id = conn.id
            await session.commit()

        logger.info("%s connection %s: plugin=%s, externalId=%s", action, conn_id, plugin_id, external_id)
        return conn_id

    @staticmethod
    def _update_oauth(conn: PluginConnection, new: OAuthCredential) -> None:
        current = conn.oauth_credential
        if current is None:
            conn.oauth_credential = new
            return
        current.access_token = new.access_token
        # Providers that don't rotate refresh tokens omit them on re-install.
        if new.refresh_token:
            current.refresh_token = new.refresh_token
        current.scope = new.scope
        current.expires_at = new.expires_at
        current.updated_at = utcnow()

    @staticmethod
    def _update_api_key(conn: PluginConnection, new: ApiKeyCredential) -> None:
        current = conn.api_key_credential
        if current is None:
            conn.api_key_credential = new
            return
        current.api_key = new.api_key
        current.api_secret = new.api_secret
        current.updated_at = utcnow()

    # ── lookup ──────────────────────────────────────────────────────────

    @staticmethod
    async def _find(session: AsyncSession, plugin_id: str, external_id: str) -> Optional[PluginConnection]:
        result = await session.execute(
            select(PluginConnection).where(
                PluginConnection.plugin_id == plugin_id,
                PluginConnection.external_id == external_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_credential_info(self, plugin_id: str, external_id: str) -> Optional[CredentialInfo]:
        """Credential of the ACTIVE connection for (plugin_id, external_id)."""
        async with self._session_factory() as session:
            conn = await self._find(session, plugin_id, external_id)
            if conn is None or conn.status != ConnectionStatus.ACTIVE.value:
                return None
            return _to_credential_info(conn)

    async def find_connection(self, connection_id: int) -> Optional[ConnectionInfo]:
        async with self._session_factory() as session:
            conn = await session.get(PluginConnection, connection_id)
            return _to_connection_info(conn) if conn else None

    async def find_connection_by_external_id(self, plugin_id: str, external_id: str) -> Optional[ConnectionInfo]:
        async with self._session_factory() as session:
            conn = await self._find(session, plugin_id, external_id)
            return _to_connection_info(conn) if conn else None

    async def list_connections(
        self,
        company_id: Optional[str] = None,
        plugin_id: Optional[str] = None,
        active_only: bool = True,
    ) -> List[ConnectionInfo]:
        stmt = select(PluginConnection).order_by(PluginConnection.id)
        if company_id is not None:
            stmt = stmt.where(PluginConnection.company_id == company_id)
        if plugin_id is not None:
            stmt = stmt.where(PluginConnection.plugin_id == plugin_id)
        if active_only:
            stmt = stmt.where(PluginConnection.status == ConnectionStatus.ACTIVE.value)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_to_connection_info(c) for c in result.scalars().all()]

    # ── expiry / refresh ────────────────────────────────────────────────

    @staticmethod
    def is_expired(credential: CredentialInfo, now: Optional[datetime] = None) -> bool:
        """
        True when ``expires_at`` has passed.

        A credential without a tracked expiry but with a refresh token is
        also reported expired, so legacy rows get refreshed on next use.
        """
        expires_at = as_utc(credential.expires_at)
        if expires_at is not None:
            return (now or utcnow()) > expires_at
        return bool(credential.refresh_token)

    async def refresh_and_save(self, plugin_id: str, external_id: str) -> Optional[CredentialInfo]:
        """
        Best-effort refresh.  Returns the rotated credential, or None when the
        plugin can't refresh or the provider call fails.
        """
        capability = self._registry.get_oauth(plugin_id)
        if capability is None:
            logger.debug("No OAuth capability for %s — refresh skipped", plugin_id)
            return None
        config = await self._config_store.get(plugin_id)
        if config is None:
            logger.warning("Plugin %s not configured — refresh skipped", plugin_id)
            return None
        credential = await self.get_credential_info(plugin_id, external_id)
        if credential is None or not credential.refresh_token:
            return None

        try:
            refreshed = await capability.refresh_token(config, credential.refresh_token)
        except Exception as exc:
            logger.warning("Token refresh failed for %s/%s: %s", plugin_id, external_id, exc)
            return None
        if refreshed is None:
            logger.debug("Plugin %s does not support refresh", plugin_id)
            return None

        async with self._session_factory() as session:
            conn = await self._find(session, plugin_id, external_id)
            if conn is None or conn.oauth_credential is None:
                return None
            self._update_oauth(
                conn,
                OAuthCredential(
                    access_token=refreshed.access_token,
                    refresh_token=refreshed.refresh_token,
                    scope=refreshed.scope or conn.oauth_credential.scope,
                    expires_at=refreshed.expires_at,
                ),
            )
            conn.updated_at = utcnow()
            await session.commit()
            info = _to_credential_info(conn)

        logger.info("Refreshed token for %s/%s", plugin_id, external_id)
        return info

    # ── lifecycle ───────────────────────────────────────────────────────

    async def revoke_connection(self, connection_id: int) -> bool:
        async with self._session_factory() as session:
            conn = await session.get(PluginConnection, connection_id)
            if conn is None:
                return False
            conn.status = ConnectionStatus.REVOKED.value
            conn.updated_at = utcnow()
            await session.commit()
        logger.info("Revoked connection: %s", connection_id)
        return True

    async def delete_connection(self, connection_id: int) -> bool:
        async with self._session_factory() as session:
            conn = await session.get(PluginConnection, connection_id)
            if conn is None:
                return False
            await session.delete(conn)
            await session.commit()
        logger.info("Deleted connection: %s", connection_id)
        return True


def _to_connection_info(conn: PluginConnection) -> ConnectionInfo:
    return ConnectionInfo(
        id=conn.id,
        plugin_id=conn.plugin_id,
        scope=ScopeType(conn.scope_type or ScopeType.WORKSPACE.value),
        company_id=conn.company_id,
        user_id=conn.user_id,
        external_id=conn.external_id,
        external_name=conn.external_name,
        status=ConnectionStatus(conn.status),
        metadata=conn.metadata_ or {},
        created_at=as_utc(conn.created_at),
        updated_at=as_utc(conn.updated_at),
    )


def _to_credential_info(conn: PluginConnection) -> Optional[CredentialInfo]:
    base = dict(
        connection_id=conn.id,
        plugin_id=conn.plugin_id,
        external_id=conn.external_id,
        metadata=conn.metadata_ or {},
    )
    if conn.oauth_credential is not None:
        cred = conn.oauth_credential
        return CredentialInfo(
            access_token=cred.access_token,
            refresh_token=cred.refresh_token,
            scope=cred.scope,
            expires_at=as_utc(cred.expires_at),
            **base,
        )
    if conn.api_key_credential is not None:
        cred = conn.api_key_credential
        return CredentialInfo(api_key=cred.api_key, api_secret=cred.api_secret, **base)
    return None
