"""
Plugin config store — client id / secret / webhook secrets per plugin.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import Plugin
from utils.schemas import PluginConfig, PluginStatus

logger = logging.getLogger(__name__)


class PluginConfigStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, plugin_id: str) -> Optional[PluginConfig]:
        """Return the config of an ACTIVE plugin, or None."""
        async with self._session_factory() as session:
            result = await session.execute(select(Plugin).where(Plugin.plugin_id == plugin_id))
            row = result.scalar_one_or_none()
        if row is None:
            return None
        if row.status != PluginStatus.ACTIVE.value:
            logger.info("Plugin %s is %s — treating as not configured", plugin_id, row.status)
            return None
        return PluginConfig(
            plugin_id=row.plugin_id,
            display_name=row.display_name,
            client_id=row.client_id,
            client_secret=row.client_secret,
            secrets=row.secrets or {},
            metadata=row.metadata_ or {},
        )

    async def save(
        self,
        plugin_id: str,
        *,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        secrets: Optional[Dict[str, str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        display_name: Optional[str] = None,
        status: PluginStatus = PluginStatus.ACTIVE,
    ) -> None:
        """Create or replace a plugin's config."""
        async with self._session_factory() as session:
            result = await session.execute(select(Plugin).where(Plugin.plugin_id == plugin_id))
            row = result.scalar_one_or_none()
            if row is None:
                row = Plugin(plugin_id=plugin_id)
                session.add(row)
            row.display_name = display_name or row.display_name or plugin_id
            row.client_id = client_id
            row.client_secret = client_secret
            row.secrets = secrets or {}
            row.metadata_ = metadata or {}
            row.status = status.value
            await session.commit()
        logger.info("Saved config for plugin %s", plugin_id)

    async def exists(self, plugin_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(select(Plugin.id).where(Plugin.plugin_id == plugin_id))
            return result.first() is not None

    async def seed(self, configs: Dict[str, Dict[str, Any]]) -> List[str]:
        """
        Insert configs for plugins that have no row yet.

        ``configs`` maps plugin id → ``client_id`` / ``client_secret`` /
        ``secrets`` / ``metadata`` / ``display_name``.  Existing rows are left
        untouched so edits made after the first start survive restarts.
        Returns the plugin ids that were inserted.
        """
        seeded: List[str] = []
        for raw_id, fields in configs.items():
            plugin_config = PluginConfig(plugin_id=raw_id.strip().lower(), **fields)
            if await self.exists(plugin_config.plugin_id):
                logger.debug("Plugin config already present: %s", plugin_config.plugin_id)
                continue
            if not plugin_config.client_id:
                logger.warning(
                    "Plugin %s seeded without client_id — OAuth installs will fail",
                    plugin_config.plugin_id,
                )
            await self.save(
                plugin_config.plugin_id,
                client_id=plugin_config.client_id,
                client_secret=plugin_config.client_secret,
                secrets=plugin_config.secrets,
                metadata=plugin_config.metadata,
                display_name=plugin_config.display_name,
            )
            seeded.append(plugin_config.plugin_id)
        return seeded
