"""
OAuth state tokens (CSRF protection).

A state is an unguessable, single-use token bound to one plugin id.
"""

from __future__ import annotations

import secrets
from datetime import timedelta

from oauth.ttl_store import TTLStore

_STATE_BYTES = 32


class StateStore:
    def __init__(self, backend: TTLStore) -> None:
        self._backend = backend

    @staticmethod
    def _key(plugin_id: str, state: str) -> str:
        return f"state:{plugin_id}:{state}"

    async def generate_and_store(self, plugin_id: str, ttl: timedelta) -> str:
        state = secrets.token_urlsafe(_STATE_BYTES)
        await self._backend.put(self._key(plugin_id, state), plugin_id, ttl)
        return state

    async def validate_and_consume(self, plugin_id: str, state: str) -> bool:
        """True exactly once per issued state; False if absent, expired or for another plugin."""
        if not state or not state.strip():
            return False
        stored = await self._backend.pop(self._key(plugin_id, state))
        return stored == plugin_id
