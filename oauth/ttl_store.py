"""
TTLStore — short-lived key/value backend for OAuth state and PKCE verifiers.

Two primitives only: ``put`` and an atomic ``pop``.  Check-and-remove is a
single operation in every backend, so a token can never be consumed twice.

``InMemoryTTLStore`` is for single-instance deployments and tests.  Any
deployment with more than one instance must use ``RedisTTLStore``: the
instance receiving an OAuth callback may not be the one that started it.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Callable, Dict, Optional, Tuple

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class TTLStore(ABC):
    """Abstract single-use, expiring key/value store."""

    @abstractmethod
    async def put(self, key: str, value: str, ttl: timedelta) -> None:
        ...

    @abstractmethod
    async def pop(self, key: str) -> Optional[str]:
        """Remove and return ``key``; ``None`` if absent or expired."""
        ...


class InMemoryTTLStore(TTLStore):
    """Process-local store.  Expired entries are purged on every write."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    async def put(self, key: str, value: str, ttl: timedelta) -> None:
        now = self._clock()
        with self._lock:
            self._entries[key] = (value, now + ttl.total_seconds())
            self._sweep(now)

    async def pop(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.pop(key, None)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            return None
        return value

    def __len__(self) -> int:
        return len(self._entries)

    def _sweep(self, now: float) -> None:
        expired = [k for k, (_, exp) in self._entries.items() if now >= exp]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Purged %d expired OAuth store entries", len(expired))


class RedisTTLStore(TTLStore):
    """Shared store backed by Redis (``SET EX`` + ``GETDEL``, Redis ≥ 6.2)."""

    def __init__(self, client: redis.Redis, key_prefix: str = "gateway:oauth") -> None:
        self._client = client
        self._prefix = key_prefix

    @classmethod
    def from_url(cls, url: str, key_prefix: str = "gateway:oauth") -> "RedisTTLStore":
        return cls(redis.from_url(url, decode_responses=True), key_prefix)

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def put(self, key: str, value: str, ttl: timedelta) -> None:
        seconds = max(1, int(ttl.total_seconds()))
        await self._client.set(self._key(key), value, ex=seconds)

    async def pop(self, key: str) -> Optional[str]:
        value = await self._client.getdel(self._key(key))
        if isinstance(value, bytes):
            value = value.decode()
        return value

    async def close(self) -> None:
        await self._client.aclose()
