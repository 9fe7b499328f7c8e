"""
PKCE (RFC 7636) — code_verifier generation and single-use storage keyed by state.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
from datetime import timedelta
from typing import NamedTuple, Optional

from oauth.ttl_store import TTLStore

CODE_CHALLENGE_METHOD = "S256"
_VERIFIER_BYTES = 64


class PkcePair(NamedTuple):
    code_verifier: str
    code_challenge: str


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def generate_code_verifier() -> str:
    """64 random bytes → 86-char URL-safe string (within the 43–128 range)."""
    return _b64url(secrets.token_bytes(_VERIFIER_BYTES))


def code_challenge_for(code_verifier: str) -> str:
    return _b64url(hashlib.sha256(code_verifier.encode("ascii")).digest())


def generate_pkce_pair() -> PkcePair:
    verifier = generate_code_verifier()
    return PkcePair(verifier, code_challenge_for(verifier))


class PkceStore:
    def __init__(self, backend: TTLStore) -> None:
        self._backend = backend

    @staticmethod
    def _key(state: str) -> str:
        return f"pkce:{state}"

    async def store(self, state: str, code_verifier: str, ttl: timedelta) -> None:
        await self._backend.put(self._key(state), code_verifier, ttl)

    async def consume_code_verifier(self, state: str) -> Optional[str]:
        if not state or not state.strip():
            return None
        return await self._backend.pop(self._key(state))

    async def generate_and_store_challenge(self, state: str, ttl: timedelta) -> str:
        """Create a verifier, store it under ``state`` and return its challenge."""
        pair = generate_pkce_pair()
        await self.store(state, pair.code_verifier, ttl)
        return pair.code_challenge
