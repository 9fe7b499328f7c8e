"""
HMAC-SHA256 helpers for webhook signature checks.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Optional, Union


def sign_payload(secret: str, payload: Union[str, bytes]) -> str:
    raw = payload.encode() if isinstance(payload, str) else payload
    return hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()


def verify_hmac_signature(
    secret: str,
    payload: Union[str, bytes],
    signature: Optional[str],
    prefix: str = "sha256=",
) -> bool:
    """Constant-time check of ``signature`` against ``prefix + hex(hmac)``."""
    if not secret or not signature or not signature.startswith(prefix):
        return False
    expected = prefix + sign_payload(secret, payload)
    return hmac.compare_digest(signature.encode(), expected.encode())
