"""Shared-secret password hashing."""

from __future__ import annotations

import hashlib
import hmac


def hash_password(credential: str) -> str:
    """Return the hex SHA-256 digest of ``credential``.

    Unsalted: stored account rows hold exactly this digest.
    """
    return hashlib.sha256(credential.encode("utf-8")).hexdigest()


def verify_password(credential: str, password_hash: str) -> bool:
    return hmac.compare_digest(hash_password(credential), str(password_hash))
