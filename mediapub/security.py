"""
Token and password primitives.

Tokens are opaque random hex strings; refresh and developer tokens are
persisted only as an unkeyed SHA-256 digest so they can be looked up by
hash. Passwords use bcrypt.
"""

from __future__ import annotations

import hashlib
import secrets
from datetime import datetime, timezone

import bcrypt

TOKEN_BYTES = 32
# bcrypt ignores (newer releases reject) input beyond 72 bytes.
BCRYPT_MAX_PASSWORD_BYTES = 72


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Interpret naive timestamps read back from the store as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def generate_random_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def hash_password(password: str, rounds: int = 12) -> str:
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """
    Check a password against a stored bcrypt hash.

    Returns False rather than raising for an over-long password or a hash
    that is not in bcrypt format.
    """
    encoded = password.encode("utf-8")
    if len(encoded) > BCRYPT_MAX_PASSWORD_BYTES:
        return False
    try:
        return bcrypt.checkpw(encoded, password_hash.encode("utf-8"))
    except ValueError:
        return False
