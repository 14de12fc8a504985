"""
Bearer credential resolution.

The calling endpoint decides whether a credential is a session token or a
developer token. Whichever class it is, the resolved user must still exist
and be active before the request may act.
"""

from __future__ import annotations

import enum
import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable

from mediapub.db import DbClient, DevTokenRecord
from mediapub.errors import AuthError, ErrorKind, ValidationError
from mediapub.security import generate_random_token, hash_token, utcnow
from mediapub.sessions import SessionManager

logger = logging.getLogger(__name__)

DEV_TOKEN_TTL = timedelta(days=365)


class CredentialClass(str, enum.Enum):
    SESSION_TOKEN = "session_token"
    DEV_TOKEN = "dev_token"


class CredentialValidator:
    def __init__(
        self,
        db: DbClient,
        sessions: SessionManager,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._db = db
        self._sessions = sessions
        self._clock = clock

    def resolve(self, credential: str, credential_class: CredentialClass) -> uuid.UUID:
        """
        Map a bearer credential to the id of an active user.

        Raises AuthError when the credential or the account is not usable and
        lets DatabaseError through untouched so callers can tell a store
        outage from a rejected request.
        """
        if not credential or not credential.strip():
            raise AuthError(ErrorKind.MISSING_CREDENTIAL, "empty credential")

        if credential_class is CredentialClass.SESSION_TOKEN:
            user_id = self._sessions.validate_session(credential)
        else:
            user_id = self._resolve_dev_token(credential)

        user = self._db.get_user(user_id)
        if user is None or not user.is_active:
            logger.warning("Rejected credential for suspended user %s", user_id)
            raise AuthError(ErrorKind.ACCOUNT_SUSPENDED, f"user {user_id}")
        return user_id

    def _resolve_dev_token(self, credential: str) -> uuid.UUID:
        record = self._db.find_dev_token(hash_token(credential), credential)
        if record is None:
            raise AuthError(ErrorKind.INVALID_CREDENTIAL, "no matching dev token")
        now = self._clock()
        if self._sessions.enforce_session_expiry and record.expires_at <= now:
            raise AuthError(
                ErrorKind.CREDENTIAL_EXPIRED, f"dev token {record.token_id} expired"
            )
        self._db.touch_dev_token(record.token_id, now)
        return record.user_id


class DevTokenManager:
    """Issues and revokes long-lived developer tokens."""

    def __init__(self, db: DbClient, *, clock: Callable[[], datetime] = utcnow):
        self._db = db
        self._clock = clock

    def issue(
        self,
        user_id: uuid.UUID,
        name: str,
        scope: str,
        ttl: timedelta = DEV_TOKEN_TTL,
    ) -> tuple[str, DevTokenRecord]:
        name = (name or "").strip()
        if not 1 <= len(name) <= 255:
            raise ValidationError(
                message="Token name must be between 1 and 255 characters"
            )
        if ttl <= timedelta(0):
            raise ValidationError(message="Token lifetime must be positive")
        token = generate_random_token()
        now = self._clock()
        record = DevTokenRecord(
            token_id=uuid.uuid4(),
            user_id=user_id,
            token_hash=hash_token(token),
            name=name,
            scope=scope,
            expires_at=now + ttl,
            created_at=now,
        )
        self._db.create_dev_token(record)
        logger.info("Issued dev token %s (%s) for user %s", record.token_id, name, user_id)
        return token, record

    def revoke(self, token_id: uuid.UUID) -> bool:
        revoked = self._db.revoke_dev_token(token_id)
        if revoked:
            logger.info("Revoked dev token %s", token_id)
        return revoked
