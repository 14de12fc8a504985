"""
Session and refresh token lifecycle.

A login yields a short-lived session token (stored in clear) and a
long-lived refresh token (stored only as a SHA-256 digest). Refreshing
mints a brand new pair in a new session row; the row the refresh token
came from is left untouched, so an older refresh token keeps working until
its own expiry.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from mediapub.db import DbClient, SessionRecord
from mediapub.errors import AuthError, DatabaseError, ErrorKind, Store
from mediapub.security import generate_random_token, hash_token, utcnow

logger = logging.getLogger(__name__)

SESSION_TTL = timedelta(hours=1)
REFRESH_TTL = timedelta(days=30)


@dataclass(frozen=True)
class IssuedTokens:
    user_id: uuid.UUID
    username: str
    session_token: str
    refresh_token: str
    session_expires_at: datetime
    refresh_expires_at: datetime


class SessionManager:
    def __init__(
        self,
        db: DbClient,
        *,
        session_ttl: timedelta = SESSION_TTL,
        refresh_ttl: timedelta = REFRESH_TTL,
        enforce_session_expiry: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._db = db
        self._session_ttl = session_ttl
        self._refresh_ttl = refresh_ttl
        self.enforce_session_expiry = enforce_session_expiry
        self._clock = clock

    def issue(
        self,
        user_id: uuid.UUID,
        username: str,
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> IssuedTokens:
        """
        Create a new session row and return the clear tokens.

        The clear refresh token exists only in the return value. A store
        failure is reported as SESSION_CREATION_FAILED and not retried.
        """
        session_token = generate_random_token()
        refresh_token = generate_random_token()
        now = self._clock()
        record = SessionRecord(
            token_id=uuid.uuid4(),
            user_id=user_id,
            session_token=session_token,
            refresh_token_hash=hash_token(refresh_token),
            session_expires_at=now + self._session_ttl,
            refresh_expires_at=now + self._refresh_ttl,
            created_at=now,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        try:
            self._db.create_session(record)
        except DatabaseError as exc:
            logger.error("Failed to insert session for user %s: %s", user_id, exc)
            raise DatabaseError(
                ErrorKind.SESSION_CREATION_FAILED, Store.RELATIONAL, exc.detail
            ) from exc
        logger.info("Issued session %s for user %s", record.token_id, user_id)
        return IssuedTokens(
            user_id=user_id,
            username=username,
            session_token=session_token,
            refresh_token=refresh_token,
            session_expires_at=record.session_expires_at,
            refresh_expires_at=record.refresh_expires_at,
        )

    def rotate(
        self,
        refresh_token: str,
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> IssuedTokens:
        if not refresh_token or not refresh_token.strip():
            raise AuthError(ErrorKind.INVALID_REFRESH_TOKEN, "empty refresh token")
        record = self._db.find_session_by_refresh_hash(hash_token(refresh_token))
        if record is None:
            raise AuthError(ErrorKind.INVALID_REFRESH_TOKEN, "no matching session")
        if record.refresh_expires_at <= self._clock():
            raise AuthError(
                ErrorKind.REFRESH_TOKEN_EXPIRED,
                f"session {record.token_id} refresh expired",
            )
        user = self._db.get_user(record.user_id)
        if user is None:
            raise AuthError(
                ErrorKind.INVALID_REFRESH_TOKEN,
                f"session {record.token_id} has no owner",
            )
        # TODO: revoke the source session here once clients handle reuse detection.
        return self.issue(
            user.user_id,
            user.username,
            ip_address=ip_address,
            user_agent=user_agent,
        )

    def validate_session(self, session_token: str) -> uuid.UUID:
        record = self._db.find_session_by_token(session_token)
        if record is None:
            raise AuthError(ErrorKind.INVALID_SESSION_TOKEN, "no matching session")
        if self.enforce_session_expiry and record.session_expires_at <= self._clock():
            raise AuthError(
                ErrorKind.SESSION_TOKEN_EXPIRED, f"session {record.token_id} expired"
            )
        return record.user_id

    def revoke(self, session_token: str) -> None:
        if not self._db.revoke_session(session_token):
            raise AuthError(ErrorKind.INVALID_SESSION_TOKEN, "nothing to revoke")
        logger.info("Revoked a session")
