"""
Account signup and password login.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from mediapub.db import DbClient, UserRecord
from mediapub.errors import AuthError, ErrorKind, ValidationError
from mediapub.security import (
    BCRYPT_MAX_PASSWORD_BYTES,
    hash_password,
    verify_password,
)
from mediapub.sessions import IssuedTokens, SessionManager

logger = logging.getLogger(__name__)

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 255
PASSWORD_MIN_LENGTH = 8


class AccountService:
    def __init__(
        self, db: DbClient, sessions: SessionManager, *, bcrypt_rounds: int = 12
    ):
        self._db = db
        self._sessions = sessions
        self._bcrypt_rounds = bcrypt_rounds

    def signup(self, username: str, password: str) -> UserRecord:
        if not username.strip() or not password.strip():
            raise ValidationError(message="Username and password cannot be empty")
        if not USERNAME_MIN_LENGTH <= len(username) <= USERNAME_MAX_LENGTH:
            raise ValidationError(
                message="Username must be between 3 and 255 characters"
            )
        if len(password) < PASSWORD_MIN_LENGTH:
            raise ValidationError(
                message="Password must be at least 8 characters long"
            )
        if len(password.encode("utf-8")) > BCRYPT_MAX_PASSWORD_BYTES:
            raise ValidationError(message="Password must be at most 72 bytes long")

        user = self._db.create_user(
            username, hash_password(password, rounds=self._bcrypt_rounds)
        )
        logger.info("Registered user %s", user.user_id)
        return user

    def get_user(self, user_id: uuid.UUID) -> UserRecord:
        user = self._db.get_user(user_id)
        if user is None:
            raise AuthError(ErrorKind.ACCOUNT_SUSPENDED, f"user {user_id}")
        return user

    def login(
        self,
        username: str,
        password: str,
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> IssuedTokens:
        if not username.strip() or not password.strip():
            raise ValidationError(message="username or password is invalid.")

        user = self._db.get_user_by_username(username)
        if user is None or not verify_password(password, user.password_hash):
            raise AuthError(ErrorKind.INVALID_LOGIN, "bad username or password")
        if not user.is_active:
            raise AuthError(ErrorKind.USER_INACTIVE, f"user {user.user_id}")

        return self._sessions.issue(
            user.user_id, user.username, ip_address=ip_address, user_agent=user_agent
        )
