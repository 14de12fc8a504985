"""
Error kinds raised by the credential and ingestion components.

Every failure carries a machine-readable kind. The HTTP layer turns the kind
into a status code and a stable message through ERROR_RESPONSES; internal
detail stays in the logs.
"""

from __future__ import annotations

import enum
from typing import Optional


class ErrorKind(str, enum.Enum):
    # Authentication
    INVALID_CREDENTIAL = "invalid_credential"
    MISSING_CREDENTIAL = "missing_credential"
    USER_INACTIVE = "user_inactive"
    ACCOUNT_SUSPENDED = "account_suspended"
    INVALID_LOGIN = "invalid_login"
    INVALID_SESSION_TOKEN = "invalid_session_token"
    SESSION_TOKEN_EXPIRED = "session_token_expired"
    INVALID_REFRESH_TOKEN = "invalid_refresh_token"
    REFRESH_TOKEN_EXPIRED = "refresh_token_expired"
    CREDENTIAL_EXPIRED = "credential_expired"

    # Store faults
    CONNECTION_FAILED = "connection_failed"
    QUERY_FAILED = "query_failed"
    SESSION_CREATION_FAILED = "session_creation_failed"
    RELATIONAL_INSERT_FAILED = "relational_insert_failed"
    DOCUMENT_INSERT_FAILED = "document_insert_failed"

    # Caller input
    MALFORMED_INPUT = "malformed_input"
    MISSING_EXTENSION = "missing_extension"
    COUNT_MISMATCH = "count_mismatch"
    INVALID_IDENTIFIER = "invalid_identifier"
    USERNAME_TAKEN = "username_taken"

    # Filesystem
    WRITE_FAILED = "write_failed"
    PATH_TRAVERSAL_REJECTED = "path_traversal_rejected"

    # Lookups
    NOT_FOUND = "not_found"
    METADATA_MISSING = "metadata_missing"


class Store(str, enum.Enum):
    RELATIONAL = "relational"
    DOCUMENT = "document"


ERROR_RESPONSES: dict[ErrorKind, tuple[int, str]] = {
    ErrorKind.INVALID_CREDENTIAL: (401, "invalid credential"),
    ErrorKind.MISSING_CREDENTIAL: (401, "authorization header not found."),
    ErrorKind.USER_INACTIVE: (401, "user inactive"),
    ErrorKind.ACCOUNT_SUSPENDED: (401, "account suspended"),
    ErrorKind.INVALID_LOGIN: (401, "username or password is invalid."),
    ErrorKind.INVALID_SESSION_TOKEN: (401, "invalid session token."),
    ErrorKind.SESSION_TOKEN_EXPIRED: (401, "session token has expired."),
    ErrorKind.INVALID_REFRESH_TOKEN: (401, "invalid refresh token."),
    ErrorKind.REFRESH_TOKEN_EXPIRED: (401, "refresh token has expired."),
    ErrorKind.CREDENTIAL_EXPIRED: (401, "credential has expired."),
    ErrorKind.CONNECTION_FAILED: (417, "Database error"),
    ErrorKind.QUERY_FAILED: (417, "Database error"),
    ErrorKind.SESSION_CREATION_FAILED: (500, "failed to create session."),
    ErrorKind.RELATIONAL_INSERT_FAILED: (
        500,
        "Failed to store post metadata in database.",
    ),
    ErrorKind.DOCUMENT_INSERT_FAILED: (500, "Failed to store post document."),
    ErrorKind.MALFORMED_INPUT: (400, "malformed request."),
    ErrorKind.MISSING_EXTENSION: (400, "extension was not found."),
    ErrorKind.COUNT_MISMATCH: (400, "metadata count does not match file count."),
    ErrorKind.INVALID_IDENTIFIER: (400, "invalid item id."),
    ErrorKind.USERNAME_TAKEN: (409, "Username already taken"),
    ErrorKind.WRITE_FAILED: (500, "Failed to save uploaded file."),
    ErrorKind.PATH_TRAVERSAL_REJECTED: (400, "invalid file path."),
    ErrorKind.NOT_FOUND: (404, "item not found."),
    ErrorKind.METADATA_MISSING: (404, "item metadata not found."),
}


class MediaPubError(Exception):
    """Base class for every error the components raise on purpose."""

    def __init__(self, kind: ErrorKind, detail: Optional[str] = None):
        self.kind = kind
        self.detail = detail
        super().__init__(detail or kind.value)

    @property
    def status_code(self) -> int:
        return ERROR_RESPONSES[self.kind][0]

    @property
    def public_message(self) -> str:
        return ERROR_RESPONSES[self.kind][1]


class AuthError(MediaPubError):
    pass


class DatabaseError(MediaPubError):
    """A relational or document store could not complete an operation."""

    def __init__(
        self, kind: ErrorKind, store: Store, detail: Optional[str] = None
    ):
        self.store = store
        super().__init__(kind, detail)


class ValidationError(MediaPubError):
    """Rejected caller input. Raised before any side effect."""

    def __init__(
        self,
        kind: ErrorKind = ErrorKind.MALFORMED_INPUT,
        message: Optional[str] = None,
        detail: Optional[str] = None,
    ):
        self._message = message
        super().__init__(kind, detail or message)

    @property
    def public_message(self) -> str:
        return self._message or super().public_message


class ConflictError(MediaPubError):
    pass


class StorageError(MediaPubError):
    pass


class NotFoundError(MediaPubError):
    pass
