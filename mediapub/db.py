"""
Relational store for users, sessions, developer tokens and post rows.

Postgres through SQLAlchemy in production, SQLite for tests, and an
in-memory implementation for development.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import ContextManager, Dict, Iterator, Optional, Protocol

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    Uuid,
    create_engine,
    insert,
    or_,
    select,
    update,
)
from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import URL, make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from mediapub.errors import ConflictError, DatabaseError, ErrorKind, Store
from mediapub.security import as_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass
class UserRecord:
    user_id: uuid.UUID
    username: str
    password_hash: str
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    expired_at: Optional[datetime] = None


@dataclass
class SessionRecord:
    token_id: uuid.UUID
    user_id: uuid.UUID
    session_token: str
    refresh_token_hash: str
    session_expires_at: datetime
    refresh_expires_at: datetime
    created_at: datetime = field(default_factory=utcnow)
    is_revoked: bool = False
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class DevTokenRecord:
    token_id: uuid.UUID
    user_id: uuid.UUID
    token_hash: str
    name: str
    scope: str
    expires_at: datetime
    created_at: datetime = field(default_factory=utcnow)
    is_revoked: bool = False
    last_used_at: Optional[datetime] = None


@dataclass
class PostRecord:
    post_id: uuid.UUID
    user_id: uuid.UUID
    is_tagged: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


class PostBatch(Protocol):
    """Inserts post rows for one upload batch, committing each row."""

    def insert(self, post_id: uuid.UUID, user_id: uuid.UUID) -> None:
        ...


class DbClient(Protocol):
    """Interface for relational store access."""

    def create_user(self, username: str, password_hash: str) -> UserRecord:
        ...

    def get_user(self, user_id: uuid.UUID) -> Optional[UserRecord]:
        ...

    def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        ...

    def create_session(self, record: SessionRecord) -> None:
        ...

    def find_session_by_token(self, session_token: str) -> Optional[SessionRecord]:
        ...

    def find_session_by_refresh_hash(
        self, refresh_token_hash: str
    ) -> Optional[SessionRecord]:
        ...

    def revoke_session(self, session_token: str) -> bool:
        ...

    def create_dev_token(self, record: DevTokenRecord) -> None:
        ...

    def find_dev_token(self, token_hash: str, raw: str) -> Optional[DevTokenRecord]:
        ...

    def touch_dev_token(self, token_id: uuid.UUID, used_at: datetime) -> None:
        ...

    def revoke_dev_token(self, token_id: uuid.UUID) -> bool:
        ...

    def post_batch(self) -> ContextManager[PostBatch]:
        ...

    def get_post(self, post_id: uuid.UUID) -> Optional[PostRecord]:
        ...

    def list_post_ids(self) -> list[uuid.UUID]:
        ...

    def close(self) -> None:
        ...


def _check_expiry_constraints(created_at: datetime, *expiries: datetime) -> None:
    for expires_at in expiries:
        if not expires_at > created_at:
            raise DatabaseError(
                ErrorKind.QUERY_FAILED,
                Store.RELATIONAL,
                "expiry must be later than creation time",
            )


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.users: Dict[uuid.UUID, UserRecord] = {}
        self.sessions: Dict[uuid.UUID, SessionRecord] = {}
        self.dev_tokens: Dict[uuid.UUID, DevTokenRecord] = {}
        self.posts: Dict[uuid.UUID, PostRecord] = {}

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.users.clear()
        self.sessions.clear()
        self.dev_tokens.clear()
        self.posts.clear()

    def create_user(self, username: str, password_hash: str) -> UserRecord:
        if self.get_user_by_username(username) is not None:
            raise ConflictError(ErrorKind.USERNAME_TAKEN, f"username {username!r}")
        record = UserRecord(
            user_id=uuid.uuid4(), username=username, password_hash=password_hash
        )
        self.users[record.user_id] = record
        return record

    def get_user(self, user_id: uuid.UUID) -> Optional[UserRecord]:
        return self.users.get(user_id)

    def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        for user in self.users.values():
            if user.username == username:
                return user
        return None

    def create_session(self, record: SessionRecord) -> None:
        _check_expiry_constraints(
            record.created_at, record.session_expires_at, record.refresh_expires_at
        )
        self.sessions[record.token_id] = record

    def find_session_by_token(self, session_token: str) -> Optional[SessionRecord]:
        for record in self.sessions.values():
            if record.session_token == session_token and not record.is_revoked:
                return record
        return None

    def find_session_by_refresh_hash(
        self, refresh_token_hash: str
    ) -> Optional[SessionRecord]:
        for record in self.sessions.values():
            if (
                record.refresh_token_hash == refresh_token_hash
                and not record.is_revoked
            ):
                return record
        return None

    def revoke_session(self, session_token: str) -> bool:
        record = self.find_session_by_token(session_token)
        if not record:
            return False
        record.is_revoked = True
        return True

    def create_dev_token(self, record: DevTokenRecord) -> None:
        _check_expiry_constraints(record.created_at, record.expires_at)
        self.dev_tokens[record.token_id] = record

    def find_dev_token(self, token_hash: str, raw: str) -> Optional[DevTokenRecord]:
        for record in self.dev_tokens.values():
            if record.is_revoked:
                continue
            if record.token_hash in (token_hash, raw):
                return record
        return None

    def touch_dev_token(self, token_id: uuid.UUID, used_at: datetime) -> None:
        record = self.dev_tokens.get(token_id)
        if record:
            record.last_used_at = used_at

    def revoke_dev_token(self, token_id: uuid.UUID) -> bool:
        record = self.dev_tokens.get(token_id)
        if not record or record.is_revoked:
            return False
        record.is_revoked = True
        return True

    @contextmanager
    def post_batch(self) -> Iterator[PostBatch]:
        yield _InMemoryPostBatch(self.posts)

    def get_post(self, post_id: uuid.UUID) -> Optional[PostRecord]:
        return self.posts.get(post_id)

    def list_post_ids(self) -> list[uuid.UUID]:
        return list(self.posts)

    def close(self) -> None:
        pass


class _InMemoryPostBatch:
    def __init__(self, posts: Dict[uuid.UUID, PostRecord]):
        self._posts = posts

    def insert(self, post_id: uuid.UUID, user_id: uuid.UUID) -> None:
        if post_id in self._posts:
            raise DatabaseError(
                ErrorKind.QUERY_FAILED, Store.RELATIONAL, f"duplicate post {post_id}"
            )
        self._posts[post_id] = PostRecord(post_id=post_id, user_id=user_id)


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    """Translate SQLAlchemy failures into DatabaseError."""
    try:
        yield
    except (
        sa_exc.TimeoutError,
        sa_exc.DisconnectionError,
        sa_exc.OperationalError,
        sa_exc.InterfaceError,
    ) as exc:
        logger.error("Relational store unavailable during %s: %s", operation, exc)
        raise DatabaseError(
            ErrorKind.CONNECTION_FAILED, Store.RELATIONAL, str(exc)
        ) from exc
    except sa_exc.SQLAlchemyError as exc:
        logger.error("Relational query failed during %s: %s", operation, exc)
        raise DatabaseError(ErrorKind.QUERY_FAILED, Store.RELATIONAL, str(exc)) from exc


def engine_url(database_url: str) -> URL:
    """Parse a database URL, pinning bare postgresql:// URLs to the psycopg 3 driver."""
    url = make_url(database_url)
    if url.get_backend_name() == "postgresql" and url.drivername == "postgresql":
        url = url.set(drivername="postgresql+psycopg")
    return url


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(
        self,
        database_url: str,
        *,
        pool_size: int = 10,
        max_overflow: int = 0,
        pool_timeout: float = 30.0,
    ):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        url = engine_url(database_url)
        engine_kwargs: dict = {"future": True, "pool_pre_ping": True}
        if url.get_backend_name() == "sqlite":
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if url.database in (None, "", ":memory:"):
                # One shared connection, otherwise each thread sees an empty database.
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs.update(
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_timeout=pool_timeout,
                pool_recycle=1800,
            )
        self.engine = create_engine(url, **engine_kwargs)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        with _store_errors("create_all"):
            Base.metadata.create_all(self.engine)

    def _to_user(self, row: "UserRow") -> UserRecord:
        return UserRecord(
            user_id=row.user_id,
            username=row.username,
            password_hash=row.password_hash,
            is_active=row.is_active,
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
            expired_at=as_utc(row.expired_at) if row.expired_at else None,
        )

    def _to_session(self, row: "SessionRow") -> SessionRecord:
        return SessionRecord(
            token_id=row.token_id,
            user_id=row.user_id,
            session_token=row.session_token,
            refresh_token_hash=row.refresh_token_hash,
            session_expires_at=as_utc(row.session_expires_at),
            refresh_expires_at=as_utc(row.refresh_expires_at),
            created_at=as_utc(row.created_at),
            is_revoked=row.is_revoked,
            ip_address=row.ip_address,
            user_agent=row.user_agent,
        )

    def _to_dev_token(self, row: "DevTokenRow") -> DevTokenRecord:
        return DevTokenRecord(
            token_id=row.token_id,
            user_id=row.user_id,
            token_hash=row.token_hash,
            name=row.name,
            scope=row.scope,
            expires_at=as_utc(row.expires_at),
            created_at=as_utc(row.created_at),
            is_revoked=row.is_revoked,
            last_used_at=as_utc(row.last_used_at) if row.last_used_at else None,
        )

    def create_user(self, username: str, password_hash: str) -> UserRecord:
        now = utcnow()
        with _store_errors("create_user"), self.Session() as session:
            row = UserRow(
                user_id=uuid.uuid4(),
                username=username,
                password_hash=password_hash,
                is_active=True,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            try:
                session.commit()
            except sa_exc.IntegrityError as exc:
                session.rollback()
                taken = session.execute(
                    select(UserRow.user_id).where(UserRow.username == username)
                ).first()
                if taken is not None:
                    raise ConflictError(
                        ErrorKind.USERNAME_TAKEN, f"username {username!r}"
                    ) from exc
                raise
            return self._to_user(row)

    def get_user(self, user_id: uuid.UUID) -> Optional[UserRecord]:
        with _store_errors("get_user"), self.Session() as session:
            row = session.get(UserRow, user_id)
            return self._to_user(row) if row else None

    def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        with _store_errors("get_user_by_username"), self.Session() as session:
            row = session.execute(
                select(UserRow).where(UserRow.username == username)
            ).scalar_one_or_none()
            return self._to_user(row) if row else None

    def create_session(self, record: SessionRecord) -> None:
        with _store_errors("create_session"), self.Session() as session:
            session.add(
                SessionRow(
                    token_id=record.token_id,
                    user_id=record.user_id,
                    session_token=record.session_token,
                    refresh_token_hash=record.refresh_token_hash,
                    session_expires_at=record.session_expires_at,
                    refresh_expires_at=record.refresh_expires_at,
                    created_at=record.created_at,
                    updated_at=record.created_at,
                    is_revoked=record.is_revoked,
                    ip_address=record.ip_address,
                    user_agent=record.user_agent,
                )
            )
            session.commit()

    def find_session_by_token(self, session_token: str) -> Optional[SessionRecord]:
        with _store_errors("find_session_by_token"), self.Session() as session:
            stmt = (
                select(SessionRow)
                .where(
                    SessionRow.session_token == session_token,
                    SessionRow.is_revoked.is_(False),
                )
                .limit(1)
            )
            row = session.execute(stmt).scalar_one_or_none()
            return self._to_session(row) if row else None

    def find_session_by_refresh_hash(
        self, refresh_token_hash: str
    ) -> Optional[SessionRecord]:
        with _store_errors("find_session_by_refresh_hash"), self.Session() as session:
            stmt = (
                select(SessionRow)
                .where(
                    SessionRow.refresh_token_hash == refresh_token_hash,
                    SessionRow.is_revoked.is_(False),
                )
                .limit(1)
            )
            row = session.execute(stmt).scalar_one_or_none()
            return self._to_session(row) if row else None

    def revoke_session(self, session_token: str) -> bool:
        with _store_errors("revoke_session"), self.Session() as session:
            result = session.execute(
                update(SessionRow)
                .where(
                    SessionRow.session_token == session_token,
                    SessionRow.is_revoked.is_(False),
                )
                .values(is_revoked=True, updated_at=utcnow())
            )
            session.commit()
            return (result.rowcount or 0) > 0

    def create_dev_token(self, record: DevTokenRecord) -> None:
        with _store_errors("create_dev_token"), self.Session() as session:
            session.add(
                DevTokenRow(
                    token_id=record.token_id,
                    user_id=record.user_id,
                    token_hash=record.token_hash,
                    name=record.name,
                    scope=record.scope,
                    expires_at=record.expires_at,
                    created_at=record.created_at,
                    updated_at=record.created_at,
                    is_revoked=record.is_revoked,
                    last_used_at=record.last_used_at,
                )
            )
            session.commit()

    def find_dev_token(self, token_hash: str, raw: str) -> Optional[DevTokenRecord]:
        with _store_errors("find_dev_token"), self.Session() as session:
            stmt = (
                select(DevTokenRow)
                .where(
                    or_(DevTokenRow.token_hash == token_hash, DevTokenRow.token_hash == raw),
                    DevTokenRow.is_revoked.is_(False),
                )
                .limit(1)
            )
            row = session.execute(stmt).scalar_one_or_none()
            return self._to_dev_token(row) if row else None

    def touch_dev_token(self, token_id: uuid.UUID, used_at: datetime) -> None:
        with _store_errors("touch_dev_token"), self.Session() as session:
            session.execute(
                update(DevTokenRow)
                .where(DevTokenRow.token_id == token_id)
                .values(last_used_at=used_at, updated_at=used_at)
            )
            session.commit()

    def revoke_dev_token(self, token_id: uuid.UUID) -> bool:
        with _store_errors("revoke_dev_token"), self.Session() as session:
            result = session.execute(
                update(DevTokenRow)
                .where(
                    DevTokenRow.token_id == token_id,
                    DevTokenRow.is_revoked.is_(False),
                )
                .values(is_revoked=True, updated_at=utcnow())
            )
            session.commit()
            return (result.rowcount or 0) > 0

    @contextmanager
    def post_batch(self) -> Iterator[PostBatch]:
        """
        Hold one connection and one compiled INSERT for a whole upload batch.

        Rows are committed one at a time, so a failure part way through
        leaves the earlier rows of the batch in place.
        """
        with _store_errors("post_batch"):
            conn = self.engine.connect()
        try:
            yield _SqlPostBatch(conn)
        finally:
            conn.close()

    def get_post(self, post_id: uuid.UUID) -> Optional[PostRecord]:
        with _store_errors("get_post"), self.Session() as session:
            row = session.get(PostRow, post_id)
            if not row:
                return None
            return PostRecord(
                post_id=row.post_id,
                user_id=row.user_id,
                is_tagged=row.is_tagged,
                created_at=as_utc(row.created_at),
                updated_at=as_utc(row.updated_at),
            )

    def list_post_ids(self) -> list[uuid.UUID]:
        with _store_errors("list_post_ids"), self.Session() as session:
            return list(session.execute(select(PostRow.post_id)).scalars())

    def close(self) -> None:
        self.engine.dispose()


class _SqlPostBatch:
    def __init__(self, conn):
        self._conn = conn
        self._stmt = insert(PostRow)

    def insert(self, post_id: uuid.UUID, user_id: uuid.UUID) -> None:
        now = utcnow()
        with _store_errors("insert_post"):
            try:
                self._conn.execute(
                    self._stmt,
                    {
                        "post_id": post_id,
                        "user_id": user_id,
                        "is_tagged": False,
                        "created_at": now,
                        "updated_at": now,
                    },
                )
                self._conn.commit()
            except sa_exc.SQLAlchemyError:
                self._conn.rollback()
                raise


Base = declarative_base()


class UserRow(Base):
    __tablename__ = "user"
    __table_args__ = (
        CheckConstraint(
            "length(username) >= 3 AND length(username) <= 255",
            name="username_length",
        ),
    )

    user_id = Column(Uuid, primary_key=True)
    username = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    expired_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)


class SessionRow(Base):
    __tablename__ = "session"
    __table_args__ = (
        CheckConstraint("session_expires_at > created_at", name="valid_session_expiry"),
        CheckConstraint("refresh_expires_at > created_at", name="valid_refresh_expiry"),
    )

    token_id = Column(Uuid, primary_key=True)
    user_id = Column(
        Uuid, ForeignKey("user.user_id", ondelete="CASCADE"), nullable=False, index=True
    )
    session_token = Column(Text, nullable=False, unique=True)
    refresh_token_hash = Column(Text, nullable=False, index=True)
    session_expires_at = Column(DateTime(timezone=True), nullable=False)
    refresh_expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    is_revoked = Column(Boolean, nullable=False, default=False, index=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)


class DevTokenRow(Base):
    __tablename__ = "dev_token"
    __table_args__ = (
        CheckConstraint(
            "length(name) >= 1 AND length(name) <= 255", name="token_name_length"
        ),
        CheckConstraint("expires_at > created_at", name="valid_token_expiry"),
    )

    token_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(
        Uuid, ForeignKey("user.user_id", ondelete="CASCADE"), nullable=False, index=True
    )
    token_hash = Column(Text, nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    scope = Column(Text, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    is_revoked = Column(Boolean, nullable=False, default=False, index=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)


class PostRow(Base):
    __tablename__ = "post"

    post_id = Column(Uuid, primary_key=True)
    user_id = Column(
        Uuid, ForeignKey("user.user_id", ondelete="CASCADE"), nullable=False, index=True
    )
    is_tagged = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


Index("idx_post_created_at", PostRow.created_at.desc())
