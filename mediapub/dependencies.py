"""
Dependency wiring for the FastAPI app.

Store handles are opened once by the app factory and kept on ``app.state``;
request handlers reach them only through the dependencies below.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta

from fastapi import Depends, Request

from mediapub.accounts import AccountService
from mediapub.config import Settings
from mediapub.credentials import CredentialClass, CredentialValidator, DevTokenManager
from mediapub.db import DbClient, InMemoryDbClient, PostgresDbClient
from mediapub.documents import DocumentStore, InMemoryDocumentStore, MongoDocumentStore
from mediapub.errors import AuthError, ErrorKind
from mediapub.ingest import IngestionCoordinator
from mediapub.retrieval import RetrievalGateway
from mediapub.sessions import SessionManager
from mediapub.storage import InMemoryStorageClient, LocalStorageClient, StorageClient

logger = logging.getLogger(__name__)

BEARER_PREFIX = "bearer "


@dataclass
class Backends:
    db: DbClient
    documents: DocumentStore
    storage: StorageClient

    def close(self) -> None:
        self.db.close()
        self.documents.close()


@dataclass
class Services:
    accounts: AccountService
    sessions: SessionManager
    validator: CredentialValidator
    dev_tokens: DevTokenManager
    ingestion: IngestionCoordinator
    retrieval: RetrievalGateway


def build_backends(settings: Settings) -> Backends:
    """Open the store handles described by settings, falling back to in-memory ones."""
    if settings.use_in_memory_backends or not settings.database_url:
        if not settings.use_in_memory_backends:
            logger.warning(
                "DATABASE_URL is not set, falling back to the in-memory relational "
                "store; it is not safe under concurrent requests"
            )
        db: DbClient = InMemoryDbClient()
    else:
        db = PostgresDbClient(
            settings.database_url,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_timeout=settings.db_pool_timeout,
        )

    if settings.use_in_memory_backends or not settings.mongodb_url:
        if not settings.use_in_memory_backends:
            logger.warning(
                "MONGODB_URL is not set, falling back to the in-memory document "
                "store; it is not safe under concurrent requests"
            )
        documents: DocumentStore = InMemoryDocumentStore()
    else:
        mongo = MongoDocumentStore(
            settings.mongodb_url,
            database=settings.mongodb_database,
            collection=settings.mongodb_collection,
            max_pool_size=settings.mongodb_max_pool_size,
            min_pool_size=settings.mongodb_min_pool_size,
        )
        mongo.ensure_indexes()
        documents = mongo

    if settings.use_in_memory_backends:
        storage: StorageClient = InMemoryStorageClient()
    else:
        storage = LocalStorageClient(settings.storage_root)

    logger.info(
        "Backends ready: db=%s documents=%s storage=%s",
        type(db).__name__,
        type(documents).__name__,
        type(storage).__name__,
    )
    return Backends(db=db, documents=documents, storage=storage)


def build_services(backends: Backends, settings: Settings) -> Services:
    sessions = SessionManager(
        backends.db,
        session_ttl=timedelta(seconds=settings.session_ttl_seconds),
        refresh_ttl=timedelta(days=settings.refresh_ttl_days),
        enforce_session_expiry=settings.enforce_session_expiry,
    )
    return Services(
        accounts=AccountService(
            backends.db, sessions, bcrypt_rounds=settings.bcrypt_rounds
        ),
        sessions=sessions,
        validator=CredentialValidator(backends.db, sessions),
        dev_tokens=DevTokenManager(backends.db),
        ingestion=IngestionCoordinator(
            backends.db, backends.documents, backends.storage
        ),
        retrieval=RetrievalGateway(backends.db, backends.documents, backends.storage),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def bearer_credential(request: Request) -> str:
    header = request.headers.get("authorization")
    if not header or not header.strip():
        raise AuthError(ErrorKind.MISSING_CREDENTIAL, "no authorization header")
    credential = header.strip()
    if credential.lower().startswith(BEARER_PREFIX):
        credential = credential[len(BEARER_PREFIX):].strip()
    return credential


def session_user(
    credential: str = Depends(bearer_credential),
    services: Services = Depends(get_services),
) -> uuid.UUID:
    return services.validator.resolve(credential, CredentialClass.SESSION_TOKEN)


def dev_token_user(
    credential: str = Depends(bearer_credential),
    services: Services = Depends(get_services),
) -> uuid.UUID:
    return services.validator.resolve(credential, CredentialClass.DEV_TOKEN)
