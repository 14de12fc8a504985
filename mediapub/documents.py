"""
Document store abstraction for post metadata (MongoDB) and in-memory testing.

Post documents are keyed by the raw bytes of the post UUID. MongoDB stores
the id as BSON binary subtype 4, so a lookup only matches when both sides
encode the identifier identically.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Dict, Optional, Protocol

from bson.binary import Binary
from pymongo import ASCENDING, MongoClient
from pymongo import errors as mongo_errors

from mediapub.errors import DatabaseError, ErrorKind, Store

logger = logging.getLogger(__name__)


@dataclass
class PostMetadata:
    title: str = ""
    creator: str = ""
    source: str = ""
    description: str = ""

    def as_dict(self) -> dict:
        return {
            "title": self.title,
            "creator": self.creator,
            "source": self.source,
            "description": self.description,
        }


@dataclass
class PostDocument:
    post_id: uuid.UUID
    uploader: uuid.UUID
    filename: str
    metadata: PostMetadata


class DocumentStore(Protocol):
    """Operations the ingestion and retrieval paths need from the document store."""

    def insert_post(self, document: PostDocument) -> None:
        ...

    def find_post(self, post_id: uuid.UUID) -> Optional[PostDocument]:
        ...

    def close(self) -> None:
        ...


class InMemoryDocumentStore:
    """Test double for document store interactions."""

    def __init__(self):
        self.documents: Dict[bytes, PostDocument] = {}

    def insert_post(self, document: PostDocument) -> None:
        key = document.post_id.bytes
        if key in self.documents:
            raise DatabaseError(
                ErrorKind.QUERY_FAILED,
                Store.DOCUMENT,
                f"duplicate post document {document.post_id}",
            )
        self.documents[key] = document

    def find_post(self, post_id: uuid.UUID) -> Optional[PostDocument]:
        return self.documents.get(post_id.bytes)

    def reset(self) -> None:
        self.documents.clear()

    def close(self) -> None:
        pass


def _translate(exc: mongo_errors.PyMongoError, operation: str) -> DatabaseError:
    if isinstance(exc, mongo_errors.ConnectionFailure):
        logger.error("Document store unavailable during %s: %s", operation, exc)
        return DatabaseError(ErrorKind.CONNECTION_FAILED, Store.DOCUMENT, str(exc))
    logger.error("Document store query failed during %s: %s", operation, exc)
    return DatabaseError(ErrorKind.QUERY_FAILED, Store.DOCUMENT, str(exc))


class MongoDocumentStore:
    """
    MongoDB-backed post documents.

    The client multiplexes its own connection pool and is shared by all
    requests.
    """

    def __init__(
        self,
        url: str,
        *,
        database: str = "image",
        collection: str = "post",
        max_pool_size: int = 50,
        min_pool_size: int = 5,
    ):
        if not url:
            raise ValueError("MONGODB_URL is required for MongoDocumentStore")
        self._client = MongoClient(
            url, maxPoolSize=max_pool_size, minPoolSize=min_pool_size
        )
        self._collection = self._client[database][collection]

    def ensure_indexes(self) -> None:
        try:
            self._collection.create_index(
                [("post_id", ASCENDING)], unique=True, name="post_id_unique"
            )
        except mongo_errors.PyMongoError as exc:
            raise _translate(exc, "ensure_indexes") from exc

    def insert_post(self, document: PostDocument) -> None:
        payload = {
            "post_id": Binary.from_uuid(document.post_id),
            "uploader": Binary.from_uuid(document.uploader),
            "filename": document.filename,
            **document.metadata.as_dict(),
        }
        try:
            self._collection.insert_one(payload)
        except mongo_errors.PyMongoError as exc:
            raise _translate(exc, "insert_post") from exc

    def find_post(self, post_id: uuid.UUID) -> Optional[PostDocument]:
        try:
            found = self._collection.find_one(
                {"post_id": Binary.from_uuid(post_id)}, {"_id": False}
            )
        except mongo_errors.PyMongoError as exc:
            raise _translate(exc, "find_post") from exc
        if found is None:
            return None
        return PostDocument(
            post_id=post_id,
            uploader=_as_uuid(found.get("uploader")),
            filename=found.get("filename", ""),
            metadata=PostMetadata(
                title=found.get("title", ""),
                creator=found.get("creator", ""),
                source=found.get("source", ""),
                description=found.get("description", ""),
            ),
        )

    def close(self) -> None:
        self._client.close()


def _as_uuid(value) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    if isinstance(value, Binary):
        return value.as_uuid()
    return uuid.UUID(str(value))
