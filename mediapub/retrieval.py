"""
Read paths for uploaded content.
"""

from __future__ import annotations

import logging
import mimetypes
import uuid
from dataclasses import dataclass
from typing import BinaryIO

from mediapub.db import DbClient
from mediapub.documents import DocumentStore, PostMetadata
from mediapub.errors import ErrorKind, NotFoundError, ValidationError
from mediapub.storage import StorageClient, check_relative_path

logger = logging.getLogger(__name__)


@dataclass
class ItemView:
    filename: str
    metadata: PostMetadata


class RetrievalGateway:
    def __init__(
        self, db: DbClient, documents: DocumentStore, storage: StorageClient
    ):
        self._db = db
        self._documents = documents
        self._storage = storage

    def resolve(self, content_id: str) -> ItemView:
        try:
            post_id = uuid.UUID(content_id)
        except (TypeError, ValueError) as exc:
            raise ValidationError(
                ErrorKind.INVALID_IDENTIFIER, detail=f"{content_id!r}"
            ) from exc

        if self._db.get_post(post_id) is None:
            raise NotFoundError(ErrorKind.NOT_FOUND, f"post {post_id}")
        document = self._documents.find_post(post_id)
        if document is None:
            logger.warning("Post %s exists but its document is missing", post_id)
            raise NotFoundError(ErrorKind.METADATA_MISSING, f"post {post_id}")
        return ItemView(filename=document.filename, metadata=document.metadata)

    def list_all(self) -> list[str]:
        return [str(post_id) for post_id in self._db.list_post_ids()]

    def serve_raw(self, requested_path: str) -> tuple[BinaryIO, str]:
        """Open a stored file; returns the stream and a guessed media type."""
        check_relative_path(requested_path)
        stream = self._storage.open(requested_path)
        media_type, _ = mimetypes.guess_type(requested_path)
        return stream, media_type or "application/octet-stream"
