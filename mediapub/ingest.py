"""
Upload ingestion across the filesystem, the relational store and the document store.

Each item goes through a fixed sequence: write the file, insert the post
row, insert the post document. Nothing is compensated on failure:

* a failed row insert leaves an orphaned file;
* a failed document insert leaves a post row without metadata;
* items that completed earlier in the same batch stay committed.

The batch stops at the first failure.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass
from typing import BinaryIO, Callable, Optional, Sequence

from mediapub.db import DbClient
from mediapub.documents import DocumentStore, PostDocument, PostMetadata
from mediapub.errors import DatabaseError, ErrorKind, Store, ValidationError
from mediapub.storage import StorageClient

logger = logging.getLogger(__name__)

EXTENSION_PATTERN = re.compile(r"^[A-Za-z0-9]{1,16}$")


@dataclass
class UploadedFile:
    stream: BinaryIO
    filename: Optional[str]
    content_type: Optional[str] = None


def file_extension(filename: str) -> Optional[str]:
    """Return the extension after the last dot if it looks like one."""
    stem, dot, ext = filename.rpartition(".")
    if not dot or not stem.strip() or not EXTENSION_PATTERN.match(ext):
        return None
    return ext


def check_batch_shape(file_count: int, metadata_count: int) -> None:
    """Reject a batch whose file and metadata counts differ, or an empty one."""
    if file_count != metadata_count:
        raise ValidationError(
            ErrorKind.COUNT_MISMATCH,
            detail=f"{file_count} files, {metadata_count} metadata entries",
        )
    if not file_count:
        raise ValidationError(message="no files were uploaded.")


class IngestionCoordinator:
    def __init__(
        self,
        db: DbClient,
        documents: DocumentStore,
        storage: StorageClient,
        *,
        id_factory: Callable[[], uuid.UUID] = uuid.uuid4,
    ):
        self._db = db
        self._documents = documents
        self._storage = storage
        self._new_id = id_factory

    def ingest(
        self,
        user_id: uuid.UUID,
        files: Sequence[UploadedFile],
        metadata: Sequence[PostMetadata],
    ) -> list[str]:
        """
        Store every uploaded file and return the stored filenames in order.

        ``user_id`` must already have been resolved from a bearer credential.
        """
        check_batch_shape(len(files), len(metadata))

        stored: list[str] = []
        with self._db.post_batch() as batch:
            for upload, meta in zip(files, metadata):
                post_id = self._new_id()
                if not upload.filename:
                    raise ValidationError(message="filename was not found.")
                if not upload.content_type:
                    raise ValidationError(message="Content-Type header missing.")
                ext = file_extension(upload.filename)
                if ext is None:
                    raise ValidationError(
                        ErrorKind.MISSING_EXTENSION,
                        detail=f"filename {upload.filename!r}",
                    )

                new_filename = f"{post_id}.{ext}"
                self._storage.save(new_filename, upload.stream)
                logger.info("%s saved as %s", upload.filename, new_filename)

                try:
                    batch.insert(post_id, user_id)
                except DatabaseError as exc:
                    logger.error(
                        "Post row insert failed for %s, file %s left orphaned: %s",
                        post_id,
                        new_filename,
                        exc,
                    )
                    raise DatabaseError(
                        ErrorKind.RELATIONAL_INSERT_FAILED, Store.RELATIONAL, exc.detail
                    ) from exc

                document = PostDocument(
                    post_id=post_id,
                    uploader=user_id,
                    filename=new_filename,
                    metadata=meta,
                )
                try:
                    self._documents.insert_post(document)
                except DatabaseError as exc:
                    logger.error(
                        "Post document insert failed for %s, row kept without metadata: %s",
                        post_id,
                        exc,
                    )
                    raise DatabaseError(
                        ErrorKind.DOCUMENT_INSERT_FAILED, Store.DOCUMENT, exc.detail
                    ) from exc

                logger.info("Inserted post %s", post_id)
                stored.append(new_filename)
        return stored
