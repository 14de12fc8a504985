import io
import unittest
import uuid
from contextlib import contextmanager
from unittest.mock import patch

from mediapub.db import InMemoryDbClient
from mediapub.documents import InMemoryDocumentStore, PostMetadata
from mediapub.errors import (
    DatabaseError,
    ErrorKind,
    NotFoundError,
    StorageError,
    Store,
    ValidationError,
)
from mediapub.ingest import IngestionCoordinator, UploadedFile, file_extension
from mediapub.retrieval import RetrievalGateway
from mediapub.storage import InMemoryStorageClient

from testing_utils import make_user


def _upload(name, data=b"bytes", content_type="image/png"):
    return UploadedFile(stream=io.BytesIO(data), filename=name, content_type=content_type)


class _FailingBatch:
    def __init__(self, posts):
        self._posts = posts

    def insert(self, post_id, user_id):
        raise DatabaseError(ErrorKind.CONNECTION_FAILED, Store.RELATIONAL, "pool timeout")


class _RowlessDbClient(InMemoryDbClient):
    @contextmanager
    def post_batch(self):
        yield _FailingBatch(self.posts)


class FileExtensionTests(unittest.TestCase):
    def test_extension_cases(self):
        self.assertEqual(file_extension("cat.png"), "png")
        self.assertEqual(file_extension("archive.tar.GZ"), "GZ")
        self.assertIsNone(file_extension("README"))
        self.assertIsNone(file_extension(".bashrc"))
        self.assertIsNone(file_extension("cat."))
        self.assertIsNone(file_extension("cat.p/ng"))
        self.assertIsNone(file_extension("cat." + "x" * 17))


class IngestionCoordinatorTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.documents = InMemoryDocumentStore()
        self.storage = InMemoryStorageClient()
        self.user = make_user(self.db)
        self.ingestion = IngestionCoordinator(self.db, self.documents, self.storage)

    def test_ingest_writes_all_three_stores(self):
        stored = self.ingestion.ingest(
            self.user.user_id,
            [_upload("cat.png", b"meow"), _upload("dog.JPG", b"woof", "image/jpeg")],
            [PostMetadata(title="Cat"), PostMetadata(title="Dog", creator="me")],
        )

        self.assertEqual(len(stored), 2)
        self.assertTrue(stored[0].endswith(".png"))
        self.assertTrue(stored[1].endswith(".JPG"))
        self.assertEqual(self.storage.stored_objects[stored[0]], b"meow")
        self.assertEqual(self.storage.stored_objects[stored[1]], b"woof")

        post_id = uuid.UUID(stored[1].split(".")[0])
        self.assertEqual(self.db.get_post(post_id).user_id, self.user.user_id)
        document = self.documents.find_post(post_id)
        self.assertEqual(document.uploader, self.user.user_id)
        self.assertEqual(document.filename, stored[1])
        self.assertEqual(document.metadata.creator, "me")

    def test_count_mismatch_has_no_side_effects(self):
        with self.assertRaises(ValidationError) as ctx:
            self.ingestion.ingest(
                self.user.user_id,
                [_upload("cat.png"), _upload("dog.png")],
                [PostMetadata(title="Cat")],
            )
        self.assertEqual(ctx.exception.kind, ErrorKind.COUNT_MISMATCH)
        self.assertEqual(
            ctx.exception.public_message, "metadata count does not match file count."
        )
        self.assertEqual(self.storage.stored_objects, {})
        self.assertEqual(self.db.posts, {})
        self.assertEqual(self.documents.documents, {})

    def test_empty_batch_is_rejected(self):
        with self.assertRaises(ValidationError):
            self.ingestion.ingest(self.user.user_id, [], [])

    def test_missing_extension_stops_batch_but_keeps_earlier_items(self):
        with self.assertRaises(ValidationError) as ctx:
            self.ingestion.ingest(
                self.user.user_id,
                [_upload("cat.png"), _upload("README")],
                [PostMetadata(title="Cat"), PostMetadata(title="Readme")],
            )
        self.assertEqual(ctx.exception.kind, ErrorKind.MISSING_EXTENSION)
        self.assertEqual(len(self.storage.stored_objects), 1)
        self.assertEqual(len(self.db.posts), 1)
        self.assertEqual(len(self.documents.documents), 1)

    def test_missing_content_type(self):
        with self.assertRaises(ValidationError) as ctx:
            self.ingestion.ingest(
                self.user.user_id,
                [_upload("cat.png", content_type=None)],
                [PostMetadata(title="Cat")],
            )
        self.assertEqual(ctx.exception.public_message, "Content-Type header missing.")
        self.assertEqual(self.storage.stored_objects, {})

    def test_storage_failure_writes_no_rows(self):
        failure = StorageError(ErrorKind.WRITE_FAILED, "disk full")
        with patch.object(self.storage, "save", side_effect=failure):
            with self.assertRaises(StorageError) as ctx:
                self.ingestion.ingest(
                    self.user.user_id, [_upload("cat.png")], [PostMetadata(title="Cat")]
                )
        self.assertEqual(ctx.exception.status_code, 500)
        self.assertEqual(self.db.posts, {})
        self.assertEqual(self.documents.documents, {})

    def test_relational_failure_leaves_orphaned_file(self):
        db = _RowlessDbClient()
        ingestion = IngestionCoordinator(db, self.documents, self.storage)
        with self.assertRaises(DatabaseError) as ctx:
            ingestion.ingest(
                self.user.user_id, [_upload("cat.png")], [PostMetadata(title="Cat")]
            )
        self.assertEqual(ctx.exception.kind, ErrorKind.RELATIONAL_INSERT_FAILED)
        self.assertEqual(ctx.exception.store, Store.RELATIONAL)
        self.assertEqual(len(self.storage.stored_objects), 1)
        self.assertEqual(db.posts, {})
        self.assertEqual(self.documents.documents, {})

    def test_document_failure_leaves_row_without_metadata(self):
        post_id = uuid.uuid4()
        ingestion = IngestionCoordinator(
            self.db, self.documents, self.storage, id_factory=lambda: post_id
        )
        failure = DatabaseError(ErrorKind.QUERY_FAILED, Store.DOCUMENT, "write concern")
        with patch.object(self.documents, "insert_post", side_effect=failure):
            with self.assertRaises(DatabaseError) as ctx:
                ingestion.ingest(
                    self.user.user_id, [_upload("cat.png")], [PostMetadata(title="Cat")]
                )
        self.assertEqual(ctx.exception.kind, ErrorKind.DOCUMENT_INSERT_FAILED)
        self.assertIsNotNone(self.db.get_post(post_id))

        retrieval = RetrievalGateway(self.db, self.documents, self.storage)
        with self.assertRaises(NotFoundError) as ctx:
            retrieval.resolve(str(post_id))
        self.assertEqual(ctx.exception.kind, ErrorKind.METADATA_MISSING)


if __name__ == "__main__":
    unittest.main()
