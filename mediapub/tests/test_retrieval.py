import io
import os
import tempfile
import unittest
import uuid
from unittest.mock import patch

from mediapub.db import InMemoryDbClient
from mediapub.documents import InMemoryDocumentStore, PostMetadata
from mediapub.errors import ErrorKind, NotFoundError, StorageError, ValidationError
from mediapub.ingest import IngestionCoordinator, UploadedFile
from mediapub.retrieval import RetrievalGateway
from mediapub.storage import LocalStorageClient, check_relative_path

from testing_utils import make_user

TRAVERSAL_INPUTS = [
    "",
    "../../etc/passwd",
    "/etc/passwd",
    "..\\..\\x",
    "a/../../b",
    "C:\\Windows\\win.ini",
    "cat\x00.png",
]


class RetrievalGatewayTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = os.path.join(self._tmp.name, "files")
        self.db = InMemoryDbClient()
        self.documents = InMemoryDocumentStore()
        self.storage = LocalStorageClient(self.root)
        self.user = make_user(self.db)
        self.retrieval = RetrievalGateway(self.db, self.documents, self.storage)

    def tearDown(self):
        self._tmp.cleanup()

    def _ingest(self, name="cat.png", data=b"meow", title="Cat"):
        ingestion = IngestionCoordinator(self.db, self.documents, self.storage)
        return ingestion.ingest(
            self.user.user_id,
            [UploadedFile(stream=io.BytesIO(data), filename=name, content_type="image/png")],
            [PostMetadata(title=title)],
        )[0]

    def test_resolve_and_serve_round_trip(self):
        stored = self._ingest()
        post_id = stored.split(".")[0]

        view = self.retrieval.resolve(post_id)
        self.assertEqual(view.filename, stored)
        self.assertEqual(view.metadata.title, "Cat")

        stream, media_type = self.retrieval.serve_raw(view.filename)
        with stream:
            self.assertEqual(stream.read(), b"meow")
        self.assertEqual(media_type, "image/png")

    def test_resolve_accepts_upper_case_id(self):
        stored = self._ingest()
        view = self.retrieval.resolve(stored.split(".")[0].upper())
        self.assertEqual(view.filename, stored)

    def test_invalid_id_does_not_touch_the_store(self):
        with patch.object(self.db, "get_post") as get_post:
            with self.assertRaises(ValidationError) as ctx:
                self.retrieval.resolve("not-a-uuid")
        self.assertEqual(ctx.exception.kind, ErrorKind.INVALID_IDENTIFIER)
        get_post.assert_not_called()

    def test_unknown_id(self):
        with self.assertRaises(NotFoundError) as ctx:
            self.retrieval.resolve(str(uuid.uuid4()))
        self.assertEqual(ctx.exception.kind, ErrorKind.NOT_FOUND)

    def test_list_all(self):
        self.assertEqual(self.retrieval.list_all(), [])
        first = self._ingest("a.png")
        second = self._ingest("b.png")
        self.assertCountEqual(
            self.retrieval.list_all(), [first.split(".")[0], second.split(".")[0]]
        )

    def test_unknown_media_type_falls_back(self):
        stored = self._ingest("blob.zzzq", b"\x00\x01")
        stream, media_type = self.retrieval.serve_raw(stored)
        stream.close()
        self.assertEqual(media_type, "application/octet-stream")

    def test_traversal_is_rejected(self):
        for path in TRAVERSAL_INPUTS:
            with self.subTest(path=path):
                with self.assertRaises(StorageError) as ctx:
                    self.retrieval.serve_raw(path)
                self.assertEqual(ctx.exception.kind, ErrorKind.PATH_TRAVERSAL_REJECTED)
                self.assertEqual(ctx.exception.status_code, 400)

    def test_missing_file(self):
        self._ingest()
        with self.assertRaises(NotFoundError):
            self.retrieval.serve_raw("missing.png")


class LocalStorageClientTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = os.path.join(self._tmp.name, "files")
        self.storage = LocalStorageClient(self.root)

    def tearDown(self):
        self._tmp.cleanup()

    def test_save_creates_root_lazily(self):
        self.assertFalse(os.path.exists(self.root))
        self.storage.save("x.bin", io.BytesIO(b"data"))
        with open(os.path.join(self.root, "x.bin"), "rb") as handle:
            self.assertEqual(handle.read(), b"data")

    def test_symlink_escaping_root_is_rejected(self):
        os.makedirs(self.root)
        outside = os.path.join(self._tmp.name, "secret.txt")
        with open(outside, "w") as handle:
            handle.write("secret")
        os.symlink(outside, os.path.join(self.root, "link.txt"))

        with self.assertRaises(StorageError) as ctx:
            self.storage.open("link.txt")
        self.assertEqual(ctx.exception.kind, ErrorKind.PATH_TRAVERSAL_REJECTED)

    def test_save_rejects_traversal(self):
        with self.assertRaises(StorageError):
            self.storage.save("../escape.bin", io.BytesIO(b"data"))
        self.assertFalse(os.path.exists(os.path.join(self._tmp.name, "escape.bin")))

    def test_check_relative_path_accepts_nested_names(self):
        self.assertEqual(str(check_relative_path("a/b.png")), "a/b.png")


if __name__ == "__main__":
    unittest.main()
