"""
Storage abstraction for uploaded files on the local filesystem and in-memory testing.

Requested paths come from clients, so every read is checked lexically and,
for the local backend, again after canonicalisation against the root.
"""

from __future__ import annotations

import io
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import BinaryIO, Protocol

from mediapub.errors import ErrorKind, NotFoundError, StorageError

logger = logging.getLogger(__name__)

COPY_CHUNK_SIZE = 1024 * 1024


class StorageClient(Protocol):
    """Defines the operations the API needs from file storage."""

    def save(self, name: str, stream: BinaryIO) -> None:
        ...

    def open(self, path: str) -> BinaryIO:
        ...


def check_relative_path(path: str) -> PurePosixPath:
    """
    Reject empty, absolute or parent-relative paths.

    Backslashes are treated as separators so Windows-style input cannot
    smuggle a ``..`` segment past the check.
    """
    if not path or "\x00" in path:
        raise StorageError(ErrorKind.PATH_TRAVERSAL_REJECTED, f"bad path {path!r}")
    normalized = path.replace("\\", "/")
    pure = PurePosixPath(normalized)
    if pure.is_absolute() or PureWindowsPath(path).drive or ".." in pure.parts:
        raise StorageError(ErrorKind.PATH_TRAVERSAL_REJECTED, f"bad path {path!r}")
    return pure


class LocalStorageClient:
    """Files under a single root directory."""

    def __init__(self, root: str):
        self.root = Path(root).resolve()

    def _contained(self, path: str) -> Path:
        relative = check_relative_path(path)
        candidate = (self.root / relative).resolve()
        if candidate == self.root or not candidate.is_relative_to(self.root):
            raise StorageError(
                ErrorKind.PATH_TRAVERSAL_REJECTED,
                f"{path!r} resolves outside {self.root}",
            )
        return candidate

    def save(self, name: str, stream: BinaryIO) -> None:
        target = self._contained(name)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            with open(target, "wb") as out:
                shutil.copyfileobj(stream, out, COPY_CHUNK_SIZE)
        except OSError as exc:
            logger.error("%s failed to save: %s", name, exc)
            raise StorageError(ErrorKind.WRITE_FAILED, str(exc)) from exc

    def open(self, path: str) -> BinaryIO:
        target = self._contained(path)
        if not target.is_file():
            raise NotFoundError(ErrorKind.NOT_FOUND, f"no file {path!r}")
        return open(target, "rb")


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    stored_objects: dict = field(default_factory=dict)

    def save(self, name: str, stream: BinaryIO) -> None:
        check_relative_path(name)
        self.stored_objects[name] = stream.read()

    def open(self, path: str) -> BinaryIO:
        check_relative_path(path)
        stored = self.stored_objects.get(path)
        if stored is None:
            raise NotFoundError(ErrorKind.NOT_FOUND, f"no file {path!r}")
        return io.BytesIO(stored)
