"""Abstract base classes and value types for object storage backends."""

import io
import posixpath
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, BinaryIO, Iterator

from .exceptions import StorageNotImplementedError

if TYPE_CHECKING:
    from fastapi import Request
    from fastapi.responses import Response

    from .delivery import ConditionalObject, ConditionalRead
    from .pager import DirectoryPage

DEFAULT_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class Metadata:
    """Path and modification time of a stored object, relative to the backend root."""

    path: str
    last_modified: datetime | None = None


@dataclass(frozen=True)
class Object(Metadata):
    """An object with its content fully read into memory."""

    content: bytes = b""

    def has_extension(self, extension: str) -> bool:
        return posixpath.splitext(self.path)[1] == f".{extension}"


@dataclass(eq=False)
class ObjectStream:
    """An object whose content is a lazily-read binary channel.

    The holder owns the channel and must close it; use it as a context
    manager so the channel is released on every exit path.
    """

    path: str
    content: BinaryIO
    last_modified: datetime | None = None
    _closed: bool = field(default=False, init=False, repr=False)

    def read(self, size: int = -1) -> bytes:
        return self.content.read(size)

    def iter_chunks(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
        while True:
            chunk = self.content.read(chunk_size)
            if not chunk:
                return
            yield chunk

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.content.close()

    def __enter__(self) -> "ObjectStream":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


@dataclass
class ObjectSliceDiff:
    """What changed between two listings of the same location."""

    changed: bool = False
    removed: list[Metadata] = field(default_factory=list)
    added: list[Metadata] = field(default_factory=list)
    updated: list[Metadata] = field(default_factory=list)


class Backend(ABC):
    """Backend-agnostic interface for blob storage operations.

    All paths are relative to the root prefix the backend was configured with.
    """

    @abstractmethod
    def list_objects(self, prefix: str = "") -> list[Metadata]:
        """List the objects directly under *prefix* (depth one, no content)."""

    def list_objects_from_directory(self, path: str, limit: int = 0) -> "DirectoryPage":
        """List *path* as a directory, one level deep, returning the first page.

        ``limit <= 0`` means as many entries as the store returns in one call.
        Keep calling ``next_page()`` while the page is truncated.
        """
        raise StorageNotImplementedError(
            f"{type(self).__name__} does not support directory listing", key=path
        )

    @abstractmethod
    def get_object(self, path: str) -> Object:
        """Download an object. Raises StorageNotFoundError if missing."""

    @abstractmethod
    def put_object(self, path: str, content: bytes) -> None:
        """Upload content, replacing any existing object at *path*."""

    @abstractmethod
    def delete_object(self, path: str) -> None:
        """Delete a single object. No-op if the path doesn't exist."""

    def rename_prefix_or_object(self, path: str, new_path: str) -> None:
        """Move an object or a whole virtual directory to *new_path*."""
        raise StorageNotImplementedError(
            f"{type(self).__name__} does not support rename", key=path
        )


class StreamingBackend(Backend):
    """Backend whose reads and writes can go through byte streams."""

    @abstractmethod
    def get_object_stream(self, path: str) -> ObjectStream:
        """Open an object for reading. The caller must close the returned stream."""

    @abstractmethod
    def put_object_stream(self, path: str, source: BinaryIO) -> None:
        """Upload everything readable from *source* to *path*."""

    @abstractmethod
    def get_object_conditional(self, path: str, conditions: "ConditionalRead") -> "ConditionalObject":
        """Read an object honouring HTTP preconditions and an optional byte range.

        Raises StorageNotFoundError, NotModifiedError or PreconditionFailedError.
        """

    def get_object(self, path: str) -> Object:
        with self.get_object_stream(path) as stream:
            return Object(path=stream.path, last_modified=stream.last_modified, content=stream.read())

    def put_object(self, path: str, content: bytes) -> None:
        self.put_object_stream(path, io.BytesIO(content))

    def serve_http(self, request: "Request", path: str) -> "Response":
        """Answer a GET or HEAD request for *path* with conditional/range semantics."""
        from .delivery import deliver

        return deliver(self, request.method, request.headers, path)
