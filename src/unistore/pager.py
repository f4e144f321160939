"""Single-use pagination for depth-one directory listings.

Every backend exposes a different continuation idiom (continuation tokens,
page tokens, an open directory handle). A ``PageSource`` wraps one of those
and ``DirectoryPage`` turns it into a single contract: each page can be
advanced exactly once, to its unique successor.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterator

from .base import Metadata
from .exceptions import PageAlreadyAdvancedError

log = logging.getLogger(__name__)


@dataclass
class PageBatch:
    """One vendor round trip worth of listing results."""

    directories: list[Metadata] = field(default_factory=list)
    files: list[Metadata] = field(default_factory=list)
    truncated: bool = False
    cursor: Any = None


class PageSource(ABC):
    """Backend-specific cursor state machine behind a DirectoryPage."""

    @abstractmethod
    def fetch(self, cursor: Any, limit: int) -> PageBatch:
        """Fetch the batch following *cursor* (None for the first batch)."""

    def close(self) -> None:
        """Release any handle held for the listing."""


class DirectoryPage:
    """One page of a directory listing.

    A page is a single-use capability: ``next_page()`` may be called once and
    returns the successor. Pages are not safe to share between threads.
    """

    def __init__(
        self,
        path: str,
        limit: int,
        source: PageSource | None,
        directories: list[Metadata] | None = None,
        files: list[Metadata] | None = None,
        truncated: bool = False,
        cursor: Any = None,
        end_of_sequence: bool = False,
    ):
        self.path = path
        self.limit = limit
        self._source = source
        self._directories = directories if directories is not None else []
        self._files = files if files is not None else []
        self._truncated = truncated
        self._cursor = cursor
        self._end_of_sequence = end_of_sequence
        self._advanced = False

    @classmethod
    def first(cls, source: PageSource, path: str, limit: int) -> "DirectoryPage":
        """Fetch the first page of a listing."""
        fresh = cls(path=path, limit=limit, source=source, truncated=True)
        return fresh.next_page()

    @classmethod
    def exhausted(cls, path: str) -> "DirectoryPage":
        """An empty, already-complete listing (e.g. for a directory that doesn't exist)."""
        return cls(path=path, limit=0, source=None, truncated=False)

    @property
    def directories(self) -> list[Metadata]:
        return self._directories

    @property
    def files(self) -> list[Metadata]:
        return self._files

    @property
    def truncated(self) -> bool:
        """True while further pages remain."""
        return self._truncated

    @property
    def cursor(self) -> Any:
        """Opaque continuation state, only meaningful to the backend that produced it."""
        return self._cursor

    @property
    def end_of_sequence(self) -> bool:
        """True for the empty page returned when advancing past the last page."""
        return self._end_of_sequence

    def next_page(self) -> "DirectoryPage":
        if self._advanced:
            raise PageAlreadyAdvancedError("next_page() can only be called once per page", key=self.path)

        if not self._truncated:
            self._advanced = True
            return DirectoryPage(
                path=self.path,
                limit=self.limit,
                source=self._source,
                truncated=False,
                end_of_sequence=True,
            )

        batch = self._source.fetch(self._cursor, self.limit)
        self._advanced = True
        log.debug(
            "Fetched page of %s: %d directories, %d files, truncated=%s",
            self.path or "/",
            len(batch.directories),
            len(batch.files),
            batch.truncated,
        )
        return DirectoryPage(
            path=self.path,
            limit=self.limit,
            source=self._source,
            directories=batch.directories,
            files=batch.files,
            truncated=batch.truncated,
            cursor=batch.cursor,
        )

    def iter_pages(self) -> Iterator["DirectoryPage"]:
        """Yield this page and every successor until the listing is complete."""
        page = self
        yield page
        while page.truncated:
            page = page.next_page()
            yield page

    def release(self) -> None:
        """Drop buffered entries; the cursor needed for next_page() is kept."""
        self._directories = []
        self._files = []

    def close(self) -> None:
        self.release()
        if self._source is not None:
            self._source.close()

    def __enter__(self) -> "DirectoryPage":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
