"""Copy-then-delete rename of an object or a whole virtual directory."""

import logging
from abc import abstractmethod
from typing import Iterator

from . import paths
from .exceptions import NewPathNotEmptyError, StorageNotFoundError

log = logging.getLogger(__name__)


class CopyRenameMixin:
    """Implements ``rename_prefix_or_object`` for stores with a native copy.

    Subclasses provide the store primitives below, all taking absolute keys.
    A directory rename moves one object at a time and is not atomic: on
    failure, objects already moved stay at the new location.
    """

    _prefix: str

    @abstractmethod
    def _object_exists(self, key: str) -> bool:
        """True if exactly *key* is an object."""

    @abstractmethod
    def _prefix_has_objects(self, prefix: str) -> bool:
        """True if at least one object key starts with *prefix*."""

    @abstractmethod
    def _iter_keys(self, prefix: str) -> Iterator[str]:
        """Every object key starting with *prefix*, at any depth."""

    @abstractmethod
    def _copy_object(self, source_key: str, destination_key: str) -> None:
        """Server-side copy."""

    @abstractmethod
    def _delete_key(self, key: str) -> None:
        """Delete one object."""

    def rename_prefix_or_object(self, path: str, new_path: str) -> None:
        source = paths.normalize(self._prefix, path)
        destination = paths.normalize(self._prefix, new_path)
        log_prefix = f"[Rename:{source}->{destination}] "

        if destination == source or destination.startswith(paths.listing_prefix(source)):
            raise ValueError(f"Cannot rename {path!r} into itself ({new_path!r})")

        if self._object_exists(destination) or self._prefix_has_objects(paths.listing_prefix(destination)):
            raise NewPathNotEmptyError(f"Destination {new_path!r} is not empty", key=new_path)

        if self._object_exists(source):
            self._move(source, destination)
            log.info("%sMoved object", log_prefix)
            return

        source_prefix = paths.listing_prefix(source)
        moved = 0
        for key in self._iter_keys(source_prefix):
            relative = paths.relativize(source_prefix, key)
            if not relative or relative == paths.SEPARATOR:
                continue
            self._move(key, paths.normalize(destination, relative))
            moved += 1

        if moved == 0:
            raise StorageNotFoundError(f"Nothing to rename at {path!r}", key=path)
        log.info("%sMoved %d objects", log_prefix, moved)

    def _move(self, source_key: str, destination_key: str) -> None:
        self._copy_object(source_key, destination_key)
        try:
            self._delete_key(source_key)
        except Exception:
            log.warning(
                "Copied %s to %s but failed to delete the source; object now exists at both",
                source_key,
                destination_key,
            )
            raise
        log.debug("Moved %s to %s", source_key, destination_key)
