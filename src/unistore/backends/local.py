"""Local filesystem backend."""

import logging
import mimetypes
import os
import shutil
import stat
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, BinaryIO, Iterator

from .. import paths
from ..base import Metadata, ObjectStream, StreamingBackend
from ..config import LocalBackendConfig
from ..delivery import ConditionalObject, ConditionalRead, evaluate_preconditions, parse_byte_range
from ..exceptions import (
    NewPathNotEmptyError,
    PrefixIsAnObjectError,
    StorageError,
    StorageNotFoundError,
    StoragePermissionError,
)
from ..pager import DirectoryPage, PageBatch, PageSource
from ..rename import CopyRenameMixin

log = logging.getLogger(__name__)


def _default_file_mode() -> int:
    umask = os.umask(0)
    os.umask(umask)
    return 0o666 & ~umask


# Mode for written objects; mkstemp alone would leave them at 0600.
_FILE_MODE = _default_file_mode()


def _mtime(st: os.stat_result) -> datetime:
    return datetime.fromtimestamp(st.st_mtime, tz=timezone.utc)


def _translate_error(error: OSError, key: str | None = None) -> StorageError:
    if isinstance(error, FileNotFoundError):
        return StorageNotFoundError(str(error), key=key, cause=error)
    if isinstance(error, PermissionError):
        return StoragePermissionError(str(error), key=key, cause=error)
    return StorageError(str(error), key=key, cause=error)


class _LocalPageSource(PageSource):
    """Reads an open directory scan in chunks.

    One entry is held back as look-ahead so a page knows exactly whether
    another page follows.
    """

    def __init__(self, directory: Path, path: str):
        self._path = path
        self._scan = os.scandir(directory)
        self._lookahead: os.DirEntry | None = None
        self._read = 0

    def _next_entry(self) -> os.DirEntry | None:
        if self._lookahead is not None:
            entry, self._lookahead = self._lookahead, None
            return entry
        return next(self._scan, None)

    def _has_more(self) -> bool:
        if self._lookahead is None:
            self._lookahead = next(self._scan, None)
        return self._lookahead is not None

    def fetch(self, cursor: Any, limit: int) -> PageBatch:
        batch = PageBatch()
        count = 0
        try:
            while limit <= 0 or count < limit:
                entry = self._next_entry()
                if entry is None:
                    break
                count += 1
                entry_path = paths.normalize(self._path, entry.name)
                if entry.is_dir():
                    batch.directories.append(Metadata(path=entry_path))
                    continue
                try:
                    st = entry.stat()
                except FileNotFoundError:
                    # Dangling symlink or removed mid-scan.
                    continue
                batch.files.append(Metadata(path=entry_path, last_modified=_mtime(st)))
            truncated = self._has_more()
        except OSError as e:
            raise _translate_error(e, self._path) from e

        self._read += count
        batch.truncated = truncated
        batch.cursor = self._read
        if not batch.truncated:
            self.close()
        return batch

    def close(self) -> None:
        self._scan.close()


class LocalFilesystemBackend(CopyRenameMixin, StreamingBackend):
    """Stores objects as files under a root directory."""

    def __init__(self, config: LocalBackendConfig):
        self._config = config
        self._prefix = ""
        self.root_directory = Path(config.root_directory).resolve()
        log.info("LocalFilesystemBackend initialized at: %s", self.root_directory)

    def _full_path(self, path: str) -> Path:
        cleaned = paths.clean(path)
        return self.root_directory / cleaned if cleaned else self.root_directory

    def list_objects(self, prefix: str = "") -> list[Metadata]:
        directory = self._full_path(prefix)
        try:
            with os.scandir(directory) as entries:
                objects = []
                for entry in entries:
                    if not entry.is_file():
                        continue
                    try:
                        st = entry.stat()
                    except FileNotFoundError:
                        continue
                    objects.append(Metadata(path=entry.name, last_modified=_mtime(st)))
        except FileNotFoundError:
            return []
        except OSError as e:
            raise _translate_error(e, prefix) from e
        return sorted(objects, key=lambda o: o.path)

    def list_objects_from_directory(self, path: str, limit: int = 0) -> DirectoryPage:
        directory = self._full_path(path)
        relative = paths.clean(path)
        try:
            st = directory.stat()
        except FileNotFoundError:
            return DirectoryPage.exhausted(relative)
        except OSError as e:
            raise _translate_error(e, path) from e
        if not stat.S_ISDIR(st.st_mode):
            raise PrefixIsAnObjectError(f"{path!r} is an object, not a directory", key=path)

        try:
            source = _LocalPageSource(directory, relative)
        except OSError as e:
            raise _translate_error(e, path) from e
        return DirectoryPage.first(source, relative, limit)

    def delete_object(self, path: str) -> None:
        try:
            self._full_path(path).unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise _translate_error(e, path) from e

    def get_object_stream(self, path: str) -> ObjectStream:
        full_path = self._full_path(path)
        try:
            st = full_path.stat()
            if stat.S_ISDIR(st.st_mode):
                raise StorageError("Path must lead to a file, found directory", key=path)
            content = open(full_path, "rb")
        except OSError as e:
            raise _translate_error(e, path) from e
        return ObjectStream(path=path, content=content, last_modified=_mtime(st))

    def put_object_stream(self, path: str, source: BinaryIO) -> None:
        """Write *source* to *path* atomically via temp-file + rename."""
        full_path = self._full_path(path)
        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=full_path.parent, suffix=".tmp")
        except OSError as e:
            raise _translate_error(e, path) from e
        try:
            with os.fdopen(fd, "wb") as f:
                shutil.copyfileobj(source, f)
            os.chmod(tmp_path, _FILE_MODE)
            os.replace(tmp_path, full_path)
        except BaseException as e:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            if isinstance(e, OSError):
                raise _translate_error(e, path) from e
            raise

    def get_object_conditional(self, path: str, conditions: ConditionalRead) -> ConditionalObject:
        full_path = self._full_path(path)
        try:
            st = full_path.stat()
        except OSError as e:
            raise _translate_error(e, path) from e
        if stat.S_ISDIR(st.st_mode):
            raise StorageError("Path must lead to a file, found directory", key=path)

        etag = f'"{st.st_mtime_ns:x}-{st.st_size:x}"'
        last_modified = _mtime(st).replace(microsecond=0)
        evaluate_preconditions(conditions, etag, last_modified)

        content_type, _ = mimetypes.guess_type(full_path.name)
        byte_range = parse_byte_range(conditions.range, st.st_size)
        try:
            body = open(full_path, "rb")
        except OSError as e:
            raise _translate_error(e, path) from e

        content_length = st.st_size
        content_range = None
        if byte_range is not None:
            start, content_length, content_range = byte_range
            body.seek(start)

        return ConditionalObject(
            body=body,
            content_length=content_length,
            content_range=content_range,
            content_type=content_type or "application/octet-stream",
            etag=etag,
            last_modified=last_modified,
        )

    def rename_prefix_or_object(self, path: str, new_path: str) -> None:
        super().rename_prefix_or_object(path, new_path)
        source_dir = self._full_path(path)
        if source_dir.is_dir():
            self._prune_empty_dirs(source_dir)

    @staticmethod
    def _prune_empty_dirs(directory: Path) -> None:
        for dirpath, _dirnames, _filenames in os.walk(directory, topdown=False):
            try:
                os.rmdir(dirpath)
            except OSError:
                pass

    def _object_exists(self, key: str) -> bool:
        return self._full_path(key).is_file()

    def _prefix_has_objects(self, prefix: str) -> bool:
        return next(iter(self._walk_keys(prefix)), None) is not None

    def _iter_keys(self, prefix: str) -> Iterator[str]:
        # Materialized so moving files doesn't disturb the walk.
        return iter(sorted(self._walk_keys(prefix)))

    def _walk_keys(self, prefix: str) -> Iterator[str]:
        directory = self._full_path(prefix)
        for dirpath, _dirnames, filenames in os.walk(directory):
            for name in filenames:
                yield Path(dirpath, name).relative_to(self.root_directory).as_posix()

    def _copy_object(self, source_key: str, destination_key: str) -> None:
        destination = self._full_path(destination_key)
        if destination.is_dir():
            raise NewPathNotEmptyError(f"Destination {destination_key!r} is a directory", key=destination_key)
        source = self._full_path(source_key)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, destination)
            shutil.copystat(source, destination)
        except OSError as e:
            raise _translate_error(e, source_key) from e

    def _delete_key(self, key: str) -> None:
        try:
            self._full_path(key).unlink()
        except OSError as e:
            raise _translate_error(e, key) from e
