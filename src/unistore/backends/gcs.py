"""Google Cloud Storage backend."""

import logging
import mimetypes
from typing import Any, Iterator

from google.api_core.exceptions import Forbidden, NotFound
from google.cloud import storage as gcs
from google.oauth2 import service_account

from .. import paths
from ..base import Backend, Metadata, Object
from ..config import GcsBackendConfig
from ..exceptions import (
    PrefixIsAnObjectError,
    StorageConnectionError,
    StorageError,
    StorageNotFoundError,
    StoragePermissionError,
)
from ..pager import DirectoryPage, PageBatch, PageSource
from ..rename import CopyRenameMixin

log = logging.getLogger(__name__)


def _translate_error(error: Exception, key: str | None = None) -> StorageError:
    if isinstance(error, NotFound):
        return StorageNotFoundError(str(error), key=key, cause=error)
    if isinstance(error, Forbidden):
        return StoragePermissionError(str(error), key=key, cause=error)
    if isinstance(error, ValueError) and "credentials" in str(error).lower():
        return StoragePermissionError(str(error), key=key, cause=error)
    if isinstance(error, ConnectionError):
        return StorageConnectionError(str(error), key=key, cause=error)
    return StorageError(str(error), key=key, cause=error)


class _GcsPageSource(PageSource):
    """list_blobs with a delimiter, one API page per fetch; the cursor is the page token."""

    def __init__(self, backend: "GcsBackend", path: str):
        self._backend = backend
        self._path = path
        self._list_prefix = paths.listing_prefix(paths.normalize(backend._prefix, path))

    def fetch(self, cursor: Any, limit: int) -> PageBatch:
        kwargs: dict = {"prefix": self._list_prefix, "delimiter": paths.SEPARATOR}
        if limit > 0:
            kwargs["page_size"] = limit
        if cursor:
            kwargs["page_token"] = cursor

        batch = PageBatch()
        try:
            iterator = self._backend._bucket.list_blobs(**kwargs)
            page = next(iterator.pages, None)
            blobs = list(page) if page is not None else []
            prefixes = sorted(page.prefixes) if page is not None else []
            next_token = iterator.next_page_token
        except Exception as e:
            raise _translate_error(e, self._path) from e

        for prefix in prefixes:
            name = paths.relativize(self._list_prefix, prefix).rstrip(paths.SEPARATOR)
            if paths.is_valid_leaf(name):
                batch.directories.append(Metadata(path=paths.normalize(self._path, name)))

        for blob in blobs:
            name = paths.relativize(self._list_prefix, blob.name)
            if paths.is_valid_leaf(name):
                batch.files.append(Metadata(path=paths.normalize(self._path, name), last_modified=blob.updated))

        batch.truncated = bool(next_token)
        batch.cursor = next_token
        return batch


class GcsBackend(CopyRenameMixin, Backend):
    """Google Cloud Storage backend."""

    def __init__(self, config: GcsBackendConfig):
        self._config = config
        self._bucket_name = config.bucket
        self._prefix = config.prefix
        kwargs: dict = {}
        if config.project:
            kwargs["project"] = config.project
        if config.credentials_path:
            kwargs["credentials"] = service_account.Credentials.from_service_account_file(config.credentials_path)

        self._gcs_client = gcs.Client(**kwargs)
        self._bucket = self._gcs_client.bucket(config.bucket)
        log.info("GcsBackend initialized for bucket %s (prefix=%r)", self._bucket_name, self._prefix)

    def _key(self, path: str) -> str:
        return paths.normalize(self._prefix, path)

    def list_objects(self, prefix: str = "") -> list[Metadata]:
        list_prefix = paths.listing_prefix(self._key(prefix))
        objects: list[Metadata] = []
        try:
            for blob in self._bucket.list_blobs(prefix=list_prefix):
                path = paths.relativize(list_prefix, blob.name)
                if not paths.is_valid_leaf(path):
                    continue
                objects.append(Metadata(path=path, last_modified=blob.updated))
        except Exception as e:
            raise _translate_error(e, prefix) from e
        return objects

    def list_objects_from_directory(self, path: str, limit: int = 0) -> DirectoryPage:
        key = self._key(path)
        if key and self._object_exists(key):
            raise PrefixIsAnObjectError(f"{path!r} is an object, not a directory", key=path)
        return DirectoryPage.first(_GcsPageSource(self, paths.clean(path)), paths.clean(path), limit)

    def get_object(self, path: str) -> Object:
        try:
            blob = self._bucket.get_blob(self._key(path))
            if blob is None:
                raise StorageNotFoundError(f"No such object: {path!r}", key=path)
            content = blob.download_as_bytes()
        except StorageError:
            raise
        except Exception as e:
            raise _translate_error(e, path) from e
        return Object(path=path, last_modified=blob.updated, content=content)

    def put_object(self, path: str, content: bytes) -> None:
        content_type, _ = mimetypes.guess_type(path)
        try:
            blob = self._bucket.blob(self._key(path))
            blob.upload_from_string(content, content_type=content_type or "application/octet-stream")
        except Exception as e:
            raise _translate_error(e, path) from e

    def delete_object(self, path: str) -> None:
        try:
            self._bucket.blob(self._key(path)).delete()
        except Exception as e:
            translated = _translate_error(e, path)
            if isinstance(translated, StorageNotFoundError):
                return
            raise translated from e

    def _object_exists(self, key: str) -> bool:
        try:
            return self._bucket.blob(key).exists()
        except Exception as e:
            raise _translate_error(e, key) from e

    def _prefix_has_objects(self, prefix: str) -> bool:
        try:
            return next(iter(self._bucket.list_blobs(prefix=prefix, max_results=1)), None) is not None
        except Exception as e:
            raise _translate_error(e, prefix) from e

    def _iter_keys(self, prefix: str) -> Iterator[str]:
        try:
            for blob in self._bucket.list_blobs(prefix=prefix):
                yield blob.name
        except Exception as e:
            raise _translate_error(e, prefix) from e

    def _copy_object(self, source_key: str, destination_key: str) -> None:
        try:
            self._bucket.copy_blob(self._bucket.blob(source_key), self._bucket, destination_key)
        except Exception as e:
            raise _translate_error(e, source_key) from e

    def _delete_key(self, key: str) -> None:
        try:
            self._bucket.blob(key).delete()
        except Exception as e:
            raise _translate_error(e, key) from e
