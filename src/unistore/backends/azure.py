"""Azure Blob Storage backend.

Directory listing and rename are not supported: Azure's copy primitive is an
asynchronous server-side operation, so copy-then-delete can't be guaranteed
to see a completed copy.
"""

import logging
import mimetypes

from azure.core.exceptions import HttpResponseError, ResourceNotFoundError
from azure.storage.blob import BlobServiceClient, ContentSettings

from .. import paths
from ..base import Backend, Metadata, Object
from ..config import AzureBackendConfig
from ..exceptions import (
    StorageConnectionError,
    StorageError,
    StorageNotFoundError,
    StoragePermissionError,
)

log = logging.getLogger(__name__)


def _translate_error(error: Exception, key: str | None = None) -> StorageError:
    if isinstance(error, ResourceNotFoundError):
        return StorageNotFoundError(str(error), key=key, cause=error)
    if isinstance(error, HttpResponseError) and error.status_code == 403:
        return StoragePermissionError(str(error), key=key, cause=error)
    if isinstance(error, ConnectionError):
        return StorageConnectionError(str(error), key=key, cause=error)
    return StorageError(str(error), key=key, cause=error)


class AzureBlobBackend(Backend):
    """Azure Blob Storage backend."""

    def __init__(self, config: AzureBackendConfig):
        self._config = config
        self._container_name = config.container
        self._prefix = config.prefix

        if config.connection_string:
            self._service_client = BlobServiceClient.from_connection_string(config.connection_string)
        else:
            account_url = f"https://{config.account_name}.blob.core.windows.net"
            self._service_client = BlobServiceClient(account_url=account_url, credential=config.account_key)

        self._container_client = self._service_client.get_container_client(config.container)
        log.info("AzureBlobBackend initialized for container %s (prefix=%r)", self._container_name, self._prefix)

    def _key(self, path: str) -> str:
        return paths.normalize(self._prefix, path)

    def list_objects(self, prefix: str = "") -> list[Metadata]:
        list_prefix = paths.listing_prefix(self._key(prefix))
        objects: list[Metadata] = []
        try:
            for blob in self._container_client.list_blobs(name_starts_with=list_prefix or None):
                path = paths.relativize(list_prefix, blob.name)
                if not paths.is_valid_leaf(path):
                    continue
                objects.append(Metadata(path=path, last_modified=blob.last_modified))
        except Exception as e:
            raise _translate_error(e, prefix) from e
        return objects

    def get_object(self, path: str) -> Object:
        try:
            blob_client = self._container_client.get_blob_client(self._key(path))
            download = blob_client.download_blob()
            content = download.readall()
        except Exception as e:
            raise _translate_error(e, path) from e
        return Object(path=path, last_modified=download.properties.last_modified, content=content)

    def put_object(self, path: str, content: bytes) -> None:
        content_type, _ = mimetypes.guess_type(path)
        try:
            blob_client = self._container_client.get_blob_client(self._key(path))
            blob_client.upload_blob(
                content,
                overwrite=True,
                content_settings=ContentSettings(content_type=content_type or "application/octet-stream"),
            )
        except Exception as e:
            raise _translate_error(e, path) from e

    def delete_object(self, path: str) -> None:
        try:
            blob_client = self._container_client.get_blob_client(self._key(path))
            blob_client.delete_blob()
        except Exception as e:
            translated = _translate_error(e, path)
            if isinstance(translated, StorageNotFoundError):
                return
            raise translated from e
