"""S3-compatible storage backend (AWS S3, MinIO, SeaweedFS)."""

import logging
import mimetypes
from typing import Any, BinaryIO, Iterator

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, EndpointConnectionError

from .. import paths
from ..base import Metadata, ObjectStream, StreamingBackend
from ..config import S3BackendConfig
from ..delivery import ConditionalObject, ConditionalRead
from ..exceptions import (
    NotModifiedError,
    PreconditionFailedError,
    PrefixIsAnObjectError,
    RangeNotSatisfiableError,
    StorageConnectionError,
    StorageError,
    StorageNotFoundError,
    StoragePermissionError,
)
from ..pager import DirectoryPage, PageBatch, PageSource
from ..rename import CopyRenameMixin

log = logging.getLogger(__name__)

_ERROR_CODE_MAP = {
    "NoSuchKey": StorageNotFoundError,
    "NotFound": StorageNotFoundError,
    "404": StorageNotFoundError,
    "AccessDenied": StoragePermissionError,
    "403": StoragePermissionError,
    "InvalidAccessKeyId": StoragePermissionError,
    "SignatureDoesNotMatch": StoragePermissionError,
    "EndpointConnectionError": StorageConnectionError,
    "NotModified": NotModifiedError,
    "304": NotModifiedError,
    "PreconditionFailed": PreconditionFailedError,
    "412": PreconditionFailedError,
    "InvalidRange": RangeNotSatisfiableError,
    "416": RangeNotSatisfiableError,
}


def _translate_error(error: Exception, key: str | None = None) -> StorageError:
    if isinstance(error, ClientError):
        details = error.response.get("Error", {})
        exc_cls = _ERROR_CODE_MAP.get(details.get("Code", ""), StorageError)
        if exc_cls is RangeNotSatisfiableError:
            size = details.get("ActualObjectSize")
            return exc_cls(str(error), key=key, cause=error, size=int(size) if size else None)
        return exc_cls(str(error), key=key, cause=error)
    if isinstance(error, EndpointConnectionError):
        return StorageConnectionError(str(error), key=key, cause=error)
    return StorageError(str(error), key=key, cause=error)


class _S3PageSource(PageSource):
    """ListObjectsV2 with a delimiter; the cursor is the continuation token."""

    def __init__(self, backend: "S3Backend", path: str):
        self._backend = backend
        self._path = path
        self._list_prefix = paths.listing_prefix(paths.normalize(backend._prefix, path))

    def fetch(self, cursor: Any, limit: int) -> PageBatch:
        params: dict = {
            "Bucket": self._backend._bucket,
            "Prefix": self._list_prefix,
            "Delimiter": paths.SEPARATOR,
        }
        if limit > 0:
            params["MaxKeys"] = limit
        if cursor:
            params["ContinuationToken"] = cursor

        try:
            response = self._backend._client.list_objects_v2(**params)
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e, self._path) from e

        batch = PageBatch()
        for common_prefix in response.get("CommonPrefixes", []):
            name = paths.relativize(self._list_prefix, common_prefix.get("Prefix", "")).rstrip(paths.SEPARATOR)
            if paths.is_valid_leaf(name):
                batch.directories.append(Metadata(path=paths.normalize(self._path, name)))

        for obj in response.get("Contents", []):
            name = paths.relativize(self._list_prefix, obj.get("Key", ""))
            if paths.is_valid_leaf(name):
                batch.files.append(
                    Metadata(path=paths.normalize(self._path, name), last_modified=obj.get("LastModified"))
                )

        batch.truncated = bool(response.get("IsTruncated", False))
        batch.cursor = response.get("NextContinuationToken")
        return batch


class S3Backend(CopyRenameMixin, StreamingBackend):
    """S3-compatible object storage backend."""

    def __init__(self, config: S3BackendConfig):
        self._config = config
        self._bucket = config.bucket
        self._prefix = config.prefix

        kwargs: dict = {
            "config": Config(
                region_name=config.region,
                signature_version="s3v4",
                retries={"max_attempts": 3, "mode": "standard"},
            ),
        }
        if config.aws_access_key_id and config.aws_secret_access_key:
            kwargs["aws_access_key_id"] = config.aws_access_key_id
            kwargs["aws_secret_access_key"] = config.aws_secret_access_key
        if config.aws_session_token:
            kwargs["aws_session_token"] = config.aws_session_token
        if config.endpoint_url:
            kwargs["endpoint_url"] = config.endpoint_url

        self._client = boto3.client("s3", **kwargs)
        log.info("S3Backend initialized for bucket %s (prefix=%r)", self._bucket, self._prefix)

    def _key(self, path: str) -> str:
        return paths.normalize(self._prefix, path)

    def list_objects(self, prefix: str = "") -> list[Metadata]:
        list_prefix = paths.listing_prefix(self._key(prefix))
        objects: list[Metadata] = []
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self._bucket, Prefix=list_prefix):
                for obj in page.get("Contents", []):
                    path = paths.relativize(list_prefix, obj["Key"])
                    if not paths.is_valid_leaf(path):
                        continue
                    objects.append(Metadata(path=path, last_modified=obj.get("LastModified")))
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e, prefix) from e
        return objects

    def list_objects_from_directory(self, path: str, limit: int = 0) -> DirectoryPage:
        key = self._key(path)
        if key and self._object_exists(key):
            raise PrefixIsAnObjectError(f"{path!r} is an object, not a directory", key=path)
        return DirectoryPage.first(_S3PageSource(self, paths.clean(path)), paths.clean(path), limit)

    def delete_object(self, path: str) -> None:
        try:
            self._client.delete_object(Bucket=self._bucket, Key=self._key(path))
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e, path) from e

    def get_object_stream(self, path: str) -> ObjectStream:
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=self._key(path))
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e, path) from e
        return ObjectStream(path=path, content=response["Body"], last_modified=response.get("LastModified"))

    def put_object_stream(self, path: str, source: BinaryIO) -> None:
        extra_args: dict = {}
        content_type, _ = mimetypes.guess_type(path)
        if content_type:
            extra_args["ContentType"] = content_type
        if self._config.server_side_encryption:
            extra_args["ServerSideEncryption"] = self._config.server_side_encryption
        try:
            self._client.upload_fileobj(source, self._bucket, self._key(path), ExtraArgs=extra_args or None)
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e, path) from e

    def get_object_conditional(self, path: str, conditions: ConditionalRead) -> ConditionalObject:
        params: dict = {"Bucket": self._bucket, "Key": self._key(path)}
        if conditions.if_modified_since is not None:
            params["IfModifiedSince"] = conditions.if_modified_since
        if conditions.if_unmodified_since is not None:
            params["IfUnmodifiedSince"] = conditions.if_unmodified_since
        if conditions.if_match:
            params["IfMatch"] = conditions.if_match
        if conditions.if_none_match:
            params["IfNoneMatch"] = conditions.if_none_match
        if conditions.range:
            params["Range"] = conditions.range

        try:
            response = self._client.get_object(**params)
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e, path) from e

        return ConditionalObject(
            body=response["Body"],
            cache_control=response.get("CacheControl"),
            expires=response.get("ExpiresString") or response.get("Expires"),
            content_disposition=response.get("ContentDisposition"),
            content_encoding=response.get("ContentEncoding"),
            content_language=response.get("ContentLanguage"),
            content_length=response.get("ContentLength"),
            content_range=response.get("ContentRange"),
            content_type=response.get("ContentType"),
            etag=response.get("ETag"),
            last_modified=response.get("LastModified"),
        )

    def _object_exists(self, key: str) -> bool:
        try:
            self._client.head_object(Bucket=self._bucket, Key=key)
            return True
        except ClientError as e:
            translated = _translate_error(e, key)
            if isinstance(translated, StorageNotFoundError):
                return False
            raise translated from e
        except BotoCoreError as e:
            raise _translate_error(e, key) from e

    def _prefix_has_objects(self, prefix: str) -> bool:
        try:
            response = self._client.list_objects_v2(Bucket=self._bucket, Prefix=prefix, MaxKeys=1)
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e, prefix) from e
        return response.get("KeyCount", 0) > 0

    def _iter_keys(self, prefix: str) -> Iterator[str]:
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    if obj.get("Key"):
                        yield obj["Key"]
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e, prefix) from e

    def _copy_object(self, source_key: str, destination_key: str) -> None:
        params: dict = {
            "Bucket": self._bucket,
            "Key": destination_key,
            "CopySource": {"Bucket": self._bucket, "Key": source_key},
        }
        if self._config.server_side_encryption:
            params["ServerSideEncryption"] = self._config.server_side_encryption
        try:
            self._client.copy_object(**params)
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e, source_key) from e

    def _delete_key(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self._bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e, key) from e
