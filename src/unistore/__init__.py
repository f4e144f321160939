"""Uniform object storage over S3, GCS, Azure Blob Storage and the local filesystem."""

from .base import Backend, Metadata, Object, ObjectSliceDiff, ObjectStream, StreamingBackend
from .config import (
    AzureBackendConfig,
    BackendConfig,
    GcsBackendConfig,
    LocalBackendConfig,
    S3BackendConfig,
    backend_config_from_env,
    load_backend_config,
)
from .diff import get_object_slice_diff
from .exceptions import (
    NewPathNotEmptyError,
    NotModifiedError,
    PageAlreadyAdvancedError,
    PreconditionFailedError,
    PrefixIsAnObjectError,
    RangeNotSatisfiableError,
    StorageConnectionError,
    StorageError,
    StorageNotFoundError,
    StorageNotImplementedError,
    StoragePermissionError,
)
from .factory import create_backend
from .pager import DirectoryPage

__all__ = [
    "Backend",
    "StreamingBackend",
    "Metadata",
    "Object",
    "ObjectStream",
    "ObjectSliceDiff",
    "DirectoryPage",
    "get_object_slice_diff",
    "BackendConfig",
    "LocalBackendConfig",
    "S3BackendConfig",
    "GcsBackendConfig",
    "AzureBackendConfig",
    "load_backend_config",
    "backend_config_from_env",
    "create_backend",
    "StorageError",
    "StorageNotFoundError",
    "StoragePermissionError",
    "StorageConnectionError",
    "StorageNotImplementedError",
    "PrefixIsAnObjectError",
    "NewPathNotEmptyError",
    "PageAlreadyAdvancedError",
    "NotModifiedError",
    "PreconditionFailedError",
    "RangeNotSatisfiableError",
]
