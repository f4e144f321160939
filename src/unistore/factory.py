"""Factory for creating storage backends from configuration."""

import logging

from .base import Backend
from .config import (
    AzureBackendConfig,
    BackendConfig,
    GcsBackendConfig,
    LocalBackendConfig,
    S3BackendConfig,
    backend_config_from_env,
)

log = logging.getLogger(__name__)


def create_backend(config: BackendConfig | None = None) -> Backend:
    """Create a Backend for the given configuration.

    Vendor SDKs are imported only for the backend that is requested.

    Args:
        config: Validated backend configuration. Read from environment variables if None.

    Raises:
        ValueError: If the configuration is invalid or its type is unsupported.
        ImportError: If the optional dependency for the requested backend is not installed.
    """
    if config is None:
        config = backend_config_from_env()
    log.info("Creating %s storage backend", config.type)

    if isinstance(config, LocalBackendConfig):
        from .backends.local import LocalFilesystemBackend

        return LocalFilesystemBackend(config)
    if isinstance(config, S3BackendConfig):
        from .backends.s3 import S3Backend

        return S3Backend(config)
    if isinstance(config, GcsBackendConfig):
        from .backends.gcs import GcsBackend

        return GcsBackend(config)
    if isinstance(config, AzureBackendConfig):
        from .backends.azure import AzureBlobBackend

        return AzureBlobBackend(config)

    raise ValueError(f"Unsupported storage configuration: {type(config).__name__}")
