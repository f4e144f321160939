"""
Configuration models for storage backends.

Each backend takes one of these models in its constructor. They are
validated once, when created, and never mutated afterwards. Invalid
configuration raises pydantic's ValidationError (a ValueError).
"""

import os
from typing import Annotated, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

from . import paths


class _BackendConfigBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    prefix: str = Field(
        default="",
        description="Root namespace inside the bucket; every path is resolved under it"
    )

    @field_validator("prefix")
    @classmethod
    def clean_root_prefix(cls, v: str) -> str:
        return paths.clean(v)


class LocalBackendConfig(BaseModel):
    """Local filesystem backend configuration."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["local"] = "local"
    root_directory: str = Field(
        ...,
        min_length=1,
        description="Directory under which objects are stored"
    )


class S3BackendConfig(_BackendConfigBase):
    """S3-compatible backend configuration (AWS S3, MinIO, SeaweedFS)."""

    type: Literal["s3"] = "s3"
    bucket: str = Field(..., min_length=1, description="Bucket name")
    region: str = Field(default="us-east-1", description="AWS region")
    endpoint_url: Optional[str] = Field(
        default=None,
        description="Custom endpoint for S3-compatible stores"
    )
    aws_access_key_id: Optional[str] = Field(default=None, description="Access key (uses default chain if not set)")
    aws_secret_access_key: Optional[str] = Field(default=None, description="Secret key")
    aws_session_token: Optional[str] = Field(default=None, description="Session token for temporary credentials")
    server_side_encryption: Optional[str] = Field(
        default=None,
        description="ServerSideEncryption applied to uploads and copies, e.g. AES256 or aws:kms"
    )


class GcsBackendConfig(_BackendConfigBase):
    """Google Cloud Storage backend configuration."""

    type: Literal["gcs"] = "gcs"
    bucket: str = Field(..., min_length=1, description="Bucket name")
    project: Optional[str] = Field(default=None, description="GCP project")
    credentials_path: Optional[str] = Field(
        default=None,
        description="Service account JSON file (uses application default credentials if not set)"
    )


class AzureBackendConfig(_BackendConfigBase):
    """Azure Blob Storage backend configuration."""

    type: Literal["azure"] = "azure"
    container: str = Field(..., min_length=1, description="Container name")
    connection_string: Optional[str] = Field(default=None, description="Storage account connection string")
    account_name: Optional[str] = Field(default=None, description="Storage account name")
    account_key: Optional[str] = Field(default=None, description="Storage account key")

    @model_validator(mode="after")
    def validate_credentials(self) -> "AzureBackendConfig":
        if not self.connection_string and not (self.account_name and self.account_key):
            raise ValueError(
                "Azure Blob Storage requires either connection_string or account_name + account_key"
            )
        return self


BackendConfig = Annotated[
    Union[LocalBackendConfig, S3BackendConfig, GcsBackendConfig, AzureBackendConfig],
    Field(discriminator="type"),
]

_backend_config_adapter: TypeAdapter = TypeAdapter(BackendConfig)


def load_backend_config(data: Mapping) -> BackendConfig:
    """Validate a configuration mapping; ``type`` selects the backend."""
    return _backend_config_adapter.validate_python(dict(data))


def load_backend_config_file(path: str) -> BackendConfig:
    """Load configuration from the ``storage`` section of a YAML file."""
    import yaml

    with open(path, "r") as f:
        config_dict = yaml.safe_load(f) or {}
    return load_backend_config(config_dict.get("storage", {}))


def backend_config_from_env(environ: Mapping[str, str] | None = None) -> BackendConfig:
    """Build configuration from environment variables.

    OBJECT_STORAGE_TYPE selects the backend (defaults to "s3").
    """
    env = os.environ if environ is None else environ
    backend = env.get("OBJECT_STORAGE_TYPE", "s3").lower()
    bucket = env.get("OBJECT_STORAGE_BUCKET_NAME")
    prefix = env.get("OBJECT_STORAGE_PREFIX", "")

    if backend == "local":
        data: dict = {"type": "local", "root_directory": env.get("LOCAL_STORAGE_ROOT", "")}
    elif backend == "s3":
        data = {
            "type": "s3",
            "bucket": bucket or env.get("S3_BUCKET_NAME", ""),
            "prefix": prefix,
            "region": env.get("S3_REGION", "us-east-1"),
            "endpoint_url": env.get("S3_ENDPOINT_URL"),
            "aws_access_key_id": env.get("AWS_ACCESS_KEY_ID"),
            "aws_secret_access_key": env.get("AWS_SECRET_ACCESS_KEY"),
            "aws_session_token": env.get("AWS_SESSION_TOKEN"),
            "server_side_encryption": env.get("S3_SERVER_SIDE_ENCRYPTION"),
        }
    elif backend == "gcs":
        data = {
            "type": "gcs",
            "bucket": bucket or env.get("GCS_BUCKET_NAME", ""),
            "prefix": prefix,
            "project": env.get("GCS_PROJECT"),
            "credentials_path": env.get("GOOGLE_APPLICATION_CREDENTIALS"),
        }
    elif backend == "azure":
        data = {
            "type": "azure",
            "container": bucket or env.get("AZURE_CONTAINER_NAME", ""),
            "prefix": prefix,
            "connection_string": env.get("AZURE_STORAGE_CONNECTION_STRING"),
            "account_name": env.get("AZURE_STORAGE_ACCOUNT_NAME"),
            "account_key": env.get("AZURE_STORAGE_ACCOUNT_KEY"),
        }
    else:
        raise ValueError(f"Unsupported storage type: {backend!r}. Supported: local, s3, gcs, azure")

    return load_backend_config(data)
