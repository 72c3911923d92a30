"""Object storage configuration settings.

Environment variables use the BLOB_ prefix; backend-specific options use
BLOB_S3_ and BLOB_AZURE_.
Example: BLOB_BACKEND="minio"
         BLOB_BUCKET="reports"
         BLOB_S3_ENDPOINT="http://localhost:9000"

Supports:
- AWS S3 (default, no endpoint needed)
- MinIO and other S3-compatible services (set the endpoint)
- Azure Blob Storage, including Azurite (set account_url)
- An in-memory backend for tests and local development
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any
from urllib.parse import urlparse

from pydantic import Field, SecretStr, computed_field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageBackendType(StrEnum):
    """Supported storage backend kinds."""

    S3 = "s3"
    MINIO = "minio"
    AZURE = "azure"
    MEMORY = "memory"


class S3StorageSettings(BaseSettings):
    """S3-compatible connection settings (AWS S3, MinIO, LocalStack).

    Environment variables use BLOB_S3_ prefix.
    Example: BLOB_S3_ACCESS_KEY=minioadmin
    """

    endpoint: str | None = Field(
        default=None,
        description="S3-compatible endpoint URL (for MinIO/LocalStack). None for AWS S3.",
    )

    region: str = Field(
        default="us-east-1",
        description="AWS region (used for AWS S3 and request signing)",
    )

    access_key: SecretStr | None = Field(
        default=None,
        description="S3 access key ID",
    )

    secret_key: SecretStr | None = Field(
        default=None,
        description="S3 secret access key",
    )

    use_ssl: bool = Field(
        default=True,
        description="Use SSL/TLS for S3 connections (set False for local MinIO without TLS)",
    )

    verify_ssl: bool = Field(
        default=True,
        description="Verify SSL certificates (set False for self-signed certs in local MinIO)",
    )

    timeout: int = Field(
        default=30,
        ge=1,
        le=300,
        description="Connect and read timeout in seconds",
    )

    max_pool_connections: int = Field(
        default=10,
        ge=1,
        le=200,
        description="Maximum number of connections in the connection pool",
    )

    @field_validator("endpoint", mode="before")
    @classmethod
    def _strip_endpoint(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().rstrip("/") or None
        return value

    @model_validator(mode="after")
    def _validate_credential_consistency(self) -> S3StorageSettings:
        """Validate that both credentials are provided together or neither.

        Both must be provided for static credentials, or neither for the
        default credential chain (IAM role, shared config, environment).
        """
        has_access_key = self.access_key is not None
        has_secret_key = self.secret_key is not None

        if has_access_key != has_secret_key:
            raise ValueError(
                "Both access_key and secret_key must be provided together when using "
                "static credentials. Provide both or neither (for IAM role authentication)."
            )

        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def has_static_credentials(self) -> bool:
        """True when an access/secret key pair is configured."""
        return self.access_key is not None and self.secret_key is not None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_insecure(self) -> bool:
        """True when traffic would travel without TLS."""
        if not self.use_ssl:
            return True
        return bool(self.endpoint) and urlparse(self.endpoint).scheme == "http"

    def get_boto3_config(self) -> dict[str, Any]:
        """Get keyword arguments for an aiobotocore S3 client.

        Returns:
            Dictionary with region, SSL settings, endpoint and (when
            configured) static credentials.
        """
        config: dict[str, Any] = {
            "region_name": self.region,
            "use_ssl": self.use_ssl,
            "verify": self.verify_ssl,
        }

        # Without static credentials boto falls back to its default chain
        if self.access_key is not None and self.secret_key is not None:
            config["aws_access_key_id"] = self.access_key.get_secret_value()
            config["aws_secret_access_key"] = self.secret_key.get_secret_value()

        if self.endpoint:
            config["endpoint_url"] = self.endpoint

        return config

    model_config = SettingsConfigDict(
        env_prefix="BLOB_S3_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        populate_by_name=True,
        extra="ignore",
        env_ignore_empty=True,
    )


class AzureStorageSettings(BaseSettings):
    """Azure Blob Storage connection settings.

    Environment variables use BLOB_AZURE_ prefix.
    Example: BLOB_AZURE_ACCOUNT_NAME=devstoreaccount1

    Credentials come from exactly one of: a connection string, an account
    name plus account key, or an account name plus SAS token. Signed URLs
    need the account key, either directly or inside the connection string.
    """

    account_name: str | None = Field(
        default=None,
        description="Storage account name",
    )

    account_key: SecretStr | None = Field(
        default=None,
        description="Storage account shared key",
    )

    sas_token: SecretStr | None = Field(
        default=None,
        description="Account or container SAS token (without leading '?')",
    )

    connection_string: SecretStr | None = Field(
        default=None,
        description="Full storage connection string",
    )

    account_url: str | None = Field(
        default=None,
        description="Blob service URL override (e.g. Azurite 'http://127.0.0.1:10000/devstoreaccount1')",
    )

    timeout: int = Field(
        default=30,
        ge=1,
        le=300,
        description="Connection and read timeout in seconds",
    )

    @field_validator("sas_token", mode="before")
    @classmethod
    def _strip_sas_prefix(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.lstrip("?") or None
        return value

    @model_validator(mode="after")
    def _validate_account(self) -> AzureStorageSettings:
        """A shared key or SAS token is meaningless without an account to address."""
        has_key_material = self.account_key is not None or self.sas_token is not None
        if has_key_material and not (self.account_name or self.account_url):
            raise ValueError(
                "account_key and sas_token require account_name or account_url"
            )
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_configured(self) -> bool:
        """True when at least one credential source is complete."""
        if self.connection_string is not None:
            return True
        has_account = bool(self.account_name or self.account_url)
        return has_account and (self.account_key is not None or self.sas_token is not None)

    @property
    def connection_string_fields(self) -> dict[str, str]:
        """Key/value pairs of the connection string (empty when none is set)."""
        if self.connection_string is None:
            return {}
        fields: dict[str, str] = {}
        for part in self.connection_string.get_secret_value().split(";"):
            name, sep, value = part.partition("=")
            if sep:
                fields[name.strip()] = value.strip()
        return fields

    @property
    def resolved_account_name(self) -> str | None:
        """Account name from settings, falling back to the connection string."""
        return self.account_name or self.connection_string_fields.get("AccountName")

    @property
    def resolved_account_key(self) -> str | None:
        """Account key from settings, falling back to the connection string."""
        if self.account_key is not None:
            return self.account_key.get_secret_value()
        return self.connection_string_fields.get("AccountKey")

    @property
    def resolved_account_url(self) -> str | None:
        """Blob service URL from settings, the connection string, or the account name."""
        if self.account_url:
            return self.account_url.rstrip("/")
        fields = self.connection_string_fields
        if "BlobEndpoint" in fields:
            return fields["BlobEndpoint"].rstrip("/")
        account = self.resolved_account_name
        if not account:
            return None
        protocol = fields.get("DefaultEndpointsProtocol", "https")
        suffix = fields.get("EndpointSuffix", "core.windows.net")
        return f"{protocol}://{account}.blob.{suffix}"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_insecure(self) -> bool:
        """True when the blob endpoint is plain HTTP."""
        url = self.resolved_account_url
        return bool(url) and urlparse(url).scheme == "http"

    model_config = SettingsConfigDict(
        env_prefix="BLOB_AZURE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        populate_by_name=True,
        extra="ignore",
        env_ignore_empty=True,
    )


class CloudStorageSettings(BaseSettings):
    """Top-level object storage settings.

    Environment variables use BLOB_ prefix.
    Example: BLOB_BACKEND=azure, BLOB_BUCKET=reports

    The ``backend`` discriminator selects the adapter; only the matching
    sub-configuration is read by it.
    """

    # ──────────────────────────────────────────────────────────────
    # Backend selection
    # ──────────────────────────────────────────────────────────────

    backend: StorageBackendType = Field(
        default=StorageBackendType.S3,
        description="Storage backend kind: s3, minio, azure or memory",
    )

    bucket: str = Field(
        default="common-blob",
        min_length=3,
        max_length=63,
        description="Bucket (S3/MinIO) or container (Azure) every operation addresses",
    )

    allow_insecure: bool = Field(
        default=False,
        description="Permit plain-HTTP endpoints (local MinIO, Azurite)",
    )

    # ──────────────────────────────────────────────────────────────
    # Backend-specific options
    # ──────────────────────────────────────────────────────────────

    s3: S3StorageSettings = Field(
        default_factory=S3StorageSettings,
        description="S3/MinIO connection options",
    )

    azure: AzureStorageSettings = Field(
        default_factory=AzureStorageSettings,
        description="Azure Blob Storage connection options",
    )

    # ──────────────────────────────────────────────────────────────
    # Streaming / listing
    # ──────────────────────────────────────────────────────────────

    list_page_size: int = Field(
        default=1000,
        ge=1,
        le=5000,
        description="Maximum entries requested per listing page",
    )

    read_chunk_size: int = Field(
        default=64 * 1024,
        ge=1024,
        le=104857600,
        description="Chunk size in bytes yielded by streaming readers",
    )

    @field_validator("backend", mode="before")
    @classmethod
    def _normalize_backend(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_insecure(self) -> bool:
        """True when the selected backend would talk plain HTTP."""
        match self.backend:
            case StorageBackendType.S3 | StorageBackendType.MINIO:
                return self.s3.is_insecure
            case StorageBackendType.AZURE:
                return self.azure.is_insecure
            case _:
                return False

    model_config = SettingsConfigDict(
        env_prefix="BLOB_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        populate_by_name=True,
        extra="ignore",
        env_ignore_empty=True,
    )
