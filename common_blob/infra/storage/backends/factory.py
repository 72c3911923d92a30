"""Backend factory for creating storage backends dynamically."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from common_blob.core.settings.storage import (
    AzureStorageSettings,
    CloudStorageSettings,
    S3StorageSettings,
    StorageBackendType,
)
from common_blob.infra.storage.exceptions import StorageNotConfiguredError

if TYPE_CHECKING:
    from .protocol import CloudStorage

logger = logging.getLogger(__name__)


def create_storage_backend(settings: CloudStorageSettings) -> CloudStorage:
    """Factory function to create the storage backend selected by settings.

    The backend is constructed but not started; call ``startup()`` (or use it
    as an async context manager) before issuing operations.

    Args:
        settings: Storage configuration settings

    Returns:
        Storage backend implementing the CloudStorage protocol

    Raises:
        StorageNotConfiguredError: If the backend kind is unsupported or its
            settings are incomplete

    Example:
        settings = get_storage_settings()
        backend = create_storage_backend(settings)
        await backend.startup()
        await backend.write("a.json", b'{"key": "value"}', "application/json")
        await backend.shutdown()
    """
    backend_type = settings.backend

    match backend_type:
        case StorageBackendType.S3:
            from .s3.backend import S3Backend

            return S3Backend(settings)

        case StorageBackendType.MINIO:
            from .s3.minio import MinIOBackend

            return MinIOBackend(settings)

        case StorageBackendType.AZURE:
            from .azure.backend import AzureBlobBackend

            return AzureBlobBackend(settings)

        case StorageBackendType.MEMORY:
            from .memory.backend import InMemoryBackend

            return InMemoryBackend(settings)

        case _:
            msg = (
                f"Unsupported storage backend: {backend_type}. "
                f"Supported backends: {', '.join([t.value for t in StorageBackendType])}"
            )
            raise StorageNotConfiguredError(msg)


async def open_cloud_storage(settings: CloudStorageSettings | None = None) -> CloudStorage:
    """Construct and start the backend described by ``settings``.

    Args:
        settings: Storage settings; loaded from the environment when omitted

    Returns:
        A started backend, ready for operations

    Raises:
        StorageNotConfiguredError: On invalid or incomplete configuration
        StorageBackendError: If the endpoint is unreachable or the bucket
            cannot be created
    """
    if settings is None:
        from common_blob.core.settings import get_storage_settings

        try:
            settings = get_storage_settings()
        except ValidationError as e:
            raise StorageNotConfiguredError(
                f"Invalid storage settings: {e}",
                metadata={"errors": e.errors(include_url=False)},
            ) from e

    backend = create_storage_backend(settings)
    await backend.startup()
    logger.info(
        "Cloud storage ready",
        extra={"backend": backend.backend_name, "bucket": backend.bucket},
    )
    return backend


async def new_cloud_storage(
    allow_insecure: bool,
    backend_kind: StorageBackendType | str,
    bucket_name: str,
    options: S3StorageSettings | AzureStorageSettings | None = None,
) -> CloudStorage:
    """Build settings from arguments, then construct and start the backend.

    Args:
        allow_insecure: Permit plain-HTTP endpoints
        backend_kind: One of "s3", "minio", "azure", "memory"
        bucket_name: Bucket (or container) every operation addresses
        options: Backend-specific connection settings; ``None`` reads them
            from the environment

    Returns:
        A started backend, ready for operations

    Raises:
        StorageNotConfiguredError: On an unknown kind, mismatched options,
            missing credentials or a disallowed insecure endpoint
        StorageBackendError: If the endpoint is unreachable or the bucket
            cannot be created

    Example:
        storage = await new_cloud_storage(
            True,
            "minio",
            "reports",
            S3StorageSettings(
                endpoint="http://localhost:9000",
                access_key="minioadmin",
                secret_key="minioadmin",
            ),
        )
    """
    try:
        kind = StorageBackendType(str(backend_kind).strip().lower())
    except ValueError:
        msg = (
            f"Unsupported storage backend: {backend_kind}. "
            f"Supported backends: {', '.join([t.value for t in StorageBackendType])}"
        )
        raise StorageNotConfiguredError(msg) from None

    overrides: dict[str, Any] = {
        "backend": kind,
        "bucket": bucket_name,
        "allow_insecure": allow_insecure,
    }
    match options:
        case None:
            pass
        case S3StorageSettings() if kind in (StorageBackendType.S3, StorageBackendType.MINIO):
            overrides["s3"] = options
        case AzureStorageSettings() if kind is StorageBackendType.AZURE:
            overrides["azure"] = options
        case _:
            msg = f"{type(options).__name__} cannot configure the {kind.value} backend"
            raise StorageNotConfiguredError(msg, metadata={"backend": kind.value})

    try:
        settings = CloudStorageSettings(**overrides)
    except ValidationError as e:
        raise StorageNotConfiguredError(
            f"Invalid storage settings: {e}",
            metadata={"errors": e.errors(include_url=False)},
        ) from e

    return await open_cloud_storage(settings)
