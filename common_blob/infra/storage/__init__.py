"""Provider-agnostic object storage.

One contract (``CloudStorage``) over S3, MinIO, Azure Blob Storage and an
in-memory store, with lazy paginated listing, streaming readers, buffering
writers and a single canonical error model.

Quick Start:
    from common_blob.infra.storage import new_cloud_storage, S3StorageSettings

    storage = await new_cloud_storage(
        False, "s3", "reports", S3StorageSettings(region="eu-west-1")
    )
    await storage.write("a.json", b'{"key": "value"}', "application/json")

    async for entry in storage.list("a"):
        print(entry.key, entry.size)

    await storage.shutdown()
"""

from __future__ import annotations

from common_blob.core.settings.storage import (
    AzureStorageSettings,
    CloudStorageSettings,
    S3StorageSettings,
    StorageBackendType,
)

from .backends import (
    DEFAULT_CONTENT_TYPE,
    Attributes,
    CloudStorage,
    IteratorState,
    ListIterator,
    ListObject,
    ListOptions,
    ObjectReader,
    ObjectWriter,
    SignedURLMethod,
    SignedURLOption,
    create_storage_backend,
    new_cloud_storage,
    open_cloud_storage,
)
from .exceptions import (
    EndOfSequence,
    StorageBackendError,
    StorageCancelledError,
    StorageError,
    StorageInvalidArgumentError,
    StorageNotConfiguredError,
    StorageNotFoundError,
    StorageStreamClosedError,
)

__all__ = [
    "DEFAULT_CONTENT_TYPE",
    "Attributes",
    "AzureStorageSettings",
    "CloudStorage",
    "CloudStorageSettings",
    "EndOfSequence",
    "IteratorState",
    "ListIterator",
    "ListObject",
    "ListOptions",
    "ObjectReader",
    "ObjectWriter",
    "S3StorageSettings",
    "SignedURLMethod",
    "SignedURLOption",
    "StorageBackendError",
    "StorageBackendType",
    "StorageCancelledError",
    "StorageError",
    "StorageInvalidArgumentError",
    "StorageNotConfiguredError",
    "StorageNotFoundError",
    "StorageStreamClosedError",
    "create_storage_backend",
    "new_cloud_storage",
    "open_cloud_storage",
]
