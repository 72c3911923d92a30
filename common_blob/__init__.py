"""common-blob: one object storage contract over S3, MinIO and Azure Blob Storage."""

from common_blob.infra.storage import (
    Attributes,
    CloudStorage,
    CloudStorageSettings,
    EndOfSequence,
    ListIterator,
    ListObject,
    ListOptions,
    SignedURLOption,
    StorageError,
    new_cloud_storage,
    open_cloud_storage,
)

__version__ = "0.1.0"

__all__ = [
    "Attributes",
    "CloudStorage",
    "CloudStorageSettings",
    "EndOfSequence",
    "ListIterator",
    "ListObject",
    "ListOptions",
    "SignedURLOption",
    "StorageError",
    "__version__",
    "new_cloud_storage",
    "open_cloud_storage",
]
