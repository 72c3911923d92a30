"""Storage backends package.

Provides protocol-based abstraction over S3, MinIO, Azure Blob Storage and
an in-memory store.
"""

from common_blob.core.settings.storage import StorageBackendType

from .factory import create_storage_backend, new_cloud_storage, open_cloud_storage
from .iterator import IteratorState, ListIterator, ListPage
from .protocol import (
    DEFAULT_CONTENT_TYPE,
    Attributes,
    CloudStorage,
    ListObject,
    ListOptions,
    SignedURLMethod,
    SignedURLOption,
)
from .streams import ObjectReader, ObjectWriter

__all__ = [
    "DEFAULT_CONTENT_TYPE",
    "Attributes",
    "CloudStorage",
    "IteratorState",
    "ListIterator",
    "ListObject",
    "ListOptions",
    "ListPage",
    "ObjectReader",
    "ObjectWriter",
    "SignedURLMethod",
    "SignedURLOption",
    "StorageBackendType",
    "create_storage_backend",
    "new_cloud_storage",
    "open_cloud_storage",
]
