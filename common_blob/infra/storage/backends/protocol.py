"""Storage backend protocol and normalized data structures.

This module defines:
- Normalized value types shared by every backend (the canonical model)
- Protocol interface that all storage backends must implement
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from datetime import datetime

    from .iterator import ListIterator
    from .streams import ObjectReader, ObjectWriter

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class SignedURLMethod(StrEnum):
    """HTTP verbs a signed URL can be scoped to."""

    GET = "GET"
    HEAD = "HEAD"
    PUT = "PUT"
    DELETE = "DELETE"


# ============================================================================
# Normalized Data Structures
# ============================================================================


@dataclass(frozen=True)
class Attributes:
    """Normalized metadata of one object at the moment of the call.

    String fields are empty when the backend does not support or did not
    report them. ``md5`` is only set when the backend itself exposes a
    digest; adapters never derive it from other fields.

    Attributes:
        content_type: MIME type
        content_encoding: Content-Encoding header value
        content_disposition: Content-Disposition header value
        content_language: Content-Language header value
        cache_control: Cache-Control header value
        mod_time: Last modification timestamp
        size: Object size in bytes
        md5: Raw MD5 digest, when exposed by the backend
    """

    content_type: str
    content_encoding: str
    content_disposition: str
    content_language: str
    cache_control: str
    mod_time: datetime
    size: int
    md5: bytes | None = None

    def __post_init__(self) -> None:
        if self.size < 0:
            raise ValueError(f"size must be non-negative, got {self.size}")


@dataclass(frozen=True)
class ListObject:
    """One entry produced by a listing pass.

    Attributes:
        key: Object key, or the common prefix for grouped entries
        is_dir: True only for delimiter-grouped common prefixes
        mod_time: Last modification timestamp (None for prefix groups)
        size: Object size in bytes (0 for prefix groups)
        md5: Raw MD5 digest, when exposed by the backend
    """

    key: str
    is_dir: bool = False
    mod_time: datetime | None = None
    size: int = 0
    md5: bytes | None = None

    def __post_init__(self) -> None:
        if self.size < 0:
            raise ValueError(f"size must be non-negative, got {self.size}")


@dataclass(frozen=True)
class ListOptions:
    """Listing filter.

    Attributes:
        prefix: Only keys starting with this prefix ("" lists everything)
        delimiter: Non-empty value enables hierarchical grouping by common
            prefix; empty means a flat listing
    """

    prefix: str = ""
    delimiter: str = ""


@dataclass(frozen=True)
class SignedURLOption:
    """Options for signed URL generation.

    Attributes:
        expiry: Validity window, counted from now
        method: HTTP verb the URL is scoped to
        content_type: Content type constraint, when any
    """

    expiry: timedelta = timedelta(hours=1)
    method: SignedURLMethod | str = SignedURLMethod.GET
    content_type: str | None = None


# ============================================================================
# Storage Backend Protocol
# ============================================================================


@runtime_checkable
class CloudStorage(Protocol):
    """Protocol interface for storage backends.

    All storage backends (S3, MinIO, Azure Blob, in-memory) implement this
    protocol. Uses structural typing (Protocol) rather than inheritance so
    application code never depends on a concrete adapter.

    Every coroutine is bound to the calling task: cancelling the task aborts
    the in-flight backend call and raises ``asyncio.CancelledError``.

    Example:
        async with await new_cloud_storage(False, "s3", "reports", options) as storage:
            await storage.write("a.json", b'{"key": "value"}', "application/json")
            async for entry in storage.list("a"):
                print(entry.key)
    """

    # ========================================================================
    # Properties
    # ========================================================================

    @property
    def backend_name(self) -> str:
        """Name of the backend (e.g., 's3', 'minio', 'azure')."""
        ...

    @property
    def bucket(self) -> str:
        """Bucket or container every operation addresses."""
        ...

    @property
    def is_ready(self) -> bool:
        """Check if backend is initialized and ready for operations."""
        ...

    # ========================================================================
    # Lifecycle Management
    # ========================================================================

    async def startup(self) -> None:
        """Create SDK clients and ensure the bucket exists (create-or-reuse)."""
        ...

    async def shutdown(self) -> None:
        """Release SDK clients and connection pools."""
        ...

    async def health_check(self) -> bool:
        """Check backend connectivity without raising."""
        ...

    # ========================================================================
    # Object Operations
    # ========================================================================

    async def attributes(self, key: str) -> Attributes:
        """Get object metadata.

        Raises:
            StorageNotFoundError: If the object doesn't exist
            StorageBackendError: On any other backend failure
        """
        ...

    async def exists(self, key: str) -> bool:
        """Check whether an object exists; not-found never raises.

        Raises:
            StorageBackendError: On failures other than not-found
        """
        ...

    async def get(self, key: str) -> bytes:
        """Fetch the whole object into memory.

        Raises:
            StorageNotFoundError: If the object doesn't exist
            StorageBackendError: On any other backend failure
        """
        ...

    async def get_reader(self, key: str) -> ObjectReader:
        """Open a single-pass stream over the whole object."""
        ...

    async def get_range_reader(self, key: str, offset: int, length: int) -> ObjectReader:
        """Open a single-pass stream over ``[offset, offset + length)``.

        Raises:
            StorageInvalidArgumentError: On a negative offset, non-positive
                length, or a range past the end of the object
        """
        ...

    def get_writer(self, key: str, content_type: str = DEFAULT_CONTENT_TYPE) -> ObjectWriter:
        """Return a buffering sink uploaded in one call on ``close()``."""
        ...

    async def write(self, key: str, body: bytes, content_type: str | None) -> None:
        """Upload ``body`` in one backend call, overwriting any existing object.

        Raises:
            StorageInvalidArgumentError: If content_type is missing
        """
        ...

    async def delete(self, key: str) -> None:
        """Delete an object; deleting an absent key succeeds silently."""
        ...

    # ========================================================================
    # Listing
    # ========================================================================

    def list(self, prefix: str = "") -> ListIterator:
        """Flat listing of keys starting with ``prefix``."""
        ...

    def list_with_options(self, options: ListOptions | None = None) -> ListIterator:
        """Flat or hierarchical listing, depending on ``options.delimiter``."""
        ...

    # ========================================================================
    # Signed URLs & Buckets
    # ========================================================================

    async def get_signed_url(self, key: str, options: SignedURLOption | None = None) -> str:
        """Produce a time-bounded, method-scoped, dereferenceable URL.

        Raises:
            StorageInvalidArgumentError: On non-positive expiry or unsupported method
        """
        ...

    async def create_bucket(self, prefix: str, expiration_days: int = 0) -> str:
        """Create (or reuse) a bucket named ``{prefix}-{uuid}`` and return its name."""
        ...
