"""Behaviour shared by every storage backend.

Backends inherit argument validation, the buffering writer, the flat
``list()`` shortcut, bucket naming and the create-or-reuse bucket rule from
``BaseStorageBackend`` and only implement the SDK calls themselves.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import timedelta
import logging
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from common_blob.infra.storage.exceptions import (
    StorageBackendError,
    StorageInvalidArgumentError,
    StorageNotConfiguredError,
)

from .protocol import DEFAULT_CONTENT_TYPE, ListOptions, SignedURLMethod, SignedURLOption
from .streams import ObjectWriter

if TYPE_CHECKING:
    from types import TracebackType

    from common_blob.core.settings.storage import CloudStorageSettings

    from .iterator import ListIterator

logger = logging.getLogger(__name__)

# S3 and Azure both cap bucket/container names at 63 characters
MAX_BUCKET_NAME_LENGTH = 63


def check_insecure_endpoint(
    *,
    is_insecure: bool,
    allow_insecure: bool,
    backend: str,
    endpoint: str | None,
) -> None:
    """Refuse plain-HTTP endpoints unless the caller opted in.

    Raises:
        StorageNotConfiguredError: If the endpoint is insecure and not allowed
    """
    if is_insecure and not allow_insecure:
        msg = (
            f"Refusing insecure (non-TLS) endpoint for {backend} backend. "
            "Set allow_insecure=True to permit it."
        )
        raise StorageNotConfiguredError(msg, metadata={"backend": backend, "endpoint": endpoint})


def new_bucket_name(prefix: str) -> str:
    """Generate a unique bucket name ``{prefix}-{uuid4}``.

    Raises:
        StorageInvalidArgumentError: If the prefix is empty or the name is too long
    """
    if not prefix:
        raise StorageInvalidArgumentError("Bucket prefix must not be empty")
    name = f"{prefix}-{uuid4()}"
    if len(name) > MAX_BUCKET_NAME_LENGTH:
        raise StorageInvalidArgumentError(
            f"Bucket prefix {prefix!r} is too long; generated names are limited "
            f"to {MAX_BUCKET_NAME_LENGTH} characters",
            metadata={"prefix": prefix},
        )
    return name


def validate_signed_url_options(
    key: str,
    options: SignedURLOption | None,
) -> tuple[SignedURLOption, SignedURLMethod]:
    """Normalize signed URL options.

    Returns:
        The effective options and the method as a ``SignedURLMethod``

    Raises:
        StorageInvalidArgumentError: On a non-positive expiry or unsupported method
    """
    options = options or SignedURLOption()
    if not isinstance(options.expiry, timedelta) or options.expiry <= timedelta(0):
        raise StorageInvalidArgumentError(
            f"Signed URL expiry must be positive, got {options.expiry}",
            metadata={"key": key},
        )
    try:
        method = SignedURLMethod(str(options.method).upper())
    except ValueError:
        raise StorageInvalidArgumentError(
            f"Unsupported signed URL method: {options.method}",
            metadata={"key": key, "supported": [m.value for m in SignedURLMethod]},
        ) from None
    return options, method


def validate_range_arguments(key: str, offset: int, length: int) -> None:
    """Reject ranges that are invalid regardless of the object size."""
    if offset < 0:
        raise StorageInvalidArgumentError(
            f"Range offset must be non-negative, got {offset}",
            metadata={"key": key, "offset": offset, "length": length},
        )
    if length <= 0:
        raise StorageInvalidArgumentError(
            f"Range length must be positive, got {length}",
            metadata={"key": key, "offset": offset, "length": length},
        )


def validate_range_bounds(key: str, offset: int, length: int, size: int) -> None:
    """Reject ranges extending past the end of an object of ``size`` bytes."""
    if offset + length > size:
        raise StorageInvalidArgumentError(
            f"Range [{offset}, {offset + length}) exceeds object size {size}",
            metadata={"key": key, "offset": offset, "length": length, "size": size},
        )


class BaseStorageBackend(ABC):
    """Shared implementation for storage backends.

    Subclasses implement the SDK-facing operations plus two bucket hooks,
    ``_make_bucket`` and ``_bucket_exists``, and list the backend error codes
    meaning "bucket already exists" in ``bucket_exists_codes``.
    """

    bucket_exists_codes: frozenset[str] = frozenset()

    def __init__(self, settings: CloudStorageSettings) -> None:
        self.settings = settings
        self._bucket = settings.bucket

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Short backend identifier used in logs and errors."""

    @property
    def bucket(self) -> str:
        """Bucket or container every operation addresses."""
        return self._bucket

    # ========================================================================
    # Lifecycle
    # ========================================================================

    @abstractmethod
    async def startup(self) -> None:
        """Open SDK clients and ensure the configured bucket exists."""

    @abstractmethod
    async def shutdown(self) -> None:
        """Release SDK clients."""

    async def __aenter__(self) -> Any:
        await self.startup()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.shutdown()

    # ========================================================================
    # Shared operations
    # ========================================================================

    @abstractmethod
    async def write(self, key: str, body: bytes, content_type: str | None) -> None:
        """Upload ``body`` under ``key`` in a single backend call."""

    def get_writer(self, key: str, content_type: str = DEFAULT_CONTENT_TYPE) -> ObjectWriter:
        """Return a writer that uploads everything in one ``write()`` on close."""
        self._require_content_type(key, content_type)
        return ObjectWriter(key, self.write, content_type)

    @abstractmethod
    def list_with_options(self, options: ListOptions | None = None) -> ListIterator:
        """Return a lazy iterator over the entries matching ``options``."""

    def list(self, prefix: str = "") -> ListIterator:
        """Flat listing of keys starting with ``prefix``."""
        return self.list_with_options(ListOptions(prefix=prefix))

    @staticmethod
    def _require_content_type(key: str, content_type: str | None) -> str:
        if not content_type:
            raise StorageInvalidArgumentError(
                "content_type is required",
                metadata={"key": key},
            )
        return content_type

    # ========================================================================
    # Buckets
    # ========================================================================

    @abstractmethod
    async def _make_bucket(self, name: str) -> None:
        """Issue the backend's create-bucket call, raising mapped errors."""

    @abstractmethod
    async def _bucket_exists(self, name: str) -> bool:
        """Ask the backend whether ``name`` exists."""

    async def _ensure_bucket(self, name: str) -> None:
        """Create ``name``, treating "already exists" as success if it really exists.

        On an "already exists" failure an explicit existence query decides:
        if the bucket exists the call succeeds, otherwise the original error
        is raised.
        """
        try:
            await self._make_bucket(name)
        except StorageBackendError as e:
            if e.backend_code not in self.bucket_exists_codes:
                raise
            if not await self._bucket_exists(name):
                raise
            logger.debug(
                "Bucket already exists, reusing it",
                extra={"backend": self.backend_name, "bucket": name},
            )
            return
        logger.info(
            "Bucket created",
            extra={"backend": self.backend_name, "bucket": name},
        )

    async def _ensure_configured_bucket(self) -> None:
        """Reuse the configured bucket when present, create it otherwise."""
        if await self._bucket_exists(self._bucket):
            logger.debug(
                "Using existing bucket",
                extra={"backend": self.backend_name, "bucket": self._bucket},
            )
            return
        await self._ensure_bucket(self._bucket)

    async def create_bucket(self, prefix: str, expiration_days: int = 0) -> str:
        """Create (or reuse) a bucket named ``{prefix}-{uuid4}``.

        Args:
            prefix: Name prefix
            expiration_days: Requested object expiry; recorded only, lifecycle
                rules are not applied by this library

        Returns:
            The generated bucket name

        Raises:
            StorageInvalidArgumentError: On an empty/too long prefix or negative expiry
            StorageBackendError: If the backend refused to create the bucket
        """
        if expiration_days < 0:
            raise StorageInvalidArgumentError(
                f"expiration_days must be non-negative, got {expiration_days}",
                metadata={"prefix": prefix},
            )
        name = new_bucket_name(prefix)
        await self._ensure_bucket(name)
        logger.info(
            "Bucket provisioned",
            extra={
                "backend": self.backend_name,
                "bucket": name,
                "expiration_days": expiration_days,
            },
        )
        return name
