"""In-memory storage backend.

Process-local and non-durable; everything is lost on shutdown. Intended for
tests and local development, it honours the same contract and error model as
the cloud backends, including paginated listing and signed URLs.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime
import hashlib
import hmac
import logging
import secrets
from typing import TYPE_CHECKING
from urllib.parse import parse_qs, quote, unquote, urlencode, urlparse

from common_blob.infra.storage.exceptions import (
    StorageBackendError,
    StorageNotConfiguredError,
    StorageNotFoundError,
)

from ..base import (
    BaseStorageBackend,
    validate_range_arguments,
    validate_range_bounds,
    validate_signed_url_options,
)
from ..iterator import ListIterator, ListPage
from ..protocol import Attributes, ListObject, ListOptions, SignedURLOption
from ..streams import ObjectReader, iter_bytes

if TYPE_CHECKING:
    from common_blob.core.settings.storage import CloudStorageSettings

logger = logging.getLogger(__name__)

SIGNED_URL_SCHEME = "memory"


@dataclass(frozen=True)
class _StoredObject:
    body: bytes
    content_type: str
    mod_time: datetime
    md5: bytes


class InMemoryBackend(BaseStorageBackend):
    """Storage backend keeping objects in a dict per bucket.

    Example:
        settings = CloudStorageSettings(backend="memory", bucket="test-bucket")
        async with InMemoryBackend(settings) as storage:
            await storage.write("a.json", b'{"key": "value"}', "application/json")
    """

    bucket_exists_codes = frozenset({"BucketAlreadyExists"})

    def __init__(self, settings: CloudStorageSettings) -> None:
        super().__init__(settings)
        self._buckets: dict[str, dict[str, _StoredObject]] = {}
        self._signing_key = secrets.token_bytes(32)
        self._ready = False

    @property
    def backend_name(self) -> str:
        """Backend name identifier."""
        return "memory"

    @property
    def is_ready(self) -> bool:
        return self._ready

    # ========================================================================
    # Lifecycle Management
    # ========================================================================

    async def startup(self) -> None:
        if self._ready:
            return
        await self._ensure_configured_bucket()
        self._ready = True
        logger.info("In-memory backend initialized", extra={"bucket": self._bucket})

    async def shutdown(self) -> None:
        self._buckets.clear()
        self._ready = False

    async def health_check(self) -> bool:
        return self._ready

    def _objects(self) -> dict[str, _StoredObject]:
        if not self._ready:
            msg = "In-memory backend not initialized. Call startup() first."
            raise StorageNotConfiguredError(msg)
        return self._buckets[self._bucket]

    def _lookup(self, key: str, operation: str) -> _StoredObject:
        stored = self._objects().get(key)
        if stored is None:
            raise StorageNotFoundError(
                f"{operation.capitalize()} failed: object not found",
                metadata={"operation": operation, "key": key},
            )
        return stored

    # ========================================================================
    # Object Operations
    # ========================================================================

    async def attributes(self, key: str) -> Attributes:
        stored = self._lookup(key, "attributes")
        return Attributes(
            content_type=stored.content_type,
            content_encoding="",
            content_disposition="",
            content_language="",
            cache_control="",
            mod_time=stored.mod_time,
            size=len(stored.body),
            md5=stored.md5,
        )

    async def exists(self, key: str) -> bool:
        return key in self._objects()

    async def get(self, key: str) -> bytes:
        return self._lookup(key, "get").body

    async def get_reader(self, key: str) -> ObjectReader:
        body = self._lookup(key, "get_reader").body
        return ObjectReader(
            key,
            iter_bytes(body, self.settings.read_chunk_size),
            size=len(body),
        )

    async def get_range_reader(self, key: str, offset: int, length: int) -> ObjectReader:
        validate_range_arguments(key, offset, length)
        body = self._lookup(key, "get_range_reader").body
        validate_range_bounds(key, offset, length, len(body))
        return ObjectReader(
            key,
            iter_bytes(body[offset : offset + length], self.settings.read_chunk_size),
            size=length,
        )

    async def write(self, key: str, body: bytes, content_type: str | None) -> None:
        content_type = self._require_content_type(key, content_type)
        objects = self._objects()
        data = bytes(body)
        objects[key] = _StoredObject(
            body=data,
            content_type=content_type,
            mod_time=datetime.now(UTC),
            md5=hashlib.md5(data).digest(),
        )
        logger.debug(
            "Object stored in memory",
            extra={"key": key, "bucket": self._bucket, "size_bytes": len(data)},
        )

    async def delete(self, key: str) -> None:
        self._objects().pop(key, None)

    # ========================================================================
    # Listing
    # ========================================================================

    def _entries(self, options: ListOptions) -> list[ListObject]:
        """Sorted snapshot of the entries a listing with ``options`` yields."""
        entries: list[ListObject] = []
        prefixes: set[str] = set()
        for key, stored in self._objects().items():
            if not key.startswith(options.prefix):
                continue
            if options.delimiter:
                rest = key[len(options.prefix) :]
                index = rest.find(options.delimiter)
                if index >= 0:
                    prefixes.add(options.prefix + rest[: index + len(options.delimiter)])
                    continue
            entries.append(
                ListObject(
                    key=key,
                    mod_time=stored.mod_time,
                    size=len(stored.body),
                    md5=stored.md5,
                )
            )
        entries.extend(ListObject(key=prefix, is_dir=True) for prefix in prefixes)
        entries.sort(key=lambda entry: entry.key)
        return entries

    def list_with_options(self, options: ListOptions | None = None) -> ListIterator:
        options = options or ListOptions()
        page_size = self.settings.list_page_size

        async def fetch_page(marker: str | None) -> ListPage:
            # Yield control like a network round trip would
            await asyncio.sleep(0)
            remaining = [
                entry
                for entry in self._entries(options)
                if marker is None or entry.key > marker
            ]
            page = remaining[:page_size]
            next_marker = page[-1].key if len(remaining) > page_size else None
            return ListPage(objects=page, next_marker=next_marker)

        return ListIterator.from_pages(
            fetch_page,
            description=f"memory://{self._bucket}/{options.prefix}",
        )

    # ========================================================================
    # Signed URLs & Buckets
    # ========================================================================

    def _signature(self, bucket: str, key: str, method: str, expires: int) -> str:
        message = f"{method}\n{bucket}\n{key}\n{expires}".encode()
        return hmac.new(self._signing_key, message, hashlib.sha256).hexdigest()

    async def get_signed_url(self, key: str, options: SignedURLOption | None = None) -> str:
        options, method = validate_signed_url_options(key, options)
        self._objects()  # raises before startup
        expires = int((datetime.now(UTC) + options.expiry).timestamp())
        query = {
            "method": method.value,
            "expires": str(expires),
            "signature": self._signature(self._bucket, key, method.value, expires),
        }
        if options.content_type:
            query["content_type"] = options.content_type
        return f"{SIGNED_URL_SCHEME}://{self._bucket}/{quote(key)}?{urlencode(query)}"

    def verify_signed_url(self, url: str, method: str = "GET") -> bool:
        """Check that ``url`` was signed by this backend, for ``method``, and is unexpired."""
        parsed = urlparse(url)
        if parsed.scheme != SIGNED_URL_SCHEME:
            return False
        query = {name: values[0] for name, values in parse_qs(parsed.query).items()}
        try:
            expires = int(query["expires"])
            signature = query["signature"]
        except (KeyError, ValueError):
            return False
        if query.get("method") != method.upper():
            return False
        if datetime.now(UTC) > datetime.fromtimestamp(expires, UTC):
            return False
        key = unquote(parsed.path.lstrip("/"))
        expected = self._signature(parsed.netloc, key, method.upper(), expires)
        return hmac.compare_digest(expected, signature)

    async def _make_bucket(self, name: str) -> None:
        if name in self._buckets:
            raise StorageBackendError(
                f"Bucket {name} already exists",
                backend_code="BucketAlreadyExists",
                metadata={"operation": "create_bucket", "bucket": name},
            )
        self._buckets[name] = {}

    async def _bucket_exists(self, name: str) -> bool:
        return name in self._buckets
