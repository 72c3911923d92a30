"""S3-compatible storage backend implementation.

Implements the CloudStorage protocol for AWS S3 and other S3-compatible
services using aiobotocore. Listing is marker-driven: each page is one
``list_objects_v2`` request carrying the stored continuation token.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, cast

from aiobotocore.session import get_session
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from common_blob.infra.storage.exceptions import (
    S3_BUCKET_EXISTS_CODES,
    S3_BUCKET_NOT_FOUND_CODES,
    S3_NOT_FOUND_CODES,
    StorageNotConfiguredError,
    StorageNotFoundError,
    boto_error_code,
    map_boto_error,
)

from ..base import (
    BaseStorageBackend,
    check_insecure_endpoint,
    validate_range_arguments,
    validate_range_bounds,
    validate_signed_url_options,
)
from ..iterator import ListIterator, ListPage
from ..protocol import Attributes, ListObject, ListOptions, SignedURLMethod, SignedURLOption
from ..streams import ObjectReader

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from common_blob.core.settings.storage import CloudStorageSettings

logger = logging.getLogger(__name__)

# Region whose CreateBucket call must not carry a LocationConstraint
DEFAULT_REGION = "us-east-1"

# head_bucket answers 403 for buckets owned by another account
_BUCKET_FORBIDDEN_CODES = frozenset({"403", "Forbidden", "AccessDenied"})

_PRESIGN_CLIENT_METHODS = {
    SignedURLMethod.GET: "get_object",
    SignedURLMethod.HEAD: "head_object",
    SignedURLMethod.PUT: "put_object",
    SignedURLMethod.DELETE: "delete_object",
}


class S3Backend(BaseStorageBackend):
    """S3-compatible storage backend.

    Attributes:
        settings: Storage configuration settings
        backend_name: Name identifier for this backend ("s3")
        is_ready: Whether backend is initialized

    Example:
        backend = S3Backend(settings)
        await backend.startup()
        await backend.write("a.json", b'{"key": "value"}', "application/json")
        await backend.shutdown()
    """

    bucket_exists_codes = S3_BUCKET_EXISTS_CODES

    def __init__(self, settings: CloudStorageSettings) -> None:
        """Initialize S3 backend.

        Args:
            settings: Storage settings with S3 configuration

        Raises:
            StorageNotConfiguredError: If the endpoint is insecure and not allowed
        """
        super().__init__(settings)
        self.s3_settings = settings.s3
        check_insecure_endpoint(
            is_insecure=self.s3_settings.is_insecure,
            allow_insecure=settings.allow_insecure,
            backend=self.backend_name,
            endpoint=self.s3_settings.endpoint,
        )
        self._session = get_session()
        self._client: Any = None
        self._client_context: Any = None

    @property
    def backend_name(self) -> str:
        """Backend name identifier."""
        return "s3"

    @property
    def is_ready(self) -> bool:
        """Check if backend is initialized and ready."""
        return self._client is not None

    # ========================================================================
    # Lifecycle Management
    # ========================================================================

    async def startup(self) -> None:
        """Initialize the S3 client and ensure the configured bucket exists.

        Raises:
            StorageBackendError: If the endpoint is unreachable or the bucket
                cannot be created
        """
        if self._client is not None:
            logger.debug("S3 backend already initialized")
            return

        logger.info(
            "Initializing %s backend",
            self.backend_name,
            extra={
                "bucket": self._bucket,
                "endpoint": self.s3_settings.endpoint,
                "region": self.s3_settings.region,
            },
        )

        try:
            self._client_context = self._session.create_client(
                "s3",
                **self._get_client_config(),
                config=self._get_boto_config(),
            )
            self._client = await self._client_context.__aenter__()
        except (BotoCoreError, ValueError) as e:
            self._client_context = None
            logger.exception("Failed to initialize S3 client", extra={"error": str(e)})
            raise StorageNotConfiguredError(
                f"Failed to initialize {self.backend_name} client: {e}",
                metadata={"backend": self.backend_name, "endpoint": self.s3_settings.endpoint},
            ) from e

        try:
            await self._ensure_configured_bucket()
        except BaseException:
            await self.shutdown()
            raise

        logger.info("%s backend initialized successfully", self.backend_name)

    async def shutdown(self) -> None:
        """Shutdown S3 client gracefully."""
        if self._client_context is None:
            logger.debug("S3 backend not initialized, nothing to shutdown")
            return

        logger.info("Shutting down %s backend", self.backend_name)

        try:
            await self._client_context.__aexit__(None, None, None)
        except (BotoCoreError, OSError) as e:
            logger.warning("Error closing S3 client", extra={"error": str(e)})
        finally:
            self._client = None
            self._client_context = None

    async def health_check(self) -> bool:
        """Check S3 connectivity and credentials.

        Returns:
            True if healthy, False otherwise
        """
        if self._client is None:
            return False

        try:
            await self._client.head_bucket(Bucket=self._bucket)
            return True
        except (ClientError, BotoCoreError) as e:
            logger.warning(
                "S3 health check failed",
                extra={"error": str(e), "bucket": self._bucket},
            )
            return False

    def _get_boto_config(self) -> Config:
        """Client config: no retries, bounded timeouts, SigV4 signing."""
        config_kwargs: dict[str, Any] = {
            "retries": {"max_attempts": 0, "mode": "standard"},
            "connect_timeout": self.s3_settings.timeout,
            "read_timeout": self.s3_settings.timeout,
            "max_pool_connections": self.s3_settings.max_pool_connections,
            "signature_version": "s3v4",
        }
        if self.s3_settings.endpoint:
            # Custom endpoints rarely support virtual-hosted bucket addressing
            config_kwargs["s3"] = {"addressing_style": "path"}
        return Config(**config_kwargs)

    def _get_client_config(self) -> dict[str, Any]:
        """Get client keyword arguments for create_client."""
        return self.s3_settings.get_boto3_config()

    def _ensure_client(self) -> Any:
        """Ensure client is initialized.

        Returns:
            Initialized S3 client

        Raises:
            StorageNotConfiguredError: If client not initialized
        """
        if self._client is None:
            msg = f"{self.backend_name} backend not initialized. Call startup() first."
            raise StorageNotConfiguredError(msg)
        return self._client

    # ========================================================================
    # Object Operations
    # ========================================================================

    async def attributes(self, key: str) -> Attributes:
        """Get object metadata.

        The ETag is not an MD5 for multipart or encrypted objects, so ``md5``
        is always None here.
        """
        client = self._ensure_client()

        try:
            response = await client.head_object(Bucket=self._bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            error = map_boto_error(e, operation="attributes", key=key)
            if not isinstance(error, StorageNotFoundError):
                logger.exception("Failed to get object metadata from S3", extra={"key": key})
            raise error from e

        return Attributes(
            content_type=response.get("ContentType") or "",
            content_encoding=response.get("ContentEncoding") or "",
            content_disposition=response.get("ContentDisposition") or "",
            content_language=response.get("ContentLanguage") or "",
            cache_control=response.get("CacheControl") or "",
            mod_time=response["LastModified"],
            size=response.get("ContentLength", 0),
            md5=None,
        )

    async def exists(self, key: str) -> bool:
        """Check if an object exists in S3."""
        client = self._ensure_client()

        try:
            await client.head_object(Bucket=self._bucket, Key=key)
            return True
        except ClientError as e:
            if boto_error_code(e) in S3_NOT_FOUND_CODES:
                return False
            logger.exception("Error checking object existence", extra={"key": key})
            raise map_boto_error(e, operation="exists", key=key) from e
        except BotoCoreError as e:
            logger.exception("Error checking object existence", extra={"key": key})
            raise map_boto_error(e, operation="exists", key=key) from e

    async def get(self, key: str) -> bytes:
        """Download an object into memory."""
        client = self._ensure_client()

        try:
            response = await client.get_object(Bucket=self._bucket, Key=key)
            async with response["Body"] as stream:
                data = await stream.read()
        except (ClientError, BotoCoreError) as e:
            error = map_boto_error(e, operation="get", key=key)
            if not isinstance(error, StorageNotFoundError):
                logger.exception("Failed to download object from S3", extra={"key": key})
            raise error from e

        logger.debug(
            "Object downloaded from S3",
            extra={"key": key, "bucket": self._bucket, "size_bytes": len(data)},
        )
        return bytes(data)

    async def _open_reader(self, key: str, operation: str, **get_kwargs: Any) -> ObjectReader:
        client = self._ensure_client()

        try:
            response = await client.get_object(Bucket=self._bucket, Key=key, **get_kwargs)
        except (ClientError, BotoCoreError) as e:
            error = map_boto_error(e, operation=operation, key=key)
            if not isinstance(error, StorageNotFoundError):
                logger.exception("Failed to open S3 object stream", extra={"key": key})
            raise error from e

        body = response["Body"]
        return ObjectReader(
            key,
            self._body_chunks(body, key, operation),
            release=body.close,
            size=response.get("ContentLength"),
        )

    async def _body_chunks(self, body: Any, key: str, operation: str) -> AsyncIterator[bytes]:
        """Stream the response body, mapping SDK failures raised mid-read."""
        try:
            async for chunk in body.iter_chunks(self.settings.read_chunk_size):
                yield chunk
        except (ClientError, BotoCoreError) as e:
            logger.exception("S3 object stream failed", extra={"key": key})
            raise map_boto_error(e, operation=operation, key=key) from e

    async def get_reader(self, key: str) -> ObjectReader:
        """Open a stream over the whole object."""
        return await self._open_reader(key, "get_reader")

    async def get_range_reader(self, key: str, offset: int, length: int) -> ObjectReader:
        """Open a stream over ``[offset, offset + length)`` using an HTTP Range request."""
        validate_range_arguments(key, offset, length)
        size = (await self.attributes(key)).size
        validate_range_bounds(key, offset, length, size)
        return await self._open_reader(
            key,
            "get_range_reader",
            Range=f"bytes={offset}-{offset + length - 1}",
        )

    async def write(self, key: str, body: bytes, content_type: str | None) -> None:
        """Upload an object in a single PutObject call."""
        content_type = self._require_content_type(key, content_type)
        client = self._ensure_client()

        try:
            await client.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=bytes(body),
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            logger.exception("Failed to upload object to S3", extra={"key": key})
            raise map_boto_error(e, operation="write", key=key) from e

        logger.info(
            "Object uploaded to S3",
            extra={
                "key": key,
                "bucket": self._bucket,
                "size_bytes": len(body),
                "content_type": content_type,
            },
        )

    async def delete(self, key: str) -> None:
        """Delete an object; an absent key is not an error."""
        client = self._ensure_client()

        try:
            await client.delete_object(Bucket=self._bucket, Key=key)
        except ClientError as e:
            if boto_error_code(e) in S3_NOT_FOUND_CODES:
                return
            logger.exception("Failed to delete object from S3", extra={"key": key})
            raise map_boto_error(e, operation="delete", key=key) from e
        except BotoCoreError as e:
            logger.exception("Failed to delete object from S3", extra={"key": key})
            raise map_boto_error(e, operation="delete", key=key) from e

        logger.info("Object deleted from S3", extra={"key": key, "bucket": self._bucket})

    # ========================================================================
    # Listing
    # ========================================================================

    @staticmethod
    def _page_entries(page: dict[str, Any]) -> list[ListObject]:
        """Objects first, then common prefixes, each in response order."""
        entries = [
            ListObject(
                key=obj["Key"],
                mod_time=obj.get("LastModified"),
                size=obj.get("Size", 0),
            )
            for obj in page.get("Contents", [])
        ]
        entries.extend(
            ListObject(key=common["Prefix"], is_dir=True)
            for common in page.get("CommonPrefixes", [])
        )
        return entries

    def _list_request(self, options: ListOptions) -> dict[str, Any]:
        request: dict[str, Any] = {
            "Bucket": self._bucket,
            "Prefix": options.prefix,
            "MaxKeys": self.settings.list_page_size,
        }
        if options.delimiter:
            request["Delimiter"] = options.delimiter
        return request

    def list_with_options(self, options: ListOptions | None = None) -> ListIterator:
        """List objects, one ``list_objects_v2`` request per page."""
        options = options or ListOptions()
        self._ensure_client()
        request = self._list_request(options)

        async def fetch_page(marker: str | None) -> ListPage:
            client = self._ensure_client()
            kwargs = dict(request)
            if marker:
                kwargs["ContinuationToken"] = marker
            try:
                page = await client.list_objects_v2(**kwargs)
            except (ClientError, BotoCoreError) as e:
                logger.exception("Failed to list objects in S3", extra={"prefix": options.prefix})
                raise map_boto_error(e, operation="list", key=options.prefix) from e
            next_marker = page.get("NextContinuationToken") if page.get("IsTruncated") else None
            return ListPage(objects=self._page_entries(page), next_marker=next_marker)

        return ListIterator.from_pages(
            fetch_page,
            description=f"s3://{self._bucket}/{options.prefix}",
        )

    # ========================================================================
    # Signed URLs & Buckets
    # ========================================================================

    def _presign_params(
        self,
        key: str,
        method: SignedURLMethod,
        options: SignedURLOption,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"Bucket": self._bucket, "Key": key}
        if options.content_type:
            if method is SignedURLMethod.GET:
                params["ResponseContentType"] = options.content_type
            elif method is SignedURLMethod.PUT:
                params["ContentType"] = options.content_type
        return params

    async def get_signed_url(self, key: str, options: SignedURLOption | None = None) -> str:
        """Generate a pre-signed URL scoped to one HTTP verb."""
        options, method = validate_signed_url_options(key, options)
        client = self._ensure_client()
        expires_in = int(options.expiry.total_seconds())

        try:
            url = await client.generate_presigned_url(
                _PRESIGN_CLIENT_METHODS[method],
                Params=self._presign_params(key, method, options),
                ExpiresIn=expires_in,
            )
        except (ClientError, BotoCoreError) as e:
            logger.exception("Failed to generate presigned URL", extra={"key": key})
            raise map_boto_error(e, operation="get_signed_url", key=key) from e

        logger.debug(
            "Generated presigned URL",
            extra={"key": key, "method": method.value, "expires_in": expires_in},
        )
        return cast("str", url)

    async def _make_bucket(self, name: str) -> None:
        client = self._ensure_client()
        kwargs: dict[str, Any] = {"Bucket": name}
        region = self.s3_settings.region
        if region and region != DEFAULT_REGION:
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": region}

        try:
            await client.create_bucket(**kwargs)
        except (ClientError, BotoCoreError) as e:
            error = map_boto_error(e, operation="create_bucket", key=name)
            if getattr(error, "backend_code", None) not in self.bucket_exists_codes:
                logger.exception("Failed to create bucket", extra={"bucket": name})
            raise error from e

    async def _bucket_exists(self, name: str) -> bool:
        client = self._ensure_client()

        try:
            await client.head_bucket(Bucket=name)
            return True
        except ClientError as e:
            code = boto_error_code(e)
            if code in S3_BUCKET_NOT_FOUND_CODES or code in _BUCKET_FORBIDDEN_CODES:
                return False
            raise map_boto_error(e, operation="bucket_exists", key=name) from e
        except BotoCoreError as e:
            raise map_boto_error(e, operation="bucket_exists", key=name) from e
