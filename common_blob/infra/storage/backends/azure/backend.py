"""Azure Blob Storage backend implementation.

Implements the CloudStorage protocol on top of the asyncio flavour of
azure-storage-blob. Blobs live in the configured container; listing is
marker-driven over ``by_page(continuation_token=...)``.
"""

from __future__ import annotations

from datetime import UTC, datetime
import logging
from typing import TYPE_CHECKING, Any

from azure.core.exceptions import AzureError, ResourceExistsError, ResourceNotFoundError
from azure.storage.blob import BlobSasPermissions, ContentSettings, generate_blob_sas
from azure.storage.blob.aio import BlobPrefix, BlobServiceClient

from common_blob.infra.storage.exceptions import (
    StorageBackendError,
    StorageNotConfiguredError,
    StorageNotFoundError,
    map_azure_error,
)

from ..base import (
    BaseStorageBackend,
    check_insecure_endpoint,
    validate_range_arguments,
    validate_range_bounds,
    validate_signed_url_options,
)
from ..iterator import ListIterator, ListPage
from ..protocol import Attributes, ListObject, ListOptions, SignedURLMethod
from ..streams import ObjectReader

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from azure.storage.blob.aio import BlobClient, ContainerClient

    from common_blob.core.settings.storage import CloudStorageSettings

    from ..protocol import SignedURLOption

logger = logging.getLogger(__name__)

CONTAINER_EXISTS_CODE = "ContainerAlreadyExists"


def _sas_permission(method: SignedURLMethod) -> BlobSasPermissions:
    match method:
        case SignedURLMethod.GET | SignedURLMethod.HEAD:
            return BlobSasPermissions(read=True)
        case SignedURLMethod.PUT:
            return BlobSasPermissions(create=True, write=True)
        case SignedURLMethod.DELETE:
            return BlobSasPermissions(delete=True)


def _md5(content_settings: Any) -> bytes | None:
    digest = getattr(content_settings, "content_md5", None)
    return bytes(digest) if digest else None


class AzureBlobBackend(BaseStorageBackend):
    """Azure Blob Storage backend.

    Attributes:
        settings: Storage configuration settings
        backend_name: Name identifier for this backend ("azure")
        is_ready: Whether backend is initialized

    Example:
        backend = AzureBlobBackend(settings)
        await backend.startup()
        reader = await backend.get_range_reader("a.json", 1, 5)
        await backend.shutdown()
    """

    bucket_exists_codes = frozenset({CONTAINER_EXISTS_CODE})

    def __init__(self, settings: CloudStorageSettings) -> None:
        """Initialize Azure backend.

        Raises:
            StorageNotConfiguredError: If no complete credential source is
                configured, or the endpoint is insecure and not allowed
        """
        super().__init__(settings)
        self.azure_settings = settings.azure
        if not self.azure_settings.is_configured:
            msg = (
                "Azure backend not configured. Provide a connection string, or an "
                "account name with an account key or SAS token."
            )
            raise StorageNotConfiguredError(msg, metadata={"backend": "azure"})
        if (
            self.azure_settings.connection_string is None
            and self.azure_settings.account_key is not None
            and not self.azure_settings.resolved_account_name
        ):
            msg = "Azure shared key authentication requires account_name."
            raise StorageNotConfiguredError(msg, metadata={"backend": "azure"})
        check_insecure_endpoint(
            is_insecure=self.azure_settings.is_insecure,
            allow_insecure=settings.allow_insecure,
            backend=self.backend_name,
            endpoint=self.azure_settings.resolved_account_url,
        )
        self._service: BlobServiceClient | None = None
        self._container: ContainerClient | None = None

    @property
    def backend_name(self) -> str:
        """Backend name identifier."""
        return "azure"

    @property
    def is_ready(self) -> bool:
        """Check if backend is initialized and ready."""
        return self._container is not None

    # ========================================================================
    # Lifecycle Management
    # ========================================================================

    def _client_options(self) -> dict[str, Any]:
        """Transport options: no retries, bounded timeouts, chunked downloads."""
        return {
            "retry_total": 0,
            "connection_timeout": self.azure_settings.timeout,
            "read_timeout": self.azure_settings.timeout,
            "max_chunk_get_size": self.settings.read_chunk_size,
            "max_single_get_size": self.settings.read_chunk_size,
        }

    def _create_service_client(self) -> BlobServiceClient:
        azure = self.azure_settings
        options = self._client_options()
        if azure.connection_string is not None:
            return BlobServiceClient.from_connection_string(
                azure.connection_string.get_secret_value(),
                **options,
            )

        credential: Any
        if azure.account_key is not None:
            credential = {
                "account_name": azure.resolved_account_name,
                "account_key": azure.account_key.get_secret_value(),
            }
        elif azure.sas_token is not None:
            credential = azure.sas_token.get_secret_value()
        else:
            msg = "Azure backend has no account key or SAS token."
            raise StorageNotConfiguredError(msg, metadata={"backend": "azure"})
        return BlobServiceClient(azure.resolved_account_url, credential=credential, **options)

    async def startup(self) -> None:
        """Create the service client and ensure the container exists.

        Raises:
            StorageNotConfiguredError: If the client cannot be built from settings
            StorageBackendError: If the service is unreachable or the container
                cannot be created
        """
        if self._container is not None:
            logger.debug("Azure backend already initialized")
            return

        logger.info(
            "Initializing Azure backend",
            extra={
                "container": self._bucket,
                "account_url": self.azure_settings.resolved_account_url,
            },
        )

        try:
            self._service = self._create_service_client()
        except (ValueError, AzureError) as e:
            logger.exception("Failed to initialize Azure client", extra={"error": str(e)})
            raise StorageNotConfiguredError(
                f"Failed to initialize azure client: {e}",
                metadata={"backend": "azure"},
            ) from e
        self._container = self._service.get_container_client(self._bucket)

        try:
            await self._ensure_configured_bucket()
        except BaseException:
            await self.shutdown()
            raise

        logger.info("Azure backend initialized successfully")

    async def shutdown(self) -> None:
        """Close the service client and its transport."""
        if self._service is None:
            logger.debug("Azure backend not initialized, nothing to shutdown")
            return

        logger.info("Shutting down Azure backend")

        try:
            await self._service.close()
        except (AzureError, OSError) as e:
            logger.warning("Error closing Azure client", extra={"error": str(e)})
        finally:
            self._service = None
            self._container = None

    async def health_check(self) -> bool:
        """Check connectivity by reading the container properties."""
        if self._container is None:
            return False

        try:
            await self._container.get_container_properties()
            return True
        except AzureError as e:
            logger.warning(
                "Azure health check failed",
                extra={"error": str(e), "container": self._bucket},
            )
            return False

    def _ensure_service(self) -> BlobServiceClient:
        if self._service is None:
            msg = "Azure backend not initialized. Call startup() first."
            raise StorageNotConfiguredError(msg)
        return self._service

    def _ensure_container(self) -> ContainerClient:
        if self._container is None:
            msg = "Azure backend not initialized. Call startup() first."
            raise StorageNotConfiguredError(msg)
        return self._container

    def _blob(self, key: str) -> BlobClient:
        return self._ensure_container().get_blob_client(key)

    # ========================================================================
    # Object Operations
    # ========================================================================

    async def attributes(self, key: str) -> Attributes:
        """Get blob properties."""
        blob = self._blob(key)

        try:
            props = await blob.get_blob_properties()
        except AzureError as e:
            error = map_azure_error(e, operation="attributes", key=key)
            if not isinstance(error, StorageNotFoundError):
                logger.exception("Failed to get blob properties", extra={"key": key})
            raise error from e

        settings = props.content_settings
        return Attributes(
            content_type=settings.content_type or "",
            content_encoding=settings.content_encoding or "",
            content_disposition=settings.content_disposition or "",
            content_language=settings.content_language or "",
            cache_control=settings.cache_control or "",
            mod_time=props.last_modified,
            size=props.size or 0,
            md5=_md5(settings),
        )

    async def exists(self, key: str) -> bool:
        """Check if a blob exists."""
        blob = self._blob(key)

        try:
            await blob.get_blob_properties()
        except AzureError as e:
            error = map_azure_error(e, operation="exists", key=key)
            if isinstance(error, StorageNotFoundError):
                return False
            logger.exception("Error checking blob existence", extra={"key": key})
            raise error from e
        return True

    async def get(self, key: str) -> bytes:
        """Download a blob into memory."""
        blob = self._blob(key)

        try:
            downloader = await blob.download_blob()
            data = await downloader.readall()
        except AzureError as e:
            error = map_azure_error(e, operation="get", key=key)
            if not isinstance(error, StorageNotFoundError):
                logger.exception("Failed to download blob", extra={"key": key})
            raise error from e

        logger.debug(
            "Blob downloaded",
            extra={"key": key, "container": self._bucket, "size_bytes": len(data)},
        )
        return bytes(data)

    async def _open_reader(
        self,
        key: str,
        operation: str,
        offset: int | None = None,
        length: int | None = None,
    ) -> ObjectReader:
        blob = self._blob(key)

        try:
            downloader = await blob.download_blob(offset=offset, length=length)
        except AzureError as e:
            error = map_azure_error(e, operation=operation, key=key)
            if not isinstance(error, StorageNotFoundError):
                logger.exception("Failed to open blob stream", extra={"key": key})
            raise error from e

        return ObjectReader(
            key,
            self._download_chunks(downloader, key, operation),
            size=downloader.size,
        )

    async def _download_chunks(
        self, downloader: Any, key: str, operation: str
    ) -> AsyncIterator[bytes]:
        """Stream the download, mapping SDK failures raised mid-read."""
        try:
            async for chunk in downloader.chunks():
                yield chunk
        except AzureError as e:
            logger.exception("Blob stream failed", extra={"key": key})
            raise map_azure_error(e, operation=operation, key=key) from e

    async def get_reader(self, key: str) -> ObjectReader:
        """Open a stream over the whole blob."""
        return await self._open_reader(key, "get_reader")

    async def get_range_reader(self, key: str, offset: int, length: int) -> ObjectReader:
        """Open a stream over ``[offset, offset + length)``."""
        validate_range_arguments(key, offset, length)
        size = (await self.attributes(key)).size
        validate_range_bounds(key, offset, length, size)
        return await self._open_reader(key, "get_range_reader", offset=offset, length=length)

    async def write(self, key: str, body: bytes, content_type: str | None) -> None:
        """Upload a blob, overwriting any existing one."""
        content_type = self._require_content_type(key, content_type)
        blob = self._blob(key)

        try:
            await blob.upload_blob(
                bytes(body),
                overwrite=True,
                content_settings=ContentSettings(content_type=content_type),
            )
        except AzureError as e:
            logger.exception("Failed to upload blob", extra={"key": key})
            raise map_azure_error(e, operation="write", key=key) from e

        logger.info(
            "Blob uploaded",
            extra={
                "key": key,
                "container": self._bucket,
                "size_bytes": len(body),
                "content_type": content_type,
            },
        )

    async def delete(self, key: str) -> None:
        """Delete a blob; an absent blob is not an error."""
        blob = self._blob(key)

        try:
            await blob.delete_blob()
        except ResourceNotFoundError:
            return
        except AzureError as e:
            logger.exception("Failed to delete blob", extra={"key": key})
            raise map_azure_error(e, operation="delete", key=key) from e

        logger.info("Blob deleted", extra={"key": key, "container": self._bucket})

    # ========================================================================
    # Listing
    # ========================================================================

    @staticmethod
    def _to_entry(item: Any) -> ListObject:
        if isinstance(item, BlobPrefix):
            return ListObject(key=item.name, is_dir=True)
        return ListObject(
            key=item.name,
            mod_time=item.last_modified,
            size=item.size or 0,
            md5=_md5(item.content_settings),
        )

    def list_with_options(self, options: ListOptions | None = None) -> ListIterator:
        """List blobs, one service request per page."""
        options = options or ListOptions()
        self._ensure_container()
        page_size = self.settings.list_page_size

        async def fetch_page(marker: str | None) -> ListPage:
            container = self._ensure_container()
            if options.delimiter:
                paged = container.walk_blobs(
                    name_starts_with=options.prefix or None,
                    delimiter=options.delimiter,
                    results_per_page=page_size,
                )
            else:
                paged = container.list_blobs(
                    name_starts_with=options.prefix or None,
                    results_per_page=page_size,
                )
            pages = paged.by_page(continuation_token=marker)

            try:
                page = await anext(pages)
                entries = [self._to_entry(item) async for item in page]
            except StopAsyncIteration:
                return ListPage()
            except AzureError as e:
                logger.exception("Failed to list blobs", extra={"prefix": options.prefix})
                raise map_azure_error(e, operation="list", key=options.prefix) from e

            return ListPage(objects=entries, next_marker=pages.continuation_token or None)

        return ListIterator.from_pages(
            fetch_page,
            description=f"azure://{self._bucket}/{options.prefix}",
        )

    # ========================================================================
    # Signed URLs & Containers
    # ========================================================================

    async def get_signed_url(self, key: str, options: SignedURLOption | None = None) -> str:
        """Generate a blob URL carrying a SAS token scoped to one HTTP verb.

        Raises:
            StorageNotConfiguredError: If no account key is available to sign with
        """
        options, method = validate_signed_url_options(key, options)
        blob = self._blob(key)
        account_key = self.azure_settings.resolved_account_key
        account_name = self.azure_settings.resolved_account_name or blob.account_name
        if not account_key or not account_name:
            msg = "Azure signed URLs require an account key (account_key or connection string)."
            raise StorageNotConfiguredError(msg, metadata={"backend": "azure", "key": key})

        sas_kwargs: dict[str, Any] = {}
        if options.content_type and method is SignedURLMethod.GET:
            sas_kwargs["content_type"] = options.content_type

        sas_token = generate_blob_sas(
            account_name=account_name,
            container_name=self._bucket,
            blob_name=key,
            account_key=account_key,
            permission=_sas_permission(method),
            expiry=datetime.now(UTC) + options.expiry,
            protocol="https,http" if self.settings.allow_insecure else "https",
            **sas_kwargs,
        )

        logger.debug(
            "Generated SAS URL",
            extra={"key": key, "method": method.value, "expiry": str(options.expiry)},
        )
        return f"{blob.url}?{sas_token}"

    async def _make_bucket(self, name: str) -> None:
        service = self._ensure_service()

        try:
            await service.create_container(name)
        except ResourceExistsError as e:
            raise StorageBackendError(
                getattr(e, "message", None) or str(e),
                backend_code=str(getattr(e, "error_code", None) or CONTAINER_EXISTS_CODE),
                metadata={"operation": "create_bucket", "bucket": name},
            ) from e
        except AzureError as e:
            logger.exception("Failed to create container", extra={"container": name})
            raise map_azure_error(e, operation="create_bucket", key=name) from e

    async def _bucket_exists(self, name: str) -> bool:
        service = self._ensure_service()

        try:
            return await service.get_container_client(name).exists()
        except AzureError as e:
            raise map_azure_error(e, operation="bucket_exists", key=name) from e
