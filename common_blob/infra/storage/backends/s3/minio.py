"""MinIO storage backend.

Same wire protocol as S3, but always addressed through an explicit endpoint
with static credentials. Listing is stream-driven: the iterator drains the
aiobotocore paginator, which fetches follow-up pages as the stream is consumed.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from botocore.exceptions import BotoCoreError, ClientError

from common_blob.infra.storage.exceptions import StorageNotConfiguredError, map_boto_error

from ..iterator import ListIterator
from ..protocol import ListOptions, SignedURLMethod
from .backend import S3Backend

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from common_blob.core.settings.storage import CloudStorageSettings

    from ..protocol import ListObject, SignedURLOption

logger = logging.getLogger(__name__)


class MinIOBackend(S3Backend):
    """MinIO (S3-compatible) storage backend.

    Example:
        settings = CloudStorageSettings(
            backend="minio",
            bucket="reports",
            allow_insecure=True,
            s3=S3StorageSettings(
                endpoint="http://localhost:9000",
                access_key="minioadmin",
                secret_key="minioadmin",
            ),
        )
        async with MinIOBackend(settings) as storage:
            async for entry in storage.list("2024/"):
                print(entry.key)
    """

    def __init__(self, settings: CloudStorageSettings) -> None:
        """Initialize MinIO backend.

        Raises:
            StorageNotConfiguredError: If the endpoint or credentials are missing,
                or the endpoint is insecure and not allowed
        """
        if not settings.s3.endpoint:
            msg = "MinIO backend requires an endpoint (BLOB_S3_ENDPOINT)."
            raise StorageNotConfiguredError(msg, metadata={"backend": "minio"})
        if not settings.s3.has_static_credentials:
            msg = "MinIO backend requires access_key and secret_key."
            raise StorageNotConfiguredError(msg, metadata={"backend": "minio"})
        super().__init__(settings)

    @property
    def backend_name(self) -> str:
        """Backend name identifier."""
        return "minio"

    # ========================================================================
    # Listing
    # ========================================================================

    async def _stream_entries(self, options: ListOptions) -> AsyncIterator[ListObject]:
        client = self._ensure_client()
        request = self._list_request(options)
        page_size = request.pop("MaxKeys")
        paginator = client.get_paginator("list_objects_v2")

        try:
            async for page in paginator.paginate(
                **request,
                PaginationConfig={"PageSize": page_size},
            ):
                for entry in self._page_entries(page):
                    yield entry
        except (ClientError, BotoCoreError) as e:
            logger.exception("Failed to list objects in MinIO", extra={"prefix": options.prefix})
            raise map_boto_error(e, operation="list", key=options.prefix) from e

    def list_with_options(self, options: ListOptions | None = None) -> ListIterator:
        """List objects by draining the paginator stream one entry per pull."""
        options = options or ListOptions()
        self._ensure_client()
        return ListIterator.from_stream(
            self._stream_entries(options),
            description=f"minio://{self._bucket}/{options.prefix}",
        )

    # ========================================================================
    # Signed URLs
    # ========================================================================

    def _presign_params(
        self,
        key: str,
        method: SignedURLMethod,
        options: SignedURLOption,
    ) -> dict[str, Any]:
        params = super()._presign_params(key, method, options)
        if method is SignedURLMethod.GET:
            # Signed downloads are served as attachments
            filename = key.rsplit("/", 1)[-1]
            params["ResponseContentDisposition"] = f'attachment; filename="{filename}"'
        return params
