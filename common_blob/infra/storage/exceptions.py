"""Storage-specific exceptions and SDK error translation.

This module defines the canonical error model shared by every storage
backend, plus the helpers translating botocore and Azure SDK exceptions
into it.

Example:
    ```python
    from common_blob.infra.storage.exceptions import (
        StorageNotFoundError,
        map_boto_error,
    )

    try:
        await client.head_object(Bucket=bucket, Key=key)
    except ClientError as e:
        raise map_boto_error(e, operation="attributes", key=key) from e
    ```

Error kinds:
    - StorageNotFoundError: the addressed object does not exist (404)
    - StorageInvalidArgumentError: caller parameters violate preconditions (400)
    - StorageBackendError: any other backend-reported failure, verbatim (502)
    - StorageNotConfiguredError: construction/configuration failure (503)
    - StorageCancelledError: a listing stream was interrupted by cancellation (499)
    - StorageStreamClosedError: reader/writer used after close (409)
    - EndOfSequence: iterator exhaustion, deliberately NOT a StorageError
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from azure.core.exceptions import ResourceNotFoundError

from common_blob.core.exceptions import AppException

if TYPE_CHECKING:
    from azure.core.exceptions import AzureError
    from botocore.exceptions import BotoCoreError, ClientError

# Backend codes that mean "the addressed object does not exist".
S3_NOT_FOUND_CODES = frozenset({"NoSuchKey", "404", "NotFound"})
S3_BUCKET_NOT_FOUND_CODES = frozenset({"NoSuchBucket", "404", "NotFound"})
S3_BUCKET_EXISTS_CODES = frozenset({"BucketAlreadyOwnedByYou", "BucketAlreadyExists"})
AZURE_NOT_FOUND_CODES = frozenset({"BlobNotFound", "ResourceNotFound"})


class StorageError(AppException):
    """Base exception for all storage-related errors.

    Attributes:
        status_code: HTTP status code for the error.
        detail: Human-readable error message.
        code: Error code identifier for programmatic error handling.
        message: Same as detail, kept for symmetry with backend errors.
        extra: Additional context-specific information about the error.

    Example:
        ```python
        raise StorageError(
            message="Failed to connect to storage backend",
            code="STORAGE_CONNECTION_ERROR",
            status_code=503,
            metadata={"backend": "s3", "endpoint": "s3.amazonaws.com"}
        )
        ```
    """

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 500,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Initialize storage error.

        Args:
            message: Human-readable error message.
            code: Error code for programmatic handling.
            status_code: HTTP status code (default: 500).
            metadata: Additional error context.
        """
        self.code = code
        self.message = message
        super().__init__(
            status_code=status_code,
            detail=message,
            type=code.lower().replace("_", "-"),
            extra=metadata or {},
        )


class StorageNotConfiguredError(StorageError):
    """Raised when a backend cannot be constructed or is used before startup.

    Covers unknown backend kinds, missing or inconsistent credentials,
    insecure endpoints that were not explicitly allowed, and operations
    attempted before ``startup()``.
    """

    def __init__(
        self,
        message: str = "Storage is not configured",
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="STORAGE_NOT_CONFIGURED",
            status_code=503,
            metadata=metadata,
        )


class StorageNotFoundError(StorageError):
    """Raised when the addressed object does not exist.

    ``exists()`` converts this condition into ``False`` and ``delete()``
    treats it as success; every other read operation raises it.
    """

    def __init__(
        self,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="STORAGE_NOT_FOUND",
            status_code=404,
            metadata=metadata,
        )


class StorageInvalidArgumentError(StorageError):
    """Raised when caller-supplied parameters violate preconditions.

    Examples are a negative range offset, a range extending past the end of
    the object, a missing content type, or a non-positive signed URL expiry.
    """

    def __init__(
        self,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="STORAGE_INVALID_ARGUMENT",
            status_code=400,
            metadata=metadata,
        )


class StorageBackendError(StorageError):
    """Any other backend-reported failure (auth, network, quota, conflict).

    The backend's message is carried unmodified. No retry or backoff happens
    at this layer; callers that need it must wrap the call themselves.

    Attributes:
        backend_code: Error code reported by the backend, when any.
    """

    def __init__(
        self,
        message: str,
        backend_code: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.backend_code = backend_code
        super().__init__(
            message=message,
            code="STORAGE_BACKEND_ERROR",
            status_code=502,
            metadata=metadata,
        )


class StorageCancelledError(StorageError):
    """Raised by a listing whose stream-driven source was cancelled mid-pull.

    The cancellation itself propagates as ``asyncio.CancelledError``; this
    error is what later pulls on the same (now unusable) iterator report.
    """

    def __init__(
        self,
        message: str = "Listing was cancelled and cannot be resumed",
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="STORAGE_CANCELLED",
            status_code=499,
            metadata=metadata,
        )


class StorageStreamClosedError(StorageError):
    """Raised when reading from or writing to a stream after it was closed."""

    def __init__(
        self,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="STORAGE_STREAM_CLOSED",
            status_code=409,
            metadata=metadata,
        )


class EndOfSequence(StopAsyncIteration):
    """Signals that a listing pass is exhausted.

    Not a failure: it subclasses ``StopAsyncIteration`` so ``async for``
    terminates on it, and it is deliberately outside the ``StorageError``
    hierarchy so it can never be confused with an error raised mid-pagination.
    """


def boto_error_code(error: ClientError) -> str:
    """Extract the error code from a botocore ``ClientError``."""
    return str(error.response.get("Error", {}).get("Code", ""))


def map_boto_error(
    error: ClientError | BotoCoreError,
    operation: str,
    key: str | None = None,
) -> StorageError:
    """Map a botocore exception to the canonical storage error model.

    Args:
        error: The botocore exception to map.
        operation: The storage operation being performed (e.g. "get", "write").
        key: Optional object key being operated on.

    Returns:
        StorageNotFoundError for missing keys, StorageBackendError otherwise.

    Error Code Mappings:
        - NoSuchKey, 404, NotFound -> StorageNotFoundError (404)
        - Everything else (including NoSuchBucket) -> StorageBackendError (502)
    """
    metadata: dict[str, Any] = {"operation": operation}
    if key is not None:
        metadata["key"] = key

    response = getattr(error, "response", None)
    if response is None:
        # BotoCoreError: connection, credential or parameter failures
        metadata["backend_error"] = type(error).__name__
        return StorageBackendError(str(error), metadata=metadata)

    error_code = boto_error_code(error)  # type: ignore[arg-type]
    error_message = response.get("Error", {}).get("Message") or str(error)
    metadata["backend_code"] = error_code
    metadata["request_id"] = response.get("ResponseMetadata", {}).get("RequestId")

    if error_code in S3_NOT_FOUND_CODES:
        return StorageNotFoundError(
            message=f"{operation.capitalize()} failed: object not found",
            metadata=metadata,
        )

    return StorageBackendError(
        message=error_message,
        backend_code=error_code or None,
        metadata=metadata,
    )


def map_azure_error(
    error: AzureError,
    operation: str,
    key: str | None = None,
) -> StorageError:
    """Map an Azure SDK exception to the canonical storage error model.

    Args:
        error: The azure-core exception to map.
        operation: The storage operation being performed.
        key: Optional blob name being operated on.

    Returns:
        StorageNotFoundError for missing blobs, StorageBackendError otherwise.
    """
    metadata: dict[str, Any] = {"operation": operation}
    if key is not None:
        metadata["key"] = key

    error_code = getattr(error, "error_code", None)
    status_code = getattr(error, "status_code", None)
    if error_code:
        metadata["backend_code"] = str(error_code)
    if status_code:
        metadata["backend_status"] = status_code

    if isinstance(error, ResourceNotFoundError) and (
        error_code is None or str(error_code) in AZURE_NOT_FOUND_CODES
    ):
        return StorageNotFoundError(
            message=f"{operation.capitalize()} failed: blob not found",
            metadata=metadata,
        )

    return StorageBackendError(
        message=getattr(error, "message", None) or str(error),
        backend_code=str(error_code) if error_code else None,
        metadata=metadata,
    )
