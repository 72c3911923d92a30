"""Pytest configuration and shared fixtures.

Organization:
    - Settings Fixtures: storage settings for each backend kind
    - Backend Fixtures: started in-memory backend
    - Helper Fixtures: botocore/azure error factories

Tests never talk to live services; cloud SDK clients are replaced with
AsyncMock/MagicMock stubs.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Iterator
import os
from typing import Any

from botocore.exceptions import ClientError
import pytest

from common_blob.core.settings import clear_all_caches
from common_blob.core.settings.storage import CloudStorageSettings, S3StorageSettings
from common_blob.infra.logging import clear_log_context
from common_blob.infra.storage.backends.memory import InMemoryBackend

# Ensure ambient environment never leaks into settings under test
for _name in list(os.environ):
    if _name.startswith(("BLOB_", "LOG_")):
        del os.environ[_name]


@pytest.fixture(autouse=True)
def _isolate_settings_and_context() -> Iterator[None]:
    """Reset cached settings and the logging context around every test."""
    clear_all_caches()
    clear_log_context()
    yield
    clear_all_caches()
    clear_log_context()


# ============================================================================
# Settings Fixtures
# ============================================================================


@pytest.fixture
def memory_settings() -> CloudStorageSettings:
    """In-memory settings with a tiny page size to force pagination."""
    return CloudStorageSettings(backend="memory", bucket="test-bucket", list_page_size=2)


@pytest.fixture
def s3_settings() -> CloudStorageSettings:
    """S3 settings with static credentials against AWS."""
    return CloudStorageSettings(
        backend="s3",
        bucket="test-bucket",
        s3=S3StorageSettings(access_key="test-key", secret_key="test-secret"),
    )


@pytest.fixture
def minio_settings() -> CloudStorageSettings:
    """MinIO settings against a local plain-HTTP endpoint."""
    return CloudStorageSettings(
        backend="minio",
        bucket="test-bucket",
        allow_insecure=True,
        s3=S3StorageSettings(
            endpoint="http://localhost:9000",
            access_key="minioadmin",
            secret_key="minioadmin",
        ),
    )


# ============================================================================
# Backend Fixtures
# ============================================================================


@pytest.fixture
async def memory_storage(
    memory_settings: CloudStorageSettings,
) -> AsyncGenerator[InMemoryBackend]:
    """Started in-memory backend, shut down after the test."""
    backend = InMemoryBackend(memory_settings)
    await backend.startup()
    yield backend
    await backend.shutdown()


# ============================================================================
# Helper Fixtures
# ============================================================================


def make_client_error(
    code: str,
    message: str = "backend says no",
    operation: str = "HeadObject",
) -> ClientError:
    """Build a botocore ClientError with the given error code."""
    response: Any = {
        "Error": {"Code": code, "Message": message},
        "ResponseMetadata": {"RequestId": "req-123", "HTTPStatusCode": 400},
    }
    return ClientError(response, operation)


@pytest.fixture
def client_error():
    """Factory fixture building botocore ClientErrors."""
    return make_client_error
