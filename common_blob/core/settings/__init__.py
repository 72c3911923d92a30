"""Modular Pydantic Settings v2 configuration.

Settings are frozen, environment-driven (with optional .env support) and
loaded through LRU-cached loaders:

    from common_blob.core.settings import get_storage_settings

    settings = get_storage_settings()
    print(settings.backend, settings.bucket)

Configuration precedence (highest to lowest):
    1. init kwargs (testing/overrides)
    2. Environment variables
    3. .env file
    4. secrets_dir
"""

from __future__ import annotations

from .loader import clear_all_caches, get_logging_settings, get_storage_settings
from .logs import LoggingSettings, LogLevel
from .storage import (
    AzureStorageSettings,
    CloudStorageSettings,
    S3StorageSettings,
    StorageBackendType,
)

__all__ = [
    "AzureStorageSettings",
    "CloudStorageSettings",
    "LogLevel",
    "LoggingSettings",
    "S3StorageSettings",
    "StorageBackendType",
    "clear_all_caches",
    "get_logging_settings",
    "get_storage_settings",
]
