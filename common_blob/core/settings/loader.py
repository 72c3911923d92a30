"""LRU-cached settings loaders.

Settings are loaded and validated once, then cached for the lifetime of the
process.

Usage:
    from common_blob.core.settings.loader import get_storage_settings

    settings = get_storage_settings()  # First call: loads and validates
    settings = get_storage_settings()  # Subsequent calls: returns cached instance

Testing:
    In tests, clear the cache to force reload:
    clear_all_caches()

    Or construct settings directly:
    settings = CloudStorageSettings(backend="memory", bucket="test-bucket")
"""

from __future__ import annotations

from functools import lru_cache

from .logs import LoggingSettings
from .storage import CloudStorageSettings


@lru_cache(maxsize=1)
def get_storage_settings() -> CloudStorageSettings:
    """Get cached object storage settings.

    Returns:
        Validated and frozen CloudStorageSettings instance.
    """
    return CloudStorageSettings()


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    """Get cached logging settings.

    Returns:
        Validated and frozen LoggingSettings instance.
    """
    return LoggingSettings()


def clear_all_caches() -> None:
    """Clear every cached settings instance (for tests)."""
    get_storage_settings.cache_clear()
    get_logging_settings.cache_clear()
