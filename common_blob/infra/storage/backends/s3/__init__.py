"""S3-compatible storage backends.

Supports AWS S3, MinIO, LocalStack, and other S3-compatible services.
"""

from .backend import S3Backend
from .minio import MinIOBackend

__all__ = ["MinIOBackend", "S3Backend"]
