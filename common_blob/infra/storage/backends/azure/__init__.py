"""Azure Blob Storage backend."""

from .backend import AzureBlobBackend

__all__ = ["AzureBlobBackend"]
