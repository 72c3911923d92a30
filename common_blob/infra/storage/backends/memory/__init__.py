"""In-memory storage backend for tests and local development."""

from .backend import InMemoryBackend

__all__ = ["InMemoryBackend"]
