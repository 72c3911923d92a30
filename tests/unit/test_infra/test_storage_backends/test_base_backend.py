"""Unit tests for shared backend behaviour."""

from datetime import timedelta
import re

import pytest

from common_blob.infra.storage.backends.base import (
    MAX_BUCKET_NAME_LENGTH,
    BaseStorageBackend,
    check_insecure_endpoint,
    new_bucket_name,
    validate_range_arguments,
    validate_range_bounds,
    validate_signed_url_options,
)
from common_blob.infra.storage.backends.iterator import ListIterator, ListPage
from common_blob.infra.storage.backends.protocol import SignedURLMethod, SignedURLOption
from common_blob.infra.storage.exceptions import (
    EndOfSequence,
    StorageBackendError,
    StorageInvalidArgumentError,
    StorageNotConfiguredError,
)

UUID_SUFFIX = r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}"


class ScriptedBackend(BaseStorageBackend):
    """Backend whose bucket hooks follow a script."""

    bucket_exists_codes = frozenset({"BucketAlreadyOwnedByYou"})

    def __init__(self, settings, *, create_error=None, exists=False):
        super().__init__(settings)
        self.create_error = create_error
        self.exists_answer = exists
        self.created: list[str] = []
        self.existence_checks: list[str] = []

    @property
    def backend_name(self):
        return "scripted"

    async def startup(self):
        await self._ensure_configured_bucket()

    async def shutdown(self):
        pass

    async def write(self, key, body, content_type):
        self._require_content_type(key, content_type)

    def list_with_options(self, options=None):
        async def fetch_page(marker):
            return ListPage()

        return ListIterator.from_pages(fetch_page)

    async def _make_bucket(self, name):
        if self.create_error is not None:
            raise self.create_error
        self.created.append(name)

    async def _bucket_exists(self, name):
        self.existence_checks.append(name)
        return self.exists_answer


class TestValidators:
    """Test argument validation helpers."""

    def test_insecure_endpoint_refused(self):
        """Test insecure endpoints need an explicit opt-in."""
        with pytest.raises(StorageNotConfiguredError, match="allow_insecure"):
            check_insecure_endpoint(
                is_insecure=True,
                allow_insecure=False,
                backend="minio",
                endpoint="http://localhost:9000",
            )

    def test_insecure_endpoint_allowed(self):
        """Test opting in accepts the endpoint."""
        check_insecure_endpoint(
            is_insecure=True,
            allow_insecure=True,
            backend="minio",
            endpoint="http://localhost:9000",
        )

    def test_range_arguments(self):
        """Test offset and length preconditions."""
        validate_range_arguments("a", 0, 1)
        with pytest.raises(StorageInvalidArgumentError, match="offset"):
            validate_range_arguments("a", -1, 1)
        with pytest.raises(StorageInvalidArgumentError, match="length"):
            validate_range_arguments("a", 0, 0)

    def test_range_bounds(self):
        """Test ranges must fit inside the object."""
        validate_range_bounds("a", 1, 5, 16)
        with pytest.raises(StorageInvalidArgumentError, match="exceeds object size"):
            validate_range_bounds("a", 12, 5, 16)

    def test_signed_url_defaults(self):
        """Test omitted options default to a one hour GET."""
        options, method = validate_signed_url_options("a", None)

        assert method is SignedURLMethod.GET
        assert options.expiry == timedelta(hours=1)

    def test_signed_url_method_is_normalized(self):
        """Test lowercase verbs are accepted."""
        _, method = validate_signed_url_options("a", SignedURLOption(method="delete"))

        assert method is SignedURLMethod.DELETE


class TestBucketNames:
    """Test generated bucket names."""

    def test_name_has_prefix_and_uuid(self):
        """Test names follow {prefix}-{uuid4}."""
        name = new_bucket_name("reports")

        assert re.fullmatch(rf"reports-{UUID_SUFFIX}", name)

    def test_names_are_unique(self):
        """Test two calls never collide."""
        assert new_bucket_name("reports") != new_bucket_name("reports")

    def test_empty_prefix_rejected(self):
        """Test the prefix is mandatory."""
        with pytest.raises(StorageInvalidArgumentError):
            new_bucket_name("")

    def test_long_prefix_rejected(self):
        """Test names longer than the provider limit are refused."""
        with pytest.raises(StorageInvalidArgumentError, match="too long"):
            new_bucket_name("x" * (MAX_BUCKET_NAME_LENGTH - 36))


class TestCreateBucket:
    """Test the create-or-reuse bucket rule."""

    async def test_create_bucket_returns_generated_name(self, memory_settings):
        """Test a new bucket is created under a generated name."""
        backend = ScriptedBackend(memory_settings)

        name = await backend.create_bucket("reports", expiration_days=7)

        assert backend.created == [name]
        assert name.startswith("reports-")
        assert backend.existence_checks == []

    async def test_already_exists_and_present_is_success(self, memory_settings):
        """Test "already exists" is accepted when the bucket really exists."""
        backend = ScriptedBackend(
            memory_settings,
            create_error=StorageBackendError("exists", backend_code="BucketAlreadyOwnedByYou"),
            exists=True,
        )

        name = await backend.create_bucket("reports")

        assert backend.existence_checks == [name]

    async def test_already_exists_but_absent_raises_original(self, memory_settings):
        """Test the original error surfaces when the bucket is not found."""
        error = StorageBackendError("exists", backend_code="BucketAlreadyOwnedByYou")
        backend = ScriptedBackend(memory_settings, create_error=error, exists=False)

        with pytest.raises(StorageBackendError) as exc_info:
            await backend.create_bucket("reports")

        assert exc_info.value is error

    async def test_other_errors_skip_existence_check(self, memory_settings):
        """Test unrelated failures propagate without an existence query."""
        backend = ScriptedBackend(
            memory_settings,
            create_error=StorageBackendError("denied", backend_code="AccessDenied"),
            exists=True,
        )

        with pytest.raises(StorageBackendError, match="denied"):
            await backend.create_bucket("reports")

        assert backend.existence_checks == []

    async def test_negative_expiration_rejected(self, memory_settings):
        """Test expiration_days must be non-negative."""
        backend = ScriptedBackend(memory_settings)

        with pytest.raises(StorageInvalidArgumentError, match="expiration_days"):
            await backend.create_bucket("reports", expiration_days=-1)

        assert backend.created == []

    async def test_configured_bucket_reused_when_present(self, memory_settings):
        """Test startup reuses an existing configured bucket."""
        backend = ScriptedBackend(memory_settings, exists=True)

        await backend._ensure_configured_bucket()

        assert backend.created == []
        assert backend.existence_checks == ["test-bucket"]

    async def test_configured_bucket_created_when_absent(self, memory_settings):
        """Test startup creates a missing configured bucket."""
        backend = ScriptedBackend(memory_settings, exists=False)

        await backend._ensure_configured_bucket()

        assert backend.created == ["test-bucket"]

    async def test_memory_create_bucket(self, memory_storage):
        """Test the in-memory backend provisions distinct buckets."""
        first = await memory_storage.create_bucket("scratch")
        second = await memory_storage.create_bucket("scratch")

        assert first != second
        assert await memory_storage._bucket_exists(first) is True


class TestBaseBackendContract:
    """Test the abstract backend contract."""

    def test_incomplete_subclass_cannot_be_instantiated(self, memory_settings):
        """Test a backend missing SDK hooks is rejected at construction."""

        class HalfBackend(BaseStorageBackend):
            @property
            def backend_name(self):
                return "half"

        with pytest.raises(TypeError, match="abstract"):
            HalfBackend(memory_settings)

    async def test_context_manager_runs_lifecycle(self, memory_settings):
        """Test async with starts the backend and provisions the bucket."""
        async with ScriptedBackend(memory_settings) as backend:
            assert backend.created == ["test-bucket"]

    async def test_list_uses_list_with_options(self, memory_settings):
        """Test the flat shortcut delegates to list_with_options."""
        backend = ScriptedBackend(memory_settings)

        with pytest.raises(EndOfSequence):
            await backend.list("a").next()

    def test_writer_requires_content_type(self, memory_settings):
        """Test get_writer refuses an empty content type."""
        backend = ScriptedBackend(memory_settings)

        with pytest.raises(StorageInvalidArgumentError, match="content_type"):
            backend.get_writer("b.bin", content_type="")
