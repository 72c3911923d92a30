"""Unit tests for modular Pydantic Settings v2."""
from __future__ import annotations

from pydantic import SecretStr, ValidationError
import pytest

from common_blob.core.settings.loader import (
    clear_all_caches,
    get_logging_settings,
    get_storage_settings,
)
from common_blob.core.settings.logs import LoggingSettings
from common_blob.core.settings.storage import (
    AzureStorageSettings,
    CloudStorageSettings,
    S3StorageSettings,
    StorageBackendType,
)

AZURITE_CONNECTION_STRING = (
    "DefaultEndpointsProtocol=http;AccountName=devstoreaccount1;"
    "AccountKey=Eby8vdM02xNOcqFlqUwJPLlmEtlCDXJ1OUzFT50uSRZ6IFsuFq2UVErCz4I6tq==;"
    "BlobEndpoint=http://127.0.0.1:10000/devstoreaccount1;"
)


@pytest.mark.unit
class TestS3StorageSettings:
    """Test suite for S3StorageSettings."""

    def test_s3_settings_defaults(self):
        """Test S3StorageSettings default values."""
        settings = S3StorageSettings()

        assert settings.endpoint is None
        assert settings.region == "us-east-1"
        assert settings.use_ssl is True
        assert settings.has_static_credentials is False
        assert settings.is_insecure is False

    def test_s3_settings_frozen(self):
        """Test that S3StorageSettings instances are frozen (immutable)."""
        settings = S3StorageSettings()

        with pytest.raises(ValidationError):
            settings.region = "eu-west-1"

    def test_credentials_must_come_in_pairs(self):
        """Test that a lone access key is rejected."""
        with pytest.raises(ValidationError, match="access_key and secret_key"):
            S3StorageSettings(access_key="only-key")

    def test_endpoint_is_normalized(self):
        """Test trailing slashes and blank endpoints."""
        assert S3StorageSettings(endpoint=" http://localhost:9000/ ").endpoint == (
            "http://localhost:9000"
        )
        assert S3StorageSettings(endpoint="  ").endpoint is None

    def test_http_endpoint_is_insecure(self):
        """Test that plain-HTTP endpoints are flagged insecure."""
        assert S3StorageSettings(endpoint="http://localhost:9000").is_insecure is True
        assert S3StorageSettings(endpoint="https://minio.internal").is_insecure is False
        assert S3StorageSettings(use_ssl=False).is_insecure is True

    def test_boto3_config_with_static_credentials(self):
        """Test client kwargs carry credentials and endpoint."""
        settings = S3StorageSettings(
            endpoint="http://localhost:9000",
            access_key="minioadmin",
            secret_key="minioadmin",
        )

        config = settings.get_boto3_config()

        assert config["endpoint_url"] == "http://localhost:9000"
        assert config["aws_access_key_id"] == "minioadmin"
        assert config["aws_secret_access_key"] == "minioadmin"
        assert config["region_name"] == "us-east-1"

    def test_boto3_config_without_credentials_uses_default_chain(self):
        """Test that no credential keys are passed without static credentials."""
        config = S3StorageSettings().get_boto3_config()

        assert "aws_access_key_id" not in config
        assert "endpoint_url" not in config


@pytest.mark.unit
class TestAzureStorageSettings:
    """Test suite for AzureStorageSettings."""

    def test_unconfigured_by_default(self):
        """Test that an empty Azure config is not usable."""
        assert AzureStorageSettings().is_configured is False

    def test_account_key_requires_account(self):
        """Test that key material without an account is rejected."""
        with pytest.raises(ValidationError, match="account_name or account_url"):
            AzureStorageSettings(account_key="secret")

    def test_account_name_and_key(self):
        """Test shared key configuration resolves the public endpoint."""
        settings = AzureStorageSettings(account_name="acme", account_key="secret")

        assert settings.is_configured is True
        assert settings.resolved_account_url == "https://acme.blob.core.windows.net"
        assert settings.resolved_account_key == "secret"
        assert settings.is_insecure is False

    def test_sas_token_prefix_is_stripped(self):
        """Test that a leading '?' on the SAS token is removed."""
        settings = AzureStorageSettings(account_name="acme", sas_token="?sv=2024&sig=abc")

        assert isinstance(settings.sas_token, SecretStr)
        assert settings.sas_token.get_secret_value() == "sv=2024&sig=abc"
        assert settings.is_configured is True

    def test_connection_string_fields(self):
        """Test values are resolved from the connection string."""
        settings = AzureStorageSettings(connection_string=AZURITE_CONNECTION_STRING)

        assert settings.is_configured is True
        assert settings.resolved_account_name == "devstoreaccount1"
        assert settings.resolved_account_key is not None
        assert settings.resolved_account_url == "http://127.0.0.1:10000/devstoreaccount1"
        assert settings.is_insecure is True

    def test_explicit_account_url_wins(self):
        """Test account_url overrides derived endpoints."""
        settings = AzureStorageSettings(
            account_name="acme",
            account_key="secret",
            account_url="https://custom.example.com/",
        )

        assert settings.resolved_account_url == "https://custom.example.com"


@pytest.mark.unit
class TestCloudStorageSettings:
    """Test suite for CloudStorageSettings."""

    def test_defaults(self):
        """Test CloudStorageSettings default values."""
        settings = CloudStorageSettings()

        assert settings.backend is StorageBackendType.S3
        assert settings.bucket == "common-blob"
        assert settings.allow_insecure is False
        assert settings.list_page_size == 1000
        assert settings.read_chunk_size == 64 * 1024

    def test_backend_is_case_insensitive(self):
        """Test that the backend kind is normalized."""
        settings = CloudStorageSettings(backend=" MinIO ")

        assert settings.backend is StorageBackendType.MINIO

    def test_unknown_backend_rejected(self):
        """Test that unsupported kinds fail validation."""
        with pytest.raises(ValidationError):
            CloudStorageSettings(backend="gcs")

    def test_bucket_length_bounds(self):
        """Test bucket names shorter than 3 characters are rejected."""
        with pytest.raises(ValidationError):
            CloudStorageSettings(bucket="ab")

    def test_is_insecure_follows_selected_backend(self):
        """Test is_insecure reads the sub-config of the selected backend."""
        s3 = S3StorageSettings(endpoint="http://localhost:9000")

        assert CloudStorageSettings(backend="minio", s3=s3).is_insecure is True
        assert CloudStorageSettings(backend="memory", s3=s3).is_insecure is False

    def test_environment_variables(self, monkeypatch):
        """Test settings load from BLOB_ environment variables."""
        monkeypatch.setenv("BLOB_BACKEND", "memory")
        monkeypatch.setenv("BLOB_BUCKET", "reports")
        monkeypatch.setenv("BLOB_S3_REGION", "eu-west-1")

        settings = CloudStorageSettings()

        assert settings.backend is StorageBackendType.MEMORY
        assert settings.bucket == "reports"
        assert settings.s3.region == "eu-west-1"


@pytest.mark.unit
class TestLoggingSettings:
    """Test suite for LoggingSettings."""

    def test_level_is_normalized(self):
        """Test lowercase levels are accepted."""
        settings = LoggingSettings(level="debug")

        assert settings.level == "DEBUG"

    def test_json_alias(self, monkeypatch):
        """Test LOG_JSON toggles JSON output."""
        monkeypatch.setenv("LOG_JSON", "false")

        assert LoggingSettings().json_logs is False

    def test_json_by_field_name(self):
        """Test json_logs can be passed directly."""
        assert LoggingSettings(json_logs=False).json_logs is False

    def test_json_requires_log_prefix(self, monkeypatch):
        """Test an unprefixed JSON_LOGS variable is ignored."""
        monkeypatch.setenv("JSON_LOGS", "false")

        assert LoggingSettings().json_logs is True

    def test_to_logging_kwargs(self):
        """Test kwargs map onto configure_logging parameters."""
        settings = LoggingSettings(level="WARNING", log_file="logs/blob.log")

        kwargs = settings.to_logging_kwargs()

        assert kwargs["log_level"] == "WARNING"
        assert kwargs["file_path"] == "logs/blob.log"
        assert kwargs["service_name"] == "common-blob"
        assert kwargs["include_context"] is True


@pytest.mark.unit
class TestSettingsLoaders:
    """Test LRU-cached loaders."""

    def test_loaders_cache_instances(self):
        """Test repeated calls return the same instance."""
        assert get_storage_settings() is get_storage_settings()
        assert get_logging_settings() is get_logging_settings()

    def test_clear_all_caches_reloads(self, monkeypatch):
        """Test clearing caches picks up new environment values."""
        first = get_storage_settings()
        monkeypatch.setenv("BLOB_BUCKET", "other-bucket")

        assert get_storage_settings().bucket == first.bucket
        clear_all_caches()
        assert get_storage_settings().bucket == "other-bucket"
