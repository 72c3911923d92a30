"""Unit tests for the JSON log formatter."""

import json
import logging
import sys

from common_blob.infra.logging.formatters import JSONFormatter


def _record(msg="Object uploaded to S3", *args, level=logging.INFO, **extra):
    record = logging.LogRecord(
        name="common_blob.infra.storage.backends.s3.backend",
        level=level,
        pathname=__file__,
        lineno=10,
        msg=msg,
        args=args,
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    """Test JSONFormatter output."""

    def test_basic_fields(self):
        """Test level, logger, message and timestamp are present."""
        data = json.loads(JSONFormatter().format(_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "common_blob.infra.storage.backends.s3.backend"
        assert data["message"] == "Object uploaded to S3"
        assert data["timestamp"].endswith("Z")

    def test_message_arguments_are_interpolated(self):
        """Test %-style arguments are applied."""
        data = json.loads(JSONFormatter().format(_record("Initializing %s backend", "minio")))

        assert data["message"] == "Initializing minio backend"

    def test_extra_fields_are_flattened(self):
        """Test extra={} fields become top-level keys."""
        record = _record(key="a.json", bucket="test-bucket", size_bytes=16)

        data = json.loads(JSONFormatter().format(record))

        assert data["key"] == "a.json"
        assert data["bucket"] == "test-bucket"
        assert data["size_bytes"] == 16
        assert "msg" not in data
        assert "args" not in data

    def test_static_fields(self):
        """Test static fields appear on every record."""
        formatter = JSONFormatter(static={"service": "common-blob"})

        assert json.loads(formatter.format(_record()))["service"] == "common-blob"

    def test_exception_is_single_line(self):
        """Test tracebacks are escaped onto one line."""
        try:
            raise ValueError("boom")
        except ValueError:
            record = _record(level=logging.ERROR)
            record.exc_info = sys.exc_info()

        output = JSONFormatter().format(record)

        assert "\n" not in output
        assert "ValueError: boom" in json.loads(output)["exception"]

    def test_unserializable_values_use_str(self):
        """Test non-JSON values are rendered with str()."""
        record = _record(endpoint=object())

        data = json.loads(JSONFormatter().format(record))

        assert data["endpoint"].startswith("<object object")

    def test_no_trace_ids_without_span(self):
        """Test trace fields are omitted outside a span."""
        data = json.loads(JSONFormatter().format(_record()))

        assert "trace_id" not in data

    def test_process_and_thread_info(self):
        """Test optional process and thread fields."""
        formatter = JSONFormatter(include_process_info=True, include_thread_info=True)

        data = json.loads(formatter.format(_record()))

        assert "process_id" in data
        assert "thread_name" in data
