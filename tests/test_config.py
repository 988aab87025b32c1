"""Tests for s3zipper/config.py – environment-driven settings."""

from __future__ import annotations

import pytest

from s3zipper.config import Settings, load_settings
from s3zipper.errors import ConfigurationError


class TestLoadSettings:
    def test_defaults(self) -> None:
        settings = load_settings({"AWS_BUCKET": "bucket"})
        assert settings.aws_bucket == "bucket"
        assert settings.aws_region == "us-east-1"
        assert settings.redis_url == "localhost:6379"
        assert settings.redis_key_prefix == "zip:"
        assert settings.port == 8000
        assert settings.chunk_size == 64 * 1024
        assert settings.prefetch == 0
        assert settings.archive_deadline is None
        assert settings.strip_traversal is False
        assert settings.s3_max_attempts == 1

    def test_reads_every_variable(self) -> None:
        settings = load_settings(
            {
                "AWS_ACCESS_KEY": "AKIA",
                "AWS_SECRET_KEY": "secret",
                "AWS_BUCKET": "bucket",
                "AWS_REGION": "eu-west-1",
                "S3_ENDPOINT_URL": "http://minio:9000",
                "REDIS_URL": "redis.local:6380",
                "REDIS_AUTH": "pw",
                "PORT": "9090",
                "ZIP_CHUNK_SIZE": "4096",
                "ZIP_PREFETCH": "2",
                "ARCHIVE_DEADLINE_SECONDS": "30",
                "STRIP_TRAVERSAL_SEGMENTS": "true",
                "LOG_LEVEL": "DEBUG",
            }
        )
        assert settings.aws_access_key == "AKIA"
        assert settings.aws_secret_key == "secret"
        assert settings.aws_region == "eu-west-1"
        assert settings.s3_endpoint_url == "http://minio:9000"
        assert settings.redis_url == "redis.local:6380"
        assert settings.redis_auth == "pw"
        assert settings.port == 9090
        assert settings.chunk_size == 4096
        assert settings.prefetch == 2
        assert settings.archive_deadline == 30.0
        assert settings.strip_traversal is True
        assert settings.log_level == "DEBUG"

    def test_empty_values_count_as_unset(self) -> None:
        settings = load_settings({"AWS_BUCKET": "bucket", "PORT": "", "REDIS_AUTH": ""})
        assert settings.port == 8000
        assert settings.redis_auth is None

    def test_missing_bucket(self) -> None:
        with pytest.raises(ConfigurationError, match="aws_bucket"):
            load_settings({})

    def test_invalid_port(self) -> None:
        with pytest.raises(ConfigurationError, match="port"):
            load_settings({"AWS_BUCKET": "bucket", "PORT": "abc"})

    def test_port_out_of_range(self) -> None:
        with pytest.raises(ConfigurationError):
            load_settings({"AWS_BUCKET": "bucket", "PORT": "70000"})

    def test_negative_prefetch(self) -> None:
        with pytest.raises(ConfigurationError):
            load_settings({"AWS_BUCKET": "bucket", "ZIP_PREFETCH": "-1"})

    def test_reads_os_environ_when_no_mapping(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("s3zipper.config.load_dotenv", lambda: False)
        monkeypatch.setenv("AWS_BUCKET", "from-env")
        monkeypatch.setenv("PORT", "8123")
        settings = load_settings()
        assert settings.aws_bucket == "from-env"
        assert settings.port == 8123

    def test_settings_frozen(self) -> None:
        settings = Settings(aws_bucket="bucket")
        with pytest.raises(Exception):
            settings.port = 1  # type: ignore[misc]
