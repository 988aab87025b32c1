"""
s3zipper/config.py
-----------------------------------------------------------------------------
Process configuration for the S3 Zipper.

Settings come from environment variables, with a ``.env`` file in the working
directory loaded first (no-op if the file doesn't exist).  They are read
**once** at startup by :func:`load_settings` and the resulting frozen
:class:`Settings` object is handed to whatever needs it; nothing else in the
package reads ``os.environ``.

Environment variables
---------------------
AWS_ACCESS_KEY, AWS_SECRET_KEY – explicit S3 credentials.  When unset the
                                 standard boto3 credential chain is used.
AWS_BUCKET                     – bucket holding the files (required).
AWS_REGION                     – bucket region (default: us-east-1).
S3_ENDPOINT_URL                – S3-compatible endpoint override.
S3_CONNECT_TIMEOUT             – seconds (default: 10).
S3_READ_TIMEOUT                – seconds (default: 60).
S3_MAX_ATTEMPTS                – botocore attempts per call (default: 1, no retries).
S3_MAX_POOL_CONNECTIONS        – boto3 connection pool size (default: 16).
REDIS_URL                      – ``host:port`` or ``redis://`` URL (default: localhost:6379).
REDIS_AUTH                     – redis password.
REDIS_KEY_PREFIX               – key prefix for reference keys (default: ``zip:``).
REDIS_MAX_CONNECTIONS          – redis pool size (default: 10).
REDIS_POOL_TIMEOUT             – seconds to wait for a pooled connection (default: 5).
REDIS_HEALTH_CHECK_INTERVAL    – idle seconds before a checkout ping (default: 1).
PORT                           – listen port for ``python -m s3zipper`` (default: 8000).
ZIP_CHUNK_SIZE                 – copy chunk size in bytes (default: 65536).
ZIP_PREFETCH                   – files opened ahead of their turn (default: 0).
ARCHIVE_DEADLINE_SECONDS       – per-archive deadline; unset disables it.
STRIP_TRAVERSAL_SEGMENTS       – drop ``.``/``..`` folder segments (default: false).
LOG_LEVEL                      – root log level (default: INFO).
"""

from __future__ import annotations

import os
from collections.abc import Mapping

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from s3zipper.errors import ConfigurationError


class Settings(BaseModel):
    """Validated, immutable process settings."""

    model_config = ConfigDict(frozen=True)

    # -- Object store ---------------------------------------------------------
    aws_access_key: str | None = None
    aws_secret_key: str | None = None
    aws_bucket: str = Field(..., min_length=1)
    aws_region: str = "us-east-1"
    s3_endpoint_url: str | None = None
    s3_connect_timeout: float = Field(default=10.0, gt=0)
    s3_read_timeout: float = Field(default=60.0, gt=0)
    s3_max_attempts: int = Field(default=1, ge=1)
    s3_max_pool_connections: int = Field(default=16, ge=1)

    # -- Metadata store -------------------------------------------------------
    redis_url: str = "localhost:6379"
    redis_auth: str | None = None
    redis_key_prefix: str = "zip:"
    redis_max_connections: int = Field(default=10, ge=1)
    redis_pool_timeout: float = Field(default=5.0, gt=0)
    redis_health_check_interval: int = Field(default=1, ge=0)

    # -- Server and archive ---------------------------------------------------
    port: int = Field(default=8000, ge=1, le=65535)
    chunk_size: int = Field(default=64 * 1024, ge=1024)
    prefetch: int = Field(default=0, ge=0)
    archive_deadline: float | None = Field(default=None, gt=0)
    strip_traversal: bool = False
    log_level: str = "INFO"


# Maps each environment variable to the Settings field it populates.
_ENV_FIELDS: dict[str, str] = {
    "AWS_ACCESS_KEY": "aws_access_key",
    "AWS_SECRET_KEY": "aws_secret_key",
    "AWS_BUCKET": "aws_bucket",
    "AWS_REGION": "aws_region",
    "S3_ENDPOINT_URL": "s3_endpoint_url",
    "S3_CONNECT_TIMEOUT": "s3_connect_timeout",
    "S3_READ_TIMEOUT": "s3_read_timeout",
    "S3_MAX_ATTEMPTS": "s3_max_attempts",
    "S3_MAX_POOL_CONNECTIONS": "s3_max_pool_connections",
    "REDIS_URL": "redis_url",
    "REDIS_AUTH": "redis_auth",
    "REDIS_KEY_PREFIX": "redis_key_prefix",
    "REDIS_MAX_CONNECTIONS": "redis_max_connections",
    "REDIS_POOL_TIMEOUT": "redis_pool_timeout",
    "REDIS_HEALTH_CHECK_INTERVAL": "redis_health_check_interval",
    "PORT": "port",
    "ZIP_CHUNK_SIZE": "chunk_size",
    "ZIP_PREFETCH": "prefetch",
    "ARCHIVE_DEADLINE_SECONDS": "archive_deadline",
    "STRIP_TRAVERSAL_SEGMENTS": "strip_traversal",
    "LOG_LEVEL": "log_level",
}


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """
    Build :class:`Settings` from the environment.

    Empty variables count as unset, so ``PORT=`` falls back to the default
    exactly like a missing ``PORT``.

    Parameters
    ----------
    environ : Mapping to read instead of ``os.environ`` (used by tests).
              When omitted, ``.env`` is loaded into ``os.environ`` first.

    Returns
    -------
    Settings : The validated settings.

    Raises
    ------
    ConfigurationError : If a required value is missing or a value fails
                         validation (e.g. ``PORT=abc``).
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    values = {
        field: environ[name] for name, field in _ENV_FIELDS.items() if environ.get(name)
    }

    try:
        return Settings(**values)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        raise ConfigurationError(f"Invalid configuration: {problems}") from exc
