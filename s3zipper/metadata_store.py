"""
s3zipper/metadata_store.py
-----------------------------------------------------------------------------
Resolving a reference key to the ordered list of files to archive.

Another system writes the file list as a JSON array to redis under
``zip:<ref>`` with a short TTL and hands the user a download link carrying
``ref``.  This module reads that list back:

1. ``GET <prefix><ref>`` through a pooled redis client.
2. Decode the JSON into :class:`~s3zipper.schema.FileDescriptor` models,
   preserving order.
3. Parse each ``modified`` string into a UTC ``datetime``.  A bad timestamp
   is logged and left as ``None``; it never fails the lookup.

Any failure in steps 1–2 (missing or expired key, redis unavailable,
malformed JSON) is reported to the caller as one
:class:`~s3zipper.errors.MetadataLookupError` with a user-facing message.
The underlying cause is logged, not returned.

Pool lifecycle
--------------
:func:`create_redis_client` is called once at startup.  The client sits on a
``BlockingConnectionPool`` of bounded size; a checkout waits up to
``REDIS_POOL_TIMEOUT`` seconds for a free connection, and connections idle
for longer than ``REDIS_HEALTH_CHECK_INTERVAL`` are pinged before use, so a
dead connection fails that one checkout rather than the process.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any, Protocol

import redis
from pydantic import TypeAdapter, ValidationError

from s3zipper.config import Settings
from s3zipper.errors import MetadataLookupError, TimestampParseError
from s3zipper.schema import FileDescriptor

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------

# The one message a caller ever sees for a failed lookup.
ACCESS_DENIED_MESSAGE = "Access Denied (sorry your link has timed out)"

# Fixed pattern the producer uses for ``modified``.
MODIFIED_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

_FILE_LIST = TypeAdapter(list[FileDescriptor])


# -----------------------------------------------------------------------------
# Decoding
# -----------------------------------------------------------------------------


def parse_modified_time(raw: str) -> datetime:
    """
    Parse a ``YYYY-MM-DDTHH:MM:SSZ`` string into an aware UTC datetime.

    Raises
    ------
    TimestampParseError : If ``raw`` does not match the pattern.
    """
    try:
        return datetime.strptime(raw, MODIFIED_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError as exc:
        raise TimestampParseError(f"Invalid modified timestamp {raw!r}: {exc}") from exc


def with_modified_times(files: Sequence[FileDescriptor]) -> list[FileDescriptor]:
    """
    Return ``files`` with ``modified_time`` filled in from ``modified``.

    Descriptors without a ``modified`` value are returned unchanged.  A
    timestamp that fails to parse is logged and the descriptor keeps
    ``modified_time=None``, so its entry is written without a timestamp.
    """
    result: list[FileDescriptor] = []
    for descriptor in files:
        if descriptor.modified:
            try:
                parsed = parse_modified_time(descriptor.modified)
            except TimestampParseError as exc:
                logger.warning("%s (file %s)", exc, descriptor.storage_path)
            else:
                descriptor = descriptor.model_copy(update={"modified_time": parsed})
        result.append(descriptor)
    return result


def decode_file_list(raw: bytes | str) -> list[FileDescriptor]:
    """
    Decode the JSON array stored behind a reference key.

    Parameters
    ----------
    raw : The raw redis value.

    Returns
    -------
    list[FileDescriptor] : Descriptors in stored order, timestamps parsed.

    Raises
    ------
    MetadataLookupError : If the payload is not a JSON array of valid records.
    """
    try:
        files = _FILE_LIST.validate_json(raw)
    except ValidationError as exc:
        preview = raw[:200] if isinstance(raw, str) else raw[:200].decode("utf-8", "replace")
        logger.warning("Error decoding file list json %r: %s", preview, exc)
        raise MetadataLookupError(ACCESS_DENIED_MESSAGE) from exc
    return with_modified_times(files)


# -----------------------------------------------------------------------------
# Resolvers
# -----------------------------------------------------------------------------


class FileSetResolver(Protocol):
    """Capability: resolve a reference key to an ordered file list."""

    def resolve(self, ref: str) -> list[FileDescriptor]:
        """
        Raises
        ------
        MetadataLookupError : If the key is unknown, expired, or malformed.
        """
        ...


class RedisFileSetResolver:
    """
    :class:`FileSetResolver` reading JSON file lists from redis.

    Parameters
    ----------
    client     : A ``redis.Redis`` client (see :func:`create_redis_client`).
    key_prefix : Prepended to every reference key (default ``"zip:"``).
    """

    def __init__(self, client: Any, key_prefix: str = "zip:") -> None:
        self._client = client
        self.key_prefix = key_prefix

    def resolve(self, ref: str) -> list[FileDescriptor]:
        key = self.key_prefix + ref
        try:
            raw = self._client.get(key)
        except redis.RedisError as exc:
            logger.warning("Redis lookup for %s failed: %s: %s", key, type(exc).__name__, exc)
            raise MetadataLookupError(ACCESS_DENIED_MESSAGE) from exc

        if raw is None:
            raise MetadataLookupError(ACCESS_DENIED_MESSAGE)

        return decode_file_list(raw)


def create_redis_client(settings: Settings) -> redis.Redis:
    """
    Create the shared, pooled redis client.

    ``REDIS_URL`` may be a bare ``host:port`` (as the producer's deployment
    configures it) or a full ``redis://``/``rediss://`` URL.  ``REDIS_AUTH``,
    when set, overrides any password in the URL.

    No connection is opened here; the pool connects lazily on first use.
    """
    url = settings.redis_url
    if "://" not in url:
        url = f"redis://{url}"

    pool_kwargs: dict[str, Any] = {
        "max_connections": settings.redis_max_connections,
        "timeout": settings.redis_pool_timeout,
        "health_check_interval": settings.redis_health_check_interval,
        "socket_connect_timeout": settings.redis_pool_timeout,
    }
    if settings.redis_auth:
        pool_kwargs["password"] = settings.redis_auth

    pool = redis.BlockingConnectionPool.from_url(url, **pool_kwargs)
    return redis.Redis(connection_pool=pool)
