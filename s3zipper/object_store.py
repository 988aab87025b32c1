"""
s3zipper/object_store.py
-----------------------------------------------------------------------------
Read access to the object store holding the archived files.

The archive pipeline only needs one capability from the store: *open this
key and give me something I can read in chunks*.  That capability is the
:class:`ObjectFetcher` protocol; :class:`S3ObjectFetcher` implements it on
top of a boto3 S3 client.

Failure classification
----------------------
boto3 reports a missing key as a ``ClientError`` whose error code is
``NoSuchKey`` (or ``404``/``NotFound`` depending on the endpoint), and
everything else as some other ``ClientError`` or ``BotoCoreError``.  The
fetcher folds all of that into a single :class:`~s3zipper.errors.FetchError`
carrying a closed :class:`~s3zipper.errors.FetchFailure` kind, so the
pipeline never inspects boto3 exception types itself.

Client lifecycle
----------------
:func:`create_s3_client` is called once at startup.  boto3 clients are
thread-safe, so the single client (and its bounded connection pool) is
shared read-only by every request.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from s3zipper.config import Settings
from s3zipper.errors import ConfigurationError, FetchError, FetchFailure

logger = logging.getLogger(__name__)

# Error codes S3 and S3-compatible stores use for a missing key.
_NOT_FOUND_CODES = frozenset({"NoSuchKey", "404", "NotFound"})


# -----------------------------------------------------------------------------
# Fetched object
# -----------------------------------------------------------------------------


class FetchedObject:
    """
    An opened object: a readable body plus its size when the store reports it.

    Use as a context manager so the underlying connection is released
    whether or not the body was read to the end.

    Parameters
    ----------
    path           : Storage path the object was opened from.
    body           : Any object with ``read(size)`` and ``close()`` (a
                     botocore ``StreamingBody`` in production).
    content_length : Size in bytes, or None if unknown.
    """

    def __init__(self, path: str, body: Any, content_length: int | None = None) -> None:
        self.path = path
        self.content_length = content_length
        self._body = body
        self._closed = False

    def read(self, size: int) -> bytes:
        """
        Read up to ``size`` bytes.  Returns ``b""`` at end of stream.

        Raises
        ------
        FetchError(OTHER) : If the connection fails mid-body.
        """
        try:
            return self._body.read(size)
        except (BotoCoreError, OSError) as exc:
            raise FetchError(self.path, FetchFailure.OTHER, str(exc)) from exc

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._body.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> FetchedObject:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class ObjectFetcher(Protocol):
    """Capability: open a storage path for reading."""

    def open(self, path: str) -> FetchedObject:
        """
        Open ``path``.

        Raises
        ------
        FetchError : with kind ``NOT_FOUND`` or ``OTHER``.
        """
        ...


# -----------------------------------------------------------------------------
# S3 implementation
# -----------------------------------------------------------------------------


class S3ObjectFetcher:
    """
    :class:`ObjectFetcher` backed by a boto3 S3 client and a single bucket.

    Parameters
    ----------
    client : A boto3 S3 client (see :func:`create_s3_client`).
    bucket : Bucket name every storage path is relative to.
    """

    def __init__(self, client: Any, bucket: str) -> None:
        self._client = client
        self.bucket = bucket

    def open(self, path: str) -> FetchedObject:
        """
        Issue a ``GetObject`` for ``path`` and return its streaming body.

        Only the response headers are read here; the body stays on the wire
        until the caller reads it.
        """
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=path)
        except ClientError as exc:
            raise FetchError(path, _classify(exc), str(exc)) from exc
        except BotoCoreError as exc:
            raise FetchError(path, FetchFailure.OTHER, str(exc)) from exc

        return FetchedObject(path, response["Body"], response.get("ContentLength"))


def _classify(exc: ClientError) -> FetchFailure:
    """Map a boto3 ``ClientError`` to NOT_FOUND or OTHER."""
    error = exc.response.get("Error", {})
    status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    if error.get("Code") in _NOT_FOUND_CODES or status == 404:
        return FetchFailure.NOT_FOUND
    return FetchFailure.OTHER


def create_s3_client(settings: Settings) -> Any:
    """
    Create the shared boto3 S3 client.

    Explicit ``AWS_ACCESS_KEY``/``AWS_SECRET_KEY`` take precedence; otherwise
    boto3's standard credential chain (environment, shared credentials file,
    instance role …) is used.  Credentials are resolved eagerly so a
    misconfigured process fails at startup instead of on the first request.

    Parameters
    ----------
    settings : Process settings.

    Returns
    -------
    A boto3 S3 client.

    Raises
    ------
    ConfigurationError : If no credentials can be resolved.
    """
    session_kwargs: dict[str, str] = {"region_name": settings.aws_region}
    if settings.aws_access_key and settings.aws_secret_key:
        session_kwargs["aws_access_key_id"] = settings.aws_access_key
        session_kwargs["aws_secret_access_key"] = settings.aws_secret_key

    session = boto3.Session(**session_kwargs)
    if session.get_credentials() is None:
        raise ConfigurationError(
            "No AWS credentials found.  Set AWS_ACCESS_KEY and AWS_SECRET_KEY "
            "or configure the standard AWS credential chain."
        )

    boto_config = BotoConfig(
        signature_version="s3v4",
        connect_timeout=settings.s3_connect_timeout,
        read_timeout=settings.s3_read_timeout,
        retries={"total_max_attempts": settings.s3_max_attempts, "mode": "standard"},
        max_pool_connections=settings.s3_max_pool_connections,
    )

    logger.info("S3 client ready for bucket %s in %s", settings.aws_bucket, settings.aws_region)
    return session.client("s3", config=boto_config, endpoint_url=settings.s3_endpoint_url)
