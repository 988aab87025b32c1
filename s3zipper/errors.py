"""
s3zipper/errors.py
-----------------------------------------------------------------------------
Exception taxonomy for the S3 Zipper.

Every error the service raises on purpose derives from ``ZipperError`` so
callers can tell "expected failure" apart from a programming error.

Kinds
-----
ConfigurationError   – fatal at startup; the process never serves requests.
MetadataLookupError  – a reference key is unknown, expired, or its payload is
                       malformed.  Aborts one request before any bytes are
                       written.
FetchError           – one object could not be read from the object store.
                       Carries a closed ``FetchFailure`` kind (``NOT_FOUND``
                       or ``OTHER``) so callers never need to inspect the
                       underlying boto3 exception.
TimestampParseError  – a descriptor's ``modified`` string is unusable.  The
                       entry is written without a timestamp.
SinkWriteError       – the archive destination stopped accepting bytes
                       (usually the client went away).  Aborts the build.
"""

from __future__ import annotations

from enum import Enum


class ZipperError(Exception):
    """Base class for all S3 Zipper errors."""


class ConfigurationError(ZipperError):
    """Raised when the process cannot be configured (missing bucket, no credentials)."""


class MetadataLookupError(ZipperError):
    """Raised when a reference key cannot be resolved to a file list."""


class FetchFailure(str, Enum):
    """Closed set of reasons an object-store read can fail."""

    NOT_FOUND = "not_found"
    OTHER = "other"


class FetchError(ZipperError):
    """
    Raised when an object cannot be opened or read from the object store.

    Parameters
    ----------
    path   : The storage path that failed.
    kind   : ``FetchFailure.NOT_FOUND`` or ``FetchFailure.OTHER``.
    detail : Human-readable description of the underlying failure.
    """

    def __init__(self, path: str, kind: FetchFailure, detail: str = "") -> None:
        self.path = path
        self.kind = kind
        self.detail = detail
        super().__init__(f"{kind.value}: {path}" + (f" ({detail})" if detail else ""))


class TimestampParseError(ZipperError, ValueError):
    """Raised when a ``modified`` timestamp does not match ``YYYY-MM-DDTHH:MM:SSZ``."""


class SinkWriteError(ZipperError):
    """Raised when writing archive bytes to the sink fails."""
