"""
s3zipper/main.py
-----------------------------------------------------------------------------
FastAPI application entrypoint for the S3 Zipper.

This module is a **thin routing layer**: it validates query parameters,
resolves the reference key, and hands the file list to the archive streamer.
All real work lives in dedicated modules:

Domain modules
~~~~~~~~~~~~~~
- ``s3zipper.config``         – environment-driven ``Settings``.
- ``s3zipper.schema``         – Pydantic v2 ``FileDescriptor`` model.
- ``s3zipper.paths``          – name sanitising and entry path building.
- ``s3zipper.metadata_store`` – reference key → file list (redis).
- ``s3zipper.object_store``   – storage path → readable body (S3).
- ``s3zipper.streamer``       – the streaming zip pipeline.

Run with:
    uvicorn s3zipper.main:app --host 0.0.0.0 --port 8000
or:
    python -m s3zipper

Endpoints
---------
GET /?ref=<key>&downloadas=<name>  → streamed zip of the files behind ``ref``
GET /health                        → liveness probe

Architecture notes
------------------
- The redis client, the S3 client, the resolver and the streamer are built
  once in the lifespan handler and stored on ``app.state``.  Route handlers
  get them through the ``get_resolver`` / ``get_streamer`` dependencies, so
  tests swap in fakes via ``app.dependency_overrides``.
- The download route is a regular ``def``: FastAPI runs it in the
  threadpool, and ``StreamingResponse`` iterates the (synchronous) archive
  generator in the threadpool as well, so blocking S3 reads never stall the
  event loop.
- A configuration problem raises ``ConfigurationError`` from the lifespan
  handler, and uvicorn refuses to start.
"""

from __future__ import annotations

import logging
import time
import tomllib
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import Depends, FastAPI, Response
from fastapi.responses import PlainTextResponse, StreamingResponse
from starlette.requests import Request

from s3zipper.config import load_settings
from s3zipper.errors import MetadataLookupError
from s3zipper.logging_config import setup_logging
from s3zipper.metadata_store import FileSetResolver, RedisFileSetResolver, create_redis_client
from s3zipper.object_store import S3ObjectFetcher, create_s3_client
from s3zipper.paths import content_disposition, safe_download_name
from s3zipper.streamer import ArchiveStreamer

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Bootstrap
# -----------------------------------------------------------------------------

_HERE = Path(__file__).parent

# Read version from pyproject.toml (single source of truth).
_PYPROJECT = _HERE.parent / "pyproject.toml"
with open(_PYPROJECT, "rb") as _f:
    _APP_VERSION: str = tomllib.load(_f)["project"]["version"]

# Plain-text body for requests without ``ref``.
USAGE_MESSAGE = "S3 File Zipper. Pass ?ref= to use."


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Build the shared clients at startup and close the redis pool at shutdown.

    Raises
    ------
    ConfigurationError : If settings are invalid or S3 credentials cannot be
                         resolved.  The server does not start.
    """
    settings = load_settings()
    setup_logging(settings.log_level)

    redis_client = create_redis_client(settings)
    app.state.resolver = RedisFileSetResolver(redis_client, key_prefix=settings.redis_key_prefix)
    app.state.streamer = ArchiveStreamer(
        S3ObjectFetcher(create_s3_client(settings), settings.aws_bucket),
        chunk_size=settings.chunk_size,
        prefetch=settings.prefetch,
        deadline=settings.archive_deadline,
        strip_traversal=settings.strip_traversal,
    )
    logger.info("S3 Zipper %s ready (port %s)", _APP_VERSION, settings.port)

    try:
        yield
    finally:
        redis_client.close()
        redis_client.connection_pool.disconnect()


# -----------------------------------------------------------------------------
# FastAPI app + dependencies
# -----------------------------------------------------------------------------

app = FastAPI(
    title="S3 Zipper",
    description=(
        "Streams a zip archive of S3 objects, assembled on the fly from a file "
        "list stored in redis under a short-lived reference key."
    ),
    version=_APP_VERSION,
    lifespan=lifespan,
)


def get_resolver(request: Request) -> FileSetResolver:
    return request.app.state.resolver


def get_streamer(request: Request) -> ArchiveStreamer:
    return request.app.state.streamer


def _request_target(request: Request) -> str:
    """``METHOD\\t/path?query`` as used in every request log line."""
    uri = request.url.path
    if request.url.query:
        uri += "?" + request.url.query
    return f"{request.method}\t{uri}"


# -----------------------------------------------------------------------------
# Routes
# -----------------------------------------------------------------------------


@app.get(
    "/",
    summary="Download a zip archive of the files behind a reference key",
    responses={
        200: {"content": {"application/zip": {}}, "description": "The streamed archive."},
        403: {"content": {"text/plain": {}}, "description": "Unknown or expired reference."},
        500: {"content": {"text/plain": {}}, "description": "Missing ``ref`` parameter."},
    },
)
def download(
    request: Request,
    ref: str | None = None,
    downloadas: str | None = None,
    resolver: FileSetResolver = Depends(get_resolver),
    streamer: ArchiveStreamer = Depends(get_streamer),
) -> Response:
    """
    Resolve ``ref`` and stream the matching files as one zip archive.

    Parameters
    ----------
    ref        : Reference key written to redis by the producing system.
                 Required.
    downloadas : File name offered to the browser.  Unsafe characters are
                 stripped; defaults to ``download.zip``.

    Returns
    -------
    StreamingResponse
        ``application/zip`` with ``Content-Disposition: attachment``.  The
        body is produced while it is sent; files missing from S3 are left
        out of the archive rather than failing the download.

    Error responses
    ---------------
    500 (text/plain) : ``ref`` missing – usage message, no archive built.
    403 (text/plain) : ``ref`` unknown, expired, or its file list malformed.
    """
    started = time.monotonic()
    target = _request_target(request)

    if not ref:
        logger.info("%s\tmissing ref", target)
        return PlainTextResponse(USAGE_MESSAGE, status_code=500)

    download_name = safe_download_name(downloadas)

    try:
        files = resolver.resolve(ref)
    except MetadataLookupError as exc:
        logger.info("%s\t%s", target, exc)
        return PlainTextResponse(str(exc), status_code=403)

    logger.debug(
        "%s\tresolved %d file(s) in %.3fs", target, len(files), time.monotonic() - started
    )

    return StreamingResponse(
        streamer.iter_archive(files, target=target),
        media_type="application/zip",
        headers={"Content-Disposition": content_disposition(download_name)},
    )


@app.get("/health", summary="Liveness probe")
def health() -> dict[str, str]:
    """A simple health check endpoint."""
    return {"status": "ok"}
