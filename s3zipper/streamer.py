"""
s3zipper/streamer.py
-----------------------------------------------------------------------------
The streaming archive-assembly pipeline.

Given an ordered list of :class:`~s3zipper.schema.FileDescriptor` objects,
:class:`ArchiveStreamer` opens each file in the object store and copies its
bytes into a deflated zip entry, one file after another, writing straight to
a sink.  Neither a whole file nor the whole archive is ever held in memory.

Two ways to drive it
--------------------
``build(descriptors, sink)``
    Push mode.  ``sink`` is any writable binary object (a file, a socket
    wrapper, ``io.BytesIO``).  Returns a :class:`BuildReport`.

``iter_archive(descriptors)``
    Pull mode.  A generator yielding archive bytes, suitable for
    ``StreamingResponse``.  Production only advances when the consumer asks
    for the next piece, so a slow client slows the pipeline down instead of
    growing a buffer (at most one chunk plus deflate output is pending).

Lifecycle
---------
``INIT → STREAMING → FINALIZED``, or ``ABORTED``.

Per file::

    entry path ← build_entry_path(descriptor)
    open(storage_path) ─┬─ FetchError(NOT_FOUND) → log, skip, next file
                        ├─ FetchError(OTHER)     → log, skip, next file
                        └─ ok → entry header (deflate, UTF-8 name, mtime)
                                copy body in chunk_size pieces
                                release body (always)

After the last file the central directory is written, also for an empty
list, since an empty archive is still a valid archive.

Failure isolation
-----------------
Only the sink can abort a build: a failed write raises
:class:`~s3zipper.errors.SinkWriteError`, and closing the ``iter_archive``
generator early (the HTTP client went away) has the same effect.  In both
cases no further files are opened, every open or prefetched body is
released, and the outcome is logged.  Everything that goes wrong with an
individual file is logged and skipped.

Zip format notes
----------------
* The sink is wrapped so ``zipfile`` sees a non-seekable stream.  Sizes and
  CRCs therefore go in a data descriptor after each entry and the local
  headers are never revisited, which is what makes single-pass streaming
  possible.
* Every entry name is stored as UTF-8 with general purpose bit 11 set, the
  flag archive tools use to display non-ASCII names correctly.
* Modification times go into the DOS date/time fields (UTC) and into an
  extended-timestamp extra field (0x5455) holding the Unix mtime.
"""

from __future__ import annotations

import logging
import struct
import time
import zipfile
from collections import deque
from collections.abc import Iterable, Iterator
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from itertools import islice
from typing import BinaryIO

from s3zipper.errors import FetchError, FetchFailure, SinkWriteError
from s3zipper.object_store import FetchedObject, ObjectFetcher
from s3zipper.paths import build_entry_path
from s3zipper.schema import FileDescriptor

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------

DEFAULT_CHUNK_SIZE: int = 64 * 1024

# General purpose flag bit 11: file name is UTF-8.
UTF8_NAME_FLAG: int = 0x800

# Extended timestamp extra field: header id, data size, flags (bit 0 = mtime).
_EXTENDED_TIMESTAMP_ID: int = 0x5455
_EXTENDED_TIMESTAMP = struct.Struct("<HHBl")

# Range representable in DOS date fields.
_MIN_ZIP_YEAR, _MAX_ZIP_YEAR = 1980, 2107

# The extended timestamp holds a signed 32-bit Unix time.
_MAX_UNIX_MTIME: int = 2**31 - 1

# Regular file, rw-r--r--.
_ENTRY_MODE: int = 0o100644


# -----------------------------------------------------------------------------
# Build state
# -----------------------------------------------------------------------------


class BuildState(str, Enum):
    INIT = "init"
    STREAMING = "streaming"
    FINALIZED = "finalized"
    ABORTED = "aborted"


@dataclass
class BuildReport:
    """
    What happened during one archive build.

    Attributes
    ----------
    state     : Final (or current) lifecycle state.
    entries   : Entry paths written, in archive order.
    skipped   : Storage paths of descriptors that produced no entry.
    truncated : Entry paths whose body failed part-way through the copy.
    bytes_in  : Uncompressed bytes copied into the archive.
    """

    state: BuildState = BuildState.INIT
    entries: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    truncated: list[str] = field(default_factory=list)
    bytes_in: int = 0


# -----------------------------------------------------------------------------
# Sinks
# -----------------------------------------------------------------------------


class _GuardedSink:
    """
    Wraps the caller's sink for ``zipfile``.

    * Has no ``tell``/``seek``, so ``zipfile`` switches to streaming mode
      (data descriptors) even when the real sink happens to be seekable.
    * Turns ``OSError`` and ``ValueError`` (closed file) from the sink into
      :class:`SinkWriteError`, which keeps sink failures distinguishable
      from object-store failures.
    * Repeats short writes until every byte is accepted.  A sink that
      accepts nothing (returns 0, or None for a non-blocking "would block")
      is a failed sink.
    * ``abandon()`` makes later writes no-ops so an aborted ``ZipFile`` can
      be closed without touching a dead sink again.
    """

    def __init__(self, sink: BinaryIO) -> None:
        self._sink: BinaryIO | None = sink

    def write(self, data: bytes) -> int:
        if self._sink is None:
            return len(data)
        view = memoryview(data)
        while view:
            try:
                written = self._sink.write(view)
            except (OSError, ValueError) as exc:
                raise SinkWriteError(f"Writing to archive sink failed: {exc}") from exc
            if not written:
                raise SinkWriteError(
                    f"Writing to archive sink failed: sink accepted no bytes ({written!r})"
                )
            view = view[written:]
        return len(data)

    def flush(self) -> None:
        if self._sink is None:
            return
        flush = getattr(self._sink, "flush", None)
        if flush is None:
            return
        try:
            flush()
        except (OSError, ValueError) as exc:
            raise SinkWriteError(f"Flushing archive sink failed: {exc}") from exc

    def abandon(self) -> None:
        self._sink = None


class _ChunkBuffer:
    """In-memory sink drained by ``iter_archive`` after every copied chunk."""

    def __init__(self) -> None:
        self._parts: list[bytes] = []

    def write(self, data: bytes) -> int:
        self._parts.append(bytes(data))
        return len(data)

    def drain(self) -> bytes:
        data = b"".join(self._parts)
        self._parts.clear()
        return data


# -----------------------------------------------------------------------------
# Zip entries
# -----------------------------------------------------------------------------


class _EntryInfo(zipfile.ZipInfo):
    """ZipInfo whose name is always encoded as UTF-8 with bit 11 set."""

    __slots__ = ()

    # zipfile resets flag_bits when an entry is opened for writing and only
    # sets bit 11 for non-ASCII names; the encoding hook is where both the
    # local header and the central directory pick up the name and flags.
    # The hook is private to CPython's zipfile (unchanged 3.11 through 3.13);
    # the UTF-8 flag tests read both headers from the raw archive bytes.
    def _encodeFilenameFlags(self) -> tuple[bytes, int]:
        return self.filename.encode("utf-8"), self.flag_bits | UTF8_NAME_FLAG


def _entry_info(path: str, descriptor: FileDescriptor, size_hint: int | None) -> _EntryInfo:
    info = _EntryInfo(path)
    info.compress_type = zipfile.ZIP_DEFLATED
    info.external_attr = _ENTRY_MODE << 16
    # Lets zipfile decide up front whether the entry needs zip64 sizes.
    info.file_size = size_hint or 0

    modified = descriptor.modified_time
    if modified is not None:
        if _MIN_ZIP_YEAR <= modified.year <= _MAX_ZIP_YEAR:
            info.date_time = modified.timetuple()[:6]
            mtime = int(modified.timestamp())
            if 0 <= mtime <= _MAX_UNIX_MTIME:
                info.extra = _extended_timestamp(mtime)
        else:
            logger.warning(
                "Timestamp %s for %s is outside the zip date range; omitted",
                descriptor.modified,
                descriptor.storage_path,
            )
    return info


def _extended_timestamp(mtime: int) -> bytes:
    size = _EXTENDED_TIMESTAMP.size - 4
    return _EXTENDED_TIMESTAMP.pack(_EXTENDED_TIMESTAMP_ID, size, 0x01, mtime)


# -----------------------------------------------------------------------------
# Opened descriptors
# -----------------------------------------------------------------------------


@dataclass
class _Opened:
    """Outcome of opening one descriptor: a reader or the failure."""

    descriptor: FileDescriptor
    reader: FetchedObject | None = None
    error: FetchError | None = None

    def release(self) -> None:
        if self.reader is not None:
            self.reader.close()
            self.reader = None

    def __enter__(self) -> _Opened:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


# -----------------------------------------------------------------------------
# Streamer
# -----------------------------------------------------------------------------


class ArchiveStreamer:
    """
    Builds zip archives from object-store files.

    One instance is created at startup and shared by every request; it holds
    no per-build state.

    Parameters
    ----------
    fetcher         : Opens storage paths (see :class:`ObjectFetcher`).
    chunk_size      : Maximum bytes read from a body per copy step.
    prefetch        : Number of upcoming files opened on a thread pool
                      ahead of their turn.  0 keeps the pipeline strictly
                      sequential.  Entries are always written in
                      descriptor order.
    deadline        : Seconds after which the remaining files are skipped
                      and the archive is finalized.  None disables it.
    strip_traversal : Drop ``.``/``..`` folder segments from entry paths.
    """

    def __init__(
        self,
        fetcher: ObjectFetcher,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        prefetch: int = 0,
        deadline: float | None = None,
        strip_traversal: bool = False,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if prefetch < 0:
            raise ValueError("prefetch must not be negative")
        self._fetcher = fetcher
        self.chunk_size = chunk_size
        self.prefetch = prefetch
        self.deadline = deadline
        self.strip_traversal = strip_traversal

    # -- Public API -------------------------------------------------------

    def build(
        self,
        descriptors: Iterable[FileDescriptor],
        sink: BinaryIO,
        *,
        report: BuildReport | None = None,
        target: str = "-",
    ) -> BuildReport:
        """
        Write a complete archive of ``descriptors`` to ``sink``.

        Parameters
        ----------
        descriptors : Files to include, in archive order.
        sink        : Writable binary destination.
        report      : Optional report to fill in (a new one is created
                      otherwise).
        target      : Label used in log lines (e.g. the request line).

        Returns
        -------
        BuildReport : state ``FINALIZED`` on success.

        Raises
        ------
        SinkWriteError : If writing to ``sink`` fails.  ``report.state`` is
                         ``ABORTED`` and all readers have been released.
        """
        report = report if report is not None else BuildReport()
        for _ in self._produce(descriptors, sink, report, target):
            pass
        return report

    def iter_archive(
        self,
        descriptors: Iterable[FileDescriptor],
        *,
        report: BuildReport | None = None,
        target: str = "-",
    ) -> Iterator[bytes]:
        """
        Yield the archive of ``descriptors`` piece by piece.

        Closing the generator before it is exhausted aborts the build and
        releases every open reader.
        """
        report = report if report is not None else BuildReport()
        buffer = _ChunkBuffer()
        steps = self._produce(descriptors, buffer, report, target)
        try:
            for _ in steps:
                data = buffer.drain()
                if data:
                    yield data
        finally:
            steps.close()
        tail = buffer.drain()
        if tail:
            yield tail

    # -- Pipeline ---------------------------------------------------------

    def _produce(
        self,
        descriptors: Iterable[FileDescriptor],
        sink: BinaryIO,
        report: BuildReport,
        target: str,
    ) -> Iterator[None]:
        """Run the pipeline, yielding after every chunk written to ``sink``."""
        files = list(descriptors)
        started = time.monotonic()
        guard = _GuardedSink(sink)
        archive = zipfile.ZipFile(
            guard,  # type: ignore[arg-type]
            mode="w",
            compression=zipfile.ZIP_DEFLATED,
        )
        report.state = BuildState.STREAMING
        opened_files = self._open_in_order(files)

        try:
            for index, opened in enumerate(opened_files):
                with opened:
                    if self._deadline_passed(started):
                        remaining = [d.storage_path for d in files[index:]]
                        logger.warning(
                            "%s\tdeadline of %ss reached; skipping %d remaining file(s)",
                            target,
                            self.deadline,
                            len(remaining),
                        )
                        report.skipped.extend(remaining)
                        break

                    if opened.error is not None:
                        _log_fetch_error(opened.error)
                        report.skipped.append(opened.descriptor.storage_path)
                        continue

                    yield from self._write_entry(archive, opened, report)

            archive.close()
            report.state = BuildState.FINALIZED
            logger.info(
                "%s\t%.3fs\t%d entries, %d skipped",
                target,
                time.monotonic() - started,
                len(report.entries),
                len(report.skipped),
            )
        except GeneratorExit:
            logger.warning(
                "%s\tclient disconnected after %d entries; archive aborted",
                target,
                len(report.entries),
            )
            raise
        except SinkWriteError as exc:
            logger.error("%s\t%s", target, exc)
            raise
        except Exception as exc:
            logger.error("%s\tarchive aborted: %s: %s", target, type(exc).__name__, exc)
            raise
        finally:
            opened_files.close()
            if report.state is not BuildState.FINALIZED:
                report.state = BuildState.ABORTED
                guard.abandon()
                archive.close()

    def _write_entry(
        self, archive: zipfile.ZipFile, opened: _Opened, report: BuildReport
    ) -> Iterator[None]:
        """Copy one opened file into a new archive entry."""
        descriptor = opened.descriptor
        reader = opened.reader
        assert reader is not None
        path = build_entry_path(descriptor, strip_traversal=self.strip_traversal)
        info = _entry_info(path, descriptor, reader.content_length)

        copied = 0
        with archive.open(info, mode="w") as entry:
            while True:
                try:
                    chunk = reader.read(self.chunk_size)
                except FetchError as exc:
                    logger.warning(
                        "Error reading \"%s\" after %d bytes - %s; entry %s is truncated",
                        descriptor.storage_path,
                        copied,
                        exc.detail,
                        path,
                    )
                    report.truncated.append(path)
                    break
                if not chunk:
                    break
                entry.write(chunk)
                copied += len(chunk)
                report.bytes_in += len(chunk)
                yield

        report.entries.append(path)

    # -- Opening ----------------------------------------------------------

    def _open(self, descriptor: FileDescriptor) -> _Opened:
        try:
            return _Opened(descriptor, reader=self._fetcher.open(descriptor.storage_path))
        except FetchError as exc:
            return _Opened(descriptor, error=exc)

    def _open_in_order(self, files: list[FileDescriptor]) -> Iterator[_Opened]:
        """
        Yield opened descriptors in list order.

        With ``prefetch > 0`` up to ``prefetch`` files beyond the current
        one are being opened in the background.  Closing the generator
        releases every reader that was opened but never handed out.
        """
        if self.prefetch == 0:
            for descriptor in files:
                yield self._open(descriptor)
            return

        upcoming = iter(files)
        pool = ThreadPoolExecutor(max_workers=self.prefetch, thread_name_prefix="zip-prefetch")
        # The head of the queue is the current file; the rest are ahead of it.
        pending: deque[Future[_Opened]] = deque(
            pool.submit(self._open, descriptor)
            for descriptor in islice(upcoming, self.prefetch + 1)
        )
        try:
            while pending:
                yield pending.popleft().result()
                next_descriptor = next(upcoming, None)
                if next_descriptor is not None:
                    pending.append(pool.submit(self._open, next_descriptor))
        finally:
            for future in pending:
                if not future.cancel():
                    future.result().release()
            pool.shutdown(wait=True)

    def _deadline_passed(self, started: float) -> bool:
        return self.deadline is not None and time.monotonic() - started > self.deadline


def _log_fetch_error(error: FetchError) -> None:
    if error.kind is FetchFailure.NOT_FOUND:
        logger.warning("File not found. %s", error.path)
    else:
        logger.warning('Error downloading "%s" - %s', error.path, error.detail)
