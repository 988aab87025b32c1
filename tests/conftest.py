"""Shared fixtures for the S3 Zipper test suite."""

from __future__ import annotations

import io
from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from s3zipper.errors import FetchError, FetchFailure, MetadataLookupError
from s3zipper.main import app, get_resolver, get_streamer
from s3zipper.metadata_store import ACCESS_DENIED_MESSAGE
from s3zipper.object_store import FetchedObject
from s3zipper.schema import FileDescriptor
from s3zipper.streamer import ArchiveStreamer

# The file list exactly as the producing system stores it in redis.
SAMPLE_FILE_LIST_JSON = (
    '[{"S3Path":"1\\/p23216.tf_A89A5199-F04D-A2DE-5824E635AC398956.'
    'Avis_Rent_A_Car_Print_Reservation.pdf","FileVersionId":"4164",'
    '"FileName":"Avis Rent A Car_ Print Reservation.pdf","ProjectName":"Superman",'
    '"ProjectID":"23216","Folder":"","FileID":"4169"},'
    '{"modified":"2015-07-18T02:05:04Z","S3Path":"1\\/p23216.tf_351310E0-DF49-701F-'
    '60601109C2792187.a1.jpg","FileVersionId":"4165","FileName":"a1.jpg",'
    '"ProjectName":"Superman","ProjectID":"23216","Folder":"Level 1\\/Level 2 x\\/Level 3",'
    '"FileID":"4170"}]'
)


class RecordingBody(io.BytesIO):
    """BytesIO that records every read size and can fail after N reads."""

    def __init__(self, data: bytes, fail_after: int | None = None) -> None:
        super().__init__(data)
        self.read_sizes: list[int] = []
        self._fail_after = fail_after

    def read(self, size: int = -1) -> bytes:
        if self._fail_after is not None and len(self.read_sizes) >= self._fail_after:
            raise ConnectionResetError("connection reset by peer")
        self.read_sizes.append(size)
        return super().read(size)


class MemoryFetcher:
    """
    In-memory ObjectFetcher.

    ``objects`` maps storage path → bytes; ``failures`` maps storage path →
    FetchFailure raised on open.  Every opened object is kept in ``opened``
    so tests can assert it was closed.
    """

    def __init__(
        self,
        objects: dict[str, bytes] | None = None,
        failures: dict[str, FetchFailure] | None = None,
        fail_reads_after: dict[str, int] | None = None,
    ) -> None:
        self.objects = objects or {}
        self.failures = failures or {}
        self.fail_reads_after = fail_reads_after or {}
        self.opened: list[FetchedObject] = []
        self.open_calls: list[str] = []

    def open(self, path: str) -> FetchedObject:
        self.open_calls.append(path)
        if path in self.failures:
            raise FetchError(path, self.failures[path], "simulated failure")
        if path not in self.objects:
            raise FetchError(path, FetchFailure.NOT_FOUND, "no such key")
        data = self.objects[path]
        body = RecordingBody(data, fail_after=self.fail_reads_after.get(path))
        obj = FetchedObject(path, body, len(data))
        self.opened.append(obj)
        return obj


class StaticResolver:
    """FileSetResolver returning fixed lists per reference key."""

    def __init__(self, lists: dict[str, list[FileDescriptor]]) -> None:
        self.lists = lists
        self.calls: list[str] = []

    def resolve(self, ref: str) -> list[FileDescriptor]:
        self.calls.append(ref)
        if ref not in self.lists:
            raise MetadataLookupError(ACCESS_DENIED_MESSAGE)
        return self.lists[ref]


def make_descriptor(storage_path: str, file_name: str | None = None, **kwargs) -> FileDescriptor:
    """Build a descriptor with ``file_name`` defaulting to the path's last segment."""
    if file_name is None:
        file_name = storage_path.rsplit("/", 1)[-1]
    return FileDescriptor(storage_path=storage_path, file_name=file_name, **kwargs)


@pytest.fixture()
def fetcher() -> MemoryFetcher:
    return MemoryFetcher(
        objects={
            "1/a.txt": b"alpha",
            "1/b.txt": b"bravo " * 1000,
            "1/c.bin": bytes(range(256)) * 64,
        }
    )


@pytest.fixture()
def streamer(fetcher: MemoryFetcher) -> ArchiveStreamer:
    return ArchiveStreamer(fetcher, chunk_size=1024)


@pytest.fixture()
def resolver() -> StaticResolver:
    return StaticResolver(
        {
            "abc": [
                make_descriptor("1/a.txt", project_id=7, project_name="Apollo"),
                make_descriptor("1/missing.txt"),
                make_descriptor("1/b.txt", folder="docs/2015"),
            ],
            "empty": [],
        }
    )


@pytest.fixture()
def client(resolver: StaticResolver, streamer: ArchiveStreamer) -> Iterator[TestClient]:
    """FastAPI test client with the redis/S3 collaborators replaced by fakes."""
    app.dependency_overrides[get_resolver] = lambda: resolver
    app.dependency_overrides[get_streamer] = lambda: streamer
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def sample_file_list_json() -> str:
    return SAMPLE_FILE_LIST_JSON
