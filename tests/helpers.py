"""Test helpers: layer archive builders and in-memory collaborators."""

import asyncio
import gzip
import io
import json
import tarfile
from typing import Iterable, Optional, Sequence

from layer_puller.core.source import ImageSource
from layer_puller.core.types import FetchResult, RepositoryData
from layer_puller.exceptions import (
    BranchError,
    CommitError,
    FetchError,
    HistoryResolutionError,
    MetadataResolutionError,
    SnapshotInitError,
    TagResolutionError,
)
from layer_puller.snapshot import Snapshotter

ENDPOINTS = ("http://ep1.test/v1", "http://ep2.test/v1")


def _add(tar: tarfile.TarFile, info: tarfile.TarInfo, data: bytes = b"") -> None:
    info.size = len(data)
    info.mtime = 1700000000
    tar.addfile(info, fileobj=io.BytesIO(data) if data else None)


def build_layer(
    files: Optional[dict] = None,
    dirs: Iterable[str] = (),
    symlinks: Optional[dict] = None,
    hardlinks: Optional[dict] = None,
    whiteouts: Iterable[str] = (),
    opaque: Iterable[str] = (),
    compress: bool = False,
    modes: Optional[dict] = None,
) -> bytes:
    """Create layer archive bytes.

    Entries are written as directories, opaque markers, files, links and
    then whiteouts.
    """
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        for name in dirs:
            info = tarfile.TarInfo(name)
            info.type = tarfile.DIRTYPE
            info.mode = 0o755
            _add(tar, info)
        for name in opaque:
            _add(tar, tarfile.TarInfo(f"{name}/.wh..wh..opq"))
        for name, content in (files or {}).items():
            info = tarfile.TarInfo(name)
            info.mode = (modes or {}).get(name, 0o644)
            data = content.encode() if isinstance(content, str) else content
            _add(tar, info, data)
        for name, target in (symlinks or {}).items():
            info = tarfile.TarInfo(name)
            info.type = tarfile.SYMTYPE
            info.linkname = target
            _add(tar, info)
        for name, target in (hardlinks or {}).items():
            info = tarfile.TarInfo(name)
            info.type = tarfile.LNKTYPE
            info.linkname = target
            _add(tar, info)
        for name in whiteouts:
            parent, _, base = name.rpartition("/")
            marker = f"{parent}/.wh.{base}" if parent else f".wh.{base}"
            _add(tar, tarfile.TarInfo(marker))

    data = buf.getvalue()
    return gzip.compress(data) if compress else data


def layer_metadata(layer_id: str) -> bytes:
    return json.dumps({"id": layer_id, "config": {"Cmd": ["/bin/sh"]}}).encode()


class TrackingStream(io.BytesIO):
    """BytesIO that counts how often it was closed."""

    def __init__(self, data: bytes) -> None:
        super().__init__(data)
        self.close_count = 0

    def close(self) -> None:
        self.close_count += 1
        super().close()


class FakeImageSource(ImageSource):
    """In-memory image source.

    ``layers`` maps layer id to archive bytes, in chain order (root first).
    """

    def __init__(
        self,
        layers: dict,
        tag: str = "latest",
        endpoints: Sequence[str] = ENDPOINTS,
        failing: Optional[dict] = None,
        delays: Optional[dict] = None,
        history_failures: Iterable[str] = (),
        missing_repository: bool = False,
    ) -> None:
        self.layers = dict(layers)
        self.chain = list(self.layers)
        self.tags = {tag: self.chain[-1]} if self.chain else {}
        self.endpoints = tuple(endpoints)
        self.failing = failing or {}
        self.delays = delays or {}
        self.history_failures = set(history_failures)
        self.missing_repository = missing_repository

        self.calls: list[tuple[str, str]] = []
        self.streams: dict[str, TrackingStream] = {}
        self.completion_order: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def __aenter__(self) -> "FakeImageSource":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        return None

    async def get_repository_data(self, name: str) -> RepositoryData:
        if self.missing_repository:
            raise MetadataResolutionError(f"Repository {name} not found")
        return RepositoryData(name=name, endpoints=self.endpoints, tokens=("tok",))

    async def get_remote_tags(self, endpoints, name, tokens) -> dict:
        if not endpoints:
            raise TagResolutionError("no endpoints")
        return dict(self.tags)

    async def get_remote_history(self, layer_id, endpoint, tokens) -> list:
        if endpoint in self.history_failures:
            raise HistoryResolutionError(f"{endpoint} is down", layer_id=layer_id)
        return list(self.chain)

    async def get_layer(self, layer_id, endpoint, tokens) -> FetchResult:
        self.calls.append((layer_id, endpoint))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(layer_id, 0))
            failing = self.failing.get(layer_id, ())
            if failing == "*" or endpoint in failing:
                raise FetchError(f"{layer_id} unavailable on {endpoint}")
            stream = TrackingStream(self.layers[layer_id])
            self.streams[layer_id] = stream
            self.completion_order.append(layer_id)
            return FetchResult(
                layer_id=layer_id,
                stream=stream,
                metadata=layer_metadata(layer_id),
                size=len(self.layers[layer_id]),
            )
        finally:
            self.in_flight -= 1


class StaticJob:
    """Fetch job with a canned outcome."""

    def __init__(
        self,
        id: str,
        data: bytes = b"",
        error: Optional[Exception] = None,
        delay: float = 0,
        gate: Optional[asyncio.Event] = None,
        tracker: Optional[dict] = None,
    ) -> None:
        self.id = id
        self.data = data
        self.error = error
        self.delay = delay
        self.gate = gate
        self.tracker = tracker
        self.stream: Optional[TrackingStream] = None

    async def run(self) -> FetchResult:
        if self.tracker is not None:
            self.tracker["now"] += 1
            self.tracker["max"] = max(self.tracker["max"], self.tracker["now"])
        try:
            if self.gate is not None:
                await self.gate.wait()
            await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            self.stream = TrackingStream(self.data)
            return FetchResult(self.id, self.stream, layer_metadata(self.id), len(self.data))
        finally:
            if self.tracker is not None:
                self.tracker["now"] -= 1


class RecordingSnapshotter(Snapshotter):
    """Snapshotter that records calls and can fail on demand."""

    def __init__(self, fail_init: bool = False, fail_branch=None, fail_commit=None):
        self.events: list[tuple[str, str]] = []
        self.fail_init = fail_init
        self.fail_branch = fail_branch
        self.fail_commit = fail_commit

    async def init_root(self, dest) -> None:
        if self.fail_init:
            raise SnapshotInitError("cannot init")
        self.events.append(("init", str(dest)))

    async def branch(self, name: str) -> None:
        if name == self.fail_branch:
            raise BranchError(f"cannot branch {name}")
        self.events.append(("branch", name))

    async def commit_all(self, message: str) -> None:
        if message == self.fail_commit:
            raise CommitError(f"cannot commit {message}")
        self.events.append(("commit", message))
