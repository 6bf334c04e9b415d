"""Shared fakes for gallery_sync tests."""
import asyncio
from pathlib import Path
from typing import Dict, List, Optional, Set

import pytest

from gallery_sync.errors import PersistError, UploadError
from gallery_sync.models import MB, GalleryConfig, MediaFile, ValidationPolicy


class GatedObjectStore:
    """Object store whose uploads can be held open and released one by one."""

    def __init__(self, gated: bool = False):
        self.gated = gated
        self.failures: Set[str] = set()
        self.calls: List[str] = []
        self._gates: Dict[str, asyncio.Event] = {}

    def gate(self, name: str) -> asyncio.Event:
        if name not in self._gates:
            self._gates[name] = asyncio.Event()
        return self._gates[name]

    def release(self, name: str) -> None:
        self.gate(name).set()

    async def upload(self, file: MediaFile, prefix: str) -> str:
        self.calls.append(file.name)
        if self.gated:
            await self.gate(file.name).wait()
        if file.name in self.failures:
            raise UploadError(f"upload rejected for {file.name}")
        return f"https://cdn.example/{prefix}/{file.name}"


class BatchObjectStore(GatedObjectStore):
    """Object store exposing a multi-file call."""

    def __init__(self, fail: bool = False):
        super().__init__()
        self.fail = fail
        self.batches: List[List[str]] = []

    async def upload_batch(self, files, prefix: str) -> List[str]:
        self.batches.append([f.name for f in files])
        if self.fail:
            raise UploadError("batch rejected")
        return [f"https://cdn.example/{prefix}/{f.name}" for f in files]


class RecordingDocumentStore:
    """Document store that records every persisted list."""

    def __init__(self, items: Optional[List[str]] = None):
        self.items: List[str] = list(items or [])
        self.persisted: List[List[str]] = []
        self.fail = False
        self.fail_times = 0
        self.gate: Optional[asyncio.Event] = None

    async def load(self) -> List[str]:
        return list(self.items)

    async def persist(self, urls: List[str]) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.fail or self.fail_times > 0:
            self.fail_times = max(0, self.fail_times - 1)
            raise PersistError("document store unavailable")
        self.persisted.append(list(urls))
        self.items = list(urls)


class FakePreviewService:
    """Skips image decoding."""

    async def generate_many(self, files) -> List[Optional[str]]:
        return [f"data:preview/{f.name}" for f in files]


def make_media(tmp_path: Path, name: str, size: int = 1024, content_type: str = "image/jpeg") -> MediaFile:
    path = tmp_path / name
    path.write_bytes(b"\0" * min(size, 4096))
    return MediaFile(path=path, content_type=content_type, size=size)


@pytest.fixture
def media(tmp_path):
    def factory(name: str, size: int = 1024, content_type: str = "image/jpeg") -> MediaFile:
        return make_media(tmp_path, name, size, content_type)
    return factory


@pytest.fixture
def object_store():
    return GatedObjectStore()


@pytest.fixture
def document_store():
    return RecordingDocumentStore()


@pytest.fixture
def config():
    return GalleryConfig(
        upload_prefix="gyms",
        policy=ValidationPolicy(max_size_bytes=10 * MB, max_items=20),
        progress_interval=0.01,
        auto_dismiss_delay=None,
    )
