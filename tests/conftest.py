import asyncio
import json
from typing import Any, Dict, List, Optional

import pytest

from export_router import ExportRequest
from page_meta import DocumentSnapshot, ItemKind, MetadataRecord
from record_store import StorageError


class MemoryStorage:
    """In-memory key/value storage that yields on every access."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None, fail_on_set: bool = False):
        self.data: Dict[str, Any] = json.loads(json.dumps(initial or {}))
        self.fail_on_set = fail_on_set
        self.set_calls = 0

    async def get(self, defaults: Dict[str, Any]) -> Dict[str, Any]:
        await asyncio.sleep(0)
        return {k: json.loads(json.dumps(self.data.get(k, d))) for k, d in defaults.items()}

    async def set(self, mapping: Dict[str, Any]) -> None:
        await asyncio.sleep(0)
        self.set_calls += 1
        if self.fail_on_set:
            raise StorageError("disk full")
        self.data.update(json.loads(json.dumps(mapping)))


class RecordingSink:
    def __init__(self, result: bool = True):
        self.result = result
        self.requests: List[ExportRequest] = []

    async def write(self, request: ExportRequest) -> bool:
        await asyncio.sleep(0)
        self.requests.append(request)
        return self.result


class FakeDocument:
    def __init__(self, snapshot: DocumentSnapshot):
        self.current = snapshot
        self.snapshots = 0

    async def location(self) -> str:
        return self.current.location

    async def snapshot(self) -> DocumentSnapshot:
        self.snapshots += 1
        return self.current


async def no_sleep(ms: int) -> None:
    await asyncio.sleep(0)


def make_record(
    item_id: str = "dQw4w9WgXcQ",
    location_ref: Optional[str] = None,
    captured_at: str = "2026-10-17T12:00:00.000Z",
    title: str = "Some video",
) -> MetadataRecord:
    return MetadataRecord(
        item_id=item_id,
        kind=ItemKind.PRIMARY,
        location_ref=location_ref or f"https://www.youtube.com/watch?v={item_id}",
        title=title,
        author_name="Some Channel",
        duration_seconds=212,
        tags=["music"],
        captured_at=captured_at,
    )


def watch_snapshot(item_id: str = "dQw4w9WgXcQ", title: str = "Some video") -> DocumentSnapshot:
    return DocumentSnapshot(
        location=f"https://www.youtube.com/watch?v={item_id}",
        document_title=f"{title} - YouTube",
        texts={"h1.ytd-watch-metadata": title, "ytd-channel-name a": "Some Channel"},
        metas={'meta[property="og:video:tag"]': ["music", ""]},
        media_duration=212.4,
    )


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
