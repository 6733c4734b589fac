"""
YouTube Meta Logger - record store
Keeps the newest-first list of captured records in a key/value storage
collaborator, deduplicated by (item id, location).
"""

import asyncio
import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List

from page_meta import MetadataRecord


RECORDS_KEY = "watched"
MAX_RECORDS = 2000


class StorageError(RuntimeError):
    pass


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def write_json(path: Path, data: Any) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)


_PATH_LOCKS: Dict[Path, threading.Lock] = {}
_PATH_LOCKS_GUARD = threading.Lock()


def path_lock(path: Path) -> threading.Lock:
    key = path.resolve()
    with _PATH_LOCKS_GUARD:
        return _PATH_LOCKS.setdefault(key, threading.Lock())


class JsonFileStorage:
    """Key/value storage backed by one JSON document on disk.

    Each get or set is atomic on its own; nothing spans a get and a
    later set, so read-modify-write callers can race each other.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.lock = path_lock(self.path)

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(read_text(self.path) or "{}")
        except (OSError, ValueError) as exc:
            raise StorageError(f"Cannot read storage {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StorageError(f"Storage {self.path} does not hold a JSON object")
        return data

    def _store(self, mapping: Dict[str, Any]) -> None:
        # load, merge and replace must not interleave between worker threads
        with self.lock:
            data = self._load()
            data.update(mapping)
            ensure_dir(self.path.parent)
            fd, tmp_name = tempfile.mkstemp(prefix=self.path.name + ".", suffix=".tmp", dir=str(self.path.parent))
            os.close(fd)
            tmp_path = Path(tmp_name)
            try:
                write_json(tmp_path, data)
                os.replace(tmp_path, self.path)
            except OSError as exc:
                tmp_path.unlink(missing_ok=True)
                raise StorageError(f"Cannot write storage {self.path}: {exc}") from exc

    def _read(self) -> Dict[str, Any]:
        with self.lock:
            return self._load()

    async def get(self, defaults: Dict[str, Any]) -> Dict[str, Any]:
        data = await asyncio.to_thread(self._read)
        return {key: data.get(key, default) for key, default in defaults.items()}

    async def set(self, mapping: Dict[str, Any]) -> None:
        await asyncio.to_thread(self._store, dict(mapping))


class RecordStore:
    def __init__(self, storage, capacity: int = MAX_RECORDS):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.storage = storage
        self.capacity = capacity

    async def _read(self) -> List[Dict[str, Any]]:
        data = await self.storage.get({RECORDS_KEY: []})
        raw = data.get(RECORDS_KEY)
        return [r for r in raw if isinstance(r, dict)] if isinstance(raw, list) else []

    async def upsert_if_absent(self, record: MetadataRecord) -> bool:
        # Not transactional: two concurrent callers can both miss the key
        # between the read below and the write at the end.
        records = await self._read()
        key = record.key
        if any(MetadataRecord.from_dict(r).key == key for r in records):
            return False

        records.insert(0, record.to_dict())
        del records[self.capacity:]
        await self.storage.set({RECORDS_KEY: records})
        return True

    async def list_all(self) -> List[MetadataRecord]:
        return [MetadataRecord.from_dict(r) for r in await self._read()]

    async def clear(self) -> None:
        await self.storage.set({RECORDS_KEY: []})

    async def search(self, query: str) -> List[MetadataRecord]:
        records = await self.list_all()
        needle = (query or "").strip().lower()
        if not needle:
            return records
        return [
            r for r in records
            if needle in (r.title or "").lower() or needle in (r.author_name or "").lower()
        ]

    async def dump_json(self) -> str:
        return json.dumps([r.to_dict() for r in await self.list_all()], ensure_ascii=False, indent=2)
