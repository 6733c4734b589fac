"""
YouTube Meta Logger - export router
Serializes newly captured records either as one JSON file per item or as
a per-day NDJSON file, and hands the write to a sink.
"""

import asyncio
import json
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from page_meta import MetadataRecord
from record_store import ensure_dir


EXPORT_ROOT = "YouTubeMetaLogs"
AUTO_EXPORT_KEY = "autoExport"
EXPORT_MODE_KEY = "exportMode"
DAILY_CACHE_PREFIX = "ndjson_cache_"

JSON_MIME = "application/json"
NDJSON_MIME = "application/x-ndjson"


class ExportError(RuntimeError):
    pass


class ExportMode(str, Enum):
    PER_ITEM = "perItem"
    DAILY_AGGREGATE = "dailyAggregate"


def safe_filename(value: str) -> str:
    return re.sub(r"[^\w\-]", "_", value, flags=re.ASCII)


def parse_export_mode(raw: Any) -> ExportMode:
    try:
        return ExportMode(raw)
    except ValueError:
        return ExportMode.DAILY_AGGREGATE


@dataclass
class ExportSettings:
    auto_export: bool = False
    export_mode: ExportMode = ExportMode.DAILY_AGGREGATE

    @classmethod
    async def load(cls, storage) -> "ExportSettings":
        data = await storage.get({AUTO_EXPORT_KEY: False, EXPORT_MODE_KEY: ExportMode.DAILY_AGGREGATE.value})
        return cls(
            auto_export=bool(data.get(AUTO_EXPORT_KEY)),
            export_mode=parse_export_mode(data.get(EXPORT_MODE_KEY)),
        )

    async def save(self, storage) -> None:
        await storage.set({AUTO_EXPORT_KEY: self.auto_export, EXPORT_MODE_KEY: self.export_mode.value})


@dataclass
class ExportRequest:
    destination_path: str
    mime_type: str
    contents: str


class FileSink:
    """Writes export requests below a root directory, overwriting."""

    def __init__(self, root: Path):
        self.root = Path(root).expanduser()

    def resolve(self, destination_path: str) -> Path:
        root = self.root.resolve()
        target = (root / destination_path).resolve()
        if target != root and root not in target.parents:
            raise ExportError(f"Destination escapes export root: {destination_path}")
        return target

    def _write(self, target: Path, contents: str) -> None:
        ensure_dir(target.parent)
        target.write_text(contents, encoding="utf-8")

    async def write(self, request: ExportRequest) -> bool:
        target = self.resolve(request.destination_path)
        await asyncio.to_thread(self._write, target, request.contents)
        return True


def per_item_path(record: MetadataRecord) -> str:
    return f"{EXPORT_ROOT}/json/{record.capture_date}/{safe_filename(record.item_id or 'unknown')}.json"


def daily_path(date: str) -> str:
    return f"{EXPORT_ROOT}/ndjson/{date}.ndjson"


def compact_line(record: MetadataRecord) -> str:
    return json.dumps(record.to_dict(), ensure_ascii=False, separators=(",", ":")) + "\n"


class ExportRouter:
    def __init__(self, storage, sink):
        self.storage = storage
        self.sink = sink

    async def export(self, record: MetadataRecord, settings: ExportSettings) -> Optional[ExportRequest]:
        if not settings.auto_export:
            return None

        if settings.export_mode == ExportMode.PER_ITEM:
            request = ExportRequest(
                destination_path=per_item_path(record),
                mime_type=JSON_MIME,
                contents=json.dumps(record.to_dict(), ensure_ascii=False, indent=2),
            )
        else:
            request = await self._append_daily(record)

        ok = await self.sink.write(request)
        if not ok:
            raise ExportError(f"Sink refused write to {request.destination_path}")
        return request

    async def _append_daily(self, record: MetadataRecord) -> ExportRequest:
        date = record.capture_date
        cache_key = DAILY_CACHE_PREFIX + date
        data: Dict[str, Any] = await self.storage.get({cache_key: ""})
        contents = (data.get(cache_key) or "") + compact_line(record)
        await self.storage.set({cache_key: contents})
        return ExportRequest(destination_path=daily_path(date), mime_type=NDJSON_MIME, contents=contents)
