"""Tests for ExportRouter, ExportSettings and FileSink."""

import json
from pathlib import Path

import pytest

from conftest import MemoryStorage, RecordingSink, make_record
from export_router import (
    ExportError,
    ExportMode,
    ExportRequest,
    ExportRouter,
    ExportSettings,
    FileSink,
    compact_line,
    per_item_path,
    safe_filename,
)

DAILY = ExportSettings(auto_export=True, export_mode=ExportMode.DAILY_AGGREGATE)
PER_ITEM = ExportSettings(auto_export=True, export_mode=ExportMode.PER_ITEM)


class TestExportSettings:
    """Tests for ExportSettings defaults and persistence."""

    def test_defaults(self) -> None:
        settings = ExportSettings()
        assert settings.auto_export is False
        assert settings.export_mode == ExportMode.DAILY_AGGREGATE

    @pytest.mark.asyncio
    async def test_load_defaults_from_empty_storage(self, storage: MemoryStorage) -> None:
        assert await ExportSettings.load(storage) == ExportSettings()

    @pytest.mark.asyncio
    async def test_save_and_load(self, storage: MemoryStorage) -> None:
        await PER_ITEM.save(storage)
        assert storage.data == {"autoExport": True, "exportMode": "perItem"}
        assert await ExportSettings.load(storage) == PER_ITEM

    @pytest.mark.asyncio
    async def test_unknown_mode_falls_back(self) -> None:
        storage = MemoryStorage({"autoExport": True, "exportMode": "weekly"})
        settings = await ExportSettings.load(storage)
        assert settings.export_mode == ExportMode.DAILY_AGGREGATE


class TestExportRouter:
    """Tests for ExportRouter.export."""

    @pytest.mark.asyncio
    async def test_disabled_is_noop(self, storage: MemoryStorage, sink: RecordingSink) -> None:
        router = ExportRouter(storage, sink)
        assert await router.export(make_record(), ExportSettings(auto_export=False, export_mode=ExportMode.PER_ITEM)) is None
        assert sink.requests == []
        assert storage.data == {}

    @pytest.mark.asyncio
    async def test_per_item_writes_one_complete_file(self, storage: MemoryStorage, sink: RecordingSink) -> None:
        router = ExportRouter(storage, sink)
        record = make_record("abc123", captured_at="2026-10-17T23:59:59.000Z")

        request = await router.export(record, PER_ITEM)

        assert sink.requests == [request]
        assert request.destination_path == "YouTubeMetaLogs/json/2026-10-17/abc123.json"
        assert request.mime_type == "application/json"
        assert json.loads(request.contents) == record.to_dict()
        assert "\n  " in request.contents

    @pytest.mark.asyncio
    async def test_per_item_path_independent_of_history(self, storage: MemoryStorage, sink: RecordingSink) -> None:
        """Test that each per-item write depends only on date and id."""
        router = ExportRouter(storage, sink)
        await router.export(make_record("first1"), PER_ITEM)
        await router.export(make_record("second"), PER_ITEM)
        await router.export(make_record("first1", location_ref="https://www.youtube.com/watch?v=first1&t=1"), PER_ITEM)

        paths = [r.destination_path for r in sink.requests]
        assert paths[0] == paths[2]
        assert paths[1] == "YouTubeMetaLogs/json/2026-10-17/second.json"
        assert storage.data == {}

    @pytest.mark.asyncio
    async def test_daily_aggregate_is_cumulative(self, storage: MemoryStorage, sink: RecordingSink) -> None:
        """Test that every daily write carries the whole day so far."""
        router = ExportRouter(storage, sink)
        records = [make_record(f"item{i:02d}", captured_at=f"2026-10-17T0{i}:00:00.000Z") for i in range(3)]

        for record in records:
            await router.export(record, DAILY)

        assert len(sink.requests) == 3
        lines = [compact_line(r) for r in records]
        for index, request in enumerate(sink.requests):
            assert request.destination_path == "YouTubeMetaLogs/ndjson/2026-10-17.ndjson"
            assert request.mime_type == "application/x-ndjson"
            assert request.contents == "".join(lines[: index + 1])
        assert storage.data["ndjson_cache_2026-10-17"] == "".join(lines)

    @pytest.mark.asyncio
    async def test_daily_aggregate_separate_days(self, storage: MemoryStorage, sink: RecordingSink) -> None:
        router = ExportRouter(storage, sink)
        await router.export(make_record("dayone", captured_at="2026-10-17T10:00:00.000Z"), DAILY)
        await router.export(make_record("daytwo", captured_at="2026-10-18T10:00:00.000Z"), DAILY)

        assert sink.requests[1].destination_path == "YouTubeMetaLogs/ndjson/2026-10-18.ndjson"
        assert sink.requests[1].contents.count("\n") == 1

    def test_compact_line(self) -> None:
        line = compact_line(make_record("abcdef"))
        assert line.endswith("\n")
        assert line.count("\n") == 1
        assert ", " not in line and '": ' not in line
        assert json.loads(line)["item_id"] == "abcdef"

    @pytest.mark.asyncio
    async def test_sink_refusal_raises(self, storage: MemoryStorage) -> None:
        router = ExportRouter(storage, RecordingSink(result=False))
        with pytest.raises(ExportError, match="Sink refused write"):
            await router.export(make_record(), PER_ITEM)

    def test_unsafe_item_id_sanitized(self) -> None:
        assert safe_filename("../etc/passwd") == "___etc_passwd"
        assert per_item_path(make_record("a/b c")).endswith("/a_b_c.json")


class TestFileSink:
    """Tests for FileSink."""

    @pytest.mark.asyncio
    async def test_write_and_overwrite(self, tmp_path: Path) -> None:
        sink = FileSink(tmp_path)
        path = "YouTubeMetaLogs/ndjson/2026-10-17.ndjson"

        assert await sink.write(ExportRequest(path, "application/x-ndjson", "one\n")) is True
        assert await sink.write(ExportRequest(path, "application/x-ndjson", "one\ntwo\n")) is True

        assert (tmp_path / path).read_text(encoding="utf-8") == "one\ntwo\n"

    @pytest.mark.asyncio
    async def test_escaping_path_rejected(self, tmp_path: Path) -> None:
        sink = FileSink(tmp_path / "downloads")
        with pytest.raises(ExportError, match="escapes export root"):
            await sink.write(ExportRequest("../outside.json", "application/json", "{}"))
        assert not (tmp_path / "outside.json").exists()

    @pytest.mark.asyncio
    async def test_router_with_file_sink(self, tmp_path: Path, storage: MemoryStorage) -> None:
        router = ExportRouter(storage, FileSink(tmp_path))
        await router.export(make_record("abcdef"), DAILY)
        await router.export(make_record("ghijkl"), DAILY)

        written = (tmp_path / "YouTubeMetaLogs" / "ndjson" / "2026-10-17.ndjson").read_text(encoding="utf-8")
        assert [json.loads(line)["item_id"] for line in written.splitlines()] == ["abcdef", "ghijkl"]
