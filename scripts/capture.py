#!/usr/bin/env python3
"""
YouTube Meta Logger - Capture Script
Watches YouTube's client-side navigation in a Playwright browser and logs
metadata for every video or short that is shown.
"""

import argparse
import asyncio
import sys
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Set

try:
    from playwright.async_api import async_playwright, BrowserContext, Page
    from playwright.async_api import Error as PlaywrightError
except ImportError:
    print("ERROR: playwright not installed. Run: pip install playwright && playwright install chromium")
    raise SystemExit(1)

from export_router import ExportMode, ExportRouter, ExportSettings, FileSink
from page_meta import (
    META_SELECTORS,
    TEXT_SELECTORS,
    DocumentSnapshot,
    MetadataRecord,
    extract_record,
    resolve_identity,
)
from record_store import JsonFileStorage, RecordStore, ensure_dir


NAVIGATION_SETTLE_MS = 300
RENDER_SETTLE_MS = 500

DEFAULT_START_URL = "https://www.youtube.com/"
DEFAULT_DATA_DIR = "./yt-meta-data"
BINDING_NAME = "ytmetaRequestCapture"


class TriggerSource(str, Enum):
    NAVIGATE_FINISH = "navigate_finish"
    PAGE_DATA_UPDATED = "page_data_updated"
    TITLE_MUTATION = "title_mutation"
    CONTENT_MUTATION = "content_mutation"
    INITIAL_LOAD = "initial_load"


OBSERVER_SCRIPT = """
(() => {
    if (window.top !== window || window.__ytmetaObserversInstalled) return;
    window.__ytmetaObserversInstalled = true;
    const request = (source) => {
        try { window.%(binding)s(source); } catch (e) {}
    };
    window.addEventListener('yt-navigate-finish', () => request('navigate_finish'));
    window.addEventListener('yt-page-data-updated', () => request('page_data_updated'));
    const observe = () => {
        const titleEl = document.querySelector('title');
        if (titleEl) {
            new MutationObserver(() => request('title_mutation')).observe(titleEl, { childList: true });
        }
        const content = document.querySelector('ytd-page-manager') || document.querySelector('#content') || document.body;
        if (content) {
            new MutationObserver(() => request('content_mutation')).observe(content, { childList: true });
        }
    };
    if (document.readyState === 'loading') {
        document.addEventListener('DOMContentLoaded', observe, { once: true });
    } else {
        observe();
    }
})();
""" % {"binding": BINDING_NAME}

SNAPSHOT_SCRIPT = """
({ textSelectors, metaSelectors }) => {
    const texts = {};
    textSelectors.forEach(sel => {
        const el = document.querySelector(sel);
        texts[sel] = el ? (el.textContent || '').trim() : null;
    });
    const metas = {};
    metaSelectors.forEach(sel => {
        metas[sel] = Array.from(document.querySelectorAll(sel)).map(m => m.getAttribute('content') || '');
    });
    const video = document.querySelector('video');
    const duration = video ? video.duration : null;
    return {
        location: location.href,
        documentTitle: document.title || '',
        texts,
        metas,
        mediaDuration: (typeof duration === 'number' && Number.isFinite(duration)) ? duration : null,
    };
}
"""


async def sleep_ms(ms: int) -> None:
    await asyncio.sleep(ms / 1000)


class PageDocument:
    def __init__(self, page: Page):
        self.page = page

    async def location(self) -> str:
        return self.page.url

    async def snapshot(self) -> Optional[DocumentSnapshot]:
        try:
            data = await self.page.evaluate(
                SNAPSHOT_SCRIPT,
                {"textSelectors": TEXT_SELECTORS, "metaSelectors": META_SELECTORS},
            )
        except PlaywrightError:
            # page closed or navigating; nothing usable was read
            return None
        return DocumentSnapshot.from_page_data(data or {}, fallback_location=self.page.url)


class NavigationDetector:
    """Turns navigation triggers into captures.

    ``last_seen_id`` is only an early exit. Overlapping triggers for one
    navigation can all pass it before any of them updates it; the record
    store's key check decides what gets saved.
    """

    def __init__(
        self,
        document,
        store: RecordStore,
        router: ExportRouter,
        settings: ExportSettings,
        sleep: Callable[[int], Awaitable[None]] = sleep_ms,
        load_settings: Optional[Callable[[], Awaitable[ExportSettings]]] = None,
        on_saved: Optional[Callable[[MetadataRecord, object], None]] = None,
        on_error: Optional[Callable[[TriggerSource, BaseException], None]] = None,
    ):
        self.document = document
        self.store = store
        self.router = router
        self.settings = settings
        self.sleep = sleep
        self.load_settings = load_settings
        self.on_saved = on_saved
        self.on_error = on_error
        self.last_seen_id: Optional[str] = None
        self.pending: Set[asyncio.Task] = set()

    def request_capture(self, source: TriggerSource) -> asyncio.Task:
        task = asyncio.ensure_future(self.capture())
        self.pending.add(task)
        task.add_done_callback(lambda t: self._finish(source, t))
        return task

    def _finish(self, source: TriggerSource, task: asyncio.Task) -> None:
        self.pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None and self.on_error:
            self.on_error(source, exc)

    async def capture(self) -> Optional[MetadataRecord]:
        await self.sleep(NAVIGATION_SETTLE_MS)
        item_id, _ = resolve_identity(await self.document.location())
        if not item_id or item_id == self.last_seen_id:
            return None

        await self.sleep(RENDER_SETTLE_MS)
        snapshot = await self.document.snapshot()
        if snapshot is None:
            return None
        record = extract_record(snapshot)
        if not record.item_id:
            return None

        self.last_seen_id = record.item_id
        inserted = await self.store.upsert_if_absent(record)
        if not inserted:
            return None

        if self.load_settings is not None:
            self.settings = await self.load_settings()
        request = await self.router.export(record, self.settings)
        if self.on_saved:
            self.on_saved(record, request)
        return record

    async def drain(self) -> None:
        while self.pending:
            await asyncio.gather(*list(self.pending), return_exceptions=True)


class CaptureSession:
    def __init__(
        self,
        data_dir: str,
        downloads_dir: str,
        start_url: str = DEFAULT_START_URL,
        headless: bool = False,
        auto_export: Optional[bool] = None,
        export_mode: Optional[ExportMode] = None,
        quiet: bool = False,
    ):
        self.data_dir = Path(data_dir)
        self.profile_dir = self.data_dir / "browser-profile"
        self.start_url = start_url
        self.headless = headless
        self.auto_export = auto_export
        self.export_mode = export_mode
        self.quiet = quiet

        for path in [self.data_dir, self.profile_dir]:
            ensure_dir(path)

        self.storage = JsonFileStorage(self.data_dir / "storage.json")
        self.store = RecordStore(self.storage)
        self.sink = FileSink(Path(downloads_dir))
        self.router = ExportRouter(self.storage, self.sink)
        self.saved_count = 0

    async def load_settings(self) -> ExportSettings:
        settings = await ExportSettings.load(self.storage)
        if self.auto_export is not None:
            settings.auto_export = self.auto_export
        if self.export_mode is not None:
            settings.export_mode = self.export_mode
        return settings

    def report_saved(self, record: MetadataRecord, request) -> None:
        self.saved_count += 1
        if self.quiet:
            return
        print(f"💾 Saved [{record.kind.value}] {record.item_id}: {record.title}")
        if request is not None:
            print(f"   📄 Exported {request.destination_path}")

    def report_error(self, source: Optional[TriggerSource], exc: BaseException) -> None:
        label = source.value if source else "unknown"
        print(f"⚠️  Capture failed ({label}): {exc}", file=sys.stderr)

    async def install(self, context: BrowserContext, page: Page, detector: NavigationDetector) -> None:
        async def on_trigger(source, name: str = "") -> None:
            if source.get("page") is not page:
                return
            try:
                trigger = TriggerSource(name)
            except ValueError:
                return
            detector.request_capture(trigger)

        await context.expose_binding(BINDING_NAME, on_trigger)
        await context.add_init_script(OBSERVER_SCRIPT)

    async def run(self) -> None:
        settings = await self.load_settings()
        print("🚀 YouTube Meta Logger")
        print(f"Storage: {self.storage.path}")
        mode = settings.export_mode.value if settings.auto_export else "off"
        print(f"Auto export: {mode} -> {self.sink.root}")

        async with async_playwright() as p:
            context = await p.chromium.launch_persistent_context(
                user_data_dir=str(self.profile_dir),
                headless=self.headless,
                viewport={"width": 1280, "height": 900},
            )
            closed = asyncio.Event()
            context.on("close", lambda _: closed.set())

            page = context.pages[0] if context.pages else await context.new_page()
            page.on("close", lambda _: closed.set())
            detector = NavigationDetector(
                PageDocument(page),
                self.store,
                self.router,
                settings,
                load_settings=self.load_settings,
                on_saved=self.report_saved,
                on_error=self.report_error,
            )

            await self.install(context, page, detector)
            await page.goto(self.start_url, wait_until="domcontentloaded", timeout=60000)
            detector.request_capture(TriggerSource.INITIAL_LOAD)

            print("Watching navigation. Close the browser window to stop.")
            await closed.wait()
            await detector.drain()
            try:
                await context.close()
            except PlaywrightError:
                pass

        print(f"\n✅ Session complete: {self.saved_count} new record(s)")


def format_record(record: MetadataRecord) -> str:
    duration = "" if record.duration_seconds is None else f" {record.duration_seconds}s"
    author = f" - {record.author_name}" if record.author_name else ""
    return f"{record.captured_at}  {record.item_id}  {record.title}{author}{duration}"


def parse_on_off(raw: str) -> bool:
    value = raw.strip().lower()
    if value in {"on", "true", "yes", "1"}:
        return True
    if value in {"off", "false", "no", "0"}:
        return False
    raise argparse.ArgumentTypeError(f"expected on/off, got {raw!r}")


def open_store(data_dir: str) -> RecordStore:
    return RecordStore(JsonFileStorage(Path(data_dir) / "storage.json"))


async def cmd_watch(args: argparse.Namespace) -> int:
    session = CaptureSession(
        data_dir=args.data_dir,
        downloads_dir=args.downloads_dir,
        start_url=args.start_url,
        headless=args.headless,
        auto_export=args.auto_export,
        export_mode=ExportMode(args.export_mode) if args.export_mode else None,
        quiet=args.quiet,
    )
    await session.run()
    return 0


async def cmd_list(args: argparse.Namespace) -> int:
    records = await open_store(args.data_dir).search(args.search or "")
    if args.limit:
        records = records[: args.limit]
    for record in records:
        print(format_record(record))
    print(f"{len(records)} record{'' if len(records) == 1 else 's'}")
    return 0


async def cmd_dump(args: argparse.Namespace) -> int:
    contents = await open_store(args.data_dir).dump_json()
    if args.output == "-":
        print(contents)
        return 0
    path = Path(args.output)
    ensure_dir(path.parent)
    path.write_text(contents, encoding="utf-8")
    print(f"✅ Wrote {path}")
    return 0


async def cmd_clear(args: argparse.Namespace) -> int:
    if not args.yes:
        print("Refusing to delete all saved records without --yes", file=sys.stderr)
        return 1
    await open_store(args.data_dir).clear()
    print("✅ Cleared all saved records")
    return 0


async def cmd_config(args: argparse.Namespace) -> int:
    storage = JsonFileStorage(Path(args.data_dir) / "storage.json")
    settings = await ExportSettings.load(storage)
    changed = False
    if args.auto_export is not None:
        settings.auto_export = args.auto_export
        changed = True
    if args.export_mode:
        settings.export_mode = ExportMode(args.export_mode)
        changed = True
    if changed:
        await settings.save(storage)
    print(f"autoExport: {'on' if settings.auto_export else 'off'}")
    print(f"exportMode: {settings.export_mode.value}")
    return 0


COMMANDS = {
    "watch": cmd_watch,
    "list": cmd_list,
    "dump": cmd_dump,
    "clear": cmd_clear,
    "config": cmd_config,
}


async def main_async(args: argparse.Namespace) -> int:
    return await COMMANDS[args.command](args)


def build_parser() -> argparse.ArgumentParser:
    modes = [m.value for m in ExportMode]
    parser = argparse.ArgumentParser(description="Log metadata of YouTube videos you watch")
    parser.add_argument("--data-dir", default=DEFAULT_DATA_DIR, help="Directory for storage and browser profile")
    sub = parser.add_subparsers(dest="command", required=True)

    watch = sub.add_parser("watch", help="Open a browser and capture while you browse")
    watch.add_argument("--downloads-dir", default=str(Path.home() / "Downloads"), help="Root directory for exported files")
    watch.add_argument("--start-url", default=DEFAULT_START_URL, help="Page opened at start")
    watch.add_argument("--headless", action="store_true", help="Run the browser without a window")
    watch.add_argument(
        "--auto-export",
        dest="auto_export",
        action="store_true",
        default=None,
        help="Export each new record for this session",
    )
    watch.add_argument("--no-auto-export", dest="auto_export", action="store_false", help="Disable export for this session")
    watch.add_argument("--export-mode", choices=modes, help="Export layout for this session")
    watch.add_argument("--quiet", "-q", action="store_true", help="Do not print each saved record")

    list_cmd = sub.add_parser("list", help="Print saved records, newest first")
    list_cmd.add_argument("--search", "-s", help="Case-insensitive match on title or channel")
    list_cmd.add_argument("--limit", "-n", type=int, default=0, help="Show at most N records")

    dump = sub.add_parser("dump", help="Write all saved records as JSON")
    dump.add_argument("--output", "-o", default="youtube_meta_log.json", help="Output file, '-' for stdout")

    clear = sub.add_parser("clear", help="Delete all saved records")
    clear.add_argument("--yes", action="store_true", help="Confirm deletion")

    config = sub.add_parser(
        "config",
        help="Show or change export settings (a running watch session picks them up on its next capture)",
    )
    config.add_argument("--auto-export", type=parse_on_off, help="on/off")
    config.add_argument("--export-mode", choices=modes, help="Export layout")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    raise SystemExit(asyncio.run(main_async(args)))


if __name__ == "__main__":
    main()
