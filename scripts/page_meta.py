"""
YouTube Meta Logger - page metadata
Resolves item identity from a location and extracts a best-effort
metadata record from a snapshot of the rendered document.
"""

import math
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlparse


PRIMARY_ID_PARAM = "v"
ALTERNATE_PATH_RE = re.compile(r"^/shorts/([A-Za-z0-9_-]{6,})(?:/|$)")

PRIMARY_HEADING_SELECTORS = [
    "h1.title yt-formatted-string",
    "#title h1",
    "h1.ytd-watch-metadata",
]

SHORT_HEADING_SELECTORS = [
    "ytd-reel-video-renderer[is-active] h2",
    "yt-shorts-video-title-view-model h2",
]

AUTHOR_SELECTORS = [
    "#channel-name a",
    "ytd-channel-name a",
    "ytd-channel-name yt-formatted-string a",
    "ytd-reel-player-header-renderer #channel-name a",
]

TITLE_META = 'meta[property="og:title"]'
AUTHOR_META = 'span[itemprop="author"] link[itemprop="name"]'
DURATION_METAS = [
    'meta[itemprop="duration"]',
    'meta[property="og:video:duration"]',
]
TAG_META = 'meta[property="og:video:tag"]'

TEXT_SELECTORS = list(dict.fromkeys(PRIMARY_HEADING_SELECTORS + SHORT_HEADING_SELECTORS + AUTHOR_SELECTORS))
META_SELECTORS = [TITLE_META, AUTHOR_META] + DURATION_METAS + [TAG_META]

SITE_NAME_SUFFIX = " - YouTube"

ISO_DURATION_RE = re.compile(
    r"^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$",
    re.IGNORECASE,
)
LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


class ItemKind(str, Enum):
    PRIMARY = "primary"
    ALTERNATE = "alternate"
    UNKNOWN = "unknown"


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def normalize_text(text: Optional[str]) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def resolve_identity(location: str) -> Tuple[Optional[str], ItemKind]:
    parsed = urlparse(location or "")
    values = parse_qs(parsed.query).get(PRIMARY_ID_PARAM)
    if values and values[0]:
        return values[0], ItemKind.PRIMARY

    match = ALTERNATE_PATH_RE.match(parsed.path)
    if match:
        return match.group(1), ItemKind.ALTERNATE

    return None, ItemKind.UNKNOWN


@dataclass
class MetadataRecord:
    item_id: Optional[str]
    kind: ItemKind
    location_ref: str
    title: str
    author_name: Optional[str]
    duration_seconds: Optional[int]
    tags: List[str]
    captured_at: str

    @property
    def key(self) -> Tuple[Optional[str], str]:
        return (self.item_id, self.location_ref)

    @property
    def capture_date(self) -> str:
        return self.captured_at[:10]

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MetadataRecord":
        try:
            kind = ItemKind(data.get("kind") or ItemKind.UNKNOWN.value)
        except ValueError:
            kind = ItemKind.UNKNOWN
        duration = data.get("duration_seconds")
        return cls(
            item_id=data.get("item_id"),
            kind=kind,
            location_ref=data.get("location_ref") or "",
            title=data.get("title") or "",
            author_name=data.get("author_name"),
            duration_seconds=duration if isinstance(duration, int) and not isinstance(duration, bool) else None,
            tags=[t for t in data.get("tags") or [] if isinstance(t, str)],
            captured_at=data.get("captured_at") or "",
        )


@dataclass
class DocumentSnapshot:
    location: str
    document_title: str = ""
    texts: Dict[str, Optional[str]] = field(default_factory=dict)
    metas: Dict[str, List[str]] = field(default_factory=dict)
    media_duration: Optional[float] = None

    def text(self, selector: str) -> Optional[str]:
        value = normalize_text(self.texts.get(selector))
        return value or None

    def meta_values(self, selector: str) -> List[str]:
        return [v for v in self.metas.get(selector) or [] if v]

    def first_meta(self, selector: str) -> Optional[str]:
        values = self.meta_values(selector)
        if not values:
            return None
        return normalize_text(values[0]) or None

    @classmethod
    def from_page_data(cls, data: Dict[str, Any], fallback_location: str = "") -> "DocumentSnapshot":
        duration = data.get("mediaDuration")
        return cls(
            location=data.get("location") or fallback_location,
            document_title=data.get("documentTitle") or "",
            texts=dict(data.get("texts") or {}),
            metas={k: list(v or []) for k, v in (data.get("metas") or {}).items()},
            media_duration=float(duration) if isinstance(duration, (int, float)) else None,
        )


Extractor = Callable[[DocumentSnapshot], Any]


def first_of(extractors: List[Extractor], snapshot: DocumentSnapshot) -> Any:
    for extract in extractors:
        value = extract(snapshot)
        if value is not None:
            return value
    return None


def text_at(selector: str) -> Extractor:
    return lambda snapshot: snapshot.text(selector)


def meta_at(selector: str) -> Extractor:
    return lambda snapshot: snapshot.first_meta(selector)


def stripped_document_title(snapshot: DocumentSnapshot) -> Optional[str]:
    title = normalize_text(snapshot.document_title)
    if title.endswith(SITE_NAME_SUFFIX):
        title = title[: -len(SITE_NAME_SUFFIX)]
    return title.strip() or None


def media_duration(snapshot: DocumentSnapshot) -> Optional[int]:
    value = snapshot.media_duration
    if value is None or not math.isfinite(value) or value <= 0:
        return None
    # halves round up, not to even
    return int(math.floor(value + 0.5))


def parse_duration(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    text = value.strip()
    # ISO-8601 (itemprop="duration") accepted on top of plain integers, which alone would read it as None
    match = ISO_DURATION_RE.match(text)
    if match and any(match.groupdict().values()):
        parts = {k: float(v) if v else 0.0 for k, v in match.groupdict().items()}
        total = parts["days"] * 86400 + parts["hours"] * 3600 + parts["minutes"] * 60 + parts["seconds"]
        return int(math.floor(total + 0.5))
    match = LEADING_INT_RE.match(text)
    if not match:
        return None
    parsed = int(match.group(1))
    return parsed if parsed >= 0 else None


def duration_meta(selector: str) -> Extractor:
    return lambda snapshot: parse_duration(snapshot.first_meta(selector))


TITLE_EXTRACTORS: List[Extractor] = (
    [text_at(s) for s in PRIMARY_HEADING_SELECTORS]
    + [text_at(s) for s in SHORT_HEADING_SELECTORS]
    + [meta_at(TITLE_META), stripped_document_title]
)

AUTHOR_EXTRACTORS: List[Extractor] = [text_at(s) for s in AUTHOR_SELECTORS] + [meta_at(AUTHOR_META)]

DURATION_EXTRACTORS: List[Extractor] = [media_duration] + [duration_meta(s) for s in DURATION_METAS]


def extract_tags(snapshot: DocumentSnapshot) -> List[str]:
    return [t for t in (normalize_text(v) for v in snapshot.meta_values(TAG_META)) if t]


def extract_record(snapshot: DocumentSnapshot, now: Callable[[], str] = now_iso) -> MetadataRecord:
    item_id, kind = resolve_identity(snapshot.location)
    return MetadataRecord(
        item_id=item_id,
        kind=kind,
        location_ref=snapshot.location,
        title=first_of(TITLE_EXTRACTORS, snapshot) or "",
        author_name=first_of(AUTHOR_EXTRACTORS, snapshot),
        duration_seconds=first_of(DURATION_EXTRACTORS, snapshot),
        tags=extract_tags(snapshot),
        captured_at=now(),
    )
