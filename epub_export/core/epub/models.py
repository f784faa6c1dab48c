"""
Data model for the EPUB export pipeline.

Every record here is created fresh for one export run. Stage outputs carry
their own warnings so that nothing is accumulated in a shared buffer.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


# === Enumerations ===

class ChapterOrder(str, Enum):
    """Reading-order strategy applied by the collector."""
    NUMBER = "number"
    NAVIGATION = "navigation"


class ExportPhase(str, Enum):
    """States of the export state machine."""
    COLLECTING = "collecting"
    RESOLVING = "resolving"
    BUILDING = "building"
    PACKAGING = "packaging"
    COMPLETE = "complete"
    ERROR = "error"


class WarningKind:
    """Warning kinds produced by the pipeline stages."""
    # Collection
    MISSING_TRANSLATION = "missing-translation"
    MISSING_CONTENT = "missing-content"
    ORDERING_GAP = "ordering-gap"
    DUPLICATE_MARKER = "duplicate-marker"
    # Assets
    CACHE_MISS = "cache-miss"
    INVALID_DATA = "invalid-data"
    CONVERSION_FAILED = "conversion-failed"
    # Packaging
    XML_PARSE_ERROR = "xml-parse-error"


@dataclass
class ExportWarning:
    """Non-fatal data-quality finding.

    Attributes:
        kind: One of the WarningKind values
        chapter_id: Chapter the warning refers to ("" for book-level warnings)
        message: Human-readable description
        marker: Placement marker involved, if any
        asset_id: Asset id involved, if any
    """
    kind: str
    chapter_id: str
    message: str
    marker: Optional[str] = None
    asset_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


# === Collector input / output ===

@dataclass(frozen=True)
class StoreSnapshot:
    """Read-only view of the chapter store.

    Attributes:
        chapters: Chapter id -> raw chapter mapping, in whatever shape the
            producer wrote it
        novel_title: Optional book-level title
    """
    chapters: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    novel_title: Optional[str] = None


@dataclass(frozen=True)
class CacheKey:
    """Key of a binary asset in the cache store."""
    chapter_id: str
    marker: str
    version: int = 1


@dataclass
class Footnote:
    marker: str
    text: str


@dataclass
class IllustrationRef:
    """Canonical illustration reference.

    Attributes:
        marker: Normalized placement marker (no brackets)
        prompt: Image prompt, also used as alt text and caption
        cache_key: Key into the binary cache, consulted first
        inline_data: Inline data URL used when the cache has nothing
    """
    marker: str
    prompt: str = ""
    cache_key: Optional[CacheKey] = None
    inline_data: Optional[str] = None


@dataclass
class TranslationInfo:
    """Usage metadata of the translation that produced a chapter."""
    provider: str = "Unknown"
    model: str = "Unknown"
    cost_usd: float = 0.0
    total_tokens: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    request_time_sec: float = 0.0


@dataclass
class CollectedChapter:
    """Canonical chapter record produced by the collector."""
    id: str
    number: Optional[int]
    original_title: str
    original_content: str
    translated_title: str
    translated_content: str
    footnotes: List[Footnote] = field(default_factory=list)
    illustrations: List[IllustrationRef] = field(default_factory=list)
    url: Optional[str] = None
    prev_url: Optional[str] = None
    next_url: Optional[str] = None
    translation: Optional[TranslationInfo] = None

    @property
    def title(self) -> str:
        """Display title: translated, then original, then a numbered fallback."""
        if self.translated_title:
            return self.translated_title
        if self.original_title:
            return self.original_title
        return f"Chapter {self.number}" if self.number is not None else "Untitled Chapter"


@dataclass
class CollectionMetadata:
    novel_title: str
    total_chapters: int
    translated_chapters: int
    export_date: str


@dataclass
class CollectedData:
    metadata: CollectionMetadata
    chapters: List[CollectedChapter] = field(default_factory=list)
    warnings: List[ExportWarning] = field(default_factory=list)


# === Asset resolution ===

@dataclass
class CachedBlob:
    """Payload returned by a BlobCache lookup."""
    data: bytes
    mime_type: Optional[str] = None


@dataclass(frozen=True)
class AssetSource:
    chapter_id: str
    marker: str
    kind: str = "image"


@dataclass
class ResolvedAsset:
    """Binary payload ready to be embedded in the container."""
    id: str
    mime_type: str
    data: bytes
    extension: str
    source: AssetSource

    @property
    def filename(self) -> str:
        return f"{self.id}.{self.extension}"

    @property
    def href(self) -> str:
        """Path relative to the package document."""
        return f"images/{self.filename}"


@dataclass
class ResolvedImageRef:
    """Outcome of one placement marker: resolved (asset_id) or missing."""
    marker: str
    prompt: str = ""
    asset_id: Optional[str] = None
    missing: bool = False


@dataclass
class ResolvedChapter:
    chapter: CollectedChapter
    images: List[ResolvedImageRef] = field(default_factory=list)

    def image_for(self, marker: str) -> Optional[ResolvedImageRef]:
        for image in self.images:
            if image.marker == marker:
                return image
        return None


@dataclass
class ResolvedAssets:
    metadata: CollectionMetadata
    chapters: List[ResolvedChapter] = field(default_factory=list)
    assets: List[ResolvedAsset] = field(default_factory=list)
    warnings: List[ExportWarning] = field(default_factory=list)

    @property
    def assets_by_id(self) -> Dict[str, ResolvedAsset]:
        return {asset.id: asset for asset in self.assets}

    @property
    def missing_count(self) -> int:
        return sum(1 for ch in self.chapters for img in ch.images if img.missing)


# === Content building ===

@dataclass
class ManifestItem:
    id: str
    href: str
    media_type: str
    properties: Optional[str] = None


@dataclass
class SpineItem:
    idref: str
    linear: bool = True


@dataclass
class NavItem:
    title: str
    href: str


@dataclass
class GeneratedDocument:
    """One XHTML document of the book.

    Attributes:
        id: Manifest id
        href: Path relative to the package document (e.g. text/chapter-001.xhtml)
        title: Document title
        content: Serialized XHTML
        chapter_id: Source chapter id, None for front and back matter
    """
    id: str
    href: str
    title: str
    content: str
    chapter_id: Optional[str] = None


@dataclass
class PackageMetadata:
    title: str
    language: str
    identifier: str
    modified: str
    creator: Optional[str] = None
    description: Optional[str] = None
    publisher: Optional[str] = None


@dataclass
class BuiltContent:
    metadata: PackageMetadata
    chapters: List[GeneratedDocument] = field(default_factory=list)
    title_page: Optional[GeneratedDocument] = None
    stats_page: Optional[GeneratedDocument] = None
    stylesheet: str = ""
    manifest: List[ManifestItem] = field(default_factory=list)
    spine: List[SpineItem] = field(default_factory=list)
    nav: List[NavItem] = field(default_factory=list)
    warnings: List[ExportWarning] = field(default_factory=list)

    @property
    def documents(self) -> List[GeneratedDocument]:
        """Every XHTML document in container order."""
        docs = []
        if self.title_page:
            docs.append(self.title_page)
        docs.extend(self.chapters)
        if self.stats_page:
            docs.append(self.stats_page)
        return docs


# === Packaging ===

@dataclass
class ValidationReport:
    valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class DocumentParseError:
    document: str
    message: str


@dataclass
class PackagedResult:
    data: bytes
    validation: ValidationReport
    parse_errors: List[DocumentParseError] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.data)


# === Orchestration ===

@dataclass
class NovelConfig:
    """Book-level metadata shown on the title page."""
    title: Optional[str] = None
    author: Optional[str] = None
    original_title: Optional[str] = None
    description: Optional[str] = None
    genre: Optional[str] = None
    original_language: Optional[str] = None
    language: Optional[str] = None
    series_name: Optional[str] = None
    volume_number: Optional[int] = None
    publisher: Optional[str] = None
    translation_notes: Optional[str] = None


@dataclass
class ActivityTiming:
    count: int = 0
    total_ms: float = 0.0
    average_ms: float = 0.0


@dataclass
class TelemetryInsights:
    """Session telemetry summary rendered on the statistics page."""
    total_events: int = 0
    session_duration_ms: float = 0.0
    navigation: Optional[ActivityTiming] = None
    hydration: Optional[ActivityTiming] = None
    chapter_ready: Optional[ActivityTiming] = None
    json_exports: Optional[ActivityTiming] = None
    epub_exports: Optional[ActivityTiming] = None


@dataclass
class ExportOptions:
    """Options of a single export run.

    Attributes:
        order: Chapter ordering strategy
        include_title_page: Generate the title page
        include_stats_page: Generate the statistics / acknowledgments page
        title: Overrides the collected novel title
        author: dc:creator and title page author
        language: dc:language (defaults to EPUB_DEFAULT_LANGUAGE)
        gratitude_message: Acknowledgment text override
        project_description: "About this translation" text override
        footer: Custom footer on the statistics page
        github_url: Source link on the statistics page
        additional_acknowledgments: Extra acknowledgment paragraph
        novel_config: Title-page metadata
        telemetry: Session telemetry for the statistics page
        settings: Settings snapshot, display only
    """
    order: ChapterOrder = ChapterOrder.NUMBER
    include_title_page: bool = True
    include_stats_page: bool = True
    title: Optional[str] = None
    author: Optional[str] = None
    language: Optional[str] = None
    gratitude_message: Optional[str] = None
    project_description: Optional[str] = None
    footer: Optional[str] = None
    github_url: Optional[str] = None
    additional_acknowledgments: Optional[str] = None
    novel_config: Optional[NovelConfig] = None
    telemetry: Optional[TelemetryInsights] = None
    settings: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Validate options."""
        try:
            self.order = ChapterOrder(self.order)
        except ValueError:
            raise ValueError(f"order must be one of {[o.value for o in ChapterOrder]}, got {self.order!r}")


@dataclass
class ExportProgress:
    phase: str
    percent: float
    message: str
    detail: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ExportStats:
    total_chapters: int = 0
    assets_resolved: int = 0
    assets_missing: int = 0
    warnings: int = 0
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ExportResult:
    """Final outcome of an export run. Always returned, never raised."""
    success: bool
    data: Optional[bytes] = None
    error: Optional[str] = None
    stats: ExportStats = field(default_factory=ExportStats)
    warnings: List[ExportWarning] = field(default_factory=list)
    validation: Optional[ValidationReport] = None
