"""
Chapter collection: first stage of the export pipeline.

Walks a read-only snapshot of the chapter store and normalizes every chapter
into one canonical CollectedChapter. Producers disagree on field names
(camelCase vs snake_case) and on the shape of illustration data (string data
URL, structured cache key, plain url); all of that is resolved here so later
stages never branch on input shape.
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from epub_export.config import EPUB_DEFAULT_TITLE, normalize_marker
from epub_export.utils.unified_logger import get_logger, LogType

from .models import (
    CacheKey,
    ChapterOrder,
    CollectedChapter,
    CollectedData,
    CollectionMetadata,
    ExportOptions,
    ExportWarning,
    Footnote,
    IllustrationRef,
    StoreSnapshot,
    TranslationInfo,
    WarningKind,
)

_CAMEL_BOUNDARY = re.compile(r'(?<!^)(?=[A-Z])')


def _snake(name: str) -> str:
    return _CAMEL_BOUNDARY.sub('_', name).lower()


def _field(source: Any, *names: str, default=None):
    """First non-None value among names, each tried as camelCase then snake_case."""
    if not isinstance(source, Mapping):
        return default
    for name in names:
        for key in (name, _snake(name)):
            value = source.get(key)
            if value is not None:
                return value
    return default


def _as_int(value) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return None


def _as_float(value, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _chapter_label(number: Optional[int]) -> str:
    return f"Chapter {number}" if number is not None else "Chapter (unnumbered)"


# === Field normalization ===

def _normalize_cache_key(raw, chapter_id: str, marker: str) -> Optional[CacheKey]:
    if raw is None:
        return None
    if isinstance(raw, str):
        # Bare string keys only name the marker slot of this chapter
        return CacheKey(chapter_id=chapter_id, marker=normalize_marker(raw) or marker)
    if isinstance(raw, Mapping):
        version = _as_int(_field(raw, 'version'))
        return CacheKey(
            chapter_id=str(_field(raw, 'chapterId', default=chapter_id)),
            marker=normalize_marker(_field(raw, 'placementMarker', 'marker', default=marker)),
            version=version if version is not None else 1,
        )
    return None


def _normalize_illustration(raw: Mapping, chapter_id: str) -> IllustrationRef:
    marker = normalize_marker(_field(raw, 'placementMarker', 'marker'))
    generated = _field(raw, 'generatedImage')

    # A cache key wins over inline data, but both are kept for the resolver
    cache_key_source = _field(raw, 'imageCacheKey')
    if cache_key_source is None and isinstance(generated, Mapping):
        cache_key_source = _field(generated, 'imageCacheKey')

    if isinstance(generated, str):
        inline = generated
    elif isinstance(generated, Mapping):
        inline = _field(generated, 'imageData', 'url')
    else:
        inline = None
    if inline is None:
        inline = _field(raw, 'url', 'imageData')

    return IllustrationRef(
        marker=marker,
        prompt=str(_field(raw, 'imagePrompt', 'prompt', default='')),
        cache_key=_normalize_cache_key(cache_key_source, chapter_id, marker),
        inline_data=inline or None,
    )


def _normalize_translation_info(result: Mapping) -> TranslationInfo:
    usage = _field(result, 'usageMetrics', default={})
    settings = _field(result, 'translationSettings', default={})

    provider = _field(result, 'provider')
    if not isinstance(provider, str):
        provider = _field(usage, 'provider') or _field(settings, 'provider')
    model = _field(result, 'model') or _field(usage, 'model') or _field(settings, 'model')

    cost = _field(result, 'costUsd')
    if not isinstance(cost, (int, float)):
        cost = _field(usage, 'estimatedCost', default=0.0)

    return TranslationInfo(
        provider=str(provider or 'Unknown'),
        model=str(model or 'Unknown'),
        cost_usd=_as_float(cost),
        total_tokens=_as_int(_field(usage, 'totalTokens')) or 0,
        prompt_tokens=_as_int(_field(usage, 'promptTokens')) or 0,
        completion_tokens=_as_int(_field(usage, 'completionTokens')) or 0,
        request_time_sec=_as_float(_field(usage, 'requestTime', default=0.0)),
    )


def _dedupe(items: list, chapter_id: str, kind: str) -> Tuple[list, List[ExportWarning]]:
    """Keep the first item per marker, drop the rest with a warning."""
    seen = set()
    kept, warnings = [], []
    for item in items:
        if not item.marker:
            warnings.append(ExportWarning(
                kind=WarningKind.INVALID_DATA,
                chapter_id=chapter_id,
                message=f"{kind} without a placement marker ignored",
            ))
            continue
        if item.marker in seen:
            warnings.append(ExportWarning(
                kind=WarningKind.DUPLICATE_MARKER,
                chapter_id=chapter_id,
                message=f"Duplicate {kind} marker [{item.marker}] dropped",
                marker=item.marker,
            ))
            continue
        seen.add(item.marker)
        kept.append(item)
    return kept, warnings


def normalize_chapter(chapter_id: str, raw: Mapping[str, Any]) -> Tuple[Optional[CollectedChapter], List[ExportWarning]]:
    """Normalize one raw chapter.

    Args:
        chapter_id: Key of the chapter in the snapshot
        raw: Raw chapter mapping (never mutated)

    Returns:
        (chapter or None when it cannot be exported, warnings)
    """
    chapter_id = str(_field(raw, 'id', 'stableId', default=chapter_id))
    number = _as_int(_field(raw, 'chapterNumber', 'number'))
    label = _chapter_label(number)

    original_content = _field(raw, 'content', 'originalContent', default='')
    result = _field(raw, 'translationResult')
    translated = _field(result, 'translatedContent', 'translation') if isinstance(result, Mapping) else None

    # Every applicable reason is reported before the chapter is skipped
    skipped: List[ExportWarning] = []
    if not isinstance(original_content, str) or not original_content.strip():
        skipped.append(ExportWarning(
            kind=WarningKind.MISSING_CONTENT,
            chapter_id=chapter_id,
            message=f"{label} has no content",
        ))
    if not isinstance(translated, str) or not translated.strip():
        skipped.append(ExportWarning(
            kind=WarningKind.MISSING_TRANSLATION,
            chapter_id=chapter_id,
            message=f"{label} has no translation",
        ))
    if skipped:
        return None, skipped

    warnings: List[ExportWarning] = []

    illustrations = [
        _normalize_illustration(item, chapter_id)
        for item in _field(result, 'suggestedIllustrations', 'illustrations', default=[]) or []
        if isinstance(item, Mapping)
    ]
    illustrations, dup_warnings = _dedupe(illustrations, chapter_id, 'illustration')
    warnings.extend(dup_warnings)

    footnotes = [
        Footnote(marker=normalize_marker(_field(fn, 'marker')), text=str(_field(fn, 'text', default='')))
        for fn in _field(result, 'footnotes', default=[]) or []
        if isinstance(fn, Mapping)
    ]
    footnotes, dup_warnings = _dedupe(footnotes, chapter_id, 'footnote')
    warnings.extend(dup_warnings)

    chapter = CollectedChapter(
        id=chapter_id,
        number=number,
        original_title=str(_field(raw, 'title', 'originalTitle', default='')),
        original_content=original_content,
        translated_title=str(_field(result, 'translatedTitle', default='')),
        translated_content=translated,
        footnotes=footnotes,
        illustrations=illustrations,
        url=_field(raw, 'url', 'originalUrl', 'canonicalUrl'),
        prev_url=_field(raw, 'prevUrl'),
        next_url=_field(raw, 'nextUrl'),
        translation=_normalize_translation_info(result),
    )
    return chapter, warnings


# === Ordering ===

def _number_key(chapter: CollectedChapter):
    # Chapters without a number go last, keeping snapshot order among themselves
    return (chapter.number is None, chapter.number or 0)


def order_by_number(chapters: List[CollectedChapter]) -> List[CollectedChapter]:
    return sorted(chapters, key=_number_key)


def order_by_navigation(chapters: List[CollectedChapter]) -> List[CollectedChapter]:
    """Follow nextUrl chains from every chain head.

    A head is a chapter whose prevUrl is absent or points outside the set.
    Chapters no chain reaches (cycles, broken links) are appended by number.
    """
    by_url: Dict[str, CollectedChapter] = {c.url: c for c in chapters if c.url}
    heads = order_by_number([c for c in chapters if not c.prev_url or c.prev_url not in by_url])

    ordered: List[CollectedChapter] = []
    visited = set()
    for head in heads:
        current = head
        while current is not None and current.id not in visited:
            visited.add(current.id)
            ordered.append(current)
            current = by_url.get(current.next_url) if current.next_url else None

    ordered.extend(c for c in order_by_number(chapters) if c.id not in visited)
    return ordered


def find_ordering_gaps(chapters: List[CollectedChapter]) -> List[ExportWarning]:
    """Warn when consecutive numbered chapters skip one or more numbers."""
    warnings = []
    numbered = [c for c in chapters if c.number is not None]
    for previous, current in zip(numbered, numbered[1:]):
        gap = current.number - previous.number
        if gap > 1:
            warnings.append(ExportWarning(
                kind=WarningKind.ORDERING_GAP,
                chapter_id=current.id,
                message=(
                    f"Gap between chapter {previous.number} and chapter {current.number} "
                    f"({gap - 1} missing)"
                ),
            ))
    return warnings


def collect_export_data(options: ExportOptions, snapshot: StoreSnapshot) -> CollectedData:
    """Collect all chapter data needed for EPUB export.

    Never raises for missing optional fields; problems become warnings.

    Args:
        options: Export options (ordering strategy)
        snapshot: Read-only chapter store snapshot

    Returns:
        CollectedData with ordered chapters, metadata and warnings
    """
    logger = get_logger()
    chapters: List[CollectedChapter] = []
    warnings: List[ExportWarning] = []
    translated_count = 0

    raw_chapters = snapshot.chapters or {}
    for chapter_id, raw in raw_chapters.items():
        if not isinstance(raw, Mapping):
            warnings.append(ExportWarning(
                kind=WarningKind.MISSING_CONTENT,
                chapter_id=str(chapter_id),
                message=f"Chapter record {chapter_id!r} is not a mapping",
            ))
            continue
        chapter, chapter_warnings = normalize_chapter(str(chapter_id), raw)
        warnings.extend(chapter_warnings)
        if chapter is not None:
            chapters.append(chapter)
            translated_count += 1

    if options.order == ChapterOrder.NAVIGATION:
        chapters = order_by_navigation(chapters)
    else:
        chapters = order_by_number(chapters)
        warnings.extend(find_ordering_gaps(chapters))

    metadata = CollectionMetadata(
        novel_title=snapshot.novel_title or EPUB_DEFAULT_TITLE,
        total_chapters=len(raw_chapters),
        translated_chapters=translated_count,
        export_date=datetime.now(timezone.utc).isoformat(),
    )

    logger.debug(
        f"Collected {len(chapters)}/{len(raw_chapters)} chapters "
        f"(order={options.order.value}, warnings={len(warnings)})",
        LogType.GENERAL
    )
    return CollectedData(metadata=metadata, chapters=chapters, warnings=warnings)
