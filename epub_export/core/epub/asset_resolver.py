"""
Asset resolution: second stage of the export pipeline.

Turns illustration references into binary payloads. Every reference of every
chapter is resolved concurrently, each one independently:

1. cache key present -> look it up in the blob cache
2. otherwise (or on a miss) -> decode the inline data URL, warn cache-miss
3. otherwise -> flag the reference missing, warn cache-miss

Markers found in the translated text without any reference are flagged
missing as well, so every marker ends with exactly one outcome.
"""

import asyncio
import base64
import binascii
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from urllib.parse import unquote_to_bytes

from epub_export.config import ASSET_LOOKUP_TIMEOUT, ILLUSTRATION_MARKER_PATTERN, normalize_marker
from epub_export.utils.unified_logger import get_logger, LogType

from .cancellation import CancellationToken
from .constants import ASSET_EXTENSIONS, DEFAULT_ASSET_EXTENSION, DEFAULT_IMAGE_MIME, MAGIC_SIGNATURES
from .events import EventBus, create_asset_event
from .exceptions import AssetDecodeError, AssetResolutionError
from .models import (
    AssetSource,
    CacheKey,
    CachedBlob,
    CollectedChapter,
    CollectedData,
    ExportWarning,
    IllustrationRef,
    ResolvedAsset,
    ResolvedAssets,
    ResolvedChapter,
    ResolvedImageRef,
    WarningKind,
)
from .result import Err, Result, wrap_async_exception, wrap_exception

_UNSAFE_ID_CHARS = re.compile(r'[^A-Za-z0-9._-]')
_MIME_ALIASES = {'image/jpg': 'image/jpeg', 'audio/mp3': 'audio/mpeg'}


def asset_id_for(chapter_id: str, marker: str) -> str:
    """Deterministic asset id: img-<chapterId>-<marker>, XML-name safe."""
    return _UNSAFE_ID_CHARS.sub('_', f"img-{chapter_id}-{normalize_marker(marker)}")


def normalize_mime_type(mime_type: Optional[str]) -> Optional[str]:
    if not mime_type:
        return None
    mime_type = mime_type.split(';')[0].strip().lower()
    return _MIME_ALIASES.get(mime_type, mime_type) or None


def sniff_mime_type(data: bytes) -> str:
    """Detect the image type from magic bytes, defaulting to PNG."""
    for signature, mime_type in MAGIC_SIGNATURES:
        if data.startswith(signature):
            return mime_type
    if len(data) >= 12 and data[:4] == b'RIFF' and data[8:12] == b'WEBP':
        return 'image/webp'
    return DEFAULT_IMAGE_MIME


def extension_for(mime_type: str) -> str:
    return ASSET_EXTENSIONS.get(mime_type, DEFAULT_ASSET_EXTENSION)


def asset_kind_for(mime_type: str) -> str:
    return 'audio' if mime_type.startswith('audio/') else 'image'


def _b64decode(payload: str) -> bytes:
    payload = re.sub(r'\s+', '', payload)
    payload += '=' * (-len(payload) % 4)
    return base64.b64decode(payload, validate=True)


@wrap_exception
def decode_data_url(data_url: str) -> Tuple[bytes, Optional[str]]:
    """Decode an inline payload.

    Accepts data URLs (base64 or percent-encoded) and bare base64 strings.

    Returns:
        Ok((payload, declared mime type or None)) or Err(AssetDecodeError)
    """
    preview = (data_url or '')[:60]
    text = (data_url or '').strip()
    if not text:
        raise AssetDecodeError("Empty inline payload", payload_preview=preview)

    if text.startswith('data:'):
        header, sep, payload = text[5:].partition(',')
        if not sep:
            raise AssetDecodeError("Invalid data URL format (no comma)", payload_preview=preview)
        params = header.split(';')
        mime_type = normalize_mime_type(params[0])
        try:
            if 'base64' in (p.strip().lower() for p in params[1:]):
                data = _b64decode(payload)
            else:
                data = unquote_to_bytes(payload)
        except (binascii.Error, ValueError) as e:
            raise AssetDecodeError(f"Invalid base64 payload: {e}", payload_preview=preview)
        return data, mime_type

    if re.match(r'^[a-z][a-z0-9+.-]*://', text, re.IGNORECASE):
        raise AssetDecodeError("Remote URLs cannot be embedded", payload_preview=preview)

    try:
        return _b64decode(text), None
    except (binascii.Error, ValueError) as e:
        raise AssetDecodeError(f"Invalid base64 payload: {e}", payload_preview=preview)


def find_text_markers(text: str, pattern: str = ILLUSTRATION_MARKER_PATTERN) -> List[str]:
    """Illustration markers present in text, unique, in order of appearance."""
    seen = []
    for match in re.finditer(pattern, text or ''):
        marker = normalize_marker(match.group(1) if match.groups() else match.group(0))
        if marker and marker not in seen:
            seen.append(marker)
    return seen


@dataclass
class ReferenceOutcome:
    """Result of resolving one reference. Tasks never share state."""
    image: ResolvedImageRef
    asset: Optional[ResolvedAsset] = None
    warnings: List[ExportWarning] = field(default_factory=list)


class AssetResolver:
    """Resolves every illustration reference of the collected chapters."""

    def __init__(
        self,
        cache,
        lookup_timeout: float = ASSET_LOOKUP_TIMEOUT,
        cancel_token: Optional[CancellationToken] = None,
        event_bus: Optional[EventBus] = None,
        marker_pattern: str = ILLUSTRATION_MARKER_PATTERN
    ):
        """Initialize resolver.

        Args:
            cache: Object with ``async get_blob(CacheKey) -> CachedBlob | None``
                (None disables the cache step)
            lookup_timeout: Seconds allowed per cache lookup
            cancel_token: Optional cancellation token
            event_bus: Optional event bus for asset events
            marker_pattern: Regex whose first group captures a marker
        """
        self.cache = cache
        self.lookup_timeout = lookup_timeout
        self.cancel_token = cancel_token
        self.event_bus = event_bus
        self.marker_pattern = marker_pattern
        self.logger = get_logger()

    def _check_cancelled(self) -> None:
        if self.cancel_token is not None:
            self.cancel_token.raise_if_cancelled(phase='resolving')

    def _timeout(self) -> float:
        remaining = self.cancel_token.remaining() if self.cancel_token else None
        return self.lookup_timeout if remaining is None else min(self.lookup_timeout, remaining)

    async def _timed_lookup(self, key: CacheKey) -> Optional[CachedBlob]:
        blob = await asyncio.wait_for(self.cache.get_blob(key), timeout=self._timeout())
        if blob is not None and not isinstance(blob, CachedBlob):
            # Plain bytes are accepted from simple caches
            blob = CachedBlob(data=bytes(blob))
        return blob

    async def lookup(self, chapter_id: str, key: CacheKey) -> Result:
        """Cache lookup that never raises for store failures or timeouts."""
        self._check_cancelled()
        result = await wrap_async_exception(self._timed_lookup)(key)
        if result.is_err():
            self._check_cancelled()
            error = result.error
            if isinstance(error, asyncio.TimeoutError):
                message = f"Cache lookup timed out after {self.lookup_timeout:.1f}s"
            else:
                message = f"Cache lookup failed: {error}"
            self.logger.warning(
                f"{message} (chapter {chapter_id}, marker [{key.marker}])",
                LogType.ASSET,
                {'chapter_id': chapter_id, 'marker': key.marker}
            )
            return Err(AssetResolutionError(message, chapter_id=chapter_id, marker=key.marker))
        return result

    def _make_asset(self, asset_id: str, chapter: CollectedChapter, marker: str,
                    data: bytes, mime_type: Optional[str]) -> ResolvedAsset:
        mime_type = normalize_mime_type(mime_type) or sniff_mime_type(data)
        return ResolvedAsset(
            id=asset_id,
            mime_type=mime_type,
            data=data,
            extension=extension_for(mime_type),
            source=AssetSource(chapter_id=chapter.id, marker=marker, kind=asset_kind_for(mime_type)),
        )

    async def resolve_reference(self, chapter: CollectedChapter, ref: IllustrationRef,
                                asset_id: str) -> ReferenceOutcome:
        """Resolve one reference: cache, then inline fallback, then missing."""
        warnings: List[ExportWarning] = []
        marker = ref.marker

        def warn(kind: str, message: str, with_asset: bool = True) -> None:
            warnings.append(ExportWarning(
                kind=kind,
                chapter_id=chapter.id,
                message=message,
                marker=marker,
                asset_id=asset_id if with_asset else None,
            ))

        def resolved(asset: ResolvedAsset) -> ReferenceOutcome:
            return ReferenceOutcome(
                image=ResolvedImageRef(marker=marker, prompt=ref.prompt, asset_id=asset.id),
                asset=asset,
                warnings=warnings,
            )

        # (a) Cache store
        if ref.cache_key is not None and self.cache is not None:
            blob = (await self.lookup(chapter.id, ref.cache_key)).unwrap_or(None)
            if blob is not None:
                if blob.data:
                    return resolved(self._make_asset(asset_id, chapter, marker, blob.data, blob.mime_type))
                warn(WarningKind.INVALID_DATA, f"Cached payload for [{marker}] is empty")

        # (b) Inline fallback
        if ref.inline_data:
            self._check_cancelled()
            decoded = decode_data_url(ref.inline_data)
            if decoded.is_err():
                warn(WarningKind.CONVERSION_FAILED,
                     f"Could not decode inline payload for [{marker}]: {decoded.error}", with_asset=False)
                return ReferenceOutcome(
                    image=ResolvedImageRef(marker=marker, prompt=ref.prompt, missing=True),
                    warnings=warnings,
                )
            data, mime_type = decoded.unwrap()
            if data:
                warn(WarningKind.CACHE_MISS, f"Cache miss for [{marker}], used inline fallback")
                return resolved(self._make_asset(asset_id, chapter, marker, data, mime_type))
            warn(WarningKind.INVALID_DATA, f"Inline payload for [{marker}] is empty", with_asset=False)

        # (c) Missing
        warn(WarningKind.CACHE_MISS,
             f"No asset found for [{marker}] (cache miss + no fallback)", with_asset=False)
        return ReferenceOutcome(
            image=ResolvedImageRef(marker=marker, prompt=ref.prompt, missing=True),
            warnings=warnings,
        )

    def _orphan_markers(self, chapter: CollectedChapter) -> List[ReferenceOutcome]:
        """Markers in the text that no reference accounts for."""
        known = {ref.marker for ref in chapter.illustrations}
        outcomes = []
        for marker in find_text_markers(chapter.translated_content, self.marker_pattern):
            if marker in known:
                continue
            outcomes.append(ReferenceOutcome(
                image=ResolvedImageRef(marker=marker, missing=True),
                warnings=[ExportWarning(
                    kind=WarningKind.INVALID_DATA,
                    chapter_id=chapter.id,
                    message=f"Marker [{marker}] has no illustration reference",
                    marker=marker,
                )],
            ))
        return outcomes

    def _assign_ids(self, collected: CollectedData) -> Dict[Tuple[int, str], str]:
        """Asset id per (chapter index, marker); colliding ids get a suffix."""
        ids: Dict[Tuple[int, str], str] = {}
        used = set()
        for index, chapter in enumerate(collected.chapters):
            for ref in chapter.illustrations:
                base = asset_id_for(chapter.id, ref.marker)
                candidate, n = base, 2
                while candidate in used:
                    candidate = f"{base}-{n}"
                    n += 1
                used.add(candidate)
                ids[(index, ref.marker)] = candidate
        return ids

    async def resolve(self, collected: CollectedData) -> ResolvedAssets:
        """Resolve all references concurrently (fan-out) and gather (fan-in).

        Raises:
            ExportCancelledError: when the cancellation token fires; pending
                lookups are cancelled
        """
        self._check_cancelled()
        ids = self._assign_ids(collected)

        tasks = [
            asyncio.ensure_future(self.resolve_reference(chapter, ref, ids[(index, ref.marker)]))
            for index, chapter in enumerate(collected.chapters)
            for ref in chapter.illustrations
        ]
        try:
            outcomes = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        assets: List[ResolvedAsset] = []
        warnings: List[ExportWarning] = []
        chapters: List[ResolvedChapter] = []
        position = 0
        for chapter in collected.chapters:
            count = len(chapter.illustrations)
            chapter_outcomes = list(outcomes[position:position + count]) + self._orphan_markers(chapter)
            position += count

            for outcome in chapter_outcomes:
                if outcome.asset is not None:
                    assets.append(outcome.asset)
                warnings.extend(outcome.warnings)
                if self.event_bus:
                    self.event_bus.publish(create_asset_event(
                        outcome.image.asset_id, chapter.id, outcome.image.marker, outcome.image.missing
                    ))
            chapters.append(ResolvedChapter(chapter=chapter, images=[o.image for o in chapter_outcomes]))

        self.logger.info(
            f"Resolved {len(assets)} assets, {sum(1 for w in warnings if w.kind == WarningKind.CACHE_MISS)} cache misses",
            LogType.ASSET,
            {'resolved': len(assets), 'warnings': len(warnings)}
        )
        return ResolvedAssets(
            metadata=collected.metadata,
            chapters=chapters,
            assets=assets,
            warnings=warnings,
        )


async def resolve_assets(
    collected: CollectedData,
    cache,
    cancel_token: Optional[CancellationToken] = None,
    lookup_timeout: float = ASSET_LOOKUP_TIMEOUT,
    event_bus: Optional[EventBus] = None
) -> ResolvedAssets:
    """Resolve all asset references into binary payloads.

    Args:
        collected: Output of collect_export_data
        cache: Blob cache (``async get_blob``), may be None
        cancel_token: Optional cancellation token
        lookup_timeout: Seconds allowed per cache lookup
        event_bus: Optional event bus

    Returns:
        ResolvedAssets with per-chapter outcomes, assets and warnings
    """
    resolver = AssetResolver(cache, lookup_timeout=lookup_timeout, cancel_token=cancel_token, event_bus=event_bus)
    return await resolver.resolve(collected)
