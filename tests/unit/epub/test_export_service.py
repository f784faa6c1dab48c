"""Unit tests for the export orchestrator."""

import asyncio
import io
import zipfile

import pytest

from epub_export.core.epub.cancellation import CancellationToken
from epub_export.core.epub.events import EventBus, EventType
from epub_export.core.epub.export_service import NO_CHAPTERS_ERROR, export_epub
from epub_export.core.epub.models import CacheKey, ExportOptions, StoreSnapshot, WarningKind


def recorder():
    """Progress callback collecting (phase, percent) pairs."""
    seen = []

    def callback(progress):
        seen.append((progress.phase, progress.percent))

    return callback, seen


def illustrated_snapshot(make_chapter):
    return StoreSnapshot(
        chapters={
            'ch-1': make_chapter(1, translation="Opening.\n\n[ILL-1]\n\nClosing[1].",
                                 footnotes=[{'marker': '[1]', 'text': 'A note.'}],
                                 illustrations=[{
                                     'placementMarker': '[ILL-1]',
                                     'imagePrompt': 'A harbor',
                                     'imageCacheKey': {'chapterId': 'ch-1', 'placementMarker': 'ILL-1'},
                                 }]),
            'ch-2': make_chapter(2, translation="Second."),
        },
        novel_title="Harbor Tales",
    )


class SlowCache:
    """Cache whose lookups outlive any deadline."""

    async def get_blob(self, key):
        await asyncio.sleep(5)


class TestSuccessfulExport:
    """Test the happy path."""

    @pytest.mark.asyncio
    async def test_progress_sequence(self, two_chapter_snapshot, blob_cache):
        """Progress goes through every checkpoint in order."""
        callback, seen = recorder()

        result = await export_epub(ExportOptions(), two_chapter_snapshot, blob_cache, progress_callback=callback)

        assert result.success is True
        assert [percent for _, percent in seen] == [0, 25, 30, 50, 55, 75, 80, 95, 100]
        assert [phase for phase, _ in seen] == [
            'collecting', 'collecting', 'resolving', 'resolving',
            'building', 'building', 'packaging', 'packaging', 'complete',
        ]

    @pytest.mark.asyncio
    async def test_result_bytes_and_stats(self, make_chapter, blob_cache, png_bytes):
        """A cached illustration is embedded and counted."""
        await blob_cache.put_blob(CacheKey('ch-1', 'ILL-1'), png_bytes, 'image/png')

        result = await export_epub(ExportOptions(), illustrated_snapshot(make_chapter), blob_cache)

        assert result.success is True
        assert result.error is None
        assert result.stats.total_chapters == 2
        assert result.stats.assets_resolved == 1
        assert result.stats.assets_missing == 0
        assert result.stats.duration_ms >= 0
        assert result.validation.valid is True
        with zipfile.ZipFile(io.BytesIO(result.data)) as epub:
            assert epub.read('OEBPS/images/img-ch-1-ILL-1.png') == png_bytes

    @pytest.mark.asyncio
    async def test_missing_asset_still_succeeds(self, make_chapter, blob_cache):
        """A cache miss without fallback degrades to a warning."""
        result = await export_epub(ExportOptions(), illustrated_snapshot(make_chapter), blob_cache)

        assert result.success is True
        assert result.stats.assets_missing == 1
        assert [w.kind for w in result.warnings] == [WarningKind.CACHE_MISS]
        assert result.stats.warnings == 1

    @pytest.mark.asyncio
    async def test_async_callback(self, two_chapter_snapshot, blob_cache):
        """Coroutine callbacks are awaited."""
        seen = []

        async def callback(progress):
            await asyncio.sleep(0)
            seen.append(progress.percent)

        await export_epub(ExportOptions(), two_chapter_snapshot, blob_cache, progress_callback=callback)

        assert seen[-1] == 100

    @pytest.mark.asyncio
    async def test_callback_exception_does_not_abort(self, two_chapter_snapshot, blob_cache):
        """A failing progress callback never aborts the export."""
        def callback(progress):
            raise RuntimeError("UI went away")

        result = await export_epub(ExportOptions(), two_chapter_snapshot, blob_cache, progress_callback=callback)

        assert result.success is True

    @pytest.mark.asyncio
    async def test_without_cache(self, two_chapter_snapshot):
        """Exports work without any blob cache."""
        result = await export_epub(ExportOptions(), two_chapter_snapshot, None)

        assert result.success is True

    @pytest.mark.asyncio
    async def test_events(self, two_chapter_snapshot, blob_cache):
        """The run publishes start, progress and completion events."""
        bus = EventBus()
        bus.enable_history()

        await export_epub(ExportOptions(), two_chapter_snapshot, blob_cache, event_bus=bus)

        types = [event.type for event in bus.get_history()]
        assert types[0] == EventType.EXPORT_STARTED
        assert types[-1] == EventType.EXPORT_COMPLETED
        assert len(bus.get_events_by_type(EventType.PROGRESS)) == 9
        assert len(bus.get_events_by_type(EventType.STAGE_COMPLETED)) == 4


class TestFailedExport:
    """Test failure paths."""

    @pytest.mark.asyncio
    async def test_zero_chapters(self, make_chapter, blob_cache):
        """No exportable chapters fails with a structured result."""
        raw = make_chapter(1)
        del raw['translationResult']
        callback, seen = recorder()

        result = await export_epub(ExportOptions(), StoreSnapshot(chapters={'ch-1': raw}), blob_cache,
                                   progress_callback=callback)

        assert result.success is False
        assert result.error == NO_CHAPTERS_ERROR
        assert result.data is None
        assert [w.kind for w in result.warnings] == [WarningKind.MISSING_TRANSLATION]
        assert seen == [('collecting', 0), ('error', 0)]

    @pytest.mark.asyncio
    async def test_empty_snapshot(self, blob_cache):
        """An empty snapshot fails the same way."""
        result = await export_epub(ExportOptions(), StoreSnapshot(), blob_cache)

        assert result.success is False
        assert result.error == NO_CHAPTERS_ERROR

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, two_chapter_snapshot, blob_cache):
        """A pre-cancelled token fails before collection."""
        token = CancellationToken()
        token.cancel("user abort")
        callback, seen = recorder()

        result = await export_epub(ExportOptions(), two_chapter_snapshot, blob_cache,
                                   progress_callback=callback, cancel_token=token)

        assert result.success is False
        assert "user abort" in result.error
        assert seen == [('error', 0)]

    @pytest.mark.asyncio
    async def test_deadline_during_resolution(self, make_chapter):
        """A deadline expiring during lookups fails in the error phase."""
        callback, seen = recorder()

        result = await export_epub(ExportOptions(), illustrated_snapshot(make_chapter), SlowCache(),
                                   progress_callback=callback, cancel_token=CancellationToken(timeout=0.1))

        assert result.success is False
        assert "deadline exceeded" in result.error
        assert seen[-1] == ('error', 30)

    @pytest.mark.asyncio
    async def test_failed_event(self, blob_cache):
        """Failures publish EXPORT_FAILED with the error message."""
        bus = EventBus()
        bus.enable_history()

        await export_epub(ExportOptions(), StoreSnapshot(), blob_cache, event_bus=bus)

        failed = bus.get_events_by_type(EventType.EXPORT_FAILED)
        assert len(failed) == 1
        assert failed[0].data['error'] == NO_CHAPTERS_ERROR

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_result(self, two_chapter_snapshot, blob_cache, monkeypatch):
        """Errors raised inside a stage never escape export_epub."""
        def explode(self, resolved):
            raise RuntimeError("renderer crashed")

        monkeypatch.setattr(
            "epub_export.core.epub.content_builder.ContentBuilder.build", explode
        )
        callback, seen = recorder()

        result = await export_epub(ExportOptions(), two_chapter_snapshot, blob_cache, progress_callback=callback)

        assert result.success is False
        assert result.error == "renderer crashed"
        assert result.stats.total_chapters == 2
        assert seen[-1] == ('error', 55)
