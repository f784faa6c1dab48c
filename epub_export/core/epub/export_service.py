"""
EPUB export service (orchestrator).

Runs the four pipeline stages through the state machine

    collecting -> resolving -> building -> packaging -> complete

with ``error`` reachable from any stage. Progress is reported before and
after every stage; failures of any kind come back as a failed ExportResult
instead of an exception.
"""

import inspect
import time
from typing import Any, Callable, List, Optional

from epub_export.utils.unified_logger import get_logger, LogType

from .cancellation import CancellationToken
from .constants import PROGRESS_CHECKPOINTS, PROGRESS_COMPLETE
from .container import ExportConfig, ExportContainer
from .events import Event, EventBus, EventType, create_progress_event, create_warning_event
from .exceptions import EpubExportError, ExportCancelledError
from .models import (
    CollectedData,
    ExportOptions,
    ExportPhase,
    ExportProgress,
    ExportResult,
    ExportStats,
    ExportWarning,
    PackagedResult,
    ResolvedAssets,
    StoreSnapshot,
    WarningKind,
)
from .pipeline import PackagingInput, PipelineStage

ProgressCallback = Callable[[ExportProgress], Any]

NO_CHAPTERS_ERROR = "No chapters to export"

STAGE_MESSAGES = {
    ExportPhase.COLLECTING: ("Collecting chapter data...", "Reading chapters from the store snapshot"),
    ExportPhase.RESOLVING: ("Resolving image assets...", "Fetching from the blob cache and inline fallbacks"),
    ExportPhase.BUILDING: ("Building XHTML content...", "Generating chapters, manifest, and navigation"),
    ExportPhase.PACKAGING: ("Packaging EPUB...", "Creating ZIP structure"),
}


class _NoChapters(EpubExportError):
    """Internal signal: collection produced nothing to export."""


class ExportRun:
    """Mutable state of one export run: progress, warnings, partial stats."""

    def __init__(self, progress_callback: Optional[ProgressCallback], event_bus: Optional[EventBus]):
        self.progress_callback = progress_callback
        self.event_bus = event_bus
        self.logger = get_logger()
        self.start_time = time.perf_counter()
        self.phase = ExportPhase.COLLECTING
        self.percent = 0
        self.stats = ExportStats()
        self.warnings: List[ExportWarning] = []

    def elapsed_ms(self) -> float:
        return round((time.perf_counter() - self.start_time) * 1000, 2)

    async def report(self, phase: ExportPhase, percent: float, message: str, detail: Optional[str] = None) -> None:
        """Publish a progress event. Callback failures are logged, never raised."""
        self.phase = phase
        self.percent = max(self.percent, percent)
        progress = ExportProgress(phase=phase.value, percent=self.percent, message=message, detail=detail)

        if self.event_bus:
            self.event_bus.publish(create_progress_event(phase.value, self.percent, message, detail))

        if self.progress_callback is None:
            return
        try:
            outcome = self.progress_callback(progress)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            self.logger.warning(f"Progress callback failed: {e}", LogType.GENERAL)

    def add_warnings(self, warnings: List[ExportWarning]) -> None:
        self.warnings.extend(warnings)
        self.stats.warnings = len(self.warnings)
        if self.event_bus:
            for warning in warnings:
                self.event_bus.publish(create_warning_event(warning))

    def finish_stats(self) -> ExportStats:
        self.stats.duration_ms = self.elapsed_ms()
        self.stats.warnings = len(self.warnings)
        return self.stats

    # === Stage hooks ===

    async def before_stage(self, stage: PipelineStage, input_data) -> None:
        message, detail = STAGE_MESSAGES[stage.phase]
        await self.report(stage.phase, PROGRESS_CHECKPOINTS[stage.phase.value][0], message, detail)

    async def after_stage(self, stage: PipelineStage, output) -> None:
        percent = PROGRESS_CHECKPOINTS[stage.phase.value][1]

        if isinstance(output, CollectedData):
            self.add_warnings(output.warnings)
            self.stats.total_chapters = len(output.chapters)
            if not output.chapters:
                raise _NoChapters(NO_CHAPTERS_ERROR)
            await self.report(stage.phase, percent,
                              f"Collected {len(output.chapters)} chapters",
                              f"{output.metadata.translated_chapters} translated")

        elif isinstance(output, ResolvedAssets):
            self.add_warnings(output.warnings)
            self.stats.assets_resolved = len(output.assets)
            self.stats.assets_missing = output.missing_count
            misses = sum(1 for w in output.warnings if w.kind == WarningKind.CACHE_MISS)
            await self.report(stage.phase, percent,
                              f"Resolved {len(output.assets)} assets",
                              f"{misses} cache misses")

        elif isinstance(output, PackagingInput):
            self.add_warnings(output.content.warnings)
            await self.report(stage.phase, percent,
                              f"Built {len(output.content.chapters)} XHTML files",
                              f"{len(output.content.manifest)} manifest items")

        elif isinstance(output, PackagedResult):
            self.add_warnings([
                ExportWarning(
                    kind=WarningKind.XML_PARSE_ERROR,
                    chapter_id="",
                    message=f"{error.document}: {error.message}",
                )
                for error in output.parse_errors
            ])
            if output.validation.valid:
                await self.report(stage.phase, percent,
                                  "EPUB package created",
                                  f"{output.size / 1024 / 1024:.2f} MB")


async def export_epub(
    options: ExportOptions,
    snapshot: StoreSnapshot,
    cache,
    progress_callback: Optional[ProgressCallback] = None,
    cancel_token: Optional[CancellationToken] = None,
    event_bus: Optional[EventBus] = None,
    config: Optional[ExportConfig] = None
) -> ExportResult:
    """Export translated chapters to EPUB bytes.

    Args:
        options: Export options
        snapshot: Read-only chapter store snapshot
        cache: Blob cache (``async get_blob``), may be None
        progress_callback: Called (sync or async) with ExportProgress
        cancel_token: Optional cancellation token
        event_bus: Optional event bus for observability
        config: Pipeline configuration (timeouts, compression)

    Returns:
        ExportResult; never raises for pipeline failures
    """
    logger = get_logger()
    run = ExportRun(progress_callback, event_bus)
    container = ExportContainer(config, event_bus=event_bus, cancel_token=cancel_token)

    title = options.title or (options.novel_config.title if options.novel_config else None) or snapshot.novel_title
    logger.info("EPUB export started", LogType.EXPORT_START, {
        'title': title,
        'total_chapters': len(snapshot.chapters or {}),
    })
    if event_bus:
        event_bus.publish(Event(type=EventType.EXPORT_STARTED, data={'title': title}, source="export_service"))

    try:
        pipeline = container.create_pipeline(options, cache)
        packaged: PackagedResult = await pipeline.execute(
            snapshot,
            before_stage=run.before_stage,
            after_stage=run.after_stage
        )
    except Exception as e:
        return await _fail(run, e, event_bus)

    if not packaged.validation.valid:
        error = f"EPUB validation failed: {', '.join(packaged.validation.errors)}"
        logger.error(error, LogType.PACKAGE, {'errors': packaged.validation.errors})
        return await _fail(run, error, event_bus, data=packaged.data, validation=packaged.validation)

    stats = run.finish_stats()
    await run.report(ExportPhase.COMPLETE, PROGRESS_COMPLETE,
                     "Export complete!", f"Exported in {stats.duration_ms / 1000:.1f}s")

    logger.info("EPUB export finished", LogType.EXPORT_END, {'stats': stats.to_dict()})
    if event_bus:
        event_bus.publish(Event(type=EventType.EXPORT_COMPLETED, data=stats.to_dict(), source="export_service"))

    return ExportResult(
        success=True,
        data=packaged.data,
        stats=stats,
        warnings=run.warnings,
        validation=packaged.validation
    )


async def _fail(run: ExportRun, error, event_bus: Optional[EventBus],
                data: Optional[bytes] = None, validation=None) -> ExportResult:
    """Convert a failure into a structured result and report the error phase."""
    logger = get_logger()
    if isinstance(error, Exception):
        message = str(error) or error.__class__.__name__
        if isinstance(error, ExportCancelledError):
            logger.warning(f"EPUB export cancelled during {error.phase or run.phase.value}: {message}", LogType.GENERAL)
        elif isinstance(error, _NoChapters):
            logger.warning(message, LogType.GENERAL)
        else:
            logger.error(f"EPUB export failed: {message}", LogType.ERROR_DETAIL, {
                'details': error.__class__.__name__,
                'phase': run.phase.value,
            })
    else:
        message = error

    stats = run.finish_stats()
    await run.report(ExportPhase.ERROR, run.percent, "Export failed", message)

    if event_bus:
        event_bus.publish(Event(
            type=EventType.EXPORT_FAILED,
            data={'error': message, **stats.to_dict()},
            source="export_service"
        ))

    return ExportResult(
        success=False,
        data=data,
        error=message,
        stats=stats,
        warnings=run.warnings,
        validation=validation
    )
