"""
Export pipeline using composable stages.

Each stage maps one phase of the export state machine onto a pure input ->
output transformation. The orchestrator runs them in sequence and hooks
progress reporting around every stage.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, List, Optional, TypeVar

from .asset_resolver import AssetResolver
from .cancellation import CancellationToken
from .content_builder import ContentBuilder
from .data_collector import collect_export_data
from .events import EventBus, Event, EventType
from .models import (
    BuiltContent,
    CollectedData,
    ExportOptions,
    ExportPhase,
    PackagedResult,
    ResolvedAsset,
    ResolvedAssets,
    StoreSnapshot,
)
from .package_builder import PackageBuilder

# Type variables for pipeline stages
T = TypeVar('T')  # Input type
R = TypeVar('R')  # Output type


class PipelineStage(ABC, Generic[T, R]):
    """Abstract base class for pipeline stages.

    Each stage transforms input of type T to output of type R.
    """

    phase: ExportPhase

    def __init__(self, event_bus: Optional[EventBus] = None):
        """Initialize stage.

        Args:
            event_bus: Optional event bus for observability
        """
        self.event_bus = event_bus

    @abstractmethod
    async def process(self, input_data: T) -> R:
        """Process input data and return result.

        Args:
            input_data: Input to transform

        Returns:
            Transformed output
        """
        pass

    def emit_event(self, event_type: EventType, data: dict) -> None:
        """Emit an event if event bus is available.

        Args:
            event_type: Type of event
            data: Event data
        """
        if self.event_bus:
            self.event_bus.publish(Event(
                type=event_type,
                data=data,
                source=self.__class__.__name__
            ))


# === Concrete Pipeline Stages ===

class CollectionStage(PipelineStage[StoreSnapshot, CollectedData]):
    """Stage for normalizing and ordering the chapter snapshot."""

    phase = ExportPhase.COLLECTING

    def __init__(self, options: ExportOptions, event_bus: Optional[EventBus] = None):
        super().__init__(event_bus)
        self.options = options

    async def process(self, input_data: StoreSnapshot) -> CollectedData:
        collected = collect_export_data(self.options, input_data)

        self.emit_event(EventType.PERFORMANCE_METRIC, {
            "stage": "collection",
            "chapter_count": len(collected.chapters),
            "warning_count": len(collected.warnings)
        })

        return collected


class AssetResolutionStage(PipelineStage[CollectedData, ResolvedAssets]):
    """Stage for resolving illustration references into payloads."""

    phase = ExportPhase.RESOLVING

    def __init__(self, resolver: AssetResolver, event_bus: Optional[EventBus] = None):
        """Initialize stage.

        Args:
            resolver: Asset resolver implementation
            event_bus: Optional event bus
        """
        super().__init__(event_bus)
        self.resolver = resolver

    async def process(self, input_data: CollectedData) -> ResolvedAssets:
        resolved = await self.resolver.resolve(input_data)

        self.emit_event(EventType.PERFORMANCE_METRIC, {
            "stage": "asset_resolution",
            "asset_count": len(resolved.assets),
            "missing_count": resolved.missing_count
        })

        return resolved


@dataclass
class PackagingInput:
    """Input for packaging stage."""
    content: BuiltContent
    assets: List[ResolvedAsset] = field(default_factory=list)


class ContentBuildingStage(PipelineStage[ResolvedAssets, PackagingInput]):
    """Stage for rendering XHTML documents, manifest, spine and nav."""

    phase = ExportPhase.BUILDING

    def __init__(self, builder: ContentBuilder, event_bus: Optional[EventBus] = None):
        super().__init__(event_bus)
        self.builder = builder

    async def process(self, input_data: ResolvedAssets) -> PackagingInput:
        content = self.builder.build(input_data)

        self.emit_event(EventType.PERFORMANCE_METRIC, {
            "stage": "content_building",
            "document_count": len(content.documents),
            "manifest_count": len(content.manifest)
        })

        return PackagingInput(content=content, assets=list(input_data.assets))


class PackagingStage(PipelineStage[PackagingInput, PackagedResult]):
    """Stage for writing the OCF container."""

    phase = ExportPhase.PACKAGING

    def __init__(self, packager: PackageBuilder, event_bus: Optional[EventBus] = None):
        super().__init__(event_bus)
        self.packager = packager

    async def process(self, input_data: PackagingInput) -> PackagedResult:
        packaged = self.packager.package(input_data.content, input_data.assets)

        for error in packaged.parse_errors:
            self.emit_event(EventType.XML_PARSE_FAILED, {
                "document": error.document,
                "message": error.message
            })
        self.emit_event(EventType.PERFORMANCE_METRIC, {
            "stage": "packaging",
            "size": packaged.size,
            "valid": packaged.validation.valid
        })

        return packaged


# === Pipeline Orchestrator ===

StageHook = Callable[[PipelineStage, object], Awaitable[None]]


class ExportPipeline:
    """Composable export pipeline."""

    def __init__(self, event_bus: Optional[EventBus] = None,
                 cancel_token: Optional[CancellationToken] = None):
        """Initialize pipeline.

        Args:
            event_bus: Optional event bus for all stages
            cancel_token: Checked before every stage
        """
        self.event_bus = event_bus
        self.cancel_token = cancel_token
        self.stages: List[PipelineStage] = []

    def add_stage(self, stage: PipelineStage) -> 'ExportPipeline':
        """Add a stage to the pipeline.

        Args:
            stage: Pipeline stage to add

        Returns:
            Self for fluent chaining
        """
        self.stages.append(stage)
        return self

    def _publish(self, event_type: EventType, index: int, stage: PipelineStage, **extra) -> None:
        if self.event_bus:
            self.event_bus.publish(Event(
                type=event_type,
                data={
                    "pipeline_stage": index,
                    "stage_name": stage.__class__.__name__,
                    "phase": stage.phase.value,
                    **extra
                },
                source="ExportPipeline"
            ))

    async def execute(self, input_data, before_stage: Optional[StageHook] = None,
                      after_stage: Optional[StageHook] = None):
        """Execute all pipeline stages sequentially.

        Args:
            input_data: Initial input
            before_stage: Awaited with (stage, stage input) before each stage.
                Raising from it stops the pipeline.
            after_stage: Awaited with (stage, stage output) after each stage

        Returns:
            Final output from last stage

        Raises:
            ExportCancelledError: if the cancellation token fires between stages
        """
        result = input_data

        for i, stage in enumerate(self.stages):
            if self.cancel_token is not None:
                self.cancel_token.raise_if_cancelled(phase=stage.phase.value)

            if before_stage is not None:
                await before_stage(stage, result)

            self._publish(EventType.STAGE_STARTED, i, stage)
            start = time.perf_counter()

            result = await stage.process(result)

            self._publish(EventType.STAGE_COMPLETED, i, stage,
                          duration_ms=round((time.perf_counter() - start) * 1000, 2))

            if after_stage is not None:
                await after_stage(stage, result)

        return result
