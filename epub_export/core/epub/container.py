"""
Dependency injection container for the EPUB export pipeline.

Provides centralized creation and configuration of export components.
"""

import re
from dataclasses import dataclass
from typing import Optional

from epub_export.config import (
    ASSET_LOOKUP_TIMEOUT,
    EPUB_COMPRESSION_LEVEL,
    EPUB_DEBUG_DIAGNOSTICS,
    ILLUSTRATION_MARKER_PATTERN,
)

from .asset_resolver import AssetResolver
from .cancellation import CancellationToken
from .content_builder import ContentBuilder
from .events import EventBus
from .models import ExportOptions
from .package_builder import PackageBuilder
from .pipeline import (
    AssetResolutionStage,
    CollectionStage,
    ContentBuildingStage,
    ExportPipeline,
    PackagingStage,
)


@dataclass
class ExportConfig:
    """Configuration for the export pipeline.

    Attributes:
        lookup_timeout: Seconds allowed per cache lookup
        compression_level: Deflate level for container entries (0-9)
        debug_diagnostics: Embed raw markup of malformed documents
        marker_pattern: Illustration marker regex (first group = marker)
    """
    lookup_timeout: float = ASSET_LOOKUP_TIMEOUT
    compression_level: int = EPUB_COMPRESSION_LEVEL
    debug_diagnostics: bool = EPUB_DEBUG_DIAGNOSTICS
    marker_pattern: str = ILLUSTRATION_MARKER_PATTERN

    def __post_init__(self):
        """Validate configuration."""
        if self.lookup_timeout <= 0:
            raise ValueError("lookup_timeout must be > 0")
        if not 0 <= self.compression_level <= 9:
            raise ValueError("compression_level must be between 0 and 9")
        try:
            compiled = re.compile(self.marker_pattern)
        except re.error as e:
            raise ValueError(f"marker_pattern is not a valid regex: {e}")
        if compiled.groups < 1:
            raise ValueError("marker_pattern must capture the marker in a group")


class ExportContainer:
    """Dependency injection container for export components."""

    def __init__(
        self,
        config: Optional[ExportConfig] = None,
        event_bus: Optional[EventBus] = None,
        cancel_token: Optional[CancellationToken] = None
    ):
        """Initialize container with configuration.

        Args:
            config: Export configuration (uses defaults if None)
            event_bus: Event bus shared by every component
            cancel_token: Cancellation token shared by every component
        """
        self.config = config or ExportConfig()
        self.event_bus = event_bus
        self.cancel_token = cancel_token

        # Initialize components (lazy loading)
        self._packager = None

    @property
    def packager(self) -> PackageBuilder:
        """Get or create PackageBuilder instance."""
        if self._packager is None:
            self._packager = PackageBuilder(
                compression_level=self.config.compression_level,
                debug_diagnostics=self.config.debug_diagnostics
            )
        return self._packager

    def create_resolver(self, cache) -> AssetResolver:
        """Create an asset resolver bound to a blob cache."""
        return AssetResolver(
            cache,
            lookup_timeout=self.config.lookup_timeout,
            cancel_token=self.cancel_token,
            event_bus=self.event_bus,
            marker_pattern=self.config.marker_pattern
        )

    def create_content_builder(self, options: ExportOptions) -> ContentBuilder:
        return ContentBuilder(options, marker_pattern=self.config.marker_pattern)

    def create_pipeline(self, options: ExportOptions, cache) -> ExportPipeline:
        """Create the four-stage export pipeline.

        Args:
            options: Export options for this run
            cache: Blob cache (``async get_blob``), may be None

        Returns:
            Pipeline ready for execute(snapshot)
        """
        return (
            ExportPipeline(event_bus=self.event_bus, cancel_token=self.cancel_token)
            .add_stage(CollectionStage(options, self.event_bus))
            .add_stage(AssetResolutionStage(self.create_resolver(cache), self.event_bus))
            .add_stage(ContentBuildingStage(self.create_content_builder(options), self.event_bus))
            .add_stage(PackagingStage(self.packager, self.event_bus))
        )
