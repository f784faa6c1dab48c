"""
EPUB export module

Turns translated chapters, their footnotes and cached illustrations into a
single EPUB 3 container.

Main entry point:
    export_epub() - Run the whole pipeline and return an ExportResult

Components:
    - data_collector: Chapter normalization and ordering
    - asset_resolver: Concurrent illustration payload resolution
    - content_builder: XHTML documents, manifest, spine and navigation
    - package_builder: OCF container assembly and validation
    - export_service: Orchestration and progress reporting
"""

from .export_service import export_epub
from .data_collector import collect_export_data
from .asset_resolver import resolve_assets
from .content_builder import build_epub_content
from .package_builder import package_epub
from .session_loader import load_session_snapshot
from .cancellation import CancellationToken
from .container import ExportConfig, ExportContainer
from .models import (
    ChapterOrder,
    ExportOptions,
    ExportProgress,
    ExportResult,
    ExportWarning,
    NovelConfig,
    StoreSnapshot,
)

__all__ = [
    # Main export function
    'export_epub',

    # Pipeline stages
    'collect_export_data',
    'resolve_assets',
    'build_epub_content',
    'package_epub',

    # Input / output
    'load_session_snapshot',
    'StoreSnapshot',
    'ExportOptions',
    'NovelConfig',
    'ChapterOrder',
    'ExportProgress',
    'ExportResult',
    'ExportWarning',

    # Configuration
    'CancellationToken',
    'ExportConfig',
    'ExportContainer',
]
