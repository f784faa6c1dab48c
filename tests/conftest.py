"""
Pytest configuration and fixtures for all tests.

This file is automatically loaded by pytest and provides common fixtures
and configuration for all test modules.
"""

import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Import pytest for fixtures
import pytest

from epub_export.core.epub.models import (
    AssetSource,
    CollectedChapter,
    CollectionMetadata,
    ExportOptions,
    Footnote,
    IllustrationRef,
    ResolvedAsset,
    ResolvedAssets,
    ResolvedChapter,
    ResolvedImageRef,
    StoreSnapshot,
    TranslationInfo,
)
from epub_export.persistence.blob_cache import InMemoryBlobCache

# Smallest payload carrying the PNG signature (8 bytes)
PNG_BYTES = b'\x89PNG\r\n\x1a\n'
PNG_DATA_URL = "data:image/png;base64,iVBORw0KGgo="


def _make_chapter(number=1, content="Original text", translation="Translated text",
                  title=None, illustrations=None, footnotes=None, **extra):
    """Raw chapter record in the camelCase shape written by the reader app."""
    chapter = {
        'chapterNumber': number,
        'title': title or f"Original {number}",
        'content': content,
        'translationResult': {
            'translatedTitle': f"Chapter Title {number}",
            'translatedContent': translation,
            'suggestedIllustrations': illustrations or [],
            'footnotes': footnotes or [],
            'usageMetrics': {
                'provider': 'OpenAI',
                'model': 'gpt-4o-mini',
                'totalTokens': 1000,
                'promptTokens': 600,
                'completionTokens': 400,
                'estimatedCost': 0.01,
                'requestTime': 2.5,
            },
        },
    }
    chapter.update(extra)
    return chapter


@pytest.fixture
def png_bytes():
    """8-byte PNG payload."""
    return PNG_BYTES


@pytest.fixture
def png_data_url():
    """Inline data URL decoding to the 8-byte PNG payload."""
    return PNG_DATA_URL


@pytest.fixture
def blob_cache():
    """Empty in-memory blob cache."""
    return InMemoryBlobCache()


@pytest.fixture
def export_options():
    """Default export options."""
    return ExportOptions()


@pytest.fixture
def two_chapter_snapshot():
    """Snapshot with two translated chapters stored out of order."""
    return StoreSnapshot(
        chapters={
            'ch-2': _make_chapter(2, translation="Second chapter body"),
            'ch-1': _make_chapter(1, translation="First chapter body"),
        },
        novel_title="The Test Novel"
    )


@pytest.fixture
def make_chapter():
    """Factory for raw chapter records."""
    return _make_chapter


@pytest.fixture
def resolved_book():
    """Resolved two-chapter book: a footnote and one embedded illustration in chapter 1."""
    info = TranslationInfo(provider='OpenAI', model='gpt-4o-mini', cost_usd=0.01,
                           total_tokens=1000, request_time_sec=2.5)
    first = CollectedChapter(
        id='ch-1', number=1, original_title="Original 1", original_content="Source 1",
        translated_title="The Beginning",
        translated_content="It started[1] here.\n\n[ILL-1]\n\nThe end of the first chapter.",
        footnotes=[Footnote('1', "A translator's note.")],
        illustrations=[IllustrationRef('ILL-1', "A quiet village")],
        translation=info,
    )
    second = CollectedChapter(
        id='ch-2', number=2, original_title="Original 2", original_content="Source 2",
        translated_title="The Journey", translated_content="<p>They left at <em>dawn</em>.</p>",
        translation=info,
    )
    asset = ResolvedAsset(
        id='img-ch-1-ILL-1', mime_type='image/png', data=PNG_BYTES, extension='png',
        source=AssetSource(chapter_id='ch-1', marker='ILL-1'),
    )
    return ResolvedAssets(
        metadata=CollectionMetadata(novel_title="The Test Novel", total_chapters=2,
                                    translated_chapters=2, export_date='2024-01-01T00:00:00'),
        chapters=[
            ResolvedChapter(first, [ResolvedImageRef('ILL-1', "A quiet village", asset_id=asset.id)]),
            ResolvedChapter(second, []),
        ],
        assets=[asset],
    )
