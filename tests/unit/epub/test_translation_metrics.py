"""Unit tests for translation statistics."""

import pytest

from epub_export.core.epub.models import CollectedChapter, TranslationInfo
from epub_export.core.epub.translation_metrics import TranslationStats, calculate_translation_stats


def chapter(number, provider='OpenAI', model='gpt-4o-mini', cost=0.01, tokens=1000, seconds=2.0, info=True):
    return CollectedChapter(
        id=f"ch-{number}", number=number, original_title="", original_content="x",
        translated_title="", translated_content="y",
        translation=TranslationInfo(provider=provider, model=model, cost_usd=cost,
                                    total_tokens=tokens, request_time_sec=seconds) if info else None,
    )


class TestTranslationStats:
    """Test aggregation."""

    def test_totals(self):
        """Totals sum over all chapters."""
        stats = calculate_translation_stats([chapter(1), chapter(2, cost=0.03, tokens=500, seconds=1.0)],
                                            image_count=3)

        assert stats.chapter_count == 2
        assert stats.image_count == 3
        assert stats.total_cost == pytest.approx(0.04)
        assert stats.total_tokens == 1500
        assert stats.total_time == pytest.approx(3.0)
        assert stats.avg_cost_per_chapter == pytest.approx(0.02)

    def test_breakdowns(self):
        """Usage is broken down per provider and per model."""
        stats = calculate_translation_stats([
            chapter(1),
            chapter(2, provider='Gemini', model='gemini-2.0-flash'),
            chapter(3, provider='Gemini', model='gemini-2.0-flash'),
        ])

        assert stats.provider_breakdown['Gemini'].chapters == 2
        assert stats.provider_breakdown['OpenAI'].tokens == 1000
        assert [name for name, _ in stats.top_models()] == ['gemini-2.0-flash', 'gpt-4o-mini']
        assert len(stats.top_models(limit=1)) == 1

    def test_chapter_without_usage(self):
        """Chapters without usage metadata only count as chapters."""
        stats = calculate_translation_stats([chapter(1, info=False)])

        assert stats.chapter_count == 1
        assert stats.total_cost == 0.0
        assert stats.provider_breakdown == {}

    def test_empty(self):
        """No chapters yields zero averages."""
        stats = TranslationStats()

        assert stats.avg_cost_per_chapter == 0.0
        assert stats.top_models() == []

    def test_to_dict(self):
        """Serialization includes breakdowns as plain dicts."""
        data = calculate_translation_stats([chapter(1)]).to_dict()

        assert data['chapter_count'] == 1
        assert data['provider_breakdown']['OpenAI'] == {'chapters': 1, 'cost': 0.01, 'time': 2.0, 'tokens': 1000}

    def test_log_summary(self):
        """The summary is passed to the log callback."""
        logged = []
        summary = calculate_translation_stats([chapter(1)]).log_summary(lambda key, msg: logged.append(key))

        assert "Chapters: 1" in summary
        assert "OpenAI: 1 chapters" in summary
        assert logged == ["translation_stats"]
