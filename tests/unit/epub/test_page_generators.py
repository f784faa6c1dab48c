"""Unit tests for title and statistics pages."""

import pytest

from epub_export.core.epub.models import ActivityTiming, NovelConfig, TelemetryInsights
from epub_export.core.epub.page_generators import (
    create_custom_template,
    format_duration_ms,
    generate_stats_page,
    generate_title_page,
    get_default_template,
    render_telemetry_insights,
)
from epub_export.core.epub.translation_metrics import TranslationStats, UsageBreakdown


@pytest.fixture
def stats():
    usage = UsageBreakdown(chapters=2, cost=0.02, time=5.0, tokens=2000)
    return TranslationStats(
        chapter_count=2, image_count=1, total_cost=0.02, total_time=5.0, total_tokens=2000,
        provider_breakdown={'OpenAI': usage}, model_breakdown={'gpt-4o-mini': usage},
    )


class TestFormatDuration:
    """Test duration formatting."""

    @pytest.mark.parametrize("ms,expected", [
        (850, "850 ms"),
        (2500, "2.50 s"),
        (12500, "12.5 s"),
        (150000, "2.50 min"),
        (900000, "15.0 min"),
        (4320000, "1.20 h"),
        (None, "-"),
        (float('nan'), "-"),
    ])
    def test_format(self, ms, expected):
        """Durations pick a readable unit."""
        assert format_duration_ms(ms) == expected


class TestTemplates:
    """Test acknowledgment templates."""

    def test_custom_overrides(self):
        """Overrides replace defaults; None keeps the default."""
        template = create_custom_template(custom_footer="Thanks!", gratitude_message=None)

        assert template.custom_footer == "Thanks!"
        assert template.gratitude_message == get_default_template().gratitude_message

    def test_unknown_field(self):
        """Unknown fields are rejected."""
        with pytest.raises(ValueError, match="Unknown template fields"):
            create_custom_template(colour="blue")


class TestTitlePage:
    """Test title page generation."""

    def test_fields(self, stats):
        """The title page shows title, author, description and stats."""
        config = NovelConfig(title="Sea Story", author="A. Writer", original_title="Umi no Hanashi",
                             description="A tale.", original_language='ja', language='en',
                             series_name="Tides", volume_number=2)

        markup = generate_title_page(config, stats, generated_on='2024-05-01').serialize()

        assert '<h1>Sea Story</h1>' in markup
        assert '<p class="subtitle">Umi no Hanashi</p>' in markup
        assert '<p class="author">by A. Writer</p>' in markup
        assert 'Japanese → English' in markup
        assert 'Tides, Volume 2' in markup
        assert '2 chapters, 2,000 tokens processed, $0.0200 cost' in markup
        assert '2024-05-01' in markup

    def test_optional_fields_omitted(self, stats):
        """Absent metadata produces no empty rows."""
        markup = generate_title_page(NovelConfig(title="T", author="A"), stats).serialize()

        assert 'Description' not in markup
        assert 'Series' not in markup
        assert 'subtitle' not in markup


class TestStatsPage:
    """Test statistics page generation."""

    def test_sections(self, stats):
        """Totals and breakdowns are rendered."""
        template = create_custom_template(github_url="https://example.org/repo", custom_footer="Footer text")

        markup = generate_stats_page(stats, template, generated_on='2024-05-01').serialize()

        assert '<h1>Acknowledgments</h1>' in markup
        assert '<a href="https://example.org/repo">https://example.org/repo</a>' in markup
        assert 'Images Generated' in markup
        assert '<td><strong>OpenAI</strong></td>' in markup
        assert '<td><code>gpt-4o-mini</code></td>' in markup
        assert 'Footer text' in markup
        assert 'Translation completed on 2024-05-01' in markup

    def test_settings_hide_secrets(self, stats):
        """Settings with secret-looking keys are never shown."""
        settings = {'model': 'gpt-4o-mini', 'apiKey': 'sk-123', 'temperature': 0.7, 'nested': {'a': 1}}

        markup = generate_stats_page(stats, get_default_template(), settings=settings).serialize()

        assert 'Export Settings' in markup
        assert 'temperature' in markup
        assert 'sk-123' not in markup
        assert 'nested' not in markup

    def test_telemetry(self, stats):
        """Telemetry insights are rendered with their timing rows."""
        telemetry = TelemetryInsights(
            total_events=1234, session_duration_ms=90000,
            navigation=ActivityTiming(count=3, total_ms=1500, average_ms=500),
        )

        markup = generate_stats_page(stats, get_default_template(), telemetry=telemetry).serialize()

        assert 'Session Insights' in markup
        assert '1,234' in markup
        assert '<td>Navigation requests</td><td>3</td><td>1.50 s</td><td>500 ms</td>' in markup

    def test_telemetry_without_rows(self):
        """Empty timings omit the table."""
        section = render_telemetry_insights(TelemetryInsights(total_events=1))

        assert '<table>' not in section.serialize()
        assert render_telemetry_insights(None) is None
