"""
Generators for the front and back matter of the book.

Title page and statistics/acknowledgments page bodies are built as XML
builder trees so every value is escaped on serialization.
"""

import math
from dataclasses import dataclass, fields, replace
from datetime import datetime
from typing import Any, Dict, Optional

from .models import ActivityTiming, NovelConfig, TelemetryInsights
from .translation_metrics import TranslationStats
from .xml_builder import XmlElement

LANGUAGE_NAMES = {
    'ja': 'Japanese',
    'ko': 'Korean',
    'zh': 'Chinese',
    'en': 'English',
    'fr': 'French',
    'de': 'German',
    'es': 'Spanish',
}

# Settings keys never shown on the statistics page
_SECRET_HINTS = ('key', 'token', 'secret', 'password')


@dataclass
class EpubTemplate:
    """Texts of the acknowledgments page."""
    gratitude_message: str = (
        "This translation was made possible through the remarkable capabilities of modern "
        "AI language models. We express our deep gratitude to the teams behind these "
        "technologies who have made creative translation accessible to everyone."
    )
    project_description: str = (
        "This e-book was generated from AI-assisted chapter translations, collected and "
        "packaged automatically. Translations can be refined chapter by chapter and "
        "exported again at any time."
    )
    github_url: str = ""
    additional_acknowledgments: str = (
        "Special thanks to the original authors whose creative works inspire these "
        "translations. Translation is an art that bridges cultures and languages, "
        "bringing stories to new audiences worldwide."
    )
    custom_footer: str = ""


def get_default_template() -> EpubTemplate:
    return EpubTemplate()


def create_custom_template(**overrides) -> EpubTemplate:
    """Default template with the given fields replaced. None values are ignored."""
    known = {f.name for f in fields(EpubTemplate)}
    unknown = set(overrides) - known
    if unknown:
        raise ValueError(f"Unknown template fields: {sorted(unknown)}")
    return replace(EpubTemplate(), **{k: v for k, v in overrides.items() if v is not None})


def format_duration_ms(ms: Optional[float]) -> str:
    """Human-readable duration: 850 ms, 2.50 s, 12.5 min, 1.20 h."""
    if ms is None or not math.isfinite(ms):
        return '-'
    if ms < 1000:
        return f"{ms:.0f} ms"
    seconds = ms / 1000
    if seconds < 60:
        return f"{seconds:.1f} s" if seconds >= 10 else f"{seconds:.2f} s"
    minutes = seconds / 60
    if minutes < 60:
        return f"{minutes:.1f} min" if minutes >= 10 else f"{minutes:.2f} min"
    return f"{minutes / 60:.2f} h"


def _language_name(code: Optional[str]) -> str:
    return LANGUAGE_NAMES.get(code or '', code or '')


def _labelled(parent: XmlElement, label: str, value, line_break: bool = False) -> XmlElement:
    p = parent.element('p')
    p.element('strong', text=f"{label}:")
    if line_break:
        p.element('br')
        p.text(str(value))
    else:
        p.text(f" {value}")
    return p


def generate_title_page(novel_config: NovelConfig, stats: TranslationStats,
                        generated_on: Optional[str] = None) -> XmlElement:
    """Build the title page body.

    Args:
        novel_config: Book metadata (title and author are required)
        stats: Aggregated translation statistics
        generated_on: Display date, defaults to today

    Returns:
        <div class="title-page"> element
    """
    page = XmlElement('div', {'class': 'title-page'})
    page.element('h1', text=novel_config.title)

    if novel_config.original_title and novel_config.original_title != novel_config.title:
        page.element('p', {'class': 'subtitle'}, text=novel_config.original_title)

    page.element('p', {'class': 'author'}, text=f"by {novel_config.author}")

    meta = page.element('div', {'class': 'metadata'})
    if novel_config.description:
        _labelled(meta, 'Description', novel_config.description, line_break=True)
    if novel_config.genre:
        _labelled(meta, 'Genre', novel_config.genre)
    if novel_config.original_language and novel_config.language:
        _labelled(meta, 'Translation',
                  f"{_language_name(novel_config.original_language)} → {_language_name(novel_config.language)}")
    if novel_config.series_name and novel_config.volume_number:
        _labelled(meta, 'Series', f"{novel_config.series_name}, Volume {novel_config.volume_number}")
    if novel_config.publisher:
        _labelled(meta, 'Publisher', novel_config.publisher)

    _labelled(meta, 'Translation Stats',
              f"{stats.chapter_count} chapters, {stats.total_tokens:,} tokens processed, "
              f"${stats.total_cost:.4f} cost")

    if novel_config.translation_notes:
        meta.element('p').element('em', text=novel_config.translation_notes)

    _labelled(meta, 'Generated', generated_on or datetime.now().strftime('%Y-%m-%d'))
    return page


def _timing_row(tbody: XmlElement, label: str, timing: Optional[ActivityTiming]) -> bool:
    if not timing or timing.count == 0:
        return False
    tr = tbody.element('tr')
    tr.element('td', text=label)
    tr.element('td', text=str(timing.count))
    tr.element('td', text=format_duration_ms(timing.total_ms))
    tr.element('td', text=format_duration_ms(timing.average_ms))
    return True


def render_telemetry_insights(telemetry: Optional[TelemetryInsights]) -> Optional[XmlElement]:
    """Session insights section, or None without telemetry."""
    if telemetry is None:
        return None

    section = XmlElement('div', {'class': 'session-insights'})
    section.element('h2', text='Session Insights')
    section.element('p', text='Recorded during preparation of this EPUB.')

    grid = section.element('div', {'class': 'stat-grid'})
    _labelled(grid, 'Telemetry Events', f"{telemetry.total_events:,}")
    _labelled(grid, 'Session Duration', format_duration_ms(telemetry.session_duration_ms))

    table = XmlElement('table')
    header = table.element('thead').element('tr')
    for label in ('Activity', 'Occurrences', 'Total Duration', 'Average Duration'):
        header.element('th', text=label)
    tbody = table.element('tbody')
    rows = [
        _timing_row(tbody, 'Navigation requests', telemetry.navigation),
        _timing_row(tbody, 'Chapter store hydration', telemetry.hydration),
        _timing_row(tbody, 'Chapter ready-to-read', telemetry.chapter_ready),
        _timing_row(tbody, 'JSON exports', telemetry.json_exports),
        _timing_row(tbody, 'EPUB exports', telemetry.epub_exports),
    ]
    if any(rows):
        section.append(table)
    return section


def _settings_table(settings: Dict[str, Any]) -> Optional[XmlElement]:
    visible = {
        k: v for k, v in settings.items()
        if not any(hint in k.lower() for hint in _SECRET_HINTS)
        and isinstance(v, (str, int, float, bool))
    }
    if not visible:
        return None
    section = XmlElement('div', {'class': 'export-settings'})
    section.element('h3', text='Export Settings')
    tbody = section.element('table').element('tbody')
    for key in sorted(visible):
        tr = tbody.element('tr')
        tr.element('th', text=key)
        tr.element('td', text=str(visible[key]))
    return section


def generate_stats_page(stats: TranslationStats, template: EpubTemplate,
                        telemetry: Optional[TelemetryInsights] = None,
                        settings: Optional[Dict[str, Any]] = None,
                        generated_on: Optional[str] = None) -> XmlElement:
    """Build the statistics and acknowledgments page body.

    Sections: project description, aggregated statistics, telemetry insights,
    provider and model breakdowns, export settings, gratitude message, footer.
    """
    page = XmlElement('section', {'class': 'acknowledgments'})
    page.element('h1', text='Acknowledgments')

    about = page.element('div', {'class': 'about'})
    about.element('h2', text='About This Translation')
    about.element('p', text=template.project_description or '')
    if template.github_url:
        p = about.element('p')
        p.element('strong', text='Source Code:')
        p.text(' ')
        p.element('a', {'href': template.github_url}, text=template.github_url)

    totals = page.element('div', {'class': 'stat-grid'})
    totals.element('h2', text='Translation Statistics')
    _labelled(totals, 'Chapters', stats.chapter_count)
    _labelled(totals, 'Total Cost', f"${stats.total_cost:.4f}")
    _labelled(totals, 'Total Time', f"{round(stats.total_time)}s")
    _labelled(totals, 'Total Tokens', f"{stats.total_tokens:,}")
    if stats.image_count > 0:
        _labelled(totals, 'Images Generated', stats.image_count)

    insights = render_telemetry_insights(telemetry)
    if insights is not None:
        page.append(insights)

    if stats.provider_breakdown:
        section = page.element('div', {'class': 'providers'})
        section.element('h3', text='Translation Providers Used')
        table = section.element('table')
        header = table.element('thead').element('tr')
        for label in ('Provider', 'Chapters', 'Cost', 'Time'):
            header.element('th', text=label)
        tbody = table.element('tbody')
        for provider, usage in stats.provider_breakdown.items():
            tr = tbody.element('tr')
            tr.element('td').element('strong', text=provider)
            tr.element('td', text=str(usage.chapters))
            tr.element('td', text=f"${usage.cost:.4f}")
            tr.element('td', text=f"{round(usage.time)}s")

    models = stats.top_models(10)
    if models:
        section = page.element('div', {'class': 'models'})
        section.element('h3', text='AI Models Used')
        table = section.element('table')
        header = table.element('thead').element('tr')
        for label in ('Model', 'Chapters', 'Tokens'):
            header.element('th', text=label)
        tbody = table.element('tbody')
        for model, usage in models:
            tr = tbody.element('tr')
            tr.element('td').element('code', text=model)
            tr.element('td', text=str(usage.chapters))
            tr.element('td', text=f"{usage.tokens:,}")

    settings_section = _settings_table(settings or {})
    if settings_section is not None:
        page.append(settings_section)

    gratitude = page.element('div', {'class': 'gratitude-section'})
    gratitude.element('h2', text='Acknowledgments')
    gratitude.element('p', text=template.gratitude_message or '')
    if template.additional_acknowledgments:
        gratitude.element('p', text=template.additional_acknowledgments)

    if template.custom_footer:
        page.element('div', {'class': 'footer'}).element('p', text=template.custom_footer)

    closing = page.element('div', {'class': 'footer'}).element('p')
    closing.element('em', text=f"Translation completed on {generated_on or datetime.now().strftime('%Y-%m-%d')}")
    return page
