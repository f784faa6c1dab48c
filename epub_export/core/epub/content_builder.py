"""
Content building: third stage of the export pipeline.

Renders resolved chapters into strict XHTML documents and derives the
manifest, spine and navigation entries plus the package metadata. Pure
transformation: no I/O.

Marker grammar: illustrations and footnotes are both bracketed tokens
("[ILL-1]", "[1]"). A bracketed token is an illustration marker when it
matches the configured illustration pattern or names one of the chapter's
illustration references; it is a footnote marker when it names one of the
chapter's footnotes. Anything else is left as text.
"""

import re
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

from epub_export.config import (
    EPUB_DEFAULT_AUTHOR,
    EPUB_DEFAULT_LANGUAGE,
    ILLUSTRATION_MARKER_PATTERN,
    NAMESPACES,
    normalize_marker,
)
from epub_export.utils.unified_logger import get_logger, LogType

from .constants import (
    CSS_MEDIA_TYPE,
    NAV_HREF,
    NAV_ID,
    STATS_PAGE_HREF,
    STATS_PAGE_ID,
    STYLESHEET_ID,
    TEXT_DIR,
    TITLE_PAGE_HREF,
    TITLE_PAGE_ID,
    XHTML_MEDIA_TYPE,
)
from .models import (
    BuiltContent,
    ExportOptions,
    GeneratedDocument,
    ManifestItem,
    NavItem,
    NovelConfig,
    PackageMetadata,
    ResolvedAsset,
    ResolvedAssets,
    ResolvedChapter,
    SpineItem,
)
from .page_generators import create_custom_template, generate_stats_page, generate_title_page
from .stylesheet import STYLESHEET_HREF, create_stylesheet
from .translation_metrics import calculate_translation_stats
from .xhtml_sanitizer import XhtmlSanitizer, make_token, strip_tokens
from .xml_builder import XHTML_DOCTYPE, XmlElement, serialize_document

# Any bracketed token short enough to be a marker
BRACKETED_TOKEN = re.compile(r'\[([^\[\]\r\n]{1,64})\]')
_UNSAFE_FRAGMENT_CHARS = re.compile(r'[^A-Za-z0-9._-]')


def fragment_id(prefix: str, marker: str) -> str:
    """Element id for a footnote anchor (fn-1, fnref-1)."""
    return f"{prefix}-{_UNSAFE_FRAGMENT_CHARS.sub('_', marker)}"


def chapter_filename(position: int) -> str:
    return f"chapter-{position:03d}.xhtml"


def nav_label(number: int, title: str) -> str:
    """Navigation label "Chapter N: Title", or "Chapter N" when the title adds nothing."""
    prefix = f"Chapter {number}"
    if not title or title in (prefix, "Untitled Chapter"):
        return prefix
    return f"{prefix}: {title}"


def iso_timestamp(moment: Optional[datetime] = None) -> str:
    """dcterms:modified format: seconds precision, UTC, trailing Z."""
    moment = moment or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def xhtml_document(title: str, body_children: List, language: str,
                   stylesheet_href: str = f"../{STYLESHEET_HREF}") -> str:
    """Wrap body content in a complete XHTML5 document."""
    html = XmlElement('html', {
        'xmlns': NAMESPACES['xhtml'],
        'xmlns:epub': NAMESPACES['epub'],
        'lang': language,
        'xml:lang': language,
    })
    head = html.element('head')
    head.element('meta', {'charset': 'utf-8'})
    head.element('title', text=title)
    head.element('link', {'rel': 'stylesheet', 'type': CSS_MEDIA_TYPE, 'href': stylesheet_href})
    body = html.element('body')
    for child in body_children:
        body.append(child)
    return serialize_document(html, xhtml=True, doctype=XHTML_DOCTYPE)


class ChapterRenderer:
    """Renders one chapter body with its markers substituted."""

    def __init__(self, resolved_chapter: ResolvedChapter, assets_by_id: Dict[str, ResolvedAsset],
                 marker_pattern: str = ILLUSTRATION_MARKER_PATTERN):
        self.resolved = resolved_chapter
        self.chapter = resolved_chapter.chapter
        self.assets_by_id = assets_by_id
        self.marker_pattern = marker_pattern

        self.illustration_markers = {img.marker for img in resolved_chapter.images}
        self.illustration_markers.update(ref.marker for ref in self.chapter.illustrations)
        self.footnote_markers = [fn.marker for fn in self.chapter.footnotes]

        self._tokens: Dict[str, tuple] = {}
        self._placed_images = set()
        self._referenced_footnotes = set()

    def _is_illustration(self, marker: str) -> bool:
        if marker in self.illustration_markers:
            return True
        return re.fullmatch(self.marker_pattern, f"[{marker}]") is not None

    def _substitute(self, match: re.Match) -> str:
        marker = normalize_marker(match.group(1))
        if self._is_illustration(marker):
            kind = 'I'
        elif marker in self.footnote_markers:
            kind = 'F'
        else:
            return match.group(0)
        key = f"{kind}{len(self._tokens)}"
        self._tokens[key] = (kind, marker)
        return make_token(key)

    def _illustration_node(self, marker: str) -> Optional[XmlElement]:
        # One figure per marker, later repeats are dropped
        if marker in self._placed_images:
            return None
        image = self.resolved.image_for(marker)
        if image is None or image.missing or not image.asset_id:
            return None
        asset = self.assets_by_id.get(image.asset_id)
        if asset is None:
            return None
        self._placed_images.add(marker)

        figure = XmlElement('figure', {'class': 'illustration'})
        figure.element('img', {'src': f"../{asset.href}", 'alt': image.prompt or ''})
        if image.prompt:
            figure.element('figcaption', text=image.prompt)
        return figure

    def _footnote_node(self, marker: str) -> XmlElement:
        sup = XmlElement('sup')
        if marker not in self._referenced_footnotes:
            sup.set('id', fragment_id('fnref', marker))
            self._referenced_footnotes.add(marker)
        sup.element('a', {
            'href': f"#{fragment_id('fn', marker)}",
            'epub:type': 'noteref',
            'class': 'footnote-ref',
        }, text=f"[{marker}]")
        return sup

    def _handle_token(self, key: str):
        entry = self._tokens.get(key)
        if entry is None:
            return None
        kind, marker = entry
        if kind == 'I':
            return self._illustration_node(marker)
        return self._footnote_node(marker)

    def body_nodes(self) -> List:
        text = strip_tokens(self.chapter.translated_content)
        text = BRACKETED_TOKEN.sub(self._substitute, text)
        sanitizer = XhtmlSanitizer(token_handler=self._handle_token)
        nodes = sanitizer.convert(text)
        if sanitizer.escaped_elements:
            get_logger().debug(
                f"Chapter {self.chapter.id}: escaped disallowed elements {sorted(set(sanitizer.escaped_elements))}",
                LogType.GENERAL
            )
        return nodes

    def footnotes_section(self) -> Optional[XmlElement]:
        if not self.chapter.footnotes:
            return None
        section = XmlElement('section', {'class': 'footnotes', 'epub:type': 'footnotes'})
        section.element('h2', text='Footnotes')
        ol = section.element('ol')
        for footnote in self.chapter.footnotes:
            li = ol.element('li', {'id': fragment_id('fn', footnote.marker), 'epub:type': 'footnote'})
            li.text(footnote.text)
            if footnote.marker in self._referenced_footnotes:
                li.text(' ')
                li.element('a', {
                    'href': f"#{fragment_id('fnref', footnote.marker)}",
                    'class': 'footnote-back',
                }, text='↩')
        return section

    def render(self, language: str) -> str:
        title = self.chapter.title
        section = XmlElement('section', {'epub:type': 'chapter'})
        section.element('h1', text=title)
        body = section.element('div', {'class': 'chapter-body'})
        for node in self.body_nodes():
            body.append(node)
        footnotes = self.footnotes_section()
        if footnotes is not None:
            section.append(footnotes)
        return xhtml_document(title, [section], language)


class ContentBuilder:
    """Builds every document of the book plus manifest, spine and nav."""

    def __init__(self, options: ExportOptions, marker_pattern: str = ILLUSTRATION_MARKER_PATTERN):
        self.options = options
        self.marker_pattern = marker_pattern

    def build_metadata(self, resolved: ResolvedAssets) -> PackageMetadata:
        config = self.options.novel_config or NovelConfig()
        return PackageMetadata(
            title=self.options.title or config.title or resolved.metadata.novel_title,
            language=self.options.language or config.language or EPUB_DEFAULT_LANGUAGE,
            identifier=f"urn:uuid:{uuid.uuid4()}",
            modified=iso_timestamp(),
            creator=self.options.author or config.author,
            description=config.description,
            publisher=config.publisher,
        )

    def build(self, resolved: ResolvedAssets) -> BuiltContent:
        metadata = self.build_metadata(resolved)
        assets_by_id = resolved.assets_by_id
        content = BuiltContent(metadata=metadata, stylesheet=create_stylesheet(with_images=bool(resolved.assets)))

        for position, resolved_chapter in enumerate(resolved.chapters, 1):
            chapter = resolved_chapter.chapter
            doc_id = f"chapter-{position:03d}"
            href = f"{TEXT_DIR}/{chapter_filename(position)}"
            renderer = ChapterRenderer(resolved_chapter, assets_by_id, self.marker_pattern)

            content.chapters.append(GeneratedDocument(
                id=doc_id,
                href=href,
                title=chapter.title,
                content=renderer.render(metadata.language),
                chapter_id=chapter.id,
            ))
            number = chapter.number if chapter.number is not None else position
            content.nav.append(NavItem(title=nav_label(number, chapter.title), href=href))

        stats = calculate_translation_stats(
            (rc.chapter for rc in resolved.chapters),
            image_count=sum(1 for a in resolved.assets if a.source.kind == 'image'),
        )
        today = datetime.now().strftime('%Y-%m-%d')

        if self.options.include_title_page:
            base = self.options.novel_config or NovelConfig()
            config = replace(
                base,
                title=metadata.title,
                author=metadata.creator or EPUB_DEFAULT_AUTHOR,
                language=base.language or metadata.language,
            )
            body = generate_title_page(config, stats, generated_on=today)
            content.title_page = GeneratedDocument(
                id=TITLE_PAGE_ID,
                href=TITLE_PAGE_HREF,
                title=metadata.title,
                content=xhtml_document(metadata.title, [body], metadata.language),
            )

        if self.options.include_stats_page:
            template = create_custom_template(
                gratitude_message=self.options.gratitude_message,
                project_description=self.options.project_description,
                github_url=self.options.github_url,
                additional_acknowledgments=self.options.additional_acknowledgments,
                custom_footer=self.options.footer,
            )
            body = generate_stats_page(stats, template, self.options.telemetry,
                                       self.options.settings, generated_on=today)
            content.stats_page = GeneratedDocument(
                id=STATS_PAGE_ID,
                href=STATS_PAGE_HREF,
                title='Acknowledgments',
                content=xhtml_document('Acknowledgments', [body], metadata.language),
            )

        # Manifest: documents in reading order, then nav, stylesheet, assets
        for doc in content.documents:
            content.manifest.append(ManifestItem(id=doc.id, href=doc.href, media_type=XHTML_MEDIA_TYPE))
            content.spine.append(SpineItem(idref=doc.id, linear=True))
        content.manifest.append(ManifestItem(id=NAV_ID, href=NAV_HREF, media_type=XHTML_MEDIA_TYPE, properties='nav'))
        content.manifest.append(ManifestItem(id=STYLESHEET_ID, href=STYLESHEET_HREF, media_type=CSS_MEDIA_TYPE))
        for asset in resolved.assets:
            content.manifest.append(ManifestItem(id=asset.id, href=asset.href, media_type=asset.mime_type))

        get_logger().debug(
            f"Built {len(content.chapters)} chapter documents, {len(content.manifest)} manifest items",
            LogType.GENERAL
        )
        return content


def build_epub_content(resolved: ResolvedAssets, options: ExportOptions,
                       marker_pattern: str = ILLUSTRATION_MARKER_PATTERN) -> BuiltContent:
    """Build EPUB content from resolved assets.

    Args:
        resolved: Output of resolve_assets
        options: Export options

    Returns:
        BuiltContent ready for packaging
    """
    return ContentBuilder(options, marker_pattern).build(resolved)
