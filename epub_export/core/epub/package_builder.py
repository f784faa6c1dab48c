"""
Packaging: fourth stage of the export pipeline.

Writes the OCF container in memory with the ordering EPUB readers require:

1. mimetype (first, uncompressed, literal application/epub+zip)
2. META-INF/container.xml
3. OEBPS/content.opf, OEBPS/nav.xhtml, stylesheet
4. title page, chapters, statistics page
5. images

Every generated XML document is parsed with lxml afterwards. Malformed
documents never block packaging; their raw text and a parse-error summary
are added under OEBPS/debug/ for diagnosis.
"""

import io
import posixpath
import zipfile
from typing import Iterable, List, Optional, Tuple

from lxml import etree

from epub_export.config import EPUB_COMPRESSION_LEVEL, EPUB_DEBUG_DIAGNOSTICS, NAMESPACES
from epub_export.utils.unified_logger import get_logger, LogType

from .constants import (
    CONTAINER_PATH,
    DEBUG_DIR,
    MIMETYPE,
    NAV_HREF,
    OEBPS_DIR,
    PACKAGE_DOCUMENT_PATH,
    PACKAGE_MEDIA_TYPE,
)
from .exceptions import PackagingError
from .models import (
    BuiltContent,
    DocumentParseError,
    PackagedResult,
    ResolvedAsset,
    ValidationReport,
)
from .stylesheet import STYLESHEET_HREF
from .xml_builder import XHTML_DOCTYPE, XmlElement, escape_attr, serialize_document

BOOK_ID = 'book-id'


def create_container_xml(package_path: str = PACKAGE_DOCUMENT_PATH) -> str:
    """Create META-INF/container.xml content pointing at the package document."""
    return f'''<?xml version="1.0" encoding="utf-8"?>
<container version="1.0" xmlns="{NAMESPACES['container']}">
  <rootfiles>
    <rootfile full-path="{escape_attr(package_path)}" media-type="{PACKAGE_MEDIA_TYPE}"/>
  </rootfiles>
</container>
'''


def create_content_opf(content: BuiltContent) -> str:
    """Create the EPUB 3 package document (metadata, manifest, spine)."""
    meta = content.metadata
    package = XmlElement('package', {
        'xmlns': NAMESPACES['opf'],
        'version': '3.0',
        'unique-identifier': BOOK_ID,
        'xml:lang': meta.language,
    })

    metadata = package.element('metadata', {'xmlns:dc': NAMESPACES['dc']})
    metadata.element('dc:identifier', {'id': BOOK_ID}, text=meta.identifier)
    metadata.element('dc:title', text=meta.title)
    metadata.element('dc:language', text=meta.language)
    if meta.creator:
        metadata.element('dc:creator', text=meta.creator)
    if meta.description:
        metadata.element('dc:description', text=meta.description)
    if meta.publisher:
        metadata.element('dc:publisher', text=meta.publisher)
    metadata.element('meta', {'property': 'dcterms:modified'}, text=meta.modified)

    manifest = package.element('manifest')
    for item in content.manifest:
        manifest.element('item', {
            'id': item.id,
            'href': item.href,
            'media-type': item.media_type,
            'properties': item.properties,
        })

    spine = package.element('spine')
    for item in content.spine:
        spine.element('itemref', {'idref': item.idref, 'linear': 'yes' if item.linear else 'no'})

    return serialize_document(package, xhtml=False)


def create_nav_xhtml(content: BuiltContent) -> str:
    """Create the navigation document (ordered list of chapter links)."""
    language = content.metadata.language
    html = XmlElement('html', {
        'xmlns': NAMESPACES['xhtml'],
        'xmlns:epub': NAMESPACES['epub'],
        'lang': language,
        'xml:lang': language,
    })
    head = html.element('head')
    head.element('meta', {'charset': 'utf-8'})
    head.element('title', text='Table of Contents')
    head.element('link', {'rel': 'stylesheet', 'type': 'text/css', 'href': STYLESHEET_HREF})

    nav = html.element('body').element('nav', {'epub:type': 'toc', 'id': 'toc'})
    nav.element('h1', text='Table of Contents')
    ol = nav.element('ol')
    if content.title_page:
        ol.element('li').element('a', {'href': content.title_page.href}, text=content.title_page.title)
    for item in content.nav:
        ol.element('li').element('a', {'href': item.href}, text=item.title)
    if content.stats_page:
        ol.element('li').element('a', {'href': content.stats_page.href}, text=content.stats_page.title)

    return serialize_document(html, xhtml=True, doctype=XHTML_DOCTYPE)


_PARSER = etree.XMLParser(resolve_entities=False, no_network=True)


def check_well_formed(document: str, text: str) -> Optional[DocumentParseError]:
    """Parse a generated document, returning the error if it is malformed."""
    try:
        etree.fromstring(text.encode('utf-8'), parser=_PARSER)
    except etree.XMLSyntaxError as e:
        return DocumentParseError(document=document, message=str(e))
    return None


def validate_package(content: BuiltContent, assets: Iterable[ResolvedAsset]) -> ValidationReport:
    """Structural checks evaluated after assembly."""
    report = ValidationReport()

    if not content.chapters:
        report.errors.append("Package contains no chapter documents")
    if not content.manifest:
        report.errors.append("Manifest is empty")

    ids = [item.id for item in content.manifest]
    duplicates = sorted({i for i in ids if ids.count(i) > 1})
    if duplicates:
        report.errors.append(f"Duplicate manifest ids: {', '.join(duplicates)}")

    declared = set(ids)
    for item in content.spine:
        if item.idref not in declared:
            report.errors.append(f"Spine item '{item.idref}' is not in the manifest")

    if not any(item.properties and 'nav' in item.properties.split() for item in content.manifest):
        report.warnings.append("No manifest item is flagged as the navigation document")

    hrefs = {item.href for item in content.manifest}
    for asset in assets:
        if asset.href not in hrefs:
            report.warnings.append(f"Asset '{asset.id}' is not declared in the manifest")

    report.valid = not report.errors
    return report


class PackageBuilder:
    """Assembles the EPUB container in memory."""

    def __init__(self, compression_level: int = EPUB_COMPRESSION_LEVEL,
                 debug_diagnostics: bool = EPUB_DEBUG_DIAGNOSTICS):
        """Initialize builder.

        Args:
            compression_level: Deflate level (0-9) for every entry but mimetype
            debug_diagnostics: Embed raw markup of malformed documents
        """
        self.compression_level = compression_level
        self.debug_diagnostics = debug_diagnostics
        self.logger = get_logger()

    def _entries(self, content: BuiltContent) -> List[Tuple[str, str]]:
        """Text entries in mandatory container order (after mimetype)."""
        def oebps(href: str) -> str:
            return f"{OEBPS_DIR}/{href}"

        entries = [
            (CONTAINER_PATH, create_container_xml()),
            (PACKAGE_DOCUMENT_PATH, create_content_opf(content)),
            (oebps(NAV_HREF), create_nav_xhtml(content)),
            (oebps(STYLESHEET_HREF), content.stylesheet),
        ]
        for doc in content.documents:
            entries.append((oebps(doc.href), doc.content))
        return entries

    def package(self, content: BuiltContent, assets: Iterable[ResolvedAsset]) -> PackagedResult:
        """Write the container.

        Raises:
            PackagingError: if the archive itself cannot be written
        """
        assets = list(assets)
        entries = self._entries(content)

        parse_errors: List[DocumentParseError] = []
        raw_documents: List[Tuple[str, str]] = []
        for path, text in entries:
            if not path.endswith(('.xml', '.opf', '.xhtml')):
                continue
            error = check_well_formed(path, text)
            if error is not None:
                parse_errors.append(error)
                raw_documents.append((path, text))
                self.logger.warning(f"Malformed document {path}: {error.message}", LogType.PACKAGE)

        buffer = io.BytesIO()
        try:
            with zipfile.ZipFile(buffer, 'w', zipfile.ZIP_DEFLATED, compresslevel=self.compression_level) as epub_zip:
                # mimetype FIRST and UNCOMPRESSED (OCF requirement)
                epub_zip.writestr('mimetype', MIMETYPE, compress_type=zipfile.ZIP_STORED)

                for path, text in entries:
                    epub_zip.writestr(path, text.encode('utf-8'))

                for asset in assets:
                    epub_zip.writestr(f"{OEBPS_DIR}/{asset.href}", asset.data)

                if parse_errors and self.debug_diagnostics:
                    self._write_diagnostics(epub_zip, parse_errors, raw_documents)
        except (ValueError, OSError, zipfile.BadZipFile) as e:
            raise PackagingError(f"Failed to write EPUB container: {e}") from e

        validation = validate_package(content, assets)
        for error in parse_errors:
            validation.warnings.append(f"{error.document}: {error.message}")

        data = buffer.getvalue()
        self.logger.info(
            f"Packaged {len(content.documents)} documents and {len(assets)} assets ({len(data):,} bytes)",
            LogType.PACKAGE,
            {'size': len(data), 'valid': validation.valid}
        )
        return PackagedResult(data=data, validation=validation, parse_errors=parse_errors)

    def _write_diagnostics(self, epub_zip: zipfile.ZipFile, parse_errors: List[DocumentParseError],
                           raw_documents: List[Tuple[str, str]]) -> None:
        summary = ["XML parse errors detected during EPUB export", ""]
        for error in parse_errors:
            summary.append(f"{error.document}: {error.message}")
        epub_zip.writestr(f"{OEBPS_DIR}/{DEBUG_DIR}/parse-errors.txt", '\n'.join(summary) + '\n')

        for path, text in raw_documents:
            name = posixpath.splitext(posixpath.basename(path))[0]
            epub_zip.writestr(f"{OEBPS_DIR}/{DEBUG_DIR}/text/{name}.raw.xhtml", text.encode('utf-8'))


def package_epub(content: BuiltContent, assets: Iterable[ResolvedAsset],
                 compression_level: int = EPUB_COMPRESSION_LEVEL,
                 debug_diagnostics: bool = EPUB_DEBUG_DIAGNOSTICS) -> PackagedResult:
    """Package built content and assets into EPUB bytes."""
    return PackageBuilder(compression_level, debug_diagnostics).package(content, assets)
