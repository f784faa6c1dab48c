"""Unit tests for EPUB container packaging."""

import io
import zipfile
from dataclasses import replace

import pytest
from lxml import etree

from epub_export.core.epub.content_builder import build_epub_content
from epub_export.core.epub.models import ExportOptions, GeneratedDocument, ManifestItem, SpineItem
from epub_export.core.epub.package_builder import (
    PackageBuilder,
    check_well_formed,
    create_container_xml,
    create_content_opf,
    create_nav_xhtml,
    package_epub,
    validate_package,
)

OPF = '{http://www.idpf.org/2007/opf}'
DC = '{http://purl.org/dc/elements/1.1/}'
XHTML = '{http://www.w3.org/1999/xhtml}'


@pytest.fixture
def built(resolved_book):
    """Built content of the resolved two-chapter book."""
    return build_epub_content(resolved_book, ExportOptions(author="Jane Doe"))


def open_zip(data):
    return zipfile.ZipFile(io.BytesIO(data))


class TestContainerDocuments:
    """Test container.xml, content.opf and nav.xhtml."""

    def test_container_xml(self):
        """container.xml points at the package document."""
        root = etree.fromstring(create_container_xml().encode('utf-8'))
        rootfile = root.find('.//{urn:oasis:names:tc:opendocument:xmlns:container}rootfile')

        assert rootfile.get('full-path') == 'OEBPS/content.opf'
        assert rootfile.get('media-type') == 'application/oebps-package+xml'

    def test_content_opf_metadata(self, built):
        """The package document carries the book metadata."""
        root = etree.fromstring(create_content_opf(built).encode('utf-8'))

        assert root.get('version') == '3.0'
        assert root.get('unique-identifier') == 'book-id'
        metadata = root.find(f'{OPF}metadata')
        assert metadata.find(f'{DC}identifier').text == built.metadata.identifier
        assert metadata.find(f'{DC}identifier').get('id') == 'book-id'
        assert metadata.find(f'{DC}title').text == "The Test Novel"
        assert metadata.find(f'{DC}language').text == 'en'
        assert metadata.find(f'{DC}creator').text == "Jane Doe"
        modified = metadata.find(f'{OPF}meta')
        assert modified.get('property') == 'dcterms:modified'
        assert modified.text == built.metadata.modified

    def test_content_opf_manifest_and_spine(self, built):
        """Manifest and spine mirror the built content."""
        root = etree.fromstring(create_content_opf(built).encode('utf-8'))

        items = root.findall(f'{OPF}manifest/{OPF}item')
        assert [i.get('id') for i in items] == [m.id for m in built.manifest]
        nav = next(i for i in items if i.get('id') == 'nav')
        assert nav.get('properties') == 'nav'
        image = next(i for i in items if i.get('id') == 'img-ch-1-ILL-1')
        assert image.get('href') == 'images/img-ch-1-ILL-1.png'
        assert image.get('media-type') == 'image/png'
        # Optional properties are omitted rather than left empty
        chapter = next(i for i in items if i.get('id') == 'chapter-001')
        assert chapter.get('properties') is None

        itemrefs = root.findall(f'{OPF}spine/{OPF}itemref')
        assert [i.get('idref') for i in itemrefs] == ['title-page', 'chapter-001', 'chapter-002', 'statistics']
        assert {i.get('linear') for i in itemrefs} == {'yes'}

    def test_nav_document(self, built):
        """The navigation document lists every document in reading order."""
        root = etree.fromstring(create_nav_xhtml(built).encode('utf-8'))

        nav = root.find(f'.//{XHTML}nav')
        assert nav.get('{http://www.idpf.org/2007/ops}type') == 'toc'
        links = [(a.get('href'), a.text) for a in nav.iter(f'{XHTML}a')]
        assert links == [
            ('text/title.xhtml', "The Test Novel"),
            ('text/chapter-001.xhtml', "Chapter 1: The Beginning"),
            ('text/chapter-002.xhtml', "Chapter 2: The Journey"),
            ('text/statistics.xhtml', "Acknowledgments"),
        ]


class TestWellFormedness:
    """Test the parse check."""

    def test_well_formed(self):
        """Valid documents return None."""
        assert check_well_formed('a.xhtml', '<p>ok</p>') is None

    def test_malformed(self):
        """Malformed documents return a DocumentParseError."""
        error = check_well_formed('OEBPS/text/bad.xhtml', '<p>unclosed')

        assert error.document == 'OEBPS/text/bad.xhtml'
        assert error.message

    def test_entities_not_resolved(self):
        """External entities are never expanded."""
        text = ('<?xml version="1.0"?><!DOCTYPE p [<!ENTITY x SYSTEM "file:///etc/passwd">]>'
                '<p>&x;</p>')

        assert check_well_formed('evil.xhtml', text) is None


class TestValidation:
    """Test structural validation."""

    def test_valid_package(self, built, resolved_book):
        """Built content validates cleanly."""
        report = validate_package(built, resolved_book.assets)

        assert report.valid is True
        assert report.errors == []
        assert report.warnings == []

    def test_no_chapters(self, built):
        """A package without chapters is invalid."""
        report = validate_package(replace(built, chapters=[]), [])

        assert report.valid is False
        assert "Package contains no chapter documents" in report.errors

    def test_empty_manifest(self, built):
        """An empty manifest is invalid."""
        report = validate_package(replace(built, manifest=[], spine=[]), [])

        assert "Manifest is empty" in report.errors

    def test_duplicate_ids(self, built):
        """Duplicate manifest ids are errors."""
        manifest = built.manifest + [ManifestItem(id='chapter-001', href='x.xhtml', media_type='application/xhtml+xml')]

        report = validate_package(replace(built, manifest=manifest), [])

        assert report.errors == ["Duplicate manifest ids: chapter-001"]

    def test_dangling_spine_item(self, built):
        """Spine items must reference manifest items."""
        report = validate_package(replace(built, spine=built.spine + [SpineItem('ghost')]), [])

        assert report.errors == ["Spine item 'ghost' is not in the manifest"]

    def test_undeclared_asset_warns(self, built, resolved_book):
        """Assets missing from the manifest produce warnings."""
        manifest = [m for m in built.manifest if m.id != 'img-ch-1-ILL-1']

        report = validate_package(replace(built, manifest=manifest), resolved_book.assets)

        assert report.valid is True
        assert report.warnings == ["Asset 'img-ch-1-ILL-1' is not declared in the manifest"]

    def test_missing_nav_property_warns(self, built):
        """A manifest without a nav item produces a warning."""
        manifest = [replace(m, properties=None) for m in built.manifest]

        report = validate_package(replace(built, manifest=manifest), [])

        assert report.warnings == ["No manifest item is flagged as the navigation document"]


class TestPackaging:
    """Test the container layout."""

    def test_mimetype_first_and_stored(self, built, resolved_book):
        """mimetype is the first entry, uncompressed, with the literal value."""
        result = package_epub(built, resolved_book.assets)

        with open_zip(result.data) as epub:
            first = epub.infolist()[0]
            assert first.filename == 'mimetype'
            assert first.compress_type == zipfile.ZIP_STORED
            assert epub.read('mimetype') == b'application/epub+zip'
        # Readers sniff the literal at a fixed offset
        assert result.data[30:38] == b'mimetype'
        assert result.data[38:58] == b'application/epub+zip'

    def test_entry_order(self, built, resolved_book):
        """Entries follow the mandatory container order."""
        result = package_epub(built, resolved_book.assets)

        with open_zip(result.data) as epub:
            names = epub.namelist()
        assert names == [
            'mimetype',
            'META-INF/container.xml',
            'OEBPS/content.opf',
            'OEBPS/nav.xhtml',
            'OEBPS/styles/stylesheet.css',
            'OEBPS/text/title.xhtml',
            'OEBPS/text/chapter-001.xhtml',
            'OEBPS/text/chapter-002.xhtml',
            'OEBPS/text/statistics.xhtml',
            'OEBPS/images/img-ch-1-ILL-1.png',
        ]

    def test_other_entries_compressed(self, built, resolved_book):
        """Everything but mimetype is deflated."""
        result = package_epub(built, resolved_book.assets)

        with open_zip(result.data) as epub:
            for info in epub.infolist()[1:]:
                assert info.compress_type == zipfile.ZIP_DEFLATED

    def test_asset_bytes(self, built, resolved_book, png_bytes):
        """Asset payloads are written unchanged."""
        result = package_epub(built, resolved_book.assets)

        with open_zip(result.data) as epub:
            assert epub.read('OEBPS/images/img-ch-1-ILL-1.png') == png_bytes

    def test_result_metadata(self, built, resolved_book):
        """The result reports size and validation."""
        result = package_epub(built, resolved_book.assets)

        assert result.size == len(result.data)
        assert result.validation.valid is True
        assert result.parse_errors == []

    def test_every_document_parses(self, built, resolved_book):
        """All XML entries of the container are well-formed."""
        result = package_epub(built, resolved_book.assets)

        with open_zip(result.data) as epub:
            for name in epub.namelist():
                if name.endswith(('.xml', '.opf', '.xhtml')):
                    etree.fromstring(epub.read(name))


class TestDiagnostics:
    """Test the diagnostic side-folder for malformed documents."""

    @pytest.fixture
    def broken(self, built):
        """Built content with one malformed chapter."""
        bad = GeneratedDocument(id='chapter-002', href='text/chapter-002.xhtml', title='Bad',
                                content='<html><body><p>unclosed</body></html>', chapter_id='ch-2')
        return replace(built, chapters=[built.chapters[0], bad])

    def test_debug_entries_written(self, broken, resolved_book):
        """Raw markup and a summary are added under OEBPS/debug/."""
        result = PackageBuilder(debug_diagnostics=True).package(broken, resolved_book.assets)

        assert [e.document for e in result.parse_errors] == ['OEBPS/text/chapter-002.xhtml']
        with open_zip(result.data) as epub:
            names = epub.namelist()
            assert 'OEBPS/debug/parse-errors.txt' in names
            assert 'OEBPS/debug/text/chapter-002.raw.xhtml' in names
            summary = epub.read('OEBPS/debug/parse-errors.txt').decode('utf-8')
        assert 'OEBPS/text/chapter-002.xhtml' in summary

    def test_parse_errors_do_not_block(self, broken, resolved_book):
        """Malformed documents are still packaged and only warn."""
        result = PackageBuilder(debug_diagnostics=True).package(broken, resolved_book.assets)

        assert result.validation.valid is True
        assert any('chapter-002.xhtml' in w for w in result.validation.warnings)
        with open_zip(result.data) as epub:
            assert 'OEBPS/text/chapter-002.xhtml' in epub.namelist()

    def test_diagnostics_disabled(self, broken, resolved_book):
        """Without debug diagnostics no side-folder is written."""
        result = PackageBuilder(debug_diagnostics=False).package(broken, resolved_book.assets)

        with open_zip(result.data) as epub:
            assert not any(name.startswith('OEBPS/debug/') for name in epub.namelist())
        assert len(result.parse_errors) == 1
