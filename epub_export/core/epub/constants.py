"""
Constants for EPUB export

This module defines the container paths, media types and progress
checkpoints used throughout the export pipeline.
"""

# Container layout
MIMETYPE = 'application/epub+zip'
CONTAINER_PATH = 'META-INF/container.xml'
OEBPS_DIR = 'OEBPS'
PACKAGE_DOCUMENT_PATH = f'{OEBPS_DIR}/content.opf'
NAV_HREF = 'nav.xhtml'
TEXT_DIR = 'text'
IMAGES_DIR = 'images'
DEBUG_DIR = 'debug'
"""Diagnostic side-folder (under OEBPS/) for malformed documents"""

TITLE_PAGE_ID = 'title-page'
TITLE_PAGE_HREF = f'{TEXT_DIR}/title.xhtml'
STATS_PAGE_ID = 'statistics'
STATS_PAGE_HREF = f'{TEXT_DIR}/statistics.xhtml'
NAV_ID = 'nav'
STYLESHEET_ID = 'stylesheet'

XHTML_MEDIA_TYPE = 'application/xhtml+xml'
CSS_MEDIA_TYPE = 'text/css'
PACKAGE_MEDIA_TYPE = 'application/oebps-package+xml'

# Supported asset media types -> file extension (without dot)
ASSET_EXTENSIONS = {
    'image/png': 'png',
    'image/jpeg': 'jpg',
    'image/jpg': 'jpg',
    'image/gif': 'gif',
    'image/webp': 'webp',
    'image/svg+xml': 'svg',
    'audio/mpeg': 'mp3',
    'audio/mp3': 'mp3',
    'audio/mp4': 'm4a',
    'audio/x-m4a': 'm4a',
    'audio/wav': 'wav',
    'audio/x-wav': 'wav',
    'audio/ogg': 'ogg',
}
DEFAULT_ASSET_EXTENSION = 'bin'
DEFAULT_IMAGE_MIME = 'image/png'

# Magic numbers used when neither cache nor data URL declare a type
MAGIC_SIGNATURES = (
    (b'\x89PNG\r\n\x1a\n', 'image/png'),
    (b'\xff\xd8\xff', 'image/jpeg'),
    (b'GIF87a', 'image/gif'),
    (b'GIF89a', 'image/gif'),
)

# Progress checkpoints (before, after) per phase
PROGRESS_CHECKPOINTS = {
    'collecting': (0, 25),
    'resolving': (30, 50),
    'building': (55, 75),
    'packaging': (80, 95),
}
PROGRESS_COMPLETE = 100
