"""
Centralized configuration for the EPUB export pipeline
"""
import os
import logging
from pathlib import Path
from dotenv import load_dotenv

# Setup debug logger for configuration
_config_logger = logging.getLogger('config')

# Check for DEBUG_MODE early (before .env is loaded, check environment)
_debug_mode = os.getenv('DEBUG_MODE', 'false').lower() == 'true'
if _debug_mode:
    logging.basicConfig(level=logging.DEBUG, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    _config_logger.setLevel(logging.DEBUG)
    _config_logger.debug("DEBUG_MODE enabled - verbose logging active")

# .env is looked up in the current working directory
_env_file = Path.cwd() / '.env'

if _debug_mode:
    _config_logger.debug(f"Looking for .env at: {_env_file.absolute()}")
    _config_logger.debug(f".env exists: {_env_file.exists()}")

# A missing .env is fine: every value below has a default
_dotenv_result = load_dotenv(_env_file)
if _debug_mode:
    _config_logger.debug(f"load_dotenv() returned: {_dotenv_result}")

# Book defaults
EPUB_DEFAULT_TITLE = os.getenv('EPUB_DEFAULT_TITLE', 'Untitled Novel')
EPUB_DEFAULT_LANGUAGE = os.getenv('EPUB_DEFAULT_LANGUAGE', 'en')
EPUB_DEFAULT_AUTHOR = os.getenv('EPUB_DEFAULT_AUTHOR', 'Unknown Author')

# Asset resolution
# Seconds allowed for a single cache lookup before it is treated as a miss
ASSET_LOOKUP_TIMEOUT = float(os.getenv('ASSET_LOOKUP_TIMEOUT', '10'))
IMAGE_CACHE_DIR = os.getenv('IMAGE_CACHE_DIR', 'data/image_cache')

# Packaging
EPUB_COMPRESSION_LEVEL = int(os.getenv('EPUB_COMPRESSION_LEVEL', '9'))
# Write raw markup + parse errors into OEBPS/debug/ when a document is malformed
EPUB_DEBUG_DIAGNOSTICS = os.getenv('EPUB_DEBUG_DIAGNOSTICS', 'true').lower() == 'true'

# Output
OUTPUT_DIR = os.getenv('OUTPUT_DIR', 'exported_books')

# Debug mode (reload after .env is loaded)
DEBUG_MODE = os.getenv('DEBUG_MODE', 'false').lower() == 'true'

# ============================================================================
# PLACEMENT MARKER CONFIGURATION
# ============================================================================
# Markers are bracketed tokens embedded in translated text, e.g.
# "Before [ILLUSTRATION-1] after" or "a footnote reference[1]".

ILLUSTRATION_MARKER_KEYWORD = os.getenv('ILLUSTRATION_MARKER_KEYWORD', 'ILL(?:USTRATION)?')
"""Regex for the keyword part of an illustration marker (ILL-1, ILLUSTRATION-1)"""

ILLUSTRATION_MARKER_PATTERN = os.getenv(
    'ILLUSTRATION_MARKER_PATTERN',
    rf'\[({ILLUSTRATION_MARKER_KEYWORD}-\d+[A-Za-z]*)\]'
)
"""Regex with one group capturing the bare illustration marker"""

MARKER_BRACKETS = "[]"
"""Characters stripped from both ends of a marker during normalization"""


def normalize_marker(marker) -> str:
    """Strip whitespace and surrounding brackets: "[ILL-1]" -> "ILL-1"."""
    if marker is None:
        return ""
    return str(marker).strip().strip(MARKER_BRACKETS).strip()


def bracket_marker(marker: str) -> str:
    """Canonical in-text form of a marker: "ILL-1" -> "[ILL-1]"."""
    return f"[{normalize_marker(marker)}]"


# EPUB-specific configuration
NAMESPACES = {
    'opf': 'http://www.idpf.org/2007/opf',
    'dc': 'http://purl.org/dc/elements/1.1/',
    'xhtml': 'http://www.w3.org/1999/xhtml',
    'epub': 'http://www.idpf.org/2007/ops',
    'container': 'urn:oasis:names:tc:opendocument:xmlns:container',
}

# Log loaded configuration in debug mode
if DEBUG_MODE or _debug_mode:
    _config_logger.setLevel(logging.DEBUG)
    _config_logger.debug("=" * 60)
    _config_logger.debug("LOADED CONFIGURATION VALUES:")
    _config_logger.debug("=" * 60)
    _config_logger.debug(f"   EPUB_DEFAULT_TITLE: {EPUB_DEFAULT_TITLE}")
    _config_logger.debug(f"   EPUB_DEFAULT_LANGUAGE: {EPUB_DEFAULT_LANGUAGE}")
    _config_logger.debug(f"   ASSET_LOOKUP_TIMEOUT: {ASSET_LOOKUP_TIMEOUT}")
    _config_logger.debug(f"   IMAGE_CACHE_DIR: {IMAGE_CACHE_DIR}")
    _config_logger.debug(f"   EPUB_COMPRESSION_LEVEL: {EPUB_COMPRESSION_LEVEL}")
    _config_logger.debug(f"   EPUB_DEBUG_DIAGNOSTICS: {EPUB_DEBUG_DIAGNOSTICS}")
    _config_logger.debug(f"   ILLUSTRATION_MARKER_PATTERN: {ILLUSTRATION_MARKER_PATTERN}")
    _config_logger.debug("=" * 60)
