"""
Binary asset caches consulted by the asset resolver.

Every cache implements ``async get_blob(CacheKey) -> CachedBlob | None``.
Absence is not an error: None only triggers the inline fallback.
"""

import asyncio
import os
import re
import sqlite3
import threading
import time
from typing import Dict, Optional, Tuple

import aiofiles
import aiofiles.os

from epub_export.core.epub.constants import ASSET_EXTENSIONS
from epub_export.core.epub.models import CacheKey, CachedBlob

_UNSAFE_PATH_CHARS = re.compile(r'[^A-Za-z0-9._-]')

# Extension -> preferred mime type (first mapping wins)
EXTENSION_MIME_TYPES: Dict[str, str] = {}
for _mime, _ext in ASSET_EXTENSIONS.items():
    EXTENSION_MIME_TYPES.setdefault(_ext, _mime)


def _safe_component(value: str) -> str:
    return _UNSAFE_PATH_CHARS.sub('_', value) or '_'


class InMemoryBlobCache:
    """Dictionary-backed cache, used by tests and embedding callers."""

    def __init__(self):
        self._blobs: Dict[Tuple[str, str, int], CachedBlob] = {}

    @staticmethod
    def _key(key: CacheKey) -> Tuple[str, str, int]:
        return key.chapter_id, key.marker, key.version

    async def get_blob(self, key: CacheKey) -> Optional[CachedBlob]:
        return self._blobs.get(self._key(key))

    async def put_blob(self, key: CacheKey, data: bytes, mime_type: Optional[str] = None) -> None:
        self._blobs[self._key(key)] = CachedBlob(data=data, mime_type=mime_type)

    def __len__(self) -> int:
        return len(self._blobs)


class DirectoryBlobCache:
    """
    File-per-blob cache.

    Layout: ``<root>/<chapterId>/<marker>[.v<version>].<ext>``; the version
    suffix is omitted for version 1. The mime type comes from the extension.
    """

    def __init__(self, root: str):
        self.root = root

    def _chapter_dir(self, key: CacheKey) -> str:
        return os.path.join(self.root, _safe_component(key.chapter_id))

    @staticmethod
    def _stem(key: CacheKey) -> str:
        marker = _safe_component(key.marker)
        return marker if key.version == 1 else f"{marker}.v{key.version}"

    async def get_blob(self, key: CacheKey) -> Optional[CachedBlob]:
        chapter_dir = self._chapter_dir(key)
        if not await aiofiles.os.path.isdir(chapter_dir):
            return None

        stem = self._stem(key)
        for name in sorted(await aiofiles.os.listdir(chapter_dir)):
            base, ext = os.path.splitext(name)
            if base != stem:
                continue
            async with aiofiles.open(os.path.join(chapter_dir, name), 'rb') as f:
                data = await f.read()
            return CachedBlob(data=data, mime_type=EXTENSION_MIME_TYPES.get(ext.lstrip('.').lower()))
        return None

    async def put_blob(self, key: CacheKey, data: bytes, mime_type: Optional[str] = None) -> str:
        """Store a blob, returning the file path written."""
        chapter_dir = self._chapter_dir(key)
        await aiofiles.os.makedirs(chapter_dir, exist_ok=True)
        extension = ASSET_EXTENSIONS.get(mime_type or '', 'bin')
        path = os.path.join(chapter_dir, f"{self._stem(key)}.{extension}")
        async with aiofiles.open(path, 'wb') as f:
            await f.write(data)
        return path


class SqliteBlobCache:
    """
    SQLite-backed cache (table ``image_cache``).

    Queries run in a worker thread; connections are thread-local.
    """

    def __init__(self, db_path: str):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._local = threading.local()
        self._lock = threading.RLock()

        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        self._initialize_schema()

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, 'connection') or self._local.connection is None:
            self._local.connection = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                timeout=30.0
            )
            self._local.connection.row_factory = sqlite3.Row
        return self._local.connection

    def _initialize_schema(self):
        """Create the cache table if it doesn't exist."""
        with self._lock:
            conn = self._get_connection()
            conn.execute("""
                CREATE TABLE IF NOT EXISTS image_cache (
                    chapter_id TEXT NOT NULL,
                    marker TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 1,
                    mime_type TEXT,
                    data BLOB NOT NULL,
                    created_at REAL NOT NULL,
                    PRIMARY KEY (chapter_id, marker, version)
                )
            """)
            conn.commit()

    def _select(self, key: CacheKey) -> Optional[CachedBlob]:
        with self._lock:
            row = self._get_connection().execute(
                "SELECT data, mime_type FROM image_cache WHERE chapter_id = ? AND marker = ? AND version = ?",
                (key.chapter_id, key.marker, key.version)
            ).fetchone()
        if row is None:
            return None
        return CachedBlob(data=bytes(row['data']), mime_type=row['mime_type'])

    def _upsert(self, key: CacheKey, data: bytes, mime_type: Optional[str]) -> None:
        with self._lock:
            conn = self._get_connection()
            conn.execute(
                """
                INSERT OR REPLACE INTO image_cache (chapter_id, marker, version, mime_type, data, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (key.chapter_id, key.marker, key.version, mime_type, sqlite3.Binary(data), time.time())
            )
            conn.commit()

    async def get_blob(self, key: CacheKey) -> Optional[CachedBlob]:
        return await asyncio.to_thread(self._select, key)

    async def put_blob(self, key: CacheKey, data: bytes, mime_type: Optional[str] = None) -> None:
        await asyncio.to_thread(self._upsert, key, data, mime_type)

    def close(self):
        """Close the connection of the calling thread."""
        if hasattr(self._local, 'connection') and self._local.connection:
            self._local.connection.close()
            self._local.connection = None
