"""
Persistence module for binary asset caches.
"""

from .blob_cache import DirectoryBlobCache, InMemoryBlobCache, SqliteBlobCache

__all__ = ['InMemoryBlobCache', 'DirectoryBlobCache', 'SqliteBlobCache']
