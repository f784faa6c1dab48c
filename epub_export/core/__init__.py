"""
Core export modules
"""
from .epub import export_epub

__all__ = [
    'export_epub'
]
