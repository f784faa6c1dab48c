"""
Utility modules

Note: the logger is imported directly from its module to keep configuration
free of import cycles:

    from epub_export.utils.unified_logger import get_logger
"""

__all__ = []
