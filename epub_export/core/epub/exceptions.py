"""
Custom exceptions for the EPUB export pipeline.

This module defines specific exception types for different failure scenarios,
enabling better error handling and debugging. Non-fatal data problems are not
exceptions: they travel as ExportWarning values returned by each stage.
"""


class EpubExportError(Exception):
    """Base exception for all EPUB export errors.

    Attributes:
        message: Error description
        context: Optional dictionary with extra diagnostic details
    """
    def __init__(self, message: str, context: dict = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class CollectionError(EpubExportError):
    """Raised when the chapter snapshot cannot be read at all.

    Attributes:
        chapter_id: Chapter being normalized when the failure happened
    """
    def __init__(self, message: str, chapter_id: str = None, context: dict = None):
        super().__init__(message, context)
        self.chapter_id = chapter_id


class AssetResolutionError(EpubExportError):
    """Raised when an asset lookup fails in the cache store.

    Resolution failures never abort an export; the resolver converts this
    into a missing reference plus a warning.

    Attributes:
        chapter_id: Owning chapter
        marker: Placement marker being resolved
    """
    def __init__(self, message: str, chapter_id: str = None, marker: str = None, context: dict = None):
        super().__init__(message, context)
        self.chapter_id = chapter_id
        self.marker = marker


class AssetDecodeError(AssetResolutionError):
    """Raised when an inline data payload cannot be decoded.

    Attributes:
        payload_preview: First 60 chars of the offending payload
    """
    def __init__(
        self,
        message: str,
        chapter_id: str = None,
        marker: str = None,
        payload_preview: str = None
    ):
        super().__init__(message, chapter_id=chapter_id, marker=marker)
        self.payload_preview = payload_preview




class PackagingError(EpubExportError):
    """Raised when the container cannot be assembled or fails validation.

    Attributes:
        errors: Structural validation errors
    """
    def __init__(self, message: str, errors: list = None, context: dict = None):
        super().__init__(message, context)
        self.errors = errors or []


class ExportCancelledError(EpubExportError):
    """Raised when an export is aborted through its cancellation token.

    Attributes:
        phase: Pipeline phase active when cancellation was observed
        reason: Why the token was cancelled (manual or deadline)
    """
    def __init__(self, message: str = "Export cancelled", phase: str = None, reason: str = None):
        super().__init__(message)
        self.phase = phase
        self.reason = reason
