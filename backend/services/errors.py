"""
Exception types shared by the card export services.
"""
from typing import Optional


class TimelineCardsError(Exception):
    """Base class for card export errors."""


class ImageLoadError(TimelineCardsError):
    """A card photo could not be read or decoded. Recovered per card."""

    def __init__(self, filename: str, cause: Optional[BaseException] = None):
        self.filename = filename
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Could not load image {filename!r}{detail}")


class DocumentRenderError(TimelineCardsError):
    """The document backend failed. Fatal to the whole export."""
