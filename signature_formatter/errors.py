"""Exceptions raised while formatting signatures and reclaiming files."""

from __future__ import annotations


class ImageProcessingError(RuntimeError):
    """Base class for failures that abort a formatting request."""


class DecodeError(ImageProcessingError):
    """Raised when the source file is not a readable image."""


class CodecError(ImageProcessingError):
    """Raised when an image cannot be encoded as JPEG."""


class DeletionError(RuntimeError):
    """Raised when a transient file cannot be removed."""

    def __init__(self, message: str, *, transient: bool) -> None:
        self.transient = transient
        super().__init__(message)
