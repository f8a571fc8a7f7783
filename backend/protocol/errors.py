"""
Shared exception base for the media pipeline.

Concrete errors live beside the code that raises them; this module holds
only the common base and the I/O wrapper used by every writer.
"""

from __future__ import annotations

from pathlib import Path
from typing import Union


class MediaError(Exception):
    """Base class for all media generation and decoding errors."""


class MediaIOError(MediaError):
    """
    Raised when writing generated media to disk fails.

    Wraps the underlying OSError (available as __cause__) and records
    which operation failed on which path.
    """

    def __init__(self, operation: str, path: Union[str, Path], reason: str) -> None:
        super().__init__(f"{operation} failed for {path}: {reason}")
        self.operation = operation
        self.path = str(path)
        self.reason = reason
