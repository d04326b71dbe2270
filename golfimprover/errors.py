"""Exception types shared across Golf Improver services."""

from __future__ import annotations


class GolfImproverError(Exception):
    """Base class for application errors."""


class StorageError(GolfImproverError):
    """Raised when a document store read or write fails."""
