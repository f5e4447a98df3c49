"""Exception hierarchy for combine archive operations."""

from __future__ import annotations


class CombineArchiveError(Exception):
    """Base exception for combine archive errors."""


class InvalidArgumentError(CombineArchiveError, ValueError):
    """Raised when a caller passes an invalid, occupied or unknown artifact path.

    Always raised before any collaborator is mutated.
    """


class InvalidPathError(InvalidArgumentError):
    """Raised when a path string is not valid in the archive path space."""


class ArchiveIOError(CombineArchiveError, OSError):
    """Raised when an underlying filesystem or store operation fails."""


class UnsupportedOperationError(CombineArchiveError, NotImplementedError):
    """Raised when an operation is not supported, e.g. removal through an iterator."""


class ArchiveClosedError(CombineArchiveError, RuntimeError):
    """Raised when an archive or its filesystem is used after close()."""


class ArchiveConfigError(CombineArchiveError, ValueError):
    """Raised when archive configuration is missing or invalid."""
