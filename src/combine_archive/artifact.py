"""Artifact value objects.

An :class:`ArtifactInfo` is a view over one manifest entry: the logical path
of a file inside the archive and its declared content type. It is never
persisted on its own.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any

from .errors import UnsupportedOperationError


@dataclass(frozen=True)
class ArtifactInfo:
    """Identifies one artifact by archive path and declared content type."""

    path: str
    content_type: str

    def __post_init__(self) -> None:
        if not isinstance(self.path, str) or not self.path:
            raise ValueError("ArtifactInfo.path must be a non-empty string")
        if not isinstance(self.content_type, str):
            raise ValueError("ArtifactInfo.content_type must be a string")

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {"path": self.path, "content_type": self.content_type}


class ArtifactIterator(Iterator[ArtifactInfo]):
    """Finite sequence of artifacts over a snapshot of manifest entries.

    The ``(path, content_type)`` pairs are copied when the iterator is
    created, so later manifest mutations do not affect an iteration already
    in progress. Removal through the iterator is not supported; use
    ``CombineArchive.remove_artifact``.
    """

    def __init__(self, entries: Iterable[tuple[str, str]]) -> None:
        self._entries = list(entries)
        self._index = 0

    def __iter__(self) -> ArtifactIterator:
        return self

    def __next__(self) -> ArtifactInfo:
        if self._index >= len(self._entries):
            raise StopIteration
        path, content_type = self._entries[self._index]
        self._index += 1
        return ArtifactInfo(path=path, content_type=content_type)

    def __length_hint__(self) -> int:
        return len(self._entries) - self._index

    def remove(self) -> None:
        raise UnsupportedOperationError("Removal not supported by this iterator.")
