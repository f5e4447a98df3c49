"""Combine archive facade.

This module implements the CombineArchive class, the single entry point for
the artifact lifecycle of one archive. It keeps three collaborators
consistent:

- the virtual filesystem holding the artifact bytes
- the manifest indexing artifact path -> content type
- the metadata record holding archive timestamps and annotations

Mutation ordering:
    Every create/remove mutates the filesystem before the manifest and then
    persists the manifest. The filesystem is the ground truth, so divergence
    can always be detected with check_consistency() and repaired with
    rebuild_manifest().
"""

from __future__ import annotations

import logging
import mimetypes
import os
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import IO, TYPE_CHECKING, Any

from .artifact import ArtifactInfo, ArtifactIterator
from .config import DEFAULT_CONTENT_TYPE
from .errors import (
    ArchiveClosedError,
    ArchiveIOError,
    InvalidArgumentError,
    InvalidPathError,
)
from .filesystem import ROOT, CopySource, VirtualFilesystem, read_source, resolve_path
from .manifest import ManifestStore
from .metadata import MetadataStore

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)


@contextmanager
def _archive_io(action: str) -> Iterator[None]:
    """Map collaborator I/O failures onto ArchiveIOError."""
    try:
        yield
    except ArchiveIOError:
        raise
    except OSError as exc:
        raise ArchiveIOError(f"{action} failed: {exc}") from exc


@dataclass(frozen=True)
class ConsistencyReport:
    """Divergence between the manifest and the filesystem."""

    missing_files: tuple[str, ...] = ()
    unindexed_files: tuple[str, ...] = ()

    @property
    def consistent(self) -> bool:
        return not self.missing_files and not self.unindexed_files

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "consistent": self.consistent,
            "missing_files": list(self.missing_files),
            "unindexed_files": list(self.unindexed_files),
        }


class CombineArchive:
    """Artifact lifecycle facade over one archive container.

    The archive owns its filesystem handle exclusively and releases it exactly
    once, in close(). The instance moves one way from open to closed; every
    operation on a closed archive raises ArchiveClosedError.

    Thread Safety:
        None. At most one thread may drive an instance at a time; callers
        must serialize access externally. Streams returned by read_artifact()
        and write_artifact() are owned by the caller. Removing an artifact
        while a stream to it is open is filesystem-dependent: with the
        bundled filesystems an open reader keeps its snapshot, and closing an
        open writer recreates the file without a manifest entry.

    Example usage:
        with open_archive(Path("study.omex")) as archive:
            info = archive.create_artifact("/models/model1.xml", "application/xml", b"<sbml/>")
            with archive.read_artifact(info) as stream:
                data = stream.read()
    """

    def __init__(
        self,
        fs: VirtualFilesystem,
        manifest: ManifestStore,
        metadata: MetadataStore,
        *,
        rollback_on_failure: bool = True,
        reserved_paths: Iterable[str] = (),
    ) -> None:
        """Initialize the facade.

        Args:
            fs: Filesystem rooted at the archive container. Ownership passes
                to the archive.
            manifest: Manifest store persisted through fs.
            metadata: Metadata store persisted through fs.
            rollback_on_failure: If True, a failed create removes the file it
                created before the error propagates.
            reserved_paths: Extra sidecar paths that are never artifacts. The
                manifest and metadata locations are always reserved.
        """
        self._fs = fs
        self._manifest = manifest
        self._metadata = metadata
        self._rollback_on_failure = rollback_on_failure
        self._closed = False

        reserved = set(reserved_paths)
        for store in (manifest, metadata):
            location = getattr(store, "location", None)
            if location:
                reserved.add(location)
        self._reserved = {str(resolve_path(path)) for path in reserved}

    def __enter__(self) -> CombineArchive:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if not self._closed:
            self.close()

    def __iter__(self) -> Iterator[ArtifactInfo]:
        return self.artifact_iterator()

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise ArchiveClosedError("Archive is closed")

    def _resolve_info(self, info: ArtifactInfo) -> PurePosixPath:
        if not isinstance(info, ArtifactInfo):
            raise InvalidArgumentError(f"Expected ArtifactInfo, got {type(info).__name__}")
        return self._fs.resolve(info.path)

    def _require_artifact(self, info: ArtifactInfo) -> PurePosixPath:
        """Resolve info and check it names an existing, non-sidecar file."""
        self._check_open()
        path = self._resolve_info(info)
        if str(path) in self._reserved:
            raise InvalidArgumentError(f"Not an artifact location: {info.path}")
        if not self._fs.exists(path):
            raise InvalidArgumentError(f"entry must exist: {info.path}")
        if self._fs.is_dir(path):
            raise InvalidArgumentError(f"entry is a directory: {info.path}")
        return path

    def can_create_artifact(self, path: str | None) -> bool:
        """Return True if an artifact can be created at path.

        False for None, syntactically invalid paths, the archive root, sidecar
        locations, occupied paths, and paths below an existing file.
        """
        self._check_open()
        if path is None:
            return False
        try:
            new_path = self._fs.resolve(path)
        except InvalidPathError:
            return False
        if new_path == ROOT or str(new_path) in self._reserved:
            return False
        for ancestor in new_path.parents:
            if self._fs.exists(ancestor) and not self._fs.is_dir(ancestor):
                return False
        return not self._fs.exists(new_path)

    def create_artifact(
        self,
        path: str,
        content_type: str,
        source: CopySource | None = None,
    ) -> ArtifactInfo:
        """Create an artifact and record it in the manifest.

        Args:
            path: Archive path of the new artifact; missing parent
                directories are created.
            content_type: Declared content type (e.g. ``application/xml``).
            source: Optional initial content: bytes, a host file path, or a
                readable binary stream. It is read fully before the archive
                is modified. Without it the artifact is empty.

        Returns:
            ArtifactInfo with the normalized path.

        Raises:
            InvalidArgumentError: If the path is invalid or occupied, or the
                type or source is unusable. Nothing is mutated.
            ArchiveIOError: If a filesystem or manifest step fails. With
                rollback enabled, any failure after the file was created
                removes it before the error propagates.
        """
        if not self.can_create_artifact(path):
            raise InvalidArgumentError(f"Invalid file location: {path!r}")
        if not isinstance(content_type, str):
            raise InvalidArgumentError(f"Content type must be a string, got {type(content_type).__name__}")
        data = _load_source(source)

        new_path = self._fs.resolve(path)
        key = str(new_path)
        created = False
        try:
            with _archive_io(f"Create artifact {key}"):
                self._manifest.load()
                if not self._fs.exists(new_path.parent):
                    self._fs.create_directories(new_path.parent)
                self._fs.create_file(new_path)
                created = True
                if data is not None:
                    self._fs.copy(data, new_path, overwrite=True)
                self._manifest.add_entry(key, content_type)
                self._manifest.save()
        except Exception:
            if created and self._rollback_on_failure:
                self._rollback_create(new_path)
            raise

        logger.debug("Created artifact %s (%s)", key, content_type)
        return ArtifactInfo(path=key, content_type=content_type)

    def _rollback_create(self, path: PurePosixPath) -> None:
        key = str(path)
        logger.warning("Rolling back creation of %s", key)
        try:
            if self._manifest.get_file_type(key) is not None:
                self._manifest.remove_entry(key)
            if self._fs.exists(path):
                self._fs.delete(path)
        except OSError:
            # The original failure is re-raised by the caller.
            logger.exception("Rollback of %s failed; archive may be inconsistent", key)

    def remove_artifact(self, info: ArtifactInfo) -> None:
        """Delete an artifact's file and its manifest entry.

        The file is deleted before the manifest entry is removed and the
        manifest persisted.

        Raises:
            InvalidArgumentError: If the artifact does not exist.
            ArchiveIOError: If deletion or the manifest save fails.
        """
        path = self._require_artifact(info)
        key = str(path)
        with _archive_io(f"Remove artifact {key}"):
            self._manifest.load()
            self._fs.delete(path)
            if self._manifest.get_file_type(key) is not None:
                self._manifest.remove_entry(key)
            self._manifest.save()
        logger.debug("Removed artifact %s", key)

    def read_artifact(self, info: ArtifactInfo) -> IO[bytes]:
        """Open an artifact for reading. The caller must close the stream."""
        path = self._require_artifact(info)
        with _archive_io(f"Read artifact {path}"):
            return self._fs.open_read(path)

    def write_artifact(self, info: ArtifactInfo) -> IO[bytes]:
        """Open an artifact for overwriting from the start.

        The caller must close the stream; the content is committed on close.
        Close every writer before closing the archive: a writer closed after
        the archive raises ArchiveClosedError and its content is lost.
        """
        path = self._require_artifact(info)
        with _archive_io(f"Write artifact {path}"):
            return self._fs.open_write(path)

    def exists(self, info: ArtifactInfo) -> bool:
        """Return True if something exists at info.path on the filesystem.

        The manifest is not consulted.
        """
        self._check_open()
        return self._fs.exists(self._resolve_info(info))

    def get_artifact(self, path: str | None) -> ArtifactInfo | None:
        """Look up an artifact by path; None when the manifest has no entry."""
        self._check_open()
        if path is None:
            return None
        try:
            key = str(self._fs.resolve(path))
        except InvalidPathError:
            return None
        with _archive_io("Load manifest"):
            content_type = self._manifest.get_file_type(key)
        if content_type is None:
            return None
        return ArtifactInfo(path=key, content_type=content_type)

    def artifact_iterator(self) -> ArtifactIterator:
        """Return a fresh iterator over a snapshot of the manifest."""
        self._check_open()
        with _archive_io("Load manifest"):
            self._manifest.load()
            paths = list(self._manifest.file_path_iterator())
            entries = [(path, self._manifest.get_file_type(path) or "") for path in paths]
        return ArtifactIterator(entries)

    def get_metadata(self) -> MetadataStore:
        """Return the metadata store for direct annotation access."""
        self._check_open()
        return self._metadata

    def check_consistency(self) -> ConsistencyReport:
        """Compare manifest entries with the files present on the filesystem."""
        self._check_open()
        with _archive_io("Check consistency"):
            self._manifest.load()
            indexed = set(self._manifest.file_path_iterator())
            present = {str(path) for path in self._fs.walk_files()} - self._reserved
        report = ConsistencyReport(
            missing_files=tuple(sorted(indexed - present)),
            unindexed_files=tuple(sorted(present - indexed)),
        )
        if not report.consistent:
            logger.warning(
                "Archive diverges: %d entries without files, %d files without entries",
                len(report.missing_files),
                len(report.unindexed_files),
            )
        return report

    def rebuild_manifest(self, default_type: str = DEFAULT_CONTENT_TYPE) -> ConsistencyReport:
        """Repair the manifest from the filesystem.

        Entries without files are dropped; files without entries are indexed
        with a type guessed from their extension, falling back to
        default_type.

        Returns:
            The report describing the divergence found before the repair.
        """
        report = self.check_consistency()
        if report.consistent:
            return report
        with _archive_io("Rebuild manifest"):
            for key in report.missing_files:
                self._manifest.remove_entry(key)
            for key in report.unindexed_files:
                guessed, _ = mimetypes.guess_type(key)
                self._manifest.add_entry(key, guessed or default_type)
            self._manifest.save()
        logger.info(
            "Rebuilt manifest: dropped %d entries, indexed %d files",
            len(report.missing_files),
            len(report.unindexed_files),
        )
        return report

    def close(self) -> None:
        """Persist metadata with a fresh modified timestamp and release the filesystem.

        Must be called exactly once. The filesystem is released even when
        persisting the metadata fails; that failure is then re-raised.

        Raises:
            ArchiveClosedError: If the archive is already closed.
            ArchiveIOError: If persisting metadata or releasing the container fails.
        """
        self._check_open()
        self._closed = True
        try:
            with _archive_io("Persist metadata"):
                self._metadata.load()
                self._metadata.update_modified_timestamp()
                self._metadata.save()
        except ArchiveIOError:
            logger.warning("Failed to persist metadata on close; releasing the filesystem anyway")
            with _archive_io("Release filesystem"):
                self._fs.close()
            raise
        with _archive_io("Release filesystem"):
            self._fs.close()
        logger.debug("Closed archive")


def _load_source(source: CopySource | None) -> bytes | None:
    """Read a create source into bytes before the archive is touched."""
    if source is None:
        return None
    if isinstance(source, (str, os.PathLike)) and not Path(source).is_file():
        raise InvalidArgumentError(f"Source file does not exist: {source}")
    if not isinstance(source, (bytes, bytearray, memoryview, str, os.PathLike)) and not callable(
        getattr(source, "read", None)
    ):
        raise InvalidArgumentError(f"Unsupported source type: {type(source).__name__}")
    try:
        with _archive_io("Read source"):
            return read_source(source)
    except (TypeError, ValueError) as exc:
        raise InvalidArgumentError(f"Unreadable source: {exc}") from exc
