"""combine-archive: artifact lifecycle management for COMBINE archives.

A combine archive is a zip container bundling arbitrary files ("artifacts")
with two sidecars: a manifest mapping each artifact path to its content type,
and a metadata record with archive timestamps and annotations. The
:class:`CombineArchive` facade keeps the container, manifest and metadata
consistent across every create, remove, read, write and close.

Public API
----------
- :func:`open_archive` - Open or create a zip-backed archive
- :class:`CombineArchive` - Artifact lifecycle facade
- :class:`ArtifactInfo` - Artifact path and declared content type

Example
-------
>>> from pathlib import Path
>>> from combine_archive import open_archive
>>> with open_archive(Path("study.omex")) as archive:
...     info = archive.create_artifact("/models/model1.xml", "application/xml", b"<sbml/>")
...     [a.path for a in archive.artifact_iterator()]
['/models/model1.xml']
"""

from __future__ import annotations

__version__ = "0.1.0"

from combine_archive.archive import CombineArchive, ConsistencyReport
from combine_archive.artifact import ArtifactInfo, ArtifactIterator
from combine_archive.config import (
    ArchiveConfig,
    load_archive_config,
    load_archive_config_from_file,
)
from combine_archive.errors import (
    ArchiveClosedError,
    ArchiveConfigError,
    ArchiveIOError,
    CombineArchiveError,
    InvalidArgumentError,
    InvalidPathError,
    UnsupportedOperationError,
)
from combine_archive.factory import open_archive
from combine_archive.filesystem import (
    MemoryFilesystem,
    VirtualFilesystem,
    ZipFilesystem,
    resolve_path,
)
from combine_archive.manifest import ManifestStore, XmlManifestStore
from combine_archive.metadata import MetadataRecord, MetadataStore, RdfMetadataStore

__all__ = [
    # Facade
    "open_archive",
    "CombineArchive",
    "ConsistencyReport",
    # Artifacts
    "ArtifactInfo",
    "ArtifactIterator",
    # Collaborators
    "VirtualFilesystem",
    "MemoryFilesystem",
    "ZipFilesystem",
    "resolve_path",
    "ManifestStore",
    "XmlManifestStore",
    "MetadataStore",
    "MetadataRecord",
    "RdfMetadataStore",
    # Configuration
    "ArchiveConfig",
    "load_archive_config",
    "load_archive_config_from_file",
    # Errors
    "CombineArchiveError",
    "InvalidArgumentError",
    "InvalidPathError",
    "ArchiveIOError",
    "ArchiveClosedError",
    "ArchiveConfigError",
    "UnsupportedOperationError",
]
