"""Wiring helper that opens a zip-backed combine archive."""

from __future__ import annotations

import logging
from pathlib import Path

from .archive import CombineArchive
from .config import ArchiveConfig
from .filesystem import ZipFilesystem
from .manifest import XmlManifestStore
from .metadata import Clock, RdfMetadataStore, utc_now

logger = logging.getLogger(__name__)


def open_archive(
    path: Path | str,
    *,
    create: bool = True,
    config: ArchiveConfig | None = None,
    clock: Clock = utc_now,
) -> CombineArchive:
    """Open (or create) a combine archive container.

    Args:
        path: Host path of the zip container.
        create: If True, a missing container is created on close.
        config: Archive configuration; defaults apply when omitted.
        clock: Time source for metadata timestamps.

    Returns:
        An open CombineArchive owning the container.

    Raises:
        ArchiveIOError: If the container cannot be read, or is missing and
            create is False.
    """
    config = config or ArchiveConfig()
    fs = ZipFilesystem(
        path,
        create=create,
        compression=config.compression,
        compress_level=config.compress_level,
    )
    manifest = XmlManifestStore(
        fs,
        config.manifest_location,
        reserved=[config.metadata_location],
    )
    metadata = RdfMetadataStore(fs, config.metadata_location, clock=clock)
    logger.debug("Opened archive %s", path)
    return CombineArchive(
        fs,
        manifest,
        metadata,
        rollback_on_failure=config.rollback_on_failure,
    )
