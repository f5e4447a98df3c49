"""Manifest store mapping artifact paths to declared content types.

The manifest is persisted inside the archive as OMEX-style XML::

    <omexManifest xmlns="http://identifiers.org/combine.specifications/omex-manifest">
      <content location="." format="http://identifiers.org/combine.specifications/omex"/>
      <content location="./manifest.xml" format="http://identifiers.org/combine.specifications/omex-manifest"/>
      <content location="./metadata.rdf" format="http://identifiers.org/combine.specifications/omex-metadata"/>
      <content location="./models/model1.xml" format="application/xml"/>
    </omexManifest>

The archive self-entry, the manifest's own entry and an entry for each reserved
sidecar present when the manifest is saved are written for compatibility
with other COMBINE tools but are never exposed as artifacts. A sidecar
format read from an existing manifest is written back unchanged.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from collections.abc import Iterable, Iterator
from typing import Protocol

from .errors import ArchiveIOError, InvalidPathError
from .filesystem import ROOT, VirtualFilesystem, resolve_path

logger = logging.getLogger(__name__)

MANIFEST_NAMESPACE = "http://identifiers.org/combine.specifications/omex-manifest"
OMEX_FORMAT = "http://identifiers.org/combine.specifications/omex"
MANIFEST_FORMAT = MANIFEST_NAMESPACE
METADATA_FORMAT = "http://identifiers.org/combine.specifications/omex-metadata"
DEFAULT_MANIFEST_LOCATION = "/manifest.xml"

_MANIFEST_TAG = f"{{{MANIFEST_NAMESPACE}}}omexManifest"
_CONTENT_TAG = f"{{{MANIFEST_NAMESPACE}}}content"


class ManifestStore(Protocol):
    """Persistent mapping of artifact path to content type."""

    def load(self, *, reload: bool = False) -> None:
        """Load entries; a no-op once loaded unless reload is True."""
        ...

    def save(self) -> None:
        """Persist entries."""
        ...

    def add_entry(self, path: str, content_type: str) -> None:
        """Record (or replace) the type for path."""
        ...

    def remove_entry(self, path: str) -> None:
        """Drop the entry for path; KeyError if absent."""
        ...

    def get_file_type(self, path: str) -> str | None:
        """Return the declared type for path, or None."""
        ...

    def file_path_iterator(self) -> Iterator[str]:
        """Iterate entry paths in insertion order."""
        ...


def _location_to_path(location: str) -> str:
    return str(resolve_path(location))


def _path_to_location(path: str) -> str:
    return "." + path if path.startswith("/") else "./" + path


class XmlManifestStore:
    """ManifestStore persisted as ``manifest.xml`` inside the archive filesystem.

    Paths are stored in normalized absolute form (``/models/model1.xml``) and
    written as ``./``-relative locations.
    """

    def __init__(
        self,
        fs: VirtualFilesystem,
        location: str = DEFAULT_MANIFEST_LOCATION,
        *,
        reserved: Iterable[str] = (),
    ) -> None:
        """Initialize the store.

        Args:
            fs: Filesystem holding the manifest file.
            location: Archive path of the manifest file.
            reserved: Additional sidecar paths never exposed as entries
                (e.g. the metadata file).
        """
        self._fs = fs
        self.location = _location_to_path(location)
        self._reserved = {self.location, str(ROOT)} | {_location_to_path(p) for p in reserved}
        self._entries: dict[str, str] = {}
        self._sidecar_formats: dict[str, str] = {}
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    def load(self, *, reload: bool = False) -> None:
        if self._loaded and not reload:
            return
        path = self._fs.resolve(self.location)
        entries: dict[str, str] = {}
        sidecar_formats: dict[str, str] = {}
        if self._fs.exists(path):
            with self._fs.open_read(path) as stream:
                try:
                    root = ET.parse(stream).getroot()
                except ET.ParseError as exc:
                    raise ArchiveIOError(f"Malformed manifest {self.location}: {exc}") from exc
            if root.tag != _MANIFEST_TAG:
                raise ArchiveIOError(f"Unexpected manifest root element: {root.tag}")
            for content in root.iter(_CONTENT_TAG):
                location = content.get("location")
                if location is None:
                    raise ArchiveIOError("Manifest content element missing location attribute")
                try:
                    entry_path = _location_to_path(location)
                except InvalidPathError as exc:
                    raise ArchiveIOError(f"Manifest holds an invalid location: {location!r}") from exc
                if entry_path in self._reserved:
                    sidecar_formats[entry_path] = content.get("format", "")
                    continue
                entries[entry_path] = content.get("format", "")
        self._entries = entries
        self._sidecar_formats = sidecar_formats
        self._loaded = True
        logger.debug("Loaded manifest %s with %d entries", self.location, len(entries))

    def save(self) -> None:
        root = ET.Element(_MANIFEST_TAG)
        ET.SubElement(root, _CONTENT_TAG, {"location": ".", "format": OMEX_FORMAT})
        ET.SubElement(
            root,
            _CONTENT_TAG,
            {"location": _path_to_location(self.location), "format": MANIFEST_FORMAT},
        )
        for sidecar in sorted(self._reserved - {self.location, str(ROOT)}):
            if self._fs.exists(self._fs.resolve(sidecar)):
                ET.SubElement(
                    root,
                    _CONTENT_TAG,
                    {
                        "location": _path_to_location(sidecar),
                        "format": self._sidecar_formats.get(sidecar) or METADATA_FORMAT,
                    },
                )
        for entry_path, content_type in self._entries.items():
            ET.SubElement(
                root,
                _CONTENT_TAG,
                {"location": _path_to_location(entry_path), "format": content_type},
            )
        ET.register_namespace("", MANIFEST_NAMESPACE)
        ET.indent(root)
        # Serialize before opening so a failure never truncates the stored manifest.
        data = ET.tostring(root, encoding="utf-8", xml_declaration=True)

        path = self._fs.resolve(self.location)
        self._fs.create_directories(path.parent)
        with self._fs.open_write(path) as stream:
            stream.write(data)
        logger.debug("Saved manifest %s with %d entries", self.location, len(self._entries))

    def add_entry(self, path: str, content_type: str) -> None:
        self.load()
        self._entries[_location_to_path(path)] = content_type

    def remove_entry(self, path: str) -> None:
        self.load()
        del self._entries[_location_to_path(path)]

    def get_file_type(self, path: str) -> str | None:
        self.load()
        return self._entries.get(_location_to_path(path))

    def file_path_iterator(self) -> Iterator[str]:
        self.load()
        return iter(list(self._entries))

    def is_reserved(self, path: str) -> bool:
        """Return True if path is a sidecar location owned by the archive."""
        return _location_to_path(path) in self._reserved

    def __contains__(self, path: object) -> bool:
        return isinstance(path, str) and self.get_file_type(path) is not None

    def __len__(self) -> int:
        self.load()
        return len(self._entries)
