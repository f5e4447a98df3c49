"""Archive-level metadata: timestamps and free-form annotations.

The record is persisted inside the archive as RDF/XML describing the archive
itself (``rdf:about="."``), using Dublin Core terms for the timestamps::

    <rdf:RDF xmlns:rdf="..." xmlns:dcterms="http://purl.org/dc/terms/" xmlns:ca="...">
      <rdf:Description rdf:about=".">
        <dcterms:created rdf:parseType="Resource">
          <dcterms:W3CDTF>2024-01-01T00:00:00+00:00</dcterms:W3CDTF>
        </dcterms:created>
        <dcterms:modified rdf:parseType="Resource">...</dcterms:modified>
        <ca:annotation ca:key="title">Example</ca:annotation>
      </rdf:Description>
    </rdf:RDF>
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ArchiveIOError
from .filesystem import VirtualFilesystem

logger = logging.getLogger(__name__)

RDF_NAMESPACE = "http://www.w3.org/1999/02/22-rdf-syntax-ns#"
DCTERMS_NAMESPACE = "http://purl.org/dc/terms/"
ANNOTATION_NAMESPACE = "urn:combine-archive:annotation#"
DEFAULT_METADATA_LOCATION = "/metadata.rdf"

_RDF = f"{{{RDF_NAMESPACE}}}"
_DCTERMS = f"{{{DCTERMS_NAMESPACE}}}"
_CA = f"{{{ANNOTATION_NAMESPACE}}}"

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format a datetime as a W3CDTF string in UTC."""
    return as_utc(value).isoformat().replace("+00:00", "Z")


def as_utc(value: datetime) -> datetime:
    """Convert to UTC; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(text: str) -> datetime:
    """Parse a W3CDTF string; naive values are taken as UTC."""
    return as_utc(datetime.fromisoformat(text.strip().replace("Z", "+00:00")))


class MetadataRecord(BaseModel):
    """Archive-level provenance record. Exactly one exists per archive."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    created: datetime
    modified: datetime
    annotations: dict[str, str] = Field(default_factory=dict)

    @field_validator("created", "modified")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class MetadataStore(Protocol):
    """Persistent archive-level metadata."""

    def load(self, *, reload: bool = False) -> None:
        """Load the record; a no-op once loaded unless reload is True."""
        ...

    def save(self) -> None:
        """Persist the record."""
        ...

    def update_modified_timestamp(self) -> None:
        """Set the modified timestamp to now, never moving it backwards."""
        ...


class RdfMetadataStore:
    """MetadataStore persisted as ``metadata.rdf`` inside the archive filesystem.

    A missing metadata file yields a fresh record whose created and modified
    timestamps are both the load time.
    """

    def __init__(
        self,
        fs: VirtualFilesystem,
        location: str = DEFAULT_METADATA_LOCATION,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._fs = fs
        self.location = str(fs.resolve(location))
        self._clock = clock
        self._record: MetadataRecord | None = None

    @property
    def loaded(self) -> bool:
        return self._record is not None

    @property
    def record(self) -> MetadataRecord:
        """The loaded record (loading it on first access)."""
        self.load()
        assert self._record is not None
        return self._record

    @property
    def created(self) -> datetime:
        return self.record.created

    @property
    def modified(self) -> datetime:
        return self.record.modified

    @property
    def annotations(self) -> dict[str, str]:
        """Copy of the current annotations."""
        return dict(self.record.annotations)

    def get_annotation(self, key: str) -> str | None:
        return self.record.annotations.get(key)

    def set_annotation(self, key: str, value: str) -> None:
        if not key:
            raise ValueError("Annotation key must be non-empty")
        self.record.annotations[key] = value

    def remove_annotation(self, key: str) -> None:
        del self.record.annotations[key]

    def load(self, *, reload: bool = False) -> None:
        if self._record is not None and not reload:
            return
        path = self._fs.resolve(self.location)
        if not self._fs.exists(path):
            now = self._clock()
            self._record = MetadataRecord(created=now, modified=now)
            logger.debug("No metadata at %s, starting a fresh record", self.location)
            return
        with self._fs.open_read(path) as stream:
            try:
                root = ET.parse(stream).getroot()
            except ET.ParseError as exc:
                raise ArchiveIOError(f"Malformed metadata {self.location}: {exc}") from exc
        self._record = self._record_from_xml(root)
        logger.debug("Loaded metadata %s", self.location)

    def _record_from_xml(self, root: ET.Element) -> MetadataRecord:
        description = None
        for candidate in root.iter(f"{_RDF}Description"):
            if candidate.get(f"{_RDF}about") in (".", "./", ""):
                description = candidate
                break
        if description is None:
            raise ArchiveIOError(f"Metadata {self.location} has no archive description")

        try:
            created = self._read_timestamp(description, "created")
            modified = self._read_timestamp(description, "modified")
        except ValueError as exc:
            raise ArchiveIOError(f"Invalid timestamp in {self.location}: {exc}") from exc

        if created is None:
            logger.warning("Metadata %s has no created timestamp, using load time", self.location)
            created = self._clock()
        annotations = {
            element.get(f"{_CA}key", ""): element.text or ""
            for element in description.iter(f"{_CA}annotation")
        }
        annotations.pop("", None)

        try:
            return MetadataRecord(
                created=created,
                modified=modified or created,
                annotations=annotations,
            )
        except ValidationError as exc:
            raise ArchiveIOError(f"Invalid metadata record in {self.location}: {exc}") from exc

    @staticmethod
    def _read_timestamp(description: ET.Element, name: str) -> datetime | None:
        element = description.find(f"{_DCTERMS}{name}")
        if element is None:
            return None
        value = element.find(f"{_DCTERMS}W3CDTF")
        text = value.text if value is not None else element.text
        if not text or not text.strip():
            return None
        return parse_timestamp(text)

    def update_modified_timestamp(self) -> None:
        record = self.record
        now = self._clock()
        record.modified = max(as_utc(now), record.modified)

    def save(self) -> None:
        record = self.record
        ET.register_namespace("rdf", RDF_NAMESPACE)
        ET.register_namespace("dcterms", DCTERMS_NAMESPACE)
        ET.register_namespace("ca", ANNOTATION_NAMESPACE)

        root = ET.Element(f"{_RDF}RDF")
        description = ET.SubElement(root, f"{_RDF}Description", {f"{_RDF}about": "."})
        for name, value in (("created", record.created), ("modified", record.modified)):
            element = ET.SubElement(description, f"{_DCTERMS}{name}", {f"{_RDF}parseType": "Resource"})
            ET.SubElement(element, f"{_DCTERMS}W3CDTF").text = format_timestamp(value)
        for key in sorted(record.annotations):
            annotation = ET.SubElement(description, f"{_CA}annotation", {f"{_CA}key": key})
            annotation.text = record.annotations[key]
        ET.indent(root)
        data = ET.tostring(root, encoding="utf-8", xml_declaration=True)

        path = self._fs.resolve(self.location)
        self._fs.create_directories(path.parent)
        with self._fs.open_write(path) as stream:
            stream.write(data)
        logger.debug("Saved metadata %s (modified %s)", self.location, format_timestamp(record.modified))
