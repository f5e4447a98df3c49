"""Archive configuration loader.

Configuration is a small YAML or JSON mapping validated by a pydantic model.
Every field has a default, so an empty file (or no file) is a valid
configuration.

Example ``archive.yaml``::

    compression: deflated
    compress_level: 6
    rollback_on_failure: true
    default_content_type: application/octet-stream
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import ArchiveConfigError, InvalidPathError
from .filesystem import ROOT, resolve_path
from .manifest import DEFAULT_MANIFEST_LOCATION
from .metadata import DEFAULT_METADATA_LOCATION

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class ArchiveConfig(BaseModel):
    """Settings shared by the archive facade and its collaborators."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    manifest_location: str = DEFAULT_MANIFEST_LOCATION
    metadata_location: str = DEFAULT_METADATA_LOCATION
    compression: Literal["stored", "deflated", "bzip2", "lzma"] = "deflated"
    compress_level: int | None = Field(default=None, ge=0, le=9)
    rollback_on_failure: bool = True
    default_content_type: str = Field(default=DEFAULT_CONTENT_TYPE, min_length=1)

    @field_validator("manifest_location", "metadata_location")
    @classmethod
    def _normalize_location(cls, value: str) -> str:
        try:
            path = resolve_path(value)
        except InvalidPathError as exc:
            raise ValueError(str(exc)) from exc
        if path == ROOT or path.parent != ROOT:
            # Sidecars must be files directly under the archive root.
            raise ValueError(f"Sidecar location must be a top-level file: {value!r}")
        return str(path)

    @model_validator(mode="after")
    def _distinct_sidecars(self) -> ArchiveConfig:
        if self.manifest_location == self.metadata_location:
            raise ValueError("manifest_location and metadata_location must differ")
        return self


def load_archive_config(data: dict[str, Any] | None) -> ArchiveConfig:
    """Validate and load an ArchiveConfig from a dictionary.

    Raises:
        ArchiveConfigError: If the data fails validation.
    """
    try:
        return ArchiveConfig.model_validate(data or {})
    except ValidationError as exc:
        raise ArchiveConfigError(f"Invalid archive configuration: {exc}") from exc


def load_archive_config_from_file(path: Path | str) -> ArchiveConfig:
    """Load and validate an ArchiveConfig from a YAML or JSON file.

    Args:
        path: Path to the YAML (.yaml, .yml) or JSON (.json) file.

    Returns:
        Validated ArchiveConfig instance.

    Raises:
        ArchiveConfigError: If the file is missing, has an unsupported
            extension, cannot be parsed, or fails validation.
    """
    path = Path(path)
    if not path.exists():
        raise ArchiveConfigError(f"Archive config file not found: {path}")

    suffix = path.suffix.lower()
    text = path.read_text(encoding="utf-8")

    try:
        if suffix in (".yaml", ".yml"):
            data = yaml.safe_load(text)
        elif suffix == ".json":
            data = json.loads(text)
        else:
            raise ArchiveConfigError(f"Unsupported file extension: {suffix}. Use .yaml, .yml, or .json")
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ArchiveConfigError(f"Failed to parse archive config {path}: {exc}") from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ArchiveConfigError(f"Archive config file must contain a mapping, got {type(data).__name__}")

    return load_archive_config(data)
