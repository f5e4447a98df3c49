"""Tests for archive configuration loading."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from combine_archive import (
    ArchiveConfig,
    ArchiveConfigError,
    load_archive_config,
    load_archive_config_from_file,
)


class TestArchiveConfig:
    def test_defaults(self) -> None:
        config = ArchiveConfig()
        assert config.manifest_location == "/manifest.xml"
        assert config.metadata_location == "/metadata.rdf"
        assert config.compression == "deflated"
        assert config.compress_level is None
        assert config.rollback_on_failure is True
        assert config.default_content_type == "application/octet-stream"

    def test_locations_normalized(self) -> None:
        config = load_archive_config({"manifest_location": "./index.xml"})
        assert config.manifest_location == "/index.xml"

    @pytest.mark.parametrize(
        "data",
        [
            {"manifest_location": "/nested/manifest.xml"},
            {"manifest_location": "/"},
            {"metadata_location": "../outside.rdf"},
            {"manifest_location": "/same.xml", "metadata_location": "same.xml"},
            {"compression": "zstd"},
            {"compress_level": 10},
            {"default_content_type": ""},
            {"unknown_key": True},
        ],
    )
    def test_invalid(self, data: dict) -> None:
        with pytest.raises(ArchiveConfigError):
            load_archive_config(data)

    def test_none_is_default(self) -> None:
        assert load_archive_config(None) == ArchiveConfig()


class TestLoadFromFile:
    def test_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "archive.yaml"
        path.write_text("compression: stored\nrollback_on_failure: false\n", encoding="utf-8")

        config = load_archive_config_from_file(path)
        assert config.compression == "stored"
        assert config.rollback_on_failure is False

    def test_json(self, tmp_path: Path) -> None:
        path = tmp_path / "archive.json"
        path.write_text(json.dumps({"compress_level": 9}), encoding="utf-8")
        assert load_archive_config_from_file(path).compress_level == 9

    def test_empty_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "archive.yml"
        path.write_text("", encoding="utf-8")
        assert load_archive_config_from_file(path) == ArchiveConfig()

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ArchiveConfigError, match="not found"):
            load_archive_config_from_file(tmp_path / "absent.yaml")

    def test_unsupported_extension(self, tmp_path: Path) -> None:
        path = tmp_path / "archive.toml"
        path.write_text("compression = 'stored'\n", encoding="utf-8")
        with pytest.raises(ArchiveConfigError, match="Unsupported file extension"):
            load_archive_config_from_file(path)

    def test_malformed_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "archive.yaml"
        path.write_text("compression: [unterminated\n", encoding="utf-8")
        with pytest.raises(ArchiveConfigError, match="Failed to parse"):
            load_archive_config_from_file(path)

    def test_non_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "archive.yaml"
        path.write_text("- stored\n- deflated\n", encoding="utf-8")
        with pytest.raises(ArchiveConfigError, match="mapping"):
            load_archive_config_from_file(path)
