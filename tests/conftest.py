# SPDX-License-Identifier: MIT
"""Pytest configuration and shared fixtures for test suite.

This module provides:
- Deterministic test environment setup
- A controllable clock for metadata timestamps
- In-memory and zip-backed archive fixtures
"""
from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from combine_archive import (
    CombineArchive,
    MemoryFilesystem,
    RdfMetadataStore,
    XmlManifestStore,
)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Environment Setup
# ---------------------------------------------------------------------------


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest environment for determinism.

    Sets environment variables to ensure reproducible test execution.
    """
    deterministic_env = {
        "LC_ALL": "C",
        "LANG": "C",
        "TZ": "UTC",
        "PYTHONHASHSEED": "0",
    }
    for key, value in deterministic_env.items():
        os.environ.setdefault(key, value)


# ---------------------------------------------------------------------------
# Fixtures: Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced clock returning timezone-aware UTC datetimes."""

    def __init__(self, start: datetime = EPOCH) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    """Clock starting at a fixed instant."""
    return FakeClock()


# ---------------------------------------------------------------------------
# Fixtures: Archives
# ---------------------------------------------------------------------------


@pytest.fixture
def memory_fs() -> MemoryFilesystem:
    """Empty in-memory filesystem."""
    return MemoryFilesystem()


@pytest.fixture
def manifest_store(memory_fs: MemoryFilesystem) -> XmlManifestStore:
    """Manifest store on the in-memory filesystem."""
    return XmlManifestStore(memory_fs, reserved=["/metadata.rdf"])


@pytest.fixture
def metadata_store(memory_fs: MemoryFilesystem, clock: FakeClock) -> RdfMetadataStore:
    """Metadata store on the in-memory filesystem."""
    return RdfMetadataStore(memory_fs, clock=clock)


@pytest.fixture
def memory_archive(
    memory_fs: MemoryFilesystem,
    manifest_store: XmlManifestStore,
    metadata_store: RdfMetadataStore,
) -> CombineArchive:
    """Open archive wired onto the in-memory collaborators."""
    return CombineArchive(memory_fs, manifest_store, metadata_store)


@pytest.fixture
def zip_path(tmp_path: Path) -> Path:
    """Host path for a zip container that does not exist yet."""
    return tmp_path / "archive.omex"
