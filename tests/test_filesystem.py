# SPDX-License-Identifier: MIT
"""Unit tests for the virtual filesystem module.

Tests path resolution and both filesystem implementations:
- resolve_path normalization and rejection of invalid paths
- MemoryFilesystem create/delete/copy/open semantics
- ZipFilesystem container load, atomic rewrite and error mapping
- Closed-state behavior
"""

from __future__ import annotations

import io
import zipfile
from pathlib import Path, PurePosixPath

import pytest

from combine_archive import (
    ArchiveClosedError,
    ArchiveIOError,
    InvalidPathError,
    MemoryFilesystem,
    ZipFilesystem,
    resolve_path,
)

# -----------------------------------------------------------------------------
# resolve_path tests
# -----------------------------------------------------------------------------


class TestResolvePath:
    """Tests for resolve_path function."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("a/b.txt", "/a/b.txt"),
            ("/a/b.txt", "/a/b.txt"),
            ("./a//b.txt", "/a/b.txt"),
            ("/a/../b.txt", "/b.txt"),
            ("/", "/"),
            (".", "/"),
        ],
    )
    def test_normalizes(self, raw: str, expected: str) -> None:
        assert resolve_path(raw) == PurePosixPath(expected)

    @pytest.mark.parametrize("raw", ["", "../a", "/a/../../b", "a\x00b", "a\\b", None, 3])
    def test_rejects_invalid(self, raw: object) -> None:
        with pytest.raises(InvalidPathError):
            resolve_path(raw)


# -----------------------------------------------------------------------------
# MemoryFilesystem tests
# -----------------------------------------------------------------------------


class TestMemoryFilesystem:
    """Tests for MemoryFilesystem class."""

    def test_create_file_requires_parent(self) -> None:
        fs = MemoryFilesystem()
        with pytest.raises(FileNotFoundError):
            fs.create_file(fs.resolve("/missing/a.txt"))

    def test_create_file_and_directories(self) -> None:
        fs = MemoryFilesystem()
        path = fs.resolve("/models/sub/model.xml")
        fs.create_directories(path.parent)
        fs.create_file(path)

        assert fs.exists(path)
        assert fs.is_dir(path.parent)
        assert fs.is_dir(PurePosixPath("/models"))
        assert not fs.is_dir(path)
        assert fs.open_read(path).read() == b""

    def test_create_file_on_occupied_path(self) -> None:
        fs = MemoryFilesystem()
        path = fs.resolve("/a.txt")
        fs.create_file(path)
        with pytest.raises(FileExistsError):
            fs.create_file(path)

    def test_create_directories_over_file(self) -> None:
        fs = MemoryFilesystem()
        fs.create_file(fs.resolve("/a"))
        with pytest.raises(FileExistsError):
            fs.create_directories(fs.resolve("/a/b"))

    def test_delete_file_and_empty_directory(self) -> None:
        fs = MemoryFilesystem()
        path = fs.resolve("/dir/a.txt")
        fs.create_directories(path.parent)
        fs.create_file(path)

        fs.delete(path)
        assert not fs.exists(path)
        fs.delete(path.parent)
        assert not fs.exists(path.parent)

    def test_delete_non_empty_directory_fails(self) -> None:
        fs = MemoryFilesystem()
        path = fs.resolve("/dir/a.txt")
        fs.create_directories(path.parent)
        fs.create_file(path)
        with pytest.raises(OSError):
            fs.delete(path.parent)
        assert fs.exists(path)

    def test_delete_root_and_missing(self) -> None:
        fs = MemoryFilesystem()
        with pytest.raises(PermissionError):
            fs.delete(PurePosixPath("/"))
        with pytest.raises(FileNotFoundError):
            fs.delete(PurePosixPath("/nope"))

    def test_copy_sources(self, tmp_path: Path) -> None:
        fs = MemoryFilesystem()
        host_file = tmp_path / "src.bin"
        host_file.write_bytes(b"from host")

        fs.copy(b"from bytes", fs.resolve("/a"))
        fs.copy(io.BytesIO(b"from stream"), fs.resolve("/b"))
        fs.copy(host_file, fs.resolve("/c"))

        assert fs.open_read(fs.resolve("/a")).read() == b"from bytes"
        assert fs.open_read(fs.resolve("/b")).read() == b"from stream"
        assert fs.open_read(fs.resolve("/c")).read() == b"from host"

    def test_copy_respects_overwrite_flag(self) -> None:
        fs = MemoryFilesystem()
        path = fs.resolve("/a")
        fs.copy(b"one", path)
        with pytest.raises(FileExistsError):
            fs.copy(b"two", path)
        fs.copy(b"two", path, overwrite=True)
        assert fs.open_read(path).read() == b"two"

    def test_copy_rejects_unknown_source(self) -> None:
        fs = MemoryFilesystem()
        with pytest.raises(TypeError):
            fs.copy(12345, fs.resolve("/a"))  # type: ignore[arg-type]

    def test_open_write_truncates_and_commits_on_close(self) -> None:
        fs = MemoryFilesystem()
        path = fs.resolve("/a.txt")
        fs.copy(b"old content", path)

        stream = fs.open_write(path)
        assert fs.open_read(path).read() == b""
        stream.write(b"new")
        stream.close()

        assert fs.open_read(path).read() == b"new"

    def test_open_on_directory_fails(self) -> None:
        fs = MemoryFilesystem()
        fs.create_directories(fs.resolve("/dir"))
        with pytest.raises(IsADirectoryError):
            fs.open_read(fs.resolve("/dir"))
        with pytest.raises(IsADirectoryError):
            fs.open_write(fs.resolve("/dir"))

    def test_walk_files_sorted(self) -> None:
        fs = MemoryFilesystem()
        fs.create_directories(fs.resolve("/z"))
        for name in ("/z/b", "/a", "/z/a"):
            fs.create_file(fs.resolve(name))
        assert [str(p) for p in fs.walk_files()] == ["/a", "/z/a", "/z/b"]

    def test_operations_after_close(self) -> None:
        fs = MemoryFilesystem()
        fs.close()
        assert fs.closed
        with pytest.raises(ArchiveClosedError):
            fs.exists(PurePosixPath("/a"))
        with pytest.raises(ArchiveClosedError):
            fs.close()

    def test_context_manager_closes(self) -> None:
        with MemoryFilesystem() as fs:
            fs.create_file(fs.resolve("/a"))
        assert fs.closed


# -----------------------------------------------------------------------------
# ZipFilesystem tests
# -----------------------------------------------------------------------------


class TestZipFilesystem:
    """Tests for ZipFilesystem class."""

    def test_new_container_written_on_close(self, zip_path: Path) -> None:
        fs = ZipFilesystem(zip_path)
        assert not zip_path.exists()
        path = fs.resolve("/models/model.xml")
        fs.create_directories(path.parent)
        fs.copy(b"<sbml/>", path)
        fs.close()

        with zipfile.ZipFile(zip_path) as zf:
            assert zf.read("models/model.xml") == b"<sbml/>"
            assert "models/" in zf.namelist()

    def test_loads_existing_container(self, zip_path: Path) -> None:
        with zipfile.ZipFile(zip_path, "w") as zf:
            zf.writestr("a.txt", b"alpha")
            zf.writestr("dir/b.txt", b"beta")

        fs = ZipFilesystem(zip_path, create=False)
        assert fs.open_read(fs.resolve("/a.txt")).read() == b"alpha"
        assert fs.is_dir(fs.resolve("/dir"))
        assert [str(p) for p in fs.walk_files()] == ["/a.txt", "/dir/b.txt"]
        fs.close()

    def test_unmodified_container_not_rewritten(self, zip_path: Path) -> None:
        with zipfile.ZipFile(zip_path, "w") as zf:
            zf.writestr("a.txt", b"alpha")
        before = zip_path.read_bytes()

        fs = ZipFilesystem(zip_path)
        fs.open_read(fs.resolve("/a.txt")).read()
        fs.close()

        assert zip_path.read_bytes() == before

    def test_rewrite_leaves_no_temp_files(self, tmp_path: Path, zip_path: Path) -> None:
        fs = ZipFilesystem(zip_path)
        fs.copy(b"x", fs.resolve("/x"))
        fs.close()
        assert list(tmp_path.glob("*.tmp")) == []

    def test_compression_method(self, zip_path: Path) -> None:
        fs = ZipFilesystem(zip_path, compression="stored")
        fs.copy(b"x" * 1000, fs.resolve("/x"))
        fs.close()
        with zipfile.ZipFile(zip_path) as zf:
            assert zf.getinfo("x").compress_type == zipfile.ZIP_STORED

    def test_unsupported_compression(self, zip_path: Path) -> None:
        with pytest.raises(ValueError):
            ZipFilesystem(zip_path, compression="zstd")  # type: ignore[arg-type]

    def test_missing_container_without_create(self, zip_path: Path) -> None:
        with pytest.raises(ArchiveIOError):
            ZipFilesystem(zip_path, create=False)

    def test_corrupt_container(self, zip_path: Path) -> None:
        zip_path.write_bytes(b"definitely not a zip")
        with pytest.raises(ArchiveIOError):
            ZipFilesystem(zip_path)
