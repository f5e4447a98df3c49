"""Virtual filesystem rooted at one archive container.

This module provides:
- The VirtualFilesystem protocol the archive facade depends on
- Path resolution into the archive's POSIX-style path space
- MemoryFilesystem, an in-memory implementation
- ZipFilesystem, which loads a zip container into memory and rewrites it
  atomically (write to .tmp then rename) when closed

Paths are absolute from the archive root: ``"a/b.txt"``, ``"./a/b.txt"`` and
``"/a/b.txt"`` all resolve to ``/a/b.txt``.

Thread Safety:
    None. A filesystem instance is owned by a single archive and must be
    driven by one thread at a time.
"""

from __future__ import annotations

import errno
import io
import logging
import os
import tempfile
import zipfile
from collections.abc import Iterator
from pathlib import Path, PurePosixPath
from typing import IO, TYPE_CHECKING, Any, BinaryIO, Literal, Protocol, Union

from .errors import ArchiveClosedError, ArchiveIOError, InvalidPathError

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)

ROOT = PurePosixPath("/")

CompressionName = Literal["stored", "deflated", "bzip2", "lzma"]
COMPRESSION_METHODS: dict[str, int] = {
    "stored": zipfile.ZIP_STORED,
    "deflated": zipfile.ZIP_DEFLATED,
    "bzip2": zipfile.ZIP_BZIP2,
    "lzma": zipfile.ZIP_LZMA,
}

# Bytes, a host file path, or a readable binary stream.
CopySource = Union[bytes, bytearray, memoryview, str, os.PathLike, BinaryIO]

_COPY_CHUNK_SIZE = 64 * 1024


def resolve_path(path: object) -> PurePosixPath:
    """Resolve a path string into the archive path space.

    Args:
        path: Archive-root-relative path string.

    Returns:
        Normalized absolute PurePosixPath.

    Raises:
        InvalidPathError: If the path is not a string, is empty, contains a NUL
            byte or a backslash, or uses ``..`` to escape the archive root.
    """
    if not isinstance(path, str):
        raise InvalidPathError(f"Path must be a string, got {type(path).__name__}")
    if not path:
        raise InvalidPathError("Path must be non-empty")
    if "\x00" in path:
        raise InvalidPathError(f"Path contains a NUL byte: {path!r}")
    if "\\" in path:
        raise InvalidPathError(f"Path contains a backslash: {path!r}")

    parts: list[str] = []
    for segment in path.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if not parts:
                raise InvalidPathError(f"Path escapes the archive root: {path!r}")
            parts.pop()
            continue
        parts.append(segment)
    return ROOT.joinpath(*parts)


class VirtualFilesystem(Protocol):
    """Path-addressable byte storage rooted at one container."""

    @property
    def closed(self) -> bool:
        """True once close() has released the container."""
        ...

    def resolve(self, path: str) -> PurePosixPath:
        """Resolve a path string; raises InvalidPathError on bad syntax."""
        ...

    def exists(self, path: PurePosixPath) -> bool:
        """Return True if a file or directory exists at path."""
        ...

    def is_dir(self, path: PurePosixPath) -> bool:
        """Return True if a directory exists at path."""
        ...

    def create_directories(self, path: PurePosixPath) -> None:
        """Create path and any missing ancestors."""
        ...

    def create_file(self, path: PurePosixPath) -> None:
        """Create an empty file; the parent must exist and path must be free."""
        ...

    def delete(self, path: PurePosixPath) -> None:
        """Delete a file or an empty directory."""
        ...

    def copy(self, source: CopySource, dest: PurePosixPath, *, overwrite: bool = False) -> None:
        """Copy bytes from source into dest."""
        ...

    def open_read(self, path: PurePosixPath) -> IO[bytes]:
        """Open a file for reading, positioned at offset 0."""
        ...

    def open_write(self, path: PurePosixPath) -> IO[bytes]:
        """Open a file for writing from the start, truncating it."""
        ...

    def walk_files(self) -> Iterator[PurePosixPath]:
        """Yield every non-directory path in sorted order."""
        ...

    def close(self) -> None:
        """Release the container; a second call raises ArchiveClosedError."""
        ...


class _EntryWriter(io.BytesIO):
    """Writable stream that commits its buffer into a filesystem entry."""

    def __init__(self, fs: MemoryFilesystem, key: str) -> None:
        super().__init__()
        self._fs = fs
        self._key = key

    def flush(self) -> None:
        super().flush()
        if not self.closed:
            self._fs._commit(self._key, self.getvalue())

    def close(self) -> None:
        if self.closed:
            return
        try:
            self._fs._commit(self._key, self.getvalue())
        finally:
            super().close()


class MemoryFilesystem:
    """In-memory VirtualFilesystem.

    Files are stored as bytes keyed by their normalized absolute path;
    directories are tracked explicitly so empty directories survive.

    Example usage:
        fs = MemoryFilesystem()
        path = fs.resolve("models/model1.xml")
        fs.create_directories(path.parent)
        fs.create_file(path)
        with fs.open_write(path) as stream:
            stream.write(b"<sbml/>")
    """

    def __init__(self) -> None:
        self._files: dict[str, bytes] = {}
        self._dirs: set[str] = {str(ROOT)}
        self._closed = False
        self._dirty = False

    def __enter__(self) -> MemoryFilesystem:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if not self._closed:
            self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise ArchiveClosedError("Filesystem is closed")

    def _key(self, path: PurePosixPath | str) -> str:
        self._check_open()
        return str(resolve_path(str(path)))

    def _require_parent_dir(self, key: str) -> None:
        parent = str(PurePosixPath(key).parent)
        if parent not in self._dirs:
            raise FileNotFoundError(errno.ENOENT, "Parent directory does not exist", parent)

    def _commit(self, key: str, data: bytes) -> None:
        self._check_open()
        if key in self._dirs:
            raise IsADirectoryError(errno.EISDIR, "Is a directory", key)
        self._require_parent_dir(key)
        self._files[key] = bytes(data)
        self._dirty = True

    def resolve(self, path: str) -> PurePosixPath:
        self._check_open()
        return resolve_path(path)

    def exists(self, path: PurePosixPath | str) -> bool:
        key = self._key(path)
        return key in self._files or key in self._dirs

    def is_dir(self, path: PurePosixPath | str) -> bool:
        return self._key(path) in self._dirs

    def create_directories(self, path: PurePosixPath | str) -> None:
        target = PurePosixPath(self._key(path))
        for candidate in [*reversed(target.parents), target]:
            key = str(candidate)
            if key in self._files:
                raise FileExistsError(errno.EEXIST, "A file occupies the directory path", key)
            if key not in self._dirs:
                self._dirs.add(key)
                self._dirty = True

    def create_file(self, path: PurePosixPath | str) -> None:
        key = self._key(path)
        if key in self._files or key in self._dirs:
            raise FileExistsError(errno.EEXIST, "File exists", key)
        self._require_parent_dir(key)
        self._files[key] = b""
        self._dirty = True

    def delete(self, path: PurePosixPath | str) -> None:
        key = self._key(path)
        if key in self._files:
            del self._files[key]
        elif key in self._dirs:
            if key == str(ROOT):
                raise PermissionError(errno.EPERM, "Cannot delete the archive root", key)
            prefix = key + "/"
            if any(k.startswith(prefix) for k in (*self._files, *self._dirs)):
                raise OSError(errno.ENOTEMPTY, "Directory not empty", key)
            self._dirs.remove(key)
        else:
            raise FileNotFoundError(errno.ENOENT, "No such file", key)
        self._dirty = True

    def copy(self, source: CopySource, dest: PurePosixPath | str, *, overwrite: bool = False) -> None:
        key = self._key(dest)
        if key in self._dirs:
            raise IsADirectoryError(errno.EISDIR, "Is a directory", key)
        if key in self._files and not overwrite:
            raise FileExistsError(errno.EEXIST, "File exists", key)
        self._commit(key, read_source(source))

    def open_read(self, path: PurePosixPath | str) -> IO[bytes]:
        key = self._key(path)
        if key in self._dirs:
            raise IsADirectoryError(errno.EISDIR, "Is a directory", key)
        if key not in self._files:
            raise FileNotFoundError(errno.ENOENT, "No such file", key)
        return io.BytesIO(self._files[key])

    def open_write(self, path: PurePosixPath | str) -> IO[bytes]:
        key = self._key(path)
        if key in self._dirs:
            raise IsADirectoryError(errno.EISDIR, "Is a directory", key)
        self._require_parent_dir(key)
        # Truncate immediately so readers never see stale trailing bytes.
        self._commit(key, b"")
        return _EntryWriter(self, key)

    def walk_files(self) -> Iterator[PurePosixPath]:
        self._check_open()
        for key in sorted(self._files):
            yield PurePosixPath(key)

    def close(self) -> None:
        self._check_open()
        self._closed = True
        self._release()

    def _release(self) -> None:
        """Hook for subclasses backed by a real container."""
        self._files.clear()
        self._dirs.clear()


class ZipFilesystem(MemoryFilesystem):
    """VirtualFilesystem backed by a zip container on the host filesystem.

    The container is read fully into memory when opened. On close the
    container is rewritten atomically if anything changed: the zip is
    written to a temporary file in the same directory, fsynced, and renamed
    over the original.
    """

    TMP_SUFFIX = ".tmp"

    def __init__(
        self,
        container: Path | str,
        *,
        create: bool = True,
        compression: CompressionName = "deflated",
        compress_level: int | None = None,
    ) -> None:
        """Open a zip container.

        Args:
            container: Host path of the zip file.
            create: If True, a missing container starts empty and is written
                on close. If False, a missing container is an error.
            compression: Compression method used when rewriting.
            compress_level: Optional compression level passed to zipfile.

        Raises:
            ArchiveIOError: If the container is missing (and create is False),
                unreadable, or not a valid zip file.
        """
        super().__init__()
        if compression not in COMPRESSION_METHODS:
            raise ValueError(f"Unsupported compression: {compression!r}")
        self.container = Path(container)
        self.compression = compression
        self.compress_level = compress_level

        if self.container.exists():
            self._load()
        elif not create:
            raise ArchiveIOError(errno.ENOENT, "Archive container not found", str(self.container))
        else:
            # New containers are always written on close.
            self._dirty = True

    def _load(self) -> None:
        try:
            with zipfile.ZipFile(self.container, "r") as zf:
                for info in zf.infolist():
                    path = resolve_path(info.filename)
                    if info.is_dir():
                        self._dirs.update(str(p) for p in (path, *path.parents))
                        continue
                    self._dirs.update(str(p) for p in path.parents)
                    self._files[str(path)] = zf.read(info)
        except zipfile.BadZipFile as exc:
            raise ArchiveIOError(f"Not a valid zip container: {self.container}") from exc
        except InvalidPathError as exc:
            raise ArchiveIOError(f"Container holds an invalid entry name: {exc}") from exc
        except OSError as exc:
            raise ArchiveIOError(f"Failed to read container {self.container}: {exc}") from exc
        logger.debug("Loaded %d files from %s", len(self._files), self.container)

    def _release(self) -> None:
        try:
            if self._dirty:
                self._write_container()
        finally:
            super()._release()

    def _write_container(self) -> None:
        self.container.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path_str = tempfile.mkstemp(
            suffix=self.TMP_SUFFIX,
            prefix=self.container.name + ".",
            dir=self.container.parent,
        )
        tmp_path = Path(tmp_path_str)
        kwargs: dict[str, Any] = {"compression": COMPRESSION_METHODS[self.compression]}
        if self.compress_level is not None:
            kwargs["compresslevel"] = self.compress_level

        try:
            with os.fdopen(fd, "wb") as fh:
                with zipfile.ZipFile(fh, "w", **kwargs) as zf:
                    for key in sorted(self._dirs - {str(ROOT)}):
                        zf.writestr(key.lstrip("/") + "/", b"")
                    for key in sorted(self._files):
                        zf.writestr(key.lstrip("/"), self._files[key])
                fh.flush()
                os.fsync(fh.fileno())
            tmp_path.replace(self.container)
        except Exception:
            if tmp_path.exists():
                tmp_path.unlink()
            raise
        logger.debug("Wrote %d files to %s", len(self._files), self.container)


def read_source(source: CopySource) -> bytes:
    """Read a copy source fully into bytes.

    Raises:
        TypeError: If the source is not bytes, a path or a readable stream,
            or the stream yields something other than bytes.
        ValueError: If the stream is closed.
        OSError: If a host file cannot be read.
    """
    if isinstance(source, (bytes, bytearray, memoryview)):
        return bytes(source)
    if isinstance(source, (str, os.PathLike)):
        return Path(source).read_bytes()
    if hasattr(source, "read"):
        chunks: list[bytes] = []
        while True:
            chunk = source.read(_COPY_CHUNK_SIZE)
            if not chunk:
                break
            chunks.append(chunk)
        return b"".join(chunks)
    raise TypeError(f"Unsupported copy source: {type(source).__name__}")
