# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0
"""Filesystem operations performed by the host on behalf of a viewer."""

import errno
import logging
import os
import posixpath
from datetime import datetime, timezone
from pathlib import Path

from relayshare.exceptions import (
    FileOperationError,
    IsADirectory,
    NotADirectory,
    NotFound,
    PathEscape,
    PermissionDenied,
)
from relayshare.files.paths import PathResolver
from relayshare.files.utils import atomic_write_bytes
from relayshare.relay.protocol import FileEntry

LOG = logging.getLogger(__name__)

_ERRNO_MAP = {
    errno.ENOENT: NotFound,
    errno.ENOTDIR: NotADirectory,
    errno.EISDIR: IsADirectory,
    errno.EACCES: PermissionDenied,
    errno.EPERM: PermissionDenied,
}


def translate_os_error(exc: OSError, relay_path: str) -> FileOperationError:
    """Map an OSError onto the file operation taxonomy."""
    error_class = _ERRNO_MAP.get(exc.errno)
    if error_class is None:
        return FileOperationError(relay_path, f"{exc.strerror or exc}: {relay_path}")
    return error_class(relay_path)


def _modified(stat_result: os.stat_result) -> str:
    return datetime.fromtimestamp(stat_result.st_mtime, tz=timezone.utc).isoformat()


class FileOperationExecutor:
    """List, read, write and delete files under one shared root.

    Every method takes a path produced by :meth:`resolve` and checks it is
    still contained in the root before any filesystem call.
    """

    def __init__(self, resolver: PathResolver):
        self.resolver = resolver

    @property
    def root(self) -> Path:
        """The canonical shared root."""
        return self.resolver.root

    def resolve(self, relative: str) -> Path:
        """Resolve a relay path, raising PathEscape when it leaves the root."""
        return self.resolver.resolve(relative)

    def _relay_path(self, path: Path) -> str:
        try:
            return self.resolver.relativize(path)
        except ValueError:
            raise PathEscape(str(path))

    def list(self, path: Path) -> list[FileEntry]:
        """Return the direct children of a directory, in no particular order."""
        relay_dir = self._relay_path(path)
        if not path.exists():
            raise NotFound(relay_dir)
        if not path.is_dir():
            raise NotADirectory(relay_dir)

        entries = []
        try:
            with os.scandir(path) as it:
                for dirent in it:
                    entry = self._entry(path, relay_dir, dirent)
                    if entry is not None:
                        entries.append(entry)
        except OSError as exc:
            raise translate_os_error(exc, relay_dir)
        LOG.debug("Listed %d entries in %r", len(entries), relay_dir or "/")
        return entries

    def _entry(self, parent: Path, relay_dir: str, dirent: os.DirEntry) -> FileEntry | None:
        if dirent.is_symlink():
            target = Path(os.path.realpath(parent / dirent.name))
            try:
                target.relative_to(self.root)
            except ValueError:
                LOG.debug("Skipping %s: symlink leaves the shared root", dirent.path)
                return None
        try:
            is_dir = dirent.is_dir()
            stat_result = dirent.stat()
        except OSError as exc:
            LOG.debug("Skipping %s: %s", dirent.path, exc)
            return None
        return FileEntry(
            name=dirent.name,
            path=posixpath.join(relay_dir, dirent.name) if relay_dir else dirent.name,
            is_directory=is_dir,
            size=None if is_dir else stat_result.st_size,
            modified=_modified(stat_result),
        )

    def read(self, path: Path) -> bytes:
        """Return the whole content of a file."""
        relay_path = self._relay_path(path)
        if path.is_dir():
            raise IsADirectory(relay_path)
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as exc:
            raise translate_os_error(exc, relay_path)

    def write(self, path: Path, data: bytes) -> None:
        """Create or replace a file atomically.

        Parent directories are not created; a missing parent is NotFound.
        """
        relay_path = self._relay_path(path)
        if path == self.root or path.is_dir():
            raise IsADirectory(relay_path)
        if not path.parent.is_dir():
            raise NotFound(relay_path, f"parent directory does not exist: {relay_path}")
        try:
            atomic_write_bytes(path, data)
        except OSError as exc:
            raise translate_os_error(exc, relay_path)
        LOG.debug("Wrote %d bytes to %r", len(data), relay_path)

    def delete(self, path: Path) -> None:
        """Delete a single file. Directories are refused."""
        relay_path = self._relay_path(path)
        if not path.exists():
            raise NotFound(relay_path)
        if path.is_dir():
            raise IsADirectory(relay_path)
        try:
            path.unlink()
        except FileNotFoundError:
            raise NotFound(relay_path)
        except OSError as exc:
            raise translate_os_error(exc, relay_path)
        LOG.debug("Deleted %r", relay_path)
