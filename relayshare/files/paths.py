# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0
"""Map relay-relative paths onto the shared root directory."""

import os
import posixpath
from pathlib import Path

from relayshare.exceptions import PathEscape

ROOT_ALIASES = ("", "/", ".")


def canonical_root(root: str | os.PathLike) -> Path:
    """Return the real, absolute path of a shared root."""
    return Path(os.path.realpath(os.fspath(root)))


def _is_absolute(relative: str) -> bool:
    return relative.startswith("/") or relative.startswith("\\") or os.path.isabs(relative)


def resolve(root: str | os.PathLike, relative: str) -> Path:
    """Resolve ``relative`` against ``root`` and verify containment.

    The empty string and ``/`` refer to the root itself. Absolute inputs
    are only accepted when they already name the root. The result is the
    canonical path (symlinks followed), and anything that lands outside
    the root raises PathEscape instead of being clamped.
    """
    base = canonical_root(root)
    if relative is None or relative in ROOT_ALIASES:
        return base
    if "\x00" in relative:
        raise PathEscape(relative)

    if _is_absolute(relative):
        if canonical_root(relative) == base:
            return base
        raise PathEscape(relative)

    normalized = posixpath.normpath(relative.replace("\\", "/"))
    if normalized == ".":
        return base
    if normalized == ".." or normalized.startswith("../"):
        raise PathEscape(relative)

    resolved = Path(os.path.realpath(base / normalized))
    try:
        resolved.relative_to(base)
    except ValueError:
        raise PathEscape(relative)
    return resolved


class PathResolver:
    """Resolve relay-relative paths for one shared root.

    The root is fixed at construction and never changes for the lifetime
    of the resolver.
    """

    def __init__(self, root: str | os.PathLike):
        self._root = canonical_root(root)

    @property
    def root(self) -> Path:
        """The canonical shared root."""
        return self._root

    def resolve(self, relative: str) -> Path:
        """Resolve a relay-relative path to an absolute one under the root."""
        return resolve(self._root, relative)

    def relativize(self, absolute: str | os.PathLike) -> str:
        """Return the '/'-separated relay path of an absolute path under the root."""
        rel = Path(absolute).relative_to(self._root)
        text = rel.as_posix()
        return "" if text == "." else text
