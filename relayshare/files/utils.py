"""File helpers shared by the host executor, the viewer and the session store."""

# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict

LOG = logging.getLogger(__name__)

CHUNK_WRITE_SIZE = 1024 * 1024


def atomic_write_bytes(destination: Path, data: bytes) -> None:
    """Write ``data`` to ``destination`` through a temp file and a rename.

    The temporary file lives next to the destination so the final
    ``os.replace`` never crosses filesystems. The parent directory must
    already exist.
    """
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{destination.name}.", suffix=".tmp", dir=destination.parent
    )
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as out:
            view = memoryview(data)
            for offset in range(0, len(view), CHUNK_WRITE_SIZE):
                out.write(view[offset : offset + CHUNK_WRITE_SIZE])  # noqa: E203
            out.flush()
            os.fsync(out.fileno())
        os.replace(tmp_path, destination)
    except BaseException:
        _remove_file_quietly(tmp_path)
        raise


def write_json(path: Path, data: Dict[str, Any]) -> None:
    """Atomically write a JSON document, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    atomic_write_bytes(path, json.dumps(data, indent=2, sort_keys=True).encode("utf-8"))


def read_json(path: Path) -> Dict[str, Any]:
    """Read a JSON document, returning an empty dict when missing or corrupt."""
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        LOG.warning("Ignoring unreadable state file %s: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        LOG.warning("Ignoring state file %s: not a JSON object", path)
        return {}
    return data


def _remove_file_quietly(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except Exception as exc:
        LOG.warning("Failed to remove file %s: %s", path, exc)
