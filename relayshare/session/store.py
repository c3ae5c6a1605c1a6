# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0
"""Persisted session slot used to resume a host or viewer session."""

import json
import logging
import time
from datetime import timedelta
from pathlib import Path
from typing import Callable, Optional, Protocol

import pydantic

from relayshare.conf import CONF
from relayshare.files.utils import read_json, write_json

LOG = logging.getLogger(__name__)

STATE_FILENAME = "state.json"
DEFAULT_VALIDITY = timedelta(days=15)


class KeyValueStore(Protocol):
    """Local string key-value persistence."""

    def get(self, key: str) -> Optional[str]:
        """Return the value stored under ``key``, or None."""

    def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``."""


class JsonFileKeyValueStore:
    """Key-value store kept in a single JSON document on disk.

    Each write replaces the whole document atomically.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    @classmethod
    def from_conf(cls) -> "JsonFileKeyValueStore":
        """Store located in the configured state directory."""
        return cls(Path(CONF.session.state_dir).expanduser() / STATE_FILENAME)

    def get(self, key: str) -> Optional[str]:
        """Return the value stored under ``key``, or None."""
        value = read_json(self.path).get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``."""
        data = read_json(self.path)
        data[key] = value
        write_json(self.path, data)


class StoredSession(pydantic.BaseModel):
    """The persisted part of a session."""

    pin: str = pydantic.Field(pattern=r"^\d{6}$")
    root_path: Optional[str] = None
    saved_at_epoch_ms: int = pydantic.Field(ge=0)

    def age_ms(self, now_ms: int) -> int:
        """Milliseconds elapsed since the session was saved."""
        return now_ms - self.saved_at_epoch_ms


def _now_ms() -> int:
    return int(time.time() * 1000)


class SessionStore:
    """One resumable session slot per role.

    A stored session older than the validity window is treated as absent.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        role: str,
        validity: timedelta = DEFAULT_VALIDITY,
        clock: Callable[[], int] = _now_ms,
    ):
        self.kv = kv
        self.key = f"{role}_session"
        self.validity = validity
        self.clock = clock

    @classmethod
    def from_conf(cls, role: str) -> "SessionStore":
        """Store backed by the configured state file."""
        return cls(
            JsonFileKeyValueStore.from_conf(),
            role,
            validity=timedelta(days=CONF.session.validity_days),
        )

    @property
    def validity_ms(self) -> int:
        """The validity window in milliseconds."""
        return int(self.validity.total_seconds() * 1000)

    def save(self, pin: str, root_path: Optional[str] = None) -> StoredSession:
        """Overwrite the slot with a fresh session."""
        stored = StoredSession(pin=pin, root_path=root_path, saved_at_epoch_ms=self.clock())
        self.kv.set(self.key, stored.model_dump_json())
        LOG.debug("Saved %s for PIN %s", self.key, pin)
        return stored

    def load(self) -> Optional[StoredSession]:
        """Return whatever is stored, regardless of age."""
        raw = self.kv.get(self.key)
        if not raw:
            return None
        try:
            return StoredSession.model_validate(json.loads(raw))
        except (ValueError, pydantic.ValidationError) as exc:
            LOG.warning("Discarding unreadable %s: %s", self.key, exc)
            return None

    def resumable(self) -> Optional[StoredSession]:
        """Return the stored session if it is still inside the validity window."""
        stored = self.load()
        if stored is None:
            return None
        if stored.age_ms(self.clock()) >= self.validity_ms:
            LOG.info("Stored session for PIN %s expired", stored.pin)
            return None
        return stored

    def clear(self) -> None:
        """Forget the stored session."""
        self.kv.set(self.key, "")
        LOG.debug("Cleared %s", self.key)
