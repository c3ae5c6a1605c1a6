# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0
"""Host and viewer session controllers and the resumable session store."""

from .host import HostSession, HostSessionController, HostState
from .store import JsonFileKeyValueStore, SessionStore, StoredSession
from .viewer import ViewerSession, ViewerSessionController, ViewerState

__all__ = [
    "HostSession",
    "HostSessionController",
    "HostState",
    "JsonFileKeyValueStore",
    "SessionStore",
    "StoredSession",
    "ViewerSession",
    "ViewerSessionController",
    "ViewerState",
]
