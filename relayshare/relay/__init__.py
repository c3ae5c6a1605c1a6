# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0
"""Relay transport: wire schemas, HTTP endpoints and the persistent channel."""

from .channel import ChannelState, RelayChannel
from .client import RelayClient
from .protocol import Envelope, FileEntry, MessageType

__all__ = [
    "ChannelState",
    "Envelope",
    "FileEntry",
    "MessageType",
    "RelayChannel",
    "RelayClient",
]
