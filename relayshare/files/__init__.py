# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0
"""Host side access to the shared directory tree.

Every path received from the relay goes through :class:`PathResolver`
before :class:`FileOperationExecutor` touches the filesystem.
"""

from relayshare.relay.protocol import FileEntry

from .executor import FileOperationExecutor
from .paths import PathResolver, resolve

__all__ = [
    "FileEntry",
    "FileOperationExecutor",
    "PathResolver",
    "resolve",
]
