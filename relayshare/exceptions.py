# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0
"""Error taxonomy shared by the host and viewer sides."""


class RelayShareError(Exception):
    """Relayshare base class error."""


class FileOperationError(RelayShareError):
    """A filesystem operation on the shared tree failed.

    These are always recovered locally by the host and reported to the
    viewer as a failure payload; they never close the channel.
    """

    code = "io_error"

    def __init__(self, path: str, message: str | None = None):
        self.path = path
        super().__init__(message or f"{self.code}: {path}")


class PathEscape(FileOperationError):
    """The requested path resolves outside the shared root."""

    code = "path_escape"

    def __init__(self, path: str, message: str | None = None):
        super().__init__(path, message or f"path outside shared directory: {path}")


class NotFound(FileOperationError):
    """The requested path does not exist."""

    code = "not_found"

    def __init__(self, path: str, message: str | None = None):
        super().__init__(path, message or f"no such file or directory: {path}")


class NotADirectory(FileOperationError):
    """A listing was requested for something that is not a directory."""

    code = "not_a_directory"

    def __init__(self, path: str, message: str | None = None):
        super().__init__(path, message or f"not a directory: {path}")


class IsADirectory(FileOperationError):
    """A file operation was requested on a directory."""

    code = "is_a_directory"

    def __init__(self, path: str, message: str | None = None):
        super().__init__(path, message or f"is a directory: {path}")


class PermissionDenied(FileOperationError):
    """The host process may not access the requested path."""

    code = "permission_denied"

    def __init__(self, path: str, message: str | None = None):
        super().__init__(path, message or f"permission denied: {path}")


class InvalidUploadPayload(FileOperationError):
    """Upload content is not a list of byte values."""

    code = "invalid_upload_payload"

    def __init__(self, path: str, message: str | None = None):
        super().__init__(path, message or f"invalid upload content for {path}")


class FileTooLarge(FileOperationError):
    """The file does not fit in a single relay message."""

    code = "file_too_large"

    def __init__(self, path: str, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(path, f"file too large to send: {path} ({size} bytes, limit {limit})")


class SessionError(RelayShareError):
    """A session could not be established."""


class PinUnregistered(SessionError):
    """The relay does not know the PIN (or it expired)."""

    def __init__(self, pin: str, reason: str | None = None):
        self.pin = pin
        super().__init__(reason or "PIN not found")


class PinHostOffline(SessionError):
    """The PIN is registered but no host is attached to it."""

    def __init__(self, pin: str):
        self.pin = pin
        super().__init__("host not connected")


class RegistrationFailed(SessionError):
    """The relay refused to register a freshly generated PIN."""

    def __init__(self, pin: str, reason: str):
        self.pin = pin
        self.reason = reason
        super().__init__(f"failed to register PIN {pin}: {reason}")


class RootSelectionCancelled(SessionError):
    """The user dismissed the folder picker."""


class ChannelError(RelayShareError):
    """Transport level failure."""


class ChannelClosed(ChannelError):
    """The persistent channel is closed."""

    def __init__(self, code: int | None, reason: str):
        self.code = code
        self.reason = reason
        super().__init__(f"channel closed ({code}): {reason}")


class DecodeError(ChannelError):
    """An inbound frame could not be decoded into an envelope."""


class RelayUnavailable(SessionError):
    """The relay HTTP endpoints could not be reached."""
