# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0
"""Pydantic schemas for the messages exchanged over the relay channel.

Every frame is a JSON object ``{"type": ..., "data": {...}}``. Requests may
carry an envelope level ``request_id`` which the host echoes on the
matching response; peers that omit it are still understood.
"""
import json
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from relayshare.exceptions import DecodeError, InvalidUploadPayload

T = TypeVar("T", bound=BaseModel)


class MessageType(str, Enum):
    """Enum for the envelope types understood by the clients."""

    REGISTER_BASE_DIR = "register_base_dir"
    LIST_FILES = "list_files"
    DOWNLOAD_FILE = "download_file"
    FILE_CONTENT = "file_content"
    UPLOAD_FILE = "upload_file"
    UPLOAD_RESPONSE = "upload_response"
    DELETE_FILE = "delete_file"
    DELETE_RESPONSE = "delete_response"


class FileEntry(BaseModel):
    """One entry of a directory listing, as the relay defines it."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(description="Base name of the entry")
    path: str = Field(description="Relay path, '/'-separated and relative to the root")
    is_directory: bool = Field(
        validation_alias=AliasChoices("is_directory", "isDirectory"),
        description="Whether the entry is a directory",
    )
    size: Optional[int] = Field(default=None, ge=0, description="Size in bytes for files")
    modified: Optional[str] = Field(
        default=None, description="Last modification time, ISO-8601 UTC"
    )


class RegisterBaseDir(BaseModel):
    """Host declares the root it shares for this PIN."""

    path: str


class PathRequest(BaseModel):
    """Request addressing a single relay path (list, download, delete)."""

    path: str = ""


class ListFilesResponse(BaseModel):
    """Directory listing sent back by the host."""

    files: List[FileEntry] = Field(default_factory=list)
    path: str = ""
    error: Optional[str] = None


class FileContent(BaseModel):
    """File bytes sent back by the host for a download request."""

    path: str
    content: Any = Field(default_factory=list, description="List of byte values")
    filename: str = ""
    error: Optional[str] = None


class UploadFile(BaseModel):
    """File bytes the viewer wants stored on the host."""

    path: str
    content: Any = Field(default=None, description="List of byte values")
    filename: str = ""


class UploadResponse(BaseModel):
    """Outcome of an upload."""

    success: bool
    path: Optional[str] = None
    error: Optional[str] = None


class DeleteResponse(BaseModel):
    """Outcome of a delete."""

    success: bool
    path: str = ""
    error: Optional[str] = None


class Envelope(BaseModel):
    """A single message unit exchanged over the channel.

    ``type`` stays a plain string so that unknown message types decode
    fine and can be ignored by the receiver.
    """

    model_config = ConfigDict(frozen=True)

    type: str
    data: Dict[str, Any] = Field(default_factory=dict)
    request_id: Optional[str] = None

    @classmethod
    def build(
        cls, message_type: MessageType, payload: BaseModel, request_id: Optional[str] = None
    ) -> "Envelope":
        """Wrap a payload model into an envelope."""
        return cls(
            type=message_type.value,
            data=payload.model_dump(mode="json", exclude_none=True),
            request_id=request_id,
        )

    def payload(self, model: Type[T]) -> T:
        """Parse the data of this envelope with ``model``.

        Raises DecodeError when the payload does not match.
        """
        try:
            return model.model_validate(self.data)
        except ValidationError as exc:
            raise DecodeError(f"invalid {self.type} payload: {exc}")

    def is_listing(self) -> bool:
        """Whether a ``list_files`` envelope is a response rather than a request."""
        return self.type == MessageType.LIST_FILES.value and "files" in self.data

    def encode(self) -> str:
        """Serialize to the JSON text sent on the wire."""
        return json.dumps(self.model_dump(exclude_none=True), separators=(",", ":"))


def new_request_id() -> str:
    """Return a fresh correlation identifier."""
    return uuid.uuid4().hex


def decode(raw: str | bytes) -> Envelope:
    """Decode one frame into an envelope.

    Raises DecodeError on invalid JSON or on a frame that is not a
    ``{type, data}`` object.
    """
    try:
        obj = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise DecodeError(f"invalid JSON frame: {exc}")
    if not isinstance(obj, dict):
        raise DecodeError("frame is not a JSON object")
    if obj.get("data") is None:
        obj["data"] = {}
    try:
        return Envelope.model_validate(obj)
    except ValidationError as exc:
        raise DecodeError(f"invalid envelope: {exc}")


def encode_content(data: bytes) -> List[int]:
    """Encode bytes as the list of byte values carried in ``content``."""
    return list(data)


def decode_content(content: Any, path: str) -> bytes:
    """Decode a ``content`` list back into bytes.

    Raises InvalidUploadPayload for anything that is not a list of
    integers in the 0..255 range.
    """
    if not isinstance(content, list):
        raise InvalidUploadPayload(path, f"content for {path} must be a list of bytes")
    try:
        if any(isinstance(b, bool) or not isinstance(b, int) for b in content):
            raise ValueError("non-integer byte value")
        return bytes(content)
    except ValueError as exc:
        raise InvalidUploadPayload(path, f"invalid content for {path}: {exc}")
