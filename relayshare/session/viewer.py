# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0
"""Viewer side session: browse, fetch, upload and delete files on a host.

A viewer walks ``IDLE -> CHECKING_PIN -> CONNECTING -> ACTIVE ->
DISCONNECTED``; a startup resume from the session store goes through
``AUTO_RESUMING`` instead of the first two steps. All displayed state
lives in one :class:`ViewerSession` value owned by the controller.
"""

import asyncio
import posixpath
import re
from collections import OrderedDict
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Union

import pydantic
from oslo_log import log as logging

from relayshare.conf import RelayConfig
from relayshare.exceptions import (
    ChannelClosed,
    DecodeError,
    FileOperationError,
    PinHostOffline,
    PinUnregistered,
    SessionError,
)
from relayshare.files.utils import atomic_write_bytes
from relayshare.relay.channel import (
    ChannelClosedEvent,
    DecodeFailed,
    EnvelopeReceived,
    RelayChannel,
)
from relayshare.relay.client import RelayClient
from relayshare.relay.protocol import (
    DeleteResponse,
    Envelope,
    FileContent,
    FileEntry,
    ListFilesResponse,
    MessageType,
    PathRequest,
    UploadFile,
    UploadResponse,
    decode_content,
    encode_content,
    new_request_id,
)
from relayshare.session.store import SessionStore

LOG = logging.getLogger(__name__)

PIN_PATTERN = re.compile(r"^\d{6}$")

RESPONSE_TYPES = {
    MessageType.LIST_FILES: MessageType.LIST_FILES,
    MessageType.DOWNLOAD_FILE: MessageType.FILE_CONTENT,
    MessageType.UPLOAD_FILE: MessageType.UPLOAD_RESPONSE,
    MessageType.DELETE_FILE: MessageType.DELETE_RESPONSE,
}


class ViewerState(str, Enum):
    """Lifecycle states of a viewer session."""

    IDLE = "idle"
    AUTO_RESUMING = "auto_resuming"
    CHECKING_PIN = "checking_pin"
    CONNECTING = "connecting"
    ACTIVE = "active"
    DISCONNECTED = "disconnected"


class ViewerSession(pydantic.BaseModel):
    """Everything the presentation layer shows about a viewer session."""

    state: ViewerState = ViewerState.IDLE
    pin: Optional[str] = None
    current_path: str = ""
    entries: List[FileEntry] = pydantic.Field(default_factory=list)
    uploads_in_flight: int = 0
    downloads: List[str] = pydantic.Field(default_factory=list)
    decode_errors: int = 0
    last_error: Optional[str] = None

    def sorted_entries(self) -> List[FileEntry]:
        """Entries for display: directories first, then by name."""
        return sorted(self.entries, key=lambda e: (not e.is_directory, e.name.casefold()))

    @property
    def is_uploading(self) -> bool:
        """Whether an upload indicator should be shown."""
        return self.uploads_in_flight > 0


class PendingRequest:
    """A request sent to the host whose response has not arrived yet."""

    def __init__(
        self, request_id: str, request_type: MessageType, path: str, future: asyncio.Future
    ):
        self.request_id = request_id
        self.request_type = request_type
        self.response_type = RESPONSE_TYPES[request_type]
        self.path = path
        self.future = future
        self.saved_to: Optional[Path] = None
        self.closed: Optional[ChannelClosedEvent] = None

    def __repr__(self) -> str:
        return f"<PendingRequest {self.request_type.value} {self.path!r}>"

    async def wait(self) -> pydantic.BaseModel:
        """Wait for the parsed response payload.

        Raises ChannelClosed when the session ended before the response.
        """
        try:
            return await self.future
        except asyncio.CancelledError:
            if self.closed is not None:
                raise ChannelClosed(self.closed.code, self.closed.reason)
            raise


class ViewerSessionController:
    """Drive one viewer session at a time."""

    def __init__(
        self,
        config: RelayConfig,
        store: SessionStore,
        download_dir: Union[str, Path],
        client: Optional[RelayClient] = None,
        channel_factory: Callable[[RelayConfig], RelayChannel] = RelayChannel,
    ):
        self.config = config
        self.store = store
        self.download_dir = Path(download_dir)
        self.client = client or RelayClient(config)
        self.channel_factory = channel_factory
        self.session = ViewerSession()
        self.listeners: List[Callable[[ViewerSession], None]] = []
        self.channel: Optional[RelayChannel] = None
        self._pending: "OrderedDict[str, PendingRequest]" = OrderedDict()
        self._latest_listing: Optional[str] = None
        self._events_task: Optional[asyncio.Task] = None

    def _notify(self) -> None:
        for listener in self.listeners:
            listener(self.session)

    def _set_state(self, state: ViewerState, error: Optional[str] = None) -> None:
        LOG.info("Viewer session %s -> %s", self.session.state.value, state.value)
        self.session.state = state
        if error is not None:
            self.session.last_error = error
        self._notify()

    @property
    def is_active(self) -> bool:
        """Whether requests can be sent."""
        return (
            self.session.state == ViewerState.ACTIVE
            and self.channel is not None
            and self.channel.is_open
        )

    # -------- session lifecycle --------

    async def connect(self, pin: str) -> ViewerSession:
        """Check ``pin`` with the relay and attach to its host."""
        self._ensure_idle()
        pin = pin.strip()
        self.session = ViewerSession(pin=pin)
        if not PIN_PATTERN.match(pin):
            self._set_state(ViewerState.IDLE, "PIN must be 6 digits")
            raise PinUnregistered(pin, "PIN must be 6 digits")
        self._set_state(ViewerState.CHECKING_PIN)
        return await self._attach(pin, resuming=False)

    async def resume(self) -> Optional[ViewerSession]:
        """Reattach to the PIN kept in the session store, if still valid.

        Returns None when there is nothing to resume. A failed resume
        clears the stored session so the dead PIN is not retried.
        """
        self._ensure_idle()
        stored = self.store.resumable()
        if stored is None:
            return None
        self.session = ViewerSession(pin=stored.pin)
        self._set_state(ViewerState.AUTO_RESUMING)
        try:
            return await self._attach(stored.pin, resuming=True)
        except (SessionError, ChannelClosed):
            LOG.info("Resume of PIN %s failed, forgetting it", stored.pin)
            self.store.clear()
            raise

    def _ensure_idle(self) -> None:
        if self.session.state not in (ViewerState.IDLE, ViewerState.DISCONNECTED):
            raise SessionError(f"viewer session already {self.session.state.value}")

    async def _attach(self, pin: str, resuming: bool) -> ViewerSession:
        try:
            status = await self.client.check_pin(pin)
        except SessionError as exc:
            self._set_state(ViewerState.IDLE, str(exc))
            raise
        if not status.valid:
            error = PinUnregistered(pin, status.error)
            self._set_state(ViewerState.IDLE, str(error))
            raise error
        if not status.pc_connected:
            error = PinHostOffline(pin)
            self._set_state(ViewerState.IDLE, str(error))
            raise error

        if not resuming:
            self._set_state(ViewerState.CONNECTING)
        self.channel = self.channel_factory(self.config)
        result = await self.channel.connect(self.config.viewer_attach_url(pin))
        if isinstance(result, ChannelClosedEvent):
            self._set_state(ViewerState.DISCONNECTED, result.reason)
            raise ChannelClosed(result.code, result.reason)

        self.store.save(pin)
        self._set_state(ViewerState.ACTIVE)
        self._events_task = asyncio.create_task(self._consume(), name="viewer-events")
        await self.list_directory("")
        return self.session

    async def _consume(self) -> ChannelClosedEvent:
        closed = None
        async for event in self.channel.events():
            if isinstance(event, EnvelopeReceived):
                await self._handle(event.envelope)
            elif isinstance(event, DecodeFailed):
                self.session.decode_errors += 1
                LOG.warning("Ignoring malformed message from relay: %s", event.error)
            elif isinstance(event, ChannelClosedEvent):
                closed = event
        self._on_closed(closed)
        return closed

    def _on_closed(self, event: ChannelClosedEvent) -> None:
        if not event.requested:
            self.store.clear()
        for pending in self._pending.values():
            pending.closed = event
            pending.future.cancel()
        self._pending.clear()
        self._latest_listing = None
        self.session.uploads_in_flight = 0
        self._set_state(ViewerState.DISCONNECTED, None if event.requested else event.reason)

    async def wait_closed(self) -> Optional[ChannelClosedEvent]:
        """Block until the channel of the current session closes."""
        if self._events_task is None:
            return None
        return await self._events_task

    async def disconnect(self) -> None:
        """Close the channel on user request, keeping the stored session."""
        if self.channel is not None:
            await self.channel.close()
        if self._events_task is not None:
            await self._events_task

    async def logout(self) -> None:
        """Close the channel and forget the stored session."""
        await self.disconnect()
        self.store.clear()

    async def close(self) -> None:
        """Disconnect and release the HTTP client."""
        await self.disconnect()
        await self.client.close()

    # -------- user actions --------

    async def _request(
        self,
        request_type: MessageType,
        payload: pydantic.BaseModel,
        path: str,
        track: Optional[Callable[[PendingRequest], None]] = None,
        untrack: Optional[Callable[[PendingRequest], None]] = None,
    ) -> PendingRequest:
        """Send a request and register it as pending.

        ``track`` runs before the send, as the response can be handled
        before the send returns. ``untrack`` undoes it when the send fails.
        """
        if not self.is_active:
            raise SessionError("not connected")
        request_id = new_request_id()
        future = asyncio.get_running_loop().create_future()
        pending = PendingRequest(request_id, request_type, path, future)
        self._pending[request_id] = pending
        if track is not None:
            track(pending)
        if not await self.channel.send(Envelope.build(request_type, payload, request_id)):
            self._pending.pop(request_id, None)
            if untrack is not None:
                untrack(pending)
            raise SessionError(f"failed to send {request_type.value}")
        return pending

    async def list_directory(self, path: str = "") -> PendingRequest:
        """Request the listing of ``path``; it replaces the displayed entries."""
        previous = self._latest_listing

        def track(pending: PendingRequest) -> None:
            self._latest_listing = pending.request_id

        def untrack(pending: PendingRequest) -> None:
            if self._latest_listing == pending.request_id:
                self._latest_listing = previous

        return await self._request(
            MessageType.LIST_FILES, PathRequest(path=path), path, track, untrack
        )

    async def open_directory(self, entry: Union[FileEntry, str]) -> PendingRequest:
        """Navigate into a directory entry."""
        path = entry.path if isinstance(entry, FileEntry) else entry
        return await self.list_directory(path)

    async def go_up(self) -> PendingRequest:
        """Navigate to the parent of the current directory."""
        return await self.list_directory(posixpath.dirname(self.session.current_path.strip("/")))

    async def refresh(self) -> PendingRequest:
        """Request the current directory again."""
        return await self.list_directory(self.session.current_path)

    async def download(self, path: str) -> PendingRequest:
        """Request a file; it is saved under the download directory on arrival."""
        return await self._request(MessageType.DOWNLOAD_FILE, PathRequest(path=path), path)

    async def delete(self, path: str) -> PendingRequest:
        """Request the deletion of a file on the host."""
        return await self._request(MessageType.DELETE_FILE, PathRequest(path=path), path)

    async def upload(
        self, local_files: Iterable[Union[str, Path]], dest_dir: Optional[str] = None
    ) -> List[PendingRequest]:
        """Upload local files into ``dest_dir`` (default: the current directory).

        Each file is read whole and sent as one message. Uploads are
        independent of each other and their responses may arrive in any
        order.
        """
        target_dir = self.session.current_path if dest_dir is None else dest_dir
        target_dir = target_dir.strip("/")
        loop = asyncio.get_running_loop()
        requests = []
        for local in local_files:
            local = Path(local)
            data = await loop.run_in_executor(None, local.read_bytes)
            target = posixpath.join(target_dir, local.name) if target_dir else local.name
            payload = UploadFile(path=target, content=encode_content(data), filename=local.name)
            requests.append(
                await self._request(
                    MessageType.UPLOAD_FILE,
                    payload,
                    target,
                    lambda _: self._count_upload(1),
                    lambda _: self._count_upload(-1),
                )
            )
        return requests

    def _count_upload(self, delta: int) -> None:
        self.session.uploads_in_flight = max(0, self.session.uploads_in_flight + delta)
        self._notify()

    # -------- inbound messages --------

    def _match(self, envelope: Envelope) -> tuple[bool, Optional[PendingRequest]]:
        """Find the request a response answers.

        Responses carrying a request id are matched exactly and dropped when
        the id is unknown. Responses without one fall back to the oldest
        pending request of the same type.
        """
        if envelope.request_id:
            pending = self._pending.pop(envelope.request_id, None)
            return pending is not None, pending
        for request_id, pending in self._pending.items():
            if pending.response_type.value == envelope.type:
                del self._pending[request_id]
                return True, pending
        return True, None

    async def _handle(self, envelope: Envelope) -> None:
        if envelope.type == MessageType.LIST_FILES.value and not envelope.is_listing():
            LOG.debug("Ignoring list_files request echoed to the viewer")
            return
        handler = {
            MessageType.LIST_FILES.value: self._on_listing,
            MessageType.FILE_CONTENT.value: self._on_file_content,
            MessageType.UPLOAD_RESPONSE.value: self._on_upload_response,
            MessageType.DELETE_RESPONSE.value: self._on_delete_response,
        }.get(envelope.type)
        if handler is None:
            LOG.debug("Ignoring %s message", envelope.type)
            return
        known, pending = self._match(envelope)
        if not known:
            LOG.info(
                "Dropping %s response for unknown request %s", envelope.type, envelope.request_id
            )
            return
        result = None
        try:
            result = await handler(envelope, pending)
        except DecodeError as exc:
            self.session.decode_errors += 1
            self.session.last_error = str(exc)
            LOG.warning("Malformed %s payload: %s", envelope.type, exc)
        finally:
            if pending is not None and not pending.future.done():
                pending.future.set_result(result)
            self._notify()

    async def _on_listing(self, envelope: Envelope, pending: Optional[PendingRequest]):
        listing = envelope.payload(ListFilesResponse)
        if envelope.request_id and envelope.request_id != self._latest_listing:
            LOG.debug("Listing of %r superseded by a newer request", listing.path)
            return listing
        if listing.error:
            self.session.last_error = listing.error
            return listing
        self.session.entries = listing.files
        self.session.current_path = listing.path.strip("/")
        return listing

    async def _on_file_content(self, envelope: Envelope, pending: Optional[PendingRequest]):
        content = envelope.payload(FileContent)
        if content.error:
            self.session.last_error = content.error
            return content
        try:
            data = decode_content(content.content, content.path)
        except FileOperationError as exc:
            self.session.last_error = str(exc)
            return content.model_copy(update={"error": str(exc)})

        name = posixpath.basename((content.filename or content.path).replace("\\", "/"))
        if name in ("", ".", ".."):
            name = "download"
        destination = self.download_dir / name
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._save, destination, data)
        except OSError as exc:
            LOG.error("Failed to save %s: %s", destination, exc)
            self.session.last_error = f"failed to save {name}: {exc}"
            return content.model_copy(update={"error": self.session.last_error})
        LOG.info("Saved %s (%d bytes)", destination, len(data))
        self.session.downloads.append(str(destination))
        if pending is not None:
            pending.saved_to = destination
        return content

    def _save(self, destination: Path, data: bytes) -> None:
        destination.parent.mkdir(parents=True, exist_ok=True)
        atomic_write_bytes(destination, data)

    async def _on_upload_response(self, envelope: Envelope, pending: Optional[PendingRequest]):
        response = envelope.payload(UploadResponse)
        self.session.uploads_in_flight = max(0, self.session.uploads_in_flight - 1)
        if not response.success:
            self.session.last_error = f"Upload failed: {response.error or 'Unknown error'}"
            return response
        if self.is_active:
            await self.refresh()
        return response

    async def _on_delete_response(self, envelope: Envelope, pending: Optional[PendingRequest]):
        response = envelope.payload(DeleteResponse)
        if not response.success:
            self.session.last_error = f"Delete failed: {response.error or 'Unknown error'}"
            return response
        if self.is_active:
            await self.refresh()
        return response
