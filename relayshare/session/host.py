# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0
"""Host side session: share a directory under a fresh PIN and serve requests.

The host walks ``IDLE -> SELECTING_ROOT -> AWAITING_PIN -> REGISTERING_PIN
-> CONNECTING -> REGISTERED -> ACTIVE -> DISCONNECTED``. Nothing is retried
automatically: a failed registration returns to ``IDLE`` and a lost channel
ends the session. A new attempt always starts with a new PIN.
"""

import asyncio
import inspect
import os
import posixpath
import secrets
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Union

import pydantic
from oslo_log import log as logging

from relayshare.conf import RelayConfig
from relayshare.exceptions import (
    ChannelClosed,
    DecodeError,
    FileOperationError,
    FileTooLarge,
    NotADirectory,
    RegistrationFailed,
    RootSelectionCancelled,
    SessionError,
)
from relayshare.files import FileOperationExecutor, PathResolver
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
    ListFilesResponse,
    MessageType,
    PathRequest,
    RegisterBaseDir,
    UploadFile,
    UploadResponse,
    decode_content,
    encode_content,
)
from relayshare.session.store import SessionStore

LOG = logging.getLogger(__name__)

RootSelector = Callable[[], Union[Optional[str], Awaitable[Optional[str]]]]


def generate_pin() -> str:
    """Return a random 6-digit PIN."""
    return str(100_000 + secrets.randbelow(900_000))


class HostState(str, Enum):
    """Lifecycle states of a host session."""

    IDLE = "idle"
    SELECTING_ROOT = "selecting_root"
    AWAITING_PIN = "awaiting_pin"
    REGISTERING_PIN = "registering_pin"
    CONNECTING = "connecting"
    REGISTERED = "registered"
    ACTIVE = "active"
    DISCONNECTED = "disconnected"


class HostSession(pydantic.BaseModel):
    """Observable state of the host session."""

    state: HostState = HostState.IDLE
    pin: Optional[str] = None
    root_path: Optional[str] = None
    last_error: Optional[str] = None
    requests_served: int = 0


class HostSessionController:
    """Drive one host session at a time.

    Inbound requests are queued in arrival order and executed one by one
    in a worker thread, so slow disk I/O never stalls the receive loop.
    """

    def __init__(
        self,
        config: RelayConfig,
        store: SessionStore,
        client: Optional[RelayClient] = None,
        pin_generator: Callable[[], str] = generate_pin,
        channel_factory: Callable[[RelayConfig], RelayChannel] = RelayChannel,
    ):
        self.config = config
        self.store = store
        self.client = client or RelayClient(config)
        self.pin_generator = pin_generator
        self.channel_factory = channel_factory
        self.session = HostSession()
        self.listeners: List[Callable[[HostSession], None]] = []
        self.channel: Optional[RelayChannel] = None
        self.executor: Optional[FileOperationExecutor] = None
        self._requests: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._events_task: Optional[asyncio.Task] = None
        self._used_pins: set[str] = set()

    def _set_state(self, state: HostState, error: Optional[str] = None) -> None:
        LOG.info("Host session %s -> %s", self.session.state.value, state.value)
        self.session.state = state
        if error is not None:
            self.session.last_error = error
        for listener in self.listeners:
            listener(self.session)

    @property
    def is_active(self) -> bool:
        """Whether the host is attached and serving requests."""
        return self.session.state == HostState.ACTIVE

    async def start(self, select_root: RootSelector) -> HostSession:
        """Select a root, register a fresh PIN and attach to the relay."""
        if self.session.state not in (HostState.IDLE, HostState.DISCONNECTED):
            raise SessionError(f"host session already {self.session.state.value}")
        self.session = HostSession()
        self._set_state(HostState.SELECTING_ROOT)
        root = select_root()
        if inspect.isawaitable(root):
            root = await root
        if not root:
            self._set_state(HostState.IDLE, "folder selection cancelled")
            raise RootSelectionCancelled("folder selection cancelled")
        return await self._open(root)

    async def share(self, root: str) -> HostSession:
        """Start a session sharing ``root``."""
        return await self.start(lambda: root)

    async def resume(self) -> HostSession:
        """Share the stored root again under a freshly generated PIN."""
        stored = self.store.resumable()
        if stored is None:
            raise SessionError("no resumable host session")
        root = stored.root_path
        if not root:
            root = await self.recover_root(stored.pin)
        LOG.info("Resuming share of %s (previous PIN %s)", root, stored.pin)
        self._used_pins.add(stored.pin)
        return await self.share(root)

    async def recover_root(self, pin: str) -> str:
        """Ask the relay which root was registered for ``pin``."""
        status = await self.client.get_base_dir(pin)
        if not status.base_directory:
            raise SessionError(status.error or f"no base directory for PIN {pin}")
        return status.base_directory

    def _fresh_pin(self) -> str:
        pin = self.pin_generator()
        while pin in self._used_pins:
            pin = self.pin_generator()
        self._used_pins.add(pin)
        return pin

    async def _open(self, root: str) -> HostSession:
        root_path = Path(root).expanduser()
        if not root_path.is_dir():
            self._set_state(HostState.IDLE, f"not a directory: {root}")
            raise NotADirectory(str(root))
        resolver = PathResolver(root_path)
        self.executor = FileOperationExecutor(resolver)
        self.session.root_path = str(resolver.root)

        self._set_state(HostState.AWAITING_PIN)
        pin = self._fresh_pin()
        self.session.pin = pin

        self._set_state(HostState.REGISTERING_PIN)
        try:
            await self.client.register_pin(pin)
        except RegistrationFailed as exc:
            LOG.error("PIN registration failed: %s", exc)
            self._set_state(HostState.IDLE, str(exc))
            raise

        self._set_state(HostState.CONNECTING)
        self.channel = self.channel_factory(self.config)
        result = await self.channel.connect(self.config.host_attach_url(pin))
        if isinstance(result, ChannelClosedEvent):
            self._set_state(HostState.DISCONNECTED, result.reason)
            raise ChannelClosed(result.code, result.reason)

        register = RegisterBaseDir(path=self.session.root_path)
        await self.channel.send(Envelope.build(MessageType.REGISTER_BASE_DIR, register))
        self._set_state(HostState.REGISTERED)
        try:
            self.store.save(pin, self.session.root_path)
        except OSError as exc:
            LOG.error("Failed to save host session: %s", exc)
            await self.channel.close()
            self._set_state(HostState.DISCONNECTED, f"failed to save session: {exc}")
            raise SessionError(f"failed to save session: {exc}") from exc
        self._requests = asyncio.Queue()
        self._worker = asyncio.create_task(self._work(), name="host-requests")
        self._events_task = asyncio.create_task(self._consume(), name="host-events")
        self._set_state(HostState.ACTIVE)
        return self.session

    async def _consume(self) -> ChannelClosedEvent:
        closed = None
        async for event in self.channel.events():
            if isinstance(event, EnvelopeReceived):
                self._requests.put_nowait(event.envelope)
            elif isinstance(event, DecodeFailed):
                LOG.warning("Ignoring malformed message from relay: %s", event.error)
            elif isinstance(event, ChannelClosedEvent):
                closed = event
        # closing the channel abandons whatever is still queued or running
        self._worker.cancel()
        self._set_state(HostState.DISCONNECTED, None if closed.requested else closed.reason)
        return closed

    async def _work(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            envelope = await self._requests.get()
            try:
                response = await loop.run_in_executor(None, self.handle, envelope)
                if response is not None and await self.channel.send(response):
                    self.session.requests_served += 1
            except Exception:
                LOG.exception("Failed to process %s message", envelope.type)

    def handle(self, envelope: Envelope) -> Optional[Envelope]:
        """Execute one inbound request and build its response.

        Failures are reported in the response payload. Messages that are
        not requests for the host are ignored and produce no response.
        """
        handler = {
            MessageType.LIST_FILES.value: self._list_files,
            MessageType.DOWNLOAD_FILE.value: self._download_file,
            MessageType.UPLOAD_FILE.value: self._upload_file,
            MessageType.DELETE_FILE.value: self._delete_file,
        }.get(envelope.type)
        if handler is None or envelope.is_listing():
            LOG.debug("Ignoring %s message", envelope.type)
            return None
        LOG.debug("Handling %s", envelope.type)
        return handler(envelope)

    def _list_files(self, envelope: Envelope) -> Envelope:
        path = str(envelope.data.get("path") or "")
        try:
            path = envelope.payload(PathRequest).path
            resolved = self.executor.resolve(path)
            files = self.executor.list(resolved)
            relay_path = self.executor.resolver.relativize(resolved)
            payload = ListFilesResponse(files=files, path=relay_path)
        except (FileOperationError, DecodeError) as exc:
            LOG.warning("list_files %r failed: %s", path, exc)
            payload = ListFilesResponse(files=[], path=path, error=str(exc))
        except Exception as exc:
            LOG.exception("list_files %r failed: %s", path, exc)
            payload = ListFilesResponse(files=[], path=path, error=str(exc))
        return Envelope.build(MessageType.LIST_FILES, payload, envelope.request_id)

    def _download_file(self, envelope: Envelope) -> Envelope:
        path = str(envelope.data.get("path") or "")
        filename = posixpath.basename(path.rstrip("/")) or path
        try:
            path = envelope.payload(PathRequest).path
            content = self.executor.read(self.executor.resolve(path))
            payload = FileContent(path=path, content=encode_content(content), filename=filename)
            response = Envelope.build(MessageType.FILE_CONTENT, payload, envelope.request_id)
            if len(response.encode()) > self.config.max_message_size:
                raise FileTooLarge(path, len(content), self.config.max_message_size)
            return response
        except (FileOperationError, DecodeError) as exc:
            LOG.warning("download_file %r failed: %s", path, exc)
            payload = FileContent(path=path, content=[], filename=filename, error=str(exc))
        except Exception as exc:
            LOG.exception("download_file %r failed: %s", path, exc)
            payload = FileContent(path=path, content=[], filename=filename, error=str(exc))
        return Envelope.build(MessageType.FILE_CONTENT, payload, envelope.request_id)

    def _upload_file(self, envelope: Envelope) -> Envelope:
        path = str(envelope.data.get("path") or "")
        try:
            upload = envelope.payload(UploadFile)
            path = upload.path
            data = decode_content(upload.content, path)
            self.executor.write(self.executor.resolve(path), data)
            payload = UploadResponse(success=True, path=path)
        except (FileOperationError, DecodeError) as exc:
            LOG.warning("upload_file %r failed: %s", path, exc)
            payload = UploadResponse(success=False, path=path or None, error=str(exc))
        except Exception as exc:
            LOG.exception("upload_file %r failed: %s", path, exc)
            payload = UploadResponse(success=False, path=path or None, error=str(exc))
        return Envelope.build(MessageType.UPLOAD_RESPONSE, payload, envelope.request_id)

    def _delete_file(self, envelope: Envelope) -> Envelope:
        path = str(envelope.data.get("path") or "")
        try:
            path = envelope.payload(PathRequest).path
            self.executor.delete(self.executor.resolve(path))
            payload = DeleteResponse(success=True, path=path)
        except (FileOperationError, DecodeError) as exc:
            LOG.warning("delete_file %r failed: %s", path, exc)
            payload = DeleteResponse(success=False, path=path, error=str(exc))
        except Exception as exc:
            LOG.exception("delete_file %r failed: %s", path, exc)
            payload = DeleteResponse(success=False, path=path, error=str(exc))
        return Envelope.build(MessageType.DELETE_RESPONSE, payload, envelope.request_id)

    async def wait_closed(self) -> Optional[ChannelClosedEvent]:
        """Block until the channel of the current session closes."""
        if self._events_task is None:
            return None
        return await self._events_task

    async def disconnect(self) -> None:
        """Close the channel. The stored session is kept for a later resume."""
        if self.channel is not None:
            await self.channel.close()
        if self._events_task is not None:
            await self._events_task
        elif self.session.state != HostState.IDLE:
            self._set_state(HostState.DISCONNECTED)

    async def logout(self) -> None:
        """Close the channel and forget the stored session."""
        await self.disconnect()
        self.store.clear()

    async def close(self) -> None:
        """Disconnect and release the HTTP client."""
        await self.disconnect()
        await self.client.close()


def default_root_selector(root: Optional[str]) -> RootSelector:
    """Selector returning a fixed root, or None (cancelled) when unset."""

    def _select() -> Optional[str]:
        return os.path.abspath(os.path.expanduser(root)) if root else None

    return _select
