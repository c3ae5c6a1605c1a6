# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0

from unittest.mock import AsyncMock, MagicMock

import pytest

from relayshare.exceptions import ChannelClosed, PinHostOffline, PinUnregistered, SessionError
from relayshare.relay.client import PinStatus
from relayshare.relay.protocol import (
    DeleteResponse,
    Envelope,
    FileContent,
    FileEntry,
    ListFilesResponse,
    MessageType,
    UploadResponse,
)
from relayshare.session.host import HostSessionController
from relayshare.session.viewer import ViewerSession, ViewerSessionController, ViewerState

DOCS = FileEntry(name="docs", path="docs", is_directory=True)
README = FileEntry(name="readme.md", path="readme.md", is_directory=False, size=8)


def listing(files, path="", request_id=None, error=None):
    response = ListFilesResponse(files=files, path=path, error=error)
    return Envelope.build(MessageType.LIST_FILES, response, request_id)


@pytest.fixture
def client():
    client = MagicMock()
    client.check_pin = AsyncMock(return_value=PinStatus(valid=True, pc_connected=True))
    client.close = AsyncMock()
    return client


@pytest.fixture
def controller(relay_config, viewer_store, client, tmp_path):
    return ViewerSessionController(
        relay_config, viewer_store, download_dir=tmp_path / "downloads", client=client
    )


@pytest.fixture
def active(controller):
    """Controller in the active state on a channel that accepts every send."""
    channel = MagicMock()
    channel.is_open = True
    channel.send = AsyncMock(return_value=True)
    controller.channel = channel
    controller.session = ViewerSession(state=ViewerState.ACTIVE, pin="482913")
    return controller


def sent(controller):
    return [call.args[0] for call in controller.channel.send.call_args_list]


def test_sorted_entries():
    session = ViewerSession(entries=[README, DOCS])
    assert session.sorted_entries() == [DOCS, README]


class TestConnect:
    """PIN checks performed before the channel is opened."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("pin", ["12345", "1234567", "abcdef", ""])
    async def test_malformed_pin(self, controller, client, pin):
        with pytest.raises(PinUnregistered, match="6 digits"):
            await controller.connect(pin)

        assert controller.session.state == ViewerState.IDLE
        client.check_pin.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_pin(self, controller, client, viewer_store):
        client.check_pin.return_value = PinStatus(valid=False, error="PIN not found")

        with pytest.raises(PinUnregistered):
            await controller.connect("482913")

        assert controller.session.state == ViewerState.IDLE
        assert controller.session.last_error == "PIN not found"
        assert viewer_store.load() is None

    @pytest.mark.asyncio
    async def test_host_offline(self, controller, client):
        client.check_pin.return_value = PinStatus(valid=True, pc_connected=False)

        with pytest.raises(PinHostOffline):
            await controller.connect("482913")

        assert controller.session.state == ViewerState.IDLE
        assert controller.session.last_error == "host not connected"

    @pytest.mark.asyncio
    async def test_resume_nothing_stored(self, controller, client):
        assert await controller.resume() is None
        client.check_pin.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_resume_clears_store(self, controller, client, viewer_store):
        viewer_store.save("482913")
        client.check_pin.return_value = PinStatus(valid=False, error="PIN not found")

        with pytest.raises(PinUnregistered):
            await controller.resume()

        assert viewer_store.load() is None

    @pytest.mark.asyncio
    async def test_requests_need_a_session(self, controller):
        with pytest.raises(SessionError):
            await controller.list_directory("")


class TestResponses:
    """Handling of host responses on an active session."""

    @pytest.mark.asyncio
    async def test_listing_applied(self, active):
        pending = await active.list_directory("")

        await active._handle(listing([DOCS, README], request_id=pending.request_id))

        assert active.session.entries == [DOCS, README]
        assert (await pending.wait()).files == [DOCS, README]

    @pytest.mark.asyncio
    async def test_superseded_listing_is_not_applied(self, active):
        first = await active.list_directory("")
        second = await active.list_directory("docs")

        await active._handle(listing([DOCS], path="", request_id=first.request_id))
        assert active.session.entries == []
        assert first.future.done()

        report = FileEntry(name="report.txt", path="docs/report.txt", is_directory=False)
        await active._handle(listing([report], path="docs", request_id=second.request_id))
        assert active.session.entries == [report]
        assert active.session.current_path == "docs"

    @pytest.mark.asyncio
    async def test_unknown_request_id_dropped(self, active):
        await active._handle(listing([DOCS], request_id="not-mine"))
        assert active.session.entries == []

    @pytest.mark.asyncio
    async def test_uncorrelated_listing_matches_oldest_request(self, active):
        pending = await active.list_directory("")

        await active._handle(listing([README]))

        assert active.session.entries == [README]
        assert pending.future.done()

    @pytest.mark.asyncio
    async def test_listing_error(self, active):
        active.session.entries = [README]
        pending = await active.list_directory("ghost")

        await active._handle(
            listing([], path="ghost", request_id=pending.request_id, error="not found")
        )

        assert active.session.entries == [README]
        assert active.session.last_error == "not found"

    @pytest.mark.asyncio
    async def test_navigation(self, active):
        active.session.current_path = "docs/2024"

        await active.go_up()
        await active.open_directory(DOCS)
        await active.refresh()

        paths = [envelope.data["path"] for envelope in sent(active)]
        assert paths == ["docs", "docs", "docs/2024"]

    @pytest.mark.asyncio
    async def test_upload_then_refresh(self, active, tmp_path):
        local = tmp_path / "notes.txt"
        local.write_bytes(b"Hi")
        active.session.current_path = "docs"

        [pending] = await active.upload([local])

        upload = sent(active)[0]
        assert upload.data == {
            "path": "docs/notes.txt",
            "content": [72, 105],
            "filename": "notes.txt",
        }
        assert active.session.is_uploading

        response = UploadResponse(success=True, path="docs/notes.txt")
        await active._handle(
            Envelope.build(MessageType.UPLOAD_RESPONSE, response, pending.request_id)
        )

        assert not active.session.is_uploading
        refresh = sent(active)[-1]
        assert refresh.type == "list_files"
        assert refresh.data == {"path": "docs"}
        assert (await pending.wait()).success

    @pytest.mark.asyncio
    async def test_upload_failure(self, active, tmp_path):
        local = tmp_path / "notes.txt"
        local.write_bytes(b"Hi")
        [pending] = await active.upload([local], dest_dir="missing")

        response = UploadResponse(success=False, path="missing/notes.txt", error="no parent")
        await active._handle(
            Envelope.build(MessageType.UPLOAD_RESPONSE, response, pending.request_id)
        )

        assert active.session.last_error == "Upload failed: no parent"
        assert len(sent(active)) == 1

    @pytest.mark.asyncio
    async def test_delete_then_refresh(self, active):
        pending = await active.delete("readme.md")

        response = DeleteResponse(success=True, path="readme.md")
        await active._handle(
            Envelope.build(MessageType.DELETE_RESPONSE, response, pending.request_id)
        )

        assert sent(active)[-1].type == "list_files"

    @pytest.mark.asyncio
    async def test_download_saved_by_basename(self, active, tmp_path):
        pending = await active.download("docs/report.txt")

        content = FileContent(path="docs/report.txt", content=[72, 105], filename="../report.txt")
        await active._handle(
            Envelope.build(MessageType.FILE_CONTENT, content, pending.request_id)
        )

        saved = tmp_path / "downloads" / "report.txt"
        assert saved.read_bytes() == b"Hi"
        assert pending.saved_to == saved
        assert active.session.downloads == [str(saved)]

    @pytest.mark.asyncio
    async def test_download_error(self, active, tmp_path):
        pending = await active.download("ghost.txt")

        content = FileContent(path="ghost.txt", content=[], filename="ghost.txt", error="gone")
        await active._handle(
            Envelope.build(MessageType.FILE_CONTENT, content, pending.request_id)
        )

        assert active.session.last_error == "gone"
        assert not (tmp_path / "downloads").exists()

    @pytest.mark.asyncio
    async def test_malformed_payload(self, active):
        pending = await active.list_directory("")

        await active._handle(
            Envelope(type="list_files", data={"files": "nope"}, request_id=pending.request_id)
        )

        assert active.session.decode_errors == 1
        assert await pending.wait() is None


@pytest.fixture
def replying(active):
    """Active controller whose channel handles the reply before ``send`` returns.

    Replies are built by the callables registered per request type.
    """
    replies = {}

    async def send(envelope):
        make_reply = replies.get(envelope.type)
        if make_reply is not None:
            await active._handle(make_reply(envelope))
        return True

    active.channel.send = AsyncMock(side_effect=send)
    return active, replies


class TestEarlyResponses:
    """Responses handled before the request's send has returned."""

    @pytest.mark.asyncio
    async def test_listing(self, replying):
        controller, replies = replying
        replies["list_files"] = lambda env: listing(
            [DOCS], path=env.data["path"], request_id=env.request_id
        )

        pending = await controller.list_directory("docs")

        assert pending.future.done()
        assert controller.session.current_path == "docs"
        assert controller.session.entries == [DOCS]

    @pytest.mark.asyncio
    async def test_upload(self, replying, tmp_path):
        controller, replies = replying
        replies["upload_file"] = lambda env: Envelope.build(
            MessageType.UPLOAD_RESPONSE,
            UploadResponse(success=True, path=env.data["path"]),
            env.request_id,
        )
        local = tmp_path / "notes.txt"
        local.write_bytes(b"Hi")

        [pending] = await controller.upload([local])

        assert (await pending.wait()).success
        assert controller.session.uploads_in_flight == 0
        assert not controller.session.is_uploading

    @pytest.mark.asyncio
    async def test_failed_send_is_rolled_back(self, active, tmp_path):
        first = await active.list_directory("")
        active.channel.send.return_value = False
        local = tmp_path / "notes.txt"
        local.write_bytes(b"Hi")

        with pytest.raises(SessionError):
            await active.list_directory("docs")
        with pytest.raises(SessionError):
            await active.upload([local])

        assert active.session.uploads_in_flight == 0
        await active._handle(listing([README], request_id=first.request_id))
        assert active.session.entries == [README]


class TestChannelLoss:
    """Viewer behaviour when the host or the relay goes away."""

    @pytest.mark.asyncio
    async def test_host_leaving_clears_store(
        self, relay, host_store, viewer_store, shared_root, tmp_path
    ):
        host = HostSessionController(relay.config, host_store, pin_generator=lambda: "482913")
        await host.share(str(shared_root))
        relay.forward = False
        viewer = ViewerSessionController(relay.config, viewer_store, download_dir=tmp_path)
        await viewer.connect("482913")
        assert viewer_store.load().pin == "482913"
        pending = await viewer.download("readme.md")

        await relay.drop_host("482913")
        closed = await viewer.wait_closed()

        assert not closed.requested
        assert viewer.session.state == ViewerState.DISCONNECTED
        assert viewer.session.last_error
        assert viewer_store.load() is None
        with pytest.raises(ChannelClosed):
            await pending.wait()
        await viewer.close()
        await host.close()

    @pytest.mark.asyncio
    async def test_user_disconnect_keeps_store(
        self, relay, host_store, viewer_store, shared_root, tmp_path
    ):
        host = HostSessionController(relay.config, host_store, pin_generator=lambda: "482913")
        await host.share(str(shared_root))
        viewer = ViewerSessionController(relay.config, viewer_store, download_dir=tmp_path)
        await viewer.connect("482913")

        await viewer.disconnect()

        assert viewer.session.state == ViewerState.DISCONNECTED
        assert viewer_store.load().pin == "482913"
        assert host.session.state.value == "active"
        await viewer.close()
        await host.close()
