# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0

import asyncio
import json
from pathlib import Path

import pytest
import pytest_asyncio
from aiohttp import WSMsgType, web
from aiohttp.test_utils import TestServer

from relayshare.conf import RelayConfig
from relayshare.session.store import JsonFileKeyValueStore, SessionStore

EXPIRES_AT = "2030-01-01T00:00:00Z"


class PinEntry:
    def __init__(self):
        self.host = None
        self.viewers = set()
        self.base_directory = None


class FakeRelay:
    """In-process relay: PIN registration plus frame forwarding between peers."""

    def __init__(self):
        self.pins: dict[str, PinEntry] = {}
        self.fail_registration = False
        self.forward = True
        self.host_frames: list[dict] = []
        self.url = None
        self.config = None

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/register-pin", self.register_pin)
        app.router.add_get("/check-pin/{pin}", self.check_pin)
        app.router.add_get("/get-base-dir/{pin}", self.get_base_dir)
        app.router.add_get("/health", self.health)
        app.router.add_get("/connect-pc/{pin}", self.connect_host)
        app.router.add_get("/connect-user/{pin}", self.connect_viewer)
        return app

    async def register_pin(self, request):
        if self.fail_registration:
            return web.json_response({"error": "registration disabled"}, status=500)
        body = await request.json()
        self.pins[body["pin"]] = PinEntry()
        return web.json_response({"message": "PIN registered", "expires_at": EXPIRES_AT})

    async def check_pin(self, request):
        entry = self.pins.get(request.match_info["pin"])
        if entry is None:
            return web.json_response({"valid": False, "error": "PIN not found"})
        return web.json_response(
            {"valid": True, "pc_connected": entry.host is not None, "expires_at": EXPIRES_AT}
        )

    async def get_base_dir(self, request):
        entry = self.pins.get(request.match_info["pin"])
        if entry is None or entry.base_directory is None:
            return web.json_response({"error": "Base directory not set"})
        return web.json_response({"base_directory": entry.base_directory})

    async def health(self, request):
        return web.json_response({"status": "ok"})

    async def connect_host(self, request):
        entry = self.pins.get(request.match_info["pin"])
        if entry is None:
            raise web.HTTPNotFound()
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        entry.host = ws
        try:
            async for msg in ws:
                if msg.type != WSMsgType.TEXT:
                    continue
                frame = json.loads(msg.data)
                self.host_frames.append(frame)
                if frame.get("type") == "register_base_dir":
                    entry.base_directory = frame["data"]["path"]
                elif self.forward:
                    for viewer in list(entry.viewers):
                        await viewer.send_str(msg.data)
        finally:
            entry.host = None
            for viewer in list(entry.viewers):
                await viewer.close()
        return ws

    async def connect_viewer(self, request):
        entry = self.pins.get(request.match_info["pin"])
        if entry is None or entry.host is None:
            raise web.HTTPNotFound()
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        entry.viewers.add(ws)
        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT and self.forward and entry.host is not None:
                    await entry.host.send_str(msg.data)
        finally:
            entry.viewers.discard(ws)
        return ws

    async def send_to_host(self, pin: str, raw: str) -> None:
        await self.pins[pin].host.send_str(raw)

    async def drop_host(self, pin: str) -> None:
        await self.pins[pin].host.close()


@pytest_asyncio.fixture
async def relay():
    fake = FakeRelay()
    server = TestServer(fake.app())
    await server.start_server()
    fake.url = str(server.make_url("/"))
    fake.config = RelayConfig.for_url(fake.url, heartbeat=None, request_timeout=5)
    yield fake
    await server.close()


@pytest.fixture
def relay_config():
    return RelayConfig.for_url("http://relay.invalid", heartbeat=None)


class Clock:
    def __init__(self, now_ms: int = 1_700_000_000_000):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def state_file(tmp_path: Path) -> Path:
    return tmp_path / "state" / "state.json"


@pytest.fixture
def host_store(state_file, clock):
    return SessionStore(JsonFileKeyValueStore(state_file), "host", clock=clock)


@pytest.fixture
def viewer_store(state_file, clock):
    return SessionStore(JsonFileKeyValueStore(state_file), "viewer", clock=clock)


@pytest.fixture
def shared_root(tmp_path: Path) -> Path:
    root = tmp_path / "share"
    (root / "docs").mkdir(parents=True)
    (root / "docs" / "report.txt").write_bytes(b"quarterly")
    (root / "readme.md").write_bytes(b"# hello\n")
    return root


async def _wait_for(predicate, timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def wait_for():
    """Poll a predicate until it is true or fail the test."""
    return _wait_for
