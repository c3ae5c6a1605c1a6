# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0
"""Client for the relay's HTTP endpoints (PIN registration and lookups)."""

import asyncio
from typing import Any, Dict, Optional

import aiohttp
import pydantic
from oslo_log import log as logging

from relayshare.conf import RelayConfig
from relayshare.exceptions import RegistrationFailed, RelayUnavailable

LOG = logging.getLogger(__name__)


class PinStatus(pydantic.BaseModel):
    """Answer of ``GET /check-pin/{pin}``."""

    valid: bool = False
    pc_connected: bool = False
    expires_at: Optional[str] = None
    error: Optional[str] = None


class BaseDirStatus(pydantic.BaseModel):
    """Answer of ``GET /get-base-dir/{pin}``."""

    base_directory: Optional[str] = None
    error: Optional[str] = None


class RegisterPinResponse(pydantic.BaseModel):
    """Answer of ``POST /register-pin``."""

    message: str = ""
    expires_at: Optional[str] = None


class RelayClient:
    """Request/response side of the relay contract."""

    def __init__(self, config: RelayConfig, session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self._session = session
        self._owns_session = session is None

    @property
    def session(self) -> aiohttp.ClientSession:
        """Lazily created HTTP session."""
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout)
            )
        return self._session

    async def close(self) -> None:
        """Release the HTTP session if this client created it."""
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "RelayClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _get_json(self, path: str) -> Dict[str, Any]:
        url = self.config.endpoint(path)
        try:
            async with self.session.get(url) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise RelayUnavailable(f"GET {path} failed ({resp.status}): {text.strip()}")
                return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise RelayUnavailable(f"GET {path} failed: {exc}")

    async def register_pin(self, pin: str) -> RegisterPinResponse:
        """Announce a PIN before the host attaches to it.

        Raises RegistrationFailed on any non-success answer.
        """
        url = self.config.endpoint("/register-pin")
        LOG.info("Registering PIN %s with relay", pin)
        try:
            async with self.session.post(url, json={"pin": pin}) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise RegistrationFailed(pin, f"{resp.status} {text.strip()}".strip())
                body = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise RegistrationFailed(pin, str(exc))
        except ValueError:
            body = {}
        return RegisterPinResponse.model_validate(body or {})

    async def check_pin(self, pin: str) -> PinStatus:
        """Ask the relay whether a PIN is known and has a host attached."""
        try:
            status = PinStatus.model_validate(await self._get_json(f"/check-pin/{pin}"))
        except pydantic.ValidationError as exc:
            raise RelayUnavailable(f"unexpected check-pin answer: {exc}")
        LOG.debug("PIN %s status: %s", pin, status)
        return status

    async def get_base_dir(self, pin: str) -> BaseDirStatus:
        """Recover the root directory a host registered for a PIN."""
        try:
            return BaseDirStatus.model_validate(await self._get_json(f"/get-base-dir/{pin}"))
        except pydantic.ValidationError as exc:
            raise RelayUnavailable(f"unexpected get-base-dir answer: {exc}")

    async def health(self) -> bool:
        """Probe the relay's health endpoint."""
        try:
            async with self.session.get(self.config.endpoint("/health")) as resp:
                return resp.status == 200
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            LOG.warning("Relay health check failed: %s", exc)
            return False
