# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0
"""Configuration options for the relay endpoints and local session state."""

import os
from pathlib import Path
from typing import Optional

import pydantic
from oslo_config import cfg

relay_opts = [
    cfg.StrOpt(
        "registration_base_url",
        default=os.environ.get("RELAYSHARE_RELAY_URL", "http://localhost:8080"),
        help="Base URL of the relay HTTP endpoints (register-pin, check-pin, ...)",
    ),
    cfg.StrOpt(
        "socket_base_url",
        default=os.environ.get("RELAYSHARE_SOCKET_URL"),
        help="Base URL of the relay websocket endpoints. Derived from "
        "registration_base_url when unset.",
    ),
    cfg.IntOpt(
        "heartbeat",
        default=30,
        min=0,
        help="Websocket ping interval in seconds, 0 disables pings",
    ),
    cfg.IntOpt(
        "request_timeout",
        default=15,
        min=1,
        help="Timeout in seconds for the relay HTTP endpoints",
    ),
    cfg.IntOpt(
        "max_message_size",
        default=256 * 1024 * 1024,
        min=1024,
        help="Largest inbound websocket frame accepted, in bytes",
    ),
]

session_opts = [
    cfg.StrOpt(
        "state_dir",
        default=os.environ.get(
            "RELAYSHARE_STATE_DIR", str(Path.home() / ".local" / "state" / "relayshare")
        ),
        help="Directory holding the persisted session state",
    ),
    cfg.IntOpt(
        "validity_days",
        default=15,
        min=1,
        help="Age in days after which a stored session is no longer resumed",
    ),
    cfg.StrOpt(
        "download_dir",
        default=os.environ.get("RELAYSHARE_DOWNLOAD_DIR", os.getcwd()),
        help="Directory where a viewer saves downloaded files",
    ),
]

CONF = cfg.CONF
CONF.register_opts(relay_opts, group="relay")
CONF.register_opts(session_opts, group="session")


def socket_url_from(http_url: str) -> str:
    """Swap an http(s) scheme for the matching ws(s) one."""
    if http_url.startswith("https://"):
        return "wss://" + http_url[len("https://") :]  # noqa: E203
    if http_url.startswith("http://"):
        return "ws://" + http_url[len("http://") :]  # noqa: E203
    return http_url


class RelayConfig(pydantic.BaseModel):
    """Relay endpoints handed explicitly to the HTTP client and the channel."""

    registration_base_url: str = pydantic.Field(description="Base of the HTTP endpoints")
    socket_base_url: str = pydantic.Field(description="Base of the websocket endpoints")
    heartbeat: Optional[float] = pydantic.Field(
        default=30.0, description="Websocket ping interval, None disables it"
    )
    request_timeout: float = pydantic.Field(default=15.0, gt=0)
    max_message_size: int = pydantic.Field(default=256 * 1024 * 1024, gt=0)

    @pydantic.field_validator("registration_base_url", "socket_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Endpoint paths are appended with a leading slash."""
        return v.rstrip("/")

    def endpoint(self, path: str) -> str:
        """URL of an HTTP endpoint of the relay."""
        return f"{self.registration_base_url}/{path.lstrip('/')}"

    def host_attach_url(self, pin: str) -> str:
        """Websocket URL a host attaches to for ``pin``."""
        return f"{self.socket_base_url}/connect-pc/{pin}"

    def viewer_attach_url(self, pin: str) -> str:
        """Websocket URL a viewer attaches to for ``pin``."""
        return f"{self.socket_base_url}/connect-user/{pin}"

    @classmethod
    def for_url(cls, url: str, **kwargs) -> "RelayConfig":
        """Build a config where both bases derive from one http(s) URL."""
        return cls(registration_base_url=url, socket_base_url=socket_url_from(url), **kwargs)

    @classmethod
    def from_conf(cls, conf: cfg.ConfigOpts = CONF) -> "RelayConfig":
        """Build a config from the ``[relay]`` option group."""
        group = conf.relay
        return cls(
            registration_base_url=group.registration_base_url,
            socket_base_url=group.socket_base_url or socket_url_from(group.registration_base_url),
            heartbeat=group.heartbeat or None,
            request_timeout=group.request_timeout,
            max_message_size=group.max_message_size,
        )


def load(args: list[str] | None = None, config_files: list[str] | None = None) -> None:
    """Parse configuration files into the global ``CONF`` object."""
    CONF(
        args or [],
        project="relayshare",
        prog="relayshare",
        default_config_files=config_files or [],
    )
