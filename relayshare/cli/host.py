# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0

import logging

import click

from relayshare.cli.common import (
    JSON_FORMAT,
    JSON_INDENT_FORMAT,
    click_option_format,
    echo_json,
    run,
)
from relayshare.conf import RelayConfig
from relayshare.session.host import HostSession, HostSessionController, default_root_selector
from relayshare.session.store import SessionStore

logger = logging.getLogger(__name__)


def get_controller() -> HostSessionController:
    """Build a host controller from the loaded configuration."""
    return HostSessionController(RelayConfig.from_conf(), SessionStore.from_conf("host"))


def _announce(session: HostSession) -> None:
    click.echo(f"Sharing {session.root_path}")
    click.echo(f"PIN: {session.pin}")


async def _serve(controller: HostSessionController, start) -> str:
    try:
        session = await start
        _announce(session)
        closed = await controller.wait_closed()
    finally:
        await controller.close()
    return closed.reason if closed is not None else "Disconnected"


@click.group("host")
def host():
    """Share a local directory through the relay."""


@host.command("share")
@click.argument("root", type=click.Path(exists=True, file_okay=False, resolve_path=True))
def share(root: str):
    """Share ROOT under a freshly generated PIN until interrupted."""
    controller = get_controller()
    reason = run(_serve(controller, controller.start(default_root_selector(root))))
    click.echo(f"Disconnected: {reason}")


@host.command("resume")
def resume():
    """Share the previously shared directory again under a new PIN."""
    controller = get_controller()
    reason = run(_serve(controller, controller.resume()))
    click.echo(f"Disconnected: {reason}")


@host.command("status")
@click_option_format
def status(format: str):
    """Show the stored host session."""
    stored = SessionStore.from_conf("host").resumable()
    if stored is None:
        click.echo("No resumable host session")
        return
    if format in (JSON_FORMAT, JSON_INDENT_FORMAT):
        echo_json(stored.model_dump(), format)
    else:
        click.echo(f"PIN: {stored.pin}")
        click.echo(f"Root: {stored.root_path}")


@host.command("forget")
def forget():
    """Forget the stored host session."""
    SessionStore.from_conf("host").clear()
    logger.debug("Host session forgotten")
    click.echo("Stored host session cleared")
