# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0

import sys

import click

from relayshare.cli.common import VALUE_FORMAT, click_option_format, echo_json, run
from relayshare.conf import RelayConfig
from relayshare.relay.client import RelayClient


async def _call(method: str, *args):
    async with RelayClient(RelayConfig.from_conf()) as client:
        return await getattr(client, method)(*args)


@click.group("relay")
def relay():
    """Diagnostics against the relay endpoints."""


@relay.command("health")
def health():
    """Check that the relay answers its health endpoint.

    Exit codes:
    - 0: the relay is healthy
    - 1: the relay is unreachable or unhealthy
    """
    if run(_call("health")):
        click.echo("Relay is healthy")
        sys.exit(0)
    else:
        click.echo("Relay is NOT reachable")
        sys.exit(1)


@relay.command("check")
@click.argument("pin")
@click_option_format
def check(pin: str, format: str):
    """Show whether PIN is registered and has a host attached."""
    status = run(_call("check_pin", pin))
    if format == VALUE_FORMAT:
        click.echo(f"valid: {status.valid}")
        click.echo(f"host connected: {status.pc_connected}")
        if status.error:
            click.echo(f"error: {status.error}")
    else:
        echo_json(status.model_dump(exclude_none=True), format)


@relay.command("base-dir")
@click.argument("pin")
def base_dir(pin: str):
    """Show the directory a host registered for PIN."""
    status = run(_call("get_base_dir", pin))
    if not status.base_directory:
        raise click.ClickException(status.error or "Base directory not set")
    click.echo(status.base_directory)
