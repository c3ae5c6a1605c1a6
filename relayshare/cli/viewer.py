# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0

import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

import click

from relayshare.cli.common import (
    CommandError,
    click_option_format,
    display_entries,
    run,
)
from relayshare.conf import CONF, RelayConfig
from relayshare.session.store import SessionStore
from relayshare.session.viewer import ViewerSessionController

logger = logging.getLogger(__name__)

T = TypeVar("T")


def get_controller(download_dir: Optional[str] = None) -> ViewerSessionController:
    """Build a viewer controller from the loaded configuration."""
    return ViewerSessionController(
        RelayConfig.from_conf(),
        SessionStore.from_conf("viewer"),
        download_dir=download_dir or CONF.session.download_dir,
    )


async def _session(
    controller: ViewerSessionController,
    pin: Optional[str],
    action: Callable[[ViewerSessionController], Awaitable[T]],
) -> T:
    """Attach (or resume when ``pin`` is None), run ``action`` and disconnect."""
    try:
        if pin is None:
            if await controller.resume() is None:
                raise CommandError("No resumable viewer session")
        else:
            await controller.connect(pin)
        return await action(controller)
    finally:
        await controller.close()


async def _listing(controller: ViewerSessionController, path: str):
    listing = await (await controller.list_directory(path)).wait()
    if listing.error:
        raise CommandError(listing.error)
    return listing


@click.group("viewer")
def viewer():
    """Browse and transfer files shared by a host."""


@viewer.command("ls")
@click.argument("pin")
@click.argument("path", default="")
@click_option_format
def ls(pin: str, path: str, format: str):
    """List PATH (default: the shared root) on the host behind PIN."""
    controller = get_controller()
    listing = run(_session(controller, pin, lambda c: _listing(c, path)))
    display_entries(listing.files, listing.path, format)


@viewer.command("resume")
@click_option_format
def resume(format: str):
    """Reattach to the stored PIN and list the shared root."""
    controller = get_controller()
    listing = run(_session(controller, None, lambda c: _listing(c, "")))
    display_entries(listing.files, listing.path, format)


@viewer.command("get")
@click.argument("pin")
@click.argument("path")
@click.option(
    "-o",
    "--output-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Directory to save the file in",
)
def get(pin: str, path: str, output_dir: Optional[str]):
    """Download PATH from the host behind PIN."""

    async def _download(controller: ViewerSessionController) -> Path:
        pending = await controller.download(path)
        content = await pending.wait()
        if content.error:
            raise CommandError(content.error)
        return pending.saved_to

    controller = get_controller(output_dir)
    saved = run(_session(controller, pin, _download))
    click.echo(f"Saved {saved}")


@viewer.command("put")
@click.argument("pin")
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--dest", default="", help="Destination directory on the host")
def put(pin: str, files: tuple[str, ...], dest: str):
    """Upload FILES into the host's shared directory."""

    async def _upload(controller: ViewerSessionController) -> list[str]:
        failures = []
        for pending in await controller.upload(files, dest_dir=dest):
            response = await pending.wait()
            if response.success:
                click.echo(f"Uploaded {pending.path}")
            else:
                failures.append(f"{pending.path}: {response.error}")
        return failures

    controller = get_controller()
    failures = run(_session(controller, pin, _upload))
    if failures:
        raise CommandError("Upload failed: " + "; ".join(failures))


@viewer.command("rm")
@click.argument("pin")
@click.argument("path")
def rm(pin: str, path: str):
    """Delete PATH on the host behind PIN."""

    async def _delete(controller: ViewerSessionController):
        return await (await controller.delete(path)).wait()

    controller = get_controller()
    response = run(_session(controller, pin, _delete))
    if not response.success:
        raise CommandError(f"Delete failed: {response.error}")
    click.echo(f"Deleted {path}")


@viewer.command("forget")
def forget():
    """Forget the stored viewer session."""
    SessionStore.from_conf("viewer").clear()
    logger.debug("Viewer session forgotten")
    click.echo("Stored viewer session cleared")
