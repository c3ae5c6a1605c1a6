# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0

import asyncio
import json
import logging
from typing import Any, Awaitable, TypeVar

import click
import prettytable

from relayshare.exceptions import RelayShareError
from relayshare.relay.protocol import FileEntry

VALUE_FORMAT = "value"
JSON_FORMAT = "json"
JSON_INDENT_FORMAT = "json-indent"
TABLE_FORMAT = "table"

click_option_format = click.option(
    "-f",
    "--format",
    default=JSON_FORMAT,
    type=click.Choice([VALUE_FORMAT, TABLE_FORMAT, JSON_FORMAT, JSON_INDENT_FORMAT]),
    help="Output format",
)

T = TypeVar("T")

logger = logging.getLogger(__name__)


class CommandError(click.ClickException):
    """A session or transport failure surfaced to the user."""


def run(coro: Awaitable[T]) -> T:
    """Run a coroutine to completion, turning relayshare errors into CLI errors."""
    try:
        return asyncio.run(coro)
    except RelayShareError as e:
        logger.debug("Command failed", exc_info=True)
        raise CommandError(str(e))


def echo_json(data: Any, format: str) -> None:
    """Print ``data`` as JSON, indented for the json-indent format."""
    indent = 2 if format == JSON_INDENT_FORMAT else None
    click.echo(json.dumps(data, indent=indent))


def display_entries(entries: list[FileEntry], path: str, format: str) -> None:
    """Display a directory listing depending on the format."""
    ordered = sorted(entries, key=lambda e: (not e.is_directory, e.name.casefold()))
    if format == VALUE_FORMAT:
        for entry in ordered:
            click.echo(entry.name + ("/" if entry.is_directory else ""))
    elif format == TABLE_FORMAT:
        table = prettytable.PrettyTable()
        table.title = f"/{path}"
        table.field_names = ["Name", "Type", "Size", "Modified"]
        table.align["Name"] = "l"
        for entry in ordered:
            table.add_row(
                [
                    entry.name,
                    "dir" if entry.is_directory else "file",
                    "" if entry.size is None else entry.size,
                    entry.modified or "",
                ]
            )
        click.echo(table)
    else:
        echo_json(
            {
                "path": path,
                "files": [e.model_dump(mode="json", exclude_none=True) for e in ordered],
            },
            format,
        )
