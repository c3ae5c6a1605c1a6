# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0

import click

from relayshare import conf
from relayshare.cli.host import host
from relayshare.cli.relay import relay
from relayshare.cli.viewer import viewer
from relayshare.log import register_options, setup_logging

CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}


@click.group("relayshare", context_settings=CONTEXT_SETTINGS)
@click.option("-v", "--verbose", is_flag=True, help="Increase output verbosity")
@click.option(
    "--config-file",
    "config_files",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Configuration file to load, may be repeated",
)
def cli(verbose: bool, config_files: tuple[str, ...]):
    """Share a directory with a remote viewer through a PIN-keyed relay."""
    conf.load(config_files=list(config_files))
    setup_logging(debug=verbose)


def main():
    """Register commands and run the CLI."""
    register_options()
    cli.add_command(host)
    cli.add_command(viewer)
    cli.add_command(relay)

    cli()


if __name__ == "__main__":
    main()
