# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0
"""oslo.log setup for the command line entry points."""

from oslo_log import log as logging

from relayshare.conf import CONF

DOMAIN = "relayshare"

_registered = False


def register_options() -> None:
    """Register oslo.log options on the global config once."""
    global _registered
    if not _registered:
        logging.register_options(CONF)
        _registered = True


def setup_logging(debug: bool = False) -> None:
    """Configure process logging for the CLI and long running sessions."""
    register_options()
    CONF.set_override("debug", debug)
    logging.setup(CONF, DOMAIN)
