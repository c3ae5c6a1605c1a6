# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0

import json
from unittest.mock import AsyncMock, patch

from click.testing import CliRunner

from relayshare.cli.main import cli
from relayshare.cli.relay import relay
from relayshare.exceptions import RelayUnavailable
from relayshare.relay.client import BaseDirStatus, PinStatus


@patch("relayshare.cli.relay._call", new_callable=AsyncMock)
def test_health(mock_call):
    mock_call.return_value = True
    runner = CliRunner()
    result = runner.invoke(relay, ["health"])

    assert result.exit_code == 0
    assert "Relay is healthy" in result.output
    mock_call.assert_awaited_once_with("health")


@patch("relayshare.cli.relay._call", new_callable=AsyncMock)
def test_health_unreachable(mock_call):
    mock_call.return_value = False
    runner = CliRunner()
    result = runner.invoke(relay, ["health"])

    assert result.exit_code == 1


@patch("relayshare.cli.relay._call", new_callable=AsyncMock)
def test_check(mock_call):
    mock_call.return_value = PinStatus(valid=True, pc_connected=False)
    runner = CliRunner()
    result = runner.invoke(relay, ["check", "482913"])

    assert result.exit_code == 0
    assert json.loads(result.output) == {"valid": True, "pc_connected": False}


@patch("relayshare.cli.relay._call", new_callable=AsyncMock)
def test_check_relay_down(mock_call):
    mock_call.side_effect = RelayUnavailable("GET /check-pin/482913 failed")
    runner = CliRunner()
    result = runner.invoke(relay, ["check", "482913", "-f", "value"])

    assert result.exit_code == 1
    assert "failed" in result.output


@patch("relayshare.cli.relay._call", new_callable=AsyncMock)
def test_base_dir(mock_call):
    mock_call.return_value = BaseDirStatus(base_directory="/srv/share")
    runner = CliRunner()
    result = runner.invoke(relay, ["base-dir", "482913"])

    assert result.exit_code == 0
    assert result.output.strip() == "/srv/share"


@patch("relayshare.cli.relay._call", new_callable=AsyncMock)
def test_base_dir_missing(mock_call):
    mock_call.return_value = BaseDirStatus(error="Base directory not set")
    runner = CliRunner()
    result = runner.invoke(relay, ["base-dir", "482913"])

    assert result.exit_code == 1
    assert "Base directory not set" in result.output


@patch("relayshare.cli.main.setup_logging")
@patch("relayshare.cli.main.conf.load")
def test_root_group_loads_config(mock_load, mock_setup_logging, tmp_path):
    config_file = tmp_path / "relayshare.conf"
    config_file.write_text("[relay]\nregistration_base_url = http://relay:8080\n")
    cli.add_command(relay)
    runner = CliRunner()
    result = runner.invoke(cli, ["-v", "--config-file", str(config_file), "relay", "--help"])

    assert result.exit_code == 0
    mock_load.assert_called_once_with(config_files=[str(config_file)])
    mock_setup_logging.assert_called_once_with(debug=True)
