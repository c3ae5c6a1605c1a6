# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0

from pathlib import Path
from unittest.mock import patch

import pytest

from relayshare.files import utils


def test_atomic_write_large_payload(tmp_path: Path):
    data = bytes(range(256)) * (utils.CHUNK_WRITE_SIZE // 128)
    dest = tmp_path / "big.bin"

    utils.atomic_write_bytes(dest, data)

    assert dest.read_bytes() == data
    assert [p.name for p in tmp_path.iterdir()] == ["big.bin"]


def test_atomic_write_failure_keeps_original(tmp_path: Path):
    dest = tmp_path / "keep.txt"
    dest.write_text("original")

    with patch("relayshare.files.utils.os.replace", side_effect=OSError("boom")):
        with pytest.raises(OSError):
            utils.atomic_write_bytes(dest, b"replacement")

    assert dest.read_text() == "original"
    assert [p.name for p in tmp_path.iterdir()] == ["keep.txt"]


def test_write_and_read_json(tmp_path: Path):
    path = tmp_path / "nested" / "state.json"
    utils.write_json(path, {"host_session": "x"})
    assert utils.read_json(path) == {"host_session": "x"}


def test_read_json_missing(tmp_path: Path):
    assert utils.read_json(tmp_path / "absent.json") == {}


@pytest.mark.parametrize("content", ["{not json", "[1, 2]"])
def test_read_json_unusable(tmp_path: Path, content):
    path = tmp_path / "state.json"
    path.write_text(content)
    assert utils.read_json(path) == {}
