"""
Tests for the interactive front-end helpers.
"""

import os

import pytest

from hardened_installer.lib.block import DiskInfo
from ui.tui import disk_choices, disk_table, resolve_disk, run_log_path, validate_passphrase

DISKS = [
    DiskInfo(path="/dev/sda", size="256G", model="Samsung SSD"),
    DiskInfo(path="/dev/nvme0n1", size="1T", model=""),
]


def test_disk_choices():
    assert disk_choices(DISKS) == ["1", "2", "/dev/sda", "/dev/nvme0n1"]


@pytest.mark.parametrize("answer,path", [("1", "/dev/sda"), ("2", "/dev/nvme0n1"), ("/dev/nvme0n1", "/dev/nvme0n1")])
def test_resolve_disk(answer, path):
    assert resolve_disk(DISKS, answer).path == path


def test_resolve_unknown_disk():
    with pytest.raises(ValueError, match="Unknown disk"):
        resolve_disk(DISKS, "/dev/sdz")


@pytest.mark.parametrize(
    "first,second,expected",
    [
        ("secret", "secret", (True, "")),
        ("", "", (False, "Passphrase must not be empty.")),
        ("secret", "Secret", (False, "Passphrases do not match.")),
    ],
)
def test_validate_passphrase(first, second, expected):
    assert validate_passphrase(first, second) == expected


def test_disk_table():
    table = disk_table(DISKS)
    assert table.row_count == 2
    assert [c.header for c in table.columns] == ["#", "Device", "Size", "Model"]


def test_run_log_path(tmp_path):
    path = run_log_path(str(tmp_path))
    assert os.path.dirname(path) == str(tmp_path)
    name = os.path.basename(path)
    assert name.startswith("hardened-installer-")
    assert name.endswith(".log")
