"""
Unit tests for fstab and crypttab rendering.
"""

from hardened_installer.lib.fstab import CrypttabEntry, FstabEntry, render_crypttab, render_fstab
from hardened_installer.steps.step_70_fstab_crypttab import CRYPTTAB_OPTIONS, root_mount_options


def test_fstab_columns_aligned():
    text = render_fstab(
        [
            FstabEntry("UUID=abcd", "/", "ext4", "errors=remount-ro", 0, 1),
            FstabEntry("UUID=12-34", "/boot/efi", "vfat", "umask=0077", 0, 1),
            FstabEntry("/swapfile", "none", "swap", "sw", 0, 0),
        ]
    )
    lines = text.splitlines()
    assert lines[0].startswith("# <file system>")
    assert lines[1].split() == ["UUID=abcd", "/", "ext4", "errors=remount-ro", "0", "1"]
    assert lines[3].split() == ["/swapfile", "none", "swap", "sw", "0", "0"]
    # Every row starts its mount point in the same column.
    assert len({line.index(line.split()[1]) for line in lines[1:]}) == 1
    assert text.endswith("\n")


def test_crypttab_entry():
    text = render_crypttab([CrypttabEntry("cryptroot", "UUID=ffff", "none", CRYPTTAB_OPTIONS)])
    assert text.splitlines()[1].split() == ["cryptroot", "UUID=ffff", "none", "luks,discard,initramfs"]


def test_empty_table_is_header_only():
    assert render_crypttab([]) == "# <target name>  <source device>  <key file>  <options>\n"


def test_root_mount_options():
    assert root_mount_options("ext4") == "errors=remount-ro"
    assert root_mount_options("xfs") == "defaults"
