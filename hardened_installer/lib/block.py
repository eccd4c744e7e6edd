from __future__ import annotations

import json
import logging
import os
import re
import stat
from dataclasses import dataclass
from typing import Any, Dict, List

from .command import run_cmd

logger = logging.getLogger(__name__)

# nvme0n1p2 -> nvme0n1, mmcblk0p1 -> mmcblk0, loop0p1 -> loop0
_P_SUFFIX_RE = re.compile(r"^(.*\d)p\d+$")
# sda2 -> sda, vdb1 -> vdb, xvda3 -> xvda
_DIGIT_SUFFIX_RE = re.compile(r"^(.*\D)\d+$")


@dataclass(frozen=True)
class DiskInfo:
    path: str
    size: str
    model: str = ""


def get_uuid(dev: str, *, dry_run: bool = False) -> str:
    """Return filesystem (or LUKS header) UUID for a block device."""

    r = run_cmd(["blkid", "-s", "UUID", "-o", "value", dev], dry_run=dry_run)
    uuid = (r.stdout or "").strip()
    if not uuid:
        if dry_run:
            return "00000000-0000-0000-0000-000000000000"
        raise RuntimeError(f"Unable to determine UUID for {dev}")
    return uuid


def partition_path(disk: str, n: int) -> str:
    if disk[-1:].isdigit():
        return f"{disk}p{n}"
    return f"{disk}{n}"


def parent_disk(dev: str) -> str:
    m = _P_SUFFIX_RE.match(dev)
    if m:
        return m.group(1)
    m = _DIGIT_SUFFIX_RE.match(dev)
    if m and not re.search(r"(nvme\d+n|mmcblk|loop|dm-)\d*$", m.group(1)):
        return m.group(1)
    return dev


def _lsblk_devices(stdout: str) -> List[Dict[str, Any]]:
    data = json.loads(stdout or "{}")
    devices = data.get("blockdevices") or []
    if not isinstance(devices, list):
        raise ValueError("lsblk output: blockdevices must be a list")
    return devices


def parse_lsblk_partitions(stdout: str) -> List[str]:
    """Partition device paths of the first disk in `lsblk -J` output, in table order."""

    parts: List[str] = []

    def walk(node: Dict[str, Any]) -> None:
        for child in node.get("children") or []:
            if child.get("type") == "part":
                parts.append(child.get("path") or f"/dev/{child['name']}")

    for dev in _lsblk_devices(stdout):
        walk(dev)
    return parts


def parse_lsblk_disks(stdout: str) -> List[DiskInfo]:
    disks: List[DiskInfo] = []
    for dev in _lsblk_devices(stdout):
        if dev.get("type") != "disk":
            continue
        disks.append(
            DiskInfo(
                path=dev.get("path") or f"/dev/{dev['name']}",
                size=str(dev.get("size") or "?"),
                model=str(dev.get("model") or "").strip(),
            )
        )
    return disks


def list_partitions(disk: str, *, dry_run: bool = False) -> List[str]:
    if dry_run:
        return [partition_path(disk, 1), partition_path(disk, 2)]
    r = run_cmd(["lsblk", "-J", "-o", "NAME,PATH,TYPE", disk])
    return parse_lsblk_partitions(r.stdout)


def list_disks() -> List[DiskInfo]:
    r = run_cmd(["lsblk", "-J", "-d", "-o", "NAME,PATH,SIZE,TYPE,MODEL"])
    return parse_lsblk_disks(r.stdout)


def parse_lsblk_ancestor_disks(stdout: str) -> List[str]:
    """Disks in `lsblk -nslp -o NAME,TYPE <dev>` output (the device and its ancestors)."""

    disks: List[str] = []
    for line in stdout.splitlines():
        fields = line.split()
        if len(fields) >= 2 and fields[-1] == "disk" and fields[0] not in disks:
            disks.append(fields[0])
    return disks


def running_root_disks() -> List[str]:
    """Physical disks under the running system's root filesystem.

    The root may sit on LUKS, LVM or RAID (/dev/mapper/..., /dev/md0), so the
    device tree is walked upwards with lsblk; more than one disk comes back
    for RAID. Empty when the root is not a block device (overlay, tmpfs).
    """

    r = run_cmd(["findmnt", "-no", "SOURCE", "/"], check=False)
    source = (r.stdout or "").strip()
    if not r.ok or not source.startswith("/dev/"):
        return []
    # btrfs subvolumes report /dev/sda2[/@]
    source = source.split("[", 1)[0]

    r = run_cmd(["lsblk", "-n", "-s", "-l", "-p", "-o", "NAME,TYPE", source], check=False)
    disks = parse_lsblk_ancestor_disks(r.stdout) if r.ok else []
    if not disks:
        logger.warning("lsblk could not resolve the disks under %s; guessing from its name", source)
        return [parent_disk(source)]
    return disks


def is_block_device(path: str) -> bool:
    try:
        return stat.S_ISBLK(os.stat(path).st_mode)
    except OSError:
        return False
