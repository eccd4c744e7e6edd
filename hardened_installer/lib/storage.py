from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .block import list_partitions
from .command import run_cmd, run_optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PartitionPlan:
    disk: str
    esp_size_mib: int = 512
    esp_label: str = "EFI"
    root_label: str = "cryptroot"


@dataclass(frozen=True)
class PartitionResult:
    esp_part: str
    root_part: str


def partition_disk(plan: PartitionPlan, *, dry_run: bool = False) -> PartitionResult:
    """Wipe the disk and create a GPT with an ESP and a root partition.

    Layout:
    - 1: ESP (ef00), ESP_SIZE_MIB
    - 2: root (8300), rest of the disk; LUKS2 container when encryption is on

    Partition device names are discovered with lsblk afterwards instead of
    being derived from the disk name.
    """

    disk = plan.disk
    if plan.esp_size_mib <= 0:
        raise ValueError(f"ESP size must be positive, got {plan.esp_size_mib}")

    logger.info("Partitioning disk=%s esp=%sMiB", disk, plan.esp_size_mib)

    run_optional(["wipefs", "-a", "-f", disk], what="wipefs", dry_run=dry_run)
    run_cmd(["sgdisk", "--zap-all", disk], dry_run=dry_run)
    run_cmd(
        [
            "sgdisk",
            f"--new=1:0:+{plan.esp_size_mib}MiB",
            "--typecode=1:ef00",
            f"--change-name=1:{plan.esp_label}",
            disk,
        ],
        dry_run=dry_run,
    )
    run_cmd(
        [
            "sgdisk",
            "--new=2:0:0",
            "--typecode=2:8300",
            f"--change-name=2:{plan.root_label}",
            disk,
        ],
        dry_run=dry_run,
    )
    run_cmd(["sgdisk", "--print", disk], dry_run=dry_run)

    run_cmd(["partprobe", disk], dry_run=dry_run)
    run_optional(["udevadm", "settle"], what="udevadm settle", dry_run=dry_run)

    parts = list_partitions(disk, dry_run=dry_run)
    if len(parts) < 2:
        raise RuntimeError(f"Expected at least 2 partitions on {disk}, found {len(parts)}: {parts}")

    result = PartitionResult(esp_part=parts[0], root_part=parts[1])
    logger.info("ESP partition: %s, root partition: %s", result.esp_part, result.root_part)
    return result


def mkfs_argv(fs_type: str, dev: str, label: str) -> list[str]:
    if fs_type in {"vfat", "fat", "fat32"}:
        return ["mkfs.vfat", "-F", "32", "-n", label, dev]
    if fs_type.startswith("ext"):
        return [f"mkfs.{fs_type}", "-F", "-L", label, dev]
    if fs_type in {"xfs", "btrfs"}:
        return [f"mkfs.{fs_type}", "-f", "-L", label, dev]
    return [f"mkfs.{fs_type}", "-L", label, dev]


def make_filesystems(
    *,
    esp_part: str,
    root_dev: str,
    esp_label: str = "EFI",
    root_fs_type: str = "ext4",
    root_label: str = "rootfs",
    dry_run: bool = False,
) -> None:
    run_cmd(mkfs_argv("vfat", esp_part, esp_label), dry_run=dry_run)
    run_cmd(mkfs_argv(root_fs_type, root_dev, root_label), dry_run=dry_run)


def mount_target(
    *,
    root_dev: str,
    esp_part: str,
    target_root: str,
    esp_mountpoint: str,
    dry_run: bool = False,
) -> None:
    if not dry_run:
        Path(target_root).mkdir(parents=True, exist_ok=True)
    run_cmd(["mount", root_dev, target_root], dry_run=dry_run)

    if not dry_run:
        Path(esp_mountpoint).mkdir(parents=True, exist_ok=True)
    run_cmd(["mount", esp_part, esp_mountpoint], dry_run=dry_run)


def is_mountpoint(path: str) -> bool:
    return os.path.ismount(path)


def unmount_target(target_root: str, *, dry_run: bool = False) -> bool:
    return run_optional(["umount", "-R", target_root], what=f"umount -R {target_root}", dry_run=dry_run)
