from __future__ import annotations

import logging
import os
import re
from typing import Any, Dict, List

from ..context import decisions, mounts
from ..lib.block import is_block_device, running_root_disks
from ..lib.command import which_missing
from ..lib.firmware import is_efi_boot
from ._base import InstallStep

logger = logging.getLogger(__name__)

REQUIRED_COMMANDS = [
    "wipefs",
    "sgdisk",
    "partprobe",
    "lsblk",
    "blkid",
    "mkfs.vfat",
    "debootstrap",
    "chroot",
    "mount",
    "umount",
    "tar",
]

_HOSTNAME_RE = re.compile(r"^(?!-)[A-Za-z0-9-]{1,63}(?<!-)$")


def required_commands(*, root_fs_type: str, luks: bool) -> List[str]:
    cmds = [*REQUIRED_COMMANDS, f"mkfs.{root_fs_type}"]
    if luks:
        cmds.append("cryptsetup")
    return cmds


class PreflightStep(InstallStep):
    step_id = "05_preflight"

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        ctx = self.ctx
        cfg = self.cfg

        if not _HOSTNAME_RE.match(ctx.hostname or ""):
            raise RuntimeError(f"Invalid hostname: {ctx.hostname!r}")
        if cfg.luks_enable and not ctx.passphrase:
            raise RuntimeError("LUKS_ENABLE=1 but no passphrase was supplied")

        if ctx.dry_run:
            logger.info("Dry run: skipping root, block device and host tool checks")
        else:
            if os.geteuid() != 0:
                raise RuntimeError("The installer must run as root")
            if not is_block_device(ctx.disk):
                raise RuntimeError(f"{ctx.disk} is not a block device")
            target = os.path.realpath(ctx.disk)
            if any(os.path.realpath(d) == target for d in running_root_disks()):
                raise RuntimeError(f"Refusing to install onto {ctx.disk}: it holds the running root filesystem")
            missing = which_missing(required_commands(root_fs_type=cfg.root_fs_type, luks=cfg.luks_enable))
            if missing:
                raise RuntimeError(f"Missing required host commands: {', '.join(missing)}")

        efi = is_efi_boot()
        if not efi:
            logger.warning("Host is not booted in EFI mode; efibootmgr entries cannot be written")

        logger.info(
            "Target disk=%s hostname=%s release=%s luks=%s desktop=%s",
            ctx.disk,
            ctx.hostname,
            cfg.debian_release,
            cfg.luks_enable,
            cfg.desktop_environment,
        )
        logger.debug("Configuration: %s", cfg.redacted())

        m = mounts(state)
        m["target_root"] = ctx.target_root
        m["disk"] = ctx.disk
        decisions(state)["host_efi"] = efi
        return state
