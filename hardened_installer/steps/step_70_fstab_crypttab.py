from __future__ import annotations

import logging
from typing import Any, Dict, List

from ..context import decisions, mounts, require_mount
from ..lib.assets import target_path, write_file
from ..lib.block import get_uuid
from ..lib.command import run_cmd
from ..lib.fstab import CrypttabEntry, FstabEntry, render_crypttab, render_fstab
from ._base import InstallStep

logger = logging.getLogger(__name__)

CRYPTTAB_OPTIONS = "luks,discard,initramfs"


def root_mount_options(fs_type: str) -> str:
    return "errors=remount-ro" if fs_type.startswith("ext") else "defaults"


class FstabCrypttabStep(InstallStep):
    step_id = "70_fstab_crypttab"

    def _swapfile(self, target_root: str) -> FstabEntry:
        size_gb = self.cfg.swapfile_size_gb
        path = self.cfg.swapfile_path
        host_path = str(target_path(target_root, path))
        run_cmd(["fallocate", "-l", f"{size_gb}G", host_path], dry_run=self.dry_run)
        run_cmd(["chmod", "600", host_path], dry_run=self.dry_run)
        run_cmd(["mkswap", host_path], dry_run=self.dry_run)
        logger.info("Created %dG swapfile at %s", size_gb, path)
        return FstabEntry(path, "none", "swap", "sw", 0, 0)

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        target_root = self.attach_target(state)
        cfg = self.cfg
        m = mounts(state)

        root_dev = require_mount(state, "root_dev", "15_setup_luks")
        esp_part = require_mount(state, "esp_part", "10_partition_disk")

        if m.get("luks_mapper"):
            luks_uuid = get_uuid(require_mount(state, "luks_part", "15_setup_luks"), dry_run=self.dry_run)
            crypttab = render_crypttab(
                [CrypttabEntry(m["luks_mapper"], f"UUID={luks_uuid}", "none", CRYPTTAB_OPTIONS)]
            )
            write_file(target_root, "/etc/crypttab", crypttab, dry_run=self.dry_run)

        entries: List[FstabEntry] = [
            FstabEntry(
                f"UUID={get_uuid(root_dev, dry_run=self.dry_run)}",
                "/",
                cfg.root_fs_type,
                root_mount_options(cfg.root_fs_type),
                0,
                1,
            ),
            FstabEntry(
                f"UUID={get_uuid(esp_part, dry_run=self.dry_run)}",
                self.ctx.esp_in_target,
                cfg.esp_fs_type,
                "umask=0077",
                0,
                1,
            ),
        ]
        if cfg.swapfile_size_gb > 0:
            entries.append(self._swapfile(target_root))
        else:
            logger.info("SWAPFILE_SIZE_GB=0: no swapfile")

        write_file(target_root, "/etc/fstab", render_fstab(entries), dry_run=self.dry_run)
        decisions(state)["swapfile_gb"] = cfg.swapfile_size_gb
        return state
