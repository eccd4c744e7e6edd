from __future__ import annotations

import logging
from typing import Any, Dict

from ..context import mounts, require_mount
from ..lib.storage import make_filesystems, mount_target
from ._base import InstallStep

logger = logging.getLogger(__name__)


class FilesystemsStep(InstallStep):
    step_id = "20_filesystems"

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        esp_part = require_mount(state, "esp_part", "10_partition_disk")
        root_dev = require_mount(state, "root_dev", "15_setup_luks")

        make_filesystems(
            esp_part=esp_part,
            root_dev=root_dev,
            esp_label=self.cfg.esp_label,
            root_fs_type=self.cfg.root_fs_type,
            root_label=self.cfg.root_fs_label,
            dry_run=self.dry_run,
        )
        mounts(state)["target_mounted"] = True
        mount_target(
            root_dev=root_dev,
            esp_part=esp_part,
            target_root=self.ctx.target_root,
            esp_mountpoint=self.ctx.esp_mountpoint,
            dry_run=self.dry_run,
        )
        logger.info("Target mounted at %s (ESP at %s)", self.ctx.target_root, self.ctx.esp_mountpoint)
        return state
