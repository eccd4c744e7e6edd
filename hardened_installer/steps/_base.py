from __future__ import annotations

import logging
from typing import Any, Dict

from ..context import InstallContext, mounts, require_mount
from ..hardened_conf import HardenedConfig
from ..lib.luks import luks_open, mapper_exists
from ..lib.storage import is_mountpoint, mount_target

logger = logging.getLogger(__name__)


class InstallStep:
    """Base for target installer steps; subclasses set step_id and run()."""

    step_id = ""
    always_run = False

    def __init__(self, ctx: InstallContext) -> None:
        self.ctx = ctx

    @property
    def cfg(self) -> HardenedConfig:
        return self.ctx.cfg

    @property
    def dry_run(self) -> bool:
        return self.ctx.dry_run

    def attach_target(self, state: Dict[str, Any]) -> str:
        """Make sure the target is unlocked and mounted; returns target_root.

        A resumed run finds the devices recorded by the partition, LUKS and
        filesystem steps but closed and unmounted by the previous finalize,
        or, after a crash or reboot, flagged as mounted and open while they
        are not. Outside a dry run the flags are checked against the host.
        """

        m = mounts(state)
        target_root = m.get("target_root") or self.ctx.target_root

        if m.get("target_mounted"):
            if self.dry_run or is_mountpoint(target_root):
                return target_root
            logger.warning("%s is recorded as mounted but is not a mount point", target_root)

        root_dev = require_mount(state, "root_dev", "15_setup_luks")
        esp_part = require_mount(state, "esp_part", "10_partition_disk")

        mapper = m.get("luks_mapper")
        if mapper:
            is_open = m.get("luks_open") if self.dry_run else mapper_exists(mapper)
            if is_open:
                m["luks_open"] = True
            else:
                logger.info("Reopening LUKS container for resumed run")
                m["luks_open"] = True
                luks_open(
                    require_mount(state, "luks_part", "15_setup_luks"),
                    mapper,
                    self.ctx.passphrase,
                    dry_run=self.dry_run,
                )

        logger.info("Remounting target at %s for resumed run", target_root)
        m["target_mounted"] = True
        mount_target(
            root_dev=root_dev,
            esp_part=esp_part,
            target_root=target_root,
            esp_mountpoint=self.ctx.esp_mountpoint,
            dry_run=self.dry_run,
        )
        return target_root

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError
