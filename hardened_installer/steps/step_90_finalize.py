from __future__ import annotations

import logging
from typing import Any, Dict

from ..context import decisions, mounts
from ..lib.chroot import umount_chroot_binds
from ..lib.command import run_optional
from ..lib.luks import luks_close
from ..lib.storage import unmount_target
from ._base import InstallStep

logger = logging.getLogger(__name__)


class FinalizeStep(InstallStep):
    """Leave the disk unmounted and locked, after success or failure."""

    step_id = "90_finalize"
    always_run = True

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        m = mounts(state)
        target_root = m.get("target_root") or self.ctx.target_root

        if m.get("target_mounted"):
            umount_chroot_binds(target_root, dry_run=self.dry_run)
            run_optional(["sync"], what="sync", dry_run=self.dry_run)
            if unmount_target(target_root, dry_run=self.dry_run):
                m["target_mounted"] = False

        mapper = m.get("luks_mapper")
        if mapper and m.get("luks_open"):
            if luks_close(mapper, dry_run=self.dry_run):
                m["luks_open"] = False

        logger.info("Installation summary: %s", decisions(state))
        return state
