from __future__ import annotations

import logging
from typing import Any, Dict

from ..context import decisions
from ..lib.chroot import chroot_binds, copy_resolv_conf
from ..lib.pkg import apt_update, debootstrap_rootfs
from ._base import InstallStep

logger = logging.getLogger(__name__)


class BootstrapRootfsStep(InstallStep):
    step_id = "30_bootstrap_rootfs"

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        target_root = self.attach_target(state)

        debootstrap_rootfs(
            target_root=target_root,
            suite=self.cfg.debian_release,
            mirror=self.cfg.debian_mirror,
            arch="amd64",
            dry_run=self.dry_run,
        )
        copy_resolv_conf(target_root, dry_run=self.dry_run)

        with chroot_binds(target_root, dry_run=self.dry_run):
            apt_update(target_root, dry_run=self.dry_run)

        decisions(state)["debian_release"] = self.cfg.debian_release
        logger.info("Debian %s bootstrapped into %s", self.cfg.debian_release, target_root)
        return state
