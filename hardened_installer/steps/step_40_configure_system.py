from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict

from ..lib.assets import write_file
from ..lib.chroot import chroot_binds, chroot_optional
from ..lib.manifests import package_group
from ..lib.pkg import apt_install
from ..lib.sysconfig import configure_locale, render_hosts
from ._base import InstallStep

logger = logging.getLogger(__name__)


class ConfigureSystemStep(InstallStep):
    step_id = "40_configure_system"

    def _link_timezone(self, target_root: str, tz: str) -> None:
        zone = f"/usr/share/zoneinfo/{tz}"
        localtime = Path(target_root) / "etc/localtime"
        if self.dry_run:
            logger.info("Would link %s -> %s", str(localtime), zone)
            return
        if not (Path(target_root) / zone.lstrip("/")).is_file():
            raise RuntimeError(f"Unknown timezone {tz!r}: {zone} missing in target")
        if localtime.is_symlink() or localtime.exists():
            localtime.unlink()
        os.symlink(zone, localtime)

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        target_root = self.attach_target(state)
        hostname = self.ctx.hostname
        tz = self.cfg.os_timezone
        locale = self.cfg.os_locale

        write_file(target_root, "/etc/hostname", f"{hostname}\n", dry_run=self.dry_run)
        write_file(target_root, "/etc/hosts", render_hosts(hostname), dry_run=self.dry_run)

        with chroot_binds(target_root, dry_run=self.dry_run):
            apt_install(target_root, package_group("localization"), dry_run=self.dry_run)

            self._link_timezone(target_root, tz)
            write_file(target_root, "/etc/timezone", f"{tz}\n", dry_run=self.dry_run)
            chroot_optional(
                target_root,
                ["dpkg-reconfigure", "-f", "noninteractive", "tzdata"],
                what="Reconfiguring tzdata",
                dry_run=self.dry_run,
            )

            configure_locale(target_root, locale, dry_run=self.dry_run)

        logger.info("System configured: hostname=%s timezone=%s locale=%s", hostname, tz, locale)
        return state
