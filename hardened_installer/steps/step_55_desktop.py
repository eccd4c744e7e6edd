from __future__ import annotations

import logging
from typing import Any, Dict

from ..context import decisions
from ..lib.chroot import chroot_binds, chroot_optional
from ..lib.manifests import package_group
from ..lib.pkg import apt_clean, apt_install, apt_update
from ..lib.templates import install_template
from ._base import InstallStep

logger = logging.getLogger(__name__)

DISPLAY_MANAGERS = {"kde": "sddm", "xfce": "lightdm"}


class DesktopStep(InstallStep):
    step_id = "55_desktop"

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        desktop = self.cfg.desktop_environment.strip().lower()
        d = decisions(state)

        if desktop in {"", "none"}:
            logger.info("No desktop environment requested")
            d["desktop"] = "none"
            return state
        if desktop not in DISPLAY_MANAGERS:
            logger.warning("Unknown DESKTOP_ENVIRONMENT=%r; skipping desktop installation", desktop)
            d["desktop"] = "none"
            return state

        target_root = self.attach_target(state)
        with chroot_binds(target_root, dry_run=self.dry_run):
            apt_update(target_root, dry_run=self.dry_run)
            apt_install(target_root, package_group(f"desktop_{desktop}"), with_recommends=True, dry_run=self.dry_run)
            apt_clean(target_root, dry_run=self.dry_run)

            dm = DISPLAY_MANAGERS[desktop]
            chroot_optional(target_root, ["systemctl", "enable", dm], what=f"Enabling {dm}", dry_run=self.dry_run)
            chroot_optional(
                target_root,
                ["systemctl", "set-default", "graphical.target"],
                what="Setting graphical.target",
                dry_run=self.dry_run,
            )

        if desktop == "kde":
            install_template(
                target_root,
                "kdeglobals",
                "/etc/skel/.config/kdeglobals",
                {"KDE_THEME": self.cfg.kde_default_theme},
                dry_run=self.dry_run,
            )

        d["desktop"] = desktop
        logger.info("Desktop environment installed: %s", desktop)
        return state
