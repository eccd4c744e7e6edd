from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict

from ..context import decisions
from ..lib.chroot import chroot_binds, chroot_optional
from ..lib.privacy import configure_firewall, write_ping_target_units
from ._base import InstallStep

logger = logging.getLogger(__name__)

MEDIA_USER = "media-processor"


class ServicesStep(InstallStep):
    step_id = "60_services"

    def _media_processor(self, target_root: str) -> bool:
        chroot_optional(target_root, ["groupadd", "--system", MEDIA_USER], what=f"groupadd {MEDIA_USER}", dry_run=self.dry_run)
        chroot_optional(
            target_root,
            [
                "useradd",
                "--system",
                "--gid",
                MEDIA_USER,
                "--shell",
                "/usr/sbin/nologin",
                "--comment",
                "Hardened Media Processor",
                MEDIA_USER,
            ],
            what=f"useradd {MEDIA_USER}",
            dry_run=self.dry_run,
        )

        unit = self.ctx.paths.media_processor_unit
        if not Path(self.ctx.target(unit)).is_file():
            logger.warning("%s not found in target; media processor service not enabled", unit)
            return False
        return chroot_optional(
            target_root,
            ["systemctl", "enable", Path(unit).name],
            what=f"Enabling {Path(unit).name}",
            dry_run=self.dry_run,
        )

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        target_root = self.attach_target(state)
        cfg = self.cfg
        d = decisions(state)

        with chroot_binds(target_root, dry_run=self.dry_run):
            if cfg.enable_media_processor:
                d["media_processor_enabled"] = self._media_processor(target_root)

            if cfg.enable_firewall:
                configure_firewall(
                    target_root,
                    i2p_port=cfg.i2p_port if cfg.enable_tor_i2p_stack else None,
                    ping_target=cfg.ping_target_ip if cfg.enable_ping_target else None,
                    dry_run=self.dry_run,
                )
            else:
                logger.warning("ENABLE_FIREWALL=0: ufw left unconfigured")
            d["firewall"] = cfg.enable_firewall

            if cfg.enable_ping_target:
                write_ping_target_units(
                    target_root,
                    ip=cfg.ping_target_ip,
                    count=cfg.ping_count,
                    dry_run=self.dry_run,
                )
            d["ping_target"] = cfg.enable_ping_target

        return state
