from __future__ import annotations

import logging
from typing import Any, Dict

from ..context import decisions
from ..lib.chroot import chroot_binds
from ..lib.privacy import apply_media_mime_defaults, install_privacy_tools, setup_mac_randomization
from ._base import InstallStep

logger = logging.getLogger(__name__)


class PrivacyStep(InstallStep):
    step_id = "65_privacy"

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        target_root = self.attach_target(state)
        cfg = self.cfg
        d = decisions(state)

        with chroot_binds(target_root, dry_run=self.dry_run):
            if cfg.enable_mac_randomization:
                setup_mac_randomization(target_root, dry_run=self.dry_run)
            if cfg.enable_tor_i2p_stack:
                install_privacy_tools(target_root, i2p_port=cfg.i2p_port, dry_run=self.dry_run)
            apply_media_mime_defaults(target_root, dry_run=self.dry_run)

        d["mac_randomization"] = cfg.enable_mac_randomization
        d["tor_i2p"] = cfg.enable_tor_i2p_stack
        return state
