from __future__ import annotations

import logging
from typing import Any, Dict

from ..context import decisions
from ..lib.chroot import chroot_binds, chroot_cmd
from ._base import InstallStep

logger = logging.getLogger(__name__)


class AccountsStep(InstallStep):
    step_id = "85_accounts"

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        target_root = self.attach_target(state)
        password = self.cfg.root_password

        with chroot_binds(target_root, dry_run=self.dry_run):
            if password:
                chroot_cmd(target_root, ["chpasswd"], input_text=f"root:{password}\n", dry_run=self.dry_run)
                logger.info("Root password set")
            else:
                logger.warning("ROOT_PASSWORD is not set; locking the root account")
                chroot_cmd(target_root, ["passwd", "-l", "root"], dry_run=self.dry_run)

        decisions(state)["root_locked"] = not password
        return state
