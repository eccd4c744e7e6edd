from __future__ import annotations

import logging
from typing import Any, Dict

from ..context import decisions, mounts, require_mount
from ..lib.luks import LuksParams, luks_format, luks_open
from ._base import InstallStep

logger = logging.getLogger(__name__)


class SetupLuksStep(InstallStep):
    step_id = "15_setup_luks"

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        root_part = require_mount(state, "root_part", "10_partition_disk")
        m = mounts(state)

        if not self.cfg.luks_enable:
            logger.warning("LUKS_ENABLE=0: the root filesystem will NOT be encrypted")
            m["root_dev"] = root_part
            m["luks_part"] = None
            m["luks_mapper"] = None
            decisions(state)["luks"] = False
            return state

        mapper = self.cfg.luks_mapper_name
        luks_format(root_part, self.ctx.passphrase, LuksParams.from_config(self.cfg), dry_run=self.dry_run)
        # Recorded before opening so finalize closes a half-opened mapper.
        m["luks_part"] = root_part
        m["luks_mapper"] = mapper
        m["luks_open"] = True
        root_dev = luks_open(root_part, mapper, self.ctx.passphrase, dry_run=self.dry_run)

        m["root_dev"] = root_dev
        decisions(state)["luks"] = True
        return state
