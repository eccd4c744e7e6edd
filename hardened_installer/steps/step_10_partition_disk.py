from __future__ import annotations

import logging
from typing import Any, Dict

from ..context import mounts
from ..lib.storage import PartitionPlan, partition_disk
from ._base import InstallStep

logger = logging.getLogger(__name__)


class PartitionDiskStep(InstallStep):
    step_id = "10_partition_disk"

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        plan = PartitionPlan(
            disk=self.ctx.disk,
            esp_size_mib=self.cfg.esp_size_mib,
            esp_label=self.cfg.esp_label,
            root_label=self.cfg.luks_part_label,
        )
        logger.warning("All data on %s will be destroyed", plan.disk)
        result = partition_disk(plan, dry_run=self.dry_run)

        m = mounts(state)
        m["esp_part"] = result.esp_part
        m["root_part"] = result.root_part
        return state
