from __future__ import annotations

from typing import Any, Dict

from ..lib.templates import install_template
from ._base import InstallStep

SYSCTL_FILES = ("90-hardened.conf", "99-media-hardening.conf")


class SysctlStep(InstallStep):
    step_id = "75_sysctl"

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        target_root = self.attach_target(state)
        # Applied by systemd-sysctl on first boot; never loaded into the host kernel.
        for name in SYSCTL_FILES:
            install_template(target_root, name, f"/etc/sysctl.d/{name}", dry_run=self.dry_run)
        return state
