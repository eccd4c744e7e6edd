from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..context import decisions
from ..lib.assets import copy_if_exists
from ..lib.templates import install_template
from ._base import InstallStep

logger = logging.getLogger(__name__)


class StageArtifactsStep(InstallStep):
    """Copy pre-built artifacts from the installer environment into the target.

    Every artifact is optional; what was found is recorded under
    decisions.staged so later steps (and a resumed run) know what to install.
    """

    step_id = "35_stage_artifacts"

    def _copies(self) -> List[Tuple[str, str, str, Optional[str]]]:
        p = self.ctx.paths
        # (name, source in installer env, destination in target, glob pattern)
        copies: List[Tuple[str, str, str, Optional[str]]] = [
            ("media_wasm", p.media_wasm, p.media_wasm, None),
            ("image_harden_cli", p.image_harden_cli, p.image_harden_cli, None),
            ("media_processor_unit", p.media_processor_unit, p.media_processor_unit, None),
            ("seccomp_profile", p.seccomp_profile, p.seccomp_profile, None),
            ("imageharden_profiles", p.installer_profiles, p.imageharden_profiles, None),
            ("local_debs", p.local_debs, p.local_debs, "*.deb"),
            ("desktop_files", p.installer_desktop_files, p.desktop_files, "*.desktop"),
            ("kernel_debs", self.cfg.kernel_deb_dir_custom, self.cfg.kernel_deb_dir_custom, "*.deb"),
            ("accel_tarball", p.accel_tarball, p.accel_tarball, None),
        ]
        for kind in sorted(p.driver_tarballs):
            copies.append((f"{kind}_drivers", p.driver_tarball(kind), p.driver_tarball(kind), None))
        return copies

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        target_root = self.attach_target(state)

        staged: Dict[str, bool] = {}
        for name, src, dst, pattern in self._copies():
            staged[name] = copy_if_exists(
                self.ctx.source(src),
                self.ctx.target(dst),
                pattern=pattern,
                dry_run=self.dry_run,
            )

        if staged["image_harden_cli"]:
            if not self.dry_run:
                Path(self.ctx.target(self.ctx.paths.image_harden_cli)).chmod(0o755)
            install_template(
                target_root,
                "run_image_harden.sh",
                self.ctx.paths.image_harden_wrapper,
                mode=0o755,
                dry_run=self.dry_run,
            )

        decisions(state)["staged"] = staged
        logger.info("Staged artifacts: %s", ", ".join(k for k, v in staged.items() if v) or "none")
        return state
