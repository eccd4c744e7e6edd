from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Sequence

from ..hardened_conf import HardenedConfig, render_conf_text
from .assets import copy_tree, target_path, write_file
from .chroot import chroot_cmd
from .pkg import apt_install

logger = logging.getLogger(__name__)

STAGE_DIR = "/root/hardened-installer"
STAGE_CONFIG = "/root/hardened-os.conf"
STAGE_KERNEL_CONFIG = f"{STAGE_DIR}/kernel.config"

RUNTIME_PACKAGES = ["python3", "python3-yaml"]


def _package_dir() -> Path:
    # hardened_installer/lib/target_build.py -> hardened_installer
    return Path(__file__).resolve().parents[1]


def stage_in_target(target_root: str, cfg: HardenedConfig, *, dry_run: bool = False) -> None:
    """Copy this package and a secret-free copy of the config into the target."""

    copy_tree(
        str(_package_dir()),
        str(target_path(target_root, f"{STAGE_DIR}/hardened_installer")),
        dry_run=dry_run,
    )

    values = dict(cfg.raw)
    template = cfg.kernel_config_template
    if template:
        dst = target_path(target_root, STAGE_KERNEL_CONFIG)
        if dry_run:
            logger.info("Would copy %s -> %s", template, str(dst))
        else:
            if not Path(template).is_file():
                raise RuntimeError(f"Kernel config template not found: {template}")
            dst.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(template, dst)
        values["KERNEL_CONFIG_TEMPLATE"] = STAGE_KERNEL_CONFIG

    write_file(target_root, STAGE_CONFIG, render_conf_text(values), mode=0o600, dry_run=dry_run)


def cleanup_target_stage(target_root: str, *, dry_run: bool = False) -> None:
    if dry_run:
        logger.info("Would remove %s and %s from the target", STAGE_DIR, STAGE_CONFIG)
        return
    shutil.rmtree(target_path(target_root, STAGE_DIR), ignore_errors=True)
    target_path(target_root, STAGE_CONFIG).unlink(missing_ok=True)


def run_prebuild_in_target(
    target_root: str,
    cfg: HardenedConfig,
    args: Sequence[str],
    *,
    dry_run: bool = False,
) -> None:
    """Run one `hardened-prebuild` subcommand inside the target chroot.

    Bind mounts must already be in place. Raises RuntimeError when the
    build fails; the staged copy is removed either way.
    """

    apt_install(target_root, RUNTIME_PACKAGES, dry_run=dry_run)
    stage_in_target(target_root, cfg, dry_run=dry_run)
    try:
        chroot_cmd(
            target_root,
            ["python3", "-m", "hardened_installer.prebuild", "--config", STAGE_CONFIG, *args],
            env={"PYTHONPATH": STAGE_DIR},
            dry_run=dry_run,
        )
    finally:
        cleanup_target_stage(target_root, dry_run=dry_run)
