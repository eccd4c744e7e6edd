from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional

from ..hardened_conf import HardenedConfig
from .command import run_cmd
from .download import archive_name, download, extract_tarball, verify_sha256
from .manifests import package_group
from .pkg import apt_clean, apt_install, apt_update

logger = logging.getLogger(__name__)


def kernel_build_env(cflags: str, ldflags: str) -> dict[str, str]:
    return {"KCFLAGS": cflags, "KBUILD_CFLAGS": cflags, "KBUILD_LDFLAGS": ldflags}


def find_kernel_image_deb(deb_dir: str) -> Optional[Path]:
    """Newest linux-image-*.deb in deb_dir, ignoring -dbg packages."""

    d = Path(deb_dir)
    if not d.is_dir():
        return None
    debs = [p for p in d.glob("linux-image-*.deb") if "-dbg" not in p.name]
    if not debs:
        return None
    return max(debs, key=lambda p: (p.stat().st_mtime, p.name))


def build_custom_kernel(
    cfg: HardenedConfig,
    output_dir: str,
    *,
    cflags: str,
    ldflags: str,
    target_root: Optional[str] = None,
    install_deps: bool = True,
    dry_run: bool = False,
) -> List[Path]:
    """Build kernel .deb packages from KERNEL_SOURCE_URL into output_dir.

    Runs on the build host (target_root None) or, for on-target builds, with
    dependencies installed into target_root. The build tree lives in a
    fresh temporary directory; make bindeb-pkg drops the packages next to
    it, so the tree is one level below the temporary root.
    """

    url = cfg.kernel_source_url
    template = cfg.kernel_config_template
    if not url:
        raise RuntimeError("KERNEL_SOURCE_URL must be set to build a custom kernel")
    if not template:
        raise RuntimeError("KERNEL_CONFIG_TEMPLATE must be set to build a custom kernel")
    if not dry_run and not Path(template).is_file():
        raise RuntimeError(f"Kernel config template not found: {template}")

    if install_deps:
        apt_update(target_root, dry_run=dry_run)
        apt_install(target_root, package_group("kernel_build"), dry_run=dry_run)
        apt_clean(target_root, dry_run=dry_run)

    out = Path(output_dir)
    if not dry_run:
        out.mkdir(parents=True, exist_ok=True)

    build_root = Path(tempfile.mkdtemp(prefix="kernel_build_")) if not dry_run else Path("/tmp/kernel_build")
    src = build_root / "linux"
    try:
        tarball = build_root / archive_name(url)
        download(url, str(tarball), dry_run=dry_run)
        verify_sha256(str(tarball), cfg.kernel_source_sha256, what="kernel source", dry_run=dry_run)
        extract_tarball(str(tarball), str(src), dry_run=dry_run)

        if dry_run:
            logger.info("Would copy %s -> %s", template, str(src / ".config"))
        else:
            shutil.copyfile(template, src / ".config")

        env = kernel_build_env(cflags, ldflags)
        run_cmd(["make", "olddefconfig"], cwd=str(src), env=env, dry_run=dry_run)
        run_cmd(["make", f"-j{os.cpu_count() or 1}", "bindeb-pkg"], cwd=str(src), env=env, dry_run=dry_run)

        built: List[Path] = []
        if not dry_run:
            for deb in sorted(build_root.glob("*.deb")):
                dst = out / deb.name
                shutil.copy2(deb, dst)
                built.append(dst)
            if not built:
                raise RuntimeError("Kernel build produced no .deb packages")
        logger.info("Custom kernel packages: %s", [p.name for p in built])
        return built
    finally:
        if not dry_run:
            shutil.rmtree(build_root, ignore_errors=True)
