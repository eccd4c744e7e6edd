from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List

from ..context import decisions
from ..lib.accel import enabled_libraries
from ..lib.assets import write_file
from ..lib.chroot import chroot_binds, chroot_optional
from ..lib.download import extract_tarball_into
from ..lib.drivers import build_driver_bundle, install_driver_bundle
from ..lib.manifests import package_group
from ..lib.pkg import apt_clean, apt_has_package, apt_install, apt_purge, apt_update, dpkg_install
from ..lib.target_build import run_prebuild_in_target
from ._base import InstallStep

logger = logging.getLogger(__name__)


def local_debs(target_root: str, deb_dir: str) -> List[str]:
    """.deb files under deb_dir in the target, as paths inside the chroot."""

    d = Path(target_root) / deb_dir.lstrip("/")
    if not d.is_dir():
        return []
    return [f"{deb_dir.rstrip('/')}/{p.name}" for p in sorted(d.glob("*.deb")) if "-dbg" not in p.name]


class InstallPackagesStep(InstallStep):
    step_id = "50_install_packages"

    def _install_kernel(self, target_root: str) -> Dict[str, Any]:
        cfg = self.cfg
        deb_dir = cfg.kernel_deb_dir_custom

        debs = local_debs(target_root, deb_dir)
        source = "prebuilt"
        if not debs and cfg.build_custom_kernel:
            logger.info("Building custom kernel inside the target (this takes a while)")
            run_prebuild_in_target(target_root, cfg, ["kernel", "--output-dir", deb_dir], dry_run=self.dry_run)
            debs = local_debs(target_root, deb_dir)
            if not debs and not self.dry_run:
                raise RuntimeError(f"Custom kernel build left no packages in {deb_dir}")
            source = "built_on_target"

        if debs or source == "built_on_target":
            dpkg_install(target_root, debs, fix_broken=True, dry_run=self.dry_run)
            apt_purge(target_root, [cfg.kernel_package_name], dry_run=self.dry_run)
            logger.info("Custom kernel installed (%s): %s", source, ", ".join(debs) or "dry run")
            return {"source": source, "packages": debs}

        apt_install(target_root, [cfg.kernel_package_name], with_recommends=True, dry_run=self.dry_run)
        logger.info("Stock kernel installed: %s", cfg.kernel_package_name)
        return {"source": "stock", "packages": [cfg.kernel_package_name]}

    def _install_accel_libs(self, target_root: str) -> str:
        cfg = self.cfg
        prefix = cfg.accel_prefix
        tarball = self.ctx.target(self.ctx.paths.accel_tarball)

        if Path(tarball).is_file():
            extract_tarball_into(tarball, self.ctx.target(prefix), dry_run=self.dry_run)
            result = "prebuilt"
        elif cfg.accel_libs_enable and enabled_libraries(cfg):
            try:
                run_prebuild_in_target(target_root, cfg, ["accel", "--prefix", prefix], dry_run=self.dry_run)
                result = "built_on_target"
            except RuntimeError as e:
                logger.warning("Accelerated library build failed; continuing without them: %s", e)
                return "failed"
        else:
            return "skipped"

        write_file(target_root, "/etc/ld.so.conf.d/accel-libs.conf", f"{prefix.rstrip('/')}/lib\n", dry_run=self.dry_run)
        chroot_optional(target_root, ["ldconfig"], what="ldconfig", dry_run=self.dry_run)
        return result

    def _install_drivers(self, target_root: str) -> Dict[str, str]:
        paths = self.ctx.paths
        out: Dict[str, str] = {}
        for kind, bundle_dir in sorted(paths.driver_dirs.items()):
            dest = self.ctx.target(bundle_dir)
            tarball = self.ctx.target(paths.driver_tarball(kind))
            if Path(tarball).is_file():
                extract_tarball_into(tarball, dest, dry_run=self.dry_run)
                out[kind] = "prebuilt"
            else:
                build_driver_bundle(kind, dest, dry_run=self.dry_run)
                out[kind] = "generated"
            install_driver_bundle(target_root, dest, dry_run=self.dry_run)
        return out

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        target_root = self.attach_target(state)
        cfg = self.cfg
        d = decisions(state)

        with chroot_binds(target_root, dry_run=self.dry_run):
            apt_update(target_root, dry_run=self.dry_run)
            apt_install(target_root, package_group("base"), dry_run=self.dry_run)

            if cfg.enable_media_processor:
                runtime = [p for p in package_group("media_runtime") if apt_has_package(target_root, p, dry_run=self.dry_run)]
                missing = sorted(set(package_group("media_runtime")) - set(runtime))
                if missing:
                    logger.warning("Not available in %s: %s", cfg.debian_release, ", ".join(missing))
                apt_install(target_root, runtime, dry_run=self.dry_run)

            d["kernel"] = self._install_kernel(target_root)

            debs = local_debs(target_root, self.ctx.paths.local_debs)
            if debs:
                dpkg_install(target_root, debs, fix_broken=True, dry_run=self.dry_run)
            d["local_debs"] = debs

            d["accel_libs"] = self._install_accel_libs(target_root)

            if cfg.prebuild_hardened_drivers:
                d["drivers"] = self._install_drivers(target_root)

            apt_clean(target_root, dry_run=self.dry_run)

        return state
