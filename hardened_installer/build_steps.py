from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .build_state import is_completed, mark_completed, target_state
from .hardened_conf import HardenedConfig
from .lib.accel import build_accel_libs, staged_prefix
from .lib.assets import copy_if_exists, copy_tree, write_file
from .lib.chroot import chroot_binds, chroot_optional, copy_resolv_conf, umount_chroot_binds
from .lib.command import run_cmd, run_optional, which_missing
from .lib.download import create_tarball, sha256_file
from .lib.drivers import build_driver_bundle
from .lib.env import PATHS, Paths
from .lib.kernel import build_custom_kernel, find_kernel_image_deb
from .lib.manifests import package_group
from .lib.pkg import apt_clean, apt_install, apt_update, debootstrap_rootfs, dpkg_install
from .lib.sysconfig import configure_locale
from .lib.templates import install_template, render_template
from .lib.wasm import build_ffmpeg_wasm, setup_emsdk

logger = logging.getLogger(__name__)

ISO_VOLUME_ID = "HARDENED_INSTALLER"
INSTALLER_LOCALE = "en_US.UTF-8"
INSTALLER_HOSTNAME = "hardened-installer"

HOST_COMMANDS = [
    "debootstrap",
    "chroot",
    "mount",
    "umount",
    "tar",
    "dpkg",
    "mksquashfs",
    "grub-mkrescue",
    "xorriso",
    "mformat",
]


@dataclass(frozen=True)
class BuildCtx:
    cfg: HardenedConfig
    config_path: str
    output_iso: str
    dry_run: bool
    target: str = "amd64"
    paths: Paths = PATHS
    # Directory holding the hardened_installer and ui packages.
    source_dir: Path = field(default_factory=lambda: Path(__file__).resolve().parents[1])

    @property
    def work_dir(self) -> Path:
        return Path(self.cfg.build_work_dir).resolve() / self.target

    @property
    def installer_root(self) -> Path:
        return self.work_dir / "installer_root"

    @property
    def iso_dir(self) -> Path:
        return self.work_dir / "iso"

    @property
    def assets_dir(self) -> Path:
        return Path(self.cfg.assets_dir).resolve()

    @property
    def wasm_output(self) -> Path:
        return self.work_dir / "ffmpeg.wasm"

    @property
    def image_harden_src(self) -> Path:
        return self.assets_dir / "image_harden"

    @property
    def image_harden_binary(self) -> Path:
        return self.image_harden_src / "target/release/image_harden_cli"

    def driver_tarball(self, kind: str) -> Path:
        return self.work_dir / self.paths.driver_tarballs[kind]

    def in_root(self, path: str) -> str:
        """Host path of an absolute path inside the installer root."""

        return str(self.installer_root / path.lstrip("/"))


def _skip(ctx: BuildCtx, state: Dict[str, Any], step_id: str, force: bool) -> bool:
    target_state(state, ctx.target)["current_step"] = step_id
    if (not force) and is_completed(state, target=ctx.target, step_id=step_id):
        logger.info("[%s] skip %s", ctx.target, step_id)
        return True
    logger.info("[%s] run %s", ctx.target, step_id)
    return False


def _done(ctx: BuildCtx, state: Dict[str, Any], step_id: str) -> None:
    mark_completed(state, target=ctx.target, step_id=step_id)
    target_state(state, ctx.target)["current_step"] = None


def _remove_tree(path: Path, *, dry_run: bool) -> None:
    if path.exists():
        run_optional(["rm", "-rf", str(path)], what=f"Removing {path}", dry_run=dry_run)


def required_host_commands(cfg: HardenedConfig) -> List[str]:
    cmds = list(HOST_COMMANDS)
    if cfg.prebuild_custom_kernel or cfg.prebuild_accel_libs:
        cmds += ["wget", "make"]
    if cfg.build_ffmpeg_wasm:
        cmds += ["git", "bash"]
    if cfg.build_imageharden:
        cmds.append("cargo")
    return cmds


def step_00_check_host(*, ctx: BuildCtx, state: Dict[str, Any], force: bool) -> None:
    step_id = "00_check_host"
    if _skip(ctx, state, step_id, force):
        return

    if ctx.dry_run:
        logger.info("Dry run: skipping root and host command checks")
    else:
        if os.geteuid() != 0:
            raise RuntimeError("The ISO build must run as root")
        missing = which_missing(required_host_commands(ctx.cfg))
        if missing:
            raise RuntimeError(f"Missing required host commands: {', '.join(missing)}")

    _done(ctx, state, step_id)


def step_01_prepare_workdir(*, ctx: BuildCtx, state: Dict[str, Any], force: bool) -> None:
    step_id = "01_prepare_workdir"
    if _skip(ctx, state, step_id, force):
        return

    if force:
        umount_chroot_binds(str(ctx.installer_root), dry_run=ctx.dry_run)
        for p in [ctx.installer_root, ctx.iso_dir]:
            _remove_tree(p, dry_run=ctx.dry_run)

    if not ctx.dry_run:
        for p in [ctx.installer_root, ctx.iso_dir]:
            p.mkdir(parents=True, exist_ok=True)

    target_state(state, ctx.target)["work_dir"] = str(ctx.work_dir)
    logger.info("Build work directory: %s", str(ctx.work_dir))
    _done(ctx, state, step_id)


def step_02_prebuild_kernel(*, ctx: BuildCtx, state: Dict[str, Any], force: bool) -> None:
    step_id = "02_prebuild_kernel"
    if _skip(ctx, state, step_id, force):
        return

    if ctx.cfg.prebuild_custom_kernel:
        built = build_custom_kernel(
            ctx.cfg,
            ctx.cfg.prebuild_kernel_debs_dir,
            cflags=ctx.cfg.cflags_baseline,
            ldflags=ctx.cfg.ldflags_baseline,
            dry_run=ctx.dry_run,
        )
        target_state(state, ctx.target)["kernel_debs"] = [str(p) for p in built]
    else:
        logger.info("PREBUILD_CUSTOM_KERNEL=0: the installer uses the stock kernel or builds on target")

    _done(ctx, state, step_id)


def step_03_prebuild_accel_libs(*, ctx: BuildCtx, state: Dict[str, Any], force: bool) -> None:
    step_id = "03_prebuild_accel_libs"
    if _skip(ctx, state, step_id, force):
        return

    if ctx.cfg.prebuild_accel_libs:
        # Staged under the install dir; the tarball holds the prefix contents.
        install_dir = str(Path(ctx.cfg.prebuild_accel_libs_install_dir).resolve())
        prefix = ctx.cfg.accel_prefix
        names = build_accel_libs(ctx.cfg, prefix=prefix, destdir=install_dir, dry_run=ctx.dry_run)
        if names:
            create_tarball(staged_prefix(prefix, install_dir), ctx.cfg.prebuild_accel_libs_tar, dry_run=ctx.dry_run)
        target_state(state, ctx.target)["accel_libs"] = names
    else:
        logger.info("PREBUILD_ACCEL_LIBS=0: accelerated libraries are built on target if enabled")

    _done(ctx, state, step_id)


def step_04_prebuild_drivers(*, ctx: BuildCtx, state: Dict[str, Any], force: bool) -> None:
    step_id = "04_prebuild_drivers"
    if _skip(ctx, state, step_id, force):
        return

    if ctx.cfg.prebuild_hardened_drivers:
        tarballs: Dict[str, str] = {}
        for kind in sorted(ctx.paths.driver_tarballs):
            bundle = ctx.work_dir / "drivers" / kind
            build_driver_bundle(kind, str(bundle), dry_run=ctx.dry_run)
            tarballs[kind] = str(create_tarball(str(bundle), str(ctx.driver_tarball(kind)), dry_run=ctx.dry_run))
        target_state(state, ctx.target)["driver_tarballs"] = tarballs
    else:
        logger.info("PREBUILD_HARDENED_DRIVERS=0: driver bundles skipped")

    _done(ctx, state, step_id)


def step_05_prebuild_media_wasm(*, ctx: BuildCtx, state: Dict[str, Any], force: bool) -> None:
    step_id = "05_prebuild_media_wasm"
    if _skip(ctx, state, step_id, force):
        return

    if ctx.cfg.build_ffmpeg_wasm:
        emsdk = setup_emsdk(str(ctx.work_dir / "emsdk"), dry_run=ctx.dry_run)
        build_ffmpeg_wasm(
            str(ctx.assets_dir / "ffmpeg"),
            str(emsdk),
            str(ctx.wasm_output),
            dry_run=ctx.dry_run,
        )
    else:
        logger.info("BUILD_FFMPEG_WASM=0: ffmpeg.wasm is staged only if already present")

    _done(ctx, state, step_id)


def step_06_prebuild_imageharden(*, ctx: BuildCtx, state: Dict[str, Any], force: bool) -> None:
    step_id = "06_prebuild_imageharden"
    if _skip(ctx, state, step_id, force):
        return

    if ctx.cfg.build_imageharden:
        src = ctx.image_harden_src
        if not ctx.dry_run and not (src / "Cargo.toml").is_file():
            raise RuntimeError(f"ImageHarden crate not found at {src}")
        run_cmd(["cargo", "build", "--release"], cwd=str(src), dry_run=ctx.dry_run)
    else:
        logger.info("BUILD_IMAGEHARDEN=0: image_harden_cli is staged only if already built")

    _done(ctx, state, step_id)


def step_07_bootstrap_installer_root(*, ctx: BuildCtx, state: Dict[str, Any], force: bool) -> None:
    step_id = "07_bootstrap_installer_root"
    if _skip(ctx, state, step_id, force):
        return

    root = str(ctx.installer_root)
    debootstrap_rootfs(
        target_root=root,
        suite=ctx.cfg.debian_release,
        mirror=ctx.cfg.debian_mirror,
        arch=ctx.target,
        dry_run=ctx.dry_run,
    )
    copy_resolv_conf(root, dry_run=ctx.dry_run)

    _done(ctx, state, step_id)


def step_08_stage_installer_files(*, ctx: BuildCtx, state: Dict[str, Any], force: bool) -> None:
    step_id = "08_stage_installer_files"
    if _skip(ctx, state, step_id, force):
        return

    cfg = ctx.cfg
    p = ctx.paths
    installer_dir = ctx.in_root(p.installer_dir)

    for package in ("hardened_installer", "ui"):
        copy_tree(str(ctx.source_dir / package), f"{installer_dir}/{package}", dry_run=ctx.dry_run)

    conf = Path(ctx.config_path).read_text(encoding="utf-8")
    write_file(str(ctx.installer_root), f"{p.installer_dir}/hardened-os.conf", conf, mode=0o600, dry_run=ctx.dry_run)

    assets = ctx.assets_dir
    staged: Dict[str, bool] = {
        "kernel_debs": cfg.prebuild_custom_kernel
        and copy_if_exists(
            cfg.prebuild_kernel_debs_dir, ctx.in_root(cfg.kernel_deb_dir_custom), pattern="*.deb", dry_run=ctx.dry_run
        ),
        "accel_tarball": cfg.prebuild_accel_libs
        and copy_if_exists(cfg.prebuild_accel_libs_tar, ctx.in_root(p.accel_tarball), dry_run=ctx.dry_run),
        "media_wasm": copy_if_exists(str(ctx.wasm_output), ctx.in_root(p.media_wasm), dry_run=ctx.dry_run),
        "image_harden_cli": copy_if_exists(
            str(ctx.image_harden_binary), ctx.in_root(p.image_harden_cli), dry_run=ctx.dry_run
        ),
        "services": copy_if_exists(
            str(assets / "systemd"), ctx.in_root("/etc/systemd/system"), pattern="*.service", dry_run=ctx.dry_run
        ),
        "timers": copy_if_exists(
            str(assets / "systemd"), ctx.in_root("/etc/systemd/system"), pattern="*.timer", dry_run=ctx.dry_run
        ),
        "seccomp_profile": copy_if_exists(
            str(assets / "seccomp-profile.json"), ctx.in_root(p.seccomp_profile), dry_run=ctx.dry_run
        ),
        "desktop_files": copy_if_exists(
            str(assets / "desktop"), ctx.in_root(p.installer_desktop_files), pattern="*.desktop", dry_run=ctx.dry_run
        ),
        "local_debs": copy_if_exists(
            str(assets / "debs"), ctx.in_root(p.local_debs), pattern="*.deb", dry_run=ctx.dry_run
        ),
        "profiles": copy_if_exists(str(assets / "profiles"), ctx.in_root(p.installer_profiles), dry_run=ctx.dry_run),
    }
    if cfg.prebuild_hardened_drivers:
        for kind in sorted(p.driver_tarballs):
            staged[f"{kind}_drivers"] = copy_if_exists(
                str(ctx.driver_tarball(kind)), ctx.in_root(p.driver_tarball(kind)), dry_run=ctx.dry_run
            )

    target_state(state, ctx.target)["staged"] = {k: bool(v) for k, v in staged.items()}
    _done(ctx, state, step_id)


def step_09_configure_installer_root(*, ctx: BuildCtx, state: Dict[str, Any], force: bool) -> None:
    step_id = "09_configure_installer_root"
    if _skip(ctx, state, step_id, force):
        return

    root = str(ctx.installer_root)
    custom_debs = sorted(Path(ctx.in_root(ctx.cfg.kernel_deb_dir_custom)).glob("linux-image-*.deb"))

    with chroot_binds(root, dry_run=ctx.dry_run):
        apt_update(root, dry_run=ctx.dry_run)
        apt_install(root, package_group("installer"), dry_run=ctx.dry_run)
        if custom_debs:
            # Installed so initramfs-tools generates an initrd for the custom kernel.
            dpkg_install(
                root,
                [f"{ctx.cfg.kernel_deb_dir_custom.rstrip('/')}/{d.name}" for d in custom_debs if "-dbg" not in d.name],
                fix_broken=True,
                dry_run=ctx.dry_run,
            )

        configure_locale(root, INSTALLER_LOCALE, dry_run=ctx.dry_run)
        write_file(root, "/etc/hostname", f"{INSTALLER_HOSTNAME}\n", dry_run=ctx.dry_run)

        chroot_optional(
            root,
            ["systemctl", "set-default", "multi-user.target"],
            what="Setting multi-user.target",
            dry_run=ctx.dry_run,
        )
        install_template(
            root,
            "getty-tty1-override.conf",
            "/etc/systemd/system/getty@tty1.service.d/override.conf",
            {"INSTALLER_DIR": ctx.paths.installer_dir},
            dry_run=ctx.dry_run,
        )
        apt_clean(root, dry_run=ctx.dry_run)

    _done(ctx, state, step_id)


def _newest(boot: Path, pattern: str) -> Optional[Path]:
    found = sorted(boot.glob(pattern))
    return found[-1] if found else None


def select_boot_files(ctx: BuildCtx) -> tuple[Path, Path]:
    """Kernel and initrd for the live ISO.

    With a pre-built custom kernel the image comes out of its .deb (dpkg -x)
    and the initrd is the one generated for that version in the installer
    root; otherwise the newest stock kernel of the installer root is used.
    """

    boot = ctx.installer_root / "boot"
    if ctx.cfg.prebuild_custom_kernel:
        deb = find_kernel_image_deb(ctx.cfg.prebuild_kernel_debs_dir)
        if deb is None:
            raise RuntimeError(f"No pre-built linux-image .deb found in {ctx.cfg.prebuild_kernel_debs_dir}")
        extract_dir = ctx.work_dir / "kernel_extract"
        _remove_tree(extract_dir, dry_run=False)
        extract_dir.mkdir(parents=True)
        run_cmd(["dpkg", "-x", str(deb), str(extract_dir)])
        vmlinuz = _newest(extract_dir / "boot", "vmlinuz-*")
        if vmlinuz is None:
            raise RuntimeError(f"No vmlinuz in {deb.name}")
        version = vmlinuz.name[len("vmlinuz-") :]
        initrd = boot / f"initrd.img-{version}"
        if not initrd.is_file():
            raise RuntimeError(f"No initrd generated for custom kernel {version} in the installer root")
        return vmlinuz, initrd

    vmlinuz = _newest(boot, "vmlinuz-*")
    initrd = _newest(boot, "initrd.img-*")
    if vmlinuz is None or initrd is None:
        raise RuntimeError(f"No kernel/initrd found in {boot}")
    return vmlinuz, initrd


def step_10_stage_boot_files(*, ctx: BuildCtx, state: Dict[str, Any], force: bool) -> None:
    step_id = "10_stage_boot_files"
    if _skip(ctx, state, step_id, force):
        return

    live = ctx.iso_dir / "live"
    grub_dir = ctx.iso_dir / "boot/grub"

    if ctx.dry_run:
        logger.info("Would stage kernel, initrd and grub.cfg into %s", str(ctx.iso_dir))
    else:
        live.mkdir(parents=True, exist_ok=True)
        grub_dir.mkdir(parents=True, exist_ok=True)
        vmlinuz, initrd = select_boot_files(ctx)
        shutil.copyfile(vmlinuz, live / "vmlinuz")
        shutil.copyfile(initrd, live / "initrd")
        target_state(state, ctx.target)["boot_files"] = {"kernel": vmlinuz.name, "initrd": initrd.name}
        (grub_dir / "grub.cfg").write_text(render_template("iso-grub.cfg"), encoding="utf-8")

    squash = live / "filesystem.squashfs"
    run_cmd(
        ["mksquashfs", str(ctx.installer_root), str(squash), "-noappend", "-comp", "xz", "-e", "boot"],
        dry_run=ctx.dry_run,
    )

    _done(ctx, state, step_id)


def step_11_create_iso(*, ctx: BuildCtx, state: Dict[str, Any], force: bool) -> None:
    step_id = "11_create_iso"
    if _skip(ctx, state, step_id, force):
        return

    out = Path(ctx.output_iso)
    if not ctx.dry_run:
        out.parent.mkdir(parents=True, exist_ok=True)

    # grub-mkrescue drives xorriso; options after "--" go to xorriso.
    run_cmd(
        ["grub-mkrescue", "-o", str(out), str(ctx.iso_dir), "--", "-volid", ISO_VOLUME_ID],
        dry_run=ctx.dry_run,
    )
    if not ctx.dry_run and not out.is_file():
        raise RuntimeError(f"ISO was not created: {out}")

    target_state(state, ctx.target)["iso"] = str(out)
    _done(ctx, state, step_id)


def step_12_checksum(*, ctx: BuildCtx, state: Dict[str, Any], force: bool) -> None:
    step_id = "12_checksum"
    if _skip(ctx, state, step_id, force):
        return

    out = Path(ctx.output_iso)
    sums = Path(f"{out}.sha256")
    if ctx.dry_run:
        logger.info("Would write %s", str(sums))
    else:
        digest = sha256_file(str(out))
        sums.write_text(f"{digest}  {out.name}\n", encoding="utf-8")
        target_state(state, ctx.target)["sha256"] = digest
        logger.info("SHA256 %s  %s", digest, out.name)

    _done(ctx, state, step_id)


def unbind_installer_root(ctx: BuildCtx) -> None:
    umount_chroot_binds(str(ctx.installer_root), dry_run=ctx.dry_run)


def step_13_cleanup(*, ctx: BuildCtx, state: Dict[str, Any], force: bool) -> None:
    step_id = "13_cleanup"
    if _skip(ctx, state, step_id, force):
        return

    unbind_installer_root(ctx)
    _remove_tree(ctx.work_dir, dry_run=ctx.dry_run)
    if ctx.cfg.prebuild_custom_kernel:
        _remove_tree(Path(ctx.cfg.prebuild_kernel_debs_dir), dry_run=ctx.dry_run)
    if ctx.cfg.prebuild_accel_libs:
        _remove_tree(Path(ctx.cfg.prebuild_accel_libs_install_dir), dry_run=ctx.dry_run)
        tar = Path(ctx.cfg.prebuild_accel_libs_tar)
        if tar.exists():
            run_optional(["rm", "-f", str(tar)], what=f"Removing {tar}", dry_run=ctx.dry_run)

    _done(ctx, state, step_id)


ALL_STEPS = [
    step_00_check_host,
    step_01_prepare_workdir,
    step_02_prebuild_kernel,
    step_03_prebuild_accel_libs,
    step_04_prebuild_drivers,
    step_05_prebuild_media_wasm,
    step_06_prebuild_imageharden,
    step_07_bootstrap_installer_root,
    step_08_stage_installer_files,
    step_09_configure_installer_root,
    step_10_stage_boot_files,
    step_11_create_iso,
    step_12_checksum,
    step_13_cleanup,
]
