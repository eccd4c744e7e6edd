"""Stand-alone pre-builds.

The ISO build runs these as part of its pipeline; this entry point runs one
of them on its own, on a build host or inside a target chroot:

    hardened-prebuild --config hardened-os.conf kernel --output-dir build/kernel-debs
    hardened-prebuild --config hardened-os.conf accel --prefix /opt/accel-libs
    hardened-prebuild --config hardened-os.conf drivers video
"""

from __future__ import annotations

import argparse
import logging
from typing import Optional

from .hardened_conf import HardenedConfig, load_hardened_config
from .lib.accel import build_accel_libs
from .lib.download import create_tarball
from .lib.drivers import BUNDLES, build_driver_bundle
from .lib.env import PATHS
from .lib.kernel import build_custom_kernel
from .logging_utils import configure_logging

logger = logging.getLogger(__name__)

DEFAULT_PREBUILD_LOG = "/var/log/hardened-prebuild.log"


def prebuild_kernel(cfg: HardenedConfig, args: argparse.Namespace) -> None:
    if args.profile == "hot":
        cflags, ldflags = cfg.cflags_hot, cfg.ldflags_hot
    else:
        cflags, ldflags = cfg.cflags_baseline, cfg.ldflags_baseline
    built = build_custom_kernel(
        cfg,
        args.output_dir or cfg.prebuild_kernel_debs_dir,
        cflags=cflags,
        ldflags=ldflags,
        install_deps=not args.no_deps,
        dry_run=args.dry_run,
    )
    logger.info("Kernel packages: %s", ", ".join(p.name for p in built) or "none")


def prebuild_accel(cfg: HardenedConfig, args: argparse.Namespace) -> None:
    prefix = args.prefix or cfg.accel_prefix
    names = build_accel_libs(cfg, prefix=prefix, install_deps=not args.no_deps, dry_run=args.dry_run)
    if args.tarball and names:
        create_tarball(prefix, args.tarball, dry_run=args.dry_run)
    logger.info("Accelerated libraries: %s", ", ".join(names) or "none")


def prebuild_drivers(cfg: HardenedConfig, args: argparse.Namespace) -> None:
    out = args.output_dir or PATHS.driver_dirs[args.kind]
    build_driver_bundle(args.kind, out, kernel_version=args.kernel_version, dry_run=args.dry_run)
    if args.tarball:
        create_tarball(out, args.tarball, dry_run=args.dry_run)


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="hardened-prebuild", description="Run one pre-build step")
    p.add_argument("--config", required=True, help="Path to hardened-os.conf")
    p.add_argument("--log", default=DEFAULT_PREBUILD_LOG)
    p.add_argument("--dry-run", action="store_true")
    p.add_argument("--no-deps", action="store_true", help="Do not apt-get install build dependencies")
    sub = p.add_subparsers(dest="command", required=True)

    k = sub.add_parser("kernel", help="Build custom kernel .deb packages")
    k.add_argument("--output-dir", default=None, help="Default: PREBUILD_KERNEL_DEBS_DIR")
    k.add_argument("--profile", choices=["baseline", "hot"], default="baseline", help="Compiler flag profile")
    k.set_defaults(func=prebuild_kernel)

    a = sub.add_parser("accel", help="Build the enabled accelerated libraries")
    a.add_argument("--prefix", default=None, help="Default: ACCEL_PREFIX")
    a.add_argument("--tarball", default=None, help="Also archive the prefix to this .tar.xz")
    a.set_defaults(func=prebuild_accel)

    d = sub.add_parser("drivers", help="Write a hardened driver configuration bundle")
    d.add_argument("kind", choices=sorted(BUNDLES))
    d.add_argument("--output-dir", default=None)
    d.add_argument("--kernel-version", default=None, help="Default: the running kernel")
    d.add_argument("--tarball", default=None, help="Also archive the bundle to this .tar.xz")
    d.set_defaults(func=prebuild_drivers)

    args = p.parse_args(argv)

    configure_logging(log_path=args.log)
    cfg = load_hardened_config(args.config)
    try:
        args.func(cfg, args)
    except Exception:
        logger.exception("Pre-build %s failed", args.command)
        raise
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
