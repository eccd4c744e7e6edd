"""Builds of performance-tuned media, crypto and compression libraries.

Recipes come from manifests/accel_libs.yaml; which of them are built, and
from which source, is decided by hardened-os.conf (ACCEL_BUILD_<KEY>,
<KEY>_SOURCE_URL, <KEY>_SOURCE_SHA256SUM). Everything installs into a
single prefix so later libraries can find earlier ones via pkg-config.
A build for another machine stages the install under DESTDIR while rpath
and .pc files keep pointing at the prefix the libraries will live in.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..hardened_conf import HardenedConfig
from .command import run_cmd
from .download import archive_name, download, extract_tarball, is_git_url, verify_sha256
from .manifests import load_manifest, package_group
from .pkg import apt_clean, apt_install, apt_update

logger = logging.getLogger(__name__)

BUILD_SYSTEMS = ("autotools", "cmake", "make")
PROFILES = ("baseline", "hot")


@dataclass(frozen=True)
class AccelLibrary:
    key: str
    name: str
    build: str
    profile: str = "hot"
    configure: List[str] = field(default_factory=lambda: ["./configure"])
    cmake_args: List[str] = field(default_factory=list)
    make_args: List[str] = field(default_factory=list)
    source_subdir: str = ""

    @classmethod
    def from_manifest(cls, entry: Dict[str, Any]) -> "AccelLibrary":
        key = str(entry.get("key") or "").upper()
        if not key:
            raise ValueError(f"Library recipe without key: {entry}")
        build = str(entry.get("build") or "autotools")
        if build not in BUILD_SYSTEMS:
            raise ValueError(f"{key}: unknown build system {build!r}")
        profile = str(entry.get("profile") or "hot")
        if profile not in PROFILES:
            raise ValueError(f"{key}: unknown flags profile {profile!r}")
        return cls(
            key=key,
            name=str(entry.get("name") or key.lower()),
            build=build,
            profile=profile,
            configure=[str(a) for a in (entry.get("configure") or ["./configure"])],
            cmake_args=[str(a) for a in (entry.get("cmake_args") or [])],
            make_args=[str(a) for a in (entry.get("make_args") or [])],
            source_subdir=str(entry.get("source_subdir") or ""),
        )

    def flags(self, cfg: HardenedConfig) -> tuple[str, str]:
        if self.profile == "baseline":
            return cfg.cflags_baseline, cfg.ldflags_baseline
        return cfg.cflags_hot, cfg.ldflags_hot


def load_recipes() -> List[AccelLibrary]:
    entries = load_manifest("accel_libs").get("libraries") or []
    return [AccelLibrary.from_manifest(e) for e in entries]


def enabled_libraries(cfg: HardenedConfig, recipes: Optional[List[AccelLibrary]] = None) -> List[AccelLibrary]:
    out: List[AccelLibrary] = []
    for lib in recipes if recipes is not None else load_recipes():
        if not cfg.accel_build_enabled(lib.key):
            continue
        if not cfg.accel_source_url(lib.key):
            raise RuntimeError(f"ACCEL_BUILD_{lib.key}=1 but {lib.key}_SOURCE_URL is not set")
        out.append(lib)
    return out


def staged_prefix(prefix: str, destdir: str = "") -> str:
    if not destdir:
        return prefix
    return str(Path(destdir) / prefix.lstrip("/"))


def library_build_env(prefix: str, cflags: str, ldflags: str, destdir: str = "") -> Dict[str, str]:
    libdir = f"{prefix.rstrip('/')}/lib"
    staged_libdir = f"{staged_prefix(prefix, destdir).rstrip('/')}/lib"
    env = {
        "CFLAGS": cflags,
        "CXXFLAGS": cflags,
        "LDFLAGS": f"{ldflags} -L{staged_libdir} -Wl,-rpath={libdir}".strip(),
        "PKG_CONFIG_PATH": f"{staged_libdir}/pkgconfig",
    }
    if destdir:
        # cmake --install reads DESTDIR from the environment.
        env["DESTDIR"] = destdir
        env["PKG_CONFIG_SYSROOT_DIR"] = destdir
    return env


def _subst(args: List[str], cflags: str, ldflags: str) -> List[str]:
    return [a.replace("{cflags}", cflags).replace("{ldflags}", ldflags) for a in args]


def build_commands(
    lib: AccelLibrary, *, prefix: str, cflags: str, ldflags: str, jobs: int, destdir: str = ""
) -> List[List[str]]:
    """The configure, build and install argv lists for one library, in order."""

    staging = [f"DESTDIR={destdir}"] if destdir else []

    if lib.build == "autotools":
        return [
            [*_subst(lib.configure, cflags, ldflags), f"--prefix={prefix}"],
            ["make", f"-j{jobs}"],
            ["make", "install", *staging],
        ]
    if lib.build == "cmake":
        env = library_build_env(prefix, cflags, ldflags, destdir)
        return [
            [
                "cmake",
                "-S",
                lib.source_subdir or ".",
                "-B",
                "_build",
                f"-DCMAKE_INSTALL_PREFIX={prefix}",
                f"-DCMAKE_C_FLAGS={cflags}",
                f"-DCMAKE_CXX_FLAGS={cflags}",
                f"-DCMAKE_EXE_LINKER_FLAGS={env['LDFLAGS']}",
                f"-DCMAKE_SHARED_LINKER_FLAGS={env['LDFLAGS']}",
                *_subst(lib.cmake_args, cflags, ldflags),
            ],
            ["cmake", "--build", "_build", "-j", str(jobs)],
            ["cmake", "--install", "_build"],
        ]
    make_args = _subst(lib.make_args, cflags, ldflags)
    return [
        ["make", f"-j{jobs}", *make_args],
        ["make", "install", f"PREFIX={prefix}", *staging, *make_args],
    ]


def build_library(
    lib: AccelLibrary,
    cfg: HardenedConfig,
    *,
    prefix: str,
    work_dir: str,
    destdir: str = "",
    dry_run: bool = False,
) -> None:
    url = cfg.accel_source_url(lib.key)
    if not url:
        raise RuntimeError(f"{lib.key}_SOURCE_URL is not set")

    cflags, ldflags = lib.flags(cfg)
    logger.info("Building %s (%s profile)", lib.name, lib.profile)

    src = Path(work_dir) / lib.name
    if is_git_url(url):
        logger.warning("Checksum verification not possible for git source of %s", lib.name)
        download(url, str(src), dry_run=dry_run)
    else:
        archive = Path(work_dir) / archive_name(url)
        download(url, str(archive), dry_run=dry_run)
        verify_sha256(str(archive), cfg.accel_source_sha256(lib.key), what=lib.name, dry_run=dry_run)
        extract_tarball(str(archive), str(src), dry_run=dry_run)
        if not dry_run:
            archive.unlink()

    env = library_build_env(prefix, cflags, ldflags, destdir)
    jobs = os.cpu_count() or 1
    try:
        for argv in build_commands(lib, prefix=prefix, cflags=cflags, ldflags=ldflags, jobs=jobs, destdir=destdir):
            run_cmd(argv, cwd=str(src), env=env, dry_run=dry_run)
    finally:
        if not dry_run:
            shutil.rmtree(src, ignore_errors=True)
    logger.info("Installed %s into %s", lib.name, staged_prefix(prefix, destdir))


def build_accel_libs(
    cfg: HardenedConfig,
    *,
    prefix: str,
    destdir: str = "",
    install_deps: bool = True,
    dry_run: bool = False,
) -> List[str]:
    """Build every enabled library in manifest order; returns their names."""

    libs = enabled_libraries(cfg)
    if not libs:
        logger.info("No accelerated libraries enabled")
        return []

    if install_deps:
        apt_update(None, dry_run=dry_run)
        apt_install(None, package_group("accel_build"), dry_run=dry_run)
        apt_clean(None, dry_run=dry_run)

    logger.info("CFLAGS baseline=%r hot=%r", cfg.cflags_baseline, cfg.cflags_hot)
    if not dry_run:
        Path(staged_prefix(prefix, destdir)).mkdir(parents=True, exist_ok=True)

    work_dir = tempfile.mkdtemp(prefix="accel_build_") if not dry_run else "/tmp/accel_build"
    try:
        for lib in libs:
            build_library(lib, cfg, prefix=prefix, work_dir=work_dir, destdir=destdir, dry_run=dry_run)
    finally:
        if not dry_run:
            shutil.rmtree(work_dir, ignore_errors=True)
    return [lib.name for lib in libs]
