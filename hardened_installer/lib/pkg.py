from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Sequence

from .chroot import CHROOT_ENV, chroot_cmd
from .command import CmdResult, run_cmd

logger = logging.getLogger(__name__)

HOST_ROOT = "/"


def _apt_env_cmd(target_root: Optional[str], argv: Sequence[str], *, check: bool = True, dry_run: bool = False) -> CmdResult:
    # target_root None or "/" means the running (build) host.
    if target_root in (None, HOST_ROOT):
        return run_cmd(argv, env=CHROOT_ENV, check=check, dry_run=dry_run)
    return chroot_cmd(target_root, argv, check=check, dry_run=dry_run)


def debootstrap_rootfs(
    *,
    target_root: str,
    suite: str = "bookworm",
    mirror: str = "http://deb.debian.org/debian",
    arch: str = "amd64",
    dry_run: bool = False,
) -> None:
    if not dry_run:
        Path(target_root).mkdir(parents=True, exist_ok=True)
    run_cmd(["debootstrap", f"--arch={arch}", suite, target_root, mirror], dry_run=dry_run)


def apt_update(target_root: Optional[str], *, dry_run: bool = False) -> None:
    _apt_env_cmd(target_root, ["apt-get", "update"], dry_run=dry_run)


def apt_install(
    target_root: Optional[str],
    packages: Sequence[str],
    *,
    with_recommends: bool = False,
    dry_run: bool = False,
) -> None:
    if not packages:
        return
    argv = ["apt-get", "install", "-y"]
    if not with_recommends:
        argv.append("--no-install-recommends")
    _apt_env_cmd(target_root, [*argv, *packages], dry_run=dry_run)


def apt_purge(target_root: Optional[str], packages: Sequence[str], *, dry_run: bool = False) -> bool:
    """Purge packages; failure (e.g. package not installed) is only a warning."""

    if not packages:
        return True
    r = _apt_env_cmd(target_root, ["apt-get", "remove", "--purge", "-y", *packages], check=False, dry_run=dry_run)
    if not r.ok:
        logger.warning("Purging %s failed (exit %s); continuing", " ".join(packages), r.returncode)
    return r.ok


def apt_fix_broken(target_root: Optional[str], *, dry_run: bool = False) -> None:
    _apt_env_cmd(target_root, ["apt-get", "-f", "install", "-y"], dry_run=dry_run)


def apt_clean(target_root: Optional[str], *, dry_run: bool = False) -> None:
    _apt_env_cmd(target_root, ["apt-get", "clean"], check=False, dry_run=dry_run)


def apt_has_package(target_root: Optional[str], package: str, *, dry_run: bool = False) -> bool:
    if dry_run:
        return True
    return _apt_env_cmd(target_root, ["apt-cache", "show", package], check=False).ok


def dpkg_install(target_root: Optional[str], debs: Sequence[str], *, fix_broken: bool = False, dry_run: bool = False) -> None:
    """Install local .deb files (paths as seen from inside target_root).

    With fix_broken, a failed `dpkg -i` is followed by `apt-get -f install`
    to pull in missing dependencies; only that second call is fatal.
    """

    if not debs:
        return
    r = _apt_env_cmd(target_root, ["dpkg", "-i", *debs], check=not fix_broken, dry_run=dry_run)
    if fix_broken:
        if not r.ok:
            logger.warning("dpkg -i failed, attempting to fix dependencies")
        apt_fix_broken(target_root, dry_run=dry_run)
