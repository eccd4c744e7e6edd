from __future__ import annotations

import logging
import shutil
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Mapping, Sequence

from .command import CmdResult, run_cmd

logger = logging.getLogger(__name__)

# Mounted in this order, unmounted in reverse.
BIND_MOUNTS = ("dev", "dev/pts", "proc", "sys", "run")

CHROOT_ENV = {"DEBIAN_FRONTEND": "noninteractive", "LC_ALL": "C.UTF-8"}


def chroot_cmd(
    target_root: str,
    argv: Sequence[str],
    *,
    env: Mapping[str, str] | None = None,
    input_text: str | None = None,
    check: bool = True,
    dry_run: bool = False,
) -> CmdResult:
    """Run a command inside target root."""

    return run_cmd(
        ["chroot", target_root, *argv],
        env={**CHROOT_ENV, **(env or {})},
        input_text=input_text,
        check=check,
        dry_run=dry_run,
    )


def chroot_optional(target_root: str, argv: Sequence[str], *, what: str, dry_run: bool = False) -> bool:
    r = chroot_cmd(target_root, argv, check=False, dry_run=dry_run)
    if not r.ok:
        logger.warning("%s failed inside %s (exit %s); continuing", what, target_root, r.returncode)
    return r.ok


def mount_chroot_binds(target_root: str, *, dry_run: bool = False) -> None:
    for rel in BIND_MOUNTS:
        dst = Path(target_root) / rel
        if not dry_run:
            dst.mkdir(parents=True, exist_ok=True)
        run_cmd(["mount", "--bind", f"/{rel}", str(dst)], dry_run=dry_run)


def umount_chroot_binds(target_root: str, *, dry_run: bool = False) -> None:
    for rel in reversed(BIND_MOUNTS):
        run_cmd(["umount", "-lf", str(Path(target_root) / rel)], check=False, dry_run=dry_run)


@contextmanager
def chroot_binds(target_root: str, *, dry_run: bool = False) -> Iterator[str]:
    mount_chroot_binds(target_root, dry_run=dry_run)
    try:
        yield target_root
    finally:
        umount_chroot_binds(target_root, dry_run=dry_run)


def copy_resolv_conf(target_root: str, *, dry_run: bool = False) -> None:
    dst = Path(target_root) / "etc/resolv.conf"
    if dry_run:
        logger.info("Would copy /etc/resolv.conf -> %s", str(dst))
        return
    dst.parent.mkdir(parents=True, exist_ok=True)
    # resolv.conf in a debootstrapped root is often a dangling symlink.
    if dst.is_symlink():
        dst.unlink()
    shutil.copyfile("/etc/resolv.conf", dst)
