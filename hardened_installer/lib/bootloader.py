from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Mapping

from .chroot import chroot_cmd
from .templates import install_template

logger = logging.getLogger(__name__)

_PBKDF2_RE = re.compile(r"(grub\.pbkdf2\.sha512\.\S+)")


def parse_grub_pbkdf2_output(output: str) -> str:
    m = _PBKDF2_RE.search(output)
    if not m:
        raise RuntimeError("grub-mkpasswd-pbkdf2 produced no grub.pbkdf2.sha512 hash")
    return m.group(1)


def grub_password_hash(target_root: str, password: str, *, dry_run: bool = False) -> str:
    """Hash a GRUB password with the target's grub-mkpasswd-pbkdf2.

    The password is written twice to stdin (entry + confirmation) and never
    appears in argv or the log.
    """

    if not password:
        raise ValueError("GRUB password must not be empty")
    r = chroot_cmd(
        target_root,
        ["grub-mkpasswd-pbkdf2"],
        input_text=f"{password}\n{password}\n",
        dry_run=dry_run,
    )
    if dry_run:
        return "grub.pbkdf2.sha512.10000.DRYRUN"
    return parse_grub_pbkdf2_output(r.stdout)


def write_grub_custom(target_root: str, *, superuser: str, password_hash: str, dry_run: bool = False) -> Path:
    p = install_template(
        target_root,
        "grub-40_custom.stub",
        "/etc/grub.d/40_custom",
        {"GRUB_SUPERUSER": superuser, "GRUB_PASSWORD_HASH": password_hash},
        mode=0o755,
        dry_run=dry_run,
    )
    logger.info("GRUB superuser %s configured", superuser)
    return p


def set_grub_defaults(text: str, values: Mapping[str, str]) -> str:
    """Set KEY=value lines in /etc/default/grub content.

    An existing assignment (or a commented-out one) is replaced in place;
    keys not present are appended. Values containing spaces are quoted.
    """

    lines = text.splitlines()
    for key, value in values.items():
        rendered = f'{key}="{value}"' if (" " in value or value == "") else f"{key}={value}"
        pattern = re.compile(rf"^\s*#?\s*{re.escape(key)}=")
        replaced = False
        out = []
        for line in lines:
            if pattern.match(line):
                if not replaced:
                    out.append(rendered)
                    replaced = True
                continue
            out.append(line)
        if not replaced:
            out.append(rendered)
        lines = out
    return "\n".join(lines) + "\n"


def write_grub_defaults(target_root: str, values: Mapping[str, str], *, dry_run: bool = False) -> Path:
    p = Path(target_root) / "etc/default/grub"
    if dry_run:
        logger.info("Would update %s: %s", str(p), ", ".join(values))
        return p
    current = p.read_text(encoding="utf-8") if p.exists() else ""
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(set_grub_defaults(current, values), encoding="utf-8")
    logger.info("Updated %s", str(p))
    return p


def install_grub_efi(
    *,
    target_root: str,
    efi_directory: str = "/boot/efi",
    bootloader_id: str = "debian_hardened",
    dry_run: bool = False,
) -> None:
    """Install GRUB for x86_64 EFI targets."""

    # Assumes the ESP is mounted at efi_directory inside the target.
    chroot_cmd(
        target_root,
        [
            "grub-install",
            "--target=x86_64-efi",
            f"--efi-directory={efi_directory}",
            f"--bootloader-id={bootloader_id}",
            "--recheck",
        ],
        dry_run=dry_run,
    )
    chroot_cmd(target_root, ["update-grub"], dry_run=dry_run)
    logger.info("GRUB EFI installed (bootloader-id=%s)", bootloader_id)


def update_initramfs(target_root: str, *, dry_run: bool = False) -> None:
    chroot_cmd(target_root, ["update-initramfs", "-u", "-k", "all"], dry_run=dry_run)
