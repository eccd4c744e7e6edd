from __future__ import annotations

import logging
from typing import Any, Dict

from ..context import decisions
from ..lib.bootloader import (
    grub_password_hash,
    install_grub_efi,
    update_initramfs,
    write_grub_custom,
    write_grub_defaults,
)
from ..lib.chroot import chroot_binds
from ._base import InstallStep

logger = logging.getLogger(__name__)


class BootloaderStep(InstallStep):
    step_id = "80_bootloader"

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        target_root = self.attach_target(state)
        cfg = self.cfg
        d = decisions(state)

        defaults = {"GRUB_CMDLINE_LINUX_DEFAULT": cfg.kernel_cmdline_default}
        if cfg.luks_enable:
            defaults["GRUB_ENABLE_CRYPTODISK"] = cfg.grub_enable_cryptodisk

        with chroot_binds(target_root, dry_run=self.dry_run):
            update_initramfs(target_root, dry_run=self.dry_run)

            if cfg.grub_password:
                password_hash = grub_password_hash(target_root, cfg.grub_password, dry_run=self.dry_run)
                write_grub_custom(
                    target_root,
                    superuser=cfg.grub_superuser,
                    password_hash=password_hash,
                    dry_run=self.dry_run,
                )
                d["grub_password"] = True
            else:
                logger.warning("GRUB_PASSWORD_PLAINTEXT is not set; the boot menu is not password protected")
                d["grub_password"] = False

            write_grub_defaults(target_root, defaults, dry_run=self.dry_run)
            install_grub_efi(
                target_root=target_root,
                efi_directory=self.ctx.esp_in_target,
                bootloader_id=cfg.grub_bootloader_id,
                dry_run=self.dry_run,
            )

        d["bootloader_id"] = cfg.grub_bootloader_id
        return state
