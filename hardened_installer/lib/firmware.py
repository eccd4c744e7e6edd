from __future__ import annotations

from pathlib import Path


def is_efi_boot(sysfs_root: str = "/") -> bool:
    """True when the running environment was booted through UEFI.

    Installation targets are always set up for EFI; this only tells whether
    the host can verify that (efivars are visible).
    """

    return (Path(sysfs_root) / "sys/firmware/efi").exists()
