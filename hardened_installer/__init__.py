"""Hardened Debian installer and ISO builder.

Two entry points share one library of tool wrappers:
- hardened-installer: wipes a disk, sets up LUKS2 and debootstraps a
  hardened Debian target (resumable, state-file driven)
- hardened-build: pre-builds optional components and packages the
  installer environment into a bootable EFI ISO
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
