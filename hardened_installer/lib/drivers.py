from __future__ import annotations

import logging
import platform
import re
import shutil
from pathlib import Path
from typing import Dict, List, Optional

from .assets import copy_if_exists
from .templates import templates_dir

logger = logging.getLogger(__name__)

MIN_KERNEL = (6, 17)

KBUILD_FLAGS = "hardened-kbuild-flags.mk"

# kind -> bundle subdirectory -> files from templates/drivers/<kind>
BUNDLES: Dict[str, Dict[str, List[str]]] = {
    "video": {
        "configs": ["v4l2-hardened.conf", "drm-hardened.conf", "kernel-hardened-media.config"],
        "patches": [
            "001-v4l2-ioctl-bounds-check.patch",
            "002-drm-memory-limit.patch",
            "003-v4l2-dma-validation.patch",
        ],
        "modprobe.d": ["hardened-media.conf"],
    },
    "audio": {
        "configs": ["alsa-hardened.conf", "sound-core-hardened.conf", "kernel-hardened-audio.config"],
        "patches": [
            "001-alsa-pcm-buffer-limit.patch",
            "002-alsa-dma-validation.patch",
            "003-hda-codec-bounds.patch",
        ],
        "modprobe.d": ["hardened-audio.conf"],
        "etc": ["asound.conf"],
    },
}


def parse_kernel_version(version: str) -> tuple[int, int]:
    m = re.match(r"^(\d+)\.(\d+)", version.strip())
    if not m:
        raise ValueError(f"Unrecognized kernel version: {version!r}")
    return int(m.group(1)), int(m.group(2))


def kernel_version_at_least(version: str, major: int, minor: int) -> bool:
    return parse_kernel_version(version) >= (major, minor)


def build_driver_bundle(
    kind: str,
    output_dir: str,
    *,
    kernel_version: Optional[str] = None,
    dry_run: bool = False,
) -> Path:
    """Write the hardened driver configuration bundle for kind into output_dir.

    Layout: hardened-kbuild-flags.mk, configs/ (Kconfig fragments),
    patches/, modprobe.d/ and, for audio, etc/asound.conf.
    """

    if kind not in BUNDLES:
        raise ValueError(f"Unknown driver bundle {kind!r} (expected one of {', '.join(BUNDLES)})")

    version = kernel_version or platform.release()
    try:
        if not kernel_version_at_least(version, *MIN_KERNEL):
            logger.warning(
                "Kernel %s is older than %d.%d; some hardening options will be ignored",
                version,
                *MIN_KERNEL,
            )
    except ValueError:
        logger.warning("Cannot parse kernel version %r; continuing", version)

    src = templates_dir() / "drivers"
    out = Path(output_dir)
    if dry_run:
        logger.info("Would write %s driver bundle to %s", kind, str(out))
        return out

    out.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(src / KBUILD_FLAGS, out / KBUILD_FLAGS)
    for sub, names in BUNDLES[kind].items():
        (out / sub).mkdir(parents=True, exist_ok=True)
        for name in names:
            shutil.copyfile(src / kind / name, out / sub / name)
    logger.info("Wrote %s driver bundle to %s", kind, str(out))
    return out


def install_driver_bundle(target_root: str, bundle_dir: str, *, dry_run: bool = False) -> bool:
    """Apply a bundle's runtime policy to an installed system.

    Kconfig fragments and patches stay in the bundle for kernel rebuilds;
    only modprobe policy and asound.conf take effect on the target.
    """

    b = Path(bundle_dir)
    if not b.is_dir():
        logger.info("Driver bundle not present: %s", bundle_dir)
        return False

    applied = copy_if_exists(
        str(b / "modprobe.d"), str(Path(target_root) / "etc/modprobe.d"), pattern="*.conf", dry_run=dry_run
    )
    if copy_if_exists(str(b / "etc/asound.conf"), str(Path(target_root) / "etc/asound.conf"), dry_run=dry_run):
        applied = True
    return applied
