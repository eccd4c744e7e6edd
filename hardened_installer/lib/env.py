from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict


@dataclass(frozen=True)
class Paths:
    """Fixed locations shared by the ISO build and the target installer.

    Paths are absolute inside the installer environment (the live ISO root);
    the ISO build prefixes them with its installer_root, the target installer
    reads them from the running system.
    """

    state_default: str = "/var/lib/hardened-installer/state.json"
    log_default: str = "/var/log/hardened-installer.log"

    installer_dir: str = "/hardened-installer"

    prebuilt_accel_dir: str = "/opt/prebuilt-accel"
    accel_tarball_name: str = "prebuilt_accel_libs.tar.xz"
    prebuilt_drivers_dir: str = "/opt/prebuilt-drivers"
    driver_tarballs: Dict[str, str] = field(
        default_factory=lambda: {
            "video": "prebuilt_video_drivers.tar.xz",
            "audio": "prebuilt_audio_drivers.tar.xz",
        }
    )
    # Where bundles are unpacked on the installed system.
    driver_dirs: Dict[str, str] = field(
        default_factory=lambda: {
            "video": "/opt/hardened-drivers",
            "audio": "/opt/hardened-audio-drivers",
        }
    )

    media_wasm: str = "/opt/media-processor/wasm/ffmpeg.wasm"
    image_harden_cli: str = "/usr/local/bin/image_harden_cli"
    image_harden_wrapper: str = "/usr/local/bin/run_image_harden.sh"
    media_processor_unit: str = "/etc/systemd/system/hardened-media-processor.service"
    seccomp_profile: str = "/etc/seccomp/seccomp-profile.json"
    imageharden_profiles: str = "/opt/imageharden/profiles"
    local_debs: str = "/debs"
    desktop_files: str = "/usr/share/applications"

    @property
    def accel_tarball(self) -> str:
        return f"{self.prebuilt_accel_dir}/{self.accel_tarball_name}"

    def driver_tarball(self, kind: str) -> str:
        return f"{self.prebuilt_drivers_dir}/{self.driver_tarballs[kind]}"

    @property
    def installer_profiles(self) -> str:
        return f"{self.installer_dir}/profiles"

    @property
    def installer_desktop_files(self) -> str:
        return f"{self.installer_dir}/desktop"


PATHS = Paths()
