from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from .chroot import chroot_optional
from .manifests import package_group
from .pkg import apt_clean, apt_install, apt_update
from .templates import install_template

logger = logging.getLogger(__name__)

MIMEAPPS_PATH = "/etc/xdg/mimeapps.list"
DEFAULT_APPS_SECTION = "[Default Applications]"

_IMAGE = "imageharden-image.desktop"
_AUDIO = "imageharden-audio.desktop"
_VIDEO = "imageharden-video.desktop"

MEDIA_MIME_DEFAULTS: Dict[str, str] = {
    "image/png": _IMAGE,
    "image/jpeg": _IMAGE,
    "image/gif": _IMAGE,
    "image/bmp": _IMAGE,
    "image/svg+xml": _IMAGE,
    "audio/mpeg": _AUDIO,
    "audio/ogg": _AUDIO,
    "audio/vorbis": _AUDIO,
    "audio/x-flac": _AUDIO,
    "audio/opus": _AUDIO,
    "video/mp4": _VIDEO,
    "video/webm": _VIDEO,
    "video/x-matroska": _VIDEO,
    "video/x-msvideo": _VIDEO,
}


def setup_mac_randomization(target_root: str, *, dry_run: bool = False) -> None:
    apt_update(target_root, dry_run=dry_run)
    apt_install(target_root, package_group("mac_randomization"), dry_run=dry_run)
    apt_clean(target_root, dry_run=dry_run)

    install_template(
        target_root,
        "00-mac-randomization.conf",
        "/etc/NetworkManager/conf.d/00-mac-randomization.conf",
        dry_run=dry_run,
    )
    install_template(target_root, "macrotate.sh", "/usr/local/sbin/macrotate.sh", mode=0o755, dry_run=dry_run)
    install_template(
        target_root,
        "macchanger-randomize.service",
        "/etc/systemd/system/macchanger-randomize.service",
        dry_run=dry_run,
    )
    chroot_optional(
        target_root,
        ["systemctl", "enable", "macchanger-randomize.service"],
        what="Enabling macchanger-randomize.service",
        dry_run=dry_run,
    )
    logger.info("MAC randomization configured")


def install_privacy_tools(target_root: str, *, i2p_port: int = 7070, dry_run: bool = False) -> None:
    """Tor + I2P, with networking off at boot until a launcher turns it on."""

    apt_update(target_root, dry_run=dry_run)
    apt_install(target_root, package_group("privacy_stack"), dry_run=dry_run)
    apt_clean(target_root, dry_run=dry_run)

    install_template(
        target_root,
        "offline-by-default.service",
        "/etc/systemd/system/offline-by-default.service",
        dry_run=dry_run,
    )
    chroot_optional(
        target_root,
        ["systemctl", "enable", "offline-by-default.service"],
        what="Enabling offline-by-default.service",
        dry_run=dry_run,
    )

    for launcher in ("start-tor-locked.sh", "start-i2p-locked.sh"):
        install_template(
            target_root,
            launcher,
            f"/usr/local/bin/{launcher}",
            {"I2P_PORT": i2p_port},
            mode=0o755,
            dry_run=dry_run,
        )
    for desktop in ("tor-locked.desktop", "i2p-locked.desktop"):
        install_template(target_root, desktop, f"/usr/share/applications/{desktop}", dry_run=dry_run)
    logger.info("Tor/I2P stack configured (offline by default)")


def update_mimeapps(text: str, associations: Mapping[str, str]) -> str:
    """Set mime=handler pairs in the [Default Applications] section.

    Existing entries for the same MIME type are replaced (duplicates
    dropped), missing ones are appended to the section, and the section is
    created when absent. Other sections are left untouched.
    """

    lines = text.splitlines()
    try:
        start = next(i for i, line in enumerate(lines) if line.strip() == DEFAULT_APPS_SECTION)
    except StopIteration:
        if lines and lines[-1].strip():
            lines.append("")
        lines.append(DEFAULT_APPS_SECTION)
        start = len(lines) - 1

    end = next(
        (i for i in range(start + 1, len(lines)) if lines[i].strip().startswith("[")),
        len(lines),
    )

    body: List[str] = []
    seen = set()
    for line in lines[start + 1 : end]:
        key = line.split("=", 1)[0].strip() if "=" in line else None
        if key in associations:
            if key not in seen:
                body.append(f"{key}={associations[key]}")
                seen.add(key)
            continue
        body.append(line)

    trailing: List[str] = []
    while body and not body[-1].strip():
        trailing.insert(0, body.pop())
    body.extend(f"{mime}={handler}" for mime, handler in associations.items() if mime not in seen)

    out = lines[: start + 1] + body + trailing + lines[end:]
    return "\n".join(out) + "\n"


def apply_media_mime_defaults(target_root: str, *, dry_run: bool = False) -> Path:
    p = Path(target_root) / MIMEAPPS_PATH.lstrip("/")
    if dry_run:
        logger.info("Would update %s (%d associations)", str(p), len(MEDIA_MIME_DEFAULTS))
    else:
        current = p.read_text(encoding="utf-8") if p.exists() else ""
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(update_mimeapps(current, MEDIA_MIME_DEFAULTS), encoding="utf-8")
        logger.info("Updated %s", str(p))

    if (Path(target_root) / "usr/bin/update-mime-database").exists():
        chroot_optional(
            target_root,
            ["update-mime-database", "/usr/share/mime"],
            what="update-mime-database",
            dry_run=dry_run,
        )
    return p


def firewall_rules(*, i2p_port: Optional[int] = None, ping_target: Optional[str] = None) -> List[List[str]]:
    rules = [
        ["ufw", "default", "deny", "incoming"],
        ["ufw", "default", "allow", "outgoing"],
    ]
    if i2p_port:
        rules.append(["ufw", "allow", f"{i2p_port}/tcp"])
        rules.append(["ufw", "allow", f"{i2p_port}/udp"])
    if ping_target:
        # ufw has no icmp proto, so this opens every protocol to ping_target.
        rules.append(["ufw", "allow", "out", "to", ping_target])
    return rules


def configure_firewall(
    target_root: str,
    *,
    i2p_port: Optional[int] = None,
    ping_target: Optional[str] = None,
    dry_run: bool = False,
) -> None:
    for rule in firewall_rules(i2p_port=i2p_port, ping_target=ping_target):
        chroot_optional(target_root, rule, what=" ".join(rule), dry_run=dry_run)
    chroot_optional(target_root, ["ufw", "--force", "enable"], what="Enabling ufw", dry_run=dry_run)


def write_ping_target_units(target_root: str, *, ip: str, count: int = 6, dry_run: bool = False) -> None:
    if not ip:
        raise ValueError("PING_TARGET_IP must be set when ENABLE_PING_TARGET=1")
    install_template(
        target_root,
        "ping_target.sh",
        "/usr/local/bin/ping_target.sh",
        {"PING_TARGET_IP": ip, "PING_COUNT": count},
        mode=0o755,
        dry_run=dry_run,
    )
    install_template(target_root, "ping_target.service", "/etc/systemd/system/ping_target.service", dry_run=dry_run)
    install_template(target_root, "ping_target.timer", "/etc/systemd/system/ping_target.timer", dry_run=dry_run)
    chroot_optional(
        target_root,
        ["systemctl", "enable", "ping_target.timer"],
        what="Enabling ping_target.timer",
        dry_run=dry_run,
    )
