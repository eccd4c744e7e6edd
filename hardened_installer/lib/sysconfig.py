from __future__ import annotations

from .assets import target_path, write_file
from .chroot import chroot_cmd


def render_hosts(hostname: str) -> str:
    return (
        "127.0.0.1\tlocalhost\n"
        f"127.0.1.1\t{hostname}\n"
        "\n"
        "::1\tlocalhost ip6-localhost ip6-loopback\n"
        "ff02::1\tip6-allnodes\n"
        "ff02::2\tip6-allrouters\n"
    )


def enable_locale(text: str, locale: str) -> str:
    """Enable locale in locale.gen content, uncommenting or appending its line."""

    charset = locale.split(".", 1)[1] if "." in locale else "UTF-8"
    wanted = f"{locale} {charset}"
    out = []
    found = False
    for line in text.splitlines():
        if line.lstrip("# ").strip() == wanted:
            if not found:
                out.append(wanted)
                found = True
            continue
        out.append(line)
    if not found:
        out.append(wanted)
    return "\n".join(out) + "\n"


def configure_locale(target_root: str, locale: str, *, dry_run: bool = False) -> None:
    """Generate locale inside target_root and make it the default LANG."""

    p = target_path(target_root, "/etc/locale.gen")
    current = p.read_text(encoding="utf-8") if p.exists() else ""
    write_file(target_root, "/etc/locale.gen", enable_locale(current, locale), dry_run=dry_run)
    chroot_cmd(target_root, ["locale-gen"], dry_run=dry_run)
    chroot_cmd(target_root, ["update-locale", f"LANG={locale}"], dry_run=dry_run)
