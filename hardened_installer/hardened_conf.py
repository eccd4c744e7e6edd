"""Reader for hardened-os.conf.

The file is a flat, shell-sourceable list of ``KEY=value`` assignments. It is
parsed here instead of being sourced, so the supported syntax is the subset
real configs use:

- blank lines, ``#`` comments (whole-line or after an unquoted value)
- an optional ``export`` prefix
- single quotes (literal), double quotes (expansion and ``\\`` escapes)
- ``$VAR``, ``${VAR}`` and ``${VAR:-default}`` expansion, resolved against
  keys defined earlier in the file and then the process environment
- backslash line continuation

Command substitution is rejected: a config file must not run programs.
"""

from __future__ import annotations

import logging
import os
import re
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

_ASSIGN_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)=(.*)$", re.DOTALL)
_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

_TRUE = {"1", "y", "yes", "true", "on"}
_FALSE = {"0", "n", "no", "false", "off", ""}

SECRET_KEYS = frozenset({"GRUB_PASSWORD_PLAINTEXT", "ROOT_PASSWORD"})


class ConfigError(ValueError):
    def __init__(self, message: str, *, source: str = "<string>", line: Optional[int] = None) -> None:
        self.message = message
        self.source = source
        self.line = line
        where = f"{source}:{line}" if line is not None else source
        super().__init__(f"{where}: {message}")


class _LineParser:
    def __init__(self, lookup: Callable[[str], str], source: str) -> None:
        self._lookup = lookup
        self._source = source
        self.lineno = 0

    def error(self, message: str) -> ConfigError:
        return ConfigError(message, source=self._source, line=self.lineno)

    def expand(self, raw: str, pos: int) -> Tuple[str, int]:
        """Expand the parameter reference starting at raw[pos] == '$'."""

        nxt = raw[pos + 1] if pos + 1 < len(raw) else ""
        if nxt == "(":
            raise self.error("command substitution is not supported")
        if nxt == "{":
            end = raw.find("}", pos + 2)
            if end == -1:
                raise self.error("unterminated ${...} expansion")
            inner = raw[pos + 2 : end]
            name, sep, default = inner.partition(":-")
            if not _NAME_RE.fullmatch(name):
                raise self.error(f"unsupported parameter expansion: ${{{inner}}}")
            value = self._lookup(name)
            if not value and sep:
                value = self.expand_all(default)
            return value, end + 1
        m = _NAME_RE.match(raw, pos + 1)
        if m:
            return self._lookup(m.group(0)), m.end()
        return "$", pos + 1

    def expand_all(self, text: str) -> str:
        out: List[str] = []
        pos = 0
        while pos < len(text):
            if text[pos] == "$":
                value, pos = self.expand(text, pos)
                out.append(value)
            else:
                out.append(text[pos])
                pos += 1
        return "".join(out)

    def value(self, raw: str, more: Iterator[str]) -> str:
        out: List[str] = []
        pos = 0
        while pos < len(raw):
            ch = raw[pos]
            if ch == "'":
                end = raw.find("'", pos + 1)
                while end == -1:
                    nxt = next(more, None)
                    if nxt is None:
                        raise self.error("unterminated single quote")
                    raw += "\n" + nxt
                    end = raw.find("'", pos + 1)
                out.append(raw[pos + 1 : end])
                pos = end + 1
            elif ch == '"':
                pos += 1
                while True:
                    if pos >= len(raw):
                        nxt = next(more, None)
                        if nxt is None:
                            raise self.error("unterminated double quote")
                        raw += "\n" + nxt
                        continue
                    c = raw[pos]
                    if c == '"':
                        pos += 1
                        break
                    if c == "\\":
                        if pos + 1 >= len(raw):
                            nxt = next(more, None)
                            if nxt is None:
                                raise self.error("unterminated double quote")
                            raw = raw[:pos] + nxt
                            continue
                        n = raw[pos + 1]
                        if n in '$`"\\':
                            out.append(n)
                            pos += 2
                        else:
                            out.append(c)
                            pos += 1
                        continue
                    if c == "$":
                        text, pos = self.expand(raw, pos)
                        out.append(text)
                        continue
                    if c == "`":
                        raise self.error("command substitution is not supported")
                    out.append(c)
                    pos += 1
            elif ch == "\\":
                if pos + 1 >= len(raw):
                    nxt = next(more, None)
                    if nxt is None:
                        break
                    raw = raw[:pos] + nxt
                    continue
                out.append(raw[pos + 1])
                pos += 2
            elif ch == "$":
                text, pos = self.expand(raw, pos)
                out.append(text)
            elif ch == "`":
                raise self.error("command substitution is not supported")
            elif ch.isspace():
                remainder = raw[pos:].strip()
                if remainder and not remainder.startswith("#"):
                    raise self.error(f"unexpected text after value: {remainder!r}")
                break
            else:
                out.append(ch)
                pos += 1
        return "".join(out)


def parse_conf_text(
    text: str,
    *,
    environ: Optional[Mapping[str, str]] = None,
    source: str = "<string>",
) -> Dict[str, str]:
    """Parse shell-style KEY=value text into an ordered dict of strings."""

    env = os.environ if environ is None else environ
    values: Dict[str, str] = {}

    def lookup(name: str) -> str:
        if name in values:
            return values[name]
        return env.get(name, "")

    parser = _LineParser(lookup, source)
    lines = text.splitlines()
    numbered = iter(enumerate(lines, start=1))

    def more() -> Iterator[str]:
        for lineno, line in numbered:
            parser.lineno = lineno
            yield line

    continuation = more()
    for lineno, line in numbered:
        parser.lineno = lineno
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if stripped.startswith("export "):
            stripped = stripped[len("export ") :].lstrip()
        m = _ASSIGN_RE.match(stripped)
        if not m:
            raise ConfigError(f"expected KEY=value, got {stripped!r}", source=source, line=lineno)
        key, raw = m.groups()
        values[key] = parser.value(raw, continuation)

    return values


def _flag(value: Any, key: str) -> bool:
    v = str(value).strip().lower()
    if v in _TRUE:
        return True
    if v in _FALSE:
        return False
    raise ConfigError(f"{key} must be a boolean flag (1/0, yes/no), got {value!r}")


@dataclass(frozen=True)
class HardenedConfig:
    raw: Dict[str, str]
    path: Optional[str] = field(default=None, compare=False)

    def get(self, key: str, default: str = "") -> str:
        value = self.raw.get(key)
        if value is None or value == "":
            return default
        return value

    def flag(self, key: str, default: bool = False) -> bool:
        value = self.raw.get(key)
        if value is None or value.strip() == "":
            return default
        return _flag(value, key)

    def integer(self, key: str, default: int) -> int:
        value = self.raw.get(key)
        if value is None or value.strip() == "":
            return default
        try:
            return int(value.strip())
        except ValueError as e:
            raise ConfigError(f"{key} must be an integer, got {value!r}") from e

    def redacted(self) -> Dict[str, str]:
        return {k: ("***" if k in SECRET_KEYS and v else v) for k, v in self.raw.items()}

    # Storage

    @property
    def root_mountpoint(self) -> str:
        return self.get("ROOT_MOUNTPOINT", "/mnt/target")

    @property
    def esp_mountpoint(self) -> str:
        return self.get("ESP_MOUNTPOINT", f"{self.root_mountpoint.rstrip('/')}/boot/efi")

    @property
    def esp_size_mib(self) -> int:
        return self.integer("ESP_SIZE_MIB", 512)

    @property
    def esp_label(self) -> str:
        return self.get("ESP_LABEL", "EFI")

    @property
    def esp_fs_type(self) -> str:
        return self.get("ESP_FS_TYPE", "vfat")

    @property
    def root_fs_type(self) -> str:
        return self.get("ROOT_FS_TYPE", "ext4")

    @property
    def root_fs_label(self) -> str:
        return self.get("ROOT_FS_LABEL", "rootfs")

    @property
    def swapfile_path(self) -> str:
        return self.get("SWAPFILE_PATH", "/swapfile")

    @property
    def swapfile_size_gb(self) -> int:
        return self.integer("SWAPFILE_SIZE_GB", 8)

    # LUKS

    @property
    def luks_enable(self) -> bool:
        return self.flag("LUKS_ENABLE", True)

    @property
    def luks_part_label(self) -> str:
        return self.get("LUKS_PART_LABEL", "cryptroot")

    @property
    def luks_mapper_name(self) -> str:
        return self.get("LUKS_MAPPER_NAME", "cryptroot")

    @property
    def luks_cipher(self) -> str:
        return self.get("LUKS_CIPHER", "aes-xts-plain64")

    @property
    def luks_key_size(self) -> int:
        return self.integer("LUKS_KEY_SIZE", 512)

    @property
    def luks_hash(self) -> str:
        return self.get("LUKS_HASH", "sha512")

    @property
    def luks_pbkdf(self) -> str:
        return self.get("LUKS_PBKDF", "argon2id")

    @property
    def luks_pbkdf_memory(self) -> int:
        return self.integer("LUKS_PBKDF_MEMORY", 524288)

    @property
    def luks_pbkdf_parallel(self) -> int:
        return self.integer("LUKS_PBKDF_PARALLEL", 4)

    @property
    def luks_pbkdf_force_iter(self) -> int:
        return self.integer("LUKS_PBKDF_FORCE_ITER", 4)

    # OS

    @property
    def os_hostname(self) -> str:
        return self.get("OS_HOSTNAME", "hardened")

    @property
    def os_timezone(self) -> str:
        return self.get("OS_TIMEZONE", "UTC")

    @property
    def os_locale(self) -> str:
        return self.get("OS_LOCALE", "en_US.UTF-8")

    @property
    def debian_release(self) -> str:
        return self.get("DEBIAN_RELEASE", self.get("DEBIAN_SUITE", "bookworm"))

    @property
    def debian_mirror(self) -> str:
        return self.get("DEBIAN_MIRROR", self.get("MIRROR_URL", "http://deb.debian.org/debian"))

    @property
    def root_password(self) -> str:
        return self.get("ROOT_PASSWORD")

    # Kernel / GRUB

    @property
    def kernel_package_name(self) -> str:
        return self.get("KERNEL_PACKAGE_NAME", "linux-image-amd64")

    @property
    def kernel_cmdline_default(self) -> str:
        return self.get("KERNEL_CMDLINE_DEFAULT", "quiet mitigations=auto pti=on")

    @property
    def grub_superuser(self) -> str:
        return self.get("GRUB_SUPERUSER", "root")

    @property
    def grub_password(self) -> str:
        return self.get("GRUB_PASSWORD_PLAINTEXT")

    @property
    def grub_enable_cryptodisk(self) -> str:
        return "y" if self.flag("GRUB_ENABLE_CRYPTODISK", True) else "n"

    @property
    def grub_bootloader_id(self) -> str:
        return self.get("GRUB_BOOTLOADER_ID", "debian_hardened")

    @property
    def prebuild_custom_kernel(self) -> bool:
        return self.flag("PREBUILD_CUSTOM_KERNEL")

    @property
    def build_custom_kernel(self) -> bool:
        return self.flag("BUILD_CUSTOM_KERNEL")

    @property
    def kernel_source_url(self) -> str:
        return self.get("KERNEL_SOURCE_URL")

    @property
    def kernel_source_sha256(self) -> str:
        return self.get("KERNEL_SOURCE_SHA256SUM")

    @property
    def kernel_config_template(self) -> str:
        return self.get("KERNEL_CONFIG_TEMPLATE")

    @property
    def kernel_deb_dir_custom(self) -> str:
        return self.get("KERNEL_DEB_DIR_CUSTOM", "/opt/custom-kernel-debs")

    @property
    def prebuild_kernel_debs_dir(self) -> str:
        return self.get("PREBUILD_KERNEL_DEBS_DIR", "build/kernel-debs")

    # Accelerated libraries

    @property
    def prebuild_accel_libs(self) -> bool:
        return self.flag("PREBUILD_ACCEL_LIBS")

    @property
    def accel_libs_enable(self) -> bool:
        return self.flag("ACCEL_LIBS_ENABLE")

    @property
    def accel_prefix(self) -> str:
        return self.get("ACCEL_PREFIX", "/opt/accel-libs")

    @property
    def prebuild_accel_libs_install_dir(self) -> str:
        return self.get("PREBUILD_ACCEL_LIBS_INSTALL_DIR", "build/accel-libs")

    @property
    def prebuild_accel_libs_tar(self) -> str:
        return self.get("PREBUILD_ACCEL_LIBS_TAR", "build/prebuilt_accel_libs.tar.xz")

    @property
    def cflags_baseline(self) -> str:
        return self.get("CFLAGS_BASELINE", "-O2 -pipe -fstack-protector-strong -D_FORTIFY_SOURCE=2")

    @property
    def ldflags_baseline(self) -> str:
        return self.get("LDFLAGS_BASELINE", "-Wl,-z,relro,-z,now")

    @property
    def cflags_hot(self) -> str:
        return self.get("CFLAGS_HOT", "-O3 -pipe -march=x86-64-v3 -fstack-protector-strong")

    @property
    def ldflags_hot(self) -> str:
        return self.get("LDFLAGS_HOT", "-Wl,-z,relro,-z,now")

    def accel_build_enabled(self, key: str) -> bool:
        return self.flag(f"ACCEL_BUILD_{key}")

    def accel_source_url(self, key: str) -> str:
        return self.get(f"{key}_SOURCE_URL")

    def accel_source_sha256(self, key: str) -> str:
        return self.get(f"{key}_SOURCE_SHA256SUM")

    # Features

    @property
    def desktop_environment(self) -> str:
        return self.get("DESKTOP_ENVIRONMENT", "none").strip().lower()

    @property
    def kde_default_theme(self) -> str:
        return self.get("KDE_DEFAULT_THEME", "BreezeDark")

    @property
    def enable_mac_randomization(self) -> bool:
        return self.flag("ENABLE_MAC_RANDOMIZATION")

    @property
    def enable_tor_i2p_stack(self) -> bool:
        return self.flag("ENABLE_TOR_I2P_STACK")

    @property
    def enable_firewall(self) -> bool:
        return self.flag("ENABLE_FIREWALL", True)

    @property
    def i2p_port(self) -> int:
        return self.integer("I2P_PORT", 7070)

    @property
    def enable_ping_target(self) -> bool:
        return self.flag("ENABLE_PING_TARGET")

    @property
    def ping_target_ip(self) -> str:
        return self.get("PING_TARGET_IP")

    @property
    def ping_count(self) -> int:
        return self.integer("PING_COUNT", 6)

    @property
    def enable_media_processor(self) -> bool:
        return self.flag("ENABLE_MEDIA_PROCESSOR", True)

    # ISO build

    @property
    def prebuild_hardened_drivers(self) -> bool:
        return self.flag("PREBUILD_HARDENED_DRIVERS", True)

    @property
    def build_ffmpeg_wasm(self) -> bool:
        return self.flag("BUILD_FFMPEG_WASM")

    @property
    def build_imageharden(self) -> bool:
        return self.flag("BUILD_IMAGEHARDEN")

    @property
    def build_work_dir(self) -> str:
        return self.get("BUILD_WORK_DIR", "build/work")

    @property
    def assets_dir(self) -> str:
        return self.get("ASSETS_DIR", "assets")


def load_hardened_config(path: str, *, environ: Optional[Mapping[str, str]] = None) -> HardenedConfig:
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(path)

    raw = parse_conf_text(p.read_text(encoding="utf-8"), environ=environ, source=str(p))
    logger.info("Loaded %d config keys from %s", len(raw), str(p))
    return HardenedConfig(raw=raw, path=str(p))


def render_conf_text(values: Mapping[str, str], *, skip_secrets: bool = True) -> str:
    """Serialize a mapping back to hardened-os.conf syntax.

    Values are single-quoted so the output parses to the same mapping.
    Secret keys are left out unless skip_secrets is False.
    """

    lines = []
    for key, value in values.items():
        if skip_secrets and key in SECRET_KEYS:
            continue
        lines.append(f"{key}={shlex.quote(str(value))}")
    return "\n".join(lines) + "\n"
