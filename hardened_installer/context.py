from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

from .hardened_conf import HardenedConfig
from .lib.env import PATHS, Paths


@dataclass(frozen=True)
class InstallContext:
    """Inputs of one target installation run.

    The passphrase lives only here (never in the state file) and is excluded
    from repr so it cannot leak into logs or tracebacks.
    """

    cfg: HardenedConfig
    disk: str
    hostname: str
    passphrase: str = field(default="", repr=False)
    dry_run: bool = False
    # Root of the installer environment that pre-built artifacts are read from.
    source_root: str = "/"
    paths: Paths = PATHS

    @property
    def target_root(self) -> str:
        return self.cfg.root_mountpoint

    @property
    def esp_mountpoint(self) -> str:
        return self.cfg.esp_mountpoint

    @property
    def esp_in_target(self) -> str:
        """ESP mount point as seen from inside the target (/boot/efi)."""

        rel = os.path.relpath(self.esp_mountpoint, self.target_root)
        if rel.startswith(".."):
            raise RuntimeError(
                f"ESP_MOUNTPOINT {self.esp_mountpoint} is not below ROOT_MOUNTPOINT {self.target_root}"
            )
        return "/" + rel

    def source(self, path: str) -> str:
        return str(Path(self.source_root) / path.lstrip("/"))

    def target(self, path: str) -> str:
        return str(Path(self.target_root) / path.lstrip("/"))

    def state_config(self) -> Dict[str, Any]:
        """What of this context may be persisted (secrets masked)."""

        return {
            "config_path": self.cfg.path,
            "disk": self.disk,
            "hostname": self.hostname,
            "dry_run": self.dry_run,
            "values": self.cfg.redacted(),
        }


def mounts(state: Dict[str, Any]) -> Dict[str, Any]:
    return state.setdefault("execution", {}).setdefault("mounts", {})


def decisions(state: Dict[str, Any]) -> Dict[str, Any]:
    return state.setdefault("execution", {}).setdefault("decisions", {})


def require_mount(state: Dict[str, Any], key: str, step_hint: str) -> str:
    value = mounts(state).get(key)
    if not value:
        raise RuntimeError(f"execution.mounts.{key} missing; run {step_hint} first")
    return str(value)
