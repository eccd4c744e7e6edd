from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from ..hardened_conf import HardenedConfig
from .command import run_cmd, run_optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LuksParams:
    cipher: str = "aes-xts-plain64"
    key_size: int = 512
    hash: str = "sha512"
    pbkdf: str = "argon2id"
    pbkdf_memory: int = 524288
    pbkdf_parallel: int = 4
    pbkdf_force_iterations: int = 4

    @classmethod
    def from_config(cls, cfg: HardenedConfig) -> "LuksParams":
        return cls(
            cipher=cfg.luks_cipher,
            key_size=cfg.luks_key_size,
            hash=cfg.luks_hash,
            pbkdf=cfg.luks_pbkdf,
            pbkdf_memory=cfg.luks_pbkdf_memory,
            pbkdf_parallel=cfg.luks_pbkdf_parallel,
            pbkdf_force_iterations=cfg.luks_pbkdf_force_iter,
        )

    def format_args(self) -> list[str]:
        args = [
            "--cipher",
            self.cipher,
            "--key-size",
            str(self.key_size),
            "--hash",
            self.hash,
            "--pbkdf",
            self.pbkdf,
            "--pbkdf-force-iterations",
            str(self.pbkdf_force_iterations),
        ]
        # Memory cost and parallelism only apply to the argon2 family.
        if self.pbkdf.startswith("argon2"):
            args += [
                "--pbkdf-memory",
                str(self.pbkdf_memory),
                "--pbkdf-parallel",
                str(self.pbkdf_parallel),
            ]
        return args


def _require_passphrase(passphrase: str) -> None:
    if not passphrase:
        raise ValueError("LUKS passphrase cannot be empty")


def mapper_path(mapper: str) -> str:
    return f"/dev/mapper/{mapper}"


def mapper_exists(mapper: str) -> bool:
    return Path(mapper_path(mapper)).exists()


def luks_format(part: str, passphrase: str, params: LuksParams, *, dry_run: bool = False) -> None:
    _require_passphrase(passphrase)
    logger.info("Formatting LUKS2 on %s (cipher=%s, pbkdf=%s)", part, params.cipher, params.pbkdf)
    run_cmd(
        [
            "cryptsetup",
            "luksFormat",
            "--type",
            "luks2",
            "--batch-mode",
            *params.format_args(),
            "--key-file",
            "-",
            part,
        ],
        input_text=passphrase,
        dry_run=dry_run,
    )


def luks_open(part: str, mapper: str, passphrase: str, *, dry_run: bool = False) -> str:
    _require_passphrase(passphrase)
    logger.info("Opening LUKS container %s as %s", part, mapper_path(mapper))
    run_cmd(
        ["cryptsetup", "open", "--type", "luks2", "--key-file", "-", part, mapper],
        input_text=passphrase,
        dry_run=dry_run,
    )
    return mapper_path(mapper)


def luks_close(mapper: str, *, dry_run: bool = False) -> bool:
    return run_optional(["cryptsetup", "close", mapper], what=f"Closing LUKS mapper {mapper}", dry_run=dry_run)
