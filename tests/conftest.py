"""
Pytest configuration and shared fixtures.

No test runs a real system tool: code paths that would execute one either
use dry_run=True or go through the fake_commands fixture.
"""

import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from hardened_installer.hardened_conf import HardenedConfig, parse_conf_text
from hardened_installer.lib import command


class FakeCommands:
    """Stand-in for subprocess.run that records argv and replays scripted output.

    Output is scripted per program; for `chroot <root> <prog> ...` the
    program run inside the chroot is the key.
    """

    def __init__(self) -> None:
        self.calls: List[List[str]] = []
        self.inputs: List[Optional[str]] = []
        self.envs: List[Optional[Dict[str, str]]] = []
        self.outputs: Dict[str, Tuple[int, str, str]] = {}

    def script(self, program: str, stdout: str = "", returncode: int = 0, stderr: str = "") -> None:
        self.outputs[program] = (returncode, stdout, stderr)

    @staticmethod
    def program(argv: List[str]) -> str:
        if argv[0] == "chroot" and len(argv) > 2:
            return argv[2]
        return argv[0]

    def programs(self) -> List[str]:
        return [self.program(a) for a in self.calls]

    def find(self, program: str) -> List[List[str]]:
        return [a for a in self.calls if self.program(a) == program]

    def __call__(self, argv, input=None, text=True, stdout=None, stderr=None, cwd=None, env=None):
        argv = list(argv)
        self.calls.append(argv)
        self.inputs.append(input)
        self.envs.append(env)
        rc, out, err = self.outputs.get(self.program(argv), (0, "", ""))
        return subprocess.CompletedProcess(argv, rc, out, err)


@pytest.fixture
def fake_commands(monkeypatch):
    """Replace subprocess.run as seen by lib.command."""
    fake = FakeCommands()
    monkeypatch.setattr(command.subprocess, "run", fake)
    return fake


@pytest.fixture
def make_config():
    """Build a HardenedConfig from conf-file text."""

    def _make(text: str = "") -> HardenedConfig:
        return HardenedConfig(raw=parse_conf_text(text, environ={}))

    return _make


@pytest.fixture
def config_file(tmp_path):
    """Write a hardened-os.conf under tmp_path with a throwaway target root."""

    def _write(extra: str = "") -> Path:
        target = tmp_path / "target"
        p = tmp_path / "hardened-os.conf"
        p.write_text(
            f"ROOT_MOUNTPOINT={target}\n"
            f"BUILD_WORK_DIR={tmp_path / 'work'}\n"
            f"ASSETS_DIR={tmp_path / 'assets'}\n"
            "OS_TIMEZONE=Europe/Berlin\n"
            f"{extra}",
            encoding="utf-8",
        )
        return p

    return _write
