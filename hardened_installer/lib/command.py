from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from typing import Iterable, List, Mapping, Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CmdResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def fmt_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


def run_cmd(
    argv: Sequence[str],
    *,
    check: bool = True,
    env: Mapping[str, str] | None = None,
    cwd: str | None = None,
    input_text: str | None = None,
    dry_run: bool = False,
) -> CmdResult:
    """Run an external program with consistent logging.

    - The argv is always logged; input_text never is (it carries passphrases).
    - check=True raises RuntimeError on a non-zero exit or a missing program.
    - dry_run logs and returns an empty successful result.
    """

    argv_list = [str(a) for a in argv]
    logger.info("CMD %s%s", fmt_argv(argv_list), " (stdin supplied)" if input_text is not None else "")

    if dry_run:
        return CmdResult(argv=argv_list, returncode=0, stdout="", stderr="")

    try:
        p = subprocess.run(
            argv_list,
            input=input_text,
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=cwd,
            env=dict(os.environ, **(env or {})),
        )
    except FileNotFoundError as e:
        if check:
            raise RuntimeError(f"Command not found: {argv_list[0]}") from e
        logger.warning("Command not found: %s", argv_list[0])
        return CmdResult(argv=argv_list, returncode=127, stdout="", stderr=str(e))

    if p.stdout:
        logger.debug("STDOUT %s", p.stdout.strip())
    if p.stderr:
        logger.debug("STDERR %s", p.stderr.strip())

    if check and p.returncode != 0:
        raise RuntimeError(f"Command failed ({p.returncode}): {fmt_argv(argv_list)}\n{p.stderr}")

    return CmdResult(argv=argv_list, returncode=p.returncode, stdout=p.stdout or "", stderr=p.stderr or "")


def run_optional(argv: Sequence[str], *, what: str, **kwargs) -> bool:
    """Run a command whose failure is logged as a warning and otherwise ignored."""

    r = run_cmd(argv, check=False, **kwargs)
    if not r.ok:
        logger.warning("%s failed (exit %s); continuing", what, r.returncode)
    return r.ok


def which_missing(names: Iterable[str]) -> List[str]:
    return [n for n in names if shutil.which(n) is None]
