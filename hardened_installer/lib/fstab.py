from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Sequence


@dataclass(frozen=True)
class FstabEntry:
    spec: str
    mountpoint: str
    fstype: str
    options: str = "defaults"
    dump: int = 0
    passno: int = 0

    def fields(self) -> List[str]:
        return [self.spec, self.mountpoint, self.fstype, self.options, str(self.dump), str(self.passno)]


@dataclass(frozen=True)
class CrypttabEntry:
    name: str
    device: str
    keyfile: str = "none"
    options: str = "luks,discard"

    def fields(self) -> List[str]:
        return [self.name, self.device, self.keyfile, self.options]


def _render_table(header: str, rows: Sequence[List[str]]) -> str:
    lines = [header]
    if rows:
        widths = [max(len(r[i]) for r in rows) for i in range(len(rows[0]))]
        for r in rows:
            cells = [c.ljust(w) for c, w in zip(r[:-1], widths[:-1])] + [r[-1]]
            lines.append("  ".join(cells).rstrip())
    return "\n".join(lines) + "\n"


def render_fstab(entries: Iterable[FstabEntry]) -> str:
    return _render_table(
        "# <file system>  <mount point>  <type>  <options>  <dump>  <pass>",
        [e.fields() for e in entries],
    )


def render_crypttab(entries: Iterable[CrypttabEntry]) -> str:
    return _render_table(
        "# <target name>  <source device>  <key file>  <options>",
        [e.fields() for e in entries],
    )
