from __future__ import annotations

import re
from pathlib import Path
from typing import Mapping, Optional

from .assets import write_file

_PLACEHOLDER_RE = re.compile(r"__[A-Z][A-Z0-9_]*__")


def templates_dir() -> Path:
    # hardened_installer/lib/templates.py -> hardened_installer/templates
    return Path(__file__).resolve().parents[1] / "templates"


def template_path(name: str) -> Path:
    p = templates_dir() / name
    if not p.is_file():
        raise FileNotFoundError(f"Template not found: {name}")
    return p


def render_text(text: str, values: Mapping[str, object], *, name: str = "<template>") -> str:
    for key, value in values.items():
        text = text.replace(f"__{key}__", str(value))
    leftover = sorted(set(_PLACEHOLDER_RE.findall(text)))
    if leftover:
        raise ValueError(f"Unreplaced placeholders in {name}: {', '.join(leftover)}")
    return text


def render_template(name: str, values: Optional[Mapping[str, object]] = None) -> str:
    text = template_path(name).read_text(encoding="utf-8")
    return render_text(text, values or {}, name=name)


def install_template(
    target_root: str,
    name: str,
    dest: str,
    values: Optional[Mapping[str, object]] = None,
    *,
    mode: Optional[int] = None,
    dry_run: bool = False,
) -> Path:
    return write_file(target_root, dest, render_template(name, values), mode=mode, dry_run=dry_run)
