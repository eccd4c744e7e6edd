from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def target_path(target_root: str, rel: str) -> Path:
    return Path(target_root) / rel.lstrip("/")


def write_file(
    target_root: str,
    rel: str,
    contents: str,
    *,
    mode: Optional[int] = None,
    dry_run: bool = False,
) -> Path:
    p = target_path(target_root, rel)
    if dry_run:
        logger.info("Would write %s", str(p))
        return p
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(contents, encoding="utf-8")
    if mode is not None:
        os.chmod(p, mode)
    logger.info("Wrote %s", str(p))
    return p


def copy_tree(src: str, dst: str, *, dry_run: bool = False) -> None:
    s = Path(src)
    d = Path(dst)
    if not s.exists():
        raise FileNotFoundError(src)

    if dry_run:
        logger.info("Would copy tree %s -> %s", str(s), str(d))
        return

    d.mkdir(parents=True, exist_ok=True)
    for item in s.rglob("*"):
        if "__pycache__" in item.parts:
            continue
        out = d / item.relative_to(s)
        if item.is_dir():
            out.mkdir(parents=True, exist_ok=True)
        else:
            out.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(item, out)


def copy_if_exists(src: str, dst: str, *, pattern: Optional[str] = None, dry_run: bool = False) -> bool:
    """Copy a file, a directory tree, or the files of a directory matching pattern.

    Returns False (and copies nothing) when src does not exist or the pattern
    matches no files. dst is a directory for pattern copies and tree copies,
    a file path otherwise.
    """

    s = Path(src)
    if not s.exists():
        logger.info("Optional artifact not present: %s", src)
        return False

    if pattern is not None:
        files = sorted(p for p in s.glob(pattern) if p.is_file())
        if not files:
            logger.info("No %s files in %s", pattern, src)
            return False
        if dry_run:
            logger.info("Would copy %d file(s) %s/%s -> %s", len(files), src, pattern, dst)
            return True
        Path(dst).mkdir(parents=True, exist_ok=True)
        for f in files:
            shutil.copy2(f, Path(dst) / f.name)
        logger.info("Copied %d file(s) %s/%s -> %s", len(files), src, pattern, dst)
        return True

    if s.is_dir():
        copy_tree(src, dst, dry_run=dry_run)
        return True

    if dry_run:
        logger.info("Would copy %s -> %s", src, dst)
        return True
    Path(dst).parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(s, dst)
    logger.info("Copied %s -> %s", src, dst)
    return True
