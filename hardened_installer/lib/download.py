from __future__ import annotations

import hashlib
import logging
from pathlib import Path

from .command import run_cmd

logger = logging.getLogger(__name__)


def is_git_url(url: str) -> bool:
    return url.endswith(".git")


def archive_name(url: str) -> str:
    name = url.rstrip("/").rsplit("/", 1)[-1]
    if not name:
        raise ValueError(f"Cannot derive a file name from URL: {url}")
    return name


def download(url: str, dest: str, *, dry_run: bool = False) -> Path:
    """Fetch url into dest (a file path; a directory for git URLs)."""

    p = Path(dest)
    if not dry_run:
        p.parent.mkdir(parents=True, exist_ok=True)
    if is_git_url(url):
        run_cmd(["git", "clone", "--depth", "1", url, str(p)], dry_run=dry_run)
    else:
        run_cmd(["wget", "-q", "-O", str(p), url], dry_run=dry_run)
    return p


def sha256_file(path: str) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def is_placeholder_checksum(expected: str) -> bool:
    v = (expected or "").strip()
    return not v or (v.startswith("<") and v.endswith(">"))


def verify_sha256(path: str, expected: str, *, what: str = "", dry_run: bool = False) -> bool:
    """Check a download against its configured checksum.

    Returns False (with a warning) when no real checksum is configured;
    raises RuntimeError on mismatch.
    """

    label = what or Path(path).name
    if is_placeholder_checksum(expected):
        logger.warning("No SHA256 configured for %s; skipping verification", label)
        return False
    if dry_run:
        logger.info("Would verify SHA256 of %s", label)
        return True
    actual = sha256_file(path)
    if actual.lower() != expected.strip().lower():
        raise RuntimeError(f"SHA256 mismatch for {label}: expected {expected.strip()}, got {actual}")
    logger.info("SHA256 verified for %s", label)
    return True


def extract_tarball(archive: str, dest: str, *, strip_components: int = 1, dry_run: bool = False) -> None:
    if not dry_run:
        Path(dest).mkdir(parents=True, exist_ok=True)
    argv = ["tar", "-xf", archive, "-C", dest]
    if strip_components:
        argv.append(f"--strip-components={strip_components}")
    run_cmd(argv, dry_run=dry_run)


def extract_tarball_into(archive: str, dest: str, *, dry_run: bool = False) -> None:
    extract_tarball(archive, dest, strip_components=0, dry_run=dry_run)


def create_tarball(src_dir: str, archive: str, *, dry_run: bool = False) -> Path:
    if not Path(src_dir).is_dir() and not dry_run:
        raise RuntimeError(f"Nothing to archive, directory missing: {src_dir}")
    p = Path(archive)
    if not dry_run:
        p.parent.mkdir(parents=True, exist_ok=True)
    run_cmd(["tar", "-cJf", str(p), "-C", src_dir, "."], dry_run=dry_run)
    return p
