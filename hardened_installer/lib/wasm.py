from __future__ import annotations

import logging
import os
import shlex
import shutil
from pathlib import Path

from .command import run_cmd

logger = logging.getLogger(__name__)

EMSDK_URL = "https://github.com/emscripten-core/emsdk.git"

# Minimal decoder set; the module only has to demux and decode H.264 in MP4.
FFMPEG_WASM_CONFIGURE = [
    "--cc=emcc",
    "--cxx=em++",
    "--ar=emar",
    "--ranlib=emranlib",
    "--target-os=none",
    "--arch=x86_32",
    "--enable-cross-compile",
    "--disable-x86asm",
    "--disable-inline-asm",
    "--disable-programs",
    "--disable-doc",
    "--disable-network",
    "--disable-everything",
    "--enable-decoder=h264",
    "--enable-demuxer=mov",
    "--enable-parser=h264",
]


def setup_emsdk(emsdk_dir: str, *, dry_run: bool = False) -> Path:
    """Clone (once) and activate the latest Emscripten SDK in emsdk_dir."""

    d = Path(emsdk_dir)
    if not (d / "emsdk").exists():
        run_cmd(["git", "clone", EMSDK_URL, str(d)], dry_run=dry_run)
    run_cmd(["./emsdk", "install", "latest"], cwd=str(d), dry_run=dry_run)
    run_cmd(["./emsdk", "activate", "latest"], cwd=str(d), dry_run=dry_run)
    return d


def _in_emsdk_env(emsdk_dir: str, argv: list[str]) -> list[str]:
    # emsdk_env.sh only exports its PATH into the shell that sources it.
    env_sh = shlex.quote(str(Path(emsdk_dir) / "emsdk_env.sh"))
    return ["bash", "-c", f"source {env_sh} >/dev/null && {shlex.join(argv)}"]


def build_ffmpeg_wasm(src_dir: str, emsdk_dir: str, output: str, *, dry_run: bool = False) -> Path:
    """Build ffmpeg.wasm from an FFmpeg source tree; returns the output path."""

    src = Path(src_dir)
    if not dry_run and not (src / "configure").is_file():
        raise RuntimeError(f"FFmpeg source tree not found at {src_dir}")

    dist = src / "dist"
    jobs = os.cpu_count() or 1
    for argv in (
        ["emconfigure", "./configure", f"--prefix={dist}", *FFMPEG_WASM_CONFIGURE],
        ["emmake", "make", f"-j{jobs}"],
        ["emmake", "make", "install"],
    ):
        run_cmd(_in_emsdk_env(emsdk_dir, argv), cwd=str(src), dry_run=dry_run)

    out = Path(output)
    built = dist / "bin/ffmpeg.wasm"
    if dry_run:
        logger.info("Would copy %s -> %s", str(built), str(out))
        return out
    if not built.is_file():
        raise RuntimeError(f"FFmpeg build did not produce {built}")
    out.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(built, out)
    logger.info("Built %s", str(out))
    return out
