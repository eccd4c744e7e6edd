from __future__ import annotations

import argparse
import logging
import sys
from typing import Any, Dict, List, Optional, TextIO

from .context import InstallContext
from .hardened_conf import load_hardened_config
from .lib.env import PATHS
from .logging_utils import DEFAULT_LOG_PATH, configure_logging
from .pipeline import run_pipeline
from .state_store import ensure_defaults, load_state, record_error, save_state
from .steps import (
    AccountsStep,
    BootloaderStep,
    BootstrapRootfsStep,
    ConfigureSystemStep,
    DesktopStep,
    FilesystemsStep,
    FinalizeStep,
    FstabCrypttabStep,
    InstallPackagesStep,
    PartitionDiskStep,
    PreflightStep,
    PrivacyStep,
    ServicesStep,
    SetupLuksStep,
    StageArtifactsStep,
    SysctlStep,
)

logger = logging.getLogger(__name__)


DEFAULT_STATE_PATH = PATHS.state_default


def build_steps(ctx: InstallContext) -> List[Any]:
    return [
        PreflightStep(ctx),
        PartitionDiskStep(ctx),
        SetupLuksStep(ctx),
        FilesystemsStep(ctx),
        BootstrapRootfsStep(ctx),
        StageArtifactsStep(ctx),
        ConfigureSystemStep(ctx),
        InstallPackagesStep(ctx),
        DesktopStep(ctx),
        ServicesStep(ctx),
        PrivacyStep(ctx),
        FstabCrypttabStep(ctx),
        SysctlStep(ctx),
        BootloaderStep(ctx),
        AccountsStep(ctx),
        FinalizeStep(ctx),
    ]


def read_passphrase(stream: TextIO) -> str:
    """First line of stream without its line ending; empty is refused."""

    line = stream.readline()
    passphrase = line.rstrip("\r\n")
    if not passphrase:
        raise ValueError("Empty LUKS passphrase on stdin")
    return passphrase


def recorded_disk(state_path: str) -> Optional[str]:
    """Disk the state file at state_path was written for, if any."""

    return (load_state(state_path).get("config") or {}).get("disk")


def reconcile_state(state: Dict[str, Any], ctx: InstallContext, *, force: bool) -> Dict[str, Any]:
    """Refuse to resume a state file recorded for another disk or run mode.

    Its completed steps and mounts describe devices of that other run; with
    force the recorded progress is dropped and the install starts over.
    """

    previous = state.get("config") or {}
    changed = [k for k in ("disk", "dry_run") if k in previous and previous[k] != getattr(ctx, k)]
    if not changed:
        return state
    recorded = ", ".join(f"{k}={previous[k]}" for k in changed)
    if not force:
        raise RuntimeError(
            f"State file belongs to another run ({recorded}); "
            "pass --force to start over or choose another --state path"
        )
    logger.warning("Discarding recorded progress of another run (%s)", recorded)
    state["execution"] = {}
    return ensure_defaults(state)


def run(
    *,
    config_path: str,
    disk: str,
    hostname: str,
    passphrase: str,
    state_path: str = DEFAULT_STATE_PATH,
    log_path: str = DEFAULT_LOG_PATH,
    start_at: Optional[str] = None,
    stop_after: Optional[str] = None,
    force: bool = False,
    dry_run: bool = False,
    source_root: str = "/",
    console_handler: Optional[logging.Handler] = None,
) -> Dict[str, Any]:
    """Install a hardened Debian system onto disk, persisting state for resume."""

    actual_log_path = configure_logging(log_path=log_path, console_handler=console_handler)

    cfg = load_hardened_config(config_path)
    ctx = InstallContext(
        cfg=cfg,
        disk=disk,
        hostname=hostname,
        passphrase=passphrase,
        dry_run=dry_run,
        source_root=source_root,
    )

    state = reconcile_state(ensure_defaults(load_state(state_path)), ctx, force=force)
    state["config"] = ctx.state_config()
    paths = state.setdefault("execution", {}).setdefault("paths", {})
    paths["log_path_requested"] = log_path
    paths["log_path_actual"] = actual_log_path

    try:
        result = run_pipeline(
            state=state,
            steps=build_steps(ctx),
            start_at=start_at,
            stop_after=stop_after,
            force=force,
        )
        state = result.state
        summary = state.setdefault("execution", {}).setdefault("summary", {})
        summary["ran_steps"] = result.ran_steps
        summary["skipped_steps"] = result.skipped_steps
        logger.info("Installation finished on %s (hostname %s)", disk, hostname)
        return state
    except BaseException as e:
        logger.exception("Installer failed")
        record_error(state, e)
        raise
    finally:
        save_state(state_path, state)


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="hardened-installer", description="Install a hardened Debian system onto a disk")
    p.add_argument("--config", required=True, help="Path to hardened-os.conf")
    p.add_argument("--disk", required=True, help="Target block device (e.g. /dev/nvme0n1); it will be wiped")
    p.add_argument("--hostname", required=True, help="Hostname of the installed system")
    p.add_argument(
        "--luks-passphrase-stdin",
        action="store_true",
        help="Read the LUKS passphrase from the first line of stdin",
    )
    p.add_argument("--state", default=DEFAULT_STATE_PATH, help="Path to installer state (json|yaml)")
    p.add_argument("--log", default=DEFAULT_LOG_PATH, help="Path to installer log")
    p.add_argument("--start-at", default=None, help="Start at step_id (e.g. 50_install_packages)")
    p.add_argument("--stop-after", default=None, help="Stop after step_id")
    p.add_argument("--force", action="store_true", help="Re-run steps even if marked completed")
    p.add_argument("--dry-run", action="store_true", help="Log commands instead of running them")

    args = p.parse_args(argv)

    if not args.luks_passphrase_stdin:
        p.error("for safety, pipe the passphrase via stdin and pass --luks-passphrase-stdin")
    try:
        passphrase = read_passphrase(sys.stdin)
    except ValueError as e:
        p.error(str(e))

    run(
        config_path=args.config,
        disk=args.disk,
        hostname=args.hostname,
        passphrase=passphrase,
        state_path=args.state,
        log_path=args.log,
        start_at=args.start_at,
        stop_after=args.stop_after,
        force=args.force,
        dry_run=bool(args.dry_run),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
