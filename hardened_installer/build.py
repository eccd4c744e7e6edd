from __future__ import annotations

import argparse
import logging
import os
from typing import Any, Dict, Optional

from .build_state import (
    load_build_state,
    record_build_error,
    reset_stale_target,
    save_build_state,
    target_state,
)
from .build_steps import ALL_STEPS, BuildCtx, unbind_installer_root
from .hardened_conf import load_hardened_config
from .logging_utils import configure_logging

logger = logging.getLogger(__name__)


DEFAULT_BUILD_STATE = "build/build_state.json"
DEFAULT_BUILD_LOG = "logs/hardened-build.log"


def run_build(
    *,
    config_path: str,
    output_iso: str,
    state_path: str = DEFAULT_BUILD_STATE,
    log_path: str = DEFAULT_BUILD_LOG,
    dry_run: bool = False,
    force: bool = False,
) -> Dict[str, Any]:
    configure_logging(log_path=log_path)

    cfg = load_hardened_config(config_path)
    state = load_build_state(state_path)

    ctx = BuildCtx(cfg=cfg, config_path=config_path, output_iso=output_iso, dry_run=dry_run)
    logger.info("=== Building installer ISO %s (%s) ===", output_iso, ctx.target)
    inputs = {
        "config_path": os.path.abspath(config_path),
        "output_iso": os.path.abspath(output_iso),
        "dry_run": dry_run,
    }
    reason = reset_stale_target(state, target=ctx.target, inputs=inputs)
    if reason:
        logger.warning("[%s] Previous build progress discarded (%s)", ctx.target, reason)
    try:
        for fn in ALL_STEPS:
            fn(ctx=ctx, state=state, force=force)
            save_build_state(state_path, state)
    except Exception as e:
        logger.exception("ISO build failed")
        record_build_error(state, e, target=ctx.target, step_id=target_state(state, ctx.target).get("current_step"))
        # The work dir is kept for a resumed build; only the bind mounts go.
        unbind_installer_root(ctx)
        raise
    finally:
        save_build_state(state_path, state)

    logger.info("ISO build finished: %s", output_iso)
    return state


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="hardened-build", description="Build the hardened installer ISO")
    p.add_argument("--config", required=True, help="Path to hardened-os.conf")
    p.add_argument("--output", required=True, help="Path of the ISO image to write")
    p.add_argument("--state", default=DEFAULT_BUILD_STATE)
    p.add_argument("--log", default=DEFAULT_BUILD_LOG)
    p.add_argument("--dry-run", action="store_true")
    p.add_argument("--force", action="store_true")

    args = p.parse_args(argv)

    run_build(
        config_path=args.config,
        output_iso=args.output,
        state_path=args.state,
        log_path=args.log,
        dry_run=bool(args.dry_run),
        force=bool(args.force),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
