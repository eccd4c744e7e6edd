"""Per-target bookkeeping for the ISO build.

The file format (JSON or YAML by extension) is shared with the installer
state; only the layout differs:

    {"targets": {"amd64": {"completed_steps": [...], "current_step": ...}},
     "errors": [{"target": ..., "step": ..., "error": ...}]}

A target also records the inputs its steps were completed for.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

from .state_store import load_state, save_state


def load_build_state(path: str) -> Dict[str, Any]:
    return ensure_build_defaults(load_state(path))


def save_build_state(path: str, state: Dict[str, Any]) -> None:
    save_state(path, state)


def ensure_build_defaults(state: Dict[str, Any]) -> Dict[str, Any]:
    state.setdefault("targets", {})
    state.setdefault("errors", [])
    return state


def target_state(state: Dict[str, Any], target: str) -> Dict[str, Any]:
    return state.setdefault("targets", {}).setdefault(target, {})


def mark_completed(state: Dict[str, Any], *, target: str, step_id: str) -> None:
    completed = target_state(state, target).setdefault("completed_steps", [])
    if step_id not in completed:
        completed.append(step_id)


def is_completed(state: Dict[str, Any], *, target: str, step_id: str) -> bool:
    return step_id in ((state.get("targets") or {}).get(target) or {}).get("completed_steps", [])


def record_build_error(state: Dict[str, Any], error: BaseException, *, target: str, step_id: Optional[str]) -> None:
    state.setdefault("errors", []).append({"target": target, "step": step_id, "error": str(error)})


def reset_stale_target(state: Dict[str, Any], *, target: str, inputs: Dict[str, Any]) -> Optional[str]:
    """Forget a target's completed steps when they were done for other inputs.

    inputs (config path, output ISO, dry-run flag) are recorded on the target.
    A finished build whose ISO has since disappeared is stale as well, since
    its work dir is gone. Returns the reason when the target was reset.
    """

    t = target_state(state, target)
    previous = t.get("inputs")
    reason = None
    if previous is not None and previous != inputs:
        changed = sorted(k for k in set(previous) | set(inputs) if previous.get(k) != inputs.get(k))
        reason = "inputs changed: " + ", ".join(changed)
    elif not inputs.get("dry_run") and t.get("iso") and not Path(t["iso"]).is_file():
        reason = f"{t['iso']} no longer exists"

    if reason:
        t["completed_steps"] = []
        t.pop("iso", None)
    t["inputs"] = dict(inputs)
    return reason
