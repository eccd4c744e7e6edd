from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence

from .state_store import is_step_completed, mark_step_completed

logger = logging.getLogger(__name__)


class Step(Protocol):
    """A single idempotent step.

    Steps with a true ``always_run`` attribute are cleanup steps: they are
    never skipped as already completed, and when an earlier step raises they
    still run before the error propagates.
    """

    step_id: str

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        ...


@dataclass(frozen=True)
class PipelineResult:
    state: Dict[str, Any]
    ran_steps: List[str]
    skipped_steps: List[str]


def _run_cleanup_steps(state: Dict[str, Any], steps: Sequence[Step], ran: List[str]) -> None:
    for step in steps:
        if not getattr(step, "always_run", False) or step.step_id in ran:
            continue
        logger.warning("Running cleanup step %s after failure", step.step_id)
        try:
            step.run(state)
        except Exception:
            logger.exception("Cleanup step %s failed", step.step_id)


def run_pipeline(
    *,
    state: Dict[str, Any],
    steps: Sequence[Step],
    start_at: Optional[str] = None,
    stop_after: Optional[str] = None,
    force: bool = False,
) -> PipelineResult:
    """Run steps in order with resume/idempotency semantics."""

    if start_at is not None and start_at not in {s.step_id for s in steps}:
        raise ValueError(f"Unknown step_id for start_at: {start_at}")
    if stop_after is not None and stop_after not in {s.step_id for s in steps}:
        raise ValueError(f"Unknown step_id for stop_after: {stop_after}")

    ran: List[str] = []
    skipped: List[str] = []

    started = start_at is None

    for step in steps:
        if not started:
            if step.step_id == start_at:
                started = True
            else:
                continue

        state.setdefault("execution", {})["current_step"] = step.step_id

        if (not force) and not getattr(step, "always_run", False) and is_step_completed(state, step.step_id):
            logger.info("Skipping step %s (already completed)", step.step_id)
            skipped.append(step.step_id)
        else:
            logger.info("Running step %s", step.step_id)
            try:
                state = step.run(state)
            except BaseException:
                # Also on KeyboardInterrupt.
                _run_cleanup_steps(state, steps, ran + [step.step_id])
                raise
            mark_step_completed(state, step.step_id)
            ran.append(step.step_id)

        if stop_after is not None and step.step_id == stop_after:
            logger.info("Stopping after %s", stop_after)
            break

    state.setdefault("execution", {})["current_step"] = None
    return PipelineResult(state=state, ran_steps=ran, skipped_steps=skipped)
