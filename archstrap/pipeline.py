from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, List, Protocol, Sequence, Tuple

from .errors import ConfigurationError, StageError
from .state_store import is_step_completed, mark_step_completed

if TYPE_CHECKING:
    from .context import InstallContext

logger = logging.getLogger(__name__)


class Step(Protocol):
    """A single stage of the installation.

    `requires` names the state facts the stage reads; `produces` the facts it
    guarantees to record. `needs_target` asks the pipeline to re-attach the
    encrypted root and the mounted tree first (they do not survive a resume).
    """

    step_id: str
    label: str
    requires: Tuple[str, ...]
    produces: Tuple[str, ...]
    needs_target: bool

    def run(self, ctx: "InstallContext") -> None:
        ...


class StepOutcome(str, enum.Enum):
    RAN = "ran"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class PipelineResult:
    ran_steps: List[str]
    skipped_steps: List[str]


class CleanupRegistry:
    """Best-effort handlers for abort and interruption paths."""

    def __init__(self) -> None:
        self._handlers: List[Tuple[str, Callable[[], None]]] = []

    def add(self, label: str, handler: Callable[[], None]) -> None:
        if any(existing == label for existing, _ in self._handlers):
            return
        self._handlers.append((label, handler))

    def labels(self) -> List[str]:
        return [label for label, _ in self._handlers]

    def run_all(self) -> None:
        if not self._handlers:
            return
        logger.debug("Running cleanup handlers...")
        for label, handler in reversed(self._handlers):
            logger.debug("Running cleanup: %s", label)
            try:
                handler()
            except Exception as e:
                logger.warning("Cleanup %s failed: %s", label, e)
        self._handlers.clear()


def check_step_graph(steps: Sequence[Step]) -> None:
    """Every required fact must be produced by an earlier stage."""

    seen_ids = set()
    available = set()
    for step in steps:
        if step.step_id in seen_ids:
            raise ConfigurationError(f"Duplicate step id {step.step_id}")
        seen_ids.add(step.step_id)
        missing = [r for r in step.requires if r not in available]
        if missing:
            raise ConfigurationError(f"Step {step.step_id} requires {', '.join(missing)} which no earlier step produces")
        available.update(step.produces)


def run_step(ctx: "InstallContext", step: Step) -> StepOutcome:
    state = ctx.state
    if is_step_completed(state, step.step_id):
        logger.info("Skipping completed step: %s", step.step_id)
        return StepOutcome.SKIPPED

    missing = [r for r in step.requires if not state.has(r)]
    if missing:
        raise StageError(f"Step {step.step_id} is missing required state: {', '.join(missing)}")

    logger.info("==> %s: %s", step.step_id, step.label)
    state.set("current_step", step.step_id)

    if step.needs_target:
        from .lib.provision import attach_target

        attach_target(ctx)

    step.run(ctx)

    not_produced = [p for p in step.produces if not state.has(p)]
    if not_produced:
        raise StageError(f"Step {step.step_id} did not record: {', '.join(not_produced)}")

    # Marker and checkpoint land before the next stage starts.
    mark_step_completed(state, step.step_id)
    ctx.checkpoint()
    logger.info("Step %s completed", step.step_id)
    return StepOutcome.RAN


def run_pipeline(ctx: "InstallContext", steps: Sequence[Step]) -> PipelineResult:
    """Run steps in order with resume/idempotency semantics. Fail fast."""

    ran: List[str] = []
    skipped: List[str] = []

    for step in steps:
        outcome = run_step(ctx, step)
        (ran if outcome is StepOutcome.RAN else skipped).append(step.step_id)

    ctx.state.set("current_step", "")
    return PipelineResult(ran_steps=ran, skipped_steps=skipped)
