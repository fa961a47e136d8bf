from __future__ import annotations

from typing import List, Tuple

import pytest

from archstrap.errors import ConfigurationError, StageError
from archstrap.main import build_steps
from archstrap.pipeline import CleanupRegistry, StepOutcome, check_step_graph, run_pipeline, run_step
from archstrap.state_store import InstallState


class FakeStep:
    needs_target = False

    def __init__(self, step_id: str, log: List[str], requires: Tuple[str, ...] = (), produces: Tuple[str, ...] = ()):
        self.step_id = step_id
        self.label = step_id
        self.requires = requires
        self.produces = produces
        self.log = log

    def run(self, ctx) -> None:
        self.log.append(self.step_id)
        for key in self.produces:
            ctx.state.set(key, f"{self.step_id}-value")


class FailingStep(FakeStep):
    def run(self, ctx) -> None:
        raise StageError("boom")


def test_runs_steps_in_order_and_checkpoints(make_ctx) -> None:
    log: List[str] = []
    ctx = make_ctx()
    steps = [FakeStep("01_a", log, produces=("x",)), FakeStep("02_b", log, requires=("x",))]

    result = run_pipeline(ctx, steps)

    assert log == ["01_a", "02_b"]
    assert result.ran_steps == ["01_a", "02_b"]
    saved = ctx.state_store.load()
    assert saved.completed_steps == ["01_a", "02_b"]
    assert saved.get("x") == "01_a-value"


def test_resume_skips_completed_steps(make_ctx) -> None:
    log: List[str] = []
    state = InstallState(facts={"x": "kept"}, completed_steps=["01_a"])
    ctx = make_ctx(state=state)
    steps = [FakeStep("01_a", log, produces=("x",)), FakeStep("02_b", log, requires=("x",))]

    result = run_pipeline(ctx, steps)

    assert log == ["02_b"]
    assert result.skipped_steps == ["01_a"]
    assert ctx.state.get("x") == "kept"


def test_rerun_after_completion_does_nothing(make_ctx) -> None:
    log: List[str] = []
    ctx = make_ctx()
    steps = [FakeStep("01_a", log), FakeStep("02_b", log)]
    run_pipeline(ctx, steps)
    log.clear()

    result = run_pipeline(ctx, steps)
    assert log == []
    assert result.ran_steps == []


def test_failure_keeps_completed_prefix(make_ctx) -> None:
    log: List[str] = []
    ctx = make_ctx()
    steps = [FakeStep("01_a", log), FailingStep("02_b", log), FakeStep("03_c", log)]

    with pytest.raises(StageError):
        run_pipeline(ctx, steps)

    assert log == ["01_a"]
    saved = ctx.state_store.load()
    assert saved.completed_steps == ["01_a"]
    assert "02_b" not in ctx.state.completed_steps
    assert ctx.state.get("current_step") == "02_b"


def test_missing_required_fact_is_stage_error(make_ctx) -> None:
    ctx = make_ctx()
    with pytest.raises(StageError, match="missing required state: disk"):
        run_step(ctx, FakeStep("01_a", [], requires=("disk",)))


def test_step_that_does_not_record_its_output_fails(make_ctx) -> None:
    class Forgetful(FakeStep):
        def run(self, ctx) -> None:
            pass

    with pytest.raises(StageError, match="did not record"):
        run_step(make_ctx(), Forgetful("01_a", [], produces=("disk",)))


def test_run_step_outcomes(make_ctx) -> None:
    ctx = make_ctx()
    step = FakeStep("01_a", [])
    assert run_step(ctx, step) is StepOutcome.RAN
    assert run_step(ctx, step) is StepOutcome.SKIPPED


def test_step_graph_rejects_unproduced_requirement() -> None:
    steps = [FakeStep("01_a", []), FakeStep("02_b", [], requires=("disk",))]
    with pytest.raises(ConfigurationError, match="02_b requires disk"):
        check_step_graph(steps)


def test_step_graph_rejects_duplicate_ids() -> None:
    with pytest.raises(ConfigurationError, match="Duplicate"):
        check_step_graph([FakeStep("01_a", []), FakeStep("01_a", [])])


def test_installer_step_graph_is_consistent() -> None:
    steps = build_steps()
    check_step_graph(steps)
    assert [s.step_id for s in steps] == [
        "01_configure",
        "02_partition",
        "03_encryption",
        "04_filesystem",
        "05_mount",
        "06_install_base",
        "07_fstab",
        "08_swapfile",
        "09_system",
        "10_users",
        "11_hardware",
        "12_quirks",
        "13_boot",
        "14_finalize",
    ]


def test_cleanup_runs_in_reverse_and_swallows_failures() -> None:
    order: List[str] = []
    reg = CleanupRegistry()
    reg.add("first", lambda: order.append("first"))

    def broken() -> None:
        order.append("broken")
        raise RuntimeError("nope")

    reg.add("broken", broken)
    reg.add("last", lambda: order.append("last"))
    reg.add("first", lambda: order.append("duplicate"))

    reg.run_all()
    assert order == ["last", "broken", "first"]
    assert reg.labels() == []
