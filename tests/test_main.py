from __future__ import annotations

from pathlib import Path

import pytest

from archstrap import main as main_mod
from archstrap.errors import CommandError, PreconditionError
from archstrap.logging_utils import reset_logging


@pytest.fixture(autouse=True)
def _logging(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(main_mod.signal, "signal", lambda *a: None)
    yield
    reset_logging()


def _argv(tmp_path: Path, *extra: str) -> list[str]:
    return ["--log", str(tmp_path / "install.log"), "--no-color", *extra]


def _stub_run(monkeypatch: pytest.MonkeyPatch, exc: BaseException | None = None) -> dict:
    seen: dict = {}

    def fake_run(**kwargs):
        seen.update(kwargs)
        if exc is not None:
            raise exc

    monkeypatch.setattr(main_mod, "run", fake_run)
    return seen


def test_success_exit_code(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    seen = _stub_run(monkeypatch)
    assert main_mod.main(_argv(tmp_path, "--dry-run", "--resume", "--answers", "a.json")) == main_mod.EXIT_OK
    assert seen["dry_run"] and seen["resume"]
    assert seen["answers_path"] == "a.json"
    assert (tmp_path / "install.log").exists()


@pytest.mark.parametrize(
    "exc",
    [PreconditionError(["No network connectivity"]), CommandError(["sgdisk"], 2, "boom"), ValueError("unexpected")],
)
def test_failures_exit_one(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, exc: BaseException) -> None:
    _stub_run(monkeypatch, exc)
    assert main_mod.main(_argv(tmp_path)) == main_mod.EXIT_FAILURE


def test_interrupt_exit_code(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _stub_run(monkeypatch, KeyboardInterrupt())
    assert main_mod.main(_argv(tmp_path)) == main_mod.EXIT_INTERRUPTED


def test_failure_is_logged_to_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _stub_run(monkeypatch, PreconditionError(["System not booted in UEFI mode"]))
    main_mod.main(_argv(tmp_path))
    assert "System not booted in UEFI mode" in (tmp_path / "install.log").read_text()


def test_environment_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DRY_RUN", "1")
    monkeypatch.setenv("STATE_FILE", "/tmp/other.state")
    args = main_mod.build_parser().parse_args([])
    assert args.dry_run
    assert args.state == "/tmp/other.state"
    assert not args.resume


def test_sigterm_becomes_interrupt() -> None:
    with pytest.raises(KeyboardInterrupt):
        main_mod._raise_interrupt(15, None)
