from __future__ import annotations

import json
from pathlib import Path

import pytest
from conftest import RecordingBackend, ScriptedPrompter

from archstrap.errors import AbortError, CommandError, PreconditionError
from archstrap.lib.command import CmdResult
from archstrap.lib.env import PATHS
from archstrap.main import build_steps, run
from archstrap.state_store import ConfigStore, StateStore, is_step_completed

ALL_STEPS = [s.step_id for s in build_steps()]


class FakeProbe:
    def __init__(self, exists: bool = True, resolves: bool = True):
        self.exists = exists
        self.resolves = resolves

    def device_exists(self, path: str) -> bool:
        return self.exists

    def uuid_resolves(self, uuid: str) -> bool:
        return self.resolves


@pytest.fixture
def paths(tmp_path: Path) -> dict:
    target = tmp_path / "mnt"
    target.mkdir()
    return {
        "config_path": str(tmp_path / "archstrap.conf"),
        "state_path": str(tmp_path / "archstrap.state"),
        "target_root": str(target),
    }


@pytest.fixture
def answers(tmp_path: Path) -> str:
    path = tmp_path / "answers.json"
    path.write_text(
        json.dumps(
            {
                "hostname": "archbox",
                "username": "alice",
                "user_password": "pw",
                "target_disk": "/dev/sda",
                "luks_passphrase": "correct horse",
            }
        )
    )
    return str(path)


def _fresh_user_backend(**kwargs) -> RecordingBackend:
    backend = RecordingBackend(**kwargs)
    backend.chroot_results[("id", "-u", "alice")] = CmdResult(["id", "-u", "alice"], 1, "", "no such user")
    return backend


def _run(paths: dict, plain_signature, **kwargs):
    kwargs.setdefault("prompter", ScriptedPrompter())
    kwargs.setdefault("probe", FakeProbe())
    return run(
        preflight=lambda: None,
        hardware_probe=lambda: plain_signature,
        **paths,
        **kwargs,
    )


def test_full_install_runs_every_stage(paths, answers, plain_signature) -> None:
    backend = _fresh_user_backend()
    result = _run(paths, plain_signature, answers_path=answers, backend=backend)

    assert result.ran_steps == ALL_STEPS
    assert result.skipped_steps == []

    # Both records are removed after a successful run.
    assert not Path(paths["config_path"]).exists()
    assert not Path(paths["state_path"]).exists()

    target = Path(paths["target_root"])
    cmdline = (target / "etc/kernel/cmdline").read_text()
    assert "rd.luks.name=uuid-sda2=cryptroot" in cmdline
    assert "resume_offset=34816" in cmdline
    assert "nodev,nosuid" in (target / "etc/fstab").read_text()
    assert (target / "etc/hostname").read_text() == "archbox\n"

    kept = (target / PATHS.target_config.lstrip("/")).read_text()
    assert "hostname=archbox" in kept
    assert "correct horse" not in kept
    assert "user_password" not in kept

    names = backend.names()
    assert names.index("wipe") < names.index("encrypt_format") < names.index("bootstrap")
    assert ("useradd", "-m", "-G", "wheel", "-s", "/bin/zsh", "alice") in [tuple(a) for a in backend.chroot_argvs()]
    assert names[-2:] == ["unmount_all", "encrypt_close"]


def test_dry_run_persists_nothing(paths, answers, plain_signature) -> None:
    backend = RecordingBackend(dry_run=True)
    result = _run(paths, plain_signature, answers_path=answers, backend=backend, dry_run=True)

    assert result.ran_steps == ALL_STEPS
    assert not Path(paths["config_path"]).exists()
    assert not Path(paths["state_path"]).exists()
    assert list(Path(paths["target_root"]).iterdir()) == []
    # Every decision branch still runs against the backend.
    assert "encrypt_format" in backend.names()
    assert "create_swapfile" in backend.names()


def test_failure_keeps_state_and_runs_cleanup(paths, answers, plain_signature) -> None:
    backend = _fresh_user_backend(fail_on="create_swapfile")

    with pytest.raises(CommandError):
        _run(paths, plain_signature, answers_path=answers, backend=backend)

    state = StateStore(paths["state_path"]).load()
    assert state is not None
    assert state.completed_steps == ALL_STEPS[:7]
    assert state.get("current_step") == "08_swapfile"
    assert not is_step_completed(state, "08_swapfile")

    config = ConfigStore(paths["config_path"]).load()
    assert config.hostname == "archbox"
    assert config.luks_passphrase == ""

    assert backend.names()[-3:] == ["unmount_all", "encrypt_close", "encrypt_close"]
    assert backend.opened == set()


def test_resume_continues_from_failed_stage(paths, answers, plain_signature) -> None:
    with pytest.raises(CommandError):
        _run(paths, plain_signature, answers_path=answers, backend=_fresh_user_backend(fail_on="create_swapfile"))

    backend = _fresh_user_backend()
    prompter = ScriptedPrompter(secret="correct horse")
    result = _run(paths, plain_signature, resume=True, backend=backend, prompter=prompter)

    assert result.skipped_steps == ALL_STEPS[:7]
    assert result.ran_steps == ALL_STEPS[7:]
    assert "Disk encryption passphrase" in prompter.asked

    names = backend.names()
    for destructive in ("wipe", "create_partition_table", "encrypt_format", "create_subvolume", "bootstrap"):
        assert destructive not in names
    # The root container and the tree come back before the next stage runs.
    assert names[0] == "encrypt_open"
    assert backend.args_of("encrypt_open")[0][:3] == ("/dev/sda2", "cryptroot", "correct horse")
    assert names.index("mount") < names.index("create_swapfile")


def test_resume_with_vanished_disk_starts_over(paths, answers, plain_signature) -> None:
    with pytest.raises(CommandError):
        _run(paths, plain_signature, answers_path=answers, backend=_fresh_user_backend(fail_on="bootstrap"))

    backend = _fresh_user_backend()
    result = _run(paths, plain_signature, resume=True, backend=backend, probe=FakeProbe(exists=False))

    assert result.ran_steps == ALL_STEPS
    assert "wipe" in backend.names()


def test_declined_confirmation_aborts_before_writing(paths, answers, plain_signature) -> None:
    backend = RecordingBackend()
    with pytest.raises(AbortError):
        _run(paths, plain_signature, answers_path=answers, backend=backend, prompter=ScriptedPrompter(confirm=False))

    assert backend.calls == []
    state = StateStore(paths["state_path"]).load()
    assert state is not None and state.completed_steps == []


def test_preflight_failure_writes_nothing(paths, answers) -> None:
    def failing() -> None:
        raise PreconditionError(["System not booted in UEFI mode"])

    backend = RecordingBackend()
    with pytest.raises(PreconditionError):
        run(preflight=failing, backend=backend, answers_path=answers, probe=FakeProbe(), **paths)

    assert backend.calls == []
    assert not Path(paths["config_path"]).exists()
    assert not Path(paths["state_path"]).exists()


def test_interrupt_is_checkpointed(paths, answers, plain_signature) -> None:
    class InterruptingBackend(RecordingBackend):
        def bootstrap(self, root, packages):
            raise KeyboardInterrupt

    backend = InterruptingBackend()
    with pytest.raises(KeyboardInterrupt):
        _run(paths, plain_signature, answers_path=answers, backend=backend)

    state = StateStore(paths["state_path"]).load()
    assert state.completed_steps == ALL_STEPS[:5]
    assert state.get("current_step") == "06_install_base"
    assert "unmount_all" in backend.names()
