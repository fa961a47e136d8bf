from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from .config import InstallConfig
from .lib.prompt import Prompter
from .state_store import ConfigStore, InstallState, StateStore, is_step_completed

logger = logging.getLogger(__name__)


class DeviceProbe(Protocol):
    def device_exists(self, path: str) -> bool: ...

    def uuid_resolves(self, uuid: str) -> bool: ...


def validate_state(state: InstallState, probe: DeviceProbe) -> bool:
    """Check that recorded storage handles still point at real devices.

    An invalid state is not an error: the caller discards it and starts over.
    """

    target = state.get("target_disk")
    if target and not probe.device_exists(target):
        logger.warning("Target disk %s no longer exists", target)
        return False

    luks_uuid = state.get("luks_uuid")
    if is_step_completed(state, "03_encryption") and luks_uuid and not probe.uuid_resolves(luks_uuid):
        logger.warning("LUKS UUID %s not found", luks_uuid)
        return False

    return True


@dataclass
class RunStart:
    config: InstallConfig
    state: InstallState
    resumed: bool


def prepare_run(
    *,
    resume: bool,
    config_store: ConfigStore,
    state_store: StateStore,
    probe: DeviceProbe,
) -> RunStart:
    """Decide where a run starts: from scratch or from the first incomplete stage."""

    if not resume:
        if state_store.load() is not None:
            logger.info("Discarding previous state (run with --resume to continue it)")
            state_store.clear()
        return RunStart(InstallConfig(), InstallState(), resumed=False)

    config: Optional[InstallConfig] = config_store.load()
    previous = state_store.load()

    if previous is None:
        logger.info("No previous installation to resume, starting fresh")
        return RunStart(config or InstallConfig(), InstallState(), resumed=False)

    if config is None:
        logger.warning("State found but configuration is missing, starting fresh")
        state_store.clear()
        return RunStart(InstallConfig(), InstallState(), resumed=False)

    if not validate_state(previous, probe):
        logger.warning("Previous state is invalid, starting fresh")
        state_store.clear()
        return RunStart(config, InstallState(), resumed=False)

    logger.info("Resuming after: %s", ", ".join(previous.completed_steps) or "(nothing)")
    return RunStart(config, previous, resumed=True)


def restore_secrets(config: InstallConfig, state: InstallState, prompter: Prompter) -> None:
    """Ask again for passphrases the remaining stages need.

    The live configuration record is redacted whenever the installer exits,
    so a resumed run has to collect them from the operator.
    """

    if not is_step_completed(state, "01_configure"):
        return

    done = set(state.completed_steps)
    if not config.luks_passphrase and "14_finalize" not in done:
        config.set("luks_passphrase", prompter.ask_secret("Disk encryption passphrase"))
    if config.secrets_enabled and config.secrets_separate_passphrase and not config.secrets_passphrase:
        if "10_users" not in done:
            config.set("secrets_passphrase", prompter.ask_secret("Secrets storage passphrase"))
    if not config.user_password and "10_users" not in done:
        config.set("user_password", prompter.ask_secret(f"Password for {config.username}"))
