from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
from typing import Callable, Optional, Sequence

from .context import InstallContext
from .errors import ConfigurationError, InstallerError
from .lib.backend import CommandBackend, StorageBackend
from .lib.block import BlockProbe
from .lib.env import PATHS
from .lib.hwdetect import HardwareSignature, detect_hardware
from .lib.prompt import ConsolePrompter, Prompter
from .logging_utils import configure_logging
from .pipeline import PipelineResult, Step, check_step_graph, run_pipeline
from .preflight import run_preflight
from .resume import DeviceProbe, prepare_run, restore_secrets
from .state_store import ConfigStore, StateStore, load_answers
from .steps import (
    BootStep,
    ConfigureStep,
    EncryptionStep,
    FilesystemStep,
    FinalizeStep,
    FstabStep,
    HardwareStep,
    InstallBaseStep,
    MountStep,
    PartitionStep,
    QuirksStep,
    SwapfileStep,
    SystemStep,
    UsersStep,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def build_steps() -> list[Step]:
    return [
        ConfigureStep(),
        PartitionStep(),
        EncryptionStep(),
        FilesystemStep(),
        MountStep(),
        InstallBaseStep(),
        FstabStep(),
        SwapfileStep(),
        SystemStep(),
        UsersStep(),
        HardwareStep(),
        QuirksStep(),
        BootStep(),
        FinalizeStep(),
    ]


def run(
    *,
    config_path: str = PATHS.config_default,
    state_path: str = PATHS.state_default,
    dry_run: bool = False,
    resume: bool = False,
    answers_path: Optional[str] = None,
    target_root: str = PATHS.target_root,
    backend: Optional[StorageBackend] = None,
    prompter: Optional[Prompter] = None,
    probe: Optional[DeviceProbe] = None,
    preflight: Callable[[], None] = run_preflight,
    hardware_probe: Callable[[], HardwareSignature] = detect_hardware,
    steps: Optional[Sequence[Step]] = None,
) -> PipelineResult:
    """Run the installer pipeline, checkpointing state for resume."""

    steps = list(steps) if steps is not None else build_steps()
    check_step_graph(steps)

    if dry_run:
        logger.warning("DRY-RUN MODE: no changes will be made")

    # Nothing is written before the environment checks pass.
    preflight()

    config_store = ConfigStore(config_path, dry_run=dry_run)
    state_store = StateStore(state_path, dry_run=dry_run)
    start = prepare_run(resume=resume, config_store=config_store, state_store=state_store, probe=probe or BlockProbe())

    if answers_path and not start.resumed:
        try:
            start.config.update(load_answers(answers_path))
        except (OSError, ValueError, RuntimeError) as e:
            raise ConfigurationError(f"Cannot load answers file {answers_path}: {e}") from e
        logger.info("Loaded answers from %s", answers_path)

    prompter = prompter or ConsolePrompter(auto_confirm=dry_run)
    if start.resumed:
        restore_secrets(start.config, start.state, prompter)

    ctx = InstallContext(
        config=start.config,
        state=start.state,
        backend=backend or CommandBackend(dry_run=dry_run),
        prompter=prompter,
        config_store=config_store,
        state_store=state_store,
        target_root=target_root,
        dry_run=dry_run,
        hardware_probe=hardware_probe,
    )

    try:
        result = run_pipeline(ctx, steps)
    except (Exception, KeyboardInterrupt):
        logger.error("Installation stopped at %s", ctx.state.get("current_step", "(none)"))
        ctx.cleanup.run_all()
        ctx.checkpoint()
        raise
    finally:
        config_store.redact()

    logger.info("Ran: %s", ", ".join(result.ran_steps) or "(none)")
    if result.skipped_steps:
        logger.info("Skipped (already completed): %s", ", ".join(result.skipped_steps))
    state_store.clear()
    config_store.clear()
    return result


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in {"1", "true", "yes", "on"}


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="archstrap", description="Opinionated, resumable Arch Linux installer")
    p.add_argument("-d", "--dry-run", action="store_true", default=_env_flag("DRY_RUN"), help="Show what would be done without making changes")
    p.add_argument("-r", "--resume", action="store_true", help="Resume a previous interrupted installation")
    p.add_argument("-v", "--verbose", action="store_true", default=_env_flag("VERBOSE"), help="Enable verbose output")
    p.add_argument("--no-color", action="store_true", help="Disable colored output")
    p.add_argument("--log", default=os.environ.get("LOG_FILE", PATHS.log_default), help="Path to installer log")
    p.add_argument("--config", default=os.environ.get("CONFIG_FILE", PATHS.config_default), help="Path to configuration record")
    p.add_argument("--state", default=os.environ.get("STATE_FILE", PATHS.state_default), help="Path to installer state")
    p.add_argument("--answers", default=None, help="Pre-seeded answers (json|yaml|key=value)")
    return p


def _raise_interrupt(signum, frame) -> None:
    raise KeyboardInterrupt(f"signal {signum}")


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    configure_logging(log_path=args.log, verbose=args.verbose, color=False if args.no_color else None)
    signal.signal(signal.SIGTERM, _raise_interrupt)

    try:
        run(
            config_path=args.config,
            state_path=args.state,
            dry_run=args.dry_run,
            resume=args.resume,
            answers_path=args.answers,
        )
    except KeyboardInterrupt:
        logger.error("Interrupted; run again with --resume to continue")
        return EXIT_INTERRUPTED
    except InstallerError as e:
        logger.error("%s", e)
        return EXIT_FAILURE
    except Exception:
        logger.exception("Installer failed")
        return EXIT_FAILURE

    logger.info("Your new Arch Linux system is ready. Remove the installation media and reboot.")
    return EXIT_OK


def cli() -> None:
    sys.exit(main())
