from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Sequence

from .config import InstallConfig
from .lib.backend import StorageBackend
from .lib.command import CmdResult
from .lib.env import PATHS
from .lib.hwdetect import HardwareSignature, detect_hardware
from .lib.prompt import Prompter
from .pipeline import CleanupRegistry
from .state_store import ConfigStore, InstallState, StateStore

logger = logging.getLogger(__name__)


@dataclass
class InstallContext:
    """Everything a stage may read or change, passed explicitly."""

    config: InstallConfig
    state: InstallState
    backend: StorageBackend
    prompter: Prompter
    config_store: ConfigStore
    state_store: StateStore
    cleanup: CleanupRegistry = field(default_factory=CleanupRegistry)
    target_root: str = PATHS.target_root
    dry_run: bool = False
    hardware_probe: Callable[[], HardwareSignature] = detect_hardware
    _signature: Optional[HardwareSignature] = field(default=None, repr=False)

    @property
    def signature(self) -> HardwareSignature:
        # Detected once per run and read-only afterwards.
        if self._signature is None:
            self._signature = self.hardware_probe()
        return self._signature

    def checkpoint(self) -> None:
        self.state_store.save(self.state)

    def target_path(self, rel: str) -> Path:
        return Path(self.target_root) / rel.lstrip("/")

    def chroot(self, argv: Sequence[str], *, check: bool = True, input_text: Optional[str] = None) -> CmdResult:
        return self.backend.run_in_target_root(self.target_root, argv, check=check, input_text=input_text)

    def write_file(self, rel: str, contents: str, *, mode: Optional[int] = None) -> None:
        """Replace a file inside the target."""
        path = self.target_path(rel)
        if self.dry_run:
            logger.info("Would write %s", str(path))
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(contents, encoding="utf-8")
        if mode is not None:
            os.chmod(path, mode)
        logger.debug("Wrote %s", str(path))

    def append_line(self, rel: str, line: str) -> None:
        """Append a line to a target file unless it is already there."""
        path = self.target_path(rel)
        if self.dry_run:
            logger.info("Would append to %s: %s", str(path), line)
            return
        existing = path.read_text(encoding="utf-8") if path.exists() else ""
        if line in existing.splitlines():
            return
        if existing and not existing.endswith("\n"):
            existing += "\n"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(existing + line + "\n", encoding="utf-8")

    def edit_file(self, rel: str, edit: Callable[[str], str]) -> None:
        path = self.target_path(rel)
        if self.dry_run:
            logger.info("Would edit %s", str(path))
            return
        if not path.exists():
            logger.warning("Cannot edit missing file %s", str(path))
            return
        path.write_text(edit(path.read_text(encoding="utf-8")), encoding="utf-8")
