from __future__ import annotations

import logging
import platform
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Sequence

from .errors import PreconditionError
from .lib.block import StorageHandle, list_disks
from .lib.net import network_wait

logger = logging.getLogger(__name__)

MIN_RAM_MB = 512

REQUIRED_COMMANDS = (
    "pacstrap",
    "arch-chroot",
    "genfstab",
    "sgdisk",
    "cryptsetup",
    "mkfs.fat",
    "mkfs.btrfs",
    "mkfs.ext4",
    "btrfs",
    "wipefs",
    "partprobe",
    "blkid",
    "lsblk",
    "findmnt",
    "filefrag",
)


def _ram_mb() -> int:
    try:
        for line in Path("/proc/meminfo").read_text(encoding="utf-8").splitlines():
            if line.startswith("MemTotal:"):
                return int(line.split()[1]) // 1024
    except OSError:
        pass
    return 0


@dataclass
class Environment:
    """Host facts the checks read; replaceable in tests."""

    efi_booted: Callable[[], bool] = lambda: Path("/sys/firmware/efi/efivars").is_dir()
    machine: Callable[[], str] = platform.machine
    network: Callable[[], bool] = lambda: network_wait(10)
    ram_mb: Callable[[], int] = _ram_mb
    disks: Callable[[], List[StorageHandle]] = list_disks
    which: Callable[[str], object] = shutil.which
    is_arch_iso: Callable[[], bool] = lambda: Path("/run/archiso").is_dir()


def run_preflight(env: Environment | None = None, *, commands: Sequence[str] = REQUIRED_COMMANDS) -> None:
    """Validate the live environment. Raises PreconditionError listing every problem."""

    env = env or Environment()
    problems: List[str] = []

    if env.efi_booted():
        logger.info("UEFI mode: OK")
    else:
        problems.append("System not booted in UEFI mode")

    arch = env.machine()
    if arch == "x86_64":
        logger.info("Architecture (%s): OK", arch)
    else:
        problems.append(f"Unsupported architecture: {arch} (only x86_64 is supported)")

    if not env.is_arch_iso():
        logger.warning("Not running from the Arch Linux ISO; some features may not work correctly")

    if env.network():
        logger.info("Network: OK")
    else:
        problems.append("No network connectivity")

    ram = env.ram_mb()
    if ram < MIN_RAM_MB:
        problems.append(f"Insufficient memory: {ram}MB (at least {MIN_RAM_MB}MB required)")
    else:
        logger.info("Memory (%dMB): OK", ram)

    disks = env.disks()
    if disks:
        logger.info("Disks found: %d", len(disks))
    else:
        problems.append("No suitable disks found")

    missing = [c for c in commands if not env.which(c)]
    if missing:
        problems.append(f"Missing required commands: {', '.join(missing)}")

    if problems:
        for p in problems:
            logger.error("Preflight: %s", p)
        raise PreconditionError(problems)
    logger.info("Preflight checks passed")
