from __future__ import annotations

import logging
import os
import re
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .command import probe_output

logger = logging.getLogger(__name__)

_DISK_RE = re.compile(r"^/dev/(sd|nvme|vd|mmcblk)")


@dataclass(frozen=True)
class StorageHandle:
    path: str
    removable: bool = False
    size: str = ""
    model: str = ""


def is_block_device(path: str) -> bool:
    try:
        return stat.S_ISBLK(os.stat(path).st_mode)
    except OSError:
        return False


def uuid_resolves(uuid: str) -> bool:
    """True if some block device currently carries this UUID."""

    return bool(probe_output(["blkid", "-U", uuid]).strip())


def is_removable(disk: str, *, sys_block: str = "/sys/block") -> bool:
    p = Path(sys_block) / os.path.basename(disk) / "removable"
    try:
        return p.read_text(encoding="utf-8").strip() == "1"
    except OSError:
        return False


def iso_boot_disk() -> Optional[str]:
    """Disk hosting the running installation medium, if it can be found."""

    source = probe_output(["findmnt", "-n", "-o", "SOURCE", "/run/archiso/bootmnt"]).strip()
    if not source:
        return None
    parent = probe_output(["lsblk", "-no", "PKNAME", source]).strip().splitlines()
    return f"/dev/{parent[0]}" if parent else None


def parse_lsblk_disks(output: str, *, exclude: Optional[str] = None) -> List[StorageHandle]:
    """Parse `lsblk -dpno NAME,SIZE,TRAN,MODEL` output (MODEL may contain spaces)."""

    disks: List[StorageHandle] = []
    for line in output.splitlines():
        cols = line.split(None, 3)
        if not cols or not _DISK_RE.match(cols[0]) or "loop" in cols[0]:
            continue
        if exclude and cols[0] == exclude:
            logger.debug("Excluding installation medium: %s", cols[0])
            continue
        size = cols[1] if len(cols) > 1 else ""
        model = cols[3] if len(cols) > 3 else ""
        disks.append(StorageHandle(path=cols[0], size=size, model=model))
    return disks


def list_disks() -> List[StorageHandle]:
    output = probe_output(["lsblk", "-dpno", "NAME,SIZE,TRAN,MODEL"])
    disks = parse_lsblk_disks(output, exclude=iso_boot_disk())
    return [StorageHandle(d.path, is_removable(d.path), d.size, d.model) for d in disks]


class BlockProbe:
    """Live view of which recorded storage handles still resolve."""

    def device_exists(self, path: str) -> bool:
        return is_block_device(path)

    def uuid_resolves(self, uuid: str) -> bool:
        return uuid_resolves(uuid)
