from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional

from .storage import ROOT_MAPPER

logger = logging.getLogger(__name__)

CMDLINE_REL = "etc/kernel/cmdline"


class KernelCmdline:
    """Ordered kernel parameters, assembled in memory and written once.

    Appending a fragment that is already present is a no-op, so several
    independent contributors can add the same parameter safely.
    """

    def __init__(self, fragments: Iterable[str] = ()):
        self._fragments: List[str] = []
        self.extend(fragments)

    def append(self, fragment: str) -> None:
        fragment = fragment.strip()
        if fragment and fragment not in self._fragments:
            self._fragments.append(fragment)

    def extend(self, fragments: Iterable[str]) -> None:
        for f in fragments:
            self.append(f)

    @property
    def fragments(self) -> List[str]:
        return list(self._fragments)

    def __contains__(self, fragment: str) -> bool:
        return fragment in self._fragments

    def __len__(self) -> int:
        return len(self._fragments)

    def render(self) -> str:
        return " ".join(self._fragments)

    @classmethod
    def parse(cls, text: Optional[str]) -> "KernelCmdline":
        return cls((text or "").split())


def base_cmdline(
    *,
    luks_uuid: str,
    swap_offset: Optional[str] = None,
    resume_device: Optional[str] = None,
    apparmor: bool = True,
    header_file: Optional[str] = None,
) -> KernelCmdline:
    cmdline = KernelCmdline(
        [
            f"rd.luks.name={luks_uuid}={ROOT_MAPPER}",
            f"root=/dev/mapper/{ROOT_MAPPER}",
            "rootflags=subvol=@",
            "rw",
        ]
    )
    if swap_offset:
        cmdline.extend([f"resume={resume_device or '/dev/mapper/' + ROOT_MAPPER}", f"resume_offset={swap_offset}"])
    cmdline.extend(["quiet", "loglevel=3", "systemd.show_status=auto", "rd.udev.log_level=3"])
    if apparmor:
        cmdline.append("lsm=landlock,lockdown,yama,integrity,apparmor,bpf")
    if header_file:
        cmdline.append(f"rd.luks.options={luks_uuid}=header={header_file}")
    return cmdline


def write_cmdline(target_root: str, cmdline: KernelCmdline, *, dry_run: bool = False) -> Path:
    path = Path(target_root) / CMDLINE_REL
    if dry_run:
        logger.info("Would write %s: %s", str(path), cmdline.render())
        return path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(cmdline.render() + "\n", encoding="utf-8")
    logger.info("Kernel cmdline: %s", cmdline.render())
    return path
