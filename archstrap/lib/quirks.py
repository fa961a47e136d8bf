"""Hardware quirks: detection predicates and self-contained remediations.

Each quirk owns the files it writes. The only shared artifact is the kernel
command line, which quirks append to through `KernelCmdline` and which is
written once by the boot stage.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from .backend import StorageBackend
from .bootloader import KernelCmdline
from .hwdetect import HardwareSignature

logger = logging.getLogger(__name__)


class QuirkId(str, enum.Enum):
    QCA6390 = "qca6390"
    NVIDIA_SUSPEND = "nvidia_suspend"
    RTL8852BE = "rtl8852be"


@dataclass
class QuirkTarget:
    root: str
    cmdline: KernelCmdline
    backend: Optional[StorageBackend] = None
    dry_run: bool = False


@dataclass(frozen=True)
class Remediation:
    kernel_params: Tuple[str, ...] = ()
    # (path relative to the target root, full contents)
    files: Tuple[Tuple[str, str], ...] = ()
    services: Tuple[str, ...] = ()
    # Enabled best-effort; their units may not exist on every driver version.
    optional_services: Tuple[str, ...] = ()

    def apply(self, target: QuirkTarget) -> None:
        target.cmdline.extend(self.kernel_params)

        for rel, contents in self.files:
            path = Path(target.root) / rel
            if target.dry_run:
                logger.info("Would write %s", str(path))
                continue
            path.parent.mkdir(parents=True, exist_ok=True)
            # Full rewrite keeps re-application idempotent.
            path.write_text(contents, encoding="utf-8")
            logger.debug("Wrote %s", str(path))

        if target.backend is None:
            return
        for svc in self.services:
            target.backend.run_in_target_root(target.root, ["systemctl", "enable", svc])
        for svc in self.optional_services:
            r = target.backend.run_in_target_root(target.root, ["systemctl", "enable", svc], check=False)
            if r.returncode != 0:
                logger.warning("Optional service %s could not be enabled", svc)


@dataclass(frozen=True)
class Quirk:
    quirk_id: QuirkId
    description: str
    detect: Callable[[HardwareSignature], bool]
    remediation: Remediation

    def apply(self, target: QuirkTarget) -> None:
        logger.info("Applying quirk %s: %s", self.quirk_id.value, self.description)
        self.remediation.apply(target)


_ATH11K_SUSPEND = """\
[Unit]
Description=Unload ath11k_pci before suspend
Before=sleep.target
StopWhenUnneeded=yes

[Service]
Type=oneshot
ExecStart=/usr/bin/modprobe -r ath11k_pci
RemainAfterExit=yes

[Install]
WantedBy=sleep.target
"""

_ATH11K_RESUME = """\
[Unit]
Description=Reload ath11k_pci after resume
After=suspend.target hibernate.target hybrid-sleep.target suspend-then-hibernate.target

[Service]
Type=oneshot
ExecStartPre=/usr/bin/sleep 2
ExecStart=/usr/bin/modprobe ath11k_pci

[Install]
WantedBy=suspend.target hibernate.target hybrid-sleep.target suspend-then-hibernate.target
"""

_BLUETOOTH_DELAY = """\
[Unit]
Description=Delay Bluetooth startup for QCA6390 WiFi/BT race condition
Before=bluetooth.service
After=network-pre.target

[Service]
Type=oneshot
ExecStart=/usr/bin/sleep 3
RemainAfterExit=yes

[Install]
WantedBy=bluetooth.service
"""

_BLUETOOTH_DROPIN = """\
[Unit]
# WiFi (ath11k) must initialize before Bluetooth on the shared chip
After=bluetooth-delay.service sys-subsystem-net-devices-wlan0.device
Wants=bluetooth-delay.service
"""

_NVIDIA_PM = """\
# Enable NVIDIA power management for proper suspend/resume
options nvidia NVreg_PreserveVideoMemoryAllocations=1
options nvidia NVreg_TemporaryFilePath=/var/tmp
"""

_RTW89 = """\
# Disable ASPM for RTL8852BE stability
options rtw89_pci disable_aspm_l1=Y disable_aspm_l1ss=Y
"""

QCA6390_MEMMAP = "memmap=12M$20M"


QUIRKS: Dict[QuirkId, Quirk] = {
    q.quirk_id: q
    for q in (
        Quirk(
            QuirkId.QCA6390,
            "QCA6390 WiFi/Bluetooth race condition and suspend fixes",
            lambda sig: "17cb:1101" in sig.pci_ids or sig.qca6390_ath11k,
            Remediation(
                kernel_params=(QCA6390_MEMMAP,),
                files=(
                    ("etc/systemd/system/ath11k-suspend.service", _ATH11K_SUSPEND),
                    ("etc/systemd/system/ath11k-resume.service", _ATH11K_RESUME),
                    ("etc/systemd/system/bluetooth-delay.service", _BLUETOOTH_DELAY),
                    ("etc/systemd/system/bluetooth.service.d/qca6390-delay.conf", _BLUETOOTH_DROPIN),
                ),
                services=("ath11k-suspend.service", "ath11k-resume.service", "bluetooth-delay.service"),
            ),
        ),
        Quirk(
            QuirkId.NVIDIA_SUSPEND,
            "NVIDIA suspend/resume power management",
            lambda sig: "nvidia" in sig.gpu_vendors,
            Remediation(
                files=(("etc/modprobe.d/nvidia-power-management.conf", _NVIDIA_PM),),
                optional_services=("nvidia-suspend.service", "nvidia-hibernate.service", "nvidia-resume.service"),
            ),
        ),
        Quirk(
            QuirkId.RTL8852BE,
            "RTL8852BE WiFi stability (ASPM disabled)",
            lambda sig: "10ec:b852" in sig.pci_ids,
            Remediation(files=(("etc/modprobe.d/rtw89-quirks.conf", _RTW89),)),
        ),
    )
}


def detect(signature: HardwareSignature) -> FrozenSet[QuirkId]:
    found: Set[QuirkId] = {qid for qid, q in QUIRKS.items() if q.detect(signature)}
    return frozenset(found)


def apply(target: QuirkTarget, quirk_ids: Iterable[QuirkId | str]) -> List[QuirkId]:
    """Apply each quirk independently; returns the ids applied, in table order."""

    wanted = {QuirkId(q) for q in quirk_ids}
    applied: List[QuirkId] = []
    for qid, quirk in QUIRKS.items():
        if qid in wanted:
            quirk.apply(target)
            applied.append(qid)
    return applied


def describe(quirk_ids: Iterable[QuirkId | str]) -> List[str]:
    return [f"{QuirkId(q).value}: {QUIRKS[QuirkId(q)].description}" for q in sorted(QuirkId(q).value for q in quirk_ids)]
