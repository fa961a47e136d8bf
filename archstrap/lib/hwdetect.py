from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import FrozenSet, List, Optional, Tuple

from .command import probe_output

logger = logging.getLogger(__name__)

_PCI_ID_RE = re.compile(r"\[([0-9a-fA-F]{4}):([0-9a-fA-F]{4})\]")
_DISPLAY_RE = re.compile(r"^\S+\s+(VGA compatible controller|3D controller|Display controller)", re.IGNORECASE)
_VENDOR_WORD_RE = re.compile(r"\b(nvidia|intel|amd|ati)\b", re.IGNORECASE)
_FW_FAIL_RE = re.compile(r"failed to load firmware|firmware.*not found|Direct firmware load.*failed", re.IGNORECASE)
_FW_NAME_RE = re.compile(r"[a-zA-Z0-9_./-]+\.(?:bin|fw|ucode)")

_VENDOR_BY_PCI = {
    "8086": "intel",
    "1002": "amd",
    "10de": "nvidia",
}


class NvidiaGeneration(str, enum.Enum):
    OLDER = "older"
    TURING = "turing"
    AMPERE = "ampere"
    ADA = "ada"


# Disjoint, ordered device-id ranges; anything else falls back to OLDER.
_NVIDIA_RANGES: Tuple[Tuple[int, int, NvidiaGeneration], ...] = (
    (0x0000, 0x1DFF, NvidiaGeneration.OLDER),
    (0x1E00, 0x21FF, NvidiaGeneration.TURING),
    (0x2200, 0x25FF, NvidiaGeneration.AMPERE),
    (0x2680, 0x27FF, NvidiaGeneration.ADA),
)


@dataclass(frozen=True)
class BusSnapshot:
    """Raw enumeration text captured once per run."""

    pci: str = ""  # lspci -nnk
    usb: str = ""  # lsusb
    cpuinfo: str = ""
    virt: str = "none"  # systemd-detect-virt
    product_name: str = ""
    meminfo: str = ""
    dmesg: str = ""
    sys_classes: FrozenSet[str] = frozenset()  # populated /sys/class (and bus) entries
    chassis_type: str = ""
    has_battery: bool = False


@dataclass(frozen=True)
class HardwareSignature:
    cpu_vendor: str = "unknown"
    gpu_vendors: Tuple[str, ...] = ()
    nvidia_generation: Optional[NvidiaGeneration] = None
    pci_ids: FrozenSet[str] = frozenset()
    vm_type: str = "none"
    has_audio: bool = False
    has_bluetooth: bool = False
    has_wireless: bool = False
    has_wwan: bool = False
    has_fingerprint: bool = False
    has_thunderbolt: bool = False
    has_smartcard: bool = False
    is_laptop: bool = False
    qca6390_ath11k: bool = False
    firmware_needs: FrozenSet[str] = frozenset()
    missing_firmware: Tuple[str, ...] = ()
    ram_gib: int = 0

    @property
    def hybrid_graphics(self) -> bool:
        return len(self.gpu_vendors) > 1


def pci_ids(snap: BusSnapshot) -> FrozenSet[str]:
    return frozenset(f"{v.lower()}:{d.lower()}" for v, d in _PCI_ID_RE.findall(snap.pci))


def _pci_lines(snap: BusSnapshot) -> List[str]:
    # Device lines are unindented; -k detail lines start with a tab.
    return [ln for ln in snap.pci.splitlines() if ln and not ln[0].isspace()]


def _grep(text: str, pattern: str) -> bool:
    return re.search(pattern, text, re.IGNORECASE) is not None


def cpu_vendor(snap: BusSnapshot) -> str:
    for line in snap.cpuinfo.splitlines():
        if line.startswith("vendor_id"):
            vendor = line.split(":", 1)[1].strip()
            return {"GenuineIntel": "intel", "AuthenticAMD": "amd"}.get(vendor, "unknown")
    return "unknown"


def gpu_vendors(snap: BusSnapshot) -> Tuple[str, ...]:
    found: List[str] = []
    for line in _pci_lines(snap):
        if not _DISPLAY_RE.search(line):
            continue
        ids = _PCI_ID_RE.findall(line)
        vendor = _VENDOR_BY_PCI.get(ids[-1][0].lower()) if ids else None
        if vendor is None:
            m = _VENDOR_WORD_RE.search(line)
            vendor = {"ati": "amd"}.get(m.group(1).lower(), m.group(1).lower()) if m else None
        if vendor and vendor not in found:
            found.append(vendor)
    return tuple(sorted(found))


def nvidia_generation(snap: BusSnapshot) -> Optional[NvidiaGeneration]:
    """Newest generation among NVIDIA display controllers; None if there is no NVIDIA GPU."""

    ids: List[int] = []
    for line in _pci_lines(snap):
        if not _DISPLAY_RE.search(line):
            continue
        for vendor, device in _PCI_ID_RE.findall(line):
            if vendor.lower() == "10de":
                ids.append(int(device, 16))
    if not ids:
        return None

    best = NvidiaGeneration.OLDER
    order = list(NvidiaGeneration)
    for dev in ids:
        gen = classify_nvidia_device(dev)
        if order.index(gen) > order.index(best):
            best = gen
    return best


def classify_nvidia_device(device_id: int) -> NvidiaGeneration:
    for lo, hi, gen in _NVIDIA_RANGES:
        if lo <= device_id <= hi:
            return gen
    return NvidiaGeneration.OLDER


def vm_type(snap: BusSnapshot) -> str:
    virt = (snap.virt or "none").strip()
    if virt and virt != "none":
        return virt
    product = snap.product_name
    if "VirtualBox" in product:
        return "oracle"
    if "VMware" in product:
        return "vmware"
    if "QEMU" in product or "KVM" in product:
        return "kvm"
    return "none"


def has_audio(snap: BusSnapshot) -> bool:
    return "sound" in snap.sys_classes or _grep(snap.pci, r"audio")


def has_bluetooth(snap: BusSnapshot) -> bool:
    return "bluetooth" in snap.sys_classes or _grep(snap.pci, r"bluetooth") or _grep(snap.usb, r"bluetooth")


def has_wireless(snap: BusSnapshot) -> bool:
    return "wireless" in snap.sys_classes or _grep(snap.pci, r"wireless|wi-?fi|wlan")


def has_wwan(snap: BusSnapshot) -> bool:
    return _grep(snap.pci, r"wwan|cellular|\blte\b|\b5g\b") or _grep(snap.usb, r"wwan|cellular|sierra|quectel|fibocom")


def has_fingerprint(snap: BusSnapshot) -> bool:
    return "fingerprint" in snap.sys_classes or _grep(
        snap.usb, r"fingerprint|validity|synaptics.*fp|elan.*fp|goodix|fpc.*sensor|authentitech"
    )


def has_thunderbolt(snap: BusSnapshot) -> bool:
    return "thunderbolt" in snap.sys_classes or _grep(snap.pci, r"thunderbolt")


def has_smartcard(snap: BusSnapshot) -> bool:
    return "pcsc" in snap.sys_classes or _grep(
        snap.usb, r"smart ?card|yubikey|nitrokey|solokey|feitian|gemalto|omnikey"
    )


def is_laptop(snap: BusSnapshot) -> bool:
    # 8 Portable, 9 Laptop, 10 Notebook, 14 Sub Notebook, 31 Convertible, 32 Detachable
    return snap.has_battery or snap.chassis_type.strip() in {"8", "9", "10", "14", "31", "32"}


def qca6390_ath11k(snap: BusSnapshot) -> bool:
    """QCA6390 listed with the ath11k driver bound to it."""

    lines = snap.pci.splitlines()
    for i, line in enumerate(lines):
        if "qca6390" in line.lower():
            if any("ath11k" in ln.lower() for ln in lines[i + 1 : i + 3]):
                return True
    return False


def firmware_needs(snap: BusSnapshot) -> FrozenSet[str]:
    needs = set()
    if _grep(snap.pci, r"audio.*intel.*(tiger|alder|raptor|meteor|lunar|ice|jasper|elkhart)") or _grep(
        snap.pci, r"\[8086:(a0c8|43c8|51c8|51cc|51cd|51ce|51cf|54c8|7ad0|7a50)\]"
    ):
        needs.add("sof")
    if _grep(snap.pci, r"marvell.*(wireless|wifi|ethernet|network)") or _grep(snap.usb, r"marvell"):
        needs.add("marvell")
    if _grep(snap.pci, r"broadcom.*(wireless|wifi|bcm)") or _grep(snap.pci, r"\[14e4:(43|44|4727)"):
        needs.add("broadcom")
    if _grep(snap.pci, r"qualcomm|qca|atheros.*wifi") or _grep(snap.usb, r"qualcomm|qca"):
        needs.add("qualcomm")
    if _grep(snap.pci, r"mediatek|mt7") or _grep(snap.usb, r"mediatek|mt7"):
        needs.add("mediatek")
    return frozenset(needs)


def missing_firmware(snap: BusSnapshot) -> Tuple[str, ...]:
    names = set()
    for line in snap.dmesg.splitlines():
        if _FW_FAIL_RE.search(line):
            m = _FW_NAME_RE.search(line)
            if m:
                names.add(m.group(0))
    return tuple(sorted(names))


def ram_gib(snap: BusSnapshot) -> int:
    for line in snap.meminfo.splitlines():
        if line.startswith("MemTotal:"):
            return int(line.split()[1]) // 1024 // 1024
    return 0


def detect_signature(snap: BusSnapshot) -> HardwareSignature:
    """Evaluate every predicate against one snapshot."""

    return HardwareSignature(
        cpu_vendor=cpu_vendor(snap),
        gpu_vendors=gpu_vendors(snap),
        nvidia_generation=nvidia_generation(snap),
        pci_ids=pci_ids(snap),
        vm_type=vm_type(snap),
        has_audio=has_audio(snap),
        has_bluetooth=has_bluetooth(snap),
        has_wireless=has_wireless(snap),
        has_wwan=has_wwan(snap),
        has_fingerprint=has_fingerprint(snap),
        has_thunderbolt=has_thunderbolt(snap),
        has_smartcard=has_smartcard(snap),
        is_laptop=is_laptop(snap),
        qca6390_ath11k=qca6390_ath11k(snap),
        firmware_needs=firmware_needs(snap),
        missing_firmware=missing_firmware(snap),
        ram_gib=ram_gib(snap),
    )


# Package selection


_VM_PACKAGES = {
    "oracle": ["virtualbox-guest-utils"],
    "vmware": ["open-vm-tools"],
    "kvm": ["qemu-guest-agent", "spice-vdagent"],
    "qemu": ["qemu-guest-agent", "spice-vdagent"],
}

_FIRMWARE_PACKAGES = {
    "sof": "sof-firmware",
    "marvell": "linux-firmware-marvell",
    "broadcom": "b43-fwcutter",
    "qualcomm": "linux-firmware-qcom",
    "mediatek": "linux-firmware-mediatek",
}


def microcode_package(sig: HardwareSignature) -> Optional[str]:
    return {"intel": "intel-ucode", "amd": "amd-ucode"}.get(sig.cpu_vendor)


def gpu_packages(sig: HardwareSignature) -> List[str]:
    packages: List[str] = []
    for vendor in sig.gpu_vendors:
        if vendor == "intel":
            packages += ["mesa", "intel-media-driver", "vulkan-intel"]
        elif vendor == "amd":
            packages += ["mesa", "libva-mesa-driver", "vulkan-radeon", "xf86-video-amdgpu"]
        elif vendor == "nvidia":
            if sig.nvidia_generation in (None, NvidiaGeneration.OLDER):
                packages += ["nvidia", "nvidia-utils", "nvidia-settings"]
            else:
                packages += ["nvidia-open", "nvidia-utils", "nvidia-settings"]
    if sig.hybrid_graphics and "nvidia" in sig.gpu_vendors:
        packages.append("nvidia-prime")
    return sorted(set(packages))


def hardware_packages(sig: HardwareSignature, *, audio: bool = True, bluetooth: bool = True) -> List[str]:
    """Everything the detected hardware needs beyond the base system."""

    packages: List[str] = []
    ucode = microcode_package(sig)
    if ucode:
        packages.append(ucode)
    packages += gpu_packages(sig)
    packages += _VM_PACKAGES.get(sig.vm_type, [])
    if audio and sig.has_audio:
        packages += ["pipewire", "pipewire-alsa", "pipewire-pulse", "pipewire-jack", "wireplumber", "alsa-ucm-conf"]
    if bluetooth and sig.has_bluetooth:
        packages += ["bluez", "bluez-utils"]
    if sig.has_wwan:
        packages += ["modemmanager", "usb_modeswitch"]
    if sig.has_fingerprint:
        packages += ["fprintd", "libfprint"]
    if sig.has_thunderbolt:
        packages.append("bolt")
    if sig.has_smartcard:
        packages += ["ccid", "opensc", "pcsclite"]
    if sig.is_laptop:
        packages += ["power-profiles-daemon", "thermald"]
    packages += [_FIRMWARE_PACKAGES[n] for n in sorted(sig.firmware_needs)]
    return sorted(set(packages))


# Live capture


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8", errors="ignore").strip()
    except OSError:
        return ""


def _populated(path: Path) -> bool:
    try:
        return path.is_dir() and any(path.iterdir())
    except OSError:
        return False


def capture_snapshot() -> BusSnapshot:
    """Collect bus enumeration from the running system (read-only, safe in dry-run)."""

    sys_class = Path("/sys/class")
    classes = {name for name in ("sound", "bluetooth", "fingerprint", "pcsc") if _populated(sys_class / name)}
    if _populated(Path("/sys/bus/thunderbolt/devices")):
        classes.add("thunderbolt")
    if any((p / "wireless").is_dir() for p in sys_class.joinpath("net").glob("*")):
        classes.add("wireless")

    battery = any(_read_text(p / "type") == "Battery" for p in sys_class.joinpath("power_supply").glob("*"))
    dmesg = probe_output(["dmesg"])

    snap = BusSnapshot(
        pci=probe_output(["lspci", "-nnk"]),
        usb=probe_output(["lsusb"]),
        cpuinfo=_read_text(Path("/proc/cpuinfo")),
        virt=probe_output(["systemd-detect-virt"]).strip() or "none",
        product_name=_read_text(Path("/sys/class/dmi/id/product_name")),
        meminfo=_read_text(Path("/proc/meminfo")),
        dmesg="\n".join(ln for ln in dmesg.splitlines() if "firmware" in ln.lower()),
        sys_classes=frozenset(classes),
        chassis_type=_read_text(Path("/sys/class/dmi/id/chassis_type")),
        has_battery=battery,
    )
    return snap


def detect_hardware() -> HardwareSignature:
    sig = detect_signature(capture_snapshot())
    logger.info(
        "Hardware: cpu=%s gpu=%s nvidia=%s vm=%s ram=%dGiB",
        sig.cpu_vendor,
        ",".join(sig.gpu_vendors) or "none",
        sig.nvidia_generation.value if sig.nvidia_generation else "-",
        sig.vm_type,
        sig.ram_gib,
    )
    if sig.missing_firmware:
        logger.warning("Kernel reported missing firmware: %s", ", ".join(sig.missing_firmware))
    return sig
