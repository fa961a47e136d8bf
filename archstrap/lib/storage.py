from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Dict, Optional, Tuple

from ..config import EncryptionStrength, InstallConfig
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

# Discoverable Partitions Specification type GUIDs
ESP_TYPE_GUID = "C12A7328-F81F-11D2-BA4B-00A0C93EC93B"
ROOT_X86_64_GUID = "4F68BCE3-E8CD-4DB1-96E7-FBCAF984B709"
LINUX_DATA_GUID = "0FC63DAF-8483-4772-8E79-3D69D8477DE4"

EFI_SIZE_MIB = 512

ROOT_MAPPER = "cryptroot"
SECRETS_MAPPER = "cryptsecrets"
ROOT_LABEL = "archroot"
SECRETS_LABEL = "secrets"
HEADER_FILENAME = "cryptroot.header"
SECRETS_SUBDIRS = ("gnupg", "ssh", "password-store")

BTRFS_MOUNT_OPTS = "compress=zstd:1,noatime,discard=async"

_KDF_MEMORY_KIB = 4 * 1024 * 1024
_KDF_TIME_MS = 5000


@dataclass(frozen=True)
class PartitionSpec:
    number: int
    type_guid: str
    name: str
    # None means "rest of the disk".
    size_mib: Optional[int] = None


@dataclass(frozen=True)
class DiskLayout:
    disk: str
    partitions: Tuple[PartitionSpec, ...]


@dataclass(frozen=True)
class EncryptionProfile:
    cipher: str = "aes-xts-plain64"
    key_size: int = 512
    hash: str = "sha512"
    kdf: str = "argon2id"
    # None leaves the backend's own benchmarked tuning in place.
    kdf_memory_kib: Optional[int] = None
    kdf_time_ms: Optional[int] = None
    integrity: Optional[str] = None
    header: Optional[str] = None

    def with_header(self, header: Optional[str]) -> "EncryptionProfile":
        return replace(self, header=header or None)


@dataclass(frozen=True)
class Subvolume:
    name: str
    mountpoint: str
    # Security flags appended to the fstab entry.
    hardening: Tuple[str, ...] = ()
    extra_opts: Tuple[str, ...] = ()

    @property
    def mount_options(self) -> str:
        return ",".join((f"subvol={self.name}", *self.extra_opts, BTRFS_MOUNT_OPTS))


_NOEXEC = ("nodev", "nosuid", "noexec")

SUBVOLUMES: Tuple[Subvolume, ...] = (
    Subvolume("@", "/"),
    Subvolume("@home", "/home", ("nodev", "nosuid")),
    Subvolume("@snapshots", "/.snapshots", _NOEXEC),
    Subvolume("@swap", "/swap", _NOEXEC, ("nodatacow",)),
    Subvolume("@var_cache", "/var/cache", _NOEXEC),
    Subvolume("@var_log", "/var/log", _NOEXEC),
)

# ESP entries, whichever mountpoint genfstab wrote.
ESP_HARDENING = _NOEXEC
ESP_MOUNTPOINTS = ("/efi", "/boot")


@dataclass(frozen=True)
class StoragePlan:
    layouts: Tuple[DiskLayout, ...]
    encryption: EncryptionProfile
    subvolumes: Tuple[Subvolume, ...]
    efi_partition: str
    root_partition: str
    secrets_partition: Optional[str] = None
    header_partition: Optional[str] = None


def partition_device(disk: str, n: int) -> str:
    # nvme/mmcblk style names end in a digit and need a 'p' separator
    if disk.endswith(tuple("0123456789")):
        return f"{disk}p{n}"
    return f"{disk}{n}"


def encryption_profile(strength: EncryptionStrength | str) -> EncryptionProfile:
    """Map an encryption tier to its fixed LUKS2 profile."""

    tier = EncryptionStrength(strength)
    if tier is EncryptionStrength.STANDARD:
        return EncryptionProfile()
    if tier is EncryptionStrength.HIGH:
        return EncryptionProfile(kdf_memory_kib=_KDF_MEMORY_KIB, kdf_time_ms=_KDF_TIME_MS)
    return EncryptionProfile(kdf_memory_kib=_KDF_MEMORY_KIB, kdf_time_ms=_KDF_TIME_MS, integrity="hmac-sha256")


def hibernation_swap_gib(ram_gib: int) -> int:
    """Swap needed to hibernate: RAM*1.5 up to 8 GiB of RAM, RAM+2 GiB above."""

    if ram_gib <= 8:
        return ram_gib * 3 // 2
    return ram_gib + 2


def harden_fstab(text: str) -> str:
    """Append fixed security flags to the subvolume and ESP fstab entries."""

    by_mount: Dict[Tuple[str, str], Tuple[str, ...]] = {("btrfs", sv.mountpoint): sv.hardening for sv in SUBVOLUMES}
    by_mount.update({("vfat", mp): ESP_HARDENING for mp in ESP_MOUNTPOINTS})
    out: list[str] = []
    for line in text.splitlines():
        cols = line.split()
        if line.lstrip().startswith("#") or len(cols) < 4:
            out.append(line)
            continue
        flags = by_mount.get((cols[2], cols[1]), ())
        opts = cols[3].split(",")
        missing = [f for f in flags if f not in opts]
        if missing:
            cols[3] = ",".join(opts + missing)
            line = "\t".join(cols)
        out.append(line)
    return "\n".join(out) + "\n"


def plan_storage(config: InstallConfig) -> StoragePlan:
    """Turn the user's disk choices into partition layouts and encryption settings."""

    target = config.target_disk
    if not target:
        raise ConfigurationError("target_disk is required for partitioning")

    profile = encryption_profile(config.encryption_strength)
    if profile.integrity:
        logger.warning("Integrity mode has ~2x disk space overhead and reduced I/O performance")

    efi_spec = PartitionSpec(1, ESP_TYPE_GUID, "EFI System Partition", EFI_SIZE_MIB)

    if config.efi_on_removable:
        efi_disk = config.efi_disk
        if not efi_disk:
            raise ConfigurationError("efi_on_removable is set but efi_disk is empty")
        if efi_disk == target:
            raise ConfigurationError("efi_disk must differ from target_disk when EFI is on removable media")

        secrets_partition = None
        if config.secrets_on_removable:
            removable = DiskLayout(
                efi_disk,
                (efi_spec, PartitionSpec(2, LINUX_DATA_GUID, "Encrypted Secrets")),
            )
            secrets_partition = partition_device(efi_disk, 2)
        else:
            removable = DiskLayout(efi_disk, (PartitionSpec(1, ESP_TYPE_GUID, "EFI System Partition"),))

        layouts: Tuple[DiskLayout, ...] = (
            removable,
            DiskLayout(target, (PartitionSpec(1, ROOT_X86_64_GUID, "Arch Linux Root"),)),
        )
        efi_partition = partition_device(efi_disk, 1)
        root_partition = partition_device(target, 1)
    else:
        if config.secrets_on_removable:
            logger.warning("secrets_on_removable ignored: EFI is not on removable media")
        layouts = (
            DiskLayout(target, (efi_spec, PartitionSpec(2, ROOT_X86_64_GUID, "Arch Linux Root"))),
        )
        efi_partition = partition_device(target, 1)
        root_partition = partition_device(target, 2)
        secrets_partition = None

    header_partition = None
    if config.luks_header_on_removable:
        header_disk = config.luks_header_disk
        if not header_disk:
            raise ConfigurationError("luks_header_on_removable is set but luks_header_disk is empty")
        if header_disk == config.effective_efi_disk:
            header_partition = efi_partition
        else:
            header_partition = partition_device(header_disk, 1)

    return StoragePlan(
        layouts=layouts,
        encryption=profile,
        subvolumes=SUBVOLUMES,
        efi_partition=efi_partition,
        root_partition=root_partition,
        secrets_partition=secrets_partition,
        header_partition=header_partition,
    )


def parse_filefrag_offset(output: str) -> Optional[str]:
    """Physical offset of the first extent from `filefrag -v` output."""

    for line in output.splitlines():
        cols = line.split()
        # extent rows look like: "0:        0..    2047:     34816..     36863:   2048:"
        if len(cols) >= 4 and cols[0] == "0:":
            return cols[3].rstrip(":").rstrip(".") or None
    return None
