from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional, Protocol, Sequence

from .command import CmdResult, probe_output, run_cmd
from .storage import DiskLayout, EncryptionProfile, parse_filefrag_offset

logger = logging.getLogger(__name__)


class StorageBackend(Protocol):
    """Narrow interface to the tools that touch disks and the target system."""

    dry_run: bool

    def wipe(self, disk: str) -> None: ...

    def create_partition_table(self, layout: DiskLayout) -> None: ...

    def format(self, partition: str, fs_type: str, label: str) -> None: ...

    def encrypt_format(
        self, partition: str, passphrase: str, profile: EncryptionProfile
    ) -> None: ...

    def encrypt_open(
        self, partition: str, name: str, passphrase: str, header: Optional[str] = None
    ) -> str: ...

    def encrypt_close(self, name: str) -> None: ...

    def encrypt_uuid(self, partition: str, header: Optional[str] = None) -> str: ...

    def is_open(self, name: str) -> bool: ...

    def mount(self, device: str, path: str, options: Optional[str] = None) -> None: ...

    def unmount(self, path: str) -> None: ...

    def unmount_all(self, path: str) -> None: ...

    def is_mounted(self, path: str) -> bool: ...

    def create_subvolume(self, path: str) -> None: ...

    def make_owned_dir(self, path: str, uid: int, gid: int, mode: int = 0o700) -> None: ...

    def bootstrap(self, root: str, packages: Sequence[str]) -> None: ...

    def install_packages(self, root: str, packages: Sequence[str]) -> None: ...

    def run_in_target_root(
        self, root: str, argv: Sequence[str], *, check: bool = True, input_text: Optional[str] = None
    ) -> CmdResult: ...

    def generate_fstab(self, root: str) -> str: ...

    def create_swapfile(self, path: str, size_gib: int) -> None: ...

    def swapfile_offset(self, path: str) -> Optional[str]: ...


class CommandBackend:
    """StorageBackend on top of sgdisk/cryptsetup/mkfs/btrfs/pacstrap."""

    def __init__(self, *, dry_run: bool = False):
        self.dry_run = dry_run
        # What this run opened or mounted, so dry-run decisions see it too.
        self._opened: set[str] = set()
        self._mounted: set[str] = set()

    def _run(self, argv: Sequence[str], **kwargs) -> CmdResult:
        return run_cmd(argv, dry_run=self.dry_run, **kwargs)

    def wipe(self, disk: str) -> None:
        """Return a disk to a blank state: no mounts, signatures or partition tables."""

        logger.info("Preparing disk %s (restoring to factory default)", disk)
        for line in _read_proc_mounts():
            dev, _, _ = line.partition(" ")
            if dev.startswith(disk) and dev != disk:
                self._run(["umount", "-l", dev], check=False)
        self._run(["swapoff", "--all"], check=False)
        self._run(["wipefs", "-af", disk], destructive=True)
        self._run(["sgdisk", "-Z", disk], destructive=True)
        self._run(["dd", "if=/dev/zero", f"of={disk}", "bs=1M", "count=1", "status=none"], destructive=True)

        discard = Path("/sys/block") / os.path.basename(disk) / "queue/discard_max_bytes"
        if not self.dry_run and discard.exists() and discard.read_text().strip() not in {"", "0"}:
            logger.info("SSD detected - sending TRIM to entire disk")
            self._run(["blkdiscard", "-f", disk], check=False, destructive=True)
        self._run(["partprobe", disk], check=False)

    def create_partition_table(self, layout: DiskLayout) -> None:
        disk = layout.disk
        logger.info("Creating GPT partition table on %s", disk)
        self._run(["sgdisk", "-o", disk], destructive=True)
        for part in layout.partitions:
            end = f"+{part.size_mib}M" if part.size_mib else "0"
            self._run(
                [
                    "sgdisk",
                    f"--new={part.number}:0:{end}",
                    f"--typecode={part.number}:{part.type_guid}",
                    f"--change-name={part.number}:{part.name}",
                    disk,
                ]
            )
        self._run(["partprobe", disk])
        self._run(["udevadm", "settle"], check=False)

    def format(self, partition: str, fs_type: str, label: str) -> None:
        logger.info("Formatting %s as %s (%s)", partition, fs_type, label)
        if fs_type == "vfat":
            argv = ["mkfs.fat", "-F", "32", "-n", label, partition]
        elif fs_type == "btrfs":
            argv = ["mkfs.btrfs", "-f", "-L", label, partition]
        else:
            argv = [f"mkfs.{fs_type}", "-F", "-L", label, partition]
        self._run(argv, destructive=True)

    def encrypt_format(self, partition: str, passphrase: str, profile: EncryptionProfile) -> None:
        argv = [
            "cryptsetup",
            "luksFormat",
            "--type",
            "luks2",
            "--cipher",
            profile.cipher,
            "--key-size",
            str(profile.key_size),
            "--hash",
            profile.hash,
            "--pbkdf",
            profile.kdf,
            "--use-random",
            "--batch-mode",
        ]
        if profile.kdf_memory_kib:
            argv += ["--pbkdf-memory", str(profile.kdf_memory_kib)]
        if profile.kdf_time_ms:
            argv += ["--iter-time", str(profile.kdf_time_ms)]
        if profile.integrity:
            argv += ["--integrity", profile.integrity]
        if profile.header:
            argv += ["--header", profile.header]
        argv += [partition, "-"]
        self._run(argv, input_text=passphrase, redact_input=True, destructive=True)

    def encrypt_open(self, partition: str, name: str, passphrase: str, header: Optional[str] = None) -> str:
        logger.info("Opening LUKS container: %s -> /dev/mapper/%s", partition, name)
        argv = ["cryptsetup", "open"]
        if header:
            argv += ["--header", header]
        argv += [partition, name, "-"]
        self._run(argv, input_text=passphrase, redact_input=True)
        self._opened.add(name)
        return f"/dev/mapper/{name}"

    def encrypt_close(self, name: str) -> None:
        if self.dry_run or Path(f"/dev/mapper/{name}").exists():
            logger.info("Closing LUKS container: %s", name)
            self._run(["cryptsetup", "close", name])
        self._opened.discard(name)

    def encrypt_uuid(self, partition: str, header: Optional[str] = None) -> str:
        if self.dry_run:
            return f"dry-run-{os.path.basename(partition)}"
        argv = ["cryptsetup", "luksUUID"]
        if header:
            argv += ["--header", header]
        return self._run([*argv, partition]).stdout.strip()

    def is_open(self, name: str) -> bool:
        return name in self._opened or Path(f"/dev/mapper/{name}").exists()

    def mount(self, device: str, path: str, options: Optional[str] = None) -> None:
        self._run(["mkdir", "-p", path])
        argv = ["mount"]
        if options:
            argv += ["-o", options]
        self._run([*argv, device, path])
        self._mounted.add(path)

    def unmount(self, path: str) -> None:
        self._run(["umount", path])
        self._mounted.discard(path)

    def unmount_all(self, path: str) -> None:
        listed = probe_output(["findmnt", "-R", "-l", "-n", "-o", "TARGET", path])
        # Deepest mounts first
        for mnt in reversed([ln.strip() for ln in listed.splitlines() if ln.strip()]):
            self._run(["umount", "-l", mnt], check=False)
        self._mounted = {m for m in self._mounted if not (m == path or m.startswith(path.rstrip("/") + "/"))}

    def is_mounted(self, path: str) -> bool:
        return path in self._mounted or os.path.ismount(path)

    def create_subvolume(self, path: str) -> None:
        self._run(["btrfs", "subvolume", "create", path])

    def make_owned_dir(self, path: str, uid: int, gid: int, mode: int = 0o700) -> None:
        self._run(["mkdir", "-p", path])
        self._run(["chown", f"{uid}:{gid}", path])
        self._run(["chmod", format(mode, "o"), path])

    def bootstrap(self, root: str, packages: Sequence[str]) -> None:
        self._run(["pacstrap", "-K", root, *packages])

    def install_packages(self, root: str, packages: Sequence[str]) -> None:
        if not packages:
            return
        pkgs = sorted(set(packages))
        logger.info("Installing %d package(s) into %s", len(pkgs), root)
        self._run(["arch-chroot", root, "pacman", "-S", "--needed", "--noconfirm", *pkgs])

    def run_in_target_root(
        self, root: str, argv: Sequence[str], *, check: bool = True, input_text: Optional[str] = None
    ) -> CmdResult:
        return self._run(["arch-chroot", root, *argv], check=check, input_text=input_text, redact_input=True)

    def generate_fstab(self, root: str) -> str:
        if self.dry_run:
            self._run(["genfstab", "-U", root])
            return ""
        return run_cmd(["genfstab", "-U", root]).stdout

    def create_swapfile(self, path: str, size_gib: int) -> None:
        logger.info("Creating swapfile %s (%dG)", path, size_gib)
        self._run(["truncate", "-s", "0", path])
        # No copy-on-write for swap on btrfs
        self._run(["chattr", "+C", path])
        self._run(["fallocate", "-l", f"{size_gib}G", path])
        self._run(["chmod", "600", path])
        self._run(["mkswap", path])

    def swapfile_offset(self, path: str) -> Optional[str]:
        if self.dry_run:
            self._run(["filefrag", "-v", path])
            return None
        out = probe_output(["filefrag", "-v", path])
        if not out:
            logger.warning("filefrag unavailable or failed; hibernation resume offset not recorded")
            return None
        return parse_filefrag_offset(out)


def _read_proc_mounts() -> list[str]:
    try:
        return Path("/proc/mounts").read_text(encoding="utf-8").splitlines()
    except OSError:
        return []

