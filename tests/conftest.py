from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import pytest

from archstrap.config import InstallConfig
from archstrap.context import InstallContext
from archstrap.errors import CommandError
from archstrap.lib.command import CmdResult
from archstrap.lib.hwdetect import BusSnapshot, HardwareSignature, detect_signature
from archstrap.lib.storage import DiskLayout, EncryptionProfile
from archstrap.state_store import ConfigStore, InstallState, StateStore

GENERATED_FSTAB = """\
# /dev/mapper/cryptroot LABEL=archroot
UUID=abcd\t/\tbtrfs\trw,noatime,compress=zstd:1,discard=async,subvol=/@\t0 0
UUID=abcd\t/home\tbtrfs\trw,noatime,compress=zstd:1,discard=async,subvol=/@home\t0 0
UUID=abcd\t/.snapshots\tbtrfs\trw,noatime,compress=zstd:1,discard=async,subvol=/@snapshots\t0 0
UUID=abcd\t/swap\tbtrfs\trw,noatime,nodatacow,discard=async,subvol=/@swap\t0 0
UUID=abcd\t/var/cache\tbtrfs\trw,noatime,compress=zstd:1,discard=async,subvol=/@var_cache\t0 0
UUID=abcd\t/var/log\tbtrfs\trw,noatime,compress=zstd:1,discard=async,subvol=/@var_log\t0 0
UUID=EF01\t/efi\tvfat\trw,umask=0077\t0 2
"""


class RecordingBackend:
    """In-memory StorageBackend that records every call in order."""

    def __init__(self, *, dry_run: bool = False, fail_on: Optional[str] = None):
        self.dry_run = dry_run
        self.fail_on = fail_on
        self.calls: List[Tuple[str, Tuple[Any, ...]]] = []
        self.opened: set[str] = set()
        self.mounted: set[str] = set()
        self.chroot_results: Dict[Tuple[str, ...], CmdResult] = {}
        self.fstab = GENERATED_FSTAB
        self.offset: Optional[str] = "34816"

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))
        if self.fail_on == name:
            raise CommandError([name, *map(str, args)], 1, "simulated failure")

    def names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def args_of(self, name: str) -> List[Tuple[Any, ...]]:
        return [args for n, args in self.calls if n == name]

    def chroot_argvs(self) -> List[List[str]]:
        return [list(args[1]) for args in self.args_of("run_in_target_root")]

    def wipe(self, disk: str) -> None:
        self._record("wipe", disk)

    def create_partition_table(self, layout: DiskLayout) -> None:
        self._record("create_partition_table", layout)

    def format(self, partition: str, fs_type: str, label: str) -> None:
        self._record("format", partition, fs_type, label)

    def encrypt_format(self, partition: str, passphrase: str, profile: EncryptionProfile) -> None:
        self._record("encrypt_format", partition, passphrase, profile)

    def encrypt_open(self, partition: str, name: str, passphrase: str, header: Optional[str] = None) -> str:
        self._record("encrypt_open", partition, name, passphrase, header)
        self.opened.add(name)
        return f"/dev/mapper/{name}"

    def encrypt_close(self, name: str) -> None:
        self._record("encrypt_close", name)
        self.opened.discard(name)

    def encrypt_uuid(self, partition: str, header: Optional[str] = None) -> str:
        self._record("encrypt_uuid", partition, header)
        return f"uuid-{os.path.basename(partition)}"

    def is_open(self, name: str) -> bool:
        return name in self.opened

    def mount(self, device: str, path: str, options: Optional[str] = None) -> None:
        self._record("mount", device, path, options)
        self.mounted.add(path)

    def unmount(self, path: str) -> None:
        self._record("unmount", path)
        self.mounted.discard(path)

    def unmount_all(self, path: str) -> None:
        self._record("unmount_all", path)
        self.mounted = {m for m in self.mounted if not m.startswith(path)}

    def is_mounted(self, path: str) -> bool:
        return path in self.mounted

    def create_subvolume(self, path: str) -> None:
        self._record("create_subvolume", path)

    def make_owned_dir(self, path: str, uid: int, gid: int, mode: int = 0o700) -> None:
        self._record("make_owned_dir", path, uid, gid, mode)

    def bootstrap(self, root: str, packages: Sequence[str]) -> None:
        self._record("bootstrap", root, tuple(packages))

    def install_packages(self, root: str, packages: Sequence[str]) -> None:
        self._record("install_packages", root, tuple(packages))

    def run_in_target_root(
        self, root: str, argv: Sequence[str], *, check: bool = True, input_text: Optional[str] = None
    ) -> CmdResult:
        self._record("run_in_target_root", root, tuple(argv))
        result = self.chroot_results.get(tuple(argv), CmdResult(list(argv), 0, "", ""))
        if check and result.returncode != 0:
            raise CommandError(list(argv), result.returncode, result.stderr)
        return result

    def generate_fstab(self, root: str) -> str:
        self._record("generate_fstab", root)
        return self.fstab

    def create_swapfile(self, path: str, size_gib: int) -> None:
        self._record("create_swapfile", path, size_gib)

    def swapfile_offset(self, path: str) -> Optional[str]:
        self._record("swapfile_offset", path)
        return self.offset


class ScriptedPrompter:
    """Answers prompts from a table; records what was asked."""

    def __init__(
        self,
        answers: Optional[Dict[str, str]] = None,
        *,
        secret: str = "correct horse",
        confirm: bool = True,
    ):
        self.answers = dict(answers or {})
        self.secret = secret
        self.confirm_answer = confirm
        self.asked: List[str] = []

    def ask(self, prompt: str, default: str = "", validator: Optional[Callable[[str], bool]] = None, hint: str = "") -> str:
        self.asked.append(prompt)
        return self.answers.get(prompt, default)

    def ask_secret(self, prompt: str) -> str:
        self.asked.append(prompt)
        return self.answers.get(prompt, self.secret)

    def confirm(self, prompt: str, default: bool = False, timeout: Optional[float] = None) -> bool:
        self.asked.append(prompt)
        return self.confirm_answer

    def choose(self, prompt: str, options: Sequence[str], default: Optional[str] = None) -> str:
        self.asked.append(prompt)
        wanted = self.answers.get(prompt)
        for opt in options:
            if wanted and opt.startswith(wanted):
                return opt
        return default if default in options else options[0]


def meminfo(gib: int) -> str:
    return f"MemTotal:       {gib * 1024 * 1024} kB\nMemFree:        1024 kB\n"


INTEL_CPU = "processor\t: 0\nvendor_id\t: GenuineIntel\nmodel name\t: Intel(R) Core(TM) i7\n"
AMD_CPU = "processor\t: 0\nvendor_id\t: AuthenticAMD\nmodel name\t: AMD Ryzen 7\n"

QCA6390_PCI = """\
00:02.0 VGA compatible controller [0300]: Intel Corporation TigerLake-LP GT2 [Iris Xe Graphics] [8086:9a49] (rev 01)
\tKernel driver in use: i915
55:00.0 Network controller [0280]: Qualcomm QCA6390 Wireless Network Adapter [17cb:1101]
\tSubsystem: Qualcomm Device [17cb:0108]
\tKernel driver in use: ath11k_pci
"""

NVIDIA_HYBRID_PCI = """\
00:02.0 VGA compatible controller [0300]: Intel Corporation Alder Lake-P GT2 [8086:46a6] (rev 0c)
\tKernel driver in use: i915
01:00.0 3D controller [0302]: NVIDIA Corporation GA107M [GeForce RTX 3050 Mobile] [10de:25a2] (rev a1)
\tKernel driver in use: nvidia
"""


@pytest.fixture
def snapshot_factory() -> Callable[..., BusSnapshot]:
    def make(**kwargs: Any) -> BusSnapshot:
        kwargs.setdefault("cpuinfo", INTEL_CPU)
        kwargs.setdefault("meminfo", meminfo(16))
        return BusSnapshot(**kwargs)

    return make


@pytest.fixture
def plain_signature() -> HardwareSignature:
    return detect_signature(BusSnapshot(cpuinfo=INTEL_CPU, meminfo=meminfo(16)))


@pytest.fixture
def answered_config() -> InstallConfig:
    return InstallConfig(
        hostname="archbox",
        username="alice",
        user_password="pw",
        target_disk="/dev/sda",
        luks_passphrase="correct horse",
    )


@pytest.fixture
def make_ctx(tmp_path: Path, plain_signature: HardwareSignature):
    def make(
        config: Optional[InstallConfig] = None,
        *,
        state: Optional[InstallState] = None,
        backend: Optional[RecordingBackend] = None,
        prompter: Optional[ScriptedPrompter] = None,
        signature: Optional[HardwareSignature] = None,
        dry_run: bool = False,
    ) -> InstallContext:
        target = tmp_path / "mnt"
        target.mkdir(exist_ok=True)
        sig = signature or plain_signature
        return InstallContext(
            config=config or InstallConfig(),
            state=state or InstallState(),
            backend=backend or RecordingBackend(dry_run=dry_run),
            prompter=prompter or ScriptedPrompter(),
            config_store=ConfigStore(str(tmp_path / "archstrap.conf"), dry_run=dry_run),
            state_store=StateStore(str(tmp_path / "archstrap.state"), dry_run=dry_run),
            target_root=str(target),
            dry_run=dry_run,
            hardware_probe=lambda: sig,
        )

    return make
