from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional, Sequence

from .backend import StorageBackend
from .storage import (
    HEADER_FILENAME,
    ROOT_LABEL,
    ROOT_MAPPER,
    SECRETS_LABEL,
    SECRETS_MAPPER,
    SECRETS_SUBDIRS,
    SUBVOLUMES,
    EncryptionProfile,
    StoragePlan,
    Subvolume,
)

if TYPE_CHECKING:
    from ..context import InstallContext

logger = logging.getLogger(__name__)

HEADER_MOUNT = "/tmp/archstrap-header"
SECRETS_MOUNT = "/tmp/archstrap-secrets"
BTRFS_SCRATCH = "/tmp/archstrap-btrfs"


def partition_disks(backend: StorageBackend, plan: StoragePlan) -> None:
    for layout in plan.layouts:
        backend.wipe(layout.disk)
        backend.create_partition_table(layout)
    backend.format(plan.efi_partition, "vfat", "ESP")


def header_file_path() -> str:
    return f"{HEADER_MOUNT}/{HEADER_FILENAME}"


def open_root(
    backend: StorageBackend,
    root_partition: str,
    passphrase: str,
    header_partition: Optional[str] = None,
) -> str:
    """Open the encrypted root, mounting the detached header's medium for the duration."""

    mapper = f"/dev/mapper/{ROOT_MAPPER}"
    if backend.is_open(ROOT_MAPPER):
        return mapper
    if not header_partition:
        return backend.encrypt_open(root_partition, ROOT_MAPPER, passphrase)

    backend.mount(header_partition, HEADER_MOUNT)
    try:
        return backend.encrypt_open(root_partition, ROOT_MAPPER, passphrase, header_file_path())
    finally:
        backend.unmount(HEADER_MOUNT)


def encrypt_root(
    backend: StorageBackend,
    plan: StoragePlan,
    passphrase: str,
) -> tuple[str, Optional[str]]:
    """Format and open the root container. Returns (luks_uuid, header_file)."""

    if not plan.header_partition:
        logger.info("Creating LUKS2 container on %s", plan.root_partition)
        backend.encrypt_format(plan.root_partition, passphrase, plan.encryption)
        uuid = backend.encrypt_uuid(plan.root_partition)
        backend.encrypt_open(plan.root_partition, ROOT_MAPPER, passphrase)
        return uuid, None

    header = header_file_path()
    logger.info("LUKS header will be stored at: %s", header)
    backend.mount(plan.header_partition, HEADER_MOUNT)
    try:
        backend.encrypt_format(plan.root_partition, passphrase, plan.encryption.with_header(header))
        uuid = backend.encrypt_uuid(plan.root_partition, header)
        backend.encrypt_open(plan.root_partition, ROOT_MAPPER, passphrase, header)
    finally:
        backend.unmount(HEADER_MOUNT)
    return uuid, header


def encrypt_secrets(
    backend: StorageBackend,
    partition: str,
    passphrase: str,
    profile: EncryptionProfile,
) -> str:
    """Create the secrets container with its ext4 filesystem. Leaves it open."""

    logger.info("Creating LUKS2 encrypted container for secrets on %s", partition)
    backend.encrypt_format(partition, passphrase, profile.with_header(None))
    uuid = backend.encrypt_uuid(partition)
    mapper = backend.encrypt_open(partition, SECRETS_MAPPER, passphrase)
    backend.format(mapper, "ext4", SECRETS_LABEL)
    return uuid


def populate_secrets(backend: StorageBackend, uid: int, gid: int) -> None:
    """Create the per-tool directories inside the secrets container, then close it."""

    mapper = f"/dev/mapper/{SECRETS_MAPPER}"
    backend.mount(mapper, SECRETS_MOUNT)
    try:
        backend.make_owned_dir(SECRETS_MOUNT, uid, gid)
        for sub in SECRETS_SUBDIRS:
            backend.make_owned_dir(f"{SECRETS_MOUNT}/{sub}", uid, gid)
    finally:
        backend.unmount(SECRETS_MOUNT)
    backend.encrypt_close(SECRETS_MAPPER)


def create_btrfs(backend: StorageBackend, device: str, subvolumes: Sequence[Subvolume] = SUBVOLUMES) -> None:
    backend.format(device, "btrfs", ROOT_LABEL)
    backend.mount(device, BTRFS_SCRATCH)
    try:
        for sv in subvolumes:
            logger.info("Creating subvolume %s", sv.name)
            backend.create_subvolume(f"{BTRFS_SCRATCH}/{sv.name}")
    finally:
        backend.unmount(BTRFS_SCRATCH)


def mount_target(
    backend: StorageBackend,
    device: str,
    efi_partition: str,
    target_root: str,
    subvolumes: Sequence[Subvolume] = SUBVOLUMES,
) -> None:
    """Mount root first, then the rest of the subvolumes and the ESP at /efi.

    Paths that are already mounted are left alone, so a stage killed part-way
    through can run again.
    """

    ordered = sorted(subvolumes, key=lambda sv: sv.mountpoint.count("/") if sv.mountpoint != "/" else 0)
    mounts = []
    for sv in ordered:
        path = target_root if sv.mountpoint == "/" else f"{target_root}{sv.mountpoint}"
        mounts.append((device, path, sv.mount_options))
    mounts.append((efi_partition, f"{target_root}/efi", "umask=0077"))

    for source, path, options in mounts:
        if backend.is_mounted(path):
            logger.info("Already mounted: %s", path)
            continue
        backend.mount(source, path, options)


def register_target_cleanup(ctx: "InstallContext") -> None:
    backend = ctx.backend
    ctx.cleanup.add("close secrets container", lambda: backend.encrypt_close(SECRETS_MAPPER))
    ctx.cleanup.add("close encrypted root", lambda: backend.encrypt_close(ROOT_MAPPER))
    ctx.cleanup.add("unmount target", lambda: backend.unmount_all(ctx.target_root))


def attach_target(ctx: "InstallContext") -> None:
    """Bring the encrypted root and the mounted tree back after a resume.

    Only what completed stages already created is re-attached: the root
    container once encryption ran, the mounted tree once mounting ran.
    """

    state = ctx.state
    backend = ctx.backend
    completed = set(state.completed_steps)

    if "03_encryption" not in completed:
        return
    register_target_cleanup(ctx)

    if not backend.is_open(ROOT_MAPPER):
        logger.info("Re-opening encrypted root after resume")
        open_root(
            backend,
            state.get("root_partition", ""),
            ctx.config.luks_passphrase,
            state.get("luks_header_partition"),
        )

    if "05_mount" in completed and not backend.is_mounted(ctx.target_root):
        logger.info("Re-mounting target at %s", ctx.target_root)
        mount_target(backend, f"/dev/mapper/{ROOT_MAPPER}", state.get("efi_partition", ""), ctx.target_root)
