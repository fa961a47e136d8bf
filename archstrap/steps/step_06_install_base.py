from __future__ import annotations

import logging
from pathlib import Path
from typing import List

from ..config import InstallConfig
from ..context import InstallContext
from ..lib.env import PATHS
from ..lib.hwdetect import microcode_package
from ..state_store import ConfigStore

logger = logging.getLogger(__name__)

BASE_PACKAGES = (
    "base",
    "linux-firmware",
    "btrfs-progs",
    "cryptsetup",
    "systemd-ukify",
    "efibootmgr",
    "sudo",
    "zsh",
    "vim",
    "less",
    "man-db",
    "man-pages",
    "dosfstools",
    "e2fsprogs",
    "usbutils",
    "pciutils",
    "snapper",
    "snap-pac",
)


def base_packages(cfg: InstallConfig, microcode: str | None = None) -> List[str]:
    kernel = "linux-hardened" if cfg.use_hardened_kernel else "linux"
    packages = [*BASE_PACKAGES, kernel, f"{kernel}-headers"]
    if cfg.enable_firewall:
        packages += ["nftables", "iptables-nft"]
    if cfg.enable_apparmor:
        packages.append("apparmor")
    if microcode:
        packages.append(microcode)
    return packages


class InstallBaseStep:
    step_id = "06_install_base"
    label = "Installing base system"
    requires = ("luks_uuid",)
    produces = ()
    needs_target = True

    def run(self, ctx: InstallContext) -> None:
        packages = base_packages(ctx.config, microcode_package(ctx.signature))
        logger.info("Installing %d base packages with pacstrap", len(packages))
        ctx.backend.bootstrap(ctx.target_root, packages)

        # Copy of the configuration for the installed system; redacted at finalize.
        ConfigStore(str(ctx.target_path(PATHS.target_config)), dry_run=ctx.dry_run).save(ctx.config)

        resolv = Path("/etc/resolv.conf")
        if resolv.exists():
            ctx.write_file("etc/resolv.conf", resolv.read_text(encoding="utf-8"))
