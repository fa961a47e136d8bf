from __future__ import annotations

import logging
import re

from ..context import InstallContext
from ..lib.bootloader import KernelCmdline, base_cmdline, write_cmdline
from ..lib.hwdetect import HardwareSignature
from ..lib.storage import HEADER_FILENAME

logger = logging.getLogger(__name__)

UKI_DIR = "efi/EFI/Linux"
UKI_LOADER = "\\EFI\\Linux\\arch-linux.efi"


def initramfs_modules(sig: HardwareSignature) -> list[str]:
    modules = ["btrfs"]
    if "nvidia" in sig.gpu_vendors:
        modules += ["nvidia", "nvidia_modeset", "nvidia_uvm", "nvidia_drm"]
    if "intel" in sig.gpu_vendors:
        modules.append("i915")
    if "amd" in sig.gpu_vendors:
        modules.append("amdgpu")
    return modules


def initramfs_hooks(apparmor: bool) -> list[str]:
    hooks = ["systemd", "autodetect", "microcode", "modconf", "kms", "keyboard", "sd-vconsole"]
    if apparmor:
        hooks.append("apparmor")
    return hooks + ["sd-encrypt", "block", "filesystems", "fsck"]


def partition_number(partition: str) -> str:
    m = re.search(r"(\d+)$", partition)
    return m.group(1) if m else "1"


class BootStep:
    step_id = "13_boot"
    label = "Configuring boot"
    requires = ("luks_uuid", "efi_partition")
    produces = ()
    needs_target = True

    def run(self, ctx: InstallContext) -> None:
        cfg = ctx.config
        state = ctx.state
        kernel = "linux-hardened" if cfg.use_hardened_kernel else "linux"

        header_option = None
        if state.has("luks_header_partition"):
            header_option = f"/{HEADER_FILENAME}:{state.get('luks_header_partition')}"

        cmdline = base_cmdline(
            luks_uuid=state.get("luks_uuid", ""),
            swap_offset=state.get("swap_offset"),
            resume_device=state.get("resume_device"),
            apparmor=cfg.enable_apparmor,
            header_file=header_option,
        )
        # Quirk parameters recorded earlier, serialized together exactly once.
        cmdline.extend(KernelCmdline.parse(state.get("kernel_params")).fragments)
        write_cmdline(ctx.target_root, cmdline, dry_run=ctx.dry_run)

        logger.info("Configuring mkinitcpio")
        ctx.write_file(
            "etc/mkinitcpio.conf",
            f"MODULES=({' '.join(initramfs_modules(ctx.signature))})\n"
            "BINARIES=()\n"
            "FILES=()\n"
            f"HOOKS=({' '.join(initramfs_hooks(cfg.enable_apparmor))})\n",
        )
        ctx.write_file(
            f"etc/mkinitcpio.d/{kernel}.preset",
            'ALL_config="/etc/mkinitcpio.conf"\n'
            f'ALL_kver="/boot/vmlinuz-{kernel}"\n'
            "PRESETS=('default' 'fallback')\n"
            f'default_uki="/{UKI_DIR}/arch-linux.efi"\n'
            f'fallback_uki="/{UKI_DIR}/arch-linux-fallback.efi"\n'
            'fallback_options="-S autodetect"\n',
        )
        ctx.chroot(["mkdir", "-p", f"/{UKI_DIR}"])

        logger.info("Generating Unified Kernel Image")
        ctx.chroot(["mkinitcpio", "-P"])

        logger.info("Creating UEFI boot entry")
        ctx.chroot(
            [
                "efibootmgr",
                "--create",
                "--disk",
                cfg.effective_efi_disk,
                "--part",
                partition_number(state.get("efi_partition", "")),
                "--label",
                "Arch Linux",
                "--loader",
                UKI_LOADER,
                "--unicode",
            ]
        )
