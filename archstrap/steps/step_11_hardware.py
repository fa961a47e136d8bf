from __future__ import annotations

import logging
from typing import List, Tuple

from ..config import InstallConfig
from ..context import InstallContext
from ..lib import hardening, snapper
from ..lib.hwdetect import HardwareSignature, hardware_packages

logger = logging.getLogger(__name__)

_VM_SERVICES = {
    "oracle": ("vboxservice.service",),
    "vmware": ("vmtoolsd.service", "vmware-vmblock-fuse.service"),
    "kvm": ("qemu-guest-agent.service",),
    "qemu": ("qemu-guest-agent.service",),
}


def hardware_services(sig: HardwareSignature, cfg: InstallConfig) -> Tuple[List[str], List[str]]:
    """(system units, global user units) to enable for the detected hardware."""

    system: List[str] = ["fstrim.timer"]
    user: List[str] = []
    if cfg.install_audio and sig.has_audio:
        user += ["pipewire.socket", "pipewire-pulse.socket", "wireplumber.service"]
    if cfg.install_bluetooth and sig.has_bluetooth:
        system.append("bluetooth.service")
    system += _VM_SERVICES.get(sig.vm_type, ())
    if sig.is_laptop:
        system.append("power-profiles-daemon.service")
        if sig.cpu_vendor == "intel":
            system.append("thermald.service")
    if sig.has_fingerprint:
        system.append("fprintd.service")
    if sig.has_thunderbolt:
        system.append("bolt.service")
    if sig.has_smartcard:
        system.append("pcscd.socket")
    if cfg.enable_firewall:
        system.append("nftables.service")
    if cfg.enable_apparmor:
        system.append("apparmor.service")
    return system, user


class HardwareStep:
    step_id = "11_hardware"
    label = "Configuring hardware"
    requires = ()
    produces = ()
    needs_target = True

    def run(self, ctx: InstallContext) -> None:
        sig = ctx.signature
        cfg = ctx.config

        packages = hardware_packages(sig, audio=cfg.install_audio, bluetooth=cfg.install_bluetooth)
        ctx.backend.install_packages(ctx.target_root, packages)

        if "nvidia" in sig.gpu_vendors:
            logger.info("Configuring NVIDIA drivers")
            ctx.write_file("etc/modprobe.d/nvidia.conf", "options nvidia_drm modeset=1 fbdev=1\n")

        system, user = hardware_services(sig, cfg)
        for unit in system:
            ctx.chroot(["systemctl", "enable", unit])
        for unit in user:
            ctx.chroot(["systemctl", "--global", "enable", unit])

        self._configure_snapper(ctx)
        self._harden(ctx)

    def _configure_snapper(self, ctx: InstallContext) -> None:
        logger.info("Configuring snapper for the root subvolume")
        ctx.write_file(f"{snapper.CONFIG_DIR}/{snapper.ROOT_CONFIG}", snapper.render_config("/"), mode=0o640)
        conf_d = ctx.target_path(snapper.CONF_D)
        existing = conf_d.read_text(encoding="utf-8") if conf_d.exists() else ""
        ctx.write_file(snapper.CONF_D, snapper.with_config(existing, snapper.ROOT_CONFIG))
        ctx.chroot(["chmod", "750", "/.snapshots"])
        ctx.chroot(["chown", "root:root", "/.snapshots"])
        for timer in snapper.TIMERS:
            ctx.chroot(["systemctl", "enable", timer])

    def _harden(self, ctx: InstallContext) -> None:
        logger.info("Applying security hardening")
        for item in hardening.FILES:
            ctx.write_file(item.path, item.contents, mode=item.mode)
        for path, mode in hardening.RESTRICTED_DIRS:
            ctx.chroot(["chmod", mode, path])
