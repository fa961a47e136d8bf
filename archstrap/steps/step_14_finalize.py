from __future__ import annotations

import logging

from ..context import InstallContext
from ..lib.env import PATHS
from ..lib.storage import ROOT_MAPPER

logger = logging.getLogger(__name__)


class FinalizeStep:
    step_id = "14_finalize"
    label = "Finalizing installation"
    requires = ()
    produces = ()
    needs_target = True

    def run(self, ctx: InstallContext) -> None:
        ctx.chroot(["systemctl", "enable", "systemd-oomd.service"])
        ctx.chroot(["systemctl", "enable", "systemd-boot-update.service"], check=False)

        logger.info("Clearing sensitive configuration data")
        ctx.config_store.redact(str(ctx.target_path(PATHS.target_config)))

        logger.info("Cleaning package cache")
        ctx.chroot(["pacman", "-Scc", "--noconfirm"], check=False)
        ctx.chroot(["sync"], check=False)

        logger.info("Unmounting filesystems")
        ctx.backend.unmount_all(ctx.target_root)
        ctx.backend.encrypt_close(ROOT_MAPPER)
        logger.info("Installation complete")
