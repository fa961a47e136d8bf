from __future__ import annotations

import logging

from ..context import InstallContext
from ..lib.storage import ROOT_MAPPER
from .step_07_fstab import SWAPFILE

logger = logging.getLogger(__name__)


class SwapfileStep:
    step_id = "08_swapfile"
    label = "Creating hibernation swapfile"
    requires = ("swap_size",)
    produces = ()
    needs_target = True

    def run(self, ctx: InstallContext) -> None:
        path = str(ctx.target_path(SWAPFILE))
        ctx.backend.create_swapfile(path, int(ctx.state.get("swap_size", "0")))

        offset = ctx.backend.swapfile_offset(path)
        if offset:
            ctx.state.set("swap_offset", offset)
            ctx.state.set("resume_device", f"/dev/mapper/{ROOT_MAPPER}")
            logger.info("Swapfile offset: %s", offset)
        else:
            logger.warning("No resume offset recorded; hibernation will need manual setup")
