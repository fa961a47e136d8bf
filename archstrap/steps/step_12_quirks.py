from __future__ import annotations

import logging

from ..context import InstallContext
from ..lib import quirks
from ..lib.bootloader import KernelCmdline

logger = logging.getLogger(__name__)


class QuirksStep:
    step_id = "12_quirks"
    label = "Applying hardware quirks"
    requires = ()
    produces = ()
    needs_target = True

    def run(self, ctx: InstallContext) -> None:
        found = quirks.detect(ctx.signature)
        if not found:
            logger.info("No hardware quirks detected")
            return
        for line in quirks.describe(found):
            logger.info("Detected quirk %s", line)

        cmdline = KernelCmdline.parse(ctx.state.get("kernel_params"))
        target = quirks.QuirkTarget(ctx.target_root, cmdline, ctx.backend, ctx.dry_run)
        applied = quirks.apply(target, found)

        ctx.state.set("kernel_params", cmdline.render())
        ctx.state.set("applied_quirks", ",".join(q.value for q in applied))
