from __future__ import annotations

import logging

from ..context import InstallContext
from ..errors import AbortError
from ..lib.provision import partition_disks
from ..lib.storage import plan_storage

logger = logging.getLogger(__name__)

CONFIRM_TIMEOUT = 60


class PartitionStep:
    step_id = "02_partition"
    label = "Partitioning disks"
    requires = ("target_disk",)
    produces = ("efi_partition", "root_partition")
    needs_target = False

    def run(self, ctx: InstallContext) -> None:
        plan = plan_storage(ctx.config)

        disks = ", ".join(layout.disk for layout in plan.layouts)
        logger.warning("ALL DATA on %s will be destroyed", disks)
        if not ctx.prompter.confirm(f"Erase {disks} and continue?", default=False, timeout=CONFIRM_TIMEOUT):
            raise AbortError("Partitioning declined")

        partition_disks(ctx.backend, plan)

        ctx.state.set("efi_partition", plan.efi_partition)
        ctx.state.set("root_partition", plan.root_partition)
        if plan.secrets_partition:
            ctx.state.set("secrets_partition", plan.secrets_partition)
        if plan.header_partition:
            ctx.state.set("luks_header_partition", plan.header_partition)
        logger.info("EFI: %s, root: %s", plan.efi_partition, plan.root_partition)
