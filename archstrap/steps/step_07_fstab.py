from __future__ import annotations

import logging

from ..context import InstallContext
from ..lib.storage import harden_fstab, hibernation_swap_gib

logger = logging.getLogger(__name__)

SWAPFILE = "/swap/swapfile"
SWAP_ENTRY = f"{SWAPFILE}\tnone\tswap\tdefaults\t0 0"


class FstabStep:
    step_id = "07_fstab"
    label = "Generating fstab"
    requires = ("luks_uuid",)
    produces = ("swap_size",)
    needs_target = True

    def run(self, ctx: InstallContext) -> None:
        generated = ctx.backend.generate_fstab(ctx.target_root)
        text = harden_fstab(generated + f"\n# Swapfile for hibernation\n{SWAP_ENTRY}\n")
        ctx.write_file("etc/fstab", text)

        # Whole GiB; a sub-GiB reading still gets a usable swapfile.
        ram = max(ctx.signature.ram_gib, 1)
        swap = hibernation_swap_gib(ram)
        ctx.state.set("swap_size", swap)
        logger.info("Swap size for hibernation: %dG (RAM %dG)", swap, ram)
