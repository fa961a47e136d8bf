from __future__ import annotations

import logging

from ..context import InstallContext
from ..lib.provision import create_btrfs
from ..lib.storage import ROOT_MAPPER, SUBVOLUMES

logger = logging.getLogger(__name__)


class FilesystemStep:
    step_id = "04_filesystem"
    label = "Creating BTRFS filesystem"
    requires = ("luks_uuid",)
    produces = ()
    needs_target = True

    def run(self, ctx: InstallContext) -> None:
        create_btrfs(ctx.backend, f"/dev/mapper/{ROOT_MAPPER}", SUBVOLUMES)
        logger.info("Created %d subvolumes", len(SUBVOLUMES))
