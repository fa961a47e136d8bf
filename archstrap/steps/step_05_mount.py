from __future__ import annotations

from ..context import InstallContext
from ..lib.provision import mount_target
from ..lib.storage import ROOT_MAPPER, SUBVOLUMES


class MountStep:
    step_id = "05_mount"
    label = "Mounting filesystems"
    requires = ("efi_partition", "luks_uuid")
    produces = ()
    needs_target = True

    def run(self, ctx: InstallContext) -> None:
        mount_target(
            ctx.backend,
            f"/dev/mapper/{ROOT_MAPPER}",
            ctx.state.get("efi_partition", ""),
            ctx.target_root,
            SUBVOLUMES,
        )
