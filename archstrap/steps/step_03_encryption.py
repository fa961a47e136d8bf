from __future__ import annotations

import logging

from ..context import InstallContext
from ..lib.provision import encrypt_root, encrypt_secrets, register_target_cleanup
from ..lib.storage import plan_storage

logger = logging.getLogger(__name__)


class EncryptionStep:
    step_id = "03_encryption"
    label = "Setting up disk encryption"
    requires = ("root_partition",)
    produces = ("luks_uuid",)
    needs_target = False

    def run(self, ctx: InstallContext) -> None:
        cfg = ctx.config
        plan = plan_storage(cfg)
        register_target_cleanup(ctx)

        uuid, header = encrypt_root(ctx.backend, plan, cfg.luks_passphrase)
        ctx.state.set("luks_uuid", uuid)
        logger.info("LUKS UUID: %s", uuid)
        if header:
            ctx.state.set("luks_header_file", header)

        secrets = ctx.state.get("secrets_partition")
        if secrets:
            suuid = encrypt_secrets(ctx.backend, secrets, cfg.effective_secrets_passphrase, plan.encryption)
            ctx.state.set("secrets_uuid", suuid)
            logger.info("Secrets LUKS UUID: %s", suuid)
