from __future__ import annotations

import logging
from typing import Callable, List

from ..config import EncryptionStrength, validate_hostname, validate_username
from ..context import InstallContext
from ..errors import AbortError, ConfigurationError
from ..lib.block import StorageHandle, list_disks
from ..lib.storage import plan_storage

logger = logging.getLogger(__name__)


def _describe(disk: StorageHandle) -> str:
    extra = " ".join(p for p in (disk.size, disk.model, "(removable)" if disk.removable else "") if p)
    return f"{disk.path} {extra}".strip()


class ConfigureStep:
    """Collect whatever the configuration is still missing, then confirm it."""

    step_id = "01_configure"
    label = "Configuring installation"
    requires = ()
    produces = ("target_disk",)
    needs_target = False

    def __init__(self, disks: Callable[[], List[StorageHandle]] = list_disks):
        self._disks = disks

    def run(self, ctx: InstallContext) -> None:
        cfg = ctx.config
        ask = ctx.prompter

        if not validate_hostname(cfg.hostname):
            cfg.set(
                "hostname",
                ask.ask("Hostname", "archlinux", validate_hostname, hint="1-63 letters, digits or hyphens."),
            )
        if not validate_username(cfg.username):
            cfg.set(
                "username",
                ask.ask("Username", "", validate_username, hint="Lowercase letter first, then a-z, 0-9, '-' or '_'."),
            )
        if not cfg.user_password:
            cfg.set("user_password", ask.ask_secret(f"Password for {cfg.username}"))

        if not cfg.target_disk:
            self._choose_storage(ctx)

        if not cfg.luks_passphrase:
            cfg.set("luks_passphrase", ask.ask_secret("Disk encryption passphrase"))
        if cfg.secrets_enabled and cfg.secrets_separate_passphrase and not cfg.secrets_passphrase:
            cfg.set("secrets_passphrase", ask.ask_secret("Secrets storage passphrase"))

        # Contradictory disk choices surface here, before anything is written.
        plan_storage(cfg)

        logger.info("Installation summary:")
        for line in cfg.summary_lines():
            logger.info("  %s", line)
        if not ask.confirm("Proceed with these settings?", default=False):
            raise AbortError("Installation cancelled by user")

        ctx.config_store.save(cfg)
        ctx.state.set("target_disk", cfg.target_disk)

    def _choose_storage(self, ctx: InstallContext) -> None:
        cfg = ctx.config
        ask = ctx.prompter

        disks = self._disks()
        if not disks:
            raise ConfigurationError("No disks available for installation")
        by_label = {_describe(d): d for d in disks}

        target = by_label[ask.choose("Select installation disk", list(by_label))]
        cfg.set("target_disk", target.path)

        others = [d for d in disks if d.path != target.path]
        removable = {_describe(d): d for d in others if d.removable}
        if removable and ask.confirm("Place the EFI partition on removable media?", default=False):
            efi = removable[ask.choose("Select removable disk for EFI", list(removable))]
            cfg.set("efi_on_removable", True)
            cfg.set("efi_disk", efi.path)
            if ask.confirm("Create an encrypted secrets partition on the same device?", default=False):
                cfg.set("secrets_on_removable", True)
                cfg.set(
                    "secrets_separate_passphrase",
                    ask.confirm("Use a separate passphrase for secrets storage?", default=False),
                )

        if removable and ask.confirm("Store the LUKS header on removable media?", default=False):
            header = removable[ask.choose("Select removable disk for LUKS header", list(removable))]
            cfg.set("luks_header_on_removable", True)
            cfg.set("luks_header_disk", header.path)

        strength = ask.choose(
            "Encryption strength",
            [s.value for s in EncryptionStrength],
            default=EncryptionStrength.STANDARD.value,
        )
        cfg.set("encryption_strength", strength)
