from __future__ import annotations

import logging
import re

from ..context import InstallContext

logger = logging.getLogger(__name__)


def enable_locale(locale_gen: str, locale: str) -> str:
    """Uncomment `locale` (and en_US.UTF-8 as a fallback) in locale.gen text."""

    wanted = {locale, "en_US.UTF-8"}
    out = []
    for line in locale_gen.splitlines():
        m = re.match(r"^#\s*(\S+)(\s+.*)?$", line)
        if m and m.group(1) in wanted:
            line = line.lstrip("#").lstrip()
        out.append(line)
    return "\n".join(out) + "\n"


class SystemStep:
    step_id = "09_system"
    label = "Configuring locale, time and hostname"
    requires = ()
    produces = ()
    needs_target = True

    def run(self, ctx: InstallContext) -> None:
        cfg = ctx.config

        logger.info("Setting timezone to %s", cfg.timezone)
        ctx.chroot(["ln", "-sf", f"/usr/share/zoneinfo/{cfg.timezone}", "/etc/localtime"])
        ctx.chroot(["hwclock", "--systohc"])

        logger.info("Configuring locale: %s", cfg.locale)
        ctx.edit_file("etc/locale.gen", lambda text: enable_locale(text, cfg.locale))
        ctx.chroot(["locale-gen"])
        ctx.write_file("etc/locale.conf", f"LANG={cfg.locale}\n")
        ctx.write_file("etc/vconsole.conf", f"KEYMAP={cfg.keymap}\n")

        logger.info("Setting hostname: %s", cfg.hostname)
        ctx.write_file("etc/hostname", f"{cfg.hostname}\n")
        ctx.write_file(
            "etc/hosts",
            "127.0.0.1   localhost\n"
            "::1         localhost\n"
            f"127.0.1.1   {cfg.hostname}.localdomain {cfg.hostname}\n",
        )
