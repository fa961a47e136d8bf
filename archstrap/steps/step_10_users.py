from __future__ import annotations

import logging
import os
import string

from ..context import InstallContext
from ..lib import snapper
from ..lib.provision import populate_secrets
from ..lib.storage import SECRETS_MAPPER, SECRETS_SUBDIRS

logger = logging.getLogger(__name__)

# Owner used when ids cannot be read back (dry-run).
DEFAULT_UID = 1000

_SECRETS_UNIT = """\
[Unit]
Description=Encrypted Secrets Storage
After=systemd-cryptsetup@{mapper}.service
Requires=systemd-cryptsetup@{mapper}.service
ConditionPathExists=/dev/mapper/{mapper}

[Mount]
What=/dev/mapper/{mapper}
Where={where}
Type=ext4
Options=defaults,noatime

[Install]
WantedBy=multi-user.target
"""

_ESCAPE_OK = set(string.ascii_letters + string.digits + ":_.")


def systemd_escape_path(path: str) -> str:
    """Equivalent of `systemd-escape --path`."""

    trimmed = path.strip("/")
    if not trimmed:
        return "-"
    out = []
    for i, ch in enumerate(trimmed):
        if ch == "/":
            out.append("-")
        elif ch in _ESCAPE_OK and not (i == 0 and ch == "."):
            out.append(ch)
        else:
            out.extend(f"\\x{b:02x}" for b in ch.encode("utf-8"))
    return "".join(out)


def crypttab_entry(uuid: str, separate_passphrase: bool) -> str:
    # A separate passphrase means it is unlocked on demand, not at boot.
    opts = "luks,noauto,nofail" if separate_passphrase else "luks,nofail"
    return f"{SECRETS_MAPPER} UUID={uuid} none {opts}"


def enable_wheel(sudoers: str) -> str:
    return sudoers.replace("# %wheel ALL=(ALL:ALL) ALL", "%wheel ALL=(ALL:ALL) ALL")


class UsersStep:
    step_id = "10_users"
    label = "Creating users"
    requires = ()
    produces = ()
    needs_target = True

    def run(self, ctx: InstallContext) -> None:
        cfg = ctx.config
        user = cfg.username

        logger.info("Creating user: %s (with sudo privileges)", user)
        r = ctx.chroot(["id", "-u", user], check=False)
        if r.returncode != 0 or ctx.dry_run:
            ctx.chroot(["useradd", "-m", "-G", "wheel", "-s", "/bin/zsh", user])
        ctx.chroot(["chpasswd"], input_text=f"{user}:{cfg.user_password}\n")
        ctx.edit_file("etc/sudoers", enable_wheel)

        logger.info("Locking root account (use sudo for administrative tasks)")
        ctx.chroot(["passwd", "--lock", "root"])

        self._snapshot_home(ctx)

        if ctx.state.has("secrets_uuid"):
            self._setup_secrets(ctx)

    def _ids(self, ctx: InstallContext) -> tuple[int, int]:
        user = ctx.config.username
        uid = ctx.chroot(["id", "-u", user], check=False).stdout.strip()
        gid = ctx.chroot(["id", "-g", user], check=False).stdout.strip()
        if not (uid.isdigit() and gid.isdigit()):
            return DEFAULT_UID, DEFAULT_UID
        return int(uid), int(gid)

    def _snapshot_home(self, ctx: InstallContext) -> None:
        """Make the home directory its own subvolume with a snapper config."""
        user = ctx.config.username
        home = f"/home/{user}"
        logger.info("Setting up snapper for %s", home)

        r = ctx.chroot(["btrfs", "subvolume", "show", home], check=False)
        if r.returncode != 0 or ctx.dry_run:
            staging = f"/home/.{user}.convert"
            ctx.chroot(["mv", home, staging])
            ctx.chroot(["btrfs", "subvolume", "create", home])
            ctx.chroot(["cp", "-a", "--reflink=auto", f"{staging}/.", home])
            ctx.chroot(["rm", "-rf", staging])

        snapshots = f"{home}/.snapshots"
        r = ctx.chroot(["btrfs", "subvolume", "show", snapshots], check=False)
        if r.returncode != 0 or ctx.dry_run:
            ctx.chroot(["btrfs", "subvolume", "create", snapshots])
        ctx.chroot(["chown", "-R", f"{user}:{user}", home])
        ctx.chroot(["chmod", "750", snapshots])

        config = snapper.render_config(home, allow_users=[user], hourly=10, daily=10)
        ctx.write_file(f"{snapper.CONFIG_DIR}/{user}", config, mode=0o640)
        conf_d = ctx.target_path(snapper.CONF_D)
        existing = conf_d.read_text(encoding="utf-8") if conf_d.exists() else ""
        ctx.write_file(snapper.CONF_D, snapper.with_config(existing, user))

    def _setup_secrets(self, ctx: InstallContext) -> None:
        cfg = ctx.config
        user = cfg.username
        backend = ctx.backend
        uid, gid = self._ids(ctx)
        logger.info("Configuring encrypted secrets storage for %s", user)

        if not backend.is_open(SECRETS_MAPPER):
            backend.encrypt_open(ctx.state.get("secrets_partition", ""), SECRETS_MAPPER, cfg.effective_secrets_passphrase)
        populate_secrets(backend, uid, gid)

        where = f"/home/{user}/.secrets"
        backend.make_owned_dir(str(ctx.target_path(where)), uid, gid)

        uuid = ctx.state.get("secrets_uuid", "")
        ctx.append_line("etc/crypttab", crypttab_entry(uuid, cfg.secrets_separate_passphrase))
        ctx.append_line("etc/fstab", "# Encrypted secrets storage on removable device")
        ctx.append_line("etc/fstab", f"/dev/mapper/{SECRETS_MAPPER} {where} ext4 defaults,noauto,nofail,user 0 2")
        ctx.write_file(
            f"etc/systemd/system/{systemd_escape_path(where)}.mount",
            _SECRETS_UNIT.format(mapper=SECRETS_MAPPER, where=where),
        )

        home = ctx.target_path(f"home/{user}")
        for sub in SECRETS_SUBDIRS:
            link = home / f".{sub}"
            if ctx.dry_run:
                logger.info("Would link %s -> .secrets/%s", str(link), sub)
                continue
            if link.is_symlink() or link.exists():
                continue
            os.symlink(f".secrets/{sub}", link)
            ctx.chroot(["chown", "-h", f"{user}:{user}", f"/home/{user}/.{sub}"])
        logger.info("Secrets storage configured at %s", where)
