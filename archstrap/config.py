from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)


class EncryptionStrength(str, enum.Enum):
    STANDARD = "standard"
    HIGH = "high"
    MAXIMUM = "maximum"


SENSITIVE_KEYS = ("luks_passphrase", "secrets_passphrase", "user_password")

_HOSTNAME_RE = re.compile(r"^[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")
_USERNAME_RE = re.compile(r"^[a-z][a-z0-9_-]{0,31}$")


def validate_hostname(hostname: str) -> bool:
    """1-63 characters, letters/digits/hyphens, no leading or trailing hyphen."""
    return bool(_HOSTNAME_RE.match(hostname or ""))


def validate_username(username: str) -> bool:
    """Starts with a lowercase letter, then lowercase letters, digits, '-' or '_'; at most 32."""
    return bool(_USERNAME_RE.match(username or ""))


def decode_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def encode_bool(value: bool) -> str:
    return "1" if value else "0"


@dataclass
class InstallConfig:
    """User intent for one installation.

    Values are typed in memory; `to_record()` / `from_record()` convert to and
    from the flat string map that gets persisted.
    """

    hostname: str = ""
    username: str = ""
    timezone: str = "UTC"
    locale: str = "en_US.UTF-8"
    keymap: str = "us"

    target_disk: str = ""
    efi_disk: str = ""
    efi_on_removable: bool = False
    luks_header_disk: str = ""
    luks_header_on_removable: bool = False
    secrets_on_removable: bool = False
    secrets_separate_passphrase: bool = False
    encryption_strength: EncryptionStrength = EncryptionStrength.STANDARD

    luks_passphrase: str = field(default="", repr=False)
    secrets_passphrase: str = field(default="", repr=False)
    user_password: str = field(default="", repr=False)

    use_hardened_kernel: bool = True
    enable_firewall: bool = True
    enable_apparmor: bool = True
    install_audio: bool = True
    install_bluetooth: bool = True

    @classmethod
    def keys(cls) -> tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """String view of a value, as it would be persisted."""
        if key not in self.keys():
            return default
        value = getattr(self, key)
        if isinstance(value, bool):
            return encode_bool(value)
        if isinstance(value, EncryptionStrength):
            return value.value
        if value == "" and default is not None:
            return default
        return value

    def set(self, key: str, value: Any) -> None:
        """Decode a value into its typed field."""
        if key not in self.keys():
            raise KeyError(f"Unknown configuration key: {key}")
        current = getattr(self, key)
        if isinstance(current, bool):
            decoded: Any = decode_bool(value)
        elif isinstance(current, EncryptionStrength):
            try:
                raw = value.value if isinstance(value, EncryptionStrength) else str(value)
                decoded = EncryptionStrength(raw.strip().lower())
            except ValueError:
                logger.warning("Unknown encryption_strength %r, using standard", value)
                decoded = EncryptionStrength.STANDARD
        else:
            decoded = "" if value is None else str(value)
        setattr(self, key, decoded)
        if key in SENSITIVE_KEYS:
            logger.debug("Config set: %s=<redacted>", key)
        else:
            logger.debug("Config set: %s=%s", key, self.get(key))

    def to_record(self) -> Dict[str, str]:
        return {k: self.get(k) or "" for k in self.keys()}

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "InstallConfig":
        cfg = cls()
        cfg.update(record)
        return cfg

    def update(self, record: Mapping[str, Any]) -> None:
        known = set(self.keys())
        for key, value in record.items():
            if key not in known:
                logger.debug("Ignoring unknown configuration key %s", key)
                continue
            self.set(key, value)

    @property
    def effective_efi_disk(self) -> str:
        if self.efi_on_removable and self.efi_disk:
            return self.efi_disk
        return self.target_disk

    @property
    def secrets_enabled(self) -> bool:
        # The secrets partition lives in the space left on the removable EFI disk.
        return self.efi_on_removable and self.secrets_on_removable

    @property
    def effective_secrets_passphrase(self) -> str:
        if self.secrets_separate_passphrase and self.secrets_passphrase:
            return self.secrets_passphrase
        return self.luks_passphrase

    def summary_lines(self) -> list[str]:
        enc = {
            EncryptionStrength.STANDARD: "Standard",
            EncryptionStrength.HIGH: "High (Argon2id 4GB/5s)",
            EncryptionStrength.MAXIMUM: "Maximum (integrity + Argon2id 4GB/5s)",
        }[self.encryption_strength]
        lines = [
            f"Hostname:        {self.hostname}",
            f"Username:        {self.username}",
            f"Timezone:        {self.timezone}",
            f"Locale:          {self.locale}",
            f"Target disk:     {self.target_disk}",
            f"EFI partition:   {self.effective_efi_disk} ({'removable' if self.efi_on_removable else 'internal'})",
            "LUKS header:     "
            + (f"{self.luks_header_disk} (removable)" if self.luks_header_on_removable else "On root partition"),
            f"Encryption:      {enc}",
            f"Secrets storage: {'removable' if self.secrets_enabled else 'none'}",
            f"Kernel:          {'linux-hardened' if self.use_hardened_kernel else 'linux'}",
            f"Firewall:        {'nftables' if self.enable_firewall else 'disabled'}",
            f"AppArmor:        {'enabled' if self.enable_apparmor else 'disabled'}",
        ]
        return lines
