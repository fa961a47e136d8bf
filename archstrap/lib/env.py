from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Paths:
    target_root: str = "/mnt"
    state_default: str = "/tmp/archstrap.state"
    config_default: str = "/tmp/archstrap.conf"
    log_default: str = "/tmp/archstrap.log"
    # Copy of the configuration kept inside the installed system.
    target_config: str = "/root/archstrap/archstrap.conf"


PATHS = Paths()
