from __future__ import annotations

import re
from typing import Iterable, List

CONFIG_DIR = "etc/snapper/configs"
CONF_D = "etc/conf.d/snapper"
ROOT_CONFIG = "root"

TIMERS = ("snapper-timeline.timer", "snapper-cleanup.timer")

_CONFIGS_RE = re.compile(r'^SNAPPER_CONFIGS="([^"]*)"', re.MULTILINE)


def render_config(subvolume: str, *, allow_users: Iterable[str] = (), hourly: int = 5, daily: int = 7) -> str:
    """A snapper config for one btrfs subvolume with timeline cleanup limits."""

    users = " ".join(allow_users)
    values = [
        ("SUBVOLUME", subvolume),
        ("FSTYPE", "btrfs"),
        ("QGROUP", ""),
        ("SPACE_LIMIT", "0.5"),
        ("FREE_LIMIT", "0.2"),
        ("ALLOW_USERS", users),
        ("ALLOW_GROUPS", ""),
        ("SYNC_ACL", "yes" if users else "no"),
        ("BACKGROUND_COMPARISON", "yes"),
        ("NUMBER_CLEANUP", "yes"),
        ("NUMBER_MIN_AGE", "1800"),
        ("NUMBER_LIMIT", "50"),
        ("NUMBER_LIMIT_IMPORTANT", "10"),
        ("TIMELINE_CREATE", "yes"),
        ("TIMELINE_CLEANUP", "yes"),
        ("TIMELINE_MIN_AGE", "1800"),
        ("TIMELINE_LIMIT_HOURLY", str(hourly)),
        ("TIMELINE_LIMIT_DAILY", str(daily)),
        ("TIMELINE_LIMIT_WEEKLY", "0"),
        ("TIMELINE_LIMIT_MONTHLY", "0"),
        ("TIMELINE_LIMIT_YEARLY", "0"),
        ("EMPTY_PRE_POST_CLEANUP", "yes"),
        ("EMPTY_PRE_POST_MIN_AGE", "1800"),
    ]
    return "".join(f'{key}="{value}"\n' for key, value in values)


def config_names(conf_d: str) -> List[str]:
    m = _CONFIGS_RE.search(conf_d)
    return m.group(1).split() if m else []


def with_config(conf_d: str, name: str) -> str:
    """Return conf.d text listing `name`; root always comes first."""

    names = [n for n in config_names(conf_d) if n != ROOT_CONFIG]
    if name != ROOT_CONFIG and name not in names:
        names.append(name)
    return f'SNAPPER_CONFIGS="{" ".join([ROOT_CONFIG, *names])}"\n'
