from __future__ import annotations

import logging
import time
from typing import Callable

from .command import probe_output

logger = logging.getLogger(__name__)


def wait_for(
    condition: Callable[[], bool],
    *,
    timeout: float = 30,
    interval: float = 1,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Poll `condition` until it holds or `timeout` seconds have passed."""

    elapsed = 0.0
    while not condition():
        if elapsed >= timeout:
            return False
        sleep(interval)
        elapsed += interval
    return True


def is_online(host: str = "archlinux.org") -> bool:
    """Best-effort online check."""

    return bool(probe_output(["ping", "-c", "1", "-W", "1", host]))


def network_wait(timeout: float = 10, host: str = "archlinux.org") -> bool:
    logger.info("Waiting for network connectivity...")
    if wait_for(lambda: is_online(host), timeout=timeout):
        logger.info("Network is available")
        return True
    logger.error("Network not available after %s seconds", timeout)
    return False
