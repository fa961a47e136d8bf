from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Optional

from .lib.env import PATHS

DEFAULT_LOG_PATH = PATHS.log_default

_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[1;31m",
}
_RESET = "\033[0m"


class ConsoleFormatter(logging.Formatter):
    """`[LEVEL] message`, with the tag coloured when enabled."""

    def __init__(self, color: bool = False):
        super().__init__(fmt="%(message)s")
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        msg = super().format(record)
        tag = f"[{record.levelname}]"
        if self.color:
            tag = f"{_COLORS.get(record.levelno, '')}{tag}{_RESET}"
        return f"{tag} {msg}"


def configure_logging(
    log_path: str = DEFAULT_LOG_PATH,
    *,
    verbose: bool = False,
    color: Optional[bool] = None,
    also_console: bool = True,
) -> str:
    """Configure logging.

    The file always receives DEBUG with timestamps. If the requested path is
    not writable, a file in the working directory is used instead.

    Returns the actual file path being used.
    """

    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)

    # Avoid duplicate handlers if configure_logging() is called multiple times.
    if getattr(logger, "_archstrap_configured", False):
        return getattr(logger, "_archstrap_log_path", log_path)

    chosen_path = log_path
    handlers: list[logging.Handler] = []

    fmt = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )

    try:
        Path(os.path.dirname(log_path) or ".").mkdir(parents=True, exist_ok=True)
        file_handler: logging.Handler = logging.FileHandler(log_path)
    except OSError:
        # Fall back to a writable location.
        chosen_path = str(Path.cwd() / "archstrap.log")
        file_handler = logging.FileHandler(chosen_path)
    file_handler.setFormatter(fmt)
    file_handler.setLevel(logging.DEBUG)
    handlers.append(file_handler)

    if also_console:
        if color is None:
            color = sys.stderr.isatty()
        console = logging.StreamHandler()
        console.setFormatter(ConsoleFormatter(color=color))
        console.setLevel(logging.DEBUG if verbose else logging.INFO)
        handlers.append(console)

    for h in handlers:
        logger.addHandler(h)

    setattr(logger, "_archstrap_configured", True)
    setattr(logger, "_archstrap_log_path", chosen_path)

    logging.getLogger(__name__).info("Logging initialized (requested=%s, actual=%s)", log_path, chosen_path)
    return chosen_path


def reset_logging() -> None:
    """Remove handlers installed by configure_logging()."""

    logger = logging.getLogger()
    if not getattr(logger, "_archstrap_configured", False):
        return
    for h in list(logger.handlers):
        if isinstance(h.formatter, ConsoleFormatter) or isinstance(h, logging.FileHandler):
            logger.removeHandler(h)
            h.close()
    setattr(logger, "_archstrap_configured", False)
