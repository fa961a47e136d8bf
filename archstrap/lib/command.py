from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from typing import Mapping, Sequence

from ..errors import CommandError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CmdResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str


def _fmt_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


def run_cmd(
    argv: Sequence[str],
    *,
    check: bool = True,
    env: Mapping[str, str] | None = None,
    cwd: str | None = None,
    input_text: str | None = None,
    dry_run: bool = False,
    destructive: bool = False,
    redact_input: bool = False,
) -> CmdResult:
    """Run a command with consistent logging.

    - Always logs the command (destructive ones are tagged).
    - Captures stdout/stderr so callers can parse them.
    - dry_run logs but does not execute.
    - redact_input keeps passphrases fed on stdin out of the log.
    """

    argv_list = list(argv)
    tag = "DESTRUCTIVE " if destructive else ""
    if dry_run:
        logger.info("DRY-RUN %s%s", tag, _fmt_argv(argv_list))
        return CmdResult(argv=argv_list, returncode=0, stdout="", stderr="")

    logger.info("CMD %s%s", tag, _fmt_argv(argv_list))
    if input_text and not redact_input:
        logger.debug("STDIN %s", input_text.strip())

    p = subprocess.run(
        argv_list,
        input=input_text,
        text=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        cwd=cwd,
        env=dict(os.environ, **(env or {})),
    )

    if p.stdout:
        logger.debug("STDOUT %s", p.stdout.strip())
    if p.stderr:
        logger.debug("STDERR %s", p.stderr.strip())

    if check and p.returncode != 0:
        raise CommandError(argv_list, p.returncode, p.stderr)

    return CmdResult(argv=argv_list, returncode=p.returncode, stdout=p.stdout, stderr=p.stderr)


def probe_output(argv: Sequence[str]) -> str:
    """Stdout of a read-only query, or "" when the tool fails or is absent.

    Probes run in dry-run too; they never change the system.
    """

    argv_list = list(argv)
    logger.debug("PROBE %s", _fmt_argv(argv_list))
    try:
        p = subprocess.run(argv_list, text=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    except OSError as e:
        logger.debug("PROBE %s unavailable: %s", argv_list[0], e)
        return ""
    if p.returncode != 0:
        logger.debug("PROBE %s exited %d", argv_list[0], p.returncode)
        return ""
    return p.stdout
