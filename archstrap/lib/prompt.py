from __future__ import annotations

import getpass
import logging
import select
import sys
from typing import Callable, Optional, Protocol, Sequence

from ..errors import AbortError

logger = logging.getLogger(__name__)


class Prompter(Protocol):
    def ask(
        self,
        prompt: str,
        default: str = "",
        validator: Optional[Callable[[str], bool]] = None,
        hint: str = "",
    ) -> str: ...

    def ask_secret(self, prompt: str) -> str: ...

    def confirm(self, prompt: str, default: bool = False, timeout: Optional[float] = None) -> bool: ...

    def choose(self, prompt: str, options: Sequence[str], default: Optional[str] = None) -> str: ...


class ConsolePrompter:
    """Plain stdin/stdout prompts. Invalid answers are asked again, never raised."""

    def __init__(self, *, auto_confirm: bool = False, max_attempts: int = 10):
        self.auto_confirm = auto_confirm
        self.max_attempts = max_attempts

    def ask(
        self,
        prompt: str,
        default: str = "",
        validator: Optional[Callable[[str], bool]] = None,
        hint: str = "",
    ) -> str:
        suffix = f" [{default}]" if default else ""
        for _ in range(self.max_attempts):
            answer = input(f"{prompt}{suffix}: ").strip() or default
            if validator is None or validator(answer):
                return answer
            print(hint or "Invalid value, please try again.")
            logger.debug("Rejected input for %r", prompt)
        raise AbortError(f"No valid answer for: {prompt}")

    def ask_secret(self, prompt: str) -> str:
        for _ in range(self.max_attempts):
            first = getpass.getpass(f"{prompt}: ")
            if not first:
                print("Value cannot be empty.")
                continue
            if first == getpass.getpass("Confirm: "):
                return first
            print("Values do not match. Please try again.")
        raise AbortError(f"No confirmed value for: {prompt}")

    def confirm(self, prompt: str, default: bool = False, timeout: Optional[float] = None) -> bool:
        if self.auto_confirm:
            logger.debug("Auto-confirming: %s", prompt)
            return True

        sys.stdout.write(f"{prompt} {'[Y/n]' if default else '[y/N]'} ")
        sys.stdout.flush()
        if timeout is not None:
            ready, _, _ = select.select([sys.stdin], [], [], timeout)
            if not ready:
                print()
                logger.warning("No answer within %ss, using default (%s)", timeout, "yes" if default else "no")
                return default
        answer = sys.stdin.readline().strip().lower()
        if not answer:
            return default
        return answer in {"y", "yes"}

    def choose(self, prompt: str, options: Sequence[str], default: Optional[str] = None) -> str:
        if not options:
            raise AbortError(f"Nothing to choose for: {prompt}")
        for i, opt in enumerate(options, 1):
            print(f"  {i}) {opt}")
        default_index = str(options.index(default) + 1) if default in options else ""

        def _valid(a: str) -> bool:
            return a.isdigit() and 1 <= int(a) <= len(options)

        answer = self.ask(prompt, default_index, _valid, hint=f"Enter a number between 1 and {len(options)}.")
        return options[int(answer) - 1]
