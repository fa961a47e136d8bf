from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .config import SENSITIVE_KEYS, InstallConfig

logger = logging.getLogger(__name__)

COMMENT_PREFIX = "#"


def parse_kv(text: str) -> Dict[str, str]:
    """Parse newline-delimited key=value text.

    Comment lines and blank lines are skipped. The value is everything after
    the first '='; nothing is unescaped.
    """

    data: Dict[str, str] = {}
    for line in text.splitlines():
        if not line.strip() or line.startswith(COMMENT_PREFIX):
            continue
        key, sep, value = line.partition("=")
        if not sep or not key:
            logger.debug("Skipping malformed record line: %r", line)
            continue
        data[key] = value
    return data


def render_kv(data: Mapping[str, str], *, header: Iterable[str] = ()) -> str:
    lines = [f"{COMMENT_PREFIX} {h}" for h in header]
    for key, value in data.items():
        if "\n" in value:
            # Unrepresentable in this format; keep only the first line.
            logger.warning("Value for %s contains a newline; truncating in persisted record", key)
            value = value.split("\n", 1)[0]
        lines.append(f"{key}={value}")
    return "\n".join(lines) + "\n"


def load_kv(path: str) -> Optional[Dict[str, str]]:
    p = Path(path)
    if not p.exists():
        return None
    return parse_kv(p.read_text(encoding="utf-8"))


def save_kv(path: str, data: Mapping[str, str], *, header: Iterable[str] = ()) -> None:
    """Total overwrite through a temporary file in the same directory."""

    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    tmp = p.with_name(p.name + ".tmp")
    tmp.write_text(render_kv(data, header=header), encoding="utf-8")
    os.chmod(tmp, 0o600)
    os.replace(tmp, p)


@dataclass
class InstallState:
    """Installation progress: resolved facts plus the ordered completed stages."""

    facts: Dict[str, str] = field(default_factory=dict)
    completed_steps: List[str] = field(default_factory=list)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self.facts.get(key)
        if value in (None, ""):
            return default
        return value

    def set(self, key: str, value: Any) -> None:
        self.facts[key] = "" if value is None else str(value)
        logger.debug("State set: %s=%s", key, self.facts[key])

    def has(self, key: str) -> bool:
        return bool(self.facts.get(key))

    def to_record(self) -> Dict[str, str]:
        record = dict(self.facts)
        record["completed_steps"] = ",".join(self.completed_steps)
        return record

    @classmethod
    def from_record(cls, record: Mapping[str, str]) -> "InstallState":
        facts = dict(record)
        raw = facts.pop("completed_steps", "")
        completed = [s for s in raw.split(",") if s]
        return cls(facts=facts, completed_steps=completed)


def mark_step_completed(state: InstallState, step_id: str) -> None:
    if step_id not in state.completed_steps:
        state.completed_steps.append(step_id)


def is_step_completed(state: InstallState, step_id: str) -> bool:
    return step_id in state.completed_steps


class StateStore:
    """Durable InstallState record. Dry-run stores never touch the disk."""

    def __init__(self, path: str, *, dry_run: bool = False):
        self.path = path
        self.dry_run = dry_run

    def load(self) -> Optional[InstallState]:
        record = load_kv(self.path)
        if record is None:
            logger.debug("No state file found at %s", self.path)
            return None
        logger.info("Loaded previous state from %s", self.path)
        return InstallState.from_record(record)

    def save(self, state: InstallState) -> None:
        if self.dry_run:
            logger.debug("Would checkpoint state to %s", self.path)
            return
        logger.debug("Saving state to %s", self.path)
        save_kv(
            self.path,
            state.to_record(),
            header=(f"archstrap state - {time.strftime('%Y-%m-%d %H:%M:%S')}", "Do not edit manually"),
        )

    def clear(self) -> None:
        logger.debug("Clearing state file %s", self.path)
        if not self.dry_run:
            Path(self.path).unlink(missing_ok=True)


class ConfigStore:
    """Durable InstallConfig record."""

    def __init__(self, path: str, *, dry_run: bool = False):
        self.path = path
        self.dry_run = dry_run

    def load(self) -> Optional[InstallConfig]:
        record = load_kv(self.path)
        if record is None:
            logger.debug("No configuration file found at %s", self.path)
            return None
        return InstallConfig.from_record(record)

    def save(self, config: InstallConfig) -> None:
        if self.dry_run:
            logger.debug("Would save configuration to %s", self.path)
            return
        save_kv(
            self.path,
            config.to_record(),
            header=(f"archstrap configuration - generated {time.strftime('%Y-%m-%d %H:%M:%S')}",),
        )

    def redact(self, path: Optional[str] = None) -> bool:
        """Strip sensitive keys from a persisted record. Returns True if a file was rewritten."""
        return redact_record(path or self.path, dry_run=self.dry_run)

    def clear(self) -> None:
        if not self.dry_run:
            Path(self.path).unlink(missing_ok=True)


def redact_record(path: str, *, dry_run: bool = False) -> bool:
    p = Path(path)
    if not p.exists():
        return False
    if dry_run:
        logger.info("Would redact sensitive keys from %s", path)
        return False

    kept: list[str] = []
    for line in p.read_text(encoding="utf-8").splitlines():
        key = line.partition("=")[0]
        if not line.startswith(COMMENT_PREFIX) and key in SENSITIVE_KEYS:
            continue
        kept.append(line)
    tmp = p.with_name(p.name + ".tmp")
    tmp.write_text("\n".join(kept) + "\n", encoding="utf-8")
    os.chmod(tmp, 0o600)
    os.replace(tmp, p)
    logger.info("Redacted sensitive keys from %s", path)
    return True


def _detect_format(path: Path) -> str:
    ext = path.suffix.lower().lstrip(".")
    if ext in {"json", "yaml", "yml"}:
        return ext
    return "kv"


def load_answers(path: str) -> Dict[str, Any]:
    """Load pre-seeded configuration answers (json, yaml or key=value)."""

    p = Path(path)
    fmt = _detect_format(p)
    text = p.read_text(encoding="utf-8")

    if fmt == "json":
        data = json.loads(text)
    elif fmt in {"yaml", "yml"}:
        try:
            import yaml  # type: ignore
        except Exception as e:  # pragma: no cover
            raise RuntimeError(
                "YAML answers file requested but PyYAML is not available. "
                "Use a JSON or key=value answers file."
            ) from e
        data = yaml.safe_load(text) or {}
    else:
        data = parse_kv(text)

    if not isinstance(data, dict):
        raise ValueError(f"Answers file must be an object/dict, got {type(data)}")
    return data
