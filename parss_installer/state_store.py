from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Dict, Iterator, Optional, Tuple

logger = logging.getLogger(__name__)

_KEY_RE = re.compile(r"^[A-Z][A-Z0-9_]*$")
_SECRET_MARKERS = ("PASS", "SECRET", "KEY", "CREDENTIAL", "TOKEN")


def _check_key(key: str) -> None:
    if not _KEY_RE.match(key):
        raise ValueError(f"Invalid state key: {key!r}")
    if any(marker in key for marker in _SECRET_MARKERS):
        raise ValueError(f"Refusing to persist credential-like key: {key}")


def _render(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    text = str(value)
    if "\n" in text or "\r" in text:
        raise ValueError("State values must be single-line")
    return text


def _parse_lines(text: str) -> Iterator[Tuple[str, str]]:
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep or not _KEY_RE.match(key):
            logger.warning("Ignoring malformed state line %d: %r", lineno, raw)
            continue
        yield key, value


class SessionState:
    """Append-only KEY=value fact store backing one installation session.

    Every record() appends a line and fsyncs, so facts survive a crash of the
    installer. Loading replays the file; the last line for a key wins.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self._facts: Dict[str, str] = {}

    @classmethod
    def load(cls, path: str) -> "SessionState":
        state = cls(path)
        p = Path(path)
        if p.exists():
            logger.debug("Loading installation state from %s", path)
            for key, value in _parse_lines(p.read_text(encoding="utf-8")):
                state._facts[key] = value
        return state

    def record(self, key: str, value: object) -> None:
        _check_key(key)
        text = _render(value)
        p = Path(self.path)
        p.parent.mkdir(parents=True, exist_ok=True)
        with open(p, "a", encoding="utf-8") as fh:
            fh.write(f"{key}={text}\n")
            fh.flush()
            os.fsync(fh.fileno())
        self._facts[key] = text
        logger.debug("State %s=%s", key, text)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._facts.get(key, default)

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self._facts.get(key)
        if value is None:
            return default
        return value.lower() in {"true", "1", "yes", "y"}

    def __contains__(self, key: object) -> bool:
        return key in self._facts

    def facts(self) -> Dict[str, str]:
        return dict(self._facts)


def mark_phase_completed(state: SessionState, phase_id: str) -> None:
    state.record("LAST_COMPLETED_PHASE", phase_id)


def last_completed_phase(state: SessionState) -> Optional[str]:
    return state.get("LAST_COMPLETED_PHASE")
