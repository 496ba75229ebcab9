from __future__ import annotations

import getpass
import logging
import re
import sys
from pathlib import Path
from typing import Callable, Optional, TextIO

from ..errors import ValidationError

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
MIN_PASSPHRASE_LEN = 12
MIN_SNAPSHOT_RETENTION = 2
ZONEINFO_DIR = "/usr/share/zoneinfo"

_HOSTNAME_RE = re.compile(r"^[A-Za-z0-9-]+$")
_USERNAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_VOLUME_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_YES_RE = re.compile(r"^[yY]([eE][sS])?$")


def validate_hostname(value: str) -> bool:
    return bool(_HOSTNAME_RE.match(value))


def validate_username(value: str) -> bool:
    return bool(value) and bool(_USERNAME_RE.match(value))


def validate_volume_name(value: str) -> bool:
    return bool(_VOLUME_RE.match(value))


def passphrase_problems(passphrase: str) -> list[str]:
    """Return the unmet strength rules (empty list means acceptable)."""

    problems: list[str] = []
    if len(passphrase) < MIN_PASSPHRASE_LEN:
        problems.append(f"at least {MIN_PASSPHRASE_LEN} characters")
    if not re.search(r"[A-Z]", passphrase):
        problems.append("an uppercase letter")
    if not re.search(r"[a-z]", passphrase):
        problems.append("a lowercase letter")
    if not re.search(r"[0-9]", passphrase):
        problems.append("a digit")
    return problems


def validate_passphrase_strength(passphrase: str) -> bool:
    return not passphrase_problems(passphrase)


def is_yes(answer: str) -> bool:
    return bool(_YES_RE.match(answer))


def normalize_retention(raw: str, default: int) -> int:
    if raw.isdigit() and int(raw) >= MIN_SNAPSHOT_RETENTION:
        return int(raw)
    logger.warning("Invalid snapshot retention %r, using default: %s", raw, default)
    return default


def normalize_timezone(raw: str, default: str, zoneinfo_dir: str = ZONEINFO_DIR) -> str:
    if raw and (Path(zoneinfo_dir) / raw).is_file():
        return raw
    logger.warning("Timezone %r not found, using %s", raw, default)
    return default


class Prompter:
    """Terminal I/O for the installer.

    Only the wiring to input()/getpass() lives here; the rules above are plain
    functions so they can be checked without a terminal.
    """

    def __init__(
        self,
        input_fn: Callable[[str], str] = input,
        secret_fn: Callable[[str], str] = getpass.getpass,
        out: Optional[TextIO] = None,
    ) -> None:
        self._input = input_fn
        self._secret = secret_fn
        self.out = out or sys.stderr

    def say(self, text: str = "") -> None:
        print(text, file=self.out)

    def ask(self, prompt: str, default: Optional[str] = None) -> str:
        label = f"{prompt} [{default}]: " if default is not None else f"{prompt}: "
        answer = self._input(label)
        if not answer and default is not None:
            return default
        return answer

    def ask_secret(self, prompt: str) -> str:
        return self._secret(f"{prompt}: ")

    def ask_yes_no(self, prompt: str, default: bool = True) -> bool:
        answer = self.ask(f"{prompt} (y/n)", "y" if default else "n")
        return is_yes(answer)

    def ask_validated(
        self,
        prompt: str,
        validator: Callable[[str], bool],
        *,
        default: Optional[str] = None,
        error: str = "Invalid value",
    ) -> str:
        for attempt in range(1, MAX_ATTEMPTS + 1):
            value = self.ask(prompt, default)
            if validator(value):
                return value
            logger.warning("%s: %r (attempt %d/%d)", error, value, attempt, MAX_ATTEMPTS)
        raise ValidationError(f"{error}: no valid value after {MAX_ATTEMPTS} attempts")

    def ask_new_passphrase(self, what: str = "passphrase", *, check_strength: bool = True) -> str:
        """Ask twice; enforce strength rules; bounded attempts."""

        for attempt in range(1, MAX_ATTEMPTS + 1):
            first = self.ask_secret(f"Enter {what}")
            if check_strength:
                problems = passphrase_problems(first)
                if problems:
                    logger.warning(
                        "%s does not meet requirements (needs %s), attempt %d/%d",
                        what.capitalize(), ", ".join(problems), attempt, MAX_ATTEMPTS,
                    )
                    continue
            second = self.ask_secret(f"Confirm {what}")
            if first != second:
                logger.warning("%ss do not match, attempt %d/%d", what.capitalize(), attempt, MAX_ATTEMPTS)
                continue
            return first
        raise ValidationError(f"No acceptable {what} after {MAX_ATTEMPTS} attempts")
