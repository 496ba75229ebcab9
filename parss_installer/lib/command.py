from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from typing import Collection, Mapping, Sequence

from ..errors import CommandError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CmdResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def fmt_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


def run_cmd(
    argv: Sequence[str],
    *,
    check: bool = True,
    ok_codes: Collection[int] = (0,),
    env: Mapping[str, str] | None = None,
    cwd: str | None = None,
    input_text: str | None = None,
    input_bytes: bytes | bytearray | memoryview | None = None,
) -> CmdResult:
    """Run a command with consistent logging.

    - Always logs the command line (never the stdin payload).
    - input_bytes feeds stdin from a caller-owned buffer without a str copy.
    - Captures stdout/stderr into the transcript at DEBUG.
    - With check=True an exit code outside ok_codes raises CommandError and the
      command plus exit code go to the error transcript.
    """

    argv_list = list(argv)
    logger.info("CMD %s", fmt_argv(argv_list))

    if input_bytes is not None:
        stdin_kwargs = {"input": input_bytes}
    else:
        stdin_kwargs = {"input": input_text, "text": True}

    try:
        p = subprocess.run(
            argv_list,
            **stdin_kwargs,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=cwd,
            env=dict(os.environ, **(env or {})),
        )
    except FileNotFoundError as e:
        if check:
            logger.error("Command not found: %s", argv_list[0])
            raise CommandError(argv_list, 127, str(e)) from e
        return CmdResult(argv=argv_list, returncode=127, stdout="", stderr=str(e))

    stdout, stderr = _as_text(p.stdout), _as_text(p.stderr)
    if stdout:
        logger.debug("STDOUT %s", stdout.strip())
    if stderr:
        logger.debug("STDERR %s", stderr.strip())

    if check and p.returncode not in ok_codes:
        logger.error("Command failed (exit code %s): %s", p.returncode, fmt_argv(argv_list))
        raise CommandError(argv_list, p.returncode, stderr)

    return CmdResult(argv=argv_list, returncode=p.returncode, stdout=stdout, stderr=stderr)


def _as_text(out: str | bytes | None) -> str:
    if isinstance(out, bytes):
        return out.decode("utf-8", errors="replace")
    return out or ""
