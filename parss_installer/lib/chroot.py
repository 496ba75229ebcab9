from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional, Sequence

from .command import CmdResult, run_cmd

logger = logging.getLogger(__name__)


def chroot_cmd(target_root: str, argv: Sequence[str], **kwargs) -> CmdResult:
    """Run a command inside target root (arch-chroot sets up the API mounts)."""

    return run_cmd(["arch-chroot", target_root, *argv], **kwargs)


def target_path(target_root: str, path: str) -> Path:
    return Path(target_root) / path.lstrip("/")


def write_target_file(target_root: str, path: str, contents: str, *, mode: Optional[int] = None) -> Path:
    p = target_path(target_root, path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(contents, encoding="utf-8")
    if mode is not None:
        os.chmod(p, mode)
    logger.info("Wrote %s", str(p))
    return p


def read_target_file(target_root: str, path: str) -> Optional[str]:
    p = target_path(target_root, path)
    if not p.is_file():
        return None
    return p.read_text(encoding="utf-8")
