from __future__ import annotations

import logging
import shutil
from typing import Sequence

from ..errors import CommandError
from .chroot import chroot_cmd
from .retry import RetryExecutor

logger = logging.getLogger(__name__)

PACMAN_OPTS = ["--needed", "--noconfirm"]


def init_keyring(retry: RetryExecutor) -> None:
    retry.run_cmd(["pacman-key", "--init"], "Initializing pacman keyring", attempts=2)
    retry.run_cmd(["pacman-key", "--populate", "archlinux"], "Populating archlinux keyring", attempts=2)


def sync_package_index(retry: RetryExecutor) -> None:
    retry.run_cmd(["pacman", "-Sy", "--noconfirm"], "Syncing package database", attempts=2)


def free_space_gib(path: str) -> int:
    return shutil.disk_usage(path).free // (1024 ** 3)


def pacstrap(retry: RetryExecutor, target_root: str, packages: Sequence[str]) -> None:
    if not packages:
        return
    logger.info("Installing %d packages via pacstrap...", len(packages))
    retry.run_cmd(["pacstrap", "-K", target_root, *packages], "Installing base system packages", attempts=2)


def pacman_install(retry: RetryExecutor, target_root: str, packages: Sequence[str], description: str) -> None:
    if not packages:
        return
    retry.run(
        lambda: chroot_cmd(target_root, ["pacman", "-S", *PACMAN_OPTS, *packages]),
        description,
    )


def has_package(target_root: str, package: str) -> bool:
    return chroot_cmd(target_root, ["pacman", "-Q", package], check=False).ok


def package_count(target_root: str) -> int:
    try:
        r = chroot_cmd(target_root, ["pacman", "-Q"])
    except CommandError:
        return -1
    return len([l for l in (r.stdout or "").splitlines() if l.strip()])

