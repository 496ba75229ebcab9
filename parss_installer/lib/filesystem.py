from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from ..errors import CommandError, FatalError
from ..logging_utils import log_success
from .block import device_listing, is_mountpoint
from .command import fmt_argv, run_cmd

logger = logging.getLogger(__name__)

BTRFS_LABEL = "root_encrypted"
ESP_LABEL = "EFI"
ESP_MOUNT_PATH = "/boot"
ESP_OPTIONS = ("umask=0077",)

BASE_OPTIONS = ("compress=zstd", "noatime", "space_cache=v2")
NO_DEVICES = ("nodev", "nosuid")
DATA_ONLY = ("nodev", "nosuid", "noexec")


@dataclass(frozen=True)
class Subvolume:
    name: str
    mount_path: str
    options: Tuple[str, ...] = BASE_OPTIONS

    @property
    def mount_options(self) -> str:
        return ",".join((f"subvol={self.name}", *self.options))


def subvolume_plan(add_log_subvolume: bool = True) -> List[Subvolume]:
    """The flat subvolume set, in mount order.

    /var keeps exec because pacman hooks and dkms run from it.
    """

    plan = [
        Subvolume("@", "/"),
        Subvolume("@home", "/home"),
        Subvolume("@var", "/var", BASE_OPTIONS + NO_DEVICES),
        Subvolume("@varcache", "/var/cache", BASE_OPTIONS + DATA_ONLY),
        Subvolume("@snapshots", "/.snapshots", BASE_OPTIONS + DATA_ONLY),
    ]
    if add_log_subvolume:
        plan.append(Subvolume("@log", "/var/log", BASE_OPTIONS + DATA_ONLY))
    return plan


def parent_mount(path: str, candidates: Sequence[str]) -> Optional[str]:
    """Nearest ancestor of path among candidates ("/" for top-level paths)."""

    if path == "/":
        return None
    best = "/"
    for c in candidates:
        if c != path and c != "/" and path.startswith(c.rstrip("/") + "/") and len(c) > len(best):
            best = c
    return best


class FilesystemProvisioner:
    """unformatted -> formatted -> subvolumes-created -> mounted."""

    def __init__(
        self,
        device: str,
        mount_root: str,
        subvolumes: Sequence[Subvolume],
    ) -> None:
        self.device = device
        self.mount_root = mount_root
        self.subvolumes = list(subvolumes)
        self.active: Dict[str, str] = {}  # mount path -> target directory
        self.state = "unformatted"

    def target(self, mount_path: str) -> str:
        if mount_path == "/":
            return self.mount_root
        return posixpath.join(self.mount_root, mount_path.lstrip("/"))

    def _mount_failed(self, argv: List[str]) -> FatalError:
        cmdline = fmt_argv(argv)
        logger.error("Mount failed: %s", cmdline)
        device_listing()
        dmesg = run_cmd(["dmesg"], check=False)
        for line in (dmesg.stdout or "").splitlines()[-10:]:
            logger.error("  %s", line)
        return FatalError(f"Mount failed: {cmdline}")

    def make_filesystem(self) -> None:
        if is_mountpoint(self.mount_root):
            raise FatalError(
                f"{self.mount_root} is already a mountpoint; unmount it (umount -R) before re-running"
            )
        logger.info("Creating BTRFS filesystem on %s...", self.device)
        try:
            run_cmd(["mkfs.btrfs", "-f", "-L", BTRFS_LABEL, self.device])
        except CommandError as e:
            raise FatalError(f"BTRFS filesystem creation failed on {self.device}") from e
        log_success(logger, "BTRFS filesystem created on %s", self.device)
        self.state = "formatted"

    def create_subvolumes(self) -> None:
        """Create every subvolume flat under the top level, then unmount again."""

        Path(self.mount_root).mkdir(parents=True, exist_ok=True)
        argv = ["mount", self.device, self.mount_root]
        if not run_cmd(argv, check=False).ok:
            raise self._mount_failed(argv)
        try:
            for sv in self.subvolumes:
                logger.info("Creating subvolume %s...", sv.name)
                try:
                    run_cmd(["btrfs", "subvolume", "create", posixpath.join(self.mount_root, sv.name)])
                except CommandError as e:
                    raise FatalError(f"Failed to create subvolume {sv.name}") from e
            listing = run_cmd(["btrfs", "subvolume", "list", self.mount_root], check=False)
            for line in (listing.stdout or "").splitlines():
                logger.info("  %s", line)
        finally:
            run_cmd(["umount", self.mount_root], check=False)
        log_success(logger, "%d subvolumes created", len(self.subvolumes))
        self.state = "subvolumes-created"

    def mount_subvolume(self, sv: Subvolume) -> str:
        """Mount one subvolume. Its parent mount has to be active already."""

        if sv.mount_path in self.active:
            raise FatalError(f"{sv.mount_path} is already mounted at {self.active[sv.mount_path]}")

        parent = parent_mount(sv.mount_path, [s.mount_path for s in self.subvolumes])
        if parent is not None and parent not in self.active:
            raise FatalError(
                f"Refusing to mount {sv.mount_path}: parent mount {parent} is not active yet"
            )

        target = self.target(sv.mount_path)
        # Only now: the directory lands on the parent subvolume, not the throwaway one.
        Path(target).mkdir(parents=True, exist_ok=True)

        argv = ["mount", "-o", sv.mount_options, self.device, target]
        if not run_cmd(argv, check=False).ok:
            raise self._mount_failed(argv)
        self.active[sv.mount_path] = target
        logger.info("Mounted %s at %s (%s)", sv.name, target, sv.mount_options)
        return target

    def mount_all(self) -> None:
        for sv in sorted(self.subvolumes, key=lambda s: 0 if s.mount_path == "/" else s.mount_path.count("/")):
            self.mount_subvolume(sv)
        self.state = "mounted"

    def mount_esp(self, partition: str) -> str:
        if "/" not in self.active:
            raise FatalError(f"Refusing to mount {ESP_MOUNT_PATH}: root subvolume is not mounted")

        logger.info("Formatting EFI System Partition %s as FAT32...", partition)
        try:
            run_cmd(["mkfs.fat", "-F", "32", "-n", ESP_LABEL, partition])
        except CommandError as e:
            raise FatalError(f"Formatting ESP {partition} failed") from e

        target = self.target(ESP_MOUNT_PATH)
        Path(target).mkdir(parents=True, exist_ok=True)
        argv = ["mount", "-o", ",".join(ESP_OPTIONS), partition, target]
        if not run_cmd(argv, check=False).ok:
            raise self._mount_failed(argv)
        self.active[ESP_MOUNT_PATH] = target
        log_success(logger, "ESP mounted at %s", target)
        return target

    def verify_mounts(self) -> None:
        for path, target in self.active.items():
            if not is_mountpoint(target):
                raise FatalError(f"{target} ({path}) is not a mountpoint after mounting")
        r = run_cmd(["findmnt", "-R", self.mount_root], check=False)
        for line in (r.stdout or "").splitlines():
            logger.info("  %s", line)
        log_success(logger, "All %d mounts verified under %s", len(self.active), self.mount_root)

    def provision(self, esp_partition: str) -> Dict[str, str]:
        self.make_filesystem()
        self.create_subvolumes()
        self.mount_all()
        self.mount_esp(esp_partition)
        self.verify_mounts()
        return dict(self.active)


def unmount_tree(mount_root: str) -> bool:
    """Recursive unmount with a lazy fallback. Returns whether the root is gone."""

    if not is_mountpoint(mount_root):
        return True
    logger.info("Unmounting %s (recursive)...", mount_root)
    if run_cmd(["umount", "-R", mount_root], check=False).ok:
        return True
    logger.warning("Recursive unmount of %s failed; trying lazy unmount", mount_root)
    return run_cmd(["umount", "-R", "-l", mount_root], check=False).ok
