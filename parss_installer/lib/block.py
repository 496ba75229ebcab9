from __future__ import annotations

import logging
import os
import re
import stat
import time
from dataclasses import dataclass
from typing import Iterable, List, Tuple

from ..errors import DeviceError
from .command import run_cmd

logger = logging.getLogger(__name__)

SETTLE_POLL_S = 0.5
DEFAULT_SETTLE_TIMEOUT_S = 10

_DISK_NAME_RE = re.compile(r"^(sd[a-z]+|vd[a-z]+|nvme\d+n\d+|mmcblk\d+)$")


def partition_path(device: str, n: int) -> str:
    """Partition N of device.

    Names ending in a digit (nvme0n1, mmcblk0, loop0) take a "p" separator:
    /dev/nvme0n1p2. Others append the number directly: /dev/sda2.
    """

    if device.endswith(tuple("0123456789")):
        return f"{device}p{n}"
    return f"{device}{n}"


@dataclass(frozen=True)
class BlockDevice:
    path: str
    size_bytes: int
    kind: str = "disk"

    def partition(self, n: int) -> str:
        return partition_path(self.path, n)

    @property
    def size_gib(self) -> int:
        return self.size_bytes // (1024 ** 3)


def is_block_device(path: str) -> bool:
    try:
        return stat.S_ISBLK(os.stat(path).st_mode)
    except OSError:
        return False


def get_uuid(dev: str) -> str:
    """Return filesystem/container UUID for a block device.

    blkid exits 2 when the tag is absent; that surfaces as DeviceError.
    """

    r = run_cmd(["blkid", "-s", "UUID", "-o", "value", dev], check=False)
    uuid = (r.stdout or "").strip()
    if not uuid:
        raise DeviceError(f"Unable to determine UUID for {dev}")
    return uuid


def get_partuuid(dev: str) -> str:
    r = run_cmd(["blkid", "-s", "PARTUUID", "-o", "value", dev], check=False)
    partuuid = (r.stdout or "").strip()
    if not partuuid:
        raise DeviceError(f"Unable to determine PARTUUID for {dev}")
    return partuuid


def partition_table_type(device: str) -> str:
    """Probe the on-disk table type directly (bypasses the udev cache)."""

    r = run_cmd(["blkid", "-p", "-s", "PTTYPE", "-o", "value", device], check=False)
    return (r.stdout or "").strip()


def device_size_bytes(device: str) -> int:
    r = run_cmd(["lsblk", "-b", "-n", "-d", "-o", "SIZE", device])
    try:
        return int((r.stdout or "").split()[0])
    except (IndexError, ValueError) as e:
        raise DeviceError(f"Unable to read size of {device}: {r.stdout!r}") from e


def list_disks() -> List[BlockDevice]:
    """Whole disks that are plausible install targets."""

    r = run_cmd(["lsblk", "-d", "-n", "-b", "-o", "NAME,SIZE,TYPE"])
    disks: List[BlockDevice] = []
    for line in (r.stdout or "").splitlines():
        parts = line.split()
        if len(parts) != 3:
            continue
        name, size, kind = parts
        if kind != "disk" or not _DISK_NAME_RE.match(name):
            continue
        disks.append(BlockDevice(path=f"/dev/{name}", size_bytes=int(size), kind=kind))
    return disks


def stacked_mappers(device: str, kinds: Iterable[str] = ("crypt", "lvm")) -> List[str]:
    """Names of device-mapper nodes stacked on the device or its partitions."""

    r = run_cmd(["lsblk", "-r", "-n", "-o", "NAME,TYPE", device], check=False)
    wanted = set(kinds)
    names: List[str] = []
    for line in (r.stdout or "").splitlines():
        parts = line.split()
        if len(parts) == 2 and parts[1] in wanted:
            names.append(parts[0])
    return names


def mounts_of(device: str) -> List[Tuple[str, str]]:
    """(source, target) for every mount backed by the device.

    That covers the device itself, its partitions and any mapper stacked on
    them (an opened LUKS container shows up as /dev/mapper/<name>).
    """

    mappers = {f"/dev/mapper/{name}" for name in stacked_mappers(device)}
    r = run_cmd(["findmnt", "-r", "-n", "-o", "SOURCE,TARGET"], check=False)
    found: List[Tuple[str, str]] = []
    for line in (r.stdout or "").splitlines():
        parts = line.split(None, 1)
        if len(parts) != 2:
            continue
        # btrfs subvolume mounts read /dev/mapper/x[/@home]
        source = parts[0].split("[", 1)[0]
        if source in mappers or _belongs_to(source, device):
            found.append((source, parts[1]))
    return found


def _belongs_to(source: str, device: str) -> bool:
    if source == device:
        return True
    return bool(re.fullmatch(re.escape(device) + r"p?\d+", source))


def is_mountpoint(path: str) -> bool:
    return run_cmd(["mountpoint", "-q", path], check=False).returncode == 0


def device_listing(device: str | None = None) -> str:
    """lsblk output for diagnostics; logged and returned, never raises."""

    argv = ["lsblk", "-o", "NAME,SIZE,TYPE,FSTYPE,MOUNTPOINTS"]
    if device:
        argv.append(device)
    r = run_cmd(argv, check=False)
    listing = (r.stdout or r.stderr or "").rstrip()
    for line in listing.splitlines():
        logger.info("  %s", line)
    return listing


def settle(device: str | None = None, expect: Iterable[str] = (), timeout: int = DEFAULT_SETTLE_TIMEOUT_S) -> bool:
    """Make the kernel re-read the table, let udev catch up, wait for paths.

    Returns True when every expected path exists as a block-special file within
    the timeout. Callers decide whether a miss is fatal.
    """

    if device:
        run_cmd(["partprobe", device], check=False)
    run_cmd(["udevadm", "settle", f"--timeout={timeout}"], check=False)
    run_cmd(["sync"], check=False)

    wanted = list(expect)
    polls = max(1, int(timeout / SETTLE_POLL_S))
    for _ in range(polls):
        missing = [p for p in wanted if not is_block_device(p)]
        if not missing:
            return True
        time.sleep(SETTLE_POLL_S)

    logger.warning("Settle timed out waiting for: %s", ", ".join(p for p in wanted if not is_block_device(p)))
    return False
