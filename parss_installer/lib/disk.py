from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List

from ..errors import CommandError, DeviceError, FatalError
from ..logging_utils import log_success
from .block import (
    BlockDevice,
    device_listing,
    device_size_bytes,
    is_block_device,
    is_mountpoint,
    mounts_of,
    partition_table_type,
    settle,
    stacked_mappers,
)
from .command import run_cmd
from .confirm import ConfirmationGate
from .prompts import Prompter

logger = logging.getLogger(__name__)

BOOT_OFFSET_MIB = 1
BOOT_TYPECODE = "ef00"
ROOT_TYPECODE = "8309"  # Linux LUKS


@dataclass(frozen=True)
class Partition:
    role: str  # boot|root
    path: str
    number: int
    fs_intent: str


@dataclass(frozen=True)
class PartitionLayout:
    device: str
    boot: Partition
    root: Partition


def plan_layout(device: str) -> PartitionLayout:
    """Boot is partition 1 (fixed size), root is partition 2 (the rest)."""

    bd = BlockDevice(path=device, size_bytes=0)
    return PartitionLayout(
        device=device,
        boot=Partition(role="boot", path=bd.partition(1), number=1, fs_intent="vfat"),
        root=Partition(role="root", path=bd.partition(2), number=2, fs_intent="crypto_LUKS"),
    )


def crypt_children(device: str) -> List[str]:
    """Names of opened dm-crypt mappings stacked on the device or its partitions."""

    return stacked_mappers(device, kinds=("crypt",))


def release_device(device: str, mount_roots: Iterable[str] = ()) -> None:
    """Unmount and close everything holding the device. Best effort."""

    run_cmd(["swapoff", "-a"], check=False)

    for root in mount_roots:
        if is_mountpoint(root):
            logger.info("Unmounting %s (recursive)...", root)
            if not run_cmd(["umount", "-R", root], check=False).ok:
                run_cmd(["umount", "-l", root], check=False)

    for source, target in reversed(mounts_of(device)):
        logger.info("Unmounting %s from %s...", source, target)
        if not run_cmd(["umount", target], check=False).ok:
            run_cmd(["umount", "-l", target], check=False)

    for name in crypt_children(device):
        logger.info("Closing LUKS mapper %s...", name)
        run_cmd(["cryptsetup", "close", name], check=False)


def validate_target(
    device: str,
    prompter: Prompter,
    *,
    mount_roots: Iterable[str] = (),
) -> BlockDevice:
    """Refuse anything that is not an idle block device.

    A busy device gets an offer to release it; it is never wiped while mounted.
    """

    if not is_block_device(device):
        raise DeviceError(f"Device {device} is not a block device")

    mounted = mounts_of(device)
    opened = crypt_children(device)
    if mounted or opened:
        logger.warning("Device %s or its partitions are currently in use:", device)
        for source, target in mounted:
            logger.warning("  %s on %s", source, target)
        for name in opened:
            logger.warning("  LUKS mapper /dev/mapper/%s is open", name)
        if not prompter.ask_yes_no(f"Attempt to auto-unmount and close LUKS on {device}?", default=True):
            raise DeviceError(f"Device {device} is mounted and auto-unmount was declined")
        release_device(device, mount_roots)
        still = [t for _, t in mounts_of(device)] + [f"/dev/mapper/{n}" for n in crypt_children(device)]
        if still:
            raise DeviceError(
                f"Failed to unmount {device} ({', '.join(still)}). "
                "Please unmount manually and retry."
            )
        log_success(logger, "Device %s successfully unmounted", device)

    size = device_size_bytes(device)
    log_success(logger, "Block device %s validated (%d bytes)", device, size)
    return BlockDevice(path=device, size_bytes=size)


class DeviceProvisioner:
    """raw -> labeled -> boot-allocated -> root-allocated -> verified -> typed.

    Every table mutation is followed by a settle, and nothing is trusted until it
    has been read back.
    """

    def __init__(
        self,
        device: str,
        *,
        boot_size_mib: int = 1024,
        settle_timeout: int = 10,
    ) -> None:
        self.device = device
        self.layout = plan_layout(device)
        self.boot_size_mib = boot_size_mib
        self.settle_timeout = settle_timeout
        self.state = "raw"

    def _settle(self, expect: Iterable[str] = ()) -> bool:
        return settle(self.device, expect=expect, timeout=self.settle_timeout)

    def _fail(self, message: str) -> FatalError:
        logger.error(message)
        device_listing(self.device)
        return FatalError(message)

    def wipe(self) -> None:
        logger.info("Wiping existing signatures from %s...", self.device)
        try:
            run_cmd(["wipefs", "-af", self.device])
        except CommandError as e:
            raise self._fail(f"Wiping signatures on {self.device} failed: {e}") from e
        run_cmd(["sgdisk", "--zap-all", self.device], check=False)
        run_cmd(["dd", "if=/dev/zero", f"of={self.device}", "bs=1M", "count=10", "status=none"], check=False)
        self._settle()
        self.state = "raw"

    def label(self) -> None:
        """Write a fresh GPT and read it back. Always re-verifies, even on re-runs."""

        logger.info("Creating new GPT partition table on %s...", self.device)
        r = run_cmd(["sgdisk", "--clear", self.device], check=False)
        if not r.ok:
            logger.warning("sgdisk reported an error creating the GPT label; verifying the table...")
        self._settle()

        found = partition_table_type(self.device)
        if found != "gpt":
            raise self._fail(f"Failed to create GPT label on {self.device} (read back: {found or 'none'})")
        log_success(logger, "GPT label is present on %s", self.device)
        self.state = "labeled"

    def allocate_boot(self) -> None:
        if self.state != "labeled":
            raise FatalError(f"Cannot allocate boot partition while device is {self.state}")
        boot = self.layout.boot
        logger.info("Creating EFI System Partition (%d MiB)...", self.boot_size_mib)
        r = run_cmd(
            [
                "sgdisk",
                f"--new={boot.number}:{BOOT_OFFSET_MIB}M:+{self.boot_size_mib}M",
                f"--typecode={boot.number}:{BOOT_TYPECODE}",
                f"--change-name={boot.number}:EFI",
                self.device,
            ],
            check=False,
        )
        if not r.ok:
            logger.warning("sgdisk reported an error creating the ESP; final layout will be verified")
        self._settle(expect=[boot.path])
        self.state = "boot-allocated"

    def allocate_root(self) -> None:
        if self.state != "boot-allocated":
            raise FatalError(f"Cannot allocate root partition while device is {self.state}")
        root = self.layout.root
        logger.info("Creating root partition (all remaining space)...")
        try:
            run_cmd(["sgdisk", f"--new={root.number}:0:0", f"--change-name={root.number}:ROOT", self.device])
        except CommandError as e:
            raise self._fail(f"Creating root partition on {self.device} failed: {e}") from e
        self._settle(expect=[root.path])
        self.state = "root-allocated"

    def verify(self) -> PartitionLayout:
        logger.info("Verifying partitions exist...")
        for part in (self.layout.boot, self.layout.root):
            if is_block_device(part.path):
                continue
            alternates = [p for p in _naming_alternates(self.device, part.number) if is_block_device(p)]
            if alternates:
                raise self._fail(
                    f"{part.role.capitalize()} partition {part.path} not found, but {alternates[0]} exists: "
                    "partition naming scheme mismatch"
                )
            raise self._fail(f"{part.role.capitalize()} partition {part.path} not found")
        log_success(logger, "All partitions verified successfully")
        self.state = "verified"
        return self.layout

    def set_types(self) -> None:
        """Advisory only; a failure here does not affect the install."""

        root = self.layout.root
        r = run_cmd(["sgdisk", f"--typecode={root.number}:{ROOT_TYPECODE}", self.device], check=False)
        if not r.ok:
            logger.warning("Could not set root partition type (non-critical)")
        else:
            self._settle(expect=[root.path])
        self.state = "typed"

    def provision(self, gate: ConfirmationGate, size_bytes: int, mount_roots: Iterable[str] = ()) -> PartitionLayout:
        gate.confirm_destruction(self.device, size_bytes)

        release_device(self.device, mount_roots)
        if mounts_of(self.device):
            raise DeviceError(f"Device {self.device} or its partitions are still mounted; aborting")
        busy = crypt_children(self.device)
        if busy:
            raise DeviceError(
                f"LUKS mapper(s) {', '.join(busy)} on {self.device} could not be closed; aborting"
            )

        self.wipe()
        self.label()
        self.allocate_boot()
        self.allocate_root()
        layout = self.verify()
        self.set_types()

        logger.info("Final partition table:")
        r = run_cmd(["sgdisk", "--print", self.device], check=False)
        for line in (r.stdout or "").splitlines():
            logger.info("  %s", line)
        return layout


def _naming_alternates(device: str, n: int) -> List[str]:
    expected = BlockDevice(path=device, size_bytes=0).partition(n)
    return [p for p in (f"{device}{n}", f"{device}p{n}") if p != expected]


def check_min_size(device: BlockDevice, min_gib: int, boot_size_mib: int) -> None:
    if device.size_gib < min_gib:
        raise DeviceError(
            f"Insufficient disk space on {device.path}. Minimum required: {min_gib} GiB "
            f"({boot_size_mib} MiB EFI + root), available: {device.size_gib} GiB"
        )


def describe_layout(device: BlockDevice, boot_size_mib: int) -> List[str]:
    root_gib = device.size_gib - (boot_size_mib + BOOT_OFFSET_MIB + 1023) // 1024
    return [
        f"Boot: {device.partition(1)} ({boot_size_mib} MiB EFI, FAT32)",
        f"Root: {device.partition(2)} (~{root_gib} GiB, LUKS2 + BTRFS subvolumes)",
    ]
