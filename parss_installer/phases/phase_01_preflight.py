from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from ..errors import FatalError
from ..lib.net import is_online
from ..logging_utils import log_success
from ..session import InstallationSession

logger = logging.getLogger(__name__)

REQUIRED_TOOLS = [
    "cryptsetup", "sgdisk", "partprobe", "wipefs", "udevadm", "blkid", "lsblk", "findmnt",
    "mkfs.btrfs", "mkfs.fat", "btrfs", "pacstrap", "arch-chroot",
]
MIN_RAM_GIB = 4


def ram_gib(meminfo: str = "/proc/meminfo") -> int:
    try:
        for line in Path(meminfo).read_text(encoding="utf-8").splitlines():
            if line.startswith("MemTotal:"):
                return int(line.split()[1]) // (1024 * 1024)
    except (OSError, ValueError, IndexError):
        pass
    return -1


class PreflightPhase:
    phase_id = "1"
    title = "PRE-FLIGHT VALIDATION"
    requires = ()

    def run(self, session: InstallationSession) -> None:
        if os.geteuid() != 0:
            raise FatalError("This installer must be run as root")

        if not Path("/sys/firmware/efi").is_dir():
            logger.warning("System does not appear to be booted in UEFI mode; GRUB EFI install will fail")

        logger.info("Checking system resources...")
        logger.debug("CPU cores: %s", os.cpu_count())
        ram = ram_gib()
        if 0 <= ram < MIN_RAM_GIB:
            logger.warning("RAM is below recommended %d GiB (current: %d GiB)", MIN_RAM_GIB, ram)

        if is_online(session.retry):
            log_success(logger, "Network connectivity verified")
        else:
            logger.warning("Network connectivity check failed; package installation will likely fail")

        logger.info("Verifying required tools...")
        missing = [t for t in REQUIRED_TOOLS if shutil.which(t) is None]
        for tool in missing:
            logger.error("Required tool not found: %s", tool)
        if missing:
            raise FatalError(f"Required tools not found: {', '.join(missing)}")
