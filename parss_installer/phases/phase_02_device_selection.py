from __future__ import annotations

import logging
from typing import List

from ..errors import DeviceError
from ..lib.block import BlockDevice, list_disks
from ..lib.disk import check_min_size, describe_layout, validate_target
from ..session import InstallationSession

logger = logging.getLogger(__name__)


def choose_disk(session: InstallationSession, disks: List[BlockDevice]) -> str:
    if len(disks) == 1:
        logger.info("Auto-selecting only available device: %s", disks[0].path)
        return disks[0].path

    p = session.prompter
    for i, d in enumerate(disks, start=1):
        p.say(f"  ({i}) {d.path} - {d.size_gib} GiB - {d.kind}")
    p.say("")
    choice = p.ask_validated(
        f"Select storage device (1-{len(disks)})",
        lambda v: v.isdigit() and 1 <= int(v) <= len(disks),
        error="Invalid selection",
    )
    return disks[int(choice) - 1].path


class DeviceSelectionPhase:
    phase_id = "2"
    title = "DEVICE & PARTITION CONFIGURATION"
    requires = ()

    def run(self, session: InstallationSession) -> None:
        cfg = session.config
        device = cfg.target_device
        if device:
            logger.info("Using configured target device: %s", device)
        else:
            disks = list_disks()
            if not disks:
                raise DeviceError("No suitable storage devices found")
            logger.info("Available block devices:")
            device = choose_disk(session, disks)

        target = validate_target(device, session.prompter, mount_roots=[session.mount_root])
        session.record("TARGET_DEVICE", target.path)
        session.record("TARGET_SIZE_BYTES", target.size_bytes)

        logger.info("Available disk space: %d GiB", target.size_gib)
        check_min_size(target, cfg.min_disk_gib, cfg.boot_size_mib)

        logger.info("Partition configuration:")
        for line in describe_layout(target, cfg.boot_size_mib):
            logger.info("  %s", line)
        session.record("BOOT_PARTITION", target.partition(1))
        session.record("ROOT_PARTITION", target.partition(2))
