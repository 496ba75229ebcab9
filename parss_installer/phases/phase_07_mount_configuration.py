from __future__ import annotations

import logging
from typing import List

from ..lib.block import get_partuuid, get_uuid, is_mountpoint
from ..lib.chroot import write_target_file
from ..lib.filesystem import ESP_MOUNT_PATH, ESP_OPTIONS
from ..lib.fstab import CrypttabEntry, FstabEntry, render_crypttab, render_fstab
from ..session import InstallationSession

logger = logging.getLogger(__name__)


class MountConfigurationPhase:
    phase_id = "7"
    title = "MOUNT & CRYPTTAB CONFIGURATION"
    requires = ("MOUNT_ROOT", "BOOT_PARTITION", "ROOT_PARTITION", "LUKS_ROOT_NAME")

    def run(self, session: InstallationSession) -> None:
        root = session.require("MOUNT_ROOT")
        boot = session.require("BOOT_PARTITION")
        partition = session.require("ROOT_PARTITION")
        name = session.luks_name

        btrfs_uuid = get_uuid(f"/dev/mapper/{name}")
        entries: List[FstabEntry] = []
        for sv in session.subvolumes():
            target = root if sv.mount_path == "/" else f"{root}{sv.mount_path}"
            if not is_mountpoint(target):
                logger.warning("%s is not mounted; writing its fstab entry anyway", target)
            entries.append(FstabEntry(f"UUID={btrfs_uuid}", sv.mount_path, "btrfs", sv.mount_options))
        entries.append(
            FstabEntry(f"UUID={get_uuid(boot)}", ESP_MOUNT_PATH, "vfat", ",".join(ESP_OPTIONS), 0, 2)
        )

        fstab = render_fstab(entries)
        write_target_file(root, "/etc/fstab", fstab)
        for line in fstab.splitlines():
            logger.info("  %s", line)

        partuuid = get_partuuid(partition)
        crypttab = render_crypttab([CrypttabEntry(name, f"PARTUUID={partuuid}")])
        write_target_file(root, "/etc/crypttab", crypttab)
        for line in crypttab.splitlines():
            logger.info("  %s", line)

        session.record("ROOT_PARTUUID", partuuid)
        session.record("FSTAB_GENERATED", True)
