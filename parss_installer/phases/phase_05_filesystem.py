from __future__ import annotations

import logging

from ..errors import FatalError
from ..lib.encryption import mapper_is_open
from ..lib.filesystem import FilesystemProvisioner
from ..session import InstallationSession

logger = logging.getLogger(__name__)


class FilesystemPhase:
    phase_id = "5"
    title = "BTRFS FILESYSTEM SETUP"
    requires = ("BOOT_PARTITION", "LUKS_ROOT_NAME", "ROOT_CRYPT_OPENED")

    def run(self, session: InstallationSession) -> None:
        boot = session.require("BOOT_PARTITION")
        name = session.luks_name
        if not mapper_is_open(name):
            raise FatalError(f"/dev/mapper/{name} is not open; run phase 4 or cryptsetup open first")

        subvolumes = session.subvolumes()
        fs = FilesystemProvisioner(f"/dev/mapper/{name}", session.mount_root, subvolumes)
        fs.provision(boot)

        session.record("MOUNT_ROOT", fs.mount_root)
        session.record("SUBVOLUMES", ",".join(sv.name for sv in subvolumes))
        session.record("BTRFS_MOUNTED", True)
