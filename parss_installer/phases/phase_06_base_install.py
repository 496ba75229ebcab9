from __future__ import annotations

import logging

from ..errors import FatalError
from ..install_config import NVIDIA_PACKAGES
from ..lib.pkg import free_space_gib, init_keyring, pacstrap, sync_package_index
from ..session import InstallationSession

logger = logging.getLogger(__name__)


class BaseInstallPhase:
    phase_id = "6"
    title = "BASE SYSTEM INSTALLATION (PACSTRAP)"
    requires = ("MOUNT_ROOT", "BTRFS_MOUNTED")

    def run(self, session: InstallationSession) -> None:
        root = session.require("MOUNT_ROOT")
        cfg = session.config

        logger.info("Updating pacman keyring...")
        init_keyring(session.retry)
        sync_package_index(session.retry)

        free = free_space_gib(root)
        if free < cfg.min_free_gib:
            raise FatalError(
                f"Insufficient disk space for base installation ({free} GiB available, need {cfg.min_free_gib} GiB)"
            )
        logger.info("Available space for installation: %d GiB", free)

        packages = list(cfg.base_packages)
        if session.flag("ENABLE_NVIDIA_GPU", cfg.enable_nvidia):
            packages += [p for p in NVIDIA_PACKAGES if p not in packages]
        logger.info("This will take 5-15 minutes depending on network speed...")
        pacstrap(session.retry, root, packages)
        session.record("BASE_INSTALLED", True)
