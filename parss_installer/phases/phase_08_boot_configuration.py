from __future__ import annotations

import logging

from ..lib import bootloader
from ..lib.block import get_uuid
from ..logging_utils import log_success
from ..session import InstallationSession

logger = logging.getLogger(__name__)


class BootConfigurationPhase:
    phase_id = "8"
    title = "INITRAMFS & BOOTLOADER"
    requires = ("MOUNT_ROOT", "ROOT_PARTITION", "LUKS_ROOT_NAME", "BASE_INSTALLED")

    def run(self, session: InstallationSession) -> None:
        root = session.require("MOUNT_ROOT")
        name = session.luks_name
        root_uuid = session.fact("ROOT_UUID") or get_uuid(session.require("ROOT_PARTITION"))

        logger.info("Configuring mkinitcpio for encrypted root...")
        bootloader.configure_mkinitcpio(root)
        bootloader.regenerate_initramfs(root, session.config.kernel)

        logger.info("Installing GRUB to the EFI partition...")
        bootloader.install_grub_efi(root)
        bootloader.configure_grub_defaults(root, root_uuid, name)
        bootloader.generate_grub_config(root)

        unlock_ok = bootloader.grub_config_has_unlock(root, root_uuid, name)
        if unlock_ok:
            log_success(logger, "cryptdevice parameter verified in grub.cfg")
        else:
            logger.warning("cryptdevice parameter for %s NOT found in grub.cfg", name)
            logger.warning("The system will probably not boot; check %s", bootloader.GRUB_DEFAULT)
        session.record("GRUB_INSTALLED", True)
        session.record("GRUB_UNLOCK_VERIFIED", unlock_ok)
