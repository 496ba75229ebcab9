from __future__ import annotations

import logging

from ..errors import FatalError
from ..lib.block import device_size_bytes
from ..lib.confirm import ConfirmationGate
from ..lib.disk import DeviceProvisioner
from ..session import InstallationSession

logger = logging.getLogger(__name__)


class DiskPreparationPhase:
    phase_id = "3"
    title = "DISK PREPARATION & PARTITIONING"
    requires = ("TARGET_DEVICE", "BOOT_PARTITION", "ROOT_PARTITION")

    def run(self, session: InstallationSession) -> None:
        device = session.require("TARGET_DEVICE")
        cfg = session.config
        provisioner = DeviceProvisioner(
            device, boot_size_mib=cfg.boot_size_mib, settle_timeout=cfg.settle_timeout
        )

        layout = provisioner.layout
        for key, path in (("BOOT_PARTITION", layout.boot.path), ("ROOT_PARTITION", layout.root.path)):
            recorded = session.require(key)
            if recorded != path:
                raise FatalError(f"{key}={recorded} does not match {device} (expected {path})")

        size = int(session.fact("TARGET_SIZE_BYTES") or device_size_bytes(device))
        provisioner.provision(ConfirmationGate(session.prompter), size, mount_roots=[session.mount_root])
        session.record("PARTITIONS_VERIFIED", True)
