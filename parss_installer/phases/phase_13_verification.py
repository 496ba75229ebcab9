from __future__ import annotations

import logging
from typing import Optional

from ..lib.encryption import close_volume
from ..lib.filesystem import unmount_tree
from ..lib.verify import VerificationReport, VerificationReporter
from ..logging_utils import log_success
from ..session import InstallationSession

logger = logging.getLogger(__name__)


class VerificationPhase:
    phase_id = "13"
    title = "FINAL VERIFICATION & UNMOUNTING"
    requires = ("MOUNT_ROOT", "LUKS_ROOT_NAME")

    def __init__(self) -> None:
        self.report: Optional[VerificationReport] = None

    def run(self, session: InstallationSession) -> None:
        root = session.require("MOUNT_ROOT")
        reporter = VerificationReporter(
            root,
            session.luks_name,
            session.subvolumes(),
            root_partuuid=session.fact("ROOT_PARTUUID") or "",
        )
        self.report = reporter.run()
        session.record("VERIFICATION_ANOMALIES", len(self.report.anomalies))

        if session.config.skip_unmount:
            logger.warning("Skipping unmount: %s stays mounted and %s stays open", root, session.luks_name)
        else:
            logger.info("Unmounting filesystems...")
            if not unmount_tree(root):
                logger.warning("Could not unmount %s cleanly", root)
            close_volume(session.luks_name)
            log_success(logger, "Filesystems unmounted and encrypted volume closed")

        session.record("INSTALLATION_COMPLETE", True)
