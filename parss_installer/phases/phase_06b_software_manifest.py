from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..errors import FatalError
from ..lib.manifests import load_software_manifest
from ..lib.pkg import has_package, pacman_install
from ..session import InstallationSession

logger = logging.getLogger(__name__)


@dataclass
class ManifestReport:
    installed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    def summary(self) -> str:
        return f"installed={len(self.installed)} failed={len(self.failed)} skipped={len(self.skipped)}"


class SoftwareManifestPhase:
    """Install optional software one entry at a time. An entry failing does not stop the run."""

    phase_id = "6b"
    title = "SOFTWARE MANIFEST"
    requires = ("MOUNT_ROOT", "BASE_INSTALLED")

    def __init__(self) -> None:
        self.report: Optional[ManifestReport] = None

    def run(self, session: InstallationSession) -> None:
        path = session.config.software_manifest
        if not path:
            logger.info("No software manifest configured; skipping")
            return

        root = session.require("MOUNT_ROOT")
        report = ManifestReport()
        for entry in load_software_manifest(path):
            name, source = entry["name"], entry["source"]
            if source != "pacman":
                logger.warning("Skipping %s: unsupported source %r", name, source)
                report.skipped.append(name)
                continue
            if has_package(root, name):
                logger.info("%s is already installed", name)
                report.installed.append(name)
                continue
            try:
                pacman_install(session.retry, root, [name], f"Installing {name}")
            except FatalError as e:
                logger.error("Package %s failed to install: %s", name, e)
                report.failed.append(name)
                continue
            report.installed.append(name)

        self.report = report
        logger.info("Software manifest: %s", report.summary())
        if report.failed:
            logger.warning("Failed packages: %s", ", ".join(report.failed))
        session.record("SOFTWARE_REPORT", report.summary())
