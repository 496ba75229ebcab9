from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Sequence

from ..logging_utils import log_success
from .bootloader import MKINITCPIO_CONF, get_shell_var
from .chroot import read_target_file
from .command import run_cmd
from .filesystem import ESP_MOUNT_PATH, Subvolume
from .fstab import parse_crypttab, parse_fstab
from .pkg import package_count

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Check:
    name: str
    ok: bool
    detail: str = ""


@dataclass
class VerificationReport:
    checks: List[Check] = field(default_factory=list)
    package_count: int = -1

    def add(self, name: str, ok: bool, detail: str = "") -> None:
        self.checks.append(Check(name, ok, detail))

    @property
    def anomalies(self) -> List[Check]:
        return [c for c in self.checks if not c.ok]

    @property
    def clean(self) -> bool:
        return not self.anomalies


def listed_subvolumes(mount_root: str) -> List[str]:
    """Paths from `btrfs subvolume list` (last column)."""

    r = run_cmd(["btrfs", "subvolume", "list", mount_root], check=False)
    names: List[str] = []
    for line in (r.stdout or "").splitlines():
        parts = line.split()
        if parts and "path" in parts:
            names.append(parts[-1])
    return names


class VerificationReporter:
    """Re-read what the earlier phases wrote and log it for review.

    Nothing here gates the run. Anomalies go to the error transcript so they are
    hard to miss.
    """

    def __init__(
        self,
        mount_root: str,
        luks_name: str,
        subvolumes: Sequence[Subvolume],
        *,
        root_partuuid: str = "",
    ) -> None:
        self.mount_root = mount_root
        self.luks_name = luks_name
        self.subvolumes = list(subvolumes)
        self.root_partuuid = root_partuuid

    def check_crypttab(self, report: VerificationReport) -> None:
        text = read_target_file(self.mount_root, "/etc/crypttab")
        if text is None:
            report.add("crypttab", False, "/etc/crypttab not found")
            return
        for line in text.splitlines():
            logger.info("  crypttab: %s", line)
        entries = [e for e in parse_crypttab(text) if e.name == self.luks_name]
        if not entries:
            report.add("crypttab", False, f"no entry for {self.luks_name}")
        elif self.root_partuuid and entries[0].device != f"PARTUUID={self.root_partuuid}":
            report.add("crypttab", False, f"{self.luks_name} maps {entries[0].device}, expected PARTUUID={self.root_partuuid}")
        else:
            report.add("crypttab", True, entries[0].device)

    def check_fstab(self, report: VerificationReport) -> None:
        text = read_target_file(self.mount_root, "/etc/fstab")
        if text is None:
            report.add("fstab", False, "/etc/fstab not found")
            return
        for line in text.splitlines():
            logger.info("  fstab: %s", line)
        by_path = {e.mountpoint: e for e in parse_fstab(text)}
        missing: List[str] = []
        for sv in self.subvolumes:
            entry = by_path.get(sv.mount_path)
            if entry is None or f"subvol={sv.name}" not in entry.options.split(","):
                missing.append(sv.mount_path)
        if ESP_MOUNT_PATH not in by_path:
            missing.append(ESP_MOUNT_PATH)
        if missing:
            report.add("fstab", False, "missing or wrong entries: " + ", ".join(missing))
        else:
            report.add("fstab", True, f"{len(by_path)} entries")

    def check_initramfs_config(self, report: VerificationReport) -> None:
        text = read_target_file(self.mount_root, MKINITCPIO_CONF) or ""
        hooks = get_shell_var(text, "HOOKS") or ""
        modules = get_shell_var(text, "MODULES") or ""
        logger.info("  MODULES=%s", modules)
        logger.info("  HOOKS=%s", hooks)
        ok = "encrypt" in hooks.strip("()").split() and "btrfs" in modules.strip("()").split()
        report.add("mkinitcpio", ok, hooks)

    def check_subvolumes(self, report: VerificationReport) -> None:
        found = listed_subvolumes(self.mount_root)
        for name in found:
            logger.info("  subvolume: %s", name)
        missing = [sv.name for sv in self.subvolumes if sv.name not in found]
        if missing:
            report.add("subvolumes", False, "missing: " + ", ".join(missing))
        else:
            report.add("subvolumes", True, f"{len(found)} listed")

    def check_packages(self, report: VerificationReport) -> None:
        count = package_count(self.mount_root)
        report.package_count = count
        logger.info("Total packages installed: %d", count)
        report.add("packages", count > 0, str(count))

    def run(self) -> VerificationReport:
        report = VerificationReport()
        logger.info("Verifying installation completeness...")
        self.check_crypttab(report)
        self.check_fstab(report)
        self.check_initramfs_config(report)
        self.check_subvolumes(report)
        self.check_packages(report)

        if report.clean:
            log_success(logger, "Verification found no anomalies")
        else:
            for c in report.anomalies:
                logger.error("VERIFICATION ANOMALY [%s]: %s", c.name, c.detail)
            logger.error("%d anomalies found; review them before rebooting", len(report.anomalies))
        return report
