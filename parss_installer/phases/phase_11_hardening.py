from __future__ import annotations

import logging

from ..lib.chroot import write_target_file
from ..session import InstallationSession

logger = logging.getLogger(__name__)

SYSCTL_PATH = "/etc/sysctl.d/99-hardening.conf"
SYSCTL_SETTINGS = {
    "kernel.dmesg_restrict": "1",
    "kernel.kptr_restrict": "2",
    "kernel.randomize_va_space": "2",
    "net.ipv4.tcp_syncookies": "1",
    "net.ipv4.conf.all.rp_filter": "1",
    "net.ipv4.conf.default.rp_filter": "1",
    "fs.protected_fifos": "2",
    "fs.protected_regular": "2",
    "fs.protected_symlinks": "1",
    "fs.protected_hardlinks": "1",
}


def render_sysctl() -> str:
    lines = ["# Kernel hardening written by parss-installer"]
    lines += [f"{k} = {v}" for k, v in SYSCTL_SETTINGS.items()]
    return "\n".join(lines) + "\n"


class HardeningPhase:
    phase_id = "11"
    title = "SECURITY HARDENING"
    requires = ("MOUNT_ROOT",)

    def run(self, session: InstallationSession) -> None:
        write_target_file(session.require("MOUNT_ROOT"), SYSCTL_PATH, render_sysctl())
        session.record("HARDENING_APPLIED", True)
