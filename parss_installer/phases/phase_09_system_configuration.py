from __future__ import annotations

import logging
import re

from ..errors import CommandError, FatalError
from ..lib.chroot import chroot_cmd, read_target_file, write_target_file
from ..session import InstallationSession

logger = logging.getLogger(__name__)

LOCALE = "en_US.UTF-8"
REQUIRED_SERVICES = ["NetworkManager", "sshd"]
OPTIONAL_SERVICES = ["systemd-timesyncd", "fstrim.timer", "wpa_supplicant"]
SSHD_SETTINGS = {"PermitRootLogin": "no", "PasswordAuthentication": "yes"}
SUDOERS_DROPIN = "/etc/sudoers.d/10-wheel"


def set_sshd_option(text: str, key: str, value: str) -> str:
    pattern = re.compile(rf"^#?\s*{key}\s.*$", re.MULTILINE)
    line = f"{key} {value}"
    if pattern.search(text):
        return pattern.sub(line, text, count=1)
    return text.rstrip("\n") + f"\n{line}\n"


def hosts_file(hostname: str) -> str:
    return (
        "127.0.0.1       localhost\n"
        "::1             localhost ip6-localhost ip6-loopback\n"
        f"127.0.1.1       {hostname}.localdomain {hostname}\n"
    )


class SystemConfigurationPhase:
    phase_id = "9"
    title = "SYSTEM CONFIGURATION"
    requires = ("MOUNT_ROOT", "HOSTNAME_SYS", "SYSTEM_TIMEZONE")

    def run(self, session: InstallationSession) -> None:
        root = session.require("MOUNT_ROOT")
        hostname = session.require("HOSTNAME_SYS")
        timezone = session.require("SYSTEM_TIMEZONE")

        write_target_file(root, "/etc/hostname", f"{hostname}\n")
        write_target_file(root, "/etc/hosts", hosts_file(hostname))

        try:
            chroot_cmd(root, ["ln", "-sf", f"/usr/share/zoneinfo/{timezone}", "/etc/localtime"])
            write_target_file(root, "/etc/locale.gen", f"{LOCALE} UTF-8\n")
            chroot_cmd(root, ["locale-gen"])
            for svc in REQUIRED_SERVICES:
                chroot_cmd(root, ["systemctl", "enable", svc])
        except CommandError as e:
            raise FatalError(f"System configuration failed: {e}") from e
        write_target_file(root, "/etc/locale.conf", f"LANG={LOCALE}\n")

        retry = session.retry
        retry.run_best_effort(lambda: chroot_cmd(root, ["hwclock", "--systohc"]), "Syncing hardware clock")
        for svc in OPTIONAL_SERVICES:
            retry.run_best_effort(lambda svc=svc: chroot_cmd(root, ["systemctl", "enable", svc]), f"Enabling {svc}")

        sshd = read_target_file(root, "/etc/ssh/sshd_config")
        if sshd is None:
            logger.warning("SSH config file not found, skipping SSH hardening")
        else:
            for key, value in SSHD_SETTINGS.items():
                sshd = set_sshd_option(sshd, key, value)
            write_target_file(root, "/etc/ssh/sshd_config", sshd)
            logger.info("SSH configured: root login disabled")

        write_target_file(root, SUDOERS_DROPIN, "%wheel ALL=(ALL:ALL) ALL\n", mode=0o440)
        if not chroot_cmd(root, ["visudo", "-c"], check=False).ok:
            raise FatalError("sudoers configuration validation failed")

        session.record("SYSTEM_CONFIGURED", True)
