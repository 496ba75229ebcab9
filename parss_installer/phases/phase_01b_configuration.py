from __future__ import annotations

import logging

from ..errors import ConfirmationDeclined
from ..lib.prompts import (
    normalize_retention,
    normalize_timezone,
    validate_hostname,
    validate_username,
    validate_volume_name,
)
from ..logging_utils import log_success
from ..session import InstallationSession

logger = logging.getLogger(__name__)


class ConfigurationPhase:
    """Collect the system identity. Config file values are the shown defaults."""

    phase_id = "1b"
    title = "INTERACTIVE SYSTEM CONFIGURATION"
    requires = ()

    def run(self, session: InstallationSession) -> None:
        cfg = session.config
        p = session.prompter
        p.say("")
        p.say("Press Enter to use default values shown in [brackets]")
        p.say("")

        hostname = p.ask_validated(
            "Hostname", validate_hostname, default=cfg.hostname,
            error="Invalid hostname (letters, digits and hyphens only)",
        )
        username = p.ask_validated(
            "Primary username", validate_username, default=cfg.username,
            error="Invalid username (letters, digits, underscore and hyphen only)",
        )
        luks_name = p.ask_validated(
            "LUKS device name", validate_volume_name, default=cfg.luks_name,
            error="Invalid volume name",
        )
        add_log = p.ask_yes_no("Create a separate @log subvolume for /var/log?", default=cfg.add_log_subvolume)
        nvidia = p.ask_yes_no("Install NVIDIA GPU drivers?", default=cfg.enable_nvidia)
        retention = normalize_retention(
            p.ask("Weekly snapshots to keep", str(cfg.snapshot_retention)), cfg.snapshot_retention
        )
        timezone = normalize_timezone(p.ask("Timezone", cfg.timezone), cfg.timezone, cfg.zoneinfo_dir)

        p.say("")
        p.say("INSTALLATION SUMMARY - Please Review")
        p.say(f"  Hostname:               {hostname}")
        p.say(f"  Username:               {username}")
        p.say(f"  LUKS device name:       {luks_name}")
        p.say(f"  BTRFS @log subvolume:   {add_log}")
        p.say(f"  NVIDIA GPU drivers:     {nvidia}")
        p.say(f"  Snapshot retention:     {retention} weeks")
        p.say(f"  System timezone:        {timezone}")
        p.say("")
        if not p.ask_yes_no("Proceed with installation?", default=False):
            raise ConfirmationDeclined("Installation cancelled at configuration summary")

        session.record("HOSTNAME_SYS", hostname)
        session.record("PRIMARY_USER", username)
        session.record("LUKS_ROOT_NAME", luks_name)
        session.record("ADD_LOG_SUBVOLUME", add_log)
        session.record("ENABLE_NVIDIA_GPU", nvidia)
        session.record("SNAPSHOT_RETENTION", retention)
        session.record("SYSTEM_TIMEZONE", timezone)
        log_success(logger, "Configuration saved to %s", session.state.path)
