from __future__ import annotations

import logging

from ..errors import CommandError, FatalError
from ..lib.chroot import chroot_cmd, write_target_file
from ..lib.prompts import MIN_SNAPSHOT_RETENTION
from ..session import InstallationSession

logger = logging.getLogger(__name__)

SCRIPT_PATH = "/usr/local/bin/btrfs-snapshot-weekly.sh"
UNIT_NAME = "btrfs-snapshot-weekly"

SNAPSHOT_SCRIPT = """#!/usr/bin/env bash
set -euo pipefail

readonly SNAPSHOT_DIR="/.snapshots"
readonly TIMESTAMP=$(date +%Y%m%d-%H%M%S)
readonly LOG_FILE="/var/log/btrfs-snapshots.log"
readonly MAX_SNAPSHOTS={retention}

log_snapshot() {{
    echo "[$(date +'%Y-%m-%d %H:%M:%S')] $1" >> "$LOG_FILE"
}}

log_snapshot "Starting weekly snapshot process"

for subvol in "@" "@home"; do
    snapshot_name="${{subvol}}-snapshot-${{TIMESTAMP}}"
    if btrfs subvolume snapshot -r "/${{subvol#@}}" "$SNAPSHOT_DIR/$snapshot_name" 2>/dev/null; then
        log_snapshot "Snapshot created: $snapshot_name"
    else
        log_snapshot "Failed to create snapshot: $snapshot_name"
    fi
done

current_count=$(btrfs subvolume list -o "$SNAPSHOT_DIR" 2>/dev/null | wc -l || echo 0)
if [[ $current_count -gt $MAX_SNAPSHOTS ]]; then
    log_snapshot "Snapshot count ($current_count) exceeds limit, cleaning up..."
    btrfs subvolume list -o "$SNAPSHOT_DIR" 2>/dev/null | awk '{{print $NF}}' | xargs -n1 basename | sort | \\
        head -n $((current_count - MAX_SNAPSHOTS)) | while read -r snap; do
            if btrfs subvolume delete "$SNAPSHOT_DIR/$snap" 2>/dev/null; then
                log_snapshot "Deleted old snapshot: $snap"
            fi
        done
fi

log_snapshot "Weekly snapshot process completed"
"""

SERVICE_UNIT = f"""[Unit]
Description=Weekly BTRFS Snapshot Service
After=local-fs.target

[Service]
Type=oneshot
ExecStart={SCRIPT_PATH}
StandardOutput=journal
StandardError=journal
"""

TIMER_UNIT = f"""[Unit]
Description=Weekly BTRFS Snapshot Timer
Documentation=man:btrfs(8)

[Timer]
OnCalendar=Sun *-*-* 02:00:00
RandomizedDelaySec=5min
Persistent=true
Unit={UNIT_NAME}.service

[Install]
WantedBy=timers.target
"""


class SnapshotAutomationPhase:
    phase_id = "12"
    title = "BTRFS SNAPSHOT AUTOMATION"
    requires = ("MOUNT_ROOT",)

    def run(self, session: InstallationSession) -> None:
        root = session.require("MOUNT_ROOT")
        retention = int(session.fact("SNAPSHOT_RETENTION") or session.config.snapshot_retention)
        retention = max(retention, MIN_SNAPSHOT_RETENTION)

        write_target_file(root, SCRIPT_PATH, SNAPSHOT_SCRIPT.format(retention=retention), mode=0o755)
        write_target_file(root, f"/etc/systemd/system/{UNIT_NAME}.service", SERVICE_UNIT)
        write_target_file(root, f"/etc/systemd/system/{UNIT_NAME}.timer", TIMER_UNIT)
        try:
            chroot_cmd(root, ["systemctl", "enable", f"{UNIT_NAME}.timer"])
        except CommandError as e:
            raise FatalError("Enabling the snapshot timer failed") from e

        logger.info("Weekly snapshots of @ and @home, keeping %d", retention)
        session.record("SNAPSHOTS_CONFIGURED", True)
