"""Read-only inspection tools for an installed system.

Every probe is best-effort; a missing tool shows up as a line in the report.
"""

from __future__ import annotations

import logging
import shutil
import socket
import time
from pathlib import Path
from typing import List

from .command import run_cmd
from .prompts import Prompter

logger = logging.getLogger(__name__)

SERVICES = ["NetworkManager", "sshd", "systemd-timesyncd", "fstrim.timer"]
AIDE_DB = "/var/lib/aide/aide.db.gz"
AIDE_DB_NEW = "/var/lib/aide/aide.db.new.gz"


def _output(argv: List[str], limit: int = 0) -> List[str]:
    r = run_cmd(argv, check=False)
    lines = (r.stdout or "").rstrip().splitlines() if r.ok else []
    return lines[:limit] if limit else lines


def _header(title: str) -> List[str]:
    return ["", f"=== PARSS {title} ===", f"Host: {socket.gethostname()}", f"Date: {time.ctime()}"]


def _indent(lines: List[str]) -> List[str]:
    return [f"  {l}" for l in lines]


def _usage(path: str, limit: int) -> List[str]:
    if shutil.which("btrfs"):
        lines = _output(["btrfs", "filesystem", "usage", path, "--human-readable"], limit)
        if lines:
            return lines
    return _output(["df", "-h", path])


def system_health() -> List[str]:
    out = _header("System Health Check")

    out += ["", "[1] Service Status"]
    for svc in SERVICES:
        active = run_cmd(["systemctl", "is-active", "--quiet", svc], check=False).ok
        out.append(f"  [OK] {svc} is running" if active else f"  [--] {svc} is INACTIVE")

    out += ["", "[2] Disk Usage"]
    out += _indent(_usage("/", 8))

    out += ["", "[3] Snapshot Status"]
    if Path("/.snapshots").is_dir():
        out.append(f"  Total snapshots: {len(_output(['btrfs', 'subvolume', 'list', '/.snapshots']))}")
    else:
        out.append("  Snapshot directory not found")

    out += ["", "[4] LUKS / Encryption Status"]
    crypttab = Path("/etc/crypttab")
    if crypttab.is_file():
        entries = [l for l in crypttab.read_text(encoding="utf-8").splitlines() if l.strip() and not l.startswith("#")]
        out.append("  /etc/crypttab entries:")
        out += [f"    {l}" for l in entries] or ["    (no active entries)"]
    else:
        out.append("  [--] /etc/crypttab missing")
    grub = Path("/etc/default/grub")
    if grub.is_file():
        if "cryptdevice=" in grub.read_text(encoding="utf-8"):
            out.append("  [OK] GRUB has cryptdevice parameter")
        else:
            out.append("  [--] cryptdevice missing from GRUB")

    out += ["", "[5] Memory & Load"]
    out += _indent(_output(["free", "-h"], 2))
    try:
        load = Path("/proc/loadavg").read_text(encoding="utf-8").split()[:3]
        out.append(f"  Load average: {' '.join(load)}")
    except OSError:
        out.append("  Load average: unavailable")

    out += ["", "Health check complete."]
    return out


def btrfs_dashboard() -> List[str]:
    out = _header("BTRFS Dashboard")
    have_btrfs = bool(shutil.which("btrfs"))

    out += ["", "[1] Block Devices"]
    out += _indent(_output(["lsblk", "-o", "NAME,SIZE,TYPE,FSTYPE,MOUNTPOINTS"]))

    out += ["", "[2] BTRFS Filesystems"]
    if have_btrfs:
        out += _indent(_output(["btrfs", "filesystem", "show"])) or ["  No BTRFS filesystems detected."]
    else:
        out.append("  btrfs command not available.")

    out += ["", "[3] Root Filesystem Usage"]
    out += _indent(_usage("/", 15))

    out += ["", "[4] BTRFS Subvolumes"]
    if have_btrfs:
        out += _indent(_output(["btrfs", "subvolume", "list", "/"])) or ["  No subvolumes or not a BTRFS root."]
    else:
        out.append("  btrfs command not available.")

    out += ["", "[5] Snapshots"]
    if Path("/.snapshots").is_dir():
        out += _indent(_output(["btrfs", "subvolume", "list", "/.snapshots"])) or ["  No snapshots found."]
    else:
        out.append("  /.snapshots directory not found.")

    out += ["", "Dashboard complete."]
    return out


def integrity_check(prompter: Prompter) -> List[str]:
    """Run AIDE; offers to install and initialise it when missing."""

    out = ["", "=== PARSS Integrity Check (AIDE) ==="]
    if not shutil.which("aide"):
        out.append("AIDE is not installed.")
        if not prompter.ask_yes_no("Install AIDE now?", default=False):
            out.append("Skipping AIDE installation.")
            return out
        run_cmd(["pacman", "-S", "--needed", "--noconfirm", "aide"], check=False)
        out.append("Initializing AIDE database (this may take a while)...")
        if run_cmd(["aide", "--init"], check=False).ok and Path(AIDE_DB_NEW).is_file():
            Path(AIDE_DB_NEW).replace(AIDE_DB)
            out.append("AIDE initialized successfully.")
        else:
            out.append("AIDE initialization failed; see the installer log.")
        return out

    out.append("Running AIDE integrity check (this may take several minutes)...")
    if run_cmd(["aide", "--check"], check=False).ok:
        out.append("System integrity verified: No changes detected.")
    else:
        logger.warning("AIDE reported filesystem changes")
        out.append("WARNING: Changes detected in filesystem!")
        out.append("Check /var/log/aide.log for details.")
    return out
