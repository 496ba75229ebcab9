from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional

from . import __version__
from .errors import InstallerError
from .install_config import InstallConfig, load_install_config
from .installer import EXIT_FATAL, EXIT_INTERRUPTED, EXIT_OK, exit_code, run_installation
from .lib import health
from .lib.prompts import Prompter
from .menu import run_menu

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="parss-installer",
        description="Encrypted BTRFS Arch Linux installer (LUKS2 + subvolumes + GRUB).",
    )
    mode = p.add_mutually_exclusive_group()
    mode.add_argument("--install", action="store_true", help="Run the full installation")
    mode.add_argument("--start-from", metavar="PHASE", default=None, help="Run from PHASE to the end (e.g. 6)")
    mode.add_argument("--phase", metavar="PHASE", default=None, help="Run only PHASE")
    mode.add_argument("--menu", action="store_true", help="Interactive menu (default)")
    mode.add_argument("--health", action="store_true", help="Run system health check")
    mode.add_argument("--btrfs", action="store_true", help="Show BTRFS dashboard")
    mode.add_argument("--integrity", action="store_true", help="Run integrity check (AIDE)")

    p.add_argument("--skip-unmount", action="store_true", help="Leave the target mounted after verification")
    p.add_argument("--config", default=None, help="Installer configuration (yaml)")
    p.add_argument("--session", default=None, help="Session state file to resume")
    p.add_argument("--log-dir", default=None, help="Directory for the transcript and error log")
    p.add_argument("--debug", action="store_true", help="Show debug output on the console")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return p


def _print(lines) -> None:
    for line in lines:
        print(line)


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config: InstallConfig = load_install_config(args.config).with_overrides(
            skip_unmount=True if args.skip_unmount else None,
            log_dir=args.log_dir,
        )
    except (InstallerError, OSError) as e:
        print(f"parss-installer: cannot load configuration: {e}", file=sys.stderr)
        return EXIT_FATAL

    try:
        if args.health:
            _print(health.system_health())
            return EXIT_OK
        if args.btrfs:
            _print(health.btrfs_dashboard())
            return EXIT_OK
        if args.integrity:
            _print(health.integrity_check(Prompter()))
            return EXIT_OK

        if args.install or args.start_from or args.phase:
            result = run_installation(
                config,
                start_at=args.start_from,
                only=args.phase,
                session_path=args.session,
                debug=args.debug,
            )
            return exit_code(result)

        return run_menu(config, session_path=args.session, debug=args.debug)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return EXIT_INTERRUPTED
    except InstallerError as e:
        logger.error("%s", e)
        print(f"parss-installer: {e}", file=sys.stderr)
        return EXIT_FATAL


if __name__ == "__main__":
    raise SystemExit(main())
