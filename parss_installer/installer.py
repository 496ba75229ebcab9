from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Sequence

from . import __version__
from .install_config import InstallConfig
from .lib.prompts import Prompter
from .logging_utils import configure_logging, log_paths, log_section, log_success
from .phases import build_phases
from .pipeline import Phase, PipelineResult, run_pipeline
from .session import new_run_id, open_session

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_DECLINED = 3
EXIT_INTERRUPTED = 130


def exit_code(result: PipelineResult) -> int:
    if result.ok:
        return EXIT_OK
    if result.declined:
        return EXIT_DECLINED
    return EXIT_FATAL


def latest_session_file(state_dir: str) -> Optional[str]:
    files = sorted(Path(state_dir).glob("session-*.env"), key=lambda p: p.stat().st_mtime)
    return str(files[-1]) if files else None


def run_installation(
    config: InstallConfig,
    *,
    start_at: Optional[str] = None,
    only: Optional[str] = None,
    session_path: Optional[str] = None,
    debug: bool = False,
    prompter: Optional[Prompter] = None,
    phases: Optional[Sequence[Phase]] = None,
    also_console: bool = True,
) -> PipelineResult:
    """Set up logging and the session, then run the pipeline."""

    run_id = new_run_id()
    log_path, error_log_path = log_paths(config.log_dir, run_id)
    actual_log, actual_err = configure_logging(
        log_path,
        error_log_path,
        console_level=logging.DEBUG if debug else logging.INFO,
        also_console=also_console,
    )

    session = open_session(
        config,
        log_path=actual_log,
        error_log_path=actual_err,
        run_id=run_id,
        state_path=session_path,
        prompter=prompter,
    )
    logger.info("parss-installer %s (run %s)", __version__, run_id)
    logger.info("Session state: %s", session.state.path)

    result = run_pipeline(session, phases or build_phases(), start_at=start_at, only=only)
    if result.ok:
        log_section(logger, "INSTALLATION COMPLETE")
        log_success(logger, "Phases run: %s", ", ".join(result.ran_phases))
        logger.info("Transcript: %s", actual_log)
        logger.info("Session state: %s", session.state.path)
        if "13" in result.ran_phases and not config.skip_unmount:
            logger.info("Remove the installation media and reboot. You will be asked for the LUKS passphrase.")
    return result
