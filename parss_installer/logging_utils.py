from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional, Tuple

DEFAULT_LOG_DIR = "/var/log"

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

SECTION_RULE = "=" * 80

_FMT = logging.Formatter(
    fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S%z",
)


def log_paths(log_dir: str, run_id: str) -> Tuple[str, str]:
    """Return (transcript, error transcript) paths for a run."""

    base = Path(log_dir)
    return (
        str(base / f"parss-install-{run_id}.log"),
        str(base / f"parss-install-errors-{run_id}.log"),
    )


def log_success(logger: logging.Logger, msg: str, *args: object) -> None:
    logger.log(SUCCESS, msg, *args)


def log_section(logger: logging.Logger, title: str) -> None:
    logger.info("")
    logger.info(SECTION_RULE)
    logger.info(title)
    logger.info(SECTION_RULE)


def _file_handler(path: str, level: int) -> Tuple[logging.Handler, str]:
    try:
        Path(os.path.dirname(path) or ".").mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(path)
        chosen = path
    except OSError:
        # Live media may not allow writes to /var/log.
        chosen = str(Path.cwd() / os.path.basename(path))
        handler = logging.FileHandler(chosen)
    handler.setLevel(level)
    handler.setFormatter(_FMT)
    return handler, chosen


def configure_logging(
    log_path: str,
    error_log_path: str,
    level: int = logging.DEBUG,
    console_level: int = logging.INFO,
    also_console: bool = True,
) -> Tuple[str, str]:
    """Configure the transcript, the error-only transcript and the console.

    Calling it again replaces the handlers installed by the previous call, so a
    menu session that starts several runs gets one pair of files per run.

    Returns the actual (transcript, error transcript) paths in use.
    """

    root = logging.getLogger()
    root.setLevel(level)

    for h in getattr(root, "_parss_handlers", []):
        root.removeHandler(h)
        h.close()

    handlers: list[logging.Handler] = []

    transcript, actual_log = _file_handler(log_path, level)
    handlers.append(transcript)

    errors, actual_err = _file_handler(error_log_path, logging.ERROR)
    handlers.append(errors)

    console: Optional[logging.Handler] = None
    if also_console:
        console = logging.StreamHandler()
        console.setLevel(console_level)
        console.setFormatter(_FMT)
        handlers.append(console)

    for h in handlers:
        root.addHandler(h)

    setattr(root, "_parss_handlers", handlers)

    logging.getLogger(__name__).info(
        "Logging initialized (transcript=%s, errors=%s)", actual_log, actual_err
    )
    return actual_log, actual_err
