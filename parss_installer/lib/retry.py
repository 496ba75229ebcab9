from __future__ import annotations

import logging
import time
from typing import Callable, Optional, TypeVar

from ..errors import CommandError, FatalError, RetryableError
from ..logging_utils import log_success
from .command import CmdResult, fmt_argv, run_cmd

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ATTEMPTS = 3
DEFAULT_DELAY_S = 5.0

RETRYABLE = (RetryableError, CommandError)


class RetryExecutor:
    """Bounded attempts with a fixed delay.

    Only for work whose failure is transient (network, package index). Never wrap
    destructive, exactly-once operations such as formatting with it.
    """

    def __init__(self, attempts: int = DEFAULT_ATTEMPTS, delay: float = DEFAULT_DELAY_S) -> None:
        if attempts < 1:
            raise ValueError("attempts must be >= 1")
        self.attempts = attempts
        self.delay = delay

    def run(self, fn: Callable[[], T], description: str, *, attempts: Optional[int] = None) -> T:
        """Return fn()'s value on first success; FatalError once attempts run out."""

        limit = self.attempts if attempts is None else attempts
        if limit < 1:
            raise ValueError("attempts must be >= 1")
        last: Optional[BaseException] = None

        for attempt in range(1, limit + 1):
            logger.info("[%d/%d] %s", attempt, limit, description)
            try:
                value = fn()
            except RETRYABLE as e:
                last = e
                logger.warning("[%d/%d] %s failed: %s", attempt, limit, description, e)
                if attempt < limit:
                    logger.warning("Retrying in %ss...", self.delay)
                    time.sleep(self.delay)
                continue
            log_success(logger, "%s - SUCCESS", description)
            return value

        logger.error("%s - FAILED after %d attempts", description, limit)
        raise FatalError(f"{description} failed after {limit} attempts: {last}") from last

    def run_best_effort(self, fn: Callable[[], object], description: str) -> bool:
        """Run non-critical work once; failure is a warning, never an error.

        Returns whether the work actually succeeded, for callers that want to log it.
        """

        try:
            fn()
        except Exception as e:  # noqa: BLE001 - diagnostics must never gate the run
            logger.warning("%s - FAILED (non-critical, continuing): %s", description, e)
            return False
        logger.debug("%s - SUCCESS", description)
        return True

    def run_cmd(self, argv: list[str], description: str, *, attempts: Optional[int] = None, **kwargs) -> CmdResult:
        """Retry an external command until it exits cleanly."""

        logger.debug("Retryable command: %s", fmt_argv(argv))
        return self.run(lambda: run_cmd(argv, **kwargs), description, attempts=attempts)
