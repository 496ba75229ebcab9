from __future__ import annotations

import logging

from ..errors import FatalError, RetryableError
from .command import run_cmd
from .retry import RetryExecutor

logger = logging.getLogger(__name__)

PING_HOST = "archlinux.org"


def is_online(retry: RetryExecutor, host: str = PING_HOST) -> bool:
    """Best-effort online check; a miss is reported, never raised."""

    def _ping() -> None:
        r = run_cmd(["ping", "-c", "1", "-W", "5", host], check=False)
        if not r.ok:
            raise RetryableError(f"no reply from {host}")

    try:
        retry.run(_ping, "Checking network connectivity")
    except FatalError as e:
        logger.warning("Network unavailable: %s", e)
        return False
    return True
