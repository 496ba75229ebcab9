from __future__ import annotations

import itertools
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .errors import FatalError
from .install_config import InstallConfig
from .lib.filesystem import Subvolume, subvolume_plan
from .lib.prompts import Prompter
from .lib.retry import RetryExecutor
from .state_store import SessionState

logger = logging.getLogger(__name__)

# Which phase is expected to produce each fact, for diagnostics on resume.
FACT_PRODUCERS = {
    "HOSTNAME_SYS": "1b",
    "PRIMARY_USER": "1b",
    "LUKS_ROOT_NAME": "1b",
    "ADD_LOG_SUBVOLUME": "1b",
    "ENABLE_NVIDIA_GPU": "1b",
    "SNAPSHOT_RETENTION": "1b",
    "SYSTEM_TIMEZONE": "1b",
    "TARGET_DEVICE": "2",
    "TARGET_SIZE_BYTES": "2",
    "BOOT_PARTITION": "2",
    "ROOT_PARTITION": "2",
    "PARTITIONS_VERIFIED": "3",
    "ROOT_UUID": "4",
    "ROOT_CRYPT_OPENED": "4",
    "MOUNT_ROOT": "5",
    "BTRFS_MOUNTED": "5",
    "BASE_INSTALLED": "6",
    "ROOT_PARTUUID": "7",
}


_RUN_SEQ = itertools.count(1)


def new_run_id() -> str:
    # The sequence keeps runs started by one menu session within a second apart.
    return f"{time.strftime('%Y%m%d-%H%M%S')}-{os.getpid()}-{next(_RUN_SEQ)}"


def state_path_for(state_dir: str, run_id: str) -> str:
    return str(Path(state_dir) / f"session-{run_id}.env")


@dataclass
class InstallationSession:
    """Everything a phase may read or change, passed explicitly to each phase."""

    run_id: str
    config: InstallConfig
    state: SessionState
    log_path: str
    error_log_path: str
    prompter: Prompter = field(default_factory=Prompter)
    retry: RetryExecutor = field(default_factory=RetryExecutor)
    cursor: Optional[str] = None

    def fact(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.state.get(key, default)

    def flag(self, key: str, default: bool = False) -> bool:
        return self.state.get_bool(key, default)

    def require(self, key: str) -> str:
        value = self.state.get(key)
        if value is None or value == "":
            producer = FACT_PRODUCERS.get(key, "an earlier phase")
            raise FatalError(
                f"Required fact {key} is missing from {self.state.path}; "
                f"run phase {producer} first or add {key}=... to the session file"
            )
        return value

    def record(self, key: str, value: object) -> None:
        self.state.record(key, value)

    @property
    def mount_root(self) -> str:
        return self.fact("MOUNT_ROOT") or self.config.mount_root

    @property
    def luks_name(self) -> str:
        return self.fact("LUKS_ROOT_NAME") or self.config.luks_name

    def subvolumes(self) -> List[Subvolume]:
        return subvolume_plan(self.flag("ADD_LOG_SUBVOLUME", self.config.add_log_subvolume))


def open_session(
    config: InstallConfig,
    *,
    log_path: str,
    error_log_path: str,
    run_id: Optional[str] = None,
    state_path: Optional[str] = None,
    prompter: Optional[Prompter] = None,
) -> InstallationSession:
    """Create a session, or resume one when state_path names an existing file."""

    rid = run_id or new_run_id()
    path = state_path or state_path_for(config.state_dir, rid)
    state = SessionState.load(path)
    if state.facts():
        logger.info("Resuming session state from %s (%d facts)", path, len(state.facts()))
    return InstallationSession(
        run_id=rid,
        config=config,
        state=state,
        log_path=log_path,
        error_log_path=error_log_path,
        prompter=prompter or Prompter(),
        retry=RetryExecutor(attempts=config.retry_attempts, delay=config.retry_delay),
    )
