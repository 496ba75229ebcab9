from __future__ import annotations

from typing import Sequence


class InstallerError(Exception):
    """Base class for every error the installer raises on purpose."""


class ValidationError(InstallerError):
    """Malformed operator input (hostname, username, passphrase...)."""


class DeviceError(InstallerError):
    """Target is not a block device, or is busy (mounted / opened)."""


class RetryableError(InstallerError):
    """Transient failure; RetryExecutor may try again."""


class FatalError(InstallerError):
    """Aborts the session. Cleanup runs, logs and state file are kept."""


class ConfirmationDeclined(InstallerError):
    """Operator declined. Clean termination, not a crash."""


class CommandError(InstallerError):
    """An external tool exited with an unexpected code."""

    def __init__(self, argv: Sequence[str], returncode: int, stderr: str = "") -> None:
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"Command failed ({returncode}): {' '.join(self.argv)}\n{stderr}".rstrip())
