from __future__ import annotations

import logging
import os
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from ..errors import CommandError, FatalError
from ..logging_utils import log_success
from .block import device_listing, is_block_device, settle
from .command import run_cmd

logger = logging.getLogger(__name__)

LUKS_LABEL = "LUKS_ROOT"

# argon2id with a fixed work factor; never exposed as a setting.
LUKS_FORMAT_OPTS = [
    "--type", "luks2",
    "--pbkdf", "argon2id",
    "--pbkdf-force-iterations", "4",
    "--label", LUKS_LABEL,
]


class CredentialMaterial:
    """A passphrase held in a mutable buffer so it can be overwritten after use.

    Consumers read it through view(), never as bytes or str, so scrub() leaves
    no installer-made copy behind. The str handed to the constructor (getpass
    returns one) is outside its reach.
    """

    def __init__(self, secret: str) -> None:
        self._buf = bytearray(secret.encode("utf-8"))

    def __repr__(self) -> str:
        return "CredentialMaterial(<redacted>)"

    def __enter__(self) -> "CredentialMaterial":
        return self

    def __exit__(self, *exc: object) -> None:
        self.scrub()

    def __len__(self) -> int:
        return len(self._buf)

    @property
    def scrubbed(self) -> bool:
        return not any(self._buf)

    def view(self) -> memoryview:
        if self.scrubbed:
            raise FatalError("Credential material was already scrubbed")
        return memoryview(self._buf)

    def scrub(self) -> None:
        for i in range(len(self._buf)):
            self._buf[i] = 0


@contextmanager
def ephemeral_keyfile(credential: CredentialMaterial, directory: str = "/run") -> Iterator[str]:
    """Yield a 0600 file holding the credential; overwrite and unlink it on exit.

    The file is removed on both the success and the failure path.
    """

    fd, path = tempfile.mkstemp(prefix=".parss-key-", dir=directory)
    size = len(credential)
    try:
        os.fchmod(fd, 0o600)
        with credential.view() as secret:
            os.write(fd, secret)
        os.fsync(fd)
        os.close(fd)
        fd = -1
        yield path
    finally:
        if fd >= 0:
            os.close(fd)
        try:
            with open(path, "r+b") as f:
                f.write(b"\0" * size)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            logger.warning("Could not overwrite key file %s before removal: %s", path, e)
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass
        logger.debug("Ephemeral key file removed")


@dataclass(frozen=True)
class EncryptedVolume:
    backing: str
    name: str

    @property
    def mapper_path(self) -> str:
        return f"/dev/mapper/{self.name}"


def is_luks(partition: str) -> bool:
    return run_cmd(["cryptsetup", "isLuks", partition], check=False).ok


def mapper_is_open(name: str) -> bool:
    return is_block_device(f"/dev/mapper/{name}")


def close_volume(name: str) -> bool:
    """Close a mapper if it is open. Returns True when nothing is left open."""

    if not mapper_is_open(name):
        return True
    logger.info("Closing LUKS volume %s...", name)
    if run_cmd(["cryptsetup", "close", name], check=False).ok:
        return True
    logger.warning("Could not close LUKS volume %s", name)
    return False


class EncryptionProvisioner:
    """unformatted -> formatted -> opened -> self-tested -> ready.

    Format and the self-test are never retried. A failed open dumps the header and
    the mapper listing before giving up.
    """

    def __init__(
        self,
        partition: str,
        name: str,
        *,
        keyfile_dir: str = "/run",
        settle_timeout: int = 10,
    ) -> None:
        self.volume = EncryptedVolume(backing=partition, name=name)
        self.keyfile_dir = keyfile_dir
        self.settle_timeout = settle_timeout
        self.state = "unformatted"

    @property
    def partition(self) -> str:
        return self.volume.backing

    @property
    def name(self) -> str:
        return self.volume.name

    def is_open(self) -> bool:
        return mapper_is_open(self.name)

    def erase_existing(self) -> bool:
        """Erase a leftover LUKS header. Returns whether one was found."""

        if not is_luks(self.partition):
            return False
        logger.warning("Existing LUKS header found on %s (residue from an earlier run); erasing it", self.partition)
        try:
            run_cmd(["cryptsetup", "luksErase", "--batch-mode", self.partition])
            run_cmd(["wipefs", "-a", self.partition])
        except CommandError as e:
            raise FatalError(f"Could not erase existing LUKS header on {self.partition}: {e}") from e
        settle(timeout=self.settle_timeout)
        return True

    def format(self, credential: CredentialMaterial) -> None:
        if self.is_open():
            raise FatalError(
                f"LUKS mapper {self.volume.mapper_path} is already open; "
                "close it (cryptsetup close) before formatting again"
            )
        self.erase_existing()

        logger.info("Formatting %s with LUKS2 (argon2id); this takes a while...", self.partition)
        with ephemeral_keyfile(credential, self.keyfile_dir) as keyfile:
            r = run_cmd(
                ["cryptsetup", "luksFormat", "--batch-mode", *LUKS_FORMAT_OPTS, "--key-file", keyfile, self.partition],
                check=False,
            )
        if not r.ok:
            logger.error("LUKS format failed on %s (exit code %s)", self.partition, r.returncode)
            raise FatalError(f"LUKS format failed on {self.partition}")

        settle(timeout=self.settle_timeout)
        if not is_luks(self.partition):
            raise FatalError(f"{self.partition} does not carry a LUKS header after formatting")

        dump = run_cmd(["cryptsetup", "luksDump", self.partition], check=False)
        for line in (dump.stdout or "").splitlines()[:20]:
            logger.debug("  %s", line)
        log_success(logger, "LUKS2 container created on %s", self.partition)
        self.state = "formatted"

    def _open_diagnostics(self) -> None:
        logger.error("Diagnostic information:")
        dump = run_cmd(["cryptsetup", "luksDump", self.partition], check=False)
        for line in (dump.stdout or dump.stderr or "").splitlines():
            logger.error("  %s", line)
        mappers = run_cmd(["ls", "-la", "/dev/mapper/"], check=False)
        for line in (mappers.stdout or "").splitlines():
            logger.error("  %s", line)
        device_listing()

    def open(self, credential: CredentialMaterial) -> str:
        if self.is_open():
            raise FatalError(f"LUKS mapper {self.volume.mapper_path} is already open; refusing to open it twice")

        logger.info("Opening encrypted volume as %s...", self.name)
        with ephemeral_keyfile(credential, self.keyfile_dir) as keyfile:
            r = run_cmd(["cryptsetup", "open", "--key-file", keyfile, self.partition, self.name], check=False)
        if not r.ok:
            self._open_diagnostics()
            raise FatalError(f"Failed to open LUKS volume {self.partition} as {self.name}")

        settle(expect=[self.volume.mapper_path], timeout=self.settle_timeout)
        if not self.is_open():
            self._open_diagnostics()
            raise FatalError(f"{self.volume.mapper_path} did not appear after opening {self.partition}")

        log_success(logger, "Encrypted volume opened at %s", self.volume.mapper_path)
        self.state = "opened"
        return self.volume.mapper_path

    def self_test(self, credential: CredentialMaterial) -> None:
        """Prove the in-memory credential unlocks the container just created."""

        logger.info("Verifying the passphrase against %s...", self.partition)
        with credential.view() as secret:
            r = run_cmd(
                ["cryptsetup", "open", "--test-passphrase", "--key-file", "-", self.partition],
                input_bytes=secret,
                check=False,
            )
        if not r.ok:
            logger.error("Passphrase self-test failed for %s", self.partition)
            raise FatalError(
                f"The passphrase does not unlock {self.partition}; the system would not boot. Aborting."
            )
        log_success(logger, "Passphrase verified against %s", self.partition)
        self.state = "self-tested"

    def close(self) -> bool:
        ok = close_volume(self.name)
        if ok and self.state != "unformatted":
            self.state = "formatted"
        return ok

    def provision(self, credential: CredentialMaterial) -> EncryptedVolume:
        self.format(credential)
        self.open(credential)
        self.self_test(credential)
        self.state = "ready"
        return self.volume
