from __future__ import annotations

import logging

from ..errors import CommandError, FatalError, ValidationError
from ..lib.chroot import chroot_cmd
from ..lib.prompts import validate_username
from ..logging_utils import log_success
from ..session import InstallationSession

logger = logging.getLogger(__name__)


def set_password(session: InstallationSession, root: str, account: str) -> None:
    password = session.prompter.ask_new_passphrase(f"password for {account}", check_strength=False)
    try:
        chroot_cmd(root, ["chpasswd"], input_text=f"{account}:{password}\n")
    except CommandError as e:
        raise FatalError(f"Setting the password for {account} failed") from e
    log_success(logger, "Password set for %s", account)


class UserSetupPhase:
    phase_id = "10"
    title = "USER ACCOUNT SETUP"
    requires = ("MOUNT_ROOT", "PRIMARY_USER")

    def run(self, session: InstallationSession) -> None:
        root = session.require("MOUNT_ROOT")
        user = session.require("PRIMARY_USER")
        if not validate_username(user):
            raise ValidationError(f"Invalid username: {user!r}")

        if chroot_cmd(root, ["id", "-u", user], check=False).ok:
            logger.info("User %s already exists; not creating it again", user)
        else:
            try:
                chroot_cmd(root, ["useradd", "-m", "-G", "wheel", "-s", "/usr/bin/zsh", user])
            except CommandError as e:
                raise FatalError(f"Failed to create user account {user}") from e
            log_success(logger, "User account created: %s", user)

        set_password(session, root, user)
        set_password(session, root, "root")

        if chroot_cmd(root, ["sudo", "-u", user, "-n", "true"], check=False).ok:
            logger.warning("User has passwordless sudo (verify if intentional)")
        session.record("USER_CREATED", True)
