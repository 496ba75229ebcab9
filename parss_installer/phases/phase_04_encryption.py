from __future__ import annotations

import logging

from ..errors import ValidationError
from ..lib.block import get_uuid
from ..lib.encryption import CredentialMaterial, EncryptionProvisioner
from ..lib.prompts import validate_volume_name
from ..session import InstallationSession

logger = logging.getLogger(__name__)


class EncryptionPhase:
    phase_id = "4"
    title = "LUKS2 ENCRYPTION SETUP"
    requires = ("ROOT_PARTITION",)

    def run(self, session: InstallationSession) -> None:
        partition = session.require("ROOT_PARTITION")
        name = session.luks_name
        if not validate_volume_name(name):
            raise ValidationError(f"Invalid LUKS volume name: {name!r}")

        cfg = session.config
        provisioner = EncryptionProvisioner(
            partition, name, keyfile_dir=cfg.keyfile_dir, settle_timeout=cfg.settle_timeout
        )

        session.prompter.say("")
        session.prompter.say("The LUKS passphrase is required at every boot. It is never stored.")
        with CredentialMaterial(session.prompter.ask_new_passphrase("LUKS passphrase")) as credential:
            provisioner.provision(credential)

        session.record("LUKS_ROOT_NAME", name)
        session.record("ROOT_CRYPT_OPENED", True)
        session.record("ROOT_UUID", get_uuid(partition))
