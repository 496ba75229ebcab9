from __future__ import annotations

import logging

from ..errors import ConfirmationDeclined
from ..logging_utils import log_success
from .prompts import Prompter

logger = logging.getLogger(__name__)

FINAL_TOKEN = "YES"

_GIB = 1024 ** 3


class ConfirmationGate:
    """Typed confirmation before destroying data on a device.

    Two exact answers are required: the resolved device path, then the literal
    final token. There is no default, no assume-yes switch and no stripping or
    case folding of the answers; end of input counts as a refusal.
    """

    def __init__(self, prompter: Prompter) -> None:
        self.prompter = prompter

    def _read(self, prompt: str) -> str:
        try:
            return self.prompter.ask(prompt)
        except EOFError:
            return ""

    def confirm_destruction(self, device: str, size_bytes: int, action: str = "wipe and re-partition") -> None:
        """Return normally only on exact confirmation; else ConfirmationDeclined."""

        p = self.prompter
        p.say("")
        p.say("=" * 61)
        p.say("            ** DESTRUCTIVE OPERATION WARNING **")
        p.say("=" * 61)
        p.say(f"Device: {device}")
        p.say(f"Size:   {size_bytes / _GIB:.0f} GiB ({size_bytes} bytes)")
        p.say(f"Action: {action}. ALL DATA WILL BE PERMANENTLY DESTROYED")
        p.say("")

        typed_device = self._read(f"Type the device path to confirm ({device})")
        if typed_device != device:
            logger.warning("Confirmation mismatch for %s. Operation cancelled.", device)
            raise ConfirmationDeclined(f"Device confirmation did not match {device}")

        typed_token = self._read(f"Are you ABSOLUTELY CERTAIN? Type '{FINAL_TOKEN}' to proceed")
        if typed_token != FINAL_TOKEN:
            logger.warning("Final confirmation not given for %s. Operation cancelled.", device)
            raise ConfirmationDeclined(f"Final confirmation not given for {device}")

        log_success(logger, "Destructive operation confirmed for %s", device)
