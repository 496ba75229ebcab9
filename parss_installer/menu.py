from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Sequence

from .errors import ValidationError
from .install_config import InstallConfig
from .installer import EXIT_OK, exit_code, latest_session_file, run_installation
from .lib import health
from .lib.prompts import Prompter
from .phases import build_phases
from .pipeline import Phase, next_phase_after
from .state_store import SessionState, last_completed_phase

logger = logging.getLogger(__name__)

MENU_ITEMS = [
    ("1", "Full installation"),
    ("2", "Run a single phase"),
    ("3", "Resume installation from a phase"),
    ("4", "System health check"),
    ("5", "BTRFS dashboard"),
    ("6", "Integrity check (AIDE)"),
    ("h", "Help"),
    ("q", "Quit"),
]

HELP_TEXT = """\
Usage: parss-installer [--install | --start-from PHASE | --phase PHASE | --menu |
                        --health | --btrfs | --integrity] [--skip-unmount]
                       [--config FILE] [--session FILE] [--log-dir DIR] [--debug]

Phases run in a fixed order. --start-from trusts the facts in the session file
(--session) and does not re-check them; --phase runs a single phase in isolation."""


class Menu:
    def __init__(
        self,
        config: InstallConfig,
        *,
        prompter: Optional[Prompter] = None,
        session_path: Optional[str] = None,
        debug: bool = False,
        phases: Optional[Sequence[Phase]] = None,
    ) -> None:
        self.config = config
        self.prompter = prompter or Prompter()
        self.session_path = session_path
        self.debug = debug
        self.phases = list(phases or build_phases())

    def _install(self, **kwargs) -> int:
        result = run_installation(
            self.config,
            session_path=kwargs.pop("session_path", self.session_path),
            debug=self.debug,
            prompter=self.prompter,
            phases=self.phases,
            **kwargs,
        )
        return exit_code(result)

    def _ask_phase(self, prompt: str, default: Optional[str] = None) -> str:
        ids = [p.phase_id for p in self.phases]
        for p in self.phases:
            self.prompter.say(f"    {p.phase_id:<3} - {p.title}")
        return self.prompter.ask_validated(prompt, lambda v: v in ids, default=default, error="Unknown phase")

    def full_install(self) -> int:
        return self._install()

    def single_phase(self) -> int:
        return self._install(only=self._ask_phase("Phase to run"))

    def resume(self) -> int:
        path = self.session_path or latest_session_file(self.config.state_dir)
        path = self.prompter.ask("Session file to resume", path)
        if not path:
            raise ValidationError("No session file to resume from")

        state = SessionState.load(path)
        facts = state.facts()
        self.prompter.say("")
        self.prompter.say(f"Saved facts in {path}:")
        for key, value in facts.items():
            self.prompter.say(f"    {key}={value}")
        if not facts:
            self.prompter.say("    (none)")

        default = next_phase_after(self.phases, last_completed_phase(state))
        start = self._ask_phase("Resume from phase", default)
        return self._install(start_at=start, session_path=path)

    def _report(self, lines: List[str]) -> int:
        for line in lines:
            self.prompter.say(line)
        self.prompter.ask("Press Enter to return to menu", "")
        return EXIT_OK

    def loop(self) -> int:
        actions: Dict[str, Callable[[], int]] = {
            "1": self.full_install,
            "2": self.single_phase,
            "3": self.resume,
            "4": lambda: self._report(health.system_health()),
            "5": lambda: self._report(health.btrfs_dashboard()),
            "6": lambda: self._report(health.integrity_check(self.prompter)),
        }
        install_choices = {"1", "2", "3"}

        while True:
            self.prompter.say("")
            self.prompter.say("PARSS - Encrypted BTRFS Arch Installer")
            for key, label in MENU_ITEMS:
                self.prompter.say(f"    {key}) {label}")
            try:
                choice = self.prompter.ask("Select an option").strip().lower()
            except EOFError:
                return EXIT_OK

            if choice in ("q", "quit", "exit"):
                return EXIT_OK
            if choice == "h":
                self.prompter.say(HELP_TEXT)
                continue
            action = actions.get(choice)
            if action is None:
                logger.warning("Invalid option: %r", choice)
                continue
            code = action()
            if choice in install_choices:
                return code


def run_menu(
    config: InstallConfig,
    *,
    prompter: Optional[Prompter] = None,
    session_path: Optional[str] = None,
    debug: bool = False,
    phases: Optional[Sequence[Phase]] = None,
) -> int:
    return Menu(config, prompter=prompter, session_path=session_path, debug=debug, phases=phases).loop()
