from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence

from .errors import ConfirmationDeclined, FatalError, InstallerError, ValidationError
from .lib.encryption import close_volume
from .lib.filesystem import unmount_tree
from .logging_utils import log_section, log_success
from .session import InstallationSession
from .state_store import mark_phase_completed

logger = logging.getLogger(__name__)


class Phase(Protocol):
    """One statically ordered pipeline phase."""

    phase_id: str
    title: str
    requires: Sequence[str]

    def run(self, session: InstallationSession) -> None:
        ...


@dataclass(frozen=True)
class PipelineResult:
    ran_phases: List[str] = field(default_factory=list)
    failed_phase: Optional[str] = None
    error: Optional[BaseException] = None
    declined: bool = False

    @property
    def ok(self) -> bool:
        return self.failed_phase is None


def find_phase(phases: Sequence[Phase], phase_id: str) -> int:
    for i, phase in enumerate(phases):
        if phase.phase_id == phase_id:
            return i
    known = ", ".join(p.phase_id for p in phases)
    raise ValidationError(f"Unknown phase {phase_id!r} (known phases: {known})")


def select_phases(
    phases: Sequence[Phase],
    *,
    start_at: Optional[str] = None,
    only: Optional[str] = None,
) -> List[Phase]:
    if start_at and only:
        raise ValidationError("start_at and only are mutually exclusive")
    if only:
        return [phases[find_phase(phases, only)]]
    if start_at:
        return list(phases[find_phase(phases, start_at):])
    return list(phases)


def missing_facts(session: InstallationSession, phase: Phase) -> List[str]:
    return [key for key in phase.requires if not session.fact(key)]


def cleanup_after_failure(session: InstallationSession) -> None:
    """Best effort: unmount the work tree and close the volume. No rollback."""

    logger.warning("Performing cleanup...")
    if not unmount_tree(session.mount_root):
        logger.warning("Could not unmount %s; unmount it manually", session.mount_root)
    if not close_volume(session.luks_name):
        logger.warning("Could not close %s; run cryptsetup close %s", session.luks_name, session.luks_name)


def report_failure(session: InstallationSession, phase: Phase, error: BaseException) -> None:
    logger.error("Installation failed in phase %s (%s): %s", phase.phase_id, phase.title, error)
    logger.error("Transcript: %s", session.log_path)
    logger.error("Error log: %s", session.error_log_path)
    logger.error("Session state: %s", session.state.path)
    logger.error(
        "The target device may be left in an inconsistent intermediate state. "
        "Inspect it manually before retrying."
    )
    logger.error("To resume: parss-installer --start-from %s --session %s", phase.phase_id, session.state.path)


def run_pipeline(
    session: InstallationSession,
    phases: Sequence[Phase],
    *,
    start_at: Optional[str] = None,
    only: Optional[str] = None,
) -> PipelineResult:
    """Run phases in order and stop at the first failure.

    A full run checks each phase's required facts before running it. Starting
    from a later phase, or running a single one, only warns about missing facts:
    the operator vouches for them (earlier session file or manual steps).
    """

    selected = select_phases(phases, start_at=start_at, only=only)
    full_run = start_at is None and only is None
    ran: List[str] = []

    for phase in selected:
        session.cursor = phase.phase_id
        session.record("CURRENT_PHASE", phase.phase_id)
        log_section(logger, f"PHASE {phase.phase_id}: {phase.title}")

        try:
            missing = missing_facts(session, phase)
            if missing and full_run:
                raise FatalError(f"Phase {phase.phase_id} is missing required facts: {', '.join(missing)}")
            if missing:
                logger.warning(
                    "Phase %s expects facts not in the session (%s); continuing on operator's word",
                    phase.phase_id, ", ".join(missing),
                )
            phase.run(session)
        except ConfirmationDeclined as e:
            logger.warning("Operation cancelled by operator: %s", e)
            return PipelineResult(ran_phases=ran, failed_phase=phase.phase_id, error=e, declined=True)
        except InstallerError as e:
            logger.error("Phase %s failed: %s", phase.phase_id, e)
            cleanup_after_failure(session)
            report_failure(session, phase, e)
            return PipelineResult(ran_phases=ran, failed_phase=phase.phase_id, error=e)
        except (Exception, KeyboardInterrupt):
            logger.exception("Unexpected error in phase %s", phase.phase_id)
            cleanup_after_failure(session)
            raise

        mark_phase_completed(session.state, phase.phase_id)
        log_success(logger, "Phase %s completed successfully", phase.phase_id)
        ran.append(phase.phase_id)

    session.cursor = None
    return PipelineResult(ran_phases=ran)


def next_phase_after(phases: Sequence[Phase], phase_id: Optional[str]) -> Optional[str]:
    """The phase to resume from after phase_id completed (the first one when None)."""

    if not phase_id:
        return phases[0].phase_id if phases else None
    i = find_phase(phases, phase_id)
    return phases[i + 1].phase_id if i + 1 < len(phases) else None
