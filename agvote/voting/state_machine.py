"""
Meeting State Machine

Allowed meeting transitions, the role each one requires, and the non-fatal
readiness warnings reported alongside a transition. ``admin`` may perform
every transition in the table.
"""

from dataclasses import dataclass

from agvote.auth.dependencies import Role
from agvote.voting.errors import Forbidden, InvalidTransition
from agvote.voting.models import MeetingStatus

S = MeetingStatus

# (from, to) -> role required besides admin
TRANSITIONS: dict[tuple[MeetingStatus, MeetingStatus], Role] = {
    (S.DRAFT, S.SCHEDULED): Role.OPERATOR,
    (S.DRAFT, S.FROZEN): Role.PRESIDENT,
    (S.SCHEDULED, S.FROZEN): Role.PRESIDENT,
    (S.SCHEDULED, S.DRAFT): Role.ADMIN,  # correction
    (S.FROZEN, S.LIVE): Role.PRESIDENT,
    (S.FROZEN, S.SCHEDULED): Role.ADMIN,  # correction
    (S.LIVE, S.PAUSED): Role.PRESIDENT,
    (S.LIVE, S.CLOSED): Role.PRESIDENT,
    (S.PAUSED, S.LIVE): Role.PRESIDENT,
    (S.PAUSED, S.CLOSED): Role.PRESIDENT,
    (S.CLOSED, S.VALIDATED): Role.PRESIDENT,
    (S.VALIDATED, S.ARCHIVED): Role.ADMIN,
    (S.ARCHIVED, S.VALIDATED): Role.ADMIN,  # un-archive
}

# Statuses in which motions may still be added
EDITABLE_STATUSES = frozenset({S.DRAFT, S.SCHEDULED, S.FROZEN, S.LIVE})

# Statuses in which ballots may be cast on the open motion
VOTING_STATUSES = frozenset({S.LIVE})


def allowed_targets(current: MeetingStatus) -> list[MeetingStatus]:
    """Statuses reachable from ``current`` (for any role)."""
    return [to for (frm, to) in TRANSITIONS if frm == current]


def can_transition(current: MeetingStatus, target: MeetingStatus, role: Role | str) -> None:
    """
    Check a transition against the table.

    Raises:
        InvalidTransition: the edge does not exist
        Forbidden: the edge exists but ``role`` may not take it
    """
    required = TRANSITIONS.get((current, target))
    if required is None:
        raise InvalidTransition(
            f"Cannot move meeting from '{current.value}' to '{target.value}'",
            current=current.value,
            target=target.value,
        )
    if role != Role.ADMIN and role != required:
        raise Forbidden(
            f"Role '{role}' cannot move a meeting to '{target.value}'",
            required=required.value,
        )


@dataclass
class ReadinessContext:
    """Facts about a meeting gathered before a transition."""

    motion_count: int = 0
    unopened_motion_count: int = 0
    participating_count: int = 0
    open_motion: bool = False
    quorum_met: bool | None = None  # None: no meeting-level quorum policy


@dataclass
class TransitionWarning:
    code: str
    message: str


def readiness_warnings(target: MeetingStatus, ctx: ReadinessContext) -> list[TransitionWarning]:
    """Non-blocking warnings for entering ``target``."""
    warnings = []
    if target == S.SCHEDULED and ctx.motion_count == 0:
        warnings.append(TransitionWarning("no_motions", "Meeting has no motions"))
    if target == S.FROZEN and ctx.participating_count == 0:
        warnings.append(TransitionWarning("no_attendance", "Nobody is marked present or remote"))
    if target == S.LIVE and ctx.quorum_met is False:
        warnings.append(TransitionWarning("quorum_not_met", "Meeting quorum is not reached"))
    if target == S.PAUSED and ctx.open_motion:
        warnings.append(TransitionWarning("motion_open", "A motion is open while pausing"))
    if target == S.VALIDATED and ctx.unopened_motion_count > 0:
        warnings.append(
            TransitionWarning(
                "unvoted_motions", f"{ctx.unopened_motion_count} motion(s) were never voted"
            )
        )
    return warnings
