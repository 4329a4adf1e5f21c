"""
Tests for the meeting state machine.
"""

import pytest

from agvote.auth.dependencies import Role
from agvote.voting.errors import Forbidden, InvalidTransition
from agvote.voting.models import MeetingStatus as S
from agvote.voting.state_machine import (
    TRANSITIONS,
    ReadinessContext,
    allowed_targets,
    can_transition,
    readiness_warnings,
)


class TestTransitionTable:
    """Tests for allowed edges and role checks."""

    def test_table_has_thirteen_edges(self) -> None:
        assert len(TRANSITIONS) == 13

    def test_president_runs_the_session(self) -> None:
        """Test the president may go live, pause, resume and close."""
        for current, target in [
            (S.FROZEN, S.LIVE),
            (S.LIVE, S.PAUSED),
            (S.PAUSED, S.LIVE),
            (S.LIVE, S.CLOSED),
            (S.CLOSED, S.VALIDATED),
        ]:
            can_transition(current, target, Role.PRESIDENT)

    def test_admin_may_take_every_edge(self) -> None:
        for current, target in TRANSITIONS:
            can_transition(current, target, Role.ADMIN)

    def test_wrong_role_is_forbidden(self) -> None:
        """Test an operator cannot go live."""
        with pytest.raises(Forbidden) as exc_info:
            can_transition(S.FROZEN, S.LIVE, Role.OPERATOR)

        assert exc_info.value.context["required"] == "president"

    def test_missing_edge_is_invalid(self) -> None:
        """Test skipping straight from draft to live fails whatever the role."""
        with pytest.raises(InvalidTransition):
            can_transition(S.DRAFT, S.LIVE, Role.ADMIN)

    def test_archived_only_goes_back_to_validated(self) -> None:
        assert allowed_targets(S.ARCHIVED) == [S.VALIDATED]

    @pytest.mark.parametrize("current", [S.LIVE, S.PAUSED])
    def test_cannot_return_to_draft_once_started(self, current: S) -> None:
        with pytest.raises(InvalidTransition):
            can_transition(current, S.DRAFT, Role.ADMIN)


class TestReadinessWarnings:
    """Tests for non-blocking transition warnings."""

    def test_scheduling_without_motions(self) -> None:
        warnings = readiness_warnings(S.SCHEDULED, ReadinessContext(motion_count=0))

        assert [w.code for w in warnings] == ["no_motions"]

    def test_freezing_without_attendance(self) -> None:
        warnings = readiness_warnings(S.FROZEN, ReadinessContext(motion_count=2))

        assert [w.code for w in warnings] == ["no_attendance"]

    def test_going_live_below_quorum(self) -> None:
        """Test an unmet meeting quorum warns but an absent policy does not."""
        unmet = readiness_warnings(S.LIVE, ReadinessContext(quorum_met=False))
        no_policy = readiness_warnings(S.LIVE, ReadinessContext(quorum_met=None))

        assert [w.code for w in unmet] == ["quorum_not_met"]
        assert no_policy == []

    def test_pausing_with_open_motion(self) -> None:
        warnings = readiness_warnings(S.PAUSED, ReadinessContext(open_motion=True))

        assert [w.code for w in warnings] == ["motion_open"]

    def test_validating_with_unvoted_motions(self) -> None:
        warnings = readiness_warnings(
            S.VALIDATED, ReadinessContext(motion_count=3, unopened_motion_count=2)
        )

        assert warnings[0].code == "unvoted_motions"
        assert "2 motion(s)" in warnings[0].message

    def test_ready_meeting_has_no_warnings(self) -> None:
        ctx = ReadinessContext(motion_count=2, participating_count=5, quorum_met=True)

        for target in S:
            assert readiness_warnings(target, ctx) == []
