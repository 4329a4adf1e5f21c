"""
Tests for the motion lifecycle: agenda order, opening and closing.
"""

import asyncio
import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select

from agvote.core.database import build_session_maker
from agvote.voting.errors import (
    MeetingNotEditable,
    MeetingNotLive,
    MotionAlreadyOpen,
    MotionAlreadyOpenOrClosed,
    MotionNotFound,
    MotionNotOpen,
    ValidationFailed,
)
from agvote.voting.events import EventType
from agvote.voting.models import (
    AuditEvent,
    Decision,
    MajorityBase,
    MeetingStatus,
    VoteValue,
)
from agvote.voting.services import SessionCoordinator

from factories import PRESIDENT, Assembly, RecordingEmitter, seed_assembly


class TestAgenda:
    """Tests for creating and reordering motions."""

    async def test_positions_are_appended(self, coordinator: SessionCoordinator) -> None:
        a = await seed_assembly(coordinator, members=1)

        first = await coordinator.create_motion(a.meeting_id, "Approve accounts")
        second = await coordinator.create_motion(a.meeting_id, "Elect the board")

        assert (first.position, second.position) == (1, 2)

    async def test_blank_title_rejected(self, coordinator: SessionCoordinator) -> None:
        a = await seed_assembly(coordinator, members=1)

        with pytest.raises(ValidationFailed):
            await coordinator.create_motion(a.meeting_id, "   ")

    async def test_reorder_swaps_positions(self, coordinator: SessionCoordinator) -> None:
        """Test listed motions take their slots in the requested order."""
        a = await seed_assembly(coordinator, members=1)
        m1 = await coordinator.create_motion(a.meeting_id, "One")
        m2 = await coordinator.create_motion(a.meeting_id, "Two")
        m3 = await coordinator.create_motion(a.meeting_id, "Three")

        ordered = await coordinator.reorder_motions(a.meeting_id, [m3.id, m1.id])

        assert [(m.title, m.position) for m in ordered] == [
            ("Three", 1),
            ("Two", 2),
            ("One", 3),
        ]
        assert m2.id in {m.id for m in ordered}

    async def test_reorder_rejects_opened_motion(
        self, coordinator: SessionCoordinator, live_assembly: Assembly
    ) -> None:
        a = live_assembly
        m1 = await coordinator.create_motion(a.meeting_id, "One")
        m2 = await coordinator.create_motion(a.meeting_id, "Two")
        await coordinator.open_motion(a.meeting_id, m1.id)

        with pytest.raises(MotionAlreadyOpenOrClosed):
            await coordinator.reorder_motions(a.meeting_id, [m2.id, m1.id])

    async def test_reorder_rejects_foreign_motion(self, coordinator: SessionCoordinator) -> None:
        a = await seed_assembly(coordinator, members=1)
        await coordinator.create_motion(a.meeting_id, "One")

        with pytest.raises(MotionNotFound):
            await coordinator.reorder_motions(a.meeting_id, [uuid.uuid4()])

    async def test_closed_meeting_is_locked(
        self, coordinator: SessionCoordinator, live_assembly: Assembly
    ) -> None:
        await coordinator.transition(live_assembly.meeting_id, MeetingStatus.CLOSED, PRESIDENT)

        with pytest.raises(MeetingNotEditable):
            await coordinator.create_motion(live_assembly.meeting_id, "Late item")


class TestOpenClose:
    """Tests for the voting window."""

    async def test_only_live_meetings_open_motions(self, coordinator: SessionCoordinator) -> None:
        a = await seed_assembly(coordinator, members=2, status=MeetingStatus.FROZEN)
        motion = await coordinator.create_motion(a.meeting_id, "One")

        with pytest.raises(MeetingNotLive):
            await coordinator.open_motion(a.meeting_id, motion.id)

    async def test_second_open_while_one_is_open(
        self, coordinator: SessionCoordinator, live_assembly: Assembly
    ) -> None:
        a = live_assembly
        m1 = await coordinator.create_motion(a.meeting_id, "One")
        m2 = await coordinator.create_motion(a.meeting_id, "Two")
        await coordinator.open_motion(a.meeting_id, m1.id)

        with pytest.raises(MotionAlreadyOpen) as exc_info:
            await coordinator.open_motion(a.meeting_id, m2.id)

        assert exc_info.value.context["open_motion_id"] == m1.id

    async def test_concurrent_opens_let_exactly_one_through(
        self, coordinator: SessionCoordinator, live_assembly: Assembly
    ) -> None:
        """Test two racing opens on different motions: one wins, one fails."""
        a = live_assembly
        m1 = await coordinator.create_motion(a.meeting_id, "One")
        m2 = await coordinator.create_motion(a.meeting_id, "Two")

        results = await asyncio.gather(
            coordinator.open_motion(a.meeting_id, m1.id),
            coordinator.open_motion(a.meeting_id, m2.id),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], MotionAlreadyOpen)
        meeting = await coordinator.get_meeting(a.meeting_id)
        assert meeting.open_motion_id in {m1.id, m2.id}

    async def test_reopening_is_refused(
        self, coordinator: SessionCoordinator, live_assembly: Assembly
    ) -> None:
        a = live_assembly
        motion = await coordinator.create_motion(a.meeting_id, "One")
        await coordinator.open_motion(a.meeting_id, motion.id)
        await coordinator.close_motion(a.meeting_id, motion.id)

        with pytest.raises(MotionAlreadyOpenOrClosed):
            await coordinator.open_motion(a.meeting_id, motion.id)

    async def test_close_is_terminal(
        self, coordinator: SessionCoordinator, live_assembly: Assembly
    ) -> None:
        """Test a second close fails and the first result stays."""
        a = live_assembly
        motion = await coordinator.create_motion(a.meeting_id, "One")
        await coordinator.open_motion(a.meeting_id, motion.id)
        first = await coordinator.close_motion(a.meeting_id, motion.id)

        with pytest.raises(MotionNotOpen):
            await coordinator.close_motion(a.meeting_id, motion.id)

        motions = await coordinator.list_motions(a.meeting_id)
        assert motions[0].decision == first.result.decision
        assert motions[0].closed_at is not None

    async def test_close_without_ballots(
        self, coordinator: SessionCoordinator, live_assembly: Assembly
    ) -> None:
        a = live_assembly
        motion = await coordinator.create_motion(a.meeting_id, "One")
        await coordinator.open_motion(a.meeting_id, motion.id)

        outcome = await coordinator.close_motion(a.meeting_id, motion.id)

        assert outcome.result.decision == Decision.NO_VOTES
        assert outcome.votes_cast == 0
        assert outcome.eligible_count == 10
        assert (await coordinator.get_meeting(a.meeting_id)).open_motion_id is None

    async def test_close_decides_with_policies(self, coordinator: SessionCoordinator) -> None:
        """Test the policies resolved at open decide the close."""
        quorum = await coordinator.register_quorum_policy("Ordinary quorum", Decimal("0.25"))
        vote = await coordinator.register_vote_policy(
            "Simple majority", Decimal("0.5"), base=MajorityBase.EXPRESSED
        )
        a = await seed_assembly(
            coordinator,
            members=10,
            present=5,
            status=MeetingStatus.LIVE,
            quorum_policy_id=quorum.id,
            vote_policy_id=vote.id,
        )
        motion = await coordinator.create_motion(a.meeting_id, "Budget")
        opened = await coordinator.open_motion(a.meeting_id, motion.id)
        m = a.member_ids()
        for i, value in enumerate([VoteValue.FOR, VoteValue.FOR, VoteValue.AGAINST]):
            await coordinator.cast_ballot(motion.id, m[i], value, f"key-{i}")

        outcome = await coordinator.close_motion(a.meeting_id, motion.id)

        assert opened.applied_quorum_policy_id == quorum.id
        assert opened.applied_vote_policy_id == vote.id
        assert outcome.result.decision == Decision.ADOPTED
        assert outcome.motion.count_for == 2
        assert outcome.motion.eligible_members == 10
        assert outcome.motion.result_detail["decision"] == "adopted"

    async def test_motion_policy_overrides_meeting(self, coordinator: SessionCoordinator) -> None:
        lenient = await coordinator.register_vote_policy("Simple", Decimal("0.5"))
        strict = await coordinator.register_vote_policy("Two thirds", Decimal("0.6667"))
        a = await seed_assembly(
            coordinator, members=3, present=3, status=MeetingStatus.LIVE, vote_policy_id=lenient.id
        )
        motion = await coordinator.create_motion(
            a.meeting_id, "Statutes", vote_policy_id=strict.id
        )
        await coordinator.open_motion(a.meeting_id, motion.id)
        m = a.member_ids()
        await coordinator.cast_ballot(motion.id, m[0], VoteValue.FOR, "a")
        await coordinator.cast_ballot(motion.id, m[1], VoteValue.FOR, "b")
        await coordinator.cast_ballot(motion.id, m[2], VoteValue.AGAINST, "c")

        outcome = await coordinator.close_motion(a.meeting_id, motion.id)

        assert outcome.result.decision == Decision.REJECTED

    async def test_events_follow_commit_order(
        self,
        coordinator: SessionCoordinator,
        live_assembly: Assembly,
        emitter: RecordingEmitter,
    ) -> None:
        a = live_assembly
        motion = await coordinator.create_motion(a.meeting_id, "One")
        await coordinator.open_motion(a.meeting_id, motion.id)
        await coordinator.close_motion(a.meeting_id, motion.id)

        assert emitter.types()[-3:] == [
            EventType.MOTION_CREATED,
            EventType.MOTION_OPENED,
            EventType.MOTION_CLOSED,
        ]

    async def test_rejected_open_is_not_published_or_audited(
        self,
        coordinator: SessionCoordinator,
        live_assembly: Assembly,
        emitter: RecordingEmitter,
        engine,
    ) -> None:
        """Test a failed operation leaves neither an event nor an audit row."""
        a = live_assembly
        m1 = await coordinator.create_motion(a.meeting_id, "One")
        m2 = await coordinator.create_motion(a.meeting_id, "Two")
        await coordinator.open_motion(a.meeting_id, m1.id)
        published = len(emitter.published)

        with pytest.raises(MotionAlreadyOpen):
            await coordinator.open_motion(a.meeting_id, m2.id)

        assert len(emitter.published) == published
        async with build_session_maker(engine)() as db:
            result = await db.execute(
                select(AuditEvent).where(AuditEvent.event_type == EventType.MOTION_OPENED.value)
            )
            assert [e.motion_id for e in result.scalars().all()] == [m1.id]


class TestReplay:
    """Tests for recomputing a stored decision."""

    async def test_replay_matches_stored_decision(
        self, coordinator: SessionCoordinator, live_assembly: Assembly
    ) -> None:
        vote = await coordinator.register_vote_policy("Simple", Decimal("0.5"))
        a = live_assembly
        motion = await coordinator.create_motion(a.meeting_id, "One", vote_policy_id=vote.id)
        await coordinator.open_motion(a.meeting_id, motion.id)
        await coordinator.cast_ballot(motion.id, a.member_ids()[0], VoteValue.AGAINST, "k")
        await coordinator.close_motion(a.meeting_id, motion.id)

        report = await coordinator.replay_decision(motion.id)

        assert report.matches
        assert report.stored == Decision.REJECTED

    async def test_open_motion_cannot_be_replayed(
        self, coordinator: SessionCoordinator, live_assembly: Assembly
    ) -> None:
        motion = await coordinator.create_motion(live_assembly.meeting_id, "One")

        with pytest.raises(ValidationFailed):
            await coordinator.replay_decision(motion.id)
