"""
Motion Registry

Ordered motions of a meeting, their voting window and their final result.

The meeting's ``open_motion_id`` is claimed and released with
compare-and-set UPDATEs: of two concurrent opens only one can move the slot
from NULL, and a close only succeeds while the slot still points at the
motion being closed.
"""

import logging
import uuid

from sqlalchemy import func, select, update

from agvote.voting.attendance import AttendanceLedger
from agvote.voting.ballots import BallotStore
from agvote.voting.engine import DecisionResult, MajorityRule, QuorumRule, decide
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
from agvote.voting.models import Meeting, MeetingStatus, Motion, utcnow
from agvote.voting.policies import PolicyStore
from agvote.voting.state_machine import EDITABLE_STATUSES
from agvote.voting.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


class MotionRegistry:
    def __init__(
        self,
        uow: UnitOfWork,
        policies: PolicyStore,
        ledger: AttendanceLedger,
        ballots: BallotStore,
    ):
        self.uow = uow
        self.db = uow.db
        self.policies = policies
        self.ledger = ledger
        self.ballots = ballots

    async def get_motion(self, motion_id: uuid.UUID, meeting_id: uuid.UUID | None = None) -> Motion:
        motion = await self.db.get(Motion, motion_id)
        if motion is None or (meeting_id is not None and motion.meeting_id != meeting_id):
            raise MotionNotFound(f"Motion {motion_id} not found")
        return motion

    async def list_motions(self, meeting_id: uuid.UUID) -> list[Motion]:
        result = await self.db.execute(
            select(Motion).where(Motion.meeting_id == meeting_id).order_by(Motion.position)
        )
        return list(result.scalars().all())

    async def create_motion(
        self,
        meeting: Meeting,
        title: str,
        description: str = "",
        secret: bool = False,
        vote_policy_id: uuid.UUID | None = None,
        quorum_policy_id: uuid.UUID | None = None,
    ) -> Motion:
        if meeting.status not in EDITABLE_STATUSES:
            raise MeetingNotEditable(f"Meeting is {meeting.status.value}; motions are locked")
        if not title.strip():
            raise ValidationFailed("Motion title is required")
        if vote_policy_id:
            await self.policies.get_vote_policy(vote_policy_id)
        if quorum_policy_id:
            await self.policies.get_quorum_policy(quorum_policy_id)

        result = await self.db.execute(
            select(func.max(Motion.position)).where(Motion.meeting_id == meeting.id)
        )
        position = (result.scalar() or 0) + 1

        motion = Motion(
            meeting_id=meeting.id,
            position=position,
            title=title.strip(),
            description=description,
            secret=secret,
            vote_policy_id=vote_policy_id,
            quorum_policy_id=quorum_policy_id,
        )
        self.db.add(motion)
        await self.db.flush()

        self.uow.record(
            EventType.MOTION_CREATED,
            meeting_id=meeting.id,
            motion_id=motion.id,
            position=position,
            title=motion.title,
        )
        return motion

    async def reorder(self, meeting: Meeting, ordered_ids: list[uuid.UUID]) -> list[Motion]:
        """
        Reorder unopened motions.

        The listed motions keep the set of positions they occupy now and
        take them in the new order; every other motion keeps its position.
        """
        if len(set(ordered_ids)) != len(ordered_ids):
            raise ValidationFailed("Duplicate motion ids in reorder request")
        if meeting.status not in EDITABLE_STATUSES:
            raise MeetingNotEditable(f"Meeting is {meeting.status.value}; motions are locked")

        motions = {m.id: m for m in await self.list_motions(meeting.id)}
        listed = []
        for motion_id in ordered_ids:
            motion = motions.get(motion_id)
            if motion is None:
                raise MotionNotFound(f"Motion {motion_id} does not belong to this meeting")
            if motion.opened_at is not None:
                raise MotionAlreadyOpenOrClosed(
                    f"Motion '{motion.title}' has been opened and cannot move"
                )
            listed.append(motion)

        slots = sorted(m.position for m in listed)

        # Park on negative positions so the unique (meeting, position) never clashes
        for i, motion in enumerate(listed, start=1):
            motion.position = -i
        await self.db.flush()
        for motion, position in zip(listed, slots):
            motion.position = position
        await self.db.flush()

        self.uow.record(
            EventType.MOTIONS_REORDERED,
            meeting_id=meeting.id,
            order=[m.id for m in listed],
        )
        return await self.list_motions(meeting.id)

    async def open_motion(self, meeting: Meeting, motion_id: uuid.UUID) -> Motion:
        if meeting.status != MeetingStatus.LIVE:
            raise MeetingNotLive(f"Meeting is {meeting.status.value}")

        motion = await self.get_motion(motion_id, meeting.id)
        if motion.opened_at is not None:
            raise MotionAlreadyOpenOrClosed(
                "Motion is already closed" if motion.is_closed else "Motion is already open"
            )

        claimed = await self.db.execute(
            update(Meeting)
            .where(Meeting.id == meeting.id, Meeting.open_motion_id.is_(None))
            .values(open_motion_id=motion.id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(meeting)
        if claimed.rowcount != 1:
            raise MotionAlreadyOpen(open_motion_id=meeting.open_motion_id)

        quorum, vote = await self.policies.resolve(meeting, motion)
        motion.applied_quorum_policy_id = quorum.id if quorum else None
        motion.applied_vote_policy_id = vote.id if vote else None
        motion.opened_at = utcnow()
        await self.db.flush()

        self.uow.record(
            EventType.MOTION_OPENED,
            meeting_id=meeting.id,
            motion_id=motion.id,
            quorum_policy_id=motion.applied_quorum_policy_id,
            vote_policy_id=motion.applied_vote_policy_id,
        )
        logger.info(f"Opened motion {motion.id} in meeting {meeting.id}")
        return motion

    async def close_motion(self, meeting: Meeting, motion_id: uuid.UUID) -> DecisionResult:
        """Decide and close the open motion. Terminal: a second close fails."""
        motion = await self.get_motion(motion_id, meeting.id)
        if not motion.is_open or meeting.open_motion_id != motion.id:
            raise MotionNotOpen("Motion is already closed" if motion.is_closed else None)

        released = await self.db.execute(
            update(Meeting)
            .where(Meeting.id == meeting.id, Meeting.open_motion_id == motion.id)
            .values(open_motion_id=None, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(meeting)
        if released.rowcount != 1:
            raise MotionNotOpen()

        snapshot = await self.ledger.eligibility(meeting.id)
        ballots = await self.ballots.list_ballots(motion.id)
        quorum, vote = await self.policies.applied(motion)

        result = decide(
            self.ballots.to_inputs(ballots),
            snapshot,
            quorum=QuorumRule.from_policy(quorum) if quorum else None,
            majority=MajorityRule.from_policy(vote) if vote else None,
            convocation_no=meeting.convocation_no,
        )
        self.apply_result(motion, result)
        motion.closed_at = utcnow()
        await self.db.flush()

        self.uow.record(
            EventType.MOTION_CLOSED,
            meeting_id=meeting.id,
            motion_id=motion.id,
            decision=result.decision.value,
            reason=result.reason,
            ballots=result.tally.total_count,
        )
        logger.info(
            f"Closed motion {motion.id}: {result.decision.value} "
            f"({result.tally.total_count} ballots)"
        )
        return result

    @staticmethod
    def apply_result(motion: Motion, result: DecisionResult) -> None:
        tally, snapshot = result.tally, result.snapshot
        motion.decision = result.decision
        motion.decision_reason = result.reason
        motion.votes_for = tally.weight_for
        motion.votes_against = tally.weight_against
        motion.votes_abstain = tally.weight_abstain
        motion.count_for = tally.count_for
        motion.count_against = tally.count_against
        motion.count_abstain = tally.count_abstain
        motion.eligible_members = snapshot.eligible_members
        motion.eligible_weight = snapshot.eligible_weight
        motion.present_members = snapshot.present_members
        motion.present_weight = snapshot.present_weight
        motion.result_detail = result.to_detail()

    async def counts(self, meeting_id: uuid.UUID) -> tuple[int, int]:
        """(total motions, motions never opened)."""
        motions = await self.list_motions(meeting_id)
        return len(motions), sum(1 for m in motions if m.opened_at is None)
