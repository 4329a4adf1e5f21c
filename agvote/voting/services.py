"""
Voting Services

``SessionCoordinator`` is the single entry point for every voting
operation. Each mutation runs as one unit of work:

1. take the keyed lock(s) it needs (per meeting, plus per voter for casts)
2. open a transaction, load the meeting row ``FOR UPDATE``
3. apply the change through the stores, writing audit rows alongside
4. commit (retrying transient storage errors only)
5. publish the collected events

Typed ``VotingError``s are never retried and propagate unchanged.
"""

import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agvote.auth.dependencies import Actor, Role
from agvote.auth.permissions import Permission, PermissionChecker, RoleTable, require
from agvote.core.config import settings
from agvote.core.database import run_with_retry
from agvote.core.locks import KeyedLocks
from agvote.core.metrics import metrics
from agvote.voting.attendance import AttendanceLedger
from agvote.voting.ballots import BallotStore
from agvote.voting.engine import (
    DecisionResult,
    EligibilitySnapshot,
    MajorityRule,
    QuorumRule,
    Tally,
    decide,
    meets,
    tally_ballots,
)
from agvote.voting.errors import (
    Forbidden,
    MeetingNotFound,
    MotionNotFound,
    OpenMotionExists,
    ValidationFailed,
    VotingError,
)
from agvote.voting.events import EventEmitter, EventType
from agvote.voting.models import (
    Attendance,
    AttendanceMode,
    Ballot,
    BallotSource,
    Decision,
    MajorityBase,
    Meeting,
    MeetingStatus,
    Member,
    Motion,
    Proxy,
    QuorumDenominator,
    QuorumMode,
    QuorumPolicy,
    VotePolicy,
    VoteValue,
    utcnow,
)
from agvote.voting.motions import MotionRegistry
from agvote.voting.policies import PolicyStore
from agvote.voting.schemas import (
    CurrentMotionResponse,
    EligibilityResponse,
    MotionResultResponse,
    MotionSummary,
    TallyResponse,
)
from agvote.voting.state_machine import (
    ReadinessContext,
    TransitionWarning,
    can_transition,
    readiness_warnings,
)
from agvote.voting.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)

T = TypeVar("T")

SYSTEM_ACTOR = Actor(role=Role.ADMIN, id="system")


def tally_response(tally: Tally) -> TallyResponse:
    return TallyResponse(
        votes_for=tally.weight_for,
        votes_against=tally.weight_against,
        votes_abstain=tally.weight_abstain,
        count_for=tally.count_for,
        count_against=tally.count_against,
        count_abstain=tally.count_abstain,
    )


# =============================================================================
# Results
# =============================================================================


@dataclass
class TransitionOutcome:
    meeting: Meeting
    warnings: list[TransitionWarning] = field(default_factory=list)


@dataclass
class CloseOutcome:
    motion: Motion
    result: DecisionResult

    @property
    def eligible_count(self) -> int:
        return self.result.snapshot.eligible_members

    @property
    def votes_cast(self) -> int:
        return self.result.tally.total_count


@dataclass
class CastOutcome:
    ballot: Ballot | None
    replayed: bool


@dataclass
class BatchOutcome:
    """Result of N independent writes."""

    success_count: int = 0
    error_count: int = 0
    errors: list[tuple[uuid.UUID, str, str]] = field(default_factory=list)

    def failed(self, member_id: uuid.UUID, error: VotingError) -> None:
        self.error_count += 1
        self.errors.append((member_id, error.code, error.message))


@dataclass
class ReplayReport:
    motion: Motion
    stored: Decision | None
    replayed: DecisionResult

    @property
    def matches(self) -> bool:
        return self.stored == self.replayed.decision


# =============================================================================
# Wiring
# =============================================================================


@dataclass
class Stores:
    """Stores sharing one unit of work."""

    uow: UnitOfWork
    policies: PolicyStore
    ledger: AttendanceLedger
    ballots: BallotStore
    motions: MotionRegistry

    @classmethod
    def build(cls, uow: UnitOfWork) -> "Stores":
        policies = PolicyStore(uow.db)
        ledger = AttendanceLedger(uow, proxy_cap=settings.proxy_max_per_receiver)
        ballots = BallotStore(
            uow, ledger, justification_min_length=settings.manual_justification_min_length
        )
        motions = MotionRegistry(uow, policies, ledger, ballots)
        return cls(uow, policies, ledger, ballots, motions)

    @property
    def db(self) -> AsyncSession:
        return self.uow.db

    async def meeting(self, meeting_id: uuid.UUID, lock: bool = False) -> Meeting:
        query = select(Meeting).where(Meeting.id == meeting_id)
        if lock:
            query = query.with_for_update()
        result = await self.db.execute(query)
        meeting = result.scalar_one_or_none()
        if meeting is None:
            raise MeetingNotFound(f"Meeting {meeting_id} not found")
        return meeting


class SessionCoordinator:
    """Service façade over the voting stores."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        emitter: EventEmitter | None = None,
        checker: PermissionChecker | None = None,
    ):
        self.session_maker = session_maker
        self.emitter = emitter or EventEmitter(enabled=False)
        self.checker = checker or RoleTable()
        self.meeting_locks = KeyedLocks("meeting")
        self.voter_locks = KeyedLocks("voter")

    # -------------------------------------------------------------------------
    # Plumbing
    # -------------------------------------------------------------------------

    async def _run(self, actor: Actor | None, work: Callable[[Stores], Awaitable[T]]) -> T:
        """Run ``work`` in a fresh transaction, commit, then publish its events."""

        async def attempt() -> tuple[T, list]:
            async with self.session_maker() as db:
                uow = UnitOfWork(db, actor)
                try:
                    result = await work(Stores.build(uow))
                    await db.commit()
                except Exception:
                    await db.rollback()
                    raise
                return result, uow.events

        try:
            result, events = await run_with_retry(attempt)
        except VotingError as e:
            metrics.record_rejection(e.code)
            logger.warning(f"Rejected ({e.code}): {e.message}")
            raise

        await self.emitter.publish_all(events)
        return result

    async def _read(self, work: Callable[[Stores], Awaitable[T]]) -> T:
        async with self.session_maker() as db:
            return await work(Stores.build(UnitOfWork(db)))

    def _require(self, actor: Actor, permission: Permission) -> None:
        try:
            require(self.checker, actor.role, permission)
        except Forbidden as e:
            metrics.record_rejection(e.code)
            raise

    async def _meeting_of_motion(self, motion_id: uuid.UUID) -> uuid.UUID:
        async with self.session_maker() as db:
            result = await db.execute(select(Motion.meeting_id).where(Motion.id == motion_id))
            meeting_id = result.scalar_one_or_none()
        if meeting_id is None:
            metrics.record_rejection(MotionNotFound.code)
            raise MotionNotFound(f"Motion {motion_id} not found")
        return meeting_id

    # -------------------------------------------------------------------------
    # Seed helpers (directory and policy CRUD live elsewhere)
    # -------------------------------------------------------------------------

    async def create_member(
        self,
        name: str,
        voting_power: Decimal = Decimal("1"),
        is_active: bool = True,
        actor: Actor = SYSTEM_ACTOR,
    ) -> Member:
        self._require(actor, Permission.MEMBER_CREATE)
        if Decimal(voting_power) < 0:
            raise ValidationFailed("voting_power must be non-negative")

        async def work(s: Stores) -> Member:
            member = Member(name=name, voting_power=Decimal(voting_power), is_active=is_active)
            s.db.add(member)
            await s.db.flush()
            return member

        return await self._run(actor, work)

    async def register_quorum_policy(
        self,
        name: str,
        threshold: Decimal,
        mode: QuorumMode = QuorumMode.SINGLE,
        denominator: QuorumDenominator = QuorumDenominator.ELIGIBLE_MEMBERS,
        threshold2: Decimal | None = None,
        denominator2: QuorumDenominator | None = None,
        include_proxies: bool = True,
        count_remote: bool = True,
        actor: Actor = SYSTEM_ACTOR,
    ) -> QuorumPolicy:
        self._require(actor, Permission.POLICY_WRITE)
        return await self._run(
            actor,
            lambda s: s.policies.register_quorum_policy(
                name,
                threshold,
                mode=mode,
                denominator=denominator,
                threshold2=threshold2,
                denominator2=denominator2,
                include_proxies=include_proxies,
                count_remote=count_remote,
            ),
        )

    async def register_vote_policy(
        self,
        name: str,
        threshold: Decimal,
        base: MajorityBase = MajorityBase.EXPRESSED,
        abstention_as_against: bool = False,
        actor: Actor = SYSTEM_ACTOR,
    ) -> VotePolicy:
        self._require(actor, Permission.POLICY_WRITE)
        return await self._run(
            actor,
            lambda s: s.policies.register_vote_policy(
                name, threshold, base=base, abstention_as_against=abstention_as_against
            ),
        )

    async def create_meeting(
        self,
        title: str,
        quorum_policy_id: uuid.UUID | None = None,
        vote_policy_id: uuid.UUID | None = None,
        convocation_no: int = 1,
        actor: Actor = SYSTEM_ACTOR,
    ) -> Meeting:
        self._require(actor, Permission.MEETING_CREATE)
        if convocation_no < 1:
            raise ValidationFailed("convocation_no must be at least 1")

        async def work(s: Stores) -> Meeting:
            if quorum_policy_id:
                await s.policies.get_quorum_policy(quorum_policy_id)
            if vote_policy_id:
                await s.policies.get_vote_policy(vote_policy_id)
            meeting = Meeting(
                title=title,
                status=MeetingStatus.DRAFT,
                quorum_policy_id=quorum_policy_id,
                vote_policy_id=vote_policy_id,
                convocation_no=convocation_no,
            )
            s.db.add(meeting)
            await s.db.flush()
            s.uow.record(EventType.MEETING_CREATED, meeting_id=meeting.id, title=title)
            return meeting

        return await self._run(actor, work)

    # -------------------------------------------------------------------------
    # Meeting lifecycle
    # -------------------------------------------------------------------------

    async def _readiness(self, s: Stores, meeting: Meeting) -> ReadinessContext:
        motion_count, unopened = await s.motions.counts(meeting.id)
        snapshot = await s.ledger.eligibility(meeting.id)
        participating = len(await s.ledger.participating_member_ids(meeting.id))

        quorum_met = None
        if meeting.quorum_policy_id:
            policy = await s.policies.get_quorum_policy(meeting.quorum_policy_id)
            quorum_met = self._attendance_quorum_met(policy, snapshot)

        return ReadinessContext(
            motion_count=motion_count,
            unopened_motion_count=unopened,
            participating_count=participating,
            open_motion=meeting.open_motion_id is not None,
            quorum_met=quorum_met,
        )

    @staticmethod
    def _attendance_quorum_met(policy: QuorumPolicy, snapshot: EligibilitySnapshot) -> bool:
        """Meeting-level quorum over present members, before any ballot."""
        if policy.denominator == QuorumDenominator.ELIGIBLE_MEMBERS:
            return meets(
                Decimal(snapshot.present_members),
                Decimal(snapshot.eligible_members),
                Decimal(policy.threshold),
            )
        return meets(snapshot.present_weight, snapshot.eligible_weight, Decimal(policy.threshold))

    async def transition(
        self, meeting_id: uuid.UUID, to_status: MeetingStatus, actor: Actor
    ) -> TransitionOutcome:
        async def work(s: Stores) -> TransitionOutcome:
            meeting = await s.meeting(meeting_id, lock=True)
            current = meeting.status
            can_transition(current, to_status, actor.role)

            if to_status == MeetingStatus.CLOSED and meeting.open_motion_id is not None:
                raise OpenMotionExists(open_motion_id=meeting.open_motion_id)

            warnings = readiness_warnings(to_status, await self._readiness(s, meeting))

            if to_status == MeetingStatus.CLOSED:
                await s.db.refresh(meeting, ["open_motion_id"])
                if meeting.open_motion_id is not None:
                    raise OpenMotionExists(open_motion_id=meeting.open_motion_id)

            now = utcnow()
            if to_status == MeetingStatus.LIVE and meeting.opened_at is None:
                meeting.opened_at = now
            elif to_status == MeetingStatus.CLOSED:
                meeting.closed_at = now
            elif to_status == MeetingStatus.VALIDATED:
                meeting.validated_at = now
                meeting.archived_at = None
            elif to_status == MeetingStatus.ARCHIVED:
                meeting.archived_at = now

            meeting.status = to_status
            meeting.updated_at = now
            await s.db.flush()

            s.uow.record(
                EventType.MEETING_TRANSITIONED,
                meeting_id=meeting.id,
                from_status=current.value,
                to_status=to_status.value,
                warnings=[w.code for w in warnings],
            )
            logger.info(f"Meeting {meeting.id}: {current.value} -> {to_status.value}")
            return TransitionOutcome(meeting=meeting, warnings=warnings)

        async with self.meeting_locks.hold(meeting_id):
            return await self._run(actor, work)

    # -------------------------------------------------------------------------
    # Motions
    # -------------------------------------------------------------------------

    async def create_motion(
        self,
        meeting_id: uuid.UUID,
        title: str,
        description: str = "",
        secret: bool = False,
        vote_policy_id: uuid.UUID | None = None,
        quorum_policy_id: uuid.UUID | None = None,
        actor: Actor = SYSTEM_ACTOR,
    ) -> Motion:
        self._require(actor, Permission.MOTION_WRITE)

        async def work(s: Stores) -> Motion:
            meeting = await s.meeting(meeting_id, lock=True)
            return await s.motions.create_motion(
                meeting,
                title,
                description=description,
                secret=secret,
                vote_policy_id=vote_policy_id,
                quorum_policy_id=quorum_policy_id,
            )

        async with self.meeting_locks.hold(meeting_id):
            return await self._run(actor, work)

    async def reorder_motions(
        self, meeting_id: uuid.UUID, ordered_ids: list[uuid.UUID], actor: Actor = SYSTEM_ACTOR
    ) -> list[Motion]:
        self._require(actor, Permission.MOTION_WRITE)

        async def work(s: Stores) -> list[Motion]:
            meeting = await s.meeting(meeting_id, lock=True)
            return await s.motions.reorder(meeting, ordered_ids)

        async with self.meeting_locks.hold(meeting_id):
            return await self._run(actor, work)

    async def open_motion(
        self, meeting_id: uuid.UUID, motion_id: uuid.UUID, actor: Actor = SYSTEM_ACTOR
    ) -> Motion:
        self._require(actor, Permission.MOTION_CONTROL)

        async def work(s: Stores) -> Motion:
            meeting = await s.meeting(meeting_id, lock=True)
            return await s.motions.open_motion(meeting, motion_id)

        async with self.meeting_locks.hold(meeting_id):
            return await self._run(actor, work)

    async def close_motion(
        self, meeting_id: uuid.UUID, motion_id: uuid.UUID, actor: Actor = SYSTEM_ACTOR
    ) -> CloseOutcome:
        self._require(actor, Permission.MOTION_CONTROL)

        async def work(s: Stores) -> CloseOutcome:
            meeting = await s.meeting(meeting_id, lock=True)
            result = await s.motions.close_motion(meeting, motion_id)
            motion = await s.motions.get_motion(motion_id, meeting_id)
            return CloseOutcome(motion=motion, result=result)

        async with self.meeting_locks.hold(meeting_id):
            outcome = await self._run(actor, work)
        metrics.record_motion_closed(outcome.result.decision.value)
        return outcome

    async def list_motions(self, meeting_id: uuid.UUID) -> list[Motion]:
        async def work(s: Stores) -> list[Motion]:
            await s.meeting(meeting_id)
            return await s.motions.list_motions(meeting_id)

        return await self._read(work)

    # -------------------------------------------------------------------------
    # Ballots
    # -------------------------------------------------------------------------

    async def cast_ballot(
        self,
        motion_id: uuid.UUID,
        member_id: uuid.UUID,
        value: VoteValue,
        idempotency_key: str,
        proxy_holder_id: uuid.UUID | None = None,
        actor: Actor = SYSTEM_ACTOR,
    ) -> CastOutcome:
        self._require(actor, Permission.BALLOT_CAST)
        if actor.role == Role.VOTER:
            caster = proxy_holder_id or member_id
            if actor.id is None or actor.id != str(caster):
                metrics.record_rejection(Forbidden.code)
                raise Forbidden("Voters may only cast their own ballot or a proxy they hold")

        meeting_id = await self._meeting_of_motion(motion_id)

        async def work(s: Stores) -> CastOutcome:
            meeting = await s.meeting(meeting_id, lock=True)
            motion = await s.motions.get_motion(motion_id, meeting_id)
            ballot, replayed = await s.ballots.cast(
                meeting, motion, member_id, value, idempotency_key, proxy_holder_id
            )
            return CastOutcome(ballot=ballot, replayed=replayed)

        async with self.voter_locks.hold((motion_id, member_id)):
            async with self.meeting_locks.hold(meeting_id):
                outcome = await self._run(actor, work)

        if outcome.replayed:
            metrics.record_idempotent_replay()
        else:
            metrics.record_ballot(BallotSource.DIRECT.value)
        return outcome

    async def manual_vote(
        self,
        meeting_id: uuid.UUID,
        motion_id: uuid.UUID,
        member_id: uuid.UUID,
        value: VoteValue,
        justification: str,
        actor: Actor = SYSTEM_ACTOR,
    ) -> Ballot:
        self._require(actor, Permission.BALLOT_MANUAL)

        async def work(s: Stores) -> Ballot:
            meeting = await s.meeting(meeting_id, lock=True)
            motion = await s.motions.get_motion(motion_id, meeting_id)
            return await s.ballots.manual_vote(meeting, motion, member_id, value, justification)

        async with self.voter_locks.hold((motion_id, member_id)):
            async with self.meeting_locks.hold(meeting_id):
                ballot = await self._run(actor, work)

        metrics.record_ballot(BallotSource.MANUAL.value)
        return ballot

    async def cancel_ballot(
        self,
        motion_id: uuid.UUID,
        member_id: uuid.UUID,
        reason: str,
        actor: Actor = SYSTEM_ACTOR,
    ) -> Ballot:
        self._require(actor, Permission.BALLOT_CANCEL)
        meeting_id = await self._meeting_of_motion(motion_id)

        async def work(s: Stores) -> Ballot:
            await s.meeting(meeting_id, lock=True)
            motion = await s.motions.get_motion(motion_id, meeting_id)
            return await s.ballots.cancel(motion, member_id, reason)

        async with self.voter_locks.hold((motion_id, member_id)):
            async with self.meeting_locks.hold(meeting_id):
                ballot = await self._run(actor, work)

        metrics.record_ballot_cancelled()
        return ballot

    async def apply_unanimity(
        self,
        meeting_id: uuid.UUID,
        motion_id: uuid.UUID,
        value: VoteValue,
        justification: str,
        actor: Actor = SYSTEM_ACTOR,
    ) -> BatchOutcome:
        """Manual ballot for every attending member; each write stands alone."""
        self._require(actor, Permission.BALLOT_MANUAL)

        async def prepare(s: Stores) -> list[uuid.UUID]:
            s.ballots.check_justification(justification)
            await s.meeting(meeting_id)
            await s.motions.get_motion(motion_id, meeting_id)
            return await s.ledger.participating_member_ids(meeting_id)

        member_ids = await self._read(prepare)

        outcome = BatchOutcome()
        for member_id in member_ids:
            try:
                await self.manual_vote(
                    meeting_id, motion_id, member_id, value, justification, actor
                )
                outcome.success_count += 1
            except VotingError as e:
                outcome.failed(member_id, e)

        logger.info(
            f"Unanimity on motion {motion_id}: {outcome.success_count} ok, "
            f"{outcome.error_count} failed"
        )
        return outcome

    # -------------------------------------------------------------------------
    # Attendance & proxies
    # -------------------------------------------------------------------------

    async def set_attendance(
        self,
        meeting_id: uuid.UUID,
        member_id: uuid.UUID,
        mode: AttendanceMode,
        actor: Actor = SYSTEM_ACTOR,
    ) -> Attendance:
        self._require(actor, Permission.ATTENDANCE_WRITE)

        async def work(s: Stores) -> Attendance:
            meeting = await s.meeting(meeting_id, lock=True)
            return await s.ledger.set_attendance(meeting, member_id, mode)

        async with self.meeting_locks.hold(meeting_id):
            return await self._run(actor, work)

    async def bulk_set_attendance(
        self,
        meeting_id: uuid.UUID,
        entries: list[tuple[uuid.UUID, AttendanceMode]],
        actor: Actor = SYSTEM_ACTOR,
    ) -> BatchOutcome:
        self._require(actor, Permission.ATTENDANCE_WRITE)

        outcome = BatchOutcome()
        for member_id, mode in entries:
            try:
                await self.set_attendance(meeting_id, member_id, mode, actor)
                outcome.success_count += 1
            except VotingError as e:
                outcome.failed(member_id, e)
        return outcome

    async def set_proxy(
        self,
        meeting_id: uuid.UUID,
        giver_id: uuid.UUID,
        receiver_id: uuid.UUID,
        actor: Actor = SYSTEM_ACTOR,
    ) -> tuple[Proxy, list[TransitionWarning]]:
        self._require(actor, Permission.ATTENDANCE_WRITE)

        async def work(s: Stores) -> tuple[Proxy, list[TransitionWarning]]:
            meeting = await s.meeting(meeting_id, lock=True)
            return await s.ledger.set_proxy(meeting, giver_id, receiver_id)

        async with self.meeting_locks.hold(meeting_id):
            return await self._run(actor, work)

    async def revoke_proxy(
        self, meeting_id: uuid.UUID, giver_id: uuid.UUID, actor: Actor = SYSTEM_ACTOR
    ) -> Proxy:
        self._require(actor, Permission.ATTENDANCE_WRITE)

        async def work(s: Stores) -> Proxy:
            meeting = await s.meeting(meeting_id, lock=True)
            return await s.ledger.revoke_proxy(meeting, giver_id)

        async with self.meeting_locks.hold(meeting_id):
            return await self._run(actor, work)

    # -------------------------------------------------------------------------
    # Read projections
    # -------------------------------------------------------------------------

    async def get_meeting(self, meeting_id: uuid.UUID) -> Meeting:
        return await self._read(lambda s: s.meeting(meeting_id))

    async def eligibility(self, meeting_id: uuid.UUID) -> EligibilitySnapshot:
        async def work(s: Stores) -> EligibilitySnapshot:
            await s.meeting(meeting_id)
            return await s.ledger.eligibility(meeting_id)

        return await self._read(work)

    async def get_current_motion(
        self, meeting_id: uuid.UUID, role: Role = Role.VIEWER
    ) -> CurrentMotionResponse:
        """
        The open motion, how many voted and, for roles allowed to read votes,
        the live tally.
        """
        can_read_votes = self.checker.allows(role, Permission.VOTE_READ)

        async def work(s: Stores) -> CurrentMotionResponse:
            meeting = await s.meeting(meeting_id)
            view = CurrentMotionResponse(meeting_id=meeting.id, meeting_status=meeting.status)
            if meeting.open_motion_id is None:
                return view

            motion = await s.motions.get_motion(meeting.open_motion_id, meeting.id)
            ballots = await s.ballots.list_ballots(motion.id)
            snapshot = await s.ledger.eligibility(meeting.id)
            view.motion = MotionSummary.model_validate(motion)
            view.ballots_cast = len(ballots)
            view.eligibility = EligibilityResponse.model_validate(snapshot)
            if can_read_votes:
                view.tally = tally_response(tally_ballots(s.ballots.to_inputs(ballots)))
            else:
                view.breakdown_hidden = True
            return view

        return await self._read(work)

    async def get_motion_result(
        self, motion_id: uuid.UUID, role: Role = Role.VIEWER
    ) -> MotionResultResponse:
        """
        Result of a motion.

        Closed motions report their persisted result. Open motions report a
        live tally to roles allowed to read votes. The breakdown of a secret
        motion is hidden from every other role.
        """
        can_read_votes = self.checker.allows(role, Permission.VOTE_READ)

        async def work(s: Stores) -> MotionResultResponse:
            motion = await s.motions.get_motion(motion_id)
            view = MotionResultResponse(
                motion_id=motion.id,
                meeting_id=motion.meeting_id,
                title=motion.title,
                secret=motion.secret,
                closed=motion.is_closed,
            )

            if motion.is_closed:
                view.decision = motion.decision
                view.decision_reason = motion.decision_reason
                view.closed_at = motion.closed_at
                view.eligible_members = motion.eligible_members
                view.eligible_weight = motion.eligible_weight
                view.present_members = motion.present_members
                view.present_weight = motion.present_weight
                view.ballots_cast = sum(
                    count or 0
                    for count in (motion.count_for, motion.count_against, motion.count_abstain)
                )
                if motion.secret and not can_read_votes:
                    view.breakdown_hidden = True
                    return view
                view.tally = TallyResponse(
                    votes_for=motion.votes_for,
                    votes_against=motion.votes_against,
                    votes_abstain=motion.votes_abstain,
                    count_for=motion.count_for,
                    count_against=motion.count_against,
                    count_abstain=motion.count_abstain,
                )
                view.detail = motion.result_detail
                return view

            ballots = await s.ballots.list_ballots(motion.id)
            view.ballots_cast = len(ballots)
            if not can_read_votes:
                view.breakdown_hidden = True
                return view
            view.tally = tally_response(tally_ballots(s.ballots.to_inputs(ballots)))
            return view

        return await self._read(work)

    async def replay_decision(self, motion_id: uuid.UUID) -> ReplayReport:
        """
        Recompute a closed motion's decision from its ballots and snapshot.

        Read-only: the stored result is never rewritten.
        """

        async def work(s: Stores) -> ReplayReport:
            motion = await s.motions.get_motion(motion_id)
            if not motion.is_closed:
                raise ValidationFailed("Only closed motions can be replayed")
            meeting = await s.meeting(motion.meeting_id)
            ballots = await s.ballots.list_ballots(motion.id)
            quorum, vote = await s.policies.applied(motion)
            snapshot = EligibilitySnapshot(
                eligible_members=motion.eligible_members or 0,
                eligible_weight=Decimal(motion.eligible_weight or 0),
                present_members=motion.present_members or 0,
                present_weight=Decimal(motion.present_weight or 0),
            )
            replayed = decide(
                s.ballots.to_inputs(ballots),
                snapshot,
                quorum=QuorumRule.from_policy(quorum) if quorum else None,
                majority=MajorityRule.from_policy(vote) if vote else None,
                convocation_no=meeting.convocation_no,
            )
            return ReplayReport(motion=motion, stored=motion.decision, replayed=replayed)

        return await self._read(work)
