"""
Ballot Store

One ballot per (motion, member). A later cast overwrites the earlier one;
no code path ever appends a second row. Direct casts are deduplicated by a
client idempotency key, manual ballots are operator-entered, audited and
the only kind that may be cancelled.
"""

import hashlib
import logging
import uuid

from sqlalchemy import select

from agvote.core.config import settings
from agvote.voting.attendance import AttendanceLedger, Caster
from agvote.voting.engine import BallotInput
from agvote.voting.errors import (
    BallotNotFound,
    IdempotencyConflict,
    JustificationRequired,
    MeetingNotLive,
    MotionClosed,
    MotionNotOpen,
    NotEligible,
    NotManualBallot,
    ReasonRequired,
    ValidationFailed,
)
from agvote.voting.events import EventType
from agvote.voting.models import (
    AttendanceMode,
    Ballot,
    BallotSource,
    IdempotencyRecord,
    Meeting,
    Motion,
    VoteValue,
    utcnow,
)
from agvote.voting.state_machine import VOTING_STATUSES
from agvote.voting.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


def payload_fingerprint(value: VoteValue, proxy_holder_id: uuid.UUID | None) -> str:
    """Stable digest of what a cast request asks for."""
    raw = f"{VoteValue(value).value}|{proxy_holder_id or ''}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class BallotStore:
    def __init__(
        self,
        uow: UnitOfWork,
        ledger: AttendanceLedger,
        justification_min_length: int | None = None,
    ):
        self.uow = uow
        self.db = uow.db
        self.ledger = ledger
        self.justification_min_length = (
            justification_min_length
            if justification_min_length is not None
            else settings.manual_justification_min_length
        )

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def get_ballot(self, motion_id: uuid.UUID, member_id: uuid.UUID) -> Ballot | None:
        result = await self.db.execute(
            select(Ballot).where(Ballot.motion_id == motion_id, Ballot.member_id == member_id)
        )
        return result.scalar_one_or_none()

    async def list_ballots(self, motion_id: uuid.UUID) -> list[Ballot]:
        result = await self.db.execute(
            select(Ballot).where(Ballot.motion_id == motion_id).order_by(Ballot.cast_at)
        )
        return list(result.scalars().all())

    @staticmethod
    def to_inputs(ballots: list[Ballot]) -> list[BallotInput]:
        return [
            BallotInput(
                value=b.value,
                weight=b.weight,
                via_proxy=b.via_proxy,
                remote=b.caster_mode == AttendanceMode.REMOTE,
            )
            for b in ballots
        ]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def _upsert(
        self,
        motion: Motion,
        caster: Caster,
        value: VoteValue,
        source: BallotSource,
        justification: str | None = None,
    ) -> tuple[Ballot, VoteValue | None]:
        ballot = await self.get_ballot(motion.id, caster.member_id)
        previous = ballot.value if ballot else None

        if ballot is None:
            ballot = Ballot(motion_id=motion.id, member_id=caster.member_id)
            self.db.add(ballot)

        ballot.value = value
        ballot.weight = caster.weight
        ballot.source = source
        ballot.proxy_holder_id = caster.proxy_holder_id
        ballot.caster_mode = caster.mode
        ballot.justification = justification
        ballot.cast_at = utcnow()
        await self.db.flush()
        return ballot, previous

    async def _check_key(
        self,
        motion_id: uuid.UUID,
        member_id: uuid.UUID,
        key: str,
        fingerprint: str,
    ) -> bool:
        """True when the key was already used with this payload."""
        result = await self.db.execute(
            select(IdempotencyRecord).where(
                IdempotencyRecord.motion_id == motion_id,
                IdempotencyRecord.member_id == member_id,
                IdempotencyRecord.key == key,
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            return False
        if record.fingerprint != fingerprint:
            raise IdempotencyConflict(key=key)
        return True

    async def cast(
        self,
        meeting: Meeting,
        motion: Motion,
        member_id: uuid.UUID,
        value: VoteValue,
        idempotency_key: str,
        proxy_holder_id: uuid.UUID | None = None,
    ) -> tuple[Ballot | None, bool]:
        """
        Record a direct cast.

        Returns ``(ballot, replayed)``; a replay leaves storage untouched.
        """
        if not motion.is_open:
            raise MotionNotOpen()
        if meeting.status not in VOTING_STATUSES:
            raise MeetingNotLive(f"Meeting is {meeting.status.value}")
        if not idempotency_key or not idempotency_key.strip():
            raise ValidationFailed("Idempotency key is required")

        key = idempotency_key.strip()
        fingerprint = payload_fingerprint(value, proxy_holder_id)
        if await self._check_key(motion.id, member_id, key, fingerprint):
            return await self.get_ballot(motion.id, member_id), True

        caster = await self.ledger.caster_for(meeting.id, member_id, proxy_holder_id)
        ballot, previous = await self._upsert(motion, caster, value, BallotSource.DIRECT)

        self.db.add(
            IdempotencyRecord(
                motion_id=motion.id,
                member_id=member_id,
                key=key,
                fingerprint=fingerprint,
                value=value,
            )
        )
        await self.db.flush()

        # Secret motions only journal that a ballot exists, never its value
        self.uow.record(
            EventType.BALLOT_CAST,
            meeting_id=meeting.id,
            motion_id=motion.id,
            member_id=member_id,
            value=None if motion.secret else value.value,
            overwrite=previous is not None,
            proxy_holder_id=caster.proxy_holder_id,
        )
        return ballot, False

    def check_justification(self, justification: str | None) -> str:
        text = (justification or "").strip()
        if len(text) < self.justification_min_length:
            raise JustificationRequired(
                f"Justification must be at least {self.justification_min_length} characters"
            )
        return text

    async def manual_vote(
        self,
        meeting: Meeting,
        motion: Motion,
        member_id: uuid.UUID,
        value: VoteValue,
        justification: str,
    ) -> Ballot:
        """Operator-entered ballot, overwriting whatever the member cast."""
        text = self.check_justification(justification)
        if not motion.is_open:
            raise MotionNotOpen()

        member = await self.ledger.get_member(member_id)
        if not member.is_active:
            raise NotEligible("Member is not active")

        mode = await self.ledger.mode_of(meeting.id, member_id)
        caster = Caster(
            member_id=member.id,
            weight=member.voting_power,
            mode=AttendanceMode.REMOTE if mode == AttendanceMode.REMOTE else AttendanceMode.PRESENT,
        )
        ballot, previous = await self._upsert(
            motion, caster, value, BallotSource.MANUAL, justification=text
        )

        self.uow.record(
            EventType.BALLOT_MANUAL,
            meeting_id=meeting.id,
            motion_id=motion.id,
            member_id=member_id,
            value=None if motion.secret else value.value,
            previous=previous.value if previous and not motion.secret else None,
            justification=text,
        )
        logger.info(f"Manual ballot for member {member_id} on motion {motion.id}")
        return ballot

    async def cancel(self, motion: Motion, member_id: uuid.UUID, reason: str) -> Ballot:
        """Delete a manual ballot. The reason is checked before anything else."""
        text = (reason or "").strip()
        if not text:
            raise ReasonRequired()

        ballot = await self.get_ballot(motion.id, member_id)
        if ballot is None:
            raise BallotNotFound()
        if motion.is_closed:
            raise MotionClosed()
        if ballot.source != BallotSource.MANUAL:
            raise NotManualBallot()

        await self.db.delete(ballot)
        await self.db.flush()

        self.uow.record(
            EventType.BALLOT_CANCELLED,
            meeting_id=motion.meeting_id,
            motion_id=motion.id,
            member_id=member_id,
            value=None if motion.secret else ballot.value.value,
            justification=ballot.justification,
            reason=text,
        )
        logger.info(f"Cancelled manual ballot of member {member_id} on motion {motion.id}")
        return ballot
