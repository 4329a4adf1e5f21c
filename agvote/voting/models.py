"""
Voting Database Models

SQLAlchemy models for the meeting lifecycle, motions, attendance, proxies,
ballots and the versioned quorum / vote policies they are decided with.
"""

import uuid
from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from agvote.core.database import Base


def utcnow() -> datetime:
    """Timezone-aware server time."""
    return datetime.now(UTC)


WEIGHT = Numeric(12, 4)
RATIO = Numeric(5, 4)


# =============================================================================
# Enums
# =============================================================================


class MeetingStatus(StrEnum):
    """Lifecycle states of a meeting."""

    DRAFT = "draft"
    SCHEDULED = "scheduled"
    FROZEN = "frozen"  # Agenda and roster locked
    LIVE = "live"
    PAUSED = "paused"  # Only reachable from live
    CLOSED = "closed"
    VALIDATED = "validated"  # Results signed off
    ARCHIVED = "archived"


class AttendanceMode(StrEnum):
    """How a member participates in a meeting."""

    PRESENT = "present"
    REMOTE = "remote"
    ABSENT = "absent"


class VoteValue(StrEnum):
    """Ballot choices."""

    FOR = "for"
    AGAINST = "against"
    ABSTAIN = "abstain"


class BallotSource(StrEnum):
    """Who entered a ballot."""

    DIRECT = "direct"  # Cast by the voter (or proxy holder)
    MANUAL = "manual"  # Entered by an operator


class Decision(StrEnum):
    """Outcome of a closed motion."""

    ADOPTED = "adopted"
    REJECTED = "rejected"
    NO_QUORUM = "no_quorum"
    NO_VOTES = "no_votes"
    NO_POLICY = "no_policy"


class QuorumMode(StrEnum):
    """How quorum thresholds are applied."""

    SINGLE = "single"
    EVOLVING = "evolving"  # Threshold depends on convocation number
    DOUBLE = "double"  # Second call tried when the first is unmet


class QuorumDenominator(StrEnum):
    """What quorum participation is measured against."""

    ELIGIBLE_MEMBERS = "eligible_members"
    ELIGIBLE_WEIGHT = "eligible_weight"


class MajorityBase(StrEnum):
    """What the 'for' weight is compared against."""

    EXPRESSED = "expressed"
    TOTAL_ELIGIBLE = "total_eligible"
    PRESENT = "present"


# =============================================================================
# Members & Policies
# =============================================================================


class Member(Base):
    """
    A voting member.

    Active members form the roster, the eligible base of every quorum and
    total_eligible majority computation.
    """

    __tablename__ = "members"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255))
    voting_power: Mapped[Decimal] = mapped_column(WEIGHT, default=Decimal("1"))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class QuorumPolicy(Base):
    """Immutable, versioned quorum rule."""

    __tablename__ = "quorum_policies"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100))
    version: Mapped[int] = mapped_column(Integer, default=1)

    mode: Mapped[QuorumMode] = mapped_column(
        Enum(QuorumMode, name="quorum_mode"), default=QuorumMode.SINGLE
    )
    denominator: Mapped[QuorumDenominator] = mapped_column(
        Enum(QuorumDenominator, name="quorum_denominator"),
        default=QuorumDenominator.ELIGIBLE_MEMBERS,
    )
    threshold: Mapped[Decimal] = mapped_column(RATIO)

    # Second call / later convocations
    threshold2: Mapped[Decimal | None] = mapped_column(RATIO, nullable=True)
    denominator2: Mapped[QuorumDenominator | None] = mapped_column(
        Enum(QuorumDenominator, name="quorum_denominator"), nullable=True
    )

    include_proxies: Mapped[bool] = mapped_column(Boolean, default=True)
    count_remote: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (UniqueConstraint("name", "version", name="uq_quorum_policy_version"),)


class VotePolicy(Base):
    """Immutable, versioned majority rule."""

    __tablename__ = "vote_policies"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100))
    version: Mapped[int] = mapped_column(Integer, default=1)

    base: Mapped[MajorityBase] = mapped_column(
        Enum(MajorityBase, name="majority_base"), default=MajorityBase.EXPRESSED
    )
    threshold: Mapped[Decimal] = mapped_column(RATIO)
    abstention_as_against: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (UniqueConstraint("name", "version", name="uq_vote_policy_version"),)


# =============================================================================
# Meetings & Motions
# =============================================================================


class Meeting(Base):
    """
    A general assembly.

    ``open_motion_id`` is the single "current motion" slot. It is only ever
    claimed with a compare-and-set UPDATE, which makes two concurrent opens
    in one meeting impossible even across processes.
    """

    __tablename__ = "meetings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(300))
    status: Mapped[MeetingStatus] = mapped_column(
        Enum(MeetingStatus, name="meeting_status"), default=MeetingStatus.DRAFT
    )

    # Default policies for motions without overrides
    quorum_policy_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("quorum_policies.id"), nullable=True
    )
    vote_policy_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("vote_policies.id"), nullable=True
    )
    convocation_no: Mapped[int] = mapped_column(Integer, default=1)

    # No FK: motions reference meetings already
    open_motion_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    opened_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    validated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Motion(Base):
    """
    A resolution voted on during a meeting.

    Once ``closed_at`` is set, the decision, tallies and eligibility
    snapshot are final.
    """

    __tablename__ = "motions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    meeting_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("meetings.id"), index=True)
    position: Mapped[int] = mapped_column(Integer)

    title: Mapped[str] = mapped_column(String(300))
    description: Mapped[str] = mapped_column(Text, default="")
    secret: Mapped[bool] = mapped_column(Boolean, default=False)

    # Optional per-motion overrides of the meeting policies
    vote_policy_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("vote_policies.id"), nullable=True
    )
    quorum_policy_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("quorum_policies.id"), nullable=True
    )

    # Resolved when the motion opens
    applied_vote_policy_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    applied_quorum_policy_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    opened_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Result (written once, on close)
    decision: Mapped[Decision | None] = mapped_column(
        Enum(Decision, name="motion_decision"), nullable=True
    )
    decision_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    votes_for: Mapped[Decimal | None] = mapped_column(WEIGHT, nullable=True)
    votes_against: Mapped[Decimal | None] = mapped_column(WEIGHT, nullable=True)
    votes_abstain: Mapped[Decimal | None] = mapped_column(WEIGHT, nullable=True)
    count_for: Mapped[int | None] = mapped_column(Integer, nullable=True)
    count_against: Mapped[int | None] = mapped_column(Integer, nullable=True)
    count_abstain: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Eligibility snapshot taken at close
    eligible_members: Mapped[int | None] = mapped_column(Integer, nullable=True)
    eligible_weight: Mapped[Decimal | None] = mapped_column(WEIGHT, nullable=True)
    present_members: Mapped[int | None] = mapped_column(Integer, nullable=True)
    present_weight: Mapped[Decimal | None] = mapped_column(WEIGHT, nullable=True)

    result_detail: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    __table_args__ = (UniqueConstraint("meeting_id", "position", name="uq_motion_position"),)

    @property
    def is_open(self) -> bool:
        return self.opened_at is not None and self.closed_at is None

    @property
    def is_closed(self) -> bool:
        return self.closed_at is not None


# =============================================================================
# Attendance & Proxies
# =============================================================================


class Attendance(Base):
    """A member's participation mode in one meeting."""

    __tablename__ = "attendances"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    meeting_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("meetings.id"), index=True)
    member_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("members.id"))
    mode: Mapped[AttendanceMode] = mapped_column(
        Enum(AttendanceMode, name="attendance_mode"), default=AttendanceMode.ABSENT
    )
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (UniqueConstraint("meeting_id", "member_id", name="uq_attendance_member"),)

    @property
    def is_participating(self) -> bool:
        return self.mode in (AttendanceMode.PRESENT, AttendanceMode.REMOTE)


class Proxy(Base):
    """Delegation of a giver's vote to a receiver for one meeting."""

    __tablename__ = "proxies"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    meeting_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("meetings.id"), index=True)
    giver_member_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("members.id"))
    receiver_member_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("members.id"))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        # One active proxy per giver per meeting
        Index(
            "uq_proxy_active_giver",
            "meeting_id",
            "giver_member_id",
            unique=True,
            postgresql_where=text("revoked_at IS NULL"),
            sqlite_where=text("revoked_at IS NULL"),
        ),
    )

    @property
    def is_active(self) -> bool:
        return self.revoked_at is None


# =============================================================================
# Ballots
# =============================================================================


class Ballot(Base):
    """
    The current vote of one member on one motion.

    For proxy casts ``member_id`` is the giver and ``proxy_holder_id`` the
    member who physically voted.
    """

    __tablename__ = "ballots"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    motion_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("motions.id"), index=True)
    member_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("members.id"))

    value: Mapped[VoteValue] = mapped_column(Enum(VoteValue, name="vote_value"))
    weight: Mapped[Decimal] = mapped_column(WEIGHT)  # voting_power at cast time
    source: Mapped[BallotSource] = mapped_column(
        Enum(BallotSource, name="ballot_source"), default=BallotSource.DIRECT
    )
    proxy_holder_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("members.id"), nullable=True
    )
    caster_mode: Mapped[AttendanceMode] = mapped_column(
        Enum(AttendanceMode, name="attendance_mode"), default=AttendanceMode.PRESENT
    )
    justification: Mapped[str | None] = mapped_column(Text, nullable=True)

    cast_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (UniqueConstraint("motion_id", "member_id", name="uq_ballot_member"),)

    @property
    def via_proxy(self) -> bool:
        return self.proxy_holder_id is not None


class IdempotencyRecord(Base):
    """Remembers which payload a client-supplied key was first used with."""

    __tablename__ = "idempotency_records"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    motion_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("motions.id"))
    member_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("members.id"))
    key: Mapped[str] = mapped_column(String(128))
    fingerprint: Mapped[str] = mapped_column(String(64))
    value: Mapped[VoteValue] = mapped_column(Enum(VoteValue, name="vote_value"))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("motion_id", "member_id", "key", name="uq_idempotency_key"),
    )


# =============================================================================
# Audit
# =============================================================================


class AuditEvent(Base):
    """Append-only journal of state changes."""

    __tablename__ = "audit_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    event_type: Mapped[str] = mapped_column(String(64), index=True)

    meeting_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    motion_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    member_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    actor_role: Mapped[str | None] = mapped_column(String(32), nullable=True)
    actor_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    payload: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
