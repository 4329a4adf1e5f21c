"""
Voting Pydantic Schemas

API request/response schemas for meetings, motions, attendance and ballots.
Closed enums reject any value outside their set at the boundary.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from agvote.voting.models import (
    AttendanceMode,
    BallotSource,
    Decision,
    MajorityBase,
    MeetingStatus,
    QuorumDenominator,
    QuorumMode,
    VoteValue,
)


# =============================================================================
# Members & Policies
# =============================================================================


class MemberCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    voting_power: Decimal = Field(default=Decimal("1"), ge=0)
    is_active: bool = True


class MemberResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    voting_power: Decimal
    is_active: bool


class QuorumPolicyCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    mode: QuorumMode = QuorumMode.SINGLE
    denominator: QuorumDenominator = QuorumDenominator.ELIGIBLE_MEMBERS
    threshold: Decimal = Field(ge=0, le=1)
    threshold2: Decimal | None = Field(default=None, ge=0, le=1)
    denominator2: QuorumDenominator | None = None
    include_proxies: bool = True
    count_remote: bool = True


class QuorumPolicyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    version: int
    mode: QuorumMode
    denominator: QuorumDenominator
    threshold: Decimal
    threshold2: Decimal | None
    denominator2: QuorumDenominator | None
    include_proxies: bool
    count_remote: bool


class VotePolicyCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    base: MajorityBase = MajorityBase.EXPRESSED
    threshold: Decimal = Field(ge=0, le=1)
    abstention_as_against: bool = False


class VotePolicyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    version: int
    base: MajorityBase
    threshold: Decimal
    abstention_as_against: bool


# =============================================================================
# Meetings
# =============================================================================


class MeetingCreate(BaseModel):
    title: str = Field(min_length=1, max_length=300)
    quorum_policy_id: UUID | None = None
    vote_policy_id: UUID | None = None
    convocation_no: int = Field(default=1, ge=1)


class MeetingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    status: MeetingStatus
    quorum_policy_id: UUID | None
    vote_policy_id: UUID | None
    convocation_no: int
    open_motion_id: UUID | None
    created_at: datetime
    opened_at: datetime | None
    closed_at: datetime | None
    validated_at: datetime | None
    archived_at: datetime | None


class TransitionRequest(BaseModel):
    to_status: MeetingStatus


class WarningResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    code: str
    message: str


class TransitionResponse(BaseModel):
    meeting: MeetingResponse
    warnings: list[WarningResponse] = Field(default_factory=list)


# =============================================================================
# Motions
# =============================================================================


class MotionCreate(BaseModel):
    title: str = Field(min_length=1, max_length=300)
    description: str = ""
    secret: bool = False
    vote_policy_id: UUID | None = None
    quorum_policy_id: UUID | None = None


class MotionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    meeting_id: UUID
    position: int
    title: str
    description: str
    secret: bool
    vote_policy_id: UUID | None
    quorum_policy_id: UUID | None
    applied_vote_policy_id: UUID | None
    applied_quorum_policy_id: UUID | None
    opened_at: datetime | None
    closed_at: datetime | None
    decision: Decision | None
    decision_reason: str | None


class ReorderRequest(BaseModel):
    motion_ids: list[UUID] = Field(min_length=1)


class CloseMotionResponse(BaseModel):
    motion: MotionResponse
    decision: Decision
    reason: str
    eligible_count: int
    votes_cast: int


# =============================================================================
# Attendance & Proxies
# =============================================================================


class AttendanceUpdate(BaseModel):
    mode: AttendanceMode


class AttendanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    meeting_id: UUID
    member_id: UUID
    mode: AttendanceMode
    updated_at: datetime


class AttendanceEntry(BaseModel):
    member_id: UUID
    mode: AttendanceMode


class BulkAttendanceRequest(BaseModel):
    entries: list[AttendanceEntry] = Field(min_length=1)


class BatchError(BaseModel):
    member_id: UUID
    code: str
    message: str


class BatchResult(BaseModel):
    success_count: int
    error_count: int
    errors: list[BatchError] = Field(default_factory=list)


class ProxyUpdate(BaseModel):
    receiver_id: UUID


class ProxyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    meeting_id: UUID
    giver_member_id: UUID
    receiver_member_id: UUID
    created_at: datetime
    revoked_at: datetime | None


class ProxySetResponse(BaseModel):
    proxy: ProxyResponse
    warnings: list[WarningResponse] = Field(default_factory=list)


class EligibilityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    eligible_members: int
    eligible_weight: Decimal
    present_members: int
    present_weight: Decimal
    dormant_proxies: int


# =============================================================================
# Ballots
# =============================================================================


class BallotCast(BaseModel):
    member_id: UUID
    value: VoteValue
    proxy_holder_id: UUID | None = None


class BallotResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    motion_id: UUID
    member_id: UUID
    value: VoteValue
    weight: Decimal
    source: BallotSource
    proxy_holder_id: UUID | None
    cast_at: datetime


class CastResponse(BaseModel):
    ballot: BallotResponse | None
    replayed: bool = False


class ManualVoteRequest(BaseModel):
    member_id: UUID
    value: VoteValue
    justification: str = ""


class CancelBallotRequest(BaseModel):
    reason: str = ""


class UnanimityRequest(BaseModel):
    value: VoteValue = VoteValue.FOR
    justification: str = ""


# =============================================================================
# Read projections
# =============================================================================


class MotionSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    position: int
    title: str
    description: str
    secret: bool
    opened_at: datetime | None


class TallyResponse(BaseModel):
    votes_for: Decimal
    votes_against: Decimal
    votes_abstain: Decimal
    count_for: int
    count_against: int
    count_abstain: int


class CurrentMotionResponse(BaseModel):
    meeting_id: UUID
    meeting_status: MeetingStatus
    motion: MotionSummary | None = None
    ballots_cast: int | None = None
    eligibility: EligibilityResponse | None = None
    breakdown_hidden: bool = False
    tally: TallyResponse | None = None


class MotionResultResponse(BaseModel):
    motion_id: UUID
    meeting_id: UUID
    title: str
    secret: bool
    closed: bool
    decision: Decision | None = None
    decision_reason: str | None = None
    closed_at: datetime | None = None
    eligible_members: int | None = None
    eligible_weight: Decimal | None = None
    present_members: int | None = None
    present_weight: Decimal | None = None
    ballots_cast: int | None = None
    breakdown_hidden: bool = False
    tally: TallyResponse | None = None
    detail: dict[str, Any] | None = None
