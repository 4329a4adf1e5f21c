"""
Voting API Router

Endpoints for the meeting lifecycle, motions, attendance, proxies and
ballots. Every typed voting error is returned as
``{"detail": {"code": ..., "message": ...}}`` with its own status code.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from agvote.auth.dependencies import Actor, get_actor, get_optional_actor
from agvote.voting.errors import VotingError
from agvote.voting.schemas import (
    AttendanceResponse,
    AttendanceUpdate,
    BallotCast,
    BallotResponse,
    BatchError,
    BatchResult,
    BulkAttendanceRequest,
    CancelBallotRequest,
    CastResponse,
    CloseMotionResponse,
    CurrentMotionResponse,
    EligibilityResponse,
    ManualVoteRequest,
    MeetingCreate,
    MeetingResponse,
    MemberCreate,
    MemberResponse,
    MotionCreate,
    MotionResponse,
    MotionResultResponse,
    ProxyResponse,
    ProxySetResponse,
    ProxyUpdate,
    QuorumPolicyCreate,
    QuorumPolicyResponse,
    ReorderRequest,
    TransitionRequest,
    TransitionResponse,
    UnanimityRequest,
    VotePolicyCreate,
    VotePolicyResponse,
    WarningResponse,
)
from agvote.voting.services import BatchOutcome, SessionCoordinator

router = APIRouter(tags=["voting"])


def get_coordinator(request: Request) -> SessionCoordinator:
    """The coordinator owned by the running app."""
    return request.app.state.coordinator


def http_error(e: VotingError) -> HTTPException:
    return HTTPException(
        status_code=e.http_status,
        detail={"code": e.code, "message": e.message},
    )


def batch_result(outcome: BatchOutcome) -> BatchResult:
    return BatchResult(
        success_count=outcome.success_count,
        error_count=outcome.error_count,
        errors=[
            BatchError(member_id=member_id, code=code, message=message)
            for member_id, code, message in outcome.errors
        ],
    )


# =============================================================================
# Members & Policies
# =============================================================================


@router.post("/members", response_model=MemberResponse, status_code=status.HTTP_201_CREATED)
async def create_member(
    data: MemberCreate,
    actor: Actor = Depends(get_actor),
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> MemberResponse:
    """Register a voting member."""
    try:
        member = await coordinator.create_member(
            data.name, voting_power=data.voting_power, is_active=data.is_active, actor=actor
        )
    except VotingError as e:
        raise http_error(e)
    return MemberResponse.model_validate(member)


@router.post(
    "/policies/quorum",
    response_model=QuorumPolicyResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_quorum_policy(
    data: QuorumPolicyCreate,
    actor: Actor = Depends(get_actor),
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> QuorumPolicyResponse:
    """Register a quorum policy (a new version when the name exists)."""
    try:
        policy = await coordinator.register_quorum_policy(
            data.name,
            data.threshold,
            mode=data.mode,
            denominator=data.denominator,
            threshold2=data.threshold2,
            denominator2=data.denominator2,
            include_proxies=data.include_proxies,
            count_remote=data.count_remote,
            actor=actor,
        )
    except VotingError as e:
        raise http_error(e)
    return QuorumPolicyResponse.model_validate(policy)


@router.post(
    "/policies/vote",
    response_model=VotePolicyResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_vote_policy(
    data: VotePolicyCreate,
    actor: Actor = Depends(get_actor),
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> VotePolicyResponse:
    """Register a vote policy (a new version when the name exists)."""
    try:
        policy = await coordinator.register_vote_policy(
            data.name,
            data.threshold,
            base=data.base,
            abstention_as_against=data.abstention_as_against,
            actor=actor,
        )
    except VotingError as e:
        raise http_error(e)
    return VotePolicyResponse.model_validate(policy)


# =============================================================================
# Meetings
# =============================================================================


@router.post("/meetings", response_model=MeetingResponse, status_code=status.HTTP_201_CREATED)
async def create_meeting(
    data: MeetingCreate,
    actor: Actor = Depends(get_actor),
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> MeetingResponse:
    """Create a meeting in draft."""
    try:
        meeting = await coordinator.create_meeting(
            data.title,
            quorum_policy_id=data.quorum_policy_id,
            vote_policy_id=data.vote_policy_id,
            convocation_no=data.convocation_no,
            actor=actor,
        )
    except VotingError as e:
        raise http_error(e)
    return MeetingResponse.model_validate(meeting)


@router.get("/meetings/{meeting_id}", response_model=MeetingResponse)
async def get_meeting(
    meeting_id: UUID,
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> MeetingResponse:
    try:
        meeting = await coordinator.get_meeting(meeting_id)
    except VotingError as e:
        raise http_error(e)
    return MeetingResponse.model_validate(meeting)


@router.post("/meetings/{meeting_id}/transition", response_model=TransitionResponse)
async def transition_meeting(
    meeting_id: UUID,
    data: TransitionRequest,
    actor: Actor = Depends(get_actor),
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> TransitionResponse:
    """Move a meeting to another lifecycle status."""
    try:
        outcome = await coordinator.transition(meeting_id, data.to_status, actor)
    except VotingError as e:
        raise http_error(e)
    return TransitionResponse(
        meeting=MeetingResponse.model_validate(outcome.meeting),
        warnings=[WarningResponse.model_validate(w) for w in outcome.warnings],
    )


@router.get("/meetings/{meeting_id}/eligibility", response_model=EligibilityResponse)
async def get_eligibility(
    meeting_id: UUID,
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> EligibilityResponse:
    """Roster and present weight of a meeting."""
    try:
        snapshot = await coordinator.eligibility(meeting_id)
    except VotingError as e:
        raise http_error(e)
    return EligibilityResponse.model_validate(snapshot)


@router.get("/meetings/{meeting_id}/current-motion", response_model=CurrentMotionResponse)
async def get_current_motion(
    meeting_id: UUID,
    actor: Actor = Depends(get_optional_actor),
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> CurrentMotionResponse:
    """The open motion, polled by terminals and the projection screen."""
    try:
        return await coordinator.get_current_motion(meeting_id, actor.role)
    except VotingError as e:
        raise http_error(e)


# =============================================================================
# Motions
# =============================================================================


@router.get("/meetings/{meeting_id}/motions", response_model=list[MotionResponse])
async def list_motions(
    meeting_id: UUID,
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> list[MotionResponse]:
    try:
        motions = await coordinator.list_motions(meeting_id)
    except VotingError as e:
        raise http_error(e)
    return [MotionResponse.model_validate(m) for m in motions]


@router.post(
    "/meetings/{meeting_id}/motions",
    response_model=MotionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_motion(
    meeting_id: UUID,
    data: MotionCreate,
    actor: Actor = Depends(get_actor),
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> MotionResponse:
    """Append a motion to the meeting agenda."""
    try:
        motion = await coordinator.create_motion(
            meeting_id,
            data.title,
            description=data.description,
            secret=data.secret,
            vote_policy_id=data.vote_policy_id,
            quorum_policy_id=data.quorum_policy_id,
            actor=actor,
        )
    except VotingError as e:
        raise http_error(e)
    return MotionResponse.model_validate(motion)


@router.post("/meetings/{meeting_id}/motions/reorder", response_model=list[MotionResponse])
async def reorder_motions(
    meeting_id: UUID,
    data: ReorderRequest,
    actor: Actor = Depends(get_actor),
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> list[MotionResponse]:
    try:
        motions = await coordinator.reorder_motions(meeting_id, data.motion_ids, actor=actor)
    except VotingError as e:
        raise http_error(e)
    return [MotionResponse.model_validate(m) for m in motions]


@router.post("/meetings/{meeting_id}/motions/{motion_id}/open", response_model=MotionResponse)
async def open_motion(
    meeting_id: UUID,
    motion_id: UUID,
    actor: Actor = Depends(get_actor),
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> MotionResponse:
    """Open voting on a motion."""
    try:
        motion = await coordinator.open_motion(meeting_id, motion_id, actor=actor)
    except VotingError as e:
        raise http_error(e)
    return MotionResponse.model_validate(motion)


@router.post(
    "/meetings/{meeting_id}/motions/{motion_id}/close",
    response_model=CloseMotionResponse,
)
async def close_motion(
    meeting_id: UUID,
    motion_id: UUID,
    actor: Actor = Depends(get_actor),
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> CloseMotionResponse:
    """Close voting and record the decision."""
    try:
        outcome = await coordinator.close_motion(meeting_id, motion_id, actor=actor)
    except VotingError as e:
        raise http_error(e)
    return CloseMotionResponse(
        motion=MotionResponse.model_validate(outcome.motion),
        decision=outcome.result.decision,
        reason=outcome.result.reason,
        eligible_count=outcome.eligible_count,
        votes_cast=outcome.votes_cast,
    )


@router.get("/motions/{motion_id}/result", response_model=MotionResultResponse)
async def get_motion_result(
    motion_id: UUID,
    actor: Actor = Depends(get_optional_actor),
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> MotionResultResponse:
    try:
        return await coordinator.get_motion_result(motion_id, actor.role)
    except VotingError as e:
        raise http_error(e)


# =============================================================================
# Ballots
# =============================================================================


@router.post("/motions/{motion_id}/ballots", response_model=CastResponse)
async def cast_ballot(
    motion_id: UUID,
    data: BallotCast,
    idempotency_key: str = Header(alias="Idempotency-Key"),
    actor: Actor = Depends(get_actor),
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> CastResponse:
    """Cast or overwrite a ballot. Retries with the same key are collapsed."""
    try:
        outcome = await coordinator.cast_ballot(
            motion_id,
            data.member_id,
            data.value,
            idempotency_key,
            proxy_holder_id=data.proxy_holder_id,
            actor=actor,
        )
    except VotingError as e:
        raise http_error(e)
    return CastResponse(
        ballot=BallotResponse.model_validate(outcome.ballot) if outcome.ballot else None,
        replayed=outcome.replayed,
    )


@router.post(
    "/meetings/{meeting_id}/motions/{motion_id}/manual-vote",
    response_model=BallotResponse,
)
async def manual_vote(
    meeting_id: UUID,
    motion_id: UUID,
    data: ManualVoteRequest,
    actor: Actor = Depends(get_actor),
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> BallotResponse:
    """Operator-entered ballot with a written justification."""
    try:
        ballot = await coordinator.manual_vote(
            meeting_id, motion_id, data.member_id, data.value, data.justification, actor=actor
        )
    except VotingError as e:
        raise http_error(e)
    return BallotResponse.model_validate(ballot)


@router.post(
    "/meetings/{meeting_id}/motions/{motion_id}/unanimity",
    response_model=BatchResult,
)
async def apply_unanimity(
    meeting_id: UUID,
    motion_id: UUID,
    data: UnanimityRequest,
    actor: Actor = Depends(get_actor),
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> BatchResult:
    """Record the same manual ballot for every attending member."""
    try:
        outcome = await coordinator.apply_unanimity(
            meeting_id, motion_id, data.value, data.justification, actor=actor
        )
    except VotingError as e:
        raise http_error(e)
    return batch_result(outcome)


@router.post("/motions/{motion_id}/ballots/{member_id}/cancel", response_model=BallotResponse)
async def cancel_ballot(
    motion_id: UUID,
    member_id: UUID,
    data: CancelBallotRequest,
    actor: Actor = Depends(get_actor),
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> BallotResponse:
    """Delete a manual ballot. Returns the deleted ballot."""
    try:
        ballot = await coordinator.cancel_ballot(motion_id, member_id, data.reason, actor=actor)
    except VotingError as e:
        raise http_error(e)
    return BallotResponse.model_validate(ballot)


# =============================================================================
# Attendance & Proxies
# =============================================================================


@router.put("/meetings/{meeting_id}/attendance/{member_id}", response_model=AttendanceResponse)
async def set_attendance(
    meeting_id: UUID,
    member_id: UUID,
    data: AttendanceUpdate,
    actor: Actor = Depends(get_actor),
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> AttendanceResponse:
    try:
        attendance = await coordinator.set_attendance(meeting_id, member_id, data.mode, actor=actor)
    except VotingError as e:
        raise http_error(e)
    return AttendanceResponse.model_validate(attendance)


@router.post("/meetings/{meeting_id}/attendance/bulk", response_model=BatchResult)
async def bulk_set_attendance(
    meeting_id: UUID,
    data: BulkAttendanceRequest,
    actor: Actor = Depends(get_actor),
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> BatchResult:
    try:
        outcome = await coordinator.bulk_set_attendance(
            meeting_id, [(e.member_id, e.mode) for e in data.entries], actor=actor
        )
    except VotingError as e:
        raise http_error(e)
    return batch_result(outcome)


@router.put("/meetings/{meeting_id}/proxies/{giver_id}", response_model=ProxySetResponse)
async def set_proxy(
    meeting_id: UUID,
    giver_id: UUID,
    data: ProxyUpdate,
    actor: Actor = Depends(get_actor),
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> ProxySetResponse:
    """Give (or replace) a member's proxy."""
    try:
        proxy, warnings = await coordinator.set_proxy(
            meeting_id, giver_id, data.receiver_id, actor=actor
        )
    except VotingError as e:
        raise http_error(e)
    return ProxySetResponse(
        proxy=ProxyResponse.model_validate(proxy),
        warnings=[WarningResponse.model_validate(w) for w in warnings],
    )


@router.delete("/meetings/{meeting_id}/proxies/{giver_id}", response_model=ProxyResponse)
async def revoke_proxy(
    meeting_id: UUID,
    giver_id: UUID,
    actor: Actor = Depends(get_actor),
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> ProxyResponse:
    try:
        proxy = await coordinator.revoke_proxy(meeting_id, giver_id, actor=actor)
    except VotingError as e:
        raise http_error(e)
    return ProxyResponse.model_validate(proxy)
