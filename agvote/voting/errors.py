"""
Voting Errors

Typed failures surfaced verbatim to callers. Each error carries a stable
machine-readable ``code``, the HTTP status the API maps it to, and the
category that tells the caller how to react:

- validation: fix the input and resend
- lifecycle: expected under concurrency, reload state and retry
- authorization / eligibility: business rule, never retried automatically
- integrity: the request contradicts an earlier one, never merged
"""

from enum import StrEnum


class ErrorCategory(StrEnum):
    """How a caller should treat a rejection."""

    VALIDATION = "validation"
    LIFECYCLE = "lifecycle"
    AUTHORIZATION = "authorization"
    ELIGIBILITY = "eligibility"
    INTEGRITY = "integrity"


class VotingError(Exception):
    """Base class for every rejection raised by the voting core."""

    code = "voting_error"
    http_status = 400
    category = ErrorCategory.VALIDATION
    default_message = "Request rejected"

    def __init__(self, message: str | None = None, **context: object):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> dict:
        data = {"code": self.code, "message": self.message, "category": self.category.value}
        if self.context:
            data["context"] = {k: str(v) for k, v in self.context.items()}
        return data


# -----------------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------------


class ValidationFailed(VotingError):
    code = "validation_failed"
    http_status = 422
    default_message = "Invalid input"


class JustificationRequired(VotingError):
    code = "justification_required"
    http_status = 422
    default_message = "A manual vote needs a written justification"


class ReasonRequired(VotingError):
    code = "reason_required"
    http_status = 422
    default_message = "Cancelling a ballot requires a reason"


class NotFound(VotingError):
    code = "not_found"
    http_status = 404
    default_message = "Not found"


class MeetingNotFound(NotFound):
    code = "meeting_not_found"
    default_message = "Meeting not found"


class MotionNotFound(NotFound):
    code = "motion_not_found"
    default_message = "Motion not found"


class MemberNotFound(NotFound):
    code = "member_not_found"
    default_message = "Member not found"


class PolicyNotFound(NotFound):
    code = "policy_not_found"
    default_message = "Policy not found"


class BallotNotFound(NotFound):
    code = "ballot_not_found"
    default_message = "No ballot recorded for this member on this motion"


# -----------------------------------------------------------------------------
# Lifecycle conflicts
# -----------------------------------------------------------------------------


class LifecycleConflict(VotingError):
    code = "lifecycle_conflict"
    http_status = 409
    category = ErrorCategory.LIFECYCLE


class InvalidTransition(LifecycleConflict):
    code = "invalid_transition"
    default_message = "Transition not allowed from the current status"


class OpenMotionExists(LifecycleConflict):
    code = "open_motion_exists"
    default_message = "A motion is still open"


class MotionAlreadyOpen(LifecycleConflict):
    code = "motion_already_open"
    default_message = "Another motion is already open in this meeting"


class MotionAlreadyOpenOrClosed(LifecycleConflict):
    code = "motion_already_open_or_closed"
    default_message = "Motion has already been opened"


class MotionNotOpen(LifecycleConflict):
    code = "motion_not_open"
    default_message = "Motion is not open for voting"


class MotionClosed(LifecycleConflict):
    code = "motion_closed"
    default_message = "Motion is closed; its result is final"


class MeetingNotLive(LifecycleConflict):
    code = "meeting_not_live"
    default_message = "Meeting is not live"


class MeetingNotEditable(LifecycleConflict):
    code = "meeting_not_editable"
    default_message = "Meeting no longer accepts new motions"


# -----------------------------------------------------------------------------
# Authorization and eligibility
# -----------------------------------------------------------------------------


class Forbidden(VotingError):
    code = "forbidden"
    http_status = 403
    category = ErrorCategory.AUTHORIZATION
    default_message = "Role not allowed to perform this operation"


class NotEligible(VotingError):
    code = "not_eligible"
    http_status = 403
    category = ErrorCategory.ELIGIBILITY
    default_message = "Member is not eligible to vote on this motion"


class SelfProxy(VotingError):
    code = "self_proxy"
    http_status = 422
    category = ErrorCategory.ELIGIBILITY
    default_message = "A member cannot give a proxy to themselves"


class ProxyChainForbidden(VotingError):
    code = "proxy_chain_forbidden"
    http_status = 422
    category = ErrorCategory.ELIGIBILITY
    default_message = "Proxy chains are not allowed"


class ProxyCapReached(VotingError):
    code = "proxy_cap_reached"
    http_status = 422
    category = ErrorCategory.ELIGIBILITY
    default_message = "Receiver already holds the maximum number of proxies"


class NotManualBallot(VotingError):
    code = "not_manual_ballot"
    http_status = 422
    category = ErrorCategory.ELIGIBILITY
    default_message = "Only operator-entered ballots can be cancelled"


# -----------------------------------------------------------------------------
# Integrity
# -----------------------------------------------------------------------------


class IdempotencyConflict(VotingError):
    code = "idempotency_conflict"
    http_status = 409
    category = ErrorCategory.INTEGRITY
    default_message = "Idempotency key already used with a different payload"
