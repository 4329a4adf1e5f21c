"""
Decision Engine

Pure evaluation of a closed motion: (ballots, eligibility snapshot, quorum
rule, majority rule, convocation) -> decision. No I/O, no clock, no floats.

Ratios are compared by cross-multiplication on ``Decimal`` so a result that
sits exactly on a threshold is always met. Ratios in the result detail are
rounded to four places for display only.

Evaluation order:
1. No ballots at all -> no_votes
2. Quorum rule attached and unmet -> no_quorum (majority is not evaluated)
3. Majority rule attached -> adopted / rejected
4. Nothing attached -> no_policy
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from agvote.voting.models import (
    Decision,
    MajorityBase,
    QuorumDenominator,
    QuorumMode,
    VoteValue,
)

ZERO = Decimal("0")
DISPLAY = Decimal("0.0001")


def display_ratio(numerator: Decimal, denominator: Decimal) -> Decimal | None:
    """Ratio rounded to 4 places, ``None`` when undefined."""
    if denominator <= 0:
        return None
    return (numerator / denominator).quantize(DISPLAY, rounding=ROUND_HALF_UP)


def meets(numerator: Decimal, denominator: Decimal, threshold: Decimal) -> bool:
    """Exact ``numerator / denominator >= threshold``; false on an empty base."""
    if denominator <= 0:
        return False
    return numerator >= threshold * denominator


# =============================================================================
# Inputs
# =============================================================================


@dataclass(frozen=True)
class BallotInput:
    """One counted ballot as seen by the engine."""

    value: VoteValue
    weight: Decimal
    via_proxy: bool = False
    remote: bool = False


@dataclass(frozen=True)
class EligibilitySnapshot:
    """
    Who could vote when the motion closed.

    ``eligible_*`` is the roster (active members), ``present_*`` the
    attendance-derived voting capacity including represented proxies.
    """

    eligible_members: int
    eligible_weight: Decimal
    present_members: int = 0
    present_weight: Decimal = ZERO
    dormant_proxies: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "eligible_members": self.eligible_members,
            "eligible_weight": str(self.eligible_weight),
            "present_members": self.present_members,
            "present_weight": str(self.present_weight),
            "dormant_proxies": self.dormant_proxies,
        }


@dataclass(frozen=True)
class QuorumRule:
    mode: QuorumMode
    denominator: QuorumDenominator
    threshold: Decimal
    threshold2: Decimal | None = None
    denominator2: QuorumDenominator | None = None
    include_proxies: bool = True
    count_remote: bool = True

    @classmethod
    def from_policy(cls, policy: Any) -> "QuorumRule":
        return cls(
            mode=QuorumMode(policy.mode),
            denominator=QuorumDenominator(policy.denominator),
            threshold=Decimal(policy.threshold),
            threshold2=Decimal(policy.threshold2) if policy.threshold2 is not None else None,
            denominator2=(
                QuorumDenominator(policy.denominator2) if policy.denominator2 is not None else None
            ),
            include_proxies=policy.include_proxies,
            count_remote=policy.count_remote,
        )


@dataclass(frozen=True)
class MajorityRule:
    base: MajorityBase
    threshold: Decimal
    abstention_as_against: bool = False

    @classmethod
    def from_policy(cls, policy: Any) -> "MajorityRule":
        return cls(
            base=MajorityBase(policy.base),
            threshold=Decimal(policy.threshold),
            abstention_as_against=policy.abstention_as_against,
        )


# =============================================================================
# Results
# =============================================================================


@dataclass
class Tally:
    count_for: int = 0
    count_against: int = 0
    count_abstain: int = 0
    weight_for: Decimal = ZERO
    weight_against: Decimal = ZERO
    weight_abstain: Decimal = ZERO

    @property
    def total_count(self) -> int:
        return self.count_for + self.count_against + self.count_abstain

    @property
    def total_weight(self) -> Decimal:
        return self.weight_for + self.weight_against + self.weight_abstain

    def add(self, value: VoteValue, weight: Decimal) -> None:
        if value == VoteValue.FOR:
            self.count_for += 1
            self.weight_for += weight
        elif value == VoteValue.AGAINST:
            self.count_against += 1
            self.weight_against += weight
        else:
            self.count_abstain += 1
            self.weight_abstain += weight

    def to_dict(self) -> dict[str, Any]:
        return {
            "count_for": self.count_for,
            "count_against": self.count_against,
            "count_abstain": self.count_abstain,
            "weight_for": str(self.weight_for),
            "weight_against": str(self.weight_against),
            "weight_abstain": str(self.weight_abstain),
        }


@dataclass
class QuorumCheck:
    met: bool
    call: str  # "first", "second" or "convocation_2"
    denominator: QuorumDenominator
    threshold: Decimal
    numerator: Decimal
    base: Decimal
    ratio: Decimal | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "met": self.met,
            "call": self.call,
            "denominator": self.denominator.value,
            "threshold": str(self.threshold),
            "numerator": str(self.numerator),
            "base": str(self.base),
            "ratio": str(self.ratio) if self.ratio is not None else None,
        }


@dataclass
class MajorityCheck:
    met: bool
    base_kind: MajorityBase
    threshold: Decimal
    weight_for: Decimal
    weight_against: Decimal
    base: Decimal
    ratio: Decimal | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "met": self.met,
            "base_kind": self.base_kind.value,
            "threshold": str(self.threshold),
            "weight_for": str(self.weight_for),
            "weight_against": str(self.weight_against),
            "base": str(self.base),
            "ratio": str(self.ratio) if self.ratio is not None else None,
        }


@dataclass
class DecisionResult:
    decision: Decision
    reason: str
    tally: Tally
    snapshot: EligibilitySnapshot
    quorum: QuorumCheck | None = None
    majority: MajorityCheck | None = None
    quorum_attempts: list[QuorumCheck] = field(default_factory=list)

    def to_detail(self) -> dict[str, Any]:
        """JSON-safe breakdown stored on the motion."""
        return {
            "decision": self.decision.value,
            "reason": self.reason,
            "tally": self.tally.to_dict(),
            "snapshot": self.snapshot.to_dict(),
            "quorum": self.quorum.to_dict() if self.quorum else None,
            "quorum_attempts": [q.to_dict() for q in self.quorum_attempts],
            "majority": self.majority.to_dict() if self.majority else None,
        }


# =============================================================================
# Evaluation
# =============================================================================


def tally_ballots(ballots: Iterable[BallotInput]) -> Tally:
    tally = Tally()
    for ballot in ballots:
        tally.add(ballot.value, ballot.weight)
    return tally


def _quorum_call(
    call: str,
    denominator: QuorumDenominator,
    threshold: Decimal,
    members: int,
    weight: Decimal,
    snapshot: EligibilitySnapshot,
) -> QuorumCheck:
    if denominator == QuorumDenominator.ELIGIBLE_MEMBERS:
        numerator = Decimal(members)
        base = Decimal(snapshot.eligible_members)
    else:
        numerator = weight
        base = snapshot.eligible_weight

    return QuorumCheck(
        met=meets(numerator, base, threshold),
        call=call,
        denominator=denominator,
        threshold=threshold,
        numerator=numerator,
        base=base,
        ratio=display_ratio(numerator, base),
    )


def evaluate_quorum(
    ballots: list[BallotInput],
    snapshot: EligibilitySnapshot,
    rule: QuorumRule,
    convocation_no: int = 1,
) -> list[QuorumCheck]:
    """
    Run the quorum calls a rule requires.

    Returns every call made, in order; the last one carries the verdict.
    """
    counted = [
        b
        for b in ballots
        if (rule.include_proxies or not b.via_proxy) and (rule.count_remote or not b.remote)
    ]
    members = len(counted)
    weight = sum((b.weight for b in counted), ZERO)

    if rule.mode == QuorumMode.EVOLVING and convocation_no >= 2 and rule.threshold2 is not None:
        return [
            _quorum_call(
                "convocation_2",
                rule.denominator2 or rule.denominator,
                rule.threshold2,
                members,
                weight,
                snapshot,
            )
        ]

    first = _quorum_call("first", rule.denominator, rule.threshold, members, weight, snapshot)
    if first.met or rule.mode != QuorumMode.DOUBLE or rule.threshold2 is None:
        return [first]

    second = _quorum_call(
        "second",
        rule.denominator2 or rule.denominator,
        rule.threshold2,
        members,
        weight,
        snapshot,
    )
    return [first, second]


def evaluate_majority(
    tally: Tally, snapshot: EligibilitySnapshot, rule: MajorityRule
) -> MajorityCheck:
    against = tally.weight_against
    if rule.abstention_as_against:
        against += tally.weight_abstain

    if rule.base == MajorityBase.EXPRESSED:
        base = tally.weight_for + against
    elif rule.base == MajorityBase.TOTAL_ELIGIBLE:
        base = snapshot.eligible_weight
    else:
        base = snapshot.present_weight

    return MajorityCheck(
        met=meets(tally.weight_for, base, rule.threshold),
        base_kind=rule.base,
        threshold=rule.threshold,
        weight_for=tally.weight_for,
        weight_against=against,
        base=base,
        ratio=display_ratio(tally.weight_for, base),
    )


def decide(
    ballots: Iterable[BallotInput],
    snapshot: EligibilitySnapshot,
    quorum: QuorumRule | None = None,
    majority: MajorityRule | None = None,
    convocation_no: int = 1,
) -> DecisionResult:
    """Decide a motion. Identical inputs always yield identical results."""
    ballots = list(ballots)
    tally = tally_ballots(ballots)
    result = DecisionResult(
        decision=Decision.NO_POLICY, reason="", tally=tally, snapshot=snapshot
    )

    if not ballots:
        result.decision = Decision.NO_VOTES
        result.reason = "No ballots were cast"
        return result

    if quorum is not None:
        attempts = evaluate_quorum(ballots, snapshot, quorum, convocation_no)
        result.quorum_attempts = attempts
        result.quorum = attempts[-1]
        if not result.quorum.met:
            result.decision = Decision.NO_QUORUM
            result.reason = (
                f"Quorum not met: {result.quorum.ratio} < {result.quorum.threshold} "
                f"({result.quorum.denominator.value}, {result.quorum.call} call)"
            )
            return result

    if majority is not None:
        check = evaluate_majority(tally, snapshot, majority)
        result.majority = check
        if check.base <= 0:
            result.decision = Decision.REJECTED
            result.reason = f"Majority base '{check.base_kind.value}' is empty"
        elif check.met:
            result.decision = Decision.ADOPTED
            result.reason = f"Adopted: {check.ratio} >= {check.threshold} ({check.base_kind.value})"
        else:
            result.decision = Decision.REJECTED
            result.reason = f"Rejected: {check.ratio} < {check.threshold} ({check.base_kind.value})"
        return result

    if quorum is not None:
        result.reason = "Quorum met; no vote policy attached"
    else:
        result.reason = "No quorum or vote policy attached"
    return result
