"""
Voting Module

Meetings, motions, attendance, proxies, ballots and the decision engine.
"""

from agvote.voting.engine import (
    BallotInput,
    DecisionResult,
    EligibilitySnapshot,
    MajorityRule,
    QuorumRule,
    decide,
)
from agvote.voting.services import SessionCoordinator

__all__ = [
    "BallotInput",
    "DecisionResult",
    "EligibilitySnapshot",
    "MajorityRule",
    "QuorumRule",
    "SessionCoordinator",
    "decide",
]
