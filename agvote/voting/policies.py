"""
Policy Store

Versioned quorum and vote policies. A policy row is never edited:
registering a policy under an existing name creates the next version, so a
closed motion always points at the exact rule it was decided with.
"""

import logging
import uuid
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from agvote.voting.errors import PolicyNotFound, ValidationFailed
from agvote.voting.models import (
    MajorityBase,
    Meeting,
    Motion,
    QuorumDenominator,
    QuorumMode,
    QuorumPolicy,
    VotePolicy,
)

logger = logging.getLogger(__name__)


def _check_ratio(name: str, value: Decimal) -> Decimal:
    value = Decimal(value)
    if value < 0 or value > 1:
        raise ValidationFailed(f"{name} must be between 0 and 1", **{name: value})
    return value


class PolicyStore:
    """Lookup and registration of quorum / vote policies."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _next_version(self, model: type[QuorumPolicy] | type[VotePolicy], name: str) -> int:
        result = await self.db.execute(
            select(func.max(model.version)).where(model.name == name)
        )
        return (result.scalar() or 0) + 1

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
    ) -> QuorumPolicy:
        threshold = _check_ratio("threshold", threshold)
        if threshold2 is not None:
            threshold2 = _check_ratio("threshold2", threshold2)
        elif mode in (QuorumMode.DOUBLE, QuorumMode.EVOLVING):
            raise ValidationFailed(f"Quorum mode '{mode.value}' needs threshold2")

        policy = QuorumPolicy(
            name=name,
            version=await self._next_version(QuorumPolicy, name),
            mode=mode,
            denominator=denominator,
            threshold=threshold,
            threshold2=threshold2,
            denominator2=denominator2,
            include_proxies=include_proxies,
            count_remote=count_remote,
        )
        self.db.add(policy)
        await self.db.flush()
        logger.info(f"Registered quorum policy {name} v{policy.version}")
        return policy

    async def register_vote_policy(
        self,
        name: str,
        threshold: Decimal,
        base: MajorityBase = MajorityBase.EXPRESSED,
        abstention_as_against: bool = False,
    ) -> VotePolicy:
        policy = VotePolicy(
            name=name,
            version=await self._next_version(VotePolicy, name),
            base=base,
            threshold=_check_ratio("threshold", threshold),
            abstention_as_against=abstention_as_against,
        )
        self.db.add(policy)
        await self.db.flush()
        logger.info(f"Registered vote policy {name} v{policy.version}")
        return policy

    async def get_quorum_policy(self, policy_id: uuid.UUID) -> QuorumPolicy:
        policy = await self.db.get(QuorumPolicy, policy_id)
        if policy is None:
            raise PolicyNotFound(f"Quorum policy {policy_id} not found")
        return policy

    async def get_vote_policy(self, policy_id: uuid.UUID) -> VotePolicy:
        policy = await self.db.get(VotePolicy, policy_id)
        if policy is None:
            raise PolicyNotFound(f"Vote policy {policy_id} not found")
        return policy

    async def resolve(
        self, meeting: Meeting, motion: Motion
    ) -> tuple[QuorumPolicy | None, VotePolicy | None]:
        """Policies a motion is voted under: its own override, else the meeting's."""
        quorum_id = motion.quorum_policy_id or meeting.quorum_policy_id
        vote_id = motion.vote_policy_id or meeting.vote_policy_id
        quorum = await self.get_quorum_policy(quorum_id) if quorum_id else None
        vote = await self.get_vote_policy(vote_id) if vote_id else None
        return quorum, vote

    async def applied(self, motion: Motion) -> tuple[QuorumPolicy | None, VotePolicy | None]:
        """Policies resolved when the motion opened."""
        quorum = (
            await self.get_quorum_policy(motion.applied_quorum_policy_id)
            if motion.applied_quorum_policy_id
            else None
        )
        vote = (
            await self.get_vote_policy(motion.applied_vote_policy_id)
            if motion.applied_vote_policy_id
            else None
        )
        return quorum, vote
