"""
Attendance Ledger

Per-meeting participation modes and proxy delegations, and the eligible
voting weight derived from them.

Proxy rules:
- nobody delegates to themselves
- no chains: a receiver may not itself delegate, a giver may not hold proxies
- a receiver holds at most ``proxy_max_per_receiver`` active proxies
- a new proxy replaces the giver's current one
- a giver who turns up in person keeps the proxy, but it goes dormant and
  stops contributing weight until the giver leaves again
"""

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func, select

from agvote.core.config import settings
from agvote.voting.engine import ZERO, EligibilitySnapshot
from agvote.voting.errors import (
    MeetingNotEditable,
    MemberNotFound,
    NotEligible,
    NotFound,
    ProxyCapReached,
    ProxyChainForbidden,
    SelfProxy,
)
from agvote.voting.events import EventType
from agvote.voting.models import (
    Attendance,
    AttendanceMode,
    Meeting,
    MeetingStatus,
    Member,
    Proxy,
    utcnow,
)
from agvote.voting.state_machine import TransitionWarning
from agvote.voting.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)

PARTICIPATING = (AttendanceMode.PRESENT, AttendanceMode.REMOTE)

# Results are signed off; attendance is part of the record
LOCKED_STATUSES = frozenset({MeetingStatus.VALIDATED, MeetingStatus.ARCHIVED})


@dataclass(frozen=True)
class Caster:
    """Resolved eligibility of one cast."""

    member_id: uuid.UUID
    weight: Decimal
    mode: AttendanceMode  # mode of whoever physically votes
    proxy_holder_id: uuid.UUID | None = None


class AttendanceLedger:
    def __init__(self, uow: UnitOfWork, proxy_cap: int | None = None):
        self.uow = uow
        self.db = uow.db
        self.proxy_cap = proxy_cap if proxy_cap is not None else settings.proxy_max_per_receiver

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def get_member(self, member_id: uuid.UUID) -> Member:
        member = await self.db.get(Member, member_id)
        if member is None:
            raise MemberNotFound(f"Member {member_id} not found")
        return member

    async def mode_of(self, meeting_id: uuid.UUID, member_id: uuid.UUID) -> AttendanceMode:
        result = await self.db.execute(
            select(Attendance.mode).where(
                Attendance.meeting_id == meeting_id,
                Attendance.member_id == member_id,
            )
        )
        return result.scalar_one_or_none() or AttendanceMode.ABSENT

    async def active_proxy_of(self, meeting_id: uuid.UUID, giver_id: uuid.UUID) -> Proxy | None:
        result = await self.db.execute(
            select(Proxy).where(
                Proxy.meeting_id == meeting_id,
                Proxy.giver_member_id == giver_id,
                Proxy.revoked_at.is_(None),
            )
        )
        return result.scalar_one_or_none()

    async def _held_count(self, meeting_id: uuid.UUID, receiver_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.count(Proxy.id)).where(
                Proxy.meeting_id == meeting_id,
                Proxy.receiver_member_id == receiver_id,
                Proxy.revoked_at.is_(None),
            )
        )
        return result.scalar() or 0

    async def list_attendance(self, meeting_id: uuid.UUID) -> list[Attendance]:
        result = await self.db.execute(
            select(Attendance).where(Attendance.meeting_id == meeting_id)
        )
        return list(result.scalars().all())

    async def list_proxies(self, meeting_id: uuid.UUID, active_only: bool = True) -> list[Proxy]:
        query = select(Proxy).where(Proxy.meeting_id == meeting_id)
        if active_only:
            query = query.where(Proxy.revoked_at.is_(None))
        result = await self.db.execute(query.order_by(Proxy.created_at))
        return list(result.scalars().all())

    # -------------------------------------------------------------------------
    # Attendance
    # -------------------------------------------------------------------------

    async def set_attendance(
        self, meeting: Meeting, member_id: uuid.UUID, mode: AttendanceMode
    ) -> Attendance:
        """Upsert a member's mode for the meeting."""
        if meeting.status in LOCKED_STATUSES:
            raise MeetingNotEditable(f"Meeting is {meeting.status.value}; attendance is locked")
        await self.get_member(member_id)

        result = await self.db.execute(
            select(Attendance).where(
                Attendance.meeting_id == meeting.id,
                Attendance.member_id == member_id,
            )
        )
        attendance = result.scalar_one_or_none()
        previous = attendance.mode if attendance else None

        if attendance is None:
            attendance = Attendance(meeting_id=meeting.id, member_id=member_id, mode=mode)
            self.db.add(attendance)
        else:
            attendance.mode = mode
            attendance.updated_at = utcnow()
        await self.db.flush()

        if previous != mode:
            self.uow.record(
                EventType.ATTENDANCE_UPDATED,
                meeting_id=meeting.id,
                member_id=member_id,
                mode=mode.value,
                previous=previous.value if previous else None,
            )
        return attendance

    # -------------------------------------------------------------------------
    # Proxies
    # -------------------------------------------------------------------------

    async def set_proxy(
        self, meeting: Meeting, giver_id: uuid.UUID, receiver_id: uuid.UUID
    ) -> tuple[Proxy, list[TransitionWarning]]:
        """Delegate ``giver_id``'s vote to ``receiver_id``, replacing any current proxy."""
        if meeting.status in LOCKED_STATUSES:
            raise MeetingNotEditable(f"Meeting is {meeting.status.value}; proxies are locked")
        if giver_id == receiver_id:
            raise SelfProxy()

        giver = await self.get_member(giver_id)
        receiver = await self.get_member(receiver_id)
        if not giver.is_active or not receiver.is_active:
            raise NotEligible("Both giver and receiver must be active members")

        if await self.active_proxy_of(meeting.id, receiver_id) is not None:
            raise ProxyChainForbidden("Receiver has delegated their own vote")
        if await self._held_count(meeting.id, giver_id) > 0:
            raise ProxyChainForbidden("Giver already holds proxies for other members")

        current = await self.active_proxy_of(meeting.id, giver_id)
        if current is not None and current.receiver_member_id == receiver_id:
            return current, []

        if await self._held_count(meeting.id, receiver_id) >= self.proxy_cap:
            raise ProxyCapReached(
                f"Receiver already holds {self.proxy_cap} proxies", cap=self.proxy_cap
            )

        warnings = []
        if await self.mode_of(meeting.id, giver_id) in PARTICIPATING:
            warnings.append(
                TransitionWarning(
                    "giver_already_present", "Giver attends; the proxy stays dormant"
                )
            )

        if current is not None:
            current.revoked_at = utcnow()
            await self.db.flush()

        proxy = Proxy(
            meeting_id=meeting.id, giver_member_id=giver_id, receiver_member_id=receiver_id
        )
        self.db.add(proxy)
        await self.db.flush()

        self.uow.record(
            EventType.PROXY_UPDATED,
            meeting_id=meeting.id,
            member_id=giver_id,
            receiver_id=receiver_id,
            replaced=current.receiver_member_id if current else None,
        )
        logger.info(f"Proxy {giver_id} -> {receiver_id} in meeting {meeting.id}")
        return proxy, warnings

    async def revoke_proxy(self, meeting: Meeting, giver_id: uuid.UUID) -> Proxy:
        """Revoke the giver's active proxy. Ballots already cast stay valid."""
        if meeting.status in LOCKED_STATUSES:
            raise MeetingNotEditable(f"Meeting is {meeting.status.value}; proxies are locked")
        proxy = await self.active_proxy_of(meeting.id, giver_id)
        if proxy is None:
            raise NotFound(f"Member {giver_id} has no active proxy")

        proxy.revoked_at = utcnow()
        await self.db.flush()
        self.uow.record(
            EventType.PROXY_REVOKED,
            meeting_id=meeting.id,
            member_id=giver_id,
            receiver_id=proxy.receiver_member_id,
        )
        return proxy

    # -------------------------------------------------------------------------
    # Eligibility
    # -------------------------------------------------------------------------

    async def eligibility(self, meeting_id: uuid.UUID) -> EligibilitySnapshot:
        """
        Roster and present weight of a meeting.

        Present = active members attending (present or remote) plus the
        givers they represent through active, non-dormant proxies.
        """
        roster = await self.db.execute(
            select(Member.voting_power).where(Member.is_active.is_(True))
        )
        powers = [Decimal(power) for power in roster.scalars().all()]
        roster_count = len(powers)
        roster_weight = sum(powers, ZERO)

        rows = await self.db.execute(
            select(Member.id, Member.voting_power)
            .join(Attendance, Attendance.member_id == Member.id)
            .where(
                Attendance.meeting_id == meeting_id,
                Attendance.mode.in_(PARTICIPATING),
                Member.is_active.is_(True),
            )
        )
        attending = {member_id: Decimal(power) for member_id, power in rows.all()}

        present_members = len(attending)
        present_weight = sum(attending.values(), ZERO)
        dormant = 0

        proxies = await self.db.execute(
            select(Proxy.giver_member_id, Proxy.receiver_member_id, Member.voting_power)
            .join(Member, Member.id == Proxy.giver_member_id)
            .where(
                Proxy.meeting_id == meeting_id,
                Proxy.revoked_at.is_(None),
                Member.is_active.is_(True),
            )
        )
        for giver_id, receiver_id, power in proxies.all():
            if giver_id in attending:
                dormant += 1
            elif receiver_id in attending:
                present_members += 1
                present_weight += Decimal(power)

        return EligibilitySnapshot(
            eligible_members=roster_count,
            eligible_weight=roster_weight,
            present_members=present_members,
            present_weight=present_weight,
            dormant_proxies=dormant,
        )

    async def caster_for(
        self,
        meeting_id: uuid.UUID,
        member_id: uuid.UUID,
        proxy_holder_id: uuid.UUID | None = None,
    ) -> Caster:
        """
        Check that a cast for ``member_id`` is allowed.

        Direct casts need the member to attend. Proxy casts need the holder
        to attend, the giver to be away and an active proxy between them.
        """
        member = await self.get_member(member_id)
        if not member.is_active:
            raise NotEligible("Member is not active")

        if proxy_holder_id is None or proxy_holder_id == member_id:
            mode = await self.mode_of(meeting_id, member_id)
            if mode not in PARTICIPATING:
                raise NotEligible("Member is not present or remote")
            return Caster(member_id=member.id, weight=member.voting_power, mode=mode)

        holder_mode = await self.mode_of(meeting_id, proxy_holder_id)
        if holder_mode not in PARTICIPATING:
            raise NotEligible("Proxy holder is not present or remote")
        if await self.mode_of(meeting_id, member_id) in PARTICIPATING:
            raise NotEligible("Giver attends and votes directly")

        proxy = await self.active_proxy_of(meeting_id, member_id)
        if proxy is None or proxy.receiver_member_id != proxy_holder_id:
            raise NotEligible("No active proxy from this member to the holder")

        return Caster(
            member_id=member.id,
            weight=member.voting_power,
            mode=holder_mode,
            proxy_holder_id=proxy_holder_id,
        )

    async def participating_member_ids(self, meeting_id: uuid.UUID) -> list[uuid.UUID]:
        result = await self.db.execute(
            select(Attendance.member_id)
            .join(Member, Member.id == Attendance.member_id)
            .where(
                Attendance.meeting_id == meeting_id,
                Attendance.mode.in_(PARTICIPATING),
                Member.is_active.is_(True),
            )
        )
        return list(result.scalars().all())
