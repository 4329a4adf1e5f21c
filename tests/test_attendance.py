"""
Tests for attendance and proxy rules.
"""

import uuid
from decimal import Decimal

import pytest

from agvote.core.config import settings
from agvote.voting.errors import (
    MeetingNotEditable,
    MemberNotFound,
    NotEligible,
    NotFound,
    ProxyCapReached,
    ProxyChainForbidden,
    SelfProxy,
)
from agvote.voting.models import AttendanceMode, MeetingStatus
from agvote.voting.services import SessionCoordinator

from factories import ADMIN, PRESIDENT, Assembly, seed_assembly


class TestAttendance:
    """Tests for participation modes."""

    async def test_present_and_remote_count(self, coordinator: SessionCoordinator) -> None:
        """Test present and remote members count, absent ones do not."""
        a = await seed_assembly(coordinator, members=5)
        m = a.member_ids()
        await coordinator.set_attendance(a.meeting_id, m[0], AttendanceMode.PRESENT)
        await coordinator.set_attendance(a.meeting_id, m[1], AttendanceMode.REMOTE)
        await coordinator.set_attendance(a.meeting_id, m[2], AttendanceMode.ABSENT)

        snapshot = await coordinator.eligibility(a.meeting_id)

        assert snapshot.eligible_members == 5
        assert snapshot.present_members == 2

    async def test_upsert_keeps_one_row(self, coordinator: SessionCoordinator) -> None:
        a = await seed_assembly(coordinator, members=2)
        m = a.member_ids()[0]

        first = await coordinator.set_attendance(a.meeting_id, m, AttendanceMode.PRESENT)
        second = await coordinator.set_attendance(a.meeting_id, m, AttendanceMode.ABSENT)

        assert first.id == second.id
        assert (await coordinator.eligibility(a.meeting_id)).present_members == 0

    async def test_inactive_members_are_not_eligible(self, coordinator: SessionCoordinator) -> None:
        """Test inactive members drop out of the roster and its weight."""
        a = await seed_assembly(coordinator, members=3)
        await coordinator.create_member("Former member", voting_power=Decimal("5"), is_active=False)

        snapshot = await coordinator.eligibility(a.meeting_id)

        assert snapshot.eligible_members == 3
        assert snapshot.eligible_weight == Decimal("3")

    async def test_weights_sum_exactly(self, coordinator: SessionCoordinator) -> None:
        a = await seed_assembly(
            coordinator,
            members=3,
            present=2,
            weights=[Decimal("0.1"), Decimal("0.2"), Decimal("0.3")],
        )

        snapshot = await coordinator.eligibility(a.meeting_id)

        assert snapshot.eligible_weight == Decimal("0.6")
        assert snapshot.present_weight == Decimal("0.3")

    async def test_unknown_member(self, coordinator: SessionCoordinator) -> None:
        a = await seed_assembly(coordinator, members=1)

        with pytest.raises(MemberNotFound):
            await coordinator.set_attendance(a.meeting_id, uuid.uuid4(), AttendanceMode.PRESENT)

    async def test_locked_after_validation(self, coordinator: SessionCoordinator) -> None:
        """Test attendance cannot change once results are validated."""
        a = await seed_assembly(coordinator, members=2, present=1, status=MeetingStatus.LIVE)
        await coordinator.transition(a.meeting_id, MeetingStatus.CLOSED, PRESIDENT)
        await coordinator.transition(a.meeting_id, MeetingStatus.VALIDATED, PRESIDENT)

        with pytest.raises(MeetingNotEditable):
            await coordinator.set_attendance(
                a.meeting_id, a.member_ids()[1], AttendanceMode.PRESENT
            )

    async def test_bulk_update_reports_each_failure(self, coordinator: SessionCoordinator) -> None:
        """Test one bad entry does not undo the others."""
        a = await seed_assembly(coordinator, members=3)
        m = a.member_ids()
        missing = uuid.uuid4()

        outcome = await coordinator.bulk_set_attendance(
            a.meeting_id,
            [
                (m[0], AttendanceMode.PRESENT),
                (missing, AttendanceMode.PRESENT),
                (m[1], AttendanceMode.REMOTE),
            ],
            ADMIN,
        )

        assert outcome.success_count == 2
        assert outcome.error_count == 1
        assert outcome.errors[0][0] == missing
        assert outcome.errors[0][1] == "member_not_found"
        assert (await coordinator.eligibility(a.meeting_id)).present_members == 2


class TestProxies:
    """Tests for proxy delegation."""

    async def _assembly(self, coordinator: SessionCoordinator) -> Assembly:
        # m0, m1 attend; m2..m4 stay away
        return await seed_assembly(coordinator, members=5, present=2)

    async def test_proxy_adds_giver_to_present(self, coordinator: SessionCoordinator) -> None:
        """Test an absent giver represented by an attending receiver counts as present."""
        a = await self._assembly(coordinator)
        m = a.member_ids()

        proxy, warnings = await coordinator.set_proxy(a.meeting_id, m[2], m[0])

        assert proxy.is_active
        assert warnings == []
        snapshot = await coordinator.eligibility(a.meeting_id)
        assert snapshot.present_members == 3

    async def test_self_proxy_rejected(self, coordinator: SessionCoordinator) -> None:
        a = await self._assembly(coordinator)
        m = a.member_ids()

        with pytest.raises(SelfProxy):
            await coordinator.set_proxy(a.meeting_id, m[0], m[0])

    async def test_receiver_who_delegated_cannot_receive(
        self, coordinator: SessionCoordinator
    ) -> None:
        """Test A->B then C->A is a chain."""
        a = await self._assembly(coordinator)
        m = a.member_ids()
        await coordinator.set_proxy(a.meeting_id, m[3], m[0])

        with pytest.raises(ProxyChainForbidden):
            await coordinator.set_proxy(a.meeting_id, m[4], m[3])

    async def test_holder_cannot_delegate(self, coordinator: SessionCoordinator) -> None:
        """Test A->B then B->C is a chain."""
        a = await self._assembly(coordinator)
        m = a.member_ids()
        await coordinator.set_proxy(a.meeting_id, m[2], m[0])

        with pytest.raises(ProxyChainForbidden):
            await coordinator.set_proxy(a.meeting_id, m[0], m[1])

    async def test_cap_per_receiver(self, coordinator: SessionCoordinator, monkeypatch) -> None:
        """Test the receiver cap from settings."""
        monkeypatch.setattr(settings, "proxy_max_per_receiver", 1)
        a = await self._assembly(coordinator)
        m = a.member_ids()
        await coordinator.set_proxy(a.meeting_id, m[2], m[0])

        with pytest.raises(ProxyCapReached):
            await coordinator.set_proxy(a.meeting_id, m[3], m[0])

    async def test_new_proxy_replaces_old(self, coordinator: SessionCoordinator) -> None:
        """Test a giver has one active proxy; the previous one is revoked."""
        a = await self._assembly(coordinator)
        m = a.member_ids()
        first, _ = await coordinator.set_proxy(a.meeting_id, m[2], m[0])

        second, _ = await coordinator.set_proxy(a.meeting_id, m[2], m[1])

        assert second.id != first.id
        assert second.receiver_member_id == m[1]
        assert (await coordinator.eligibility(a.meeting_id)).present_members == 3

    async def test_same_receiver_is_a_no_op(self, coordinator: SessionCoordinator) -> None:
        a = await self._assembly(coordinator)
        m = a.member_ids()
        first, _ = await coordinator.set_proxy(a.meeting_id, m[2], m[0])

        again, _ = await coordinator.set_proxy(a.meeting_id, m[2], m[0])

        assert again.id == first.id

    async def test_attending_giver_makes_proxy_dormant(
        self, coordinator: SessionCoordinator
    ) -> None:
        """Test a giver who turns up is not counted twice."""
        a = await self._assembly(coordinator)
        m = a.member_ids()
        await coordinator.set_proxy(a.meeting_id, m[2], m[0])
        await coordinator.set_attendance(a.meeting_id, m[2], AttendanceMode.PRESENT)

        snapshot = await coordinator.eligibility(a.meeting_id)

        assert snapshot.present_members == 3
        assert snapshot.dormant_proxies == 1

    async def test_proxy_for_attending_giver_warns(self, coordinator: SessionCoordinator) -> None:
        a = await self._assembly(coordinator)
        m = a.member_ids()

        _, warnings = await coordinator.set_proxy(a.meeting_id, m[1], m[0])

        assert [w.code for w in warnings] == ["giver_already_present"]

    async def test_revoke(self, coordinator: SessionCoordinator) -> None:
        a = await self._assembly(coordinator)
        m = a.member_ids()
        await coordinator.set_proxy(a.meeting_id, m[2], m[0])

        revoked = await coordinator.revoke_proxy(a.meeting_id, m[2])

        assert not revoked.is_active
        assert (await coordinator.eligibility(a.meeting_id)).present_members == 2
        with pytest.raises(NotFound):
            await coordinator.revoke_proxy(a.meeting_id, m[2])

    async def test_inactive_receiver(self, coordinator: SessionCoordinator) -> None:
        a = await self._assembly(coordinator)
        former = await coordinator.create_member("Former", is_active=False)

        with pytest.raises(NotEligible):
            await coordinator.set_proxy(a.meeting_id, a.member_ids()[2], former.id)
