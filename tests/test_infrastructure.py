"""
Tests for locks, retries, metrics, permissions and event emission.
"""

import asyncio
import json

import pytest
from sqlalchemy.exc import OperationalError

from agvote.auth.dependencies import Role
from agvote.auth.permissions import DEFAULT_TABLE, Permission, RoleTable, require
from agvote.core.database import run_with_retry
from agvote.core.locks import KeyedLocks
from agvote.core.metrics import MetricsCollector
from agvote.voting.errors import Forbidden, MotionAlreadyOpen
from agvote.voting.events import EventEmitter, EventType, VotingEvent


def transient() -> OperationalError:
    return OperationalError("UPDATE meetings", {}, Exception("database is locked"))


class TestKeyedLocks:
    """Tests for per-key serialization."""

    async def test_same_key_is_serialized(self) -> None:
        locks = KeyedLocks("test")
        order = []

        async def worker(name: str) -> None:
            async with locks.hold("meeting-1"):
                order.append(f"{name}:in")
                await asyncio.sleep(0.01)
                order.append(f"{name}:out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order in (["a:in", "a:out", "b:in", "b:out"], ["b:in", "b:out", "a:in", "a:out"])

    async def test_different_keys_do_not_contend(self) -> None:
        locks = KeyedLocks("test")

        async with locks.hold("meeting-1"):
            async with locks.hold("meeting-2"):
                assert locks.is_locked("meeting-1")
                assert locks.is_locked("meeting-2")

    async def test_entries_are_released(self) -> None:
        locks = KeyedLocks("test")

        async with locks.hold(("motion", "member")):
            assert len(locks) == 1

        assert len(locks) == 0


class TestRetry:
    """Tests for transient storage retries."""

    async def test_transient_error_is_retried(self) -> None:
        calls = []

        async def flaky() -> str:
            calls.append(1)
            if len(calls) < 3:
                raise transient()
            return "committed"

        assert await run_with_retry(flaky, max_retries=3, backoff=0) == "committed"
        assert len(calls) == 3

    async def test_gives_up_after_max_retries(self) -> None:
        calls = []

        async def broken() -> None:
            calls.append(1)
            raise transient()

        with pytest.raises(OperationalError):
            await run_with_retry(broken, max_retries=2, backoff=0)
        assert len(calls) == 3

    async def test_typed_errors_are_not_retried(self) -> None:
        calls = []

        async def rejected() -> None:
            calls.append(1)
            raise MotionAlreadyOpen()

        with pytest.raises(MotionAlreadyOpen):
            await run_with_retry(rejected, max_retries=3, backoff=0)
        assert len(calls) == 1


class TestMetrics:
    """Tests for the Prometheus collector."""

    def test_export_contains_recorded_counters(self) -> None:
        collector = MetricsCollector()
        collector.record_ballot("direct")
        collector.record_rejection("motion_already_open")

        exported = collector.export().decode()

        assert 'agvote_ballots_total{source="direct"} 1.0' in exported
        assert 'agvote_rejections_total{code="motion_already_open"} 1.0' in exported

    def test_disabled_collector_records_nothing(self) -> None:
        collector = MetricsCollector(enabled=False)
        collector.record_motion_closed("adopted")

        assert "agvote_motions_closed_total{" not in collector.export().decode()


class TestPermissions:
    """Tests for the role table."""

    def test_vote_read_roles(self) -> None:
        allowed = DEFAULT_TABLE[Permission.VOTE_READ]

        assert Role.AUDITOR in allowed
        assert Role.VIEWER not in allowed
        assert Role.VOTER not in allowed

    def test_require_raises_forbidden(self) -> None:
        with pytest.raises(Forbidden):
            require(RoleTable(), Role.VIEWER, Permission.MOTION_CONTROL)

    def test_custom_table(self) -> None:
        table = RoleTable({Permission.POLICY_WRITE: frozenset({Role.OPERATOR})})

        assert table.allows(Role.OPERATOR, Permission.POLICY_WRITE)
        assert not table.allows(Role.ADMIN, Permission.MOTION_CONTROL)


class TestEvents:
    """Tests for event serialization and routing."""

    def test_to_json_drops_empty_fields(self) -> None:
        event = VotingEvent(event_type=EventType.MOTION_OPENED, meeting_id="m-1")

        payload = json.loads(event.to_json())

        assert payload["event_type"] == "motion:opened"
        assert "motion_id" not in payload

    def test_channel_per_meeting(self) -> None:
        emitter = EventEmitter(enabled=False)

        assert emitter.channel_for(VotingEvent("x", meeting_id="m-1")) == "agvote:meeting:m-1"
        assert emitter.channel_for(VotingEvent("x")) == "agvote:events"

    async def test_disabled_emitter_is_a_no_op(self) -> None:
        emitter = EventEmitter(enabled=False)
        await emitter.connect()

        await emitter.publish(VotingEvent(EventType.BALLOT_CAST, meeting_id="m-1"))

        assert emitter._client is None
