"""
Redis Event Emission Module

Publishes committed voting state changes to Redis Pub/Sub so projection
screens and consoles can refresh without polling. Events are only ever
published after the transaction that produced them has committed; nothing
in the decision path reads them back.

Event Types:
- meeting:transitioned - Meeting changed status
- motion:opened / motion:closed - Voting window changes
- ballot:cast / ballot:cancelled - Ballot upserts and deletions
- attendance:updated / proxy:updated - Eligibility changes
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import redis.asyncio as redis

from agvote.core.config import settings

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    MEETING_CREATED = "meeting:created"
    MEETING_TRANSITIONED = "meeting:transitioned"
    MOTION_CREATED = "motion:created"
    MOTIONS_REORDERED = "motion:reordered"
    MOTION_OPENED = "motion:opened"
    MOTION_CLOSED = "motion:closed"
    BALLOT_CAST = "ballot:cast"
    BALLOT_MANUAL = "ballot:manual"
    BALLOT_CANCELLED = "ballot:cancelled"
    ATTENDANCE_UPDATED = "attendance:updated"
    PROXY_UPDATED = "proxy:updated"
    PROXY_REVOKED = "proxy:revoked"


@dataclass
class VotingEvent:
    """Base event structure for all voting events."""

    event_type: str
    meeting_id: str | None = None
    motion_id: str | None = None
    member_id: str | None = None
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    data: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        """Convert event to JSON string."""
        payload = {k: v for k, v in asdict(self).items() if v is not None}
        return json.dumps(payload, default=str)


class EventEmitter:
    """
    Emits voting events to Redis Pub/Sub.

    Usage:
        emitter = EventEmitter()
        await emitter.connect()
        await emitter.publish_all(events)
        await emitter.close()
    """

    CHANNEL_PREFIX = "agvote:meeting:"
    CHANNEL_ALL = "agvote:events"

    def __init__(self, redis_url: str | None = None, enabled: bool = True) -> None:
        """
        Initialize the event emitter.

        Args:
            redis_url: Redis connection URL (default from settings)
            enabled: Whether to emit events (can be disabled for testing)
        """
        self.redis_url = redis_url or settings.redis_url
        self.enabled = enabled and settings.events_enabled
        self._client: redis.Redis | None = None

    async def connect(self) -> None:
        if not self.enabled:
            return
        try:
            self._client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            await self._client.ping()
            logger.info("Event emitter connected to Redis")
        except Exception as e:
            logger.warning(f"Event emitter disabled: {e}")
            self.enabled = False
            self._client = None

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def channel_for(self, event: VotingEvent) -> str:
        if event.meeting_id:
            return f"{self.CHANNEL_PREFIX}{event.meeting_id}"
        return self.CHANNEL_ALL

    async def publish(self, event: VotingEvent) -> None:
        """Publish one event. Failures are logged, never raised."""
        if not self.enabled or not self._client:
            return

        try:
            message = event.to_json()
            await self._client.publish(self.channel_for(event), message)
            await self._client.publish(self.CHANNEL_ALL, message)
        except Exception as e:
            # The state change is already committed
            logger.error(f"Failed to emit {event.event_type}: {e}")

    async def publish_all(self, events: list[VotingEvent]) -> None:
        for event in events:
            await self.publish(event)
