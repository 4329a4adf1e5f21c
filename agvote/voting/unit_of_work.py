"""
Unit of Work

One transaction plus the audit trail it produces. Audit rows are written in
the same transaction as the change they describe; the matching push events
are only handed to the emitter once the transaction has committed.
"""

import uuid
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from agvote.auth.dependencies import Actor
from agvote.voting.events import VotingEvent
from agvote.voting.models import AuditEvent


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


class UnitOfWork:
    def __init__(self, db: AsyncSession, actor: Actor | None = None) -> None:
        self.db = db
        self.actor = actor
        self.events: list[VotingEvent] = []

    def record(
        self,
        event_type: str,
        meeting_id: uuid.UUID | None = None,
        motion_id: uuid.UUID | None = None,
        member_id: uuid.UUID | None = None,
        **payload: Any,
    ) -> AuditEvent:
        """Append an audit row and queue the post-commit event."""
        data = _jsonable(payload)
        audit = AuditEvent(
            event_type=str(event_type),
            meeting_id=meeting_id,
            motion_id=motion_id,
            member_id=member_id,
            actor_role=self.actor.role.value if self.actor else None,
            actor_id=self.actor.id if self.actor else None,
            payload=data,
        )
        self.db.add(audit)
        self.events.append(
            VotingEvent(
                event_type=str(event_type),
                meeting_id=str(meeting_id) if meeting_id else None,
                motion_id=str(motion_id) if motion_id else None,
                member_id=str(member_id) if member_id else None,
                data=data,
            )
        )
        return audit
