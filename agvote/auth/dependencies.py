"""
Auth Dependencies

FastAPI dependencies resolving the acting role. Authentication happens
upstream; the gateway forwards the verified identity as headers.
"""

from dataclasses import dataclass
from enum import StrEnum

from fastapi import Header, HTTPException, status


class Role(StrEnum):
    """Roles known to the voting core."""

    ADMIN = "admin"
    OPERATOR = "operator"  # Runs the console during the meeting
    PRESIDENT = "president"  # Chairs the meeting
    ASSESSOR = "assessor"  # Scrutineer
    AUDITOR = "auditor"
    VOTER = "voter"
    VIEWER = "viewer"  # Projection screen, public read


@dataclass(frozen=True)
class Actor:
    """Who performs an operation."""

    role: Role
    id: str | None = None


def _parse_role(value: str) -> Role:
    try:
        return Role(value.strip().lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "unknown_role", "message": f"Unknown role '{value}'"},
        )


async def get_actor(
    x_actor_role: str | None = Header(default=None),
    x_actor_id: str | None = Header(default=None),
) -> Actor:
    """Require an identified actor."""
    if not x_actor_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "authentication_required", "message": "X-Actor-Role header missing"},
        )
    return Actor(role=_parse_role(x_actor_role), id=x_actor_id)


async def get_optional_actor(
    x_actor_role: str | None = Header(default=None),
    x_actor_id: str | None = Header(default=None),
) -> Actor:
    """
    Actor for read endpoints.

    Anonymous callers (projection screens) read as ``viewer``.
    """
    if not x_actor_role:
        return Actor(role=Role.VIEWER, id=x_actor_id)
    return Actor(role=_parse_role(x_actor_role), id=x_actor_id)
