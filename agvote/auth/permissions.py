"""
Role Gate

The voting core only asks one question: may this role perform this
operation? ``PermissionChecker`` is that contract; ``RoleTable`` is the
default, table-driven answer. Meeting transitions are gated separately by
the state machine.
"""

from enum import StrEnum
from typing import Protocol

from agvote.auth.dependencies import Role
from agvote.voting.errors import Forbidden


class Permission(StrEnum):
    MEETING_CREATE = "meeting:create"
    MEMBER_CREATE = "member:create"
    POLICY_WRITE = "policy:write"
    MOTION_WRITE = "motion:write"  # create, reorder
    MOTION_CONTROL = "motion:control"  # open, close
    BALLOT_CAST = "ballot:cast"
    BALLOT_MANUAL = "ballot:manual"  # manual vote, unanimity
    BALLOT_CANCEL = "ballot:cancel"
    ATTENDANCE_WRITE = "attendance:write"  # attendance and proxies
    VOTE_READ = "vote:read"  # see the breakdown of secret motions


R = Role

DEFAULT_TABLE: dict[Permission, frozenset[Role]] = {
    Permission.MEETING_CREATE: frozenset({R.ADMIN, R.OPERATOR}),
    Permission.MEMBER_CREATE: frozenset({R.ADMIN, R.OPERATOR}),
    Permission.POLICY_WRITE: frozenset({R.ADMIN}),
    Permission.MOTION_WRITE: frozenset({R.ADMIN, R.OPERATOR, R.PRESIDENT}),
    Permission.MOTION_CONTROL: frozenset({R.ADMIN, R.OPERATOR, R.PRESIDENT}),
    Permission.BALLOT_CAST: frozenset({R.ADMIN, R.OPERATOR, R.VOTER}),
    Permission.BALLOT_MANUAL: frozenset({R.ADMIN, R.OPERATOR}),
    Permission.BALLOT_CANCEL: frozenset({R.ADMIN, R.OPERATOR}),
    Permission.ATTENDANCE_WRITE: frozenset({R.ADMIN, R.OPERATOR}),
    Permission.VOTE_READ: frozenset({R.ADMIN, R.OPERATOR, R.AUDITOR, R.PRESIDENT, R.ASSESSOR}),
}


class PermissionChecker(Protocol):
    def allows(self, role: Role, permission: Permission) -> bool: ...


class RoleTable:
    """Static role -> permission table."""

    def __init__(self, table: dict[Permission, frozenset[Role]] | None = None) -> None:
        self.table = table if table is not None else DEFAULT_TABLE

    def allows(self, role: Role, permission: Permission) -> bool:
        return role in self.table.get(permission, frozenset())


def require(checker: PermissionChecker, role: Role, permission: Permission) -> None:
    """Raise ``Forbidden`` unless ``role`` holds ``permission``."""
    if not checker.allows(role, permission):
        raise Forbidden(f"Role '{role}' lacks permission '{permission}'")
