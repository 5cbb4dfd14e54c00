"""
Error taxonomy for team management.

Every failure the service can raise derives from TeamError and carries the
HTTP status and machine-readable code the API renders for it. Authorization
denials are not here: guards return them as values (see guards.py).
"""
from typing import Any, Optional

from fastapi import status


class TeamError(Exception):
    """Base class for expected team-management failures."""
    code: str = "team_error"
    status_code: int = status.HTTP_400_BAD_REQUEST
    retryable: bool = False

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.code, "detail": self.message}
        if self.retryable:
            payload["retryable"] = True
        return payload


class UnknownTeam(TeamError):
    code = "unknown_team"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, team_id: Any):
        super().__init__(f"Unknown team: {team_id}", team_id=team_id)
        self.team_id = team_id


class InvalidRole(TeamError):
    code = "invalid_role"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, role: Any):
        super().__init__(f"Invalid team role: {role}", role=role)
        self.role = role


class UnknownUser(TeamError):
    code = "unknown_user"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, user_id: str):
        super().__init__("User not found", user_id=user_id)
        self.user_id = user_id


class NotStaffMember(TeamError):
    code = "not_staff_member"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, user_id: str):
        super().__init__("Teams can only be assigned to staff members", user_id=user_id)
        self.user_id = user_id


class AlreadyAssigned(TeamError):
    code = "already_assigned"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, user_id: str, team_id: Any):
        super().__init__(f"User is already assigned to team {team_id}", user_id=user_id, team_id=team_id)
        self.user_id = user_id
        self.team_id = team_id


class NotAssigned(TeamError):
    code = "not_assigned"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, user_id: str, team_id: Any):
        super().__init__(f"User is not a member of team {team_id}", user_id=user_id, team_id=team_id)
        self.user_id = user_id
        self.team_id = team_id


class ConcurrentModification(TeamError):
    """The user record changed between read and write. Safe to retry."""
    code = "concurrent_modification"
    status_code = status.HTTP_409_CONFLICT
    retryable = True

    def __init__(self, user_id: str):
        super().__init__("User record was modified concurrently; retry the operation", user_id=user_id)
        self.user_id = user_id


class AuditWriteFailed(TeamError):
    """
    The profile change was persisted but its audit entry was not.

    Re-running the user's permission recalculation repairs any drift and
    writes a fresh audit entry.
    """
    code = "audit_write_failed"
    status_code = status.HTTP_424_FAILED_DEPENDENCY

    def __init__(self, user_id: str, operation: str, cause: Optional[BaseException] = None):
        super().__init__(
            f"Change to user {user_id} was saved but the audit entry for '{operation}' could not be written",
            user_id=user_id,
            operation=operation,
        )
        self.user_id = user_id
        self.operation = operation
        self.cause = cause

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["reconcile"] = f"POST /teams/users/{self.user_id}/permissions/recalculate"
        return payload
