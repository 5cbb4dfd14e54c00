"""
Authorization guards for team-scoped and permission-scoped operations.

Guards evaluate an already-loaded UserPermissionProfile and return an
AuthorizationDecision. A denial is a normal return value, not an exception,
so callers can render a 403 (or try another guard) without unwinding.

A missing profile (the user lookup failed) is always a denial.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from app.features.teams.catalog import TeamId, parse_team_id
from app.features.teams.permissions import (
    has_all_permissions,
    has_any_permission,
    is_team_manager,
    is_team_member,
)
from app.features.teams.profiles import UserPermissionProfile


class DenyReason(str, Enum):
    UNKNOWN_USER = "UnknownUser"
    NOT_TEAM_MEMBER = "NotTeamMember"
    NOT_TEAM_MANAGER = "NotTeamManager"
    MISSING_PERMISSION = "MissingPermission"


@dataclass(frozen=True)
class AuthorizationDecision:
    allowed: bool
    reason: Optional[DenyReason] = None
    required_permissions: tuple[str, ...] = ()
    team_id: Optional[TeamId] = None
    user_id: Optional[str] = field(default=None, compare=False)

    def __bool__(self) -> bool:
        return self.allowed

    def to_payload(self) -> dict:
        """
        Body for a 403 response.

        Only names what was required; never the caller's own permission set
        or anyone's team membership.
        """
        payload: dict = {"error": "forbidden", "reason": self.reason.value if self.reason else None}
        if self.required_permissions:
            payload["requiredPermissions"] = list(self.required_permissions)
        if self.team_id is not None:
            payload["teamId"] = self.team_id.value
        return payload


def allow(profile: UserPermissionProfile) -> AuthorizationDecision:
    return AuthorizationDecision(allowed=True, user_id=profile.user_id)


def deny(
    reason: DenyReason,
    profile: Optional[UserPermissionProfile] = None,
    required_permissions: Iterable[str] = (),
    team_id: Optional[TeamId] = None,
) -> AuthorizationDecision:
    return AuthorizationDecision(
        allowed=False,
        reason=reason,
        required_permissions=tuple(sorted(required_permissions)),
        team_id=team_id,
        user_id=profile.user_id if profile else None,
    )


def check_known_user(profile: Optional[UserPermissionProfile]) -> AuthorizationDecision:
    if profile is None:
        return deny(DenyReason.UNKNOWN_USER)
    return allow(profile)


def check_team_access(profile: Optional[UserPermissionProfile], team_id: TeamId | str) -> AuthorizationDecision:
    """Allow if the user holds any role on the team."""
    team = parse_team_id(team_id)
    if profile is None:
        return deny(DenyReason.UNKNOWN_USER, team_id=team)
    if is_team_member(profile.teams, team):
        return allow(profile)
    return deny(DenyReason.NOT_TEAM_MEMBER, profile, team_id=team)


def check_team_manager(profile: Optional[UserPermissionProfile], team_id: TeamId | str) -> AuthorizationDecision:
    """Allow if the user is a manager of the team."""
    team = parse_team_id(team_id)
    if profile is None:
        return deny(DenyReason.UNKNOWN_USER, team_id=team)
    if is_team_manager(profile.teams, team):
        return allow(profile)
    return deny(DenyReason.NOT_TEAM_MANAGER, profile, team_id=team)


def check_any_permission(profile: Optional[UserPermissionProfile], permissions: Iterable[str]) -> AuthorizationDecision:
    required = tuple(permissions)
    if profile is None:
        return deny(DenyReason.UNKNOWN_USER, required_permissions=required)
    if has_any_permission(profile, required):
        return allow(profile)
    return deny(DenyReason.MISSING_PERMISSION, profile, required_permissions=required)


def check_all_permissions(profile: Optional[UserPermissionProfile], permissions: Iterable[str]) -> AuthorizationDecision:
    required = tuple(permissions)
    if profile is None:
        return deny(DenyReason.UNKNOWN_USER, required_permissions=required)
    if has_all_permissions(profile, required):
        return allow(profile)
    return deny(DenyReason.MISSING_PERMISSION, profile, required_permissions=required)


def first_allowed(*decisions: AuthorizationDecision) -> AuthorizationDecision:
    """
    Combine alternative guards: allowed if any of them allows.

    When all deny, the first denial is reported.
    """
    if not decisions:
        raise ValueError("first_allowed() needs at least one decision")
    for decision in decisions:
        if decision.allowed:
            return decision
    return decisions[0]
