"""
Permission calculation for team-based staff access.

Combines a user's base permissions with the permissions granted by each of
their team assignments, compares permission sets for audit trails and answers
permission queries against an already-computed profile.

Everything here is pure: no I/O, no clock, no shared state.
"""
from dataclasses import dataclass
from typing import Iterable, Optional

from app.features.teams.catalog import (
    DEFAULT_CATALOG,
    PERMISSION_CATEGORIES,
    TeamAccessLevel,
    TeamCatalog,
    TeamId,
    TeamRole,
    parse_role,
    parse_team_id,
    readable_permission_name,
)
from app.features.teams.errors import AlreadyAssigned
from app.features.teams.profiles import TeamAssignment, UserPermissionProfile


# ============================================================================
# Calculation
# ============================================================================

def permissions_for(assignment: TeamAssignment, catalog: TeamCatalog = DEFAULT_CATALOG) -> frozenset[str]:
    """
    Permissions granted by a single assignment.

    Uses the member or manager set of the referenced team depending on the
    role, never one derived from the other.

    Raises:
        UnknownTeam: team id is not in the catalog
        InvalidRole: role is neither member nor manager
    """
    definition = catalog.get_team_definition(parse_team_id(assignment.team_id))
    return definition.permissions_for_role(parse_role(assignment.role))


def calculate_effective_permissions(
    base_permissions: Iterable[str],
    teams: Iterable[TeamAssignment],
    catalog: TeamCatalog = DEFAULT_CATALOG,
) -> frozenset[str]:
    """
    Union of the base permissions and every assignment's permissions.

    Order of ``teams`` has no effect on the result. Callers on a production
    path should validate assignments first; malformed input raises
    UnknownTeam or InvalidRole.
    """
    effective = set(base_permissions)
    for assignment in teams:
        effective |= permissions_for(assignment, catalog)
    return frozenset(effective)


@dataclass(frozen=True)
class PermissionDiff:
    """Change between two permission sets."""
    added: frozenset[str]
    removed: frozenset[str]
    unchanged: frozenset[str]

    @property
    def is_empty(self) -> bool:
        return not self.added and not self.removed


def diff_permissions(before: Iterable[str], after: Iterable[str]) -> PermissionDiff:
    """Set difference in both directions. Used for audit entries only."""
    before_set = frozenset(before)
    after_set = frozenset(after)
    return PermissionDiff(
        added=after_set - before_set,
        removed=before_set - after_set,
        unchanged=before_set & after_set,
    )


# ============================================================================
# Permission queries
# ============================================================================

def has_permission(profile: UserPermissionProfile, permission: str) -> bool:
    return permission in profile.effective_permissions


def has_any_permission(profile: UserPermissionProfile, permissions: Iterable[str]) -> bool:
    """OR: at least one of the permissions."""
    return any(p in profile.effective_permissions for p in permissions)


def has_all_permissions(profile: UserPermissionProfile, permissions: Iterable[str]) -> bool:
    """AND: every one of the permissions."""
    return all(p in profile.effective_permissions for p in permissions)


# ============================================================================
# Assignment list helpers
# ============================================================================

def find_assignment(teams: Iterable[TeamAssignment], team_id: TeamId) -> Optional[TeamAssignment]:
    return next((t for t in teams if t.team_id == team_id), None)


def is_team_member(teams: Iterable[TeamAssignment], team_id: TeamId) -> bool:
    return find_assignment(teams, team_id) is not None


def is_team_manager(teams: Iterable[TeamAssignment], team_id: TeamId) -> bool:
    assignment = find_assignment(teams, team_id)
    return assignment is not None and assignment.role is TeamRole.MANAGER


def team_access_level(teams: Iterable[TeamAssignment], team_id: TeamId) -> TeamAccessLevel:
    assignment = find_assignment(teams, team_id)
    if assignment is None:
        return TeamAccessLevel.NO_ACCESS
    if assignment.role is TeamRole.MANAGER:
        return TeamAccessLevel.MANAGER
    return TeamAccessLevel.MEMBER


def manager_team_ids(teams: Iterable[TeamAssignment]) -> list[TeamId]:
    return [t.team_id for t in teams if t.role is TeamRole.MANAGER]


def member_team_ids(teams: Iterable[TeamAssignment]) -> list[TeamId]:
    return [t.team_id for t in teams if t.role is TeamRole.MEMBER]


def validate_new_assignment(user_id: str, existing: Iterable[TeamAssignment], team_id: TeamId) -> None:
    """Raise AlreadyAssigned if the user already holds a seat on the team."""
    if is_team_member(existing, team_id):
        raise AlreadyAssigned(user_id, team_id.value)


def add_assignment(
    teams: Iterable[TeamAssignment], team_id: TeamId, role: TeamRole, assigned_by: str
) -> list[TeamAssignment]:
    return [*teams, TeamAssignment.new(team_id, role, assigned_by)]


def remove_assignment(teams: Iterable[TeamAssignment], team_id: TeamId) -> list[TeamAssignment]:
    return [t for t in teams if t.team_id != team_id]


def replace_role(teams: Iterable[TeamAssignment], team_id: TeamId, role: TeamRole) -> list[TeamAssignment]:
    return [t.with_role(role) if t.team_id == team_id else t for t in teams]


@dataclass(frozen=True)
class TeamAccessSummary:
    total_teams: int
    manager_teams: list[str]
    member_teams: list[str]
    total_permissions: int
    team_access: dict[str, str]
    permissions_by_category: dict[str, list[str]]


def categorize_permissions(permissions: Iterable[str]) -> dict[str, list[str]]:
    """Readable names grouped by PERMISSION_CATEGORIES; the rest go under "other"."""
    grouped: dict[str, list[str]] = {}
    for permission in sorted(permissions):
        category = next(
            (name for name, members in PERMISSION_CATEGORIES.items() if permission in members), "other"
        )
        grouped.setdefault(category, []).append(readable_permission_name(permission))
    return grouped


def team_access_summary(
    profile: UserPermissionProfile, catalog: TeamCatalog = DEFAULT_CATALOG
) -> TeamAccessSummary:
    """
    Team names grouped by role, the access level on every catalog team and
    readable permission names by category, for display.
    """
    return TeamAccessSummary(
        total_teams=len(profile.teams),
        manager_teams=[catalog.team_name(t) for t in manager_team_ids(profile.teams)],
        member_teams=[catalog.team_name(t) for t in member_team_ids(profile.teams)],
        total_permissions=len(profile.effective_permissions),
        team_access={
            team_id.value: team_access_level(profile.teams, team_id).value
            for team_id in catalog.list_all_team_ids()
        },
        permissions_by_category=categorize_permissions(profile.effective_permissions),
    )
