"""
Value types for a staff user's team memberships and permission profile.

TeamAssignment records are what get stored in ``User.teams``; the profile is
the read-only view the calculator and the guards work on.
"""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from app.features.teams.catalog import TeamId, TeamRole, parse_role, parse_team_id
from app.features.users.models import User
from app.utils import utcnow


class TeamAssignment(BaseModel):
    """A user's membership in one team at one role."""
    team_id: TeamId
    role: TeamRole
    assigned_at: datetime
    assigned_by: str

    model_config = ConfigDict(frozen=True)

    @classmethod
    def new(cls, team_id: TeamId, role: TeamRole, assigned_by: str) -> "TeamAssignment":
        return cls(team_id=team_id, role=role, assigned_at=utcnow(), assigned_by=assigned_by)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "TeamAssignment":
        """
        Load a stored assignment.

        Raises UnknownTeam / InvalidRole for records the current enums do not
        recognise instead of a generic validation error.
        """
        return cls(
            team_id=parse_team_id(record.get("team_id")),
            role=parse_role(record.get("role")),
            assigned_at=record["assigned_at"],
            assigned_by=record.get("assigned_by", "system"),
        )

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    def with_role(self, role: TeamRole) -> "TeamAssignment":
        # Promotion/demotion keeps the original assignment provenance
        return self.model_copy(update={"role": role})


class UserPermissionProfile(BaseModel):
    """Permission state of one user as last persisted."""
    user_id: str
    base_permissions: frozenset[str] = frozenset()
    teams: tuple[TeamAssignment, ...] = ()
    effective_permissions: frozenset[str] = frozenset()
    version: int = 0

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_user(cls, user: User) -> "UserPermissionProfile":
        return cls(
            user_id=user.id,
            base_permissions=frozenset(user.base_permissions or ()),
            teams=tuple(TeamAssignment.from_record(record) for record in user.teams or ()),
            effective_permissions=frozenset(user.effective_permissions or ()),
            version=user.version or 0,
        )

    def assignment_for(self, team_id: TeamId) -> TeamAssignment | None:
        return next((t for t in self.teams if t.team_id == team_id), None)

    @property
    def team_ids(self) -> list[TeamId]:
        return [t.team_id for t in self.teams]
