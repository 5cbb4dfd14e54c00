"""
Pydantic schemas for the team management API.

Wire format is camelCase; Python attributes stay snake_case.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.features.teams.catalog import TeamCatalog, TeamDefinition, TeamId, TeamRole, readable_permission_name
from app.features.teams.profiles import TeamAssignment


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ============================================================================
# Team Schemas
# ============================================================================

class TeamStatsResponse(CamelModel):
    team_id: TeamId
    name: str
    total_members: int
    manager_count: int
    member_count: int


class TeamSummary(CamelModel):
    """Catalog entry plus current head count."""
    id: TeamId
    name: str
    description: str
    responsibilities: List[str]
    member_permissions: List[str]
    manager_permissions: List[str]
    member_count: int = 0

    @classmethod
    def from_definition(cls, definition: TeamDefinition, member_count: int = 0) -> "TeamSummary":
        return cls(
            id=definition.id,
            name=definition.name,
            description=definition.description,
            responsibilities=list(definition.responsibilities),
            member_permissions=sorted(definition.member_permissions),
            manager_permissions=sorted(definition.manager_permissions),
            member_count=member_count,
        )


class TeamMemberResponse(CamelModel):
    user_id: str
    email: str
    name: str
    role: TeamRole
    assigned_at: datetime
    assigned_by: str


class TeamDetailResponse(TeamSummary):
    stats: TeamStatsResponse
    members: List[TeamMemberResponse] = []


# ============================================================================
# Assignment Schemas
# ============================================================================

class AssignUserToTeam(CamelModel):
    """Body for adding a user to a team."""
    user_id: str = Field(..., min_length=1, description="User ID")
    role: TeamRole = Field(TeamRole.MEMBER, description="Role within the team")


class UpdateTeamRole(CamelModel):
    role: TeamRole = Field(..., description="New role within the team")


class BulkAssignUsers(CamelModel):
    user_ids: List[str] = Field(..., min_length=1, max_length=500, description="User IDs to assign")
    role: TeamRole = Field(TeamRole.MEMBER, description="Role within the team")

    @field_validator("user_ids")
    @classmethod
    def user_ids_not_blank(cls, v: List[str]) -> List[str]:
        if any(not user_id.strip() for user_id in v):
            raise ValueError("User IDs must not be blank")
        return v


class PermissionDelta(CamelModel):
    """Permission change caused by one operation."""
    user_id: str
    team_id: Optional[TeamId] = None
    operation: str
    effective_permissions: List[str]
    added_permissions: List[str]
    removed_permissions: List[str]

    @classmethod
    def from_change(cls, change) -> "PermissionDelta":
        return cls(
            user_id=change.user_id,
            team_id=change.team_id,
            operation=change.operation.value,
            effective_permissions=sorted(change.after),
            added_permissions=sorted(change.added),
            removed_permissions=sorted(change.removed),
        )


class RecalculationDelta(PermissionDelta):
    before_permissions: List[str]
    after_permissions: List[str]

    @classmethod
    def from_change(cls, change) -> "RecalculationDelta":
        delta = PermissionDelta.from_change(change)
        return cls(
            **delta.model_dump(),
            before_permissions=sorted(change.before),
            after_permissions=sorted(change.after),
        )


class BulkAssignItem(CamelModel):
    user_id: str
    success: bool
    error: Optional[str] = None
    detail: Optional[str] = None
    added_permissions: List[str] = []


class BulkAssignResponse(CamelModel):
    team_id: TeamId
    role: TeamRole
    status: str
    succeeded: int
    failed: int
    results: List[BulkAssignItem]

    @classmethod
    def from_outcome(cls, outcome) -> "BulkAssignResponse":
        return cls(
            team_id=outcome.team_id,
            role=outcome.role,
            status=outcome.status.value,
            succeeded=len(outcome.succeeded),
            failed=len(outcome.failed),
            results=[
                BulkAssignItem(
                    user_id=r.user_id,
                    success=r.success,
                    error=r.error,
                    detail=r.detail,
                    added_permissions=sorted(r.added_permissions),
                )
                for r in outcome.results
            ],
        )


# ============================================================================
# User Team Info Schemas
# ============================================================================

class TeamAssignmentResponse(CamelModel):
    team_id: TeamId
    team_name: str
    role: TeamRole
    assigned_at: datetime
    assigned_by: str


class UserTeamInfoResponse(CamelModel):
    user_id: str
    email: str
    name: str
    user_type: str
    teams: List[TeamAssignmentResponse]
    base_permissions: List[str]
    effective_permissions: List[str]


def assignment_response(assignment: TeamAssignment, team_name: str) -> TeamAssignmentResponse:
    return TeamAssignmentResponse(
        team_id=assignment.team_id,
        team_name=team_name,
        role=assignment.role,
        assigned_at=assignment.assigned_at,
        assigned_by=assignment.assigned_by,
    )


def user_team_info_response(info, catalog: TeamCatalog) -> UserTeamInfoResponse:
    return UserTeamInfoResponse(
        user_id=info.user_id,
        email=info.email,
        name=info.name,
        user_type=info.user_type,
        teams=[assignment_response(t, catalog.team_name(t.team_id)) for t in info.profile.teams],
        base_permissions=sorted(info.profile.base_permissions),
        effective_permissions=sorted(info.profile.effective_permissions),
    )


class UnassignedStaffResponse(CamelModel):
    user_id: str
    email: str
    name: str
    created_at: Optional[datetime] = None


class RecalculateAllAccepted(CamelModel):
    status: str = "accepted"
    staff_count: int


# ============================================================================
# Audit Log Schemas
# ============================================================================

class AuditEntryResponse(CamelModel):
    id: str
    actor: str
    timestamp: datetime
    target_user_id: str
    operation: str
    team_id: Optional[str] = None
    before_permissions: List[str]
    after_permissions: List[str]
    added_permissions: List[str]
    removed_permissions: List[str]
    details: Optional[dict] = None
    added_permission_names: List[str] = []
    removed_permission_names: List[str] = []

    @classmethod
    def from_entry(cls, entry) -> "AuditEntryResponse":
        return cls(
            **entry.model_dump(exclude={"operation"}),
            operation=entry.operation.value,
            added_permission_names=[readable_permission_name(p) for p in entry.added_permissions],
            removed_permission_names=[readable_permission_name(p) for p in entry.removed_permissions],
        )
