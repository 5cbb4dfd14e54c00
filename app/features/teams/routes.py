"""
Team management API routes.

Provides endpoints for listing teams, managing team membership and
recalculating staff permissions. Every mutating endpoint is protected by the
same guards the engine exposes to the rest of the application.
"""
from datetime import datetime
from typing import Annotated, List, Optional
from fastapi import APIRouter, BackgroundTasks, Depends, Query, status

from app.features.teams.dependencies import (
    CatalogDep,
    TeamServiceDep,
    require_known_user,
    require_team_admin,
    require_team_viewer,
)
from app.features.teams.profiles import UserPermissionProfile
from app.features.teams.schemas import (
    AssignUserToTeam,
    AuditEntryResponse,
    BulkAssignResponse,
    BulkAssignUsers,
    PermissionDelta,
    RecalculateAllAccepted,
    RecalculationDelta,
    TeamDetailResponse,
    TeamMemberResponse,
    TeamStatsResponse,
    TeamSummary,
    UnassignedStaffResponse,
    UpdateTeamRole,
    UserTeamInfoResponse,
    user_team_info_response,
)
from app.features.teams.service import TeamManagementService
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()

AdminProfile = Annotated[UserPermissionProfile, Depends(require_team_admin())]


async def _run_recalculate_all(service: TeamManagementService, actor: str) -> None:
    summary = await service.recalculate_all_staff_permissions(actor=actor)
    if summary.errors:
        log.warning("Recalculate-all finished with %d errors: %s", len(summary.errors), summary.errors)


# ============================================================================
# Catalog-wide Routes
# ============================================================================

@router.get("", response_model=List[TeamSummary])
async def list_teams(
    service: TeamServiceDep,
    _profile: Annotated[UserPermissionProfile, Depends(require_known_user())],
):
    """List all teams with their permission sets and member counts."""
    return [
        TeamSummary.from_definition(definition, stats.total_members)
        for definition, stats in await service.list_teams()
    ]


@router.get("/stats", response_model=List[TeamStatsResponse])
async def get_team_stats(service: TeamServiceDep, _admin: AdminProfile):
    """Member and manager counts for every team."""
    return [TeamStatsResponse.model_validate(stats) for stats in await service.get_all_team_stats()]


@router.get("/unassigned", response_model=List[UnassignedStaffResponse])
async def get_unassigned_staff(service: TeamServiceDep, _admin: AdminProfile):
    """Staff users without any team assignment."""
    return [UnassignedStaffResponse.model_validate(user) for user in await service.get_unassigned_staff_users()]


@router.get("/audit-log", response_model=List[AuditEntryResponse])
async def list_audit_log(
    service: TeamServiceDep,
    _admin: AdminProfile,
    user_id: Annotated[Optional[str], Query(alias="userId")] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
):
    """Permission audit trail, newest first, by target user and/or time range."""
    entries = await service.list_audit_entries(user_id, since, until, limit)
    return [AuditEntryResponse.from_entry(entry) for entry in entries]


@router.post(
    "/permissions/recalculate-all",
    response_model=RecalculateAllAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def recalculate_all_permissions(
    background_tasks: BackgroundTasks,
    service: TeamServiceDep,
    admin: AdminProfile,
):
    """Queue a recalculation pass over every staff user."""
    staff = await service.get_all_staff_ids()
    background_tasks.add_task(_run_recalculate_all, service, admin.user_id)
    log.info("Recalculate-all accepted for %d staff users by %s", len(staff), admin.user_id)
    return RecalculateAllAccepted(staff_count=len(staff))


# ============================================================================
# Per-user Routes
# ============================================================================

@router.get("/users/{user_id}", response_model=UserTeamInfoResponse)
async def get_user_team_info(user_id: str, service: TeamServiceDep, catalog: CatalogDep, _admin: AdminProfile):
    """A user's team assignments and effective permissions."""
    return user_team_info_response(await service.get_user_team_info(user_id), catalog)


@router.post("/users/{user_id}/permissions/recalculate", response_model=RecalculationDelta)
async def recalculate_user_permissions(user_id: str, service: TeamServiceDep, admin: AdminProfile):
    """Re-derive one user's effective permissions and return the before/after delta."""
    change = await service.recalculate_user_permissions(user_id, actor=admin.user_id)
    return RecalculationDelta.from_change(change)


# ============================================================================
# Per-team Routes
# ============================================================================

@router.get("/{team_id}", response_model=TeamDetailResponse)
async def get_team_details(
    team_id: str,
    service: TeamServiceDep,
    _viewer: Annotated[UserPermissionProfile, Depends(require_team_viewer)],
):
    """Team definition, head counts and members."""
    details = await service.get_team_details(team_id)
    summary = TeamSummary.from_definition(details.definition, details.stats.total_members)
    return TeamDetailResponse(
        **summary.model_dump(),
        stats=TeamStatsResponse.model_validate(details.stats),
        members=[TeamMemberResponse.model_validate(m) for m in details.members],
    )


@router.get("/{team_id}/members", response_model=List[TeamMemberResponse])
async def get_team_members(
    team_id: str,
    service: TeamServiceDep,
    _viewer: Annotated[UserPermissionProfile, Depends(require_team_viewer)],
):
    """Members of a team with their role and assignment time."""
    return [TeamMemberResponse.model_validate(m) for m in await service.get_team_members(team_id)]


@router.post("/{team_id}/members", response_model=PermissionDelta, status_code=status.HTTP_201_CREATED)
async def assign_user_to_team(team_id: str, body: AssignUserToTeam, service: TeamServiceDep, admin: AdminProfile):
    """Assign a user to a team."""
    change = await service.assign_user_to_team(body.user_id, team_id, body.role, actor=admin.user_id)
    return PermissionDelta.from_change(change)


@router.post("/{team_id}/members/bulk", response_model=BulkAssignResponse, status_code=status.HTTP_207_MULTI_STATUS)
async def bulk_assign_users(team_id: str, body: BulkAssignUsers, service: TeamServiceDep, admin: AdminProfile):
    """Assign several users; each user's outcome is reported separately."""
    outcome = await service.bulk_assign_users_to_team(body.user_ids, team_id, body.role, actor=admin.user_id)
    return BulkAssignResponse.from_outcome(outcome)


@router.put("/{team_id}/members/{user_id}/role", response_model=PermissionDelta)
async def update_team_role(
    team_id: str, user_id: str, body: UpdateTeamRole, service: TeamServiceDep, admin: AdminProfile
):
    """Promote or demote a team member."""
    change = await service.update_user_team_role(user_id, team_id, body.role, actor=admin.user_id)
    return PermissionDelta.from_change(change)


@router.delete("/{team_id}/members/{user_id}", response_model=PermissionDelta)
async def remove_team_member(team_id: str, user_id: str, service: TeamServiceDep, admin: AdminProfile):
    """Remove a user from a team."""
    change = await service.remove_user_from_team(user_id, team_id, actor=admin.user_id)
    return PermissionDelta.from_change(change)
