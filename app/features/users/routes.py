"""
User feature routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError

from app.features.teams.dependencies import (
    CatalogDep,
    TeamServiceDep,
    require_known_user,
    require_team_admin,
)
from app.features.teams.permissions import team_access_summary
from app.features.teams.profiles import UserPermissionProfile
from app.features.teams.schemas import PermissionDelta, UserTeamInfoResponse, user_team_info_response
from app.features.users.schemas import (
    AccessSummaryResponse,
    BasePermissionsUpdate,
    CurrentUserResponse,
    StaffUserCreate,
)
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["users"])


@router.get("/me", response_model=CurrentUserResponse)
async def get_current_user_profile(
    profile: Annotated[UserPermissionProfile, Depends(require_known_user())],
    service: TeamServiceDep,
    catalog: CatalogDep,
):
    """Get the current user's teams, effective permissions and access summary."""
    info = await service.get_user_team_info(profile.user_id)
    summary = team_access_summary(info.profile, catalog)
    return CurrentUserResponse(
        **user_team_info_response(info, catalog).model_dump(),
        access=AccessSummaryResponse.model_validate(summary),
    )


@router.post("/staff", response_model=UserTeamInfoResponse, status_code=status.HTTP_201_CREATED)
async def register_staff_user(
    body: StaffUserCreate,
    service: TeamServiceDep,
    catalog: CatalogDep,
    admin: Annotated[UserPermissionProfile, Depends(require_team_admin())],
):
    """Register a staff user with no teams (admin only)."""
    try:
        change = await service.register_staff_user(
            body.email, body.name, body.base_permissions, actor=admin.user_id,
        )
    except IntegrityError:
        log.info("Staff registration rejected, email already in use: %s", body.email)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A user with this email already exists"
        )

    return user_team_info_response(await service.get_user_team_info(change.user_id), catalog)


@router.put("/{user_id}/base-permissions", response_model=PermissionDelta)
async def set_base_permissions(
    user_id: str,
    body: BasePermissionsUpdate,
    service: TeamServiceDep,
    admin: Annotated[UserPermissionProfile, Depends(require_team_admin())],
):
    """Replace a user's base permissions and recompute effective permissions (admin only)."""
    change = await service.set_base_permissions(user_id, body.permissions, actor=admin.user_id)
    return PermissionDelta.from_change(change)
