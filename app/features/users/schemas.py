"""
Pydantic schemas for user-related requests and responses.
"""
from typing import Dict, List
from pydantic import EmailStr, Field, field_validator

from app.features.teams.schemas import CamelModel, UserTeamInfoResponse


class StaffUserCreate(CamelModel):
    """Schema for registering a new staff user."""
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=255)
    base_permissions: List[str] = Field(default_factory=list, description="Permissions granted outside any team")

    @field_validator("base_permissions")
    @classmethod
    def permissions_not_blank(cls, v: List[str]) -> List[str]:
        if any(not p.strip() for p in v):
            raise ValueError("Permissions must not be blank")
        return v


class BasePermissionsUpdate(CamelModel):
    """Replaces the user's base permission grant."""
    permissions: List[str] = Field(..., description="New base permission set")


class AccessSummaryResponse(CamelModel):
    total_teams: int
    manager_teams: List[str]
    member_teams: List[str]
    total_permissions: int
    team_access: Dict[str, str] = Field(..., description="Access level on every team: no_access, member or manager")
    permissions_by_category: Dict[str, List[str]]


class CurrentUserResponse(UserTeamInfoResponse):
    """The caller's own teams and permissions."""
    access: AccessSummaryResponse
