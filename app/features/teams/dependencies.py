"""
Request-time authorization for team routes.

``get_current_profile`` loads the caller's permission profile. FastAPI caches
a dependency's result for the duration of a request, so however many guards a
route composes, the profile is read from the store once.

The require_* factories wrap the pure guards from guards.py and turn a denial
into a 403.
"""
from typing import Annotated, Callable, Iterable, Optional
from fastapi import Depends, HTTPException, status

from app.core import config
from app.core.database.engine import AsyncSessionLocal
from app.features.teams.catalog import DEFAULT_CATALOG, TeamCatalog, TeamId
from app.features.teams.guards import (
    AuthorizationDecision,
    check_all_permissions,
    check_any_permission,
    check_known_user,
    check_team_access,
    check_team_manager,
    first_allowed,
)
from app.features.teams.profiles import UserPermissionProfile
from app.features.teams.service import TeamManagementService
from app.features.users.dependencies import get_current_user_id
from app.utils import get_logger


log = get_logger(__name__)

_service: Optional[TeamManagementService] = None


def get_catalog() -> TeamCatalog:
    """The team catalog in use. Override in tests to inject a fixture catalog."""
    return DEFAULT_CATALOG


def get_team_service(catalog: Annotated[TeamCatalog, Depends(get_catalog)]) -> TeamManagementService:
    """
    Process-wide service instance.

    The instance owns the per-user lock registry, so it must be shared across
    requests rather than rebuilt per request.
    """
    global _service
    if _service is None or _service.catalog is not catalog:
        _service = TeamManagementService(AsyncSessionLocal, catalog=catalog)
    return _service


TeamServiceDep = Annotated[TeamManagementService, Depends(get_team_service)]
CatalogDep = Annotated[TeamCatalog, Depends(get_catalog)]


async def get_current_profile(
    user_id: Annotated[str, Depends(get_current_user_id)],
    service: TeamServiceDep,
) -> Optional[UserPermissionProfile]:
    """Caller's stored profile, or None when the user record does not exist."""
    return await service.get_profile(user_id)


CurrentProfileDep = Annotated[Optional[UserPermissionProfile], Depends(get_current_profile)]


def enforce(decision: AuthorizationDecision, user_id: str) -> None:
    """Raise 403 for a denial; the body names only what was required."""
    if decision.allowed:
        log.debug("Authorization granted for user %s", user_id)
        return
    log.info("Authorization denied for user %s: %s", user_id, decision.reason.value)
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=decision.to_payload())


def _guard(check: Callable[[Optional[UserPermissionProfile]], AuthorizationDecision]):
    async def guard_dependency(
        user_id: Annotated[str, Depends(get_current_user_id)],
        profile: CurrentProfileDep,
    ) -> UserPermissionProfile:
        enforce(check(profile), user_id)
        return profile

    return guard_dependency


def require_team_access(team_id: TeamId | str):
    """
    Dependency requiring membership (any role) in a fixed team.

    Usage:
        @router.get("/leads")
        async def list_leads(profile = Depends(require_team_access(TeamId.SALES))):
            ...
    """
    return _guard(lambda profile: check_team_access(profile, team_id))


def require_team_manager(team_id: TeamId | str):
    """Dependency requiring the manager role in a fixed team."""
    return _guard(lambda profile: check_team_manager(profile, team_id))


def require_any_permission(permissions: Iterable[str]):
    """
    Dependency requiring at least one of the permissions.

    Usage:
        @router.post("/refunds")
        async def refund(profile = Depends(require_any_permission(["process_refunds"]))):
            ...
    """
    required = tuple(permissions)
    return _guard(lambda profile: check_any_permission(profile, required))


def require_all_permissions(permissions: Iterable[str]):
    """Dependency requiring every one of the permissions."""
    required = tuple(permissions)
    return _guard(lambda profile: check_all_permissions(profile, required))


def require_team_admin():
    """Guard protecting the team management endpoints themselves."""
    return require_any_permission(config.TEAM_ADMIN_PERMISSIONS)


async def require_team_viewer(
    team_id: str,
    user_id: Annotated[str, Depends(get_current_user_id)],
    profile: CurrentProfileDep,
    catalog: CatalogDep,
) -> UserPermissionProfile:
    """
    Path-scoped guard for reading one team.

    Admits members of the team in the path, holders of a team-viewing
    permission, and team administrators.
    """
    team = catalog.get_team_definition(team_id).id
    decision = first_allowed(
        check_team_access(profile, team),
        check_any_permission(profile, [*config.TEAM_VIEW_PERMISSIONS, *config.TEAM_ADMIN_PERMISSIONS]),
    )
    enforce(decision, user_id)
    return profile


def require_known_user():
    """Any caller with an existing, active user record."""
    return _guard(check_known_user)
