"""
Team management service.

Orchestrates every change to a staff user's team memberships:

1. validate the request (team id, role) before touching any state
2. under the user's lock, read the record in a fresh session
3. apply the change and recompute effective permissions from scratch
4. commit the record, conditional on its version
5. write the audit entry for the persisted before/after state

Steps 4 and 5 are serialized per user. If step 5 fails the change stays
persisted and AuditWriteFailed is raised; re-running
recalculate_user_permissions repairs and re-audits.
"""
import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core import config
from app.features.teams.audit import AuditEntry, AuditLogger, AuditOperation
from app.features.teams.catalog import (
    DEFAULT_CATALOG,
    TeamCatalog,
    TeamDefinition,
    TeamId,
    TeamRole,
    parse_role,
    parse_team_id,
)
from app.features.teams.errors import NotAssigned, NotStaffMember, TeamError
from app.features.teams.locks import UserLockRegistry
from app.features.teams.permissions import (
    add_assignment,
    calculate_effective_permissions,
    diff_permissions,
    find_assignment,
    remove_assignment,
    replace_role,
    validate_new_assignment,
)
from app.features.teams.profiles import TeamAssignment, UserPermissionProfile
from app.features.teams.repository import StaffProfileRepository
from app.features.users.models import USER_TYPE_STAFF, User
from app.utils import get_logger


log = get_logger(__name__)

SYSTEM_ACTOR = "system"


# ============================================================================
# Result types
# ============================================================================

@dataclass(frozen=True)
class PermissionChange:
    """Outcome of one profile mutation."""
    user_id: str
    operation: AuditOperation
    team_id: Optional[TeamId]
    before: frozenset[str]
    after: frozenset[str]
    profile: UserPermissionProfile

    @property
    def added(self) -> frozenset[str]:
        return self.after - self.before

    @property
    def removed(self) -> frozenset[str]:
        return self.before - self.after


@dataclass(frozen=True)
class TeamMemberSummary:
    user_id: str
    email: str
    name: str
    role: TeamRole
    assigned_at: datetime
    assigned_by: str


@dataclass(frozen=True)
class TeamStats:
    team_id: TeamId
    name: str
    total_members: int
    manager_count: int
    member_count: int


@dataclass(frozen=True)
class TeamDetails:
    definition: TeamDefinition
    stats: TeamStats
    members: list[TeamMemberSummary]


@dataclass(frozen=True)
class UserTeamInfo:
    user_id: str
    email: str
    name: str
    user_type: str
    profile: UserPermissionProfile


@dataclass(frozen=True)
class StaffUserSummary:
    user_id: str
    email: str
    name: str
    created_at: Optional[datetime]


class BulkStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass(frozen=True)
class BulkAssignResult:
    """Result for one user of a bulk assignment."""
    user_id: str
    success: bool
    error: Optional[str] = None
    detail: Optional[str] = None
    added_permissions: frozenset[str] = frozenset()


@dataclass(frozen=True)
class BulkAssignOutcome:
    team_id: TeamId
    role: TeamRole
    results: list[BulkAssignResult]

    @property
    def succeeded(self) -> list[BulkAssignResult]:
        return [r for r in self.results if r.success]

    @property
    def failed(self) -> list[BulkAssignResult]:
        return [r for r in self.results if not r.success]

    @property
    def status(self) -> BulkStatus:
        if not self.failed:
            return BulkStatus.SUCCESS
        if not self.succeeded:
            return BulkStatus.FAILED
        return BulkStatus.PARTIAL


@dataclass
class RecalculationSummary:
    total: int = 0
    processed: int = 0
    changed: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)


# ============================================================================
# Service
# ============================================================================

TeamsChange = Callable[[list[TeamAssignment]], list[TeamAssignment]]


class TeamManagementService:
    """
    Mutating and read operations on staff team membership.

    Usage:
        service = TeamManagementService(AsyncSessionLocal)
        change = await service.assign_user_to_team(user_id, "sales", "member", actor=admin_id)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        catalog: TeamCatalog = DEFAULT_CATALOG,
        audit_logger: Optional[AuditLogger] = None,
        recalculate_concurrency: int = config.RECALCULATE_CONCURRENCY,
        locks: Optional[UserLockRegistry] = None,
    ):
        self.session_factory = session_factory
        self.catalog = catalog
        self.audit = audit_logger or AuditLogger(session_factory)
        self.recalculate_concurrency = max(1, recalculate_concurrency)
        self.locks = locks or UserLockRegistry()

    # ------------------------------------------------------------------
    # Core mutation
    # ------------------------------------------------------------------

    async def _mutate(
        self,
        user_id: str,
        actor: str,
        operation: AuditOperation,
        team_id: Optional[TeamId] = None,
        change_teams: Optional[TeamsChange] = None,
        new_base: Optional[frozenset[str]] = None,
        details: Optional[dict[str, Any]] = None,
        require_staff: bool = True,
    ) -> PermissionChange:
        async with self.locks.hold(user_id):
            async with self.session_factory() as session:
                repo = StaffProfileRepository(session)
                user = await repo.get(user_id)
                if require_staff and not user.is_staff:
                    raise NotStaffMember(user_id)

                current = UserPermissionProfile.from_user(user)
                teams = list(current.teams)
                if change_teams is not None:
                    teams = change_teams(teams)
                base = current.base_permissions if new_base is None else new_base

                after = calculate_effective_permissions(base, teams, self.catalog)
                before = current.effective_permissions

                await repo.save_profile(user, base, teams, after)
                profile = UserPermissionProfile.from_user(user)

            change = PermissionChange(
                user_id=user_id,
                operation=operation,
                team_id=team_id,
                before=before,
                after=after,
                profile=profile,
            )
            log.info(
                "Profile updated: user=%s operation=%s team=%s actor=%s added=%d removed=%d total=%d",
                user_id, operation.value, team_id.value if team_id else None, actor,
                len(change.added), len(change.removed), len(after),
            )
            await self.audit.record(AuditEntry.for_change(
                actor=actor,
                target_user_id=user_id,
                operation=operation,
                before=before,
                after=after,
                team_id=team_id.value if team_id else None,
                details=details,
            ))
            return change

    # ------------------------------------------------------------------
    # Membership operations
    # ------------------------------------------------------------------

    async def assign_user_to_team(
        self,
        user_id: str,
        team_id: TeamId | str,
        role: TeamRole | str,
        actor: str,
        operation: AuditOperation = AuditOperation.ASSIGN,
    ) -> PermissionChange:
        """
        Add a team assignment.

        Raises:
            UnknownTeam / InvalidRole: before anything is read
            UnknownUser, NotStaffMember, AlreadyAssigned
            ConcurrentModification, AuditWriteFailed
        """
        team = parse_team_id(team_id)
        team_role = parse_role(role)
        self.catalog.get_team_definition(team)

        def change(teams: list[TeamAssignment]) -> list[TeamAssignment]:
            validate_new_assignment(user_id, teams, team)
            return add_assignment(teams, team, team_role, actor)

        return await self._mutate(
            user_id, actor, operation, team_id=team, change_teams=change,
            details={"role": team_role.value},
        )

    async def remove_user_from_team(self, user_id: str, team_id: TeamId | str, actor: str) -> PermissionChange:
        team = parse_team_id(team_id)
        removed_role: dict[str, str] = {}

        def change(teams: list[TeamAssignment]) -> list[TeamAssignment]:
            assignment = find_assignment(teams, team)
            if assignment is None:
                raise NotAssigned(user_id, team.value)
            removed_role["role"] = assignment.role.value
            return remove_assignment(teams, team)

        return await self._mutate(
            user_id, actor, AuditOperation.REMOVE, team_id=team, change_teams=change, details=removed_role,
        )

    async def update_user_team_role(
        self, user_id: str, team_id: TeamId | str, new_role: TeamRole | str, actor: str
    ) -> PermissionChange:
        """
        Change the role on an existing assignment in place.

        assigned_at / assigned_by of the original assignment are kept.
        """
        team = parse_team_id(team_id)
        role = parse_role(new_role)
        roles: dict[str, str] = {"new_role": role.value}

        def change(teams: list[TeamAssignment]) -> list[TeamAssignment]:
            assignment = find_assignment(teams, team)
            if assignment is None:
                raise NotAssigned(user_id, team.value)
            roles["old_role"] = assignment.role.value
            return replace_role(teams, team, role)

        return await self._mutate(
            user_id, actor, AuditOperation.ROLE_CHANGE, team_id=team, change_teams=change, details=roles,
        )

    async def bulk_assign_users_to_team(
        self,
        user_ids: Sequence[str],
        team_id: TeamId | str,
        role: TeamRole | str,
        actor: str,
    ) -> BulkAssignOutcome:
        """
        Assign each user independently.

        A failure for one user (already assigned, unknown user, conflict...)
        is recorded in its result and does not stop the rest of the batch.
        """
        team = parse_team_id(team_id)
        team_role = parse_role(role)
        self.catalog.get_team_definition(team)

        results: list[BulkAssignResult] = []
        for user_id in user_ids:
            try:
                change = await self.assign_user_to_team(
                    user_id, team, team_role, actor, operation=AuditOperation.BULK_ASSIGN,
                )
            except TeamError as exc:
                log.info("Bulk assign skipped user=%s team=%s: %s", user_id, team.value, exc.code)
                results.append(BulkAssignResult(user_id=user_id, success=False, error=exc.code, detail=exc.message))
            else:
                results.append(BulkAssignResult(user_id=user_id, success=True, added_permissions=change.added))

        outcome = BulkAssignOutcome(team_id=team, role=team_role, results=results)
        log.info(
            "Bulk assign to %s finished: status=%s succeeded=%d failed=%d",
            team.value, outcome.status.value, len(outcome.succeeded), len(outcome.failed),
        )
        return outcome

    # ------------------------------------------------------------------
    # Base permissions and registration
    # ------------------------------------------------------------------

    async def register_staff_user(
        self,
        email: str,
        name: str,
        base_permissions: Iterable[str] = (),
        actor: str = SYSTEM_ACTOR,
    ) -> PermissionChange:
        """Create a staff user record with no teams."""
        base = frozenset(base_permissions)
        async with self.session_factory() as session:
            repo = StaffProfileRepository(session)
            user = await repo.add(User(
                email=email,
                name=name,
                user_type=USER_TYPE_STAFF,
                base_permissions=sorted(base),
                teams=[],
                effective_permissions=sorted(calculate_effective_permissions(base, (), self.catalog)),
            ))
            profile = UserPermissionProfile.from_user(user)

        log.info("Registered staff user %s (%s) with %d base permissions", user.id, email, len(base))
        await self.audit.record(AuditEntry.for_change(
            actor=actor,
            target_user_id=profile.user_id,
            operation=AuditOperation.BASE_CHANGE,
            before=frozenset(),
            after=profile.effective_permissions,
            details={"event": "registered"},
        ))
        return PermissionChange(
            user_id=profile.user_id,
            operation=AuditOperation.BASE_CHANGE,
            team_id=None,
            before=frozenset(),
            after=profile.effective_permissions,
            profile=profile,
        )

    async def set_base_permissions(self, user_id: str, permissions: Iterable[str], actor: str) -> PermissionChange:
        """Replace the user's base grant and recompute."""
        return await self._mutate(
            user_id, actor, AuditOperation.BASE_CHANGE, new_base=frozenset(permissions), require_staff=False,
        )

    # ------------------------------------------------------------------
    # Recalculation
    # ------------------------------------------------------------------

    async def recalculate_user_permissions(self, user_id: str, actor: str = SYSTEM_ACTOR) -> PermissionChange:
        """
        Re-derive effective permissions without changing membership.

        Always audited, also when nothing changed.
        """
        return await self._mutate(user_id, actor, AuditOperation.RECALCULATE, require_staff=False)

    async def recalculate_all_staff_permissions(self, actor: str = SYSTEM_ACTOR) -> RecalculationSummary:
        """
        Recalculate every staff user.

        Users are processed concurrently, bounded by recalculate_concurrency;
        each user's own write and audit stay serialized under its lock.
        Safe to run repeatedly.
        """
        user_ids = await self.get_all_staff_ids()

        summary = RecalculationSummary(total=len(user_ids))
        semaphore = asyncio.Semaphore(self.recalculate_concurrency)

        async def recalculate(user_id: str) -> None:
            async with semaphore:
                try:
                    change = await self.recalculate_user_permissions(user_id, actor)
                except TeamError as exc:
                    summary.errors.append({"userId": user_id, "error": exc.code, "detail": exc.message})
                    return
                except SQLAlchemyError as exc:
                    log.exception("Recalculation failed for user=%s", user_id)
                    summary.errors.append({"userId": user_id, "error": "database_error", "detail": str(exc)})
                    return
            summary.processed += 1
            if change.added or change.removed:
                summary.changed += 1

        await asyncio.gather(*(recalculate(user_id) for user_id in user_ids))

        log.info(
            "Recalculated staff permissions: total=%d processed=%d changed=%d errors=%d",
            summary.total, summary.processed, summary.changed, len(summary.errors),
        )
        return summary

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_profile(self, user_id: str) -> Optional[UserPermissionProfile]:
        """Stored profile for the guards, or None if the user does not exist."""
        async with self.session_factory() as session:
            user = await StaffProfileRepository(session).find(user_id)
        if user is None or not user.is_active:
            return None
        return UserPermissionProfile.from_user(user)

    async def get_user_team_info(self, user_id: str) -> UserTeamInfo:
        async with self.session_factory() as session:
            user = await StaffProfileRepository(session).get(user_id)
        return UserTeamInfo(
            user_id=user.id,
            email=user.email,
            name=user.name,
            user_type=user.user_type,
            profile=UserPermissionProfile.from_user(user),
        )

    async def get_all_staff_ids(self) -> list[str]:
        async with self.session_factory() as session:
            return await StaffProfileRepository(session).list_staff_ids()

    async def _staff_profiles(self) -> list[tuple[User, UserPermissionProfile]]:
        async with self.session_factory() as session:
            users = await StaffProfileRepository(session).list_staff()
        return [(user, UserPermissionProfile.from_user(user)) for user in users]

    @staticmethod
    def _members_of(
        staff: list[tuple[User, UserPermissionProfile]], team: TeamId
    ) -> list[TeamMemberSummary]:
        members = []
        for user, profile in staff:
            assignment = profile.assignment_for(team)
            if assignment is None:
                continue
            members.append(TeamMemberSummary(
                user_id=user.id,
                email=user.email,
                name=user.name or user.email,
                role=assignment.role,
                assigned_at=assignment.assigned_at,
                assigned_by=assignment.assigned_by,
            ))
        return members

    def _stats_for(self, team: TeamId, members: list[TeamMemberSummary]) -> TeamStats:
        managers = sum(1 for m in members if m.role is TeamRole.MANAGER)
        return TeamStats(
            team_id=team,
            name=self.catalog.team_name(team),
            total_members=len(members),
            manager_count=managers,
            member_count=len(members) - managers,
        )

    async def get_team_members(self, team_id: TeamId | str) -> list[TeamMemberSummary]:
        team = parse_team_id(team_id)
        self.catalog.get_team_definition(team)
        return self._members_of(await self._staff_profiles(), team)

    async def get_team_member_count(self, team_id: TeamId | str) -> int:
        return len(await self.get_team_members(team_id))

    async def is_user_in_team(self, user_id: str, team_id: TeamId | str) -> bool:
        team = parse_team_id(team_id)
        info = await self.get_user_team_info(user_id)
        return info.profile.assignment_for(team) is not None

    async def get_unassigned_staff_users(self) -> list[StaffUserSummary]:
        return [
            StaffUserSummary(user_id=user.id, email=user.email, name=user.name or user.email, created_at=user.created_at)
            for user, profile in await self._staff_profiles()
            if not profile.teams
        ]

    async def get_all_team_stats(self) -> list[TeamStats]:
        staff = await self._staff_profiles()
        return [
            self._stats_for(team, self._members_of(staff, team))
            for team in self.catalog.list_all_team_ids()
        ]

    async def list_teams(self) -> list[tuple[TeamDefinition, TeamStats]]:
        stats = {s.team_id: s for s in await self.get_all_team_stats()}
        return [(definition, stats[definition.id]) for definition in self.catalog.definitions()]

    async def get_team_details(self, team_id: TeamId | str) -> TeamDetails:
        team = parse_team_id(team_id)
        definition = self.catalog.get_team_definition(team)
        members = self._members_of(await self._staff_profiles(), team)
        return TeamDetails(definition=definition, stats=self._stats_for(team, members), members=members)

    async def list_audit_entries(
        self,
        target_user_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[AuditEntry]:
        return await self.audit.list_entries(target_user_id, since, until, limit)
