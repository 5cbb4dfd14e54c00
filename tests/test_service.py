"""Team management service tests against a temporary SQLite database."""

from __future__ import annotations

import asyncio
from datetime import timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from app.features.teams.audit import AuditLogger, AuditOperation
from app.features.teams.catalog import TeamId, TeamRole
from app.features.teams.errors import (
    AlreadyAssigned,
    AuditWriteFailed,
    ConcurrentModification,
    InvalidRole,
    NotAssigned,
    NotStaffMember,
    UnknownTeam,
    UnknownUser,
)
from app.features.teams.locks import UserLockRegistry
from app.features.teams.repository import StaffProfileRepository
from app.features.teams.service import BulkStatus, TeamManagementService
from app.features.users.models import USER_TYPE_CUSTOMER, User
from app.utils import utcnow


async def register(service, email: str, base=()) -> str:
    change = await service.register_staff_user(email, email.split("@")[0], base, actor="admin")
    return change.user_id


async def operations_for(service, user_id: str) -> list[str]:
    return sorted(e.operation.value for e in await service.list_audit_entries(target_user_id=user_id))


class FailingAuditLogger(AuditLogger):
    async def _write(self, entry):
        raise SQLAlchemyError("audit store unavailable")


@pytest.mark.asyncio
async def test_register_staff_user(service):
    user_id = await register(service, "ann@example.com", base=["view_dashboard"])
    assert len(user_id) == 26

    profile = await service.get_profile(user_id)
    assert profile.teams == ()
    assert profile.base_permissions == {"view_dashboard"}
    assert profile.effective_permissions == {"view_dashboard"}

    entries = await service.list_audit_entries(target_user_id=user_id)
    assert [e.operation for e in entries] == [AuditOperation.BASE_CHANGE]
    assert entries[0].details == {"event": "registered"}


@pytest.mark.asyncio
async def test_assign_promote_and_remove(service):
    user_id = await register(service, "bob@example.com", base=["view_dashboard"])

    change = await service.assign_user_to_team(user_id, "sales", "member", actor="admin")
    assert change.added == {"view_leads", "respond_to_leads"}
    assert change.removed == frozenset()
    assert change.after == {"view_dashboard", "view_leads", "respond_to_leads"}

    change = await service.update_user_team_role(user_id, TeamId.SALES, TeamRole.MANAGER, actor="admin")
    assert change.added == {"assign_leads"}

    change = await service.assign_user_to_team(user_id, TeamId.MARKETING, TeamRole.MEMBER, actor="admin")
    assert change.added == {"view_campaigns"}

    change = await service.remove_user_from_team(user_id, TeamId.SALES, actor="admin")
    assert change.removed == {"view_leads", "respond_to_leads", "assign_leads"}
    assert change.after == {"view_dashboard", "view_campaigns"}

    profile = await service.get_profile(user_id)
    assert profile.team_ids == [TeamId.MARKETING]
    assert profile.effective_permissions == {"view_dashboard", "view_campaigns"}

    assert await operations_for(service, user_id) == [
        "assign", "assign", "base-change", "remove", "role-change",
    ]

    entries = await service.list_audit_entries(target_user_id=user_id)
    role_change = next(e for e in entries if e.operation is AuditOperation.ROLE_CHANGE)
    assert role_change.added_permissions == ["assign_leads"]
    assert role_change.removed_permissions == []
    assert role_change.details == {"old_role": "member", "new_role": "manager"}


@pytest.mark.asyncio
async def test_audit_entry_contents(service):
    user_id = await register(service, "cat@example.com")
    await service.assign_user_to_team(user_id, TeamId.FINANCE, TeamRole.MANAGER, actor="admin-1")

    entries = await service.list_audit_entries(target_user_id=user_id)
    entry = next(e for e in entries if e.operation is AuditOperation.ASSIGN)
    assert entry.actor == "admin-1"
    assert entry.team_id == "finance"
    assert entry.before_permissions == []
    assert entry.after_permissions == ["process_refunds", "view_transactions"]
    assert entry.added_permissions == ["process_refunds", "view_transactions"]
    assert entry.details == {"role": "manager"}


@pytest.mark.asyncio
async def test_already_assigned_changes_nothing(service):
    user_id = await register(service, "dan@example.com")
    await service.assign_user_to_team(user_id, TeamId.SALES, TeamRole.MEMBER, actor="admin")
    before = await service.get_profile(user_id)

    with pytest.raises(AlreadyAssigned):
        await service.assign_user_to_team(user_id, TeamId.SALES, TeamRole.MANAGER, actor="admin")

    after = await service.get_profile(user_id)
    assert after == before
    assert await operations_for(service, user_id) == ["assign", "base-change"]


@pytest.mark.asyncio
async def test_invalid_input_is_rejected_before_reading(service):
    with pytest.raises(UnknownTeam):
        await service.assign_user_to_team("missing", "legal", "member", actor="admin")
    with pytest.raises(InvalidRole):
        await service.assign_user_to_team("missing", "sales", "owner", actor="admin")
    with pytest.raises(UnknownUser):
        await service.assign_user_to_team("missing", "sales", "member", actor="admin")


@pytest.mark.asyncio
async def test_not_assigned(service):
    user_id = await register(service, "eve@example.com")
    with pytest.raises(NotAssigned):
        await service.remove_user_from_team(user_id, TeamId.PRODUCT, actor="admin")
    with pytest.raises(NotAssigned):
        await service.update_user_team_role(user_id, TeamId.PRODUCT, TeamRole.MANAGER, actor="admin")


@pytest.mark.asyncio
async def test_customers_cannot_join_teams(service, session_factory):
    async with session_factory() as session:
        customer = await StaffProfileRepository(session).add(
            User(email="cust@example.com", name="Customer", user_type=USER_TYPE_CUSTOMER)
        )

    with pytest.raises(NotStaffMember):
        await service.assign_user_to_team(customer.id, TeamId.SALES, TeamRole.MEMBER, actor="admin")


@pytest.mark.asyncio
async def test_role_change_keeps_assignment_provenance(service):
    user_id = await register(service, "fay@example.com")
    await service.assign_user_to_team(user_id, TeamId.PRODUCT, TeamRole.MEMBER, actor="admin-1")
    original = (await service.get_profile(user_id)).assignment_for(TeamId.PRODUCT)

    await service.update_user_team_role(user_id, TeamId.PRODUCT, TeamRole.MANAGER, actor="admin-2")
    updated = (await service.get_profile(user_id)).assignment_for(TeamId.PRODUCT)

    assert updated.role is TeamRole.MANAGER
    assert updated.assigned_at == original.assigned_at
    assert updated.assigned_by == "admin-1"


@pytest.mark.asyncio
async def test_manager_set_replaces_member_set(service):
    user_id = await register(service, "gus@example.com")
    await service.assign_user_to_team(user_id, TeamId.FINANCE, TeamRole.MEMBER, actor="admin")
    change = await service.update_user_team_role(user_id, TeamId.FINANCE, TeamRole.MANAGER, actor="admin")

    assert change.added == {"process_refunds"}
    assert change.removed == {"export_reports"}


@pytest.mark.asyncio
async def test_recalculate_is_idempotent_and_always_audited(service):
    user_id = await register(service, "hal@example.com", base=["view_dashboard"])
    await service.assign_user_to_team(user_id, TeamId.SALES, TeamRole.MEMBER, actor="admin")

    first = await service.recalculate_user_permissions(user_id)
    second = await service.recalculate_user_permissions(user_id)

    assert first.after == second.after == {"view_dashboard", "view_leads", "respond_to_leads"}
    assert not first.added and not first.removed
    entries = await service.list_audit_entries(target_user_id=user_id)
    recalculations = [e for e in entries if e.operation is AuditOperation.RECALCULATE]
    assert len(recalculations) == 2
    for entry in recalculations:
        assert entry.added_permissions == []
        assert entry.removed_permissions == []
        assert entry.after_permissions == ["respond_to_leads", "view_dashboard", "view_leads"]


@pytest.mark.asyncio
async def test_set_base_permissions(service):
    user_id = await register(service, "ivy@example.com", base=["a"])
    await service.assign_user_to_team(user_id, TeamId.MARKETING, TeamRole.MEMBER, actor="admin")

    change = await service.set_base_permissions(user_id, ["b", "view_campaigns"], actor="admin")
    assert change.removed == {"a"}
    assert change.added == {"b"}
    assert change.after == {"b", "view_campaigns"}


@pytest.mark.asyncio
async def test_bulk_assign_reports_each_user(service):
    fresh = await register(service, "jay@example.com")
    other = await register(service, "jo@example.com")
    existing = await register(service, "kim@example.com")
    await service.assign_user_to_team(existing, TeamId.CUSTOMER_SUPPORT, TeamRole.MEMBER, actor="admin")

    outcome = await service.bulk_assign_users_to_team(
        [fresh, other, existing, "missing"], TeamId.CUSTOMER_SUPPORT, TeamRole.MEMBER, actor="admin",
    )

    assert outcome.status is BulkStatus.PARTIAL
    by_user = {r.user_id: r for r in outcome.results}
    assert by_user[fresh].success
    assert by_user[fresh].added_permissions == {"view_support_tickets"}
    assert by_user[other].success
    assert len(outcome.succeeded) == 2
    assert by_user[existing].error == "already_assigned"
    assert by_user["missing"].error == "unknown_user"

    assert await operations_for(service, fresh) == ["base-change", "bulk-assign"]


@pytest.mark.asyncio
async def test_bulk_assign_unknown_team_fails_whole_request(service):
    user_id = await register(service, "lee@example.com")
    with pytest.raises(UnknownTeam):
        await service.bulk_assign_users_to_team([user_id], "legal", TeamRole.MEMBER, actor="admin")


@pytest.mark.asyncio
async def test_concurrent_assignments_to_one_user_both_land(service):
    user_id = await register(service, "max@example.com")

    await asyncio.gather(
        service.assign_user_to_team(user_id, TeamId.SALES, TeamRole.MEMBER, actor="admin-1"),
        service.assign_user_to_team(user_id, TeamId.MARKETING, TeamRole.MEMBER, actor="admin-2"),
    )

    profile = await service.get_profile(user_id)
    assert set(profile.team_ids) == {TeamId.SALES, TeamId.MARKETING}
    assert profile.effective_permissions == {"view_leads", "respond_to_leads", "view_campaigns"}
    assert await operations_for(service, user_id) == ["assign", "assign", "base-change"]


@pytest.mark.asyncio
async def test_stale_write_raises_concurrent_modification(service, session_factory):
    user_id = await register(service, "ned@example.com")

    async with session_factory() as first, session_factory() as second:
        user_a = await StaffProfileRepository(first).get(user_id)
        user_b = await StaffProfileRepository(second).get(user_id)

        await StaffProfileRepository(first).save_profile(user_a, frozenset({"a"}), [], frozenset({"a"}))
        with pytest.raises(ConcurrentModification) as exc_info:
            await StaffProfileRepository(second).save_profile(user_b, frozenset({"b"}), [], frozenset({"b"}))

    assert exc_info.value.retryable
    profile = await service.get_profile(user_id)
    assert profile.base_permissions == {"a"}


@pytest.mark.asyncio
async def test_interleaved_writer_fails_assignment_without_audit(service, session_factory, monkeypatch):
    user_id = await register(service, "nia@example.com")
    original_get = StaffProfileRepository.get

    async def get_then_interleave(self, uid):
        user = await original_get(self, uid)
        async with session_factory() as other:
            repo = StaffProfileRepository(other)
            rival = await original_get(repo, uid)
            await repo.save_profile(rival, frozenset({"rival"}), [], frozenset({"rival"}))
        return user

    monkeypatch.setattr(StaffProfileRepository, "get", get_then_interleave)
    with pytest.raises(ConcurrentModification) as exc_info:
        await service.assign_user_to_team(user_id, TeamId.SALES, TeamRole.MEMBER, actor="admin")
    monkeypatch.undo()

    assert exc_info.value.to_payload()["retryable"] is True
    profile = await service.get_profile(user_id)
    assert profile.teams == ()
    assert profile.base_permissions == {"rival"}
    assert await operations_for(service, user_id) == ["base-change"]


@pytest.mark.asyncio
async def test_audit_failure_keeps_change_and_recalculate_repairs(session_factory, catalog):
    healthy = TeamManagementService(session_factory, catalog=catalog)
    user_id = await register(healthy, "oli@example.com")

    broken = TeamManagementService(
        session_factory, catalog=catalog, audit_logger=FailingAuditLogger(session_factory),
    )
    with pytest.raises(AuditWriteFailed) as exc_info:
        await broken.assign_user_to_team(user_id, TeamId.PRODUCT, TeamRole.MEMBER, actor="admin")
    assert exc_info.value.to_payload()["reconcile"].endswith(f"/users/{user_id}/permissions/recalculate")

    profile = await healthy.get_profile(user_id)
    assert profile.team_ids == [TeamId.PRODUCT]
    assert await operations_for(healthy, user_id) == ["base-change"]

    change = await healthy.recalculate_user_permissions(user_id, actor="admin")
    assert change.after == {"view_roadmap"}
    assert await operations_for(healthy, user_id) == ["base-change", "recalculate"]


@pytest.mark.asyncio
async def test_recalculate_all_repairs_drift(service, session_factory):
    drifted = await register(service, "pam@example.com")
    clean = await register(service, "quinn@example.com")
    await service.assign_user_to_team(drifted, TeamId.SALES, TeamRole.MEMBER, actor="admin")
    await service.assign_user_to_team(clean, TeamId.PRODUCT, TeamRole.MEMBER, actor="admin")

    async with session_factory() as session:
        user = await StaffProfileRepository(session).get(drifted)
        user.effective_permissions = ["stale_permission"]
        await session.commit()

    summary = await service.recalculate_all_staff_permissions(actor="admin")
    assert summary.total == 2
    assert summary.processed == 2
    assert summary.changed == 1
    assert summary.errors == []

    profile = await service.get_profile(drifted)
    assert profile.effective_permissions == {"view_leads", "respond_to_leads"}

    again = await service.recalculate_all_staff_permissions(actor="admin")
    assert again.changed == 0


@pytest.mark.asyncio
async def test_recalculate_all_records_database_failures(service, monkeypatch):
    healthy = await register(service, "ray@example.com")
    broken = await register(service, "sid@example.com")
    original = service.recalculate_user_permissions

    async def recalculate(user_id, actor="system"):
        if user_id == broken:
            raise OperationalError("UPDATE users", {}, Exception("database is locked"))
        return await original(user_id, actor)

    monkeypatch.setattr(service, "recalculate_user_permissions", recalculate)
    summary = await service.recalculate_all_staff_permissions(actor="admin")

    assert summary.total == 2
    assert summary.processed == 1
    assert [e["userId"] for e in summary.errors] == [broken]
    assert summary.errors[0]["error"] == "database_error"
    assert "database is locked" in summary.errors[0]["detail"]
    assert (await operations_for(service, healthy)).count("recalculate") == 1


@pytest.mark.asyncio
async def test_audit_range_bounds_with_utc_offset(service):
    user_id = await register(service, "tom@example.com")
    hour_ago = utcnow() - timedelta(hours=1)
    plus_five = hour_ago.astimezone(timezone(timedelta(hours=5)))

    entries = await service.list_audit_entries(target_user_id=user_id, since=plus_five)
    assert [e.operation for e in entries] == [AuditOperation.BASE_CHANGE]
    assert await service.list_audit_entries(target_user_id=user_id, until=plus_five) == []

    naive = hour_ago.replace(tzinfo=None)
    assert len(await service.list_audit_entries(target_user_id=user_id, since=naive)) == 1


@pytest.mark.asyncio
async def test_read_operations(service):
    alice = await register(service, "alice@example.com")
    bruno = await register(service, "bruno@example.com")
    idle = await register(service, "idle@example.com")
    await service.assign_user_to_team(alice, TeamId.SALES, TeamRole.MANAGER, actor="admin")
    await service.assign_user_to_team(bruno, TeamId.SALES, TeamRole.MEMBER, actor="admin")

    members = await service.get_team_members(TeamId.SALES)
    assert {m.user_id: m.role for m in members} == {alice: TeamRole.MANAGER, bruno: TeamRole.MEMBER}
    assert await service.get_team_member_count("sales") == 2
    assert await service.is_user_in_team(alice, TeamId.SALES)
    assert not await service.is_user_in_team(idle, TeamId.SALES)

    stats = {s.team_id: s for s in await service.get_all_team_stats()}
    assert len(stats) == 8
    assert stats[TeamId.SALES].total_members == 2
    assert stats[TeamId.SALES].manager_count == 1
    assert stats[TeamId.SALES].member_count == 1
    assert stats[TeamId.FINANCE].total_members == 0

    unassigned = await service.get_unassigned_staff_users()
    assert [u.user_id for u in unassigned] == [idle]

    details = await service.get_team_details("sales")
    assert details.definition.id is TeamId.SALES
    assert len(details.members) == 2

    info = await service.get_user_team_info(alice)
    assert info.email == "alice@example.com"
    assert info.profile.assignment_for(TeamId.SALES).role is TeamRole.MANAGER


@pytest.mark.asyncio
async def test_inactive_user_has_no_profile(service, session_factory):
    user_id = await register(service, "rex@example.com")
    async with session_factory() as session:
        user = await StaffProfileRepository(session).get(user_id)
        user.is_active = False
        await session.commit()

    assert await service.get_profile(user_id) is None
    assert await service.get_profile("missing") is None


@pytest.mark.asyncio
async def test_user_lock_registry_is_per_user():
    locks = UserLockRegistry()
    async with locks.hold("u1"):
        assert locks.is_locked("u1")
        assert not locks.is_locked("u2")
        async with locks.hold("u2"):
            assert locks.is_locked("u2")
    assert not locks.is_locked("u1")
