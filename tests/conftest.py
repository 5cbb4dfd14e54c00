"""Shared fixtures: a small team catalog, a throwaway SQLite database and an API client."""

from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from app.core.database.engine import build_engine, build_session_factory, create_tables
from app.features.teams.catalog import TeamCatalog, TeamId, define_team
from app.features.teams.dependencies import get_catalog, get_team_service
from app.features.teams.service import TeamManagementService
from app.features.users.dependencies import get_current_user_id
from app.main import app


def _team(team_id: TeamId, member: list[str], manager: list[str]):
    return define_team(team_id, team_id.value.title(), f"{team_id.value} team", [], member, manager)


@pytest.fixture
def catalog() -> TeamCatalog:
    """
    Eight teams with short permission lists.

    Finance's manager set deliberately omits a member permission.
    """
    return TeamCatalog([
        _team(TeamId.SALES, ["view_leads", "respond_to_leads"], ["view_leads", "respond_to_leads", "assign_leads"]),
        _team(TeamId.CUSTOMER_SUPPORT, ["view_support_tickets"], ["view_support_tickets", "assign_tickets"]),
        _team(TeamId.CONTENT_MODERATION, ["review_listings"], ["review_listings", "ban_users"]),
        _team(TeamId.TECHNICAL_OPERATIONS, ["view_logs"], ["view_logs", "manage_deployments"]),
        _team(TeamId.MARKETING, ["view_campaigns"], ["view_campaigns", "manage_campaigns"]),
        _team(TeamId.FINANCE, ["view_transactions", "export_reports"], ["view_transactions", "process_refunds"]),
        _team(TeamId.PRODUCT, ["view_roadmap"], ["view_roadmap", "manage_product_roadmap"]),
        _team(TeamId.EXECUTIVE, ["view_all_metrics"], ["view_all_metrics", "manage_staff_roles"]),
    ])


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'teams.db'}"


@pytest_asyncio.fixture
async def session_factory(db_url):
    engine = build_engine(db_url)
    await create_tables(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def service(session_factory, catalog) -> TeamManagementService:
    return TeamManagementService(session_factory, catalog=catalog)


class ApiHarness:
    """TestClient on the real app plus the service behind it, acting as a configurable caller."""

    def __init__(self, service: TeamManagementService, catalog: TeamCatalog):
        self.service = service
        self.caller_id = "anonymous"

        app.dependency_overrides[get_catalog] = lambda: catalog
        app.dependency_overrides[get_team_service] = lambda: service
        app.dependency_overrides[get_current_user_id] = lambda: self.caller_id

        self.client = TestClient(app)

    def run(self, coro):
        return asyncio.run(coro)

    def staff(self, email: str, base_permissions=(), name: str | None = None) -> str:
        change = self.run(self.service.register_staff_user(email, name or email, base_permissions))
        return change.user_id

    def act_as(self, user_id: str) -> None:
        self.caller_id = user_id


@pytest.fixture
def api(db_url, catalog):
    """
    API client backed by a real SQLite file.

    Sync on purpose: TestClient drives its own event loop, and the database
    is seeded with asyncio.run between requests.
    """
    engine = build_engine(db_url)
    asyncio.run(create_tables(engine))
    harness = ApiHarness(TeamManagementService(build_session_factory(engine), catalog=catalog), catalog)
    yield harness
    app.dependency_overrides.clear()
    asyncio.run(engine.dispose())
