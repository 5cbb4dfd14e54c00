"""Admin seeding against a temporary database."""

import pytest

from app.features.users.auth import user_id_from_payload, verify_jwt_token
from scripts.seed_staff import ADMIN_BASE_PERMISSIONS, issue_dev_token, seed_admin


@pytest.mark.asyncio
async def test_seed_admin_creates_once(service):
    first = await seed_admin(service, "root@example.com", "Root")
    second = await seed_admin(service, "root@example.com", "Root")

    assert first == second
    assert await service.get_all_staff_ids() == [first]
    profile = await service.get_profile(first)
    assert profile.base_permissions == set(ADMIN_BASE_PERMISSIONS)


def test_dev_token_carries_user_id():
    assert user_id_from_payload(verify_jwt_token(issue_dev_token("u-1"))) == "u-1"
