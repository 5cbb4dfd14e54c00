"""
Persistence of permission profiles on the user record.
"""
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.features.teams.errors import ConcurrentModification, UnknownUser
from app.features.teams.profiles import TeamAssignment
from app.features.users.models import USER_TYPE_STAFF, User


class StaffProfileRepository:
    """Reads and writes user records inside one session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find(self, user_id: str) -> Optional[User]:
        result = await self.session.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get(self, user_id: str) -> User:
        user = await self.find(user_id)
        if user is None:
            raise UnknownUser(user_id)
        return user

    async def list_staff(self, active_only: bool = True) -> Sequence[User]:
        stmt = select(User).where(User.user_type == USER_TYPE_STAFF)
        if active_only:
            stmt = stmt.where(User.is_active.is_(True))
        result = await self.session.execute(stmt.order_by(User.id))
        return result.scalars().all()

    async def list_staff_ids(self) -> list[str]:
        stmt = select(User.id).where(User.user_type == USER_TYPE_STAFF).order_by(User.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def add(self, user: User) -> User:
        self.session.add(user)
        await self.session.commit()
        return user

    async def save_profile(
        self,
        user: User,
        base_permissions: frozenset[str],
        teams: Sequence[TeamAssignment],
        effective_permissions: frozenset[str],
    ) -> User:
        """
        Rewrite the whole permission profile and commit.

        The three fields are always written together. The UPDATE is
        conditional on the version read earlier in this session; if another
        writer got there first, ConcurrentModification is raised and nothing
        is written.
        """
        user_id = user.id
        # New list objects so the JSON columns are flagged as changed
        user.base_permissions = sorted(base_permissions)
        user.teams = [t.to_record() for t in teams]
        user.effective_permissions = sorted(effective_permissions)
        try:
            await self.session.commit()
        except StaleDataError as exc:
            await self.session.rollback()
            raise ConcurrentModification(user_id) from exc
        return user
