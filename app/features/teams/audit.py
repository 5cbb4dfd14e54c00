"""
Audit logging for permission changes.

Each permission-affecting operation produces one AuditEntry, written in its
own session after the profile change it describes has been committed.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.features.teams.errors import AuditWriteFailed
from app.features.teams.models import PermissionAuditLog
from app.features.teams.permissions import diff_permissions
from app.utils import generate_ulid, get_logger, utcnow


log = get_logger(__name__)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class AuditOperation(str, Enum):
    ASSIGN = "assign"
    REMOVE = "remove"
    ROLE_CHANGE = "role-change"
    BULK_ASSIGN = "bulk-assign"
    RECALCULATE = "recalculate"
    BASE_CHANGE = "base-change"


class AuditEntry(BaseModel):
    """Immutable record of one permission change."""
    id: str = Field(default_factory=generate_ulid)
    actor: str
    timestamp: datetime = Field(default_factory=utcnow)
    target_user_id: str
    operation: AuditOperation
    team_id: Optional[str] = None
    before_permissions: list[str] = []
    after_permissions: list[str] = []
    added_permissions: list[str] = []
    removed_permissions: list[str] = []
    details: Optional[dict[str, Any]] = None

    model_config = ConfigDict(frozen=True, from_attributes=True)

    @classmethod
    def for_change(
        cls,
        *,
        actor: str,
        target_user_id: str,
        operation: AuditOperation,
        before: frozenset[str],
        after: frozenset[str],
        team_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> "AuditEntry":
        diff = diff_permissions(before, after)
        return cls(
            actor=actor,
            target_user_id=target_user_id,
            operation=operation,
            team_id=team_id,
            before_permissions=sorted(before),
            after_permissions=sorted(after),
            added_permissions=sorted(diff.added),
            removed_permissions=sorted(diff.removed),
            details=details,
        )


class AuditLogger:
    """Writes and reads the permission audit trail."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def record(self, entry: AuditEntry) -> AuditEntry:
        """
        Append an entry.

        Raises:
            AuditWriteFailed: the entry could not be stored
        """
        try:
            await self._write(entry)
        except SQLAlchemyError as exc:
            log.warning(
                "Audit write failed: target=%s operation=%s error=%s",
                entry.target_user_id, entry.operation.value, exc,
            )
            raise AuditWriteFailed(entry.target_user_id, entry.operation.value, exc) from exc

        log.info(
            "Audit: actor=%s operation=%s target=%s team=%s added=%d removed=%d",
            entry.actor, entry.operation.value, entry.target_user_id, entry.team_id,
            len(entry.added_permissions), len(entry.removed_permissions),
        )
        return entry

    async def _write(self, entry: AuditEntry) -> None:
        async with self._session_factory() as session:
            session.add(PermissionAuditLog(
                id=entry.id,
                actor=entry.actor,
                timestamp=entry.timestamp,
                target_user_id=entry.target_user_id,
                operation=entry.operation.value,
                team_id=entry.team_id,
                before_permissions=entry.before_permissions,
                after_permissions=entry.after_permissions,
                added_permissions=entry.added_permissions,
                removed_permissions=entry.removed_permissions,
                details=entry.details,
            ))
            await session.commit()

    async def list_entries(
        self,
        target_user_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[AuditEntry]:
        """
        Entries newest first, filtered by target user and/or time range.

        Bounds may carry any UTC offset; naive bounds are read as UTC.
        """
        stmt = select(PermissionAuditLog)
        if target_user_id:
            stmt = stmt.where(PermissionAuditLog.target_user_id == target_user_id)
        if since:
            stmt = stmt.where(PermissionAuditLog.timestamp >= _as_utc(since))
        if until:
            stmt = stmt.where(PermissionAuditLog.timestamp <= _as_utc(until))
        stmt = stmt.order_by(PermissionAuditLog.timestamp.desc(), PermissionAuditLog.id.desc()).limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.scalars().all()
        return [AuditEntry.model_validate(row) for row in rows]
