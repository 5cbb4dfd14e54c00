"""
Append-only audit table for permission-affecting changes.

The team assignments themselves live on the user record
(app.features.users.models.User); this module only holds the audit trail.
"""
from datetime import datetime
from typing import Any, Dict
from sqlalchemy import String, DateTime, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base
from app.utils import generate_ulid, utcnow


class PermissionAuditLog(Base):
    """
    One row per permission-affecting event.

    Rows are inserted and never updated or deleted. Ordering is by
    ``timestamp``; concurrent writers may interleave.
    """
    __tablename__ = "permission_audit_log"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # Who and when
    actor: Mapped[str] = mapped_column(String(255), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    # What changed
    target_user_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    operation: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    team_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    before_permissions: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    after_permissions: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    added_permissions: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    removed_permissions: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    # Example: {"old_role": "member", "new_role": "manager"}
    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        Index("ix_permission_audit_log_target_time", "target_user_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return (
            f"<PermissionAuditLog(id={self.id}, target={self.target_user_id}, "
            f"operation={self.operation}, team={self.team_id})>"
        )
