"""
User record with ULID primary keys.

For staff users the record also carries the permission profile: the base
permission grant, the team assignments and the cached effective permission
set derived from both.
"""
from datetime import datetime
from typing import Any
from sqlalchemy import String, Boolean, Integer, JSON
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin
from app.utils import generate_ulid


USER_TYPE_STAFF = "staff"
USER_TYPE_CUSTOMER = "customer"


class User(Base, TimestampMixin):
    """
    User model representing authenticated users.

    ``effective_permissions`` is a cache of a pure function of
    ``base_permissions`` and ``teams``. It is only ever written together with
    them by the team management service, never patched on its own.

    ``version`` is bumped by SQLAlchemy on every UPDATE and checked in the
    WHERE clause, so a write based on a stale read fails instead of silently
    overwriting a concurrent change.
    """
    __tablename__ = "users"

    # Primary key using ULID (Universally Unique Lexicographically Sortable Identifier)
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # User information
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    user_type: Mapped[str] = mapped_column(String(20), nullable=False, default=USER_TYPE_STAFF, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Permission profile, stored as JSON lists
    base_permissions: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    teams: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    effective_permissions: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # Track last login
    last_login_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __mapper_args__ = {
        "version_id_col": version,
        "eager_defaults": True,
    }

    @property
    def is_staff(self) -> bool:
        return self.user_type == USER_TYPE_STAFF

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r}, type={self.user_type})>"
