"""
Member model with ULID primary keys.

Members are owned by the membership system; the authorization engine reads
them to resolve a session into an Actor and never writes them.
"""
from datetime import datetime
from sqlalchemy import String, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid
from app.features.permissions.catalog import Role


class Member(Base, TimestampMixin):
    """
    Club member account.

    ``global_role`` is stored as plain text rather than an enum column so that
    a stale or unknown value still loads; it resolves to no capabilities.
    """
    __tablename__ = "members"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    global_role: Mapped[str] = mapped_column(String(50), nullable=False, default=Role.MEMBER.value)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_login_at: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def role(self) -> Role | None:
        return Role.parse(self.global_role)

    def __repr__(self) -> str:
        return f"<Member(id={self.id}, email={self.email!r}, role={self.global_role})>"
