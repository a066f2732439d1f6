"""
Committee and role-assignment models.
"""
from datetime import datetime
from typing import List

from sqlalchemy import Boolean, DateTime, ForeignKey, String, and_, or_
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, as_utc, generate_ulid
from app.features.members.models import Member


class Committee(Base, TimestampMixin):
    """
    Organizational unit scoping delegated authority.

    Inactive committees keep their history but accept no new assignments.
    """
    __tablename__ = "committees"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=generate_ulid)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    assignments: Mapped[List["RoleAssignment"]] = relationship(
        back_populates="committee",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Committee(id={self.id}, name={self.name!r}, active={self.is_active})>"


class RoleAssignment(Base, TimestampMixin):
    """
    Binds a member to a role inside one committee for ``[start_date, end_date)``.

    ``end_date`` is None while the assignment is open. Assignments are closed,
    never deleted.
    """
    __tablename__ = "role_assignments"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    member_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("members.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    committee_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("committees.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    role: Mapped[str] = mapped_column(String(50), nullable=False)

    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    assigned_by_id: Mapped[str | None] = mapped_column(String(26), nullable=True)

    committee: Mapped["Committee"] = relationship(back_populates="assignments", lazy="selectin")
    member: Mapped["Member"] = relationship(lazy="selectin")

    @classmethod
    def active_at(cls, as_of: datetime):
        """SQL predicate for assignments active at ``as_of``."""
        return and_(
            cls.start_date <= as_of,
            or_(cls.end_date.is_(None), cls.end_date > as_of),
        )

    def is_active_at(self, as_of: datetime) -> bool:
        if as_utc(self.start_date) > as_of:
            return False
        return self.end_date is None or as_utc(self.end_date) > as_of

    def __repr__(self) -> str:
        return (
            f"<RoleAssignment(id={self.id}, member_id={self.member_id}, "
            f"committee_id={self.committee_id}, role={self.role}, end_date={self.end_date})>"
        )
