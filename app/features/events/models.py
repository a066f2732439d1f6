"""
Event model with ULID primary keys.
"""
import enum
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid


class EventStatus(str, enum.Enum):
    """Event lifecycle states."""
    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"
    APPROVED = "APPROVED"
    PUBLISHED = "PUBLISHED"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"


class Event(Base, TimestampMixin):
    """
    Club event.

    ``status`` holds an EventStatus value as text. ``chair_id`` is the member
    who owns the event; ownership is what grants a non-peer member view and
    edit rights on it.
    """
    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default=EventStatus.DRAFT.value, index=True)

    chair_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("members.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    committee_id: Mapped[str | None] = mapped_column(
        String(64),
        ForeignKey("committees.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, title={self.title!r}, status={self.status})>"
