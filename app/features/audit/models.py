"""
Audit log model.

Append-only: rows are inserted by the audit emitter and never updated or
deleted through the ORM.
"""
from datetime import datetime
from typing import Any, Dict

from sqlalchemy import JSON, DateTime, String, event, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, generate_ulid


class AuditLog(Base):
    """
    One authorization or mutation event: who attempted what, the decision,
    and why.
    """
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    trace_id: Mapped[str] = mapped_column(String(26), unique=True, nullable=False, index=True)

    # Action details
    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    # Actor. Not a foreign key: records must outlive the member row.
    actor_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)

    # Null for pure authorization events where no data changed
    before: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    after: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    details: Mapped[Dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)

    decision: Mapped[str | None] = mapped_column(String(16), nullable=True, index=True)
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, actor_id={self.actor_id}, action={self.action}, decision={self.decision})>"


class AppendOnlyViolation(RuntimeError):
    pass


@event.listens_for(AuditLog, "before_update")
def _refuse_update(_mapper, _connection, target: AuditLog) -> None:
    raise AppendOnlyViolation(f"Audit record {target.id} is append-only")


@event.listens_for(AuditLog, "before_delete")
def _refuse_delete(_mapper, _connection, target: AuditLog) -> None:
    raise AppendOnlyViolation(f"Audit record {target.id} is append-only")
