"""Test helpers shared across modules."""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

import jwt
from starlette.requests import Request

from app.core import config
from app.core.database.base import utcnow
from app.features.audit.emitter import AuditRecord
from app.features.members.models import Member


class MemoryAuditSink:
    """Collects records in a list."""

    def __init__(self) -> None:
        self.records: list[AuditRecord] = []

    async def write(self, record: AuditRecord) -> None:
        self.records.append(record)

    def actions(self) -> list[str]:
        return [r.action for r in self.records]


class FailingAuditSink:
    """Primary sink that is down."""

    async def write(self, record: AuditRecord) -> None:
        raise ConnectionError("audit store unavailable")


def make_token(
    member_id: str,
    *,
    impersonated_by: Optional[str] = None,
    expires_in: timedelta = timedelta(hours=1),
    secret: Optional[str] = None,
) -> str:
    claims = {"memberId": member_id, "exp": utcnow() + expires_in}
    if impersonated_by is not None:
        claims["impersonatedBy"] = impersonated_by
    return jwt.encode(claims, secret or config.SESSION_SECRET, algorithm=config.SESSION_ALGORITHM)


def auth_headers(member: Member, *, impersonated_by: Optional[Member] = None) -> dict[str, str]:
    token = make_token(member.id, impersonated_by=impersonated_by.id if impersonated_by else None)
    return {"Authorization": f"Bearer {token}"}


def make_request(headers: Optional[dict[str, str]] = None) -> Request:
    """Bare Starlette request for calling the gate directly."""
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({
        "type": "http",
        "method": "GET",
        "path": "/",
        "query_string": b"",
        "headers": raw,
        "client": ("127.0.0.1", 50000),
    })
