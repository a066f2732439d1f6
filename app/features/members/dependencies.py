"""
Session resolution: request -> Actor.
"""
from fastapi import Request
from fastapi.security import HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.members.auth import verify_session_token
from app.features.members.models import Member
from app.features.permissions.catalog import is_full_admin
from app.features.permissions.errors import Unauthenticated
from app.features.permissions.schemas import Actor
from app.utils import get_logger


log = get_logger(__name__)

# auto_error=False: a missing header must come back as our 401, not a
# framework-generated response.
security = HTTPBearer(auto_error=False)


async def _load_active_member(db: AsyncSession, member_id: str) -> Member | None:
    result = await db.execute(select(Member).where(Member.id == member_id))
    member = result.scalar_one_or_none()
    if member is None or not member.is_active:
        return None
    return member


async def resolve_actor(request: Request, db: AsyncSession) -> Actor:
    """
    Resolve the session attached to ``request`` into an Actor.

    This dependency:
    1. Extracts the JWT from the Authorization header
    2. Verifies it against the configured session secret
    3. Loads the member (must exist and be active)
    4. For "view as" sessions, checks the operator is an active full admin

    Raises:
        Unauthenticated: For any missing or invalid session
    """
    credentials = await security(request)
    if credentials is None or not credentials.credentials:
        raise Unauthenticated()

    claims = verify_session_token(credentials.credentials)

    member = await _load_active_member(db, claims.member_id)
    if member is None:
        log.info("Session for unknown or inactive member %s", claims.member_id)
        raise Unauthenticated()

    if claims.impersonated_by is not None:
        operator = await _load_active_member(db, claims.impersonated_by)
        if operator is None or not is_full_admin(operator.global_role):
            log.warning(
                "Rejected impersonation session: operator %s may not view as %s",
                claims.impersonated_by,
                member.id,
            )
            raise Unauthenticated()

    return Actor(
        id=member.id,
        email=member.email,
        role=member.role,
        raw_role=member.global_role,
        impersonated_by=claims.impersonated_by,
    )


def get_authorization_header(request: Request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"
