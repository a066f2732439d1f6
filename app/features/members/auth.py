"""
Session token verification.

Tokens are issued by the identity service; this module only verifies them.
"""
from dataclasses import dataclass
from typing import Optional

import jwt

from app.core import config
from app.features.permissions.errors import Unauthenticated
from app.utils import get_logger


log = get_logger(__name__)

MEMBER_CLAIM = "memberId"
IMPERSONATOR_CLAIM = "impersonatedBy"


@dataclass(frozen=True)
class SessionClaims:
    member_id: str
    impersonated_by: Optional[str] = None


def verify_session_token(token: str) -> SessionClaims:
    """
    Verify a session JWT and return its claims.

    Args:
        token: JWT from the Authorization header

    Returns:
        The member id and, for "view as" sessions, the operator's member id

    Raises:
        Unauthenticated: If no secret is configured, or the token is invalid or expired
    """
    if not config.SESSION_SECRET:
        log.error("SESSION_SECRET is not configured; rejecting all session tokens")
        raise Unauthenticated()

    try:
        payload = jwt.decode(
            token,
            config.SESSION_SECRET,
            algorithms=[config.SESSION_ALGORITHM],
            options={"require": ["exp"]},
        )
    except jwt.ExpiredSignatureError:
        log.info("Rejected expired session token")
        raise Unauthenticated(message="Your session has expired. Please sign in again.")
    except jwt.InvalidTokenError as e:
        log.info("Rejected invalid session token: %s", e)
        raise Unauthenticated()

    member_id = payload.get(MEMBER_CLAIM)
    if not member_id or not isinstance(member_id, str):
        log.info("Session token without %s claim", MEMBER_CLAIM)
        raise Unauthenticated()

    impersonated_by = payload.get(IMPERSONATOR_CLAIM)
    if impersonated_by is not None and not isinstance(impersonated_by, str):
        raise Unauthenticated()

    return SessionClaims(member_id=member_id, impersonated_by=impersonated_by)
