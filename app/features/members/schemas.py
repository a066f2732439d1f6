"""
Pydantic schemas for member-related responses.
"""
from datetime import datetime
from pydantic import BaseModel


class MemberPublic(BaseModel):
    """Member directory entry."""
    id: str
    name: str
    email: str
    global_role: str
    is_active: bool

    model_config = {"from_attributes": True}


class MemberMe(BaseModel):
    """The calling member, with the capabilities the session currently grants."""
    id: str
    name: str
    email: str
    role: str | None = None
    is_impersonating: bool = False
    impersonated_by: str | None = None
    capabilities: list[str] = []
    can_assign_roles: bool = False
    last_login_at: datetime | None = None
