"""
Pydantic schemas for committee and role-assignment requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, Field


class CommitteeResponse(BaseModel):
    """Committee summary."""
    id: str
    name: str
    description: str | None = None
    is_active: bool

    model_config = {"from_attributes": True}


class DelegationScopeResponse(BaseModel):
    """Where the caller may currently create role assignments."""
    member_id: str
    role: str | None = None
    can_assign_roles: bool
    is_global: bool
    committee_ids: list[str] = []


class RoleAssignmentCreate(BaseModel):
    """Schema for assigning a member to a role inside a committee."""
    member_id: str = Field(..., min_length=1, max_length=26)
    role: str = Field(..., min_length=1, max_length=50, description="Role to grant, e.g. 'event-chair'")
    start_date: datetime | None = Field(None, description="Defaults to now")


class RoleAssignmentEnd(BaseModel):
    """Schema for closing an open assignment."""
    end_date: datetime | None = Field(None, description="Defaults to now")


class RoleAssignmentResponse(BaseModel):
    """Schema for role-assignment responses."""
    id: str
    member_id: str
    committee_id: str
    role: str
    start_date: datetime
    end_date: datetime | None = None
    assigned_by_id: str | None = None

    model_config = {"from_attributes": True}
