"""
Pydantic schemas for event-related requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, Field, field_validator

from app.features.events.models import EventStatus


class EventResponse(BaseModel):
    """Schema for event responses."""
    id: str
    title: str
    description: str | None = None
    location: str | None = None
    status: str
    chair_id: str | None = None
    committee_id: str | None = None
    start_time: datetime
    end_time: datetime | None = None

    model_config = {"from_attributes": True}


class EventUpdate(BaseModel):
    """Schema for updating event content. Status changes go through /status."""
    title: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = Field(None, max_length=10000)
    location: str | None = Field(None, max_length=255)
    start_time: datetime | None = None
    end_time: datetime | None = None

    @field_validator("title", "start_time")
    @classmethod
    def not_null(cls, value):
        # Omit the field to leave it unchanged; the column is NOT NULL.
        if value is None:
            raise ValueError("may not be null")
        return value


class EventStatusUpdate(BaseModel):
    """Schema for moving an event to another lifecycle state."""
    status: EventStatus


class ActionDecision(BaseModel):
    allowed: bool
    reason: str


class EventAccessResponse(BaseModel):
    """What the caller may do with one event, for deciding which controls to show."""
    event_id: str
    status: str
    actions: dict[str, ActionDecision]
    transitions: list[str] = []
