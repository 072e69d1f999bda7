from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from gridmon.models.domain import Event, EventStatus, GridElement, Severity, utcnow


class EventCreate(BaseModel):
    element_id: str
    event_type: str = "alarm"
    severity: Severity = Severity.MEDIUM
    category: Optional[str] = None
    description: Optional[str] = None
    parameters: Dict[str, Any] = Field(default_factory=dict)


class EventUpdate(BaseModel):
    # Plain strings; EventLifecycle validates them
    action: Optional[str] = None
    resolution_notes: Optional[str] = None
    status: Optional[str] = None
    severity: Optional[str] = None


class EventOut(BaseModel):
    id: str
    element_id: str
    element_name: Optional[str] = None
    element_type: Optional[str] = None
    event_type: str
    severity: Severity
    category: Optional[str] = None
    description: Optional[str] = None
    parameters: Dict[str, Any]
    status: EventStatus
    created_at: datetime
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    duration_minutes: float

    @classmethod
    def from_event(cls, e: Event, element: Optional[GridElement] = None) -> "EventOut":
        end = e.resolved_at or utcnow()
        return cls(
            **e.model_dump(),
            element_name=element.name if element else None,
            element_type=element.element_type.value if element else None,
            duration_minutes=round(max(0.0, (end - e.created_at).total_seconds() / 60.0), 3),
        )


class EventActionResult(BaseModel):
    message: str
    changed: bool
    event: EventOut


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int
    has_next: bool
    has_prev: bool


class EventList(BaseModel):
    events: List[EventOut]
    pagination: Pagination


class ActiveAlarms(BaseModel):
    count: int
    events: List[Dict[str, Any]]


class EventDeleted(BaseModel):
    id: str
    message: str = "Event deleted successfully"
