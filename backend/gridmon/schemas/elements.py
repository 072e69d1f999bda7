from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from gridmon.models.domain import ElementStatus, ElementType, GridElement, LinePathPoint


class ElementCreate(BaseModel):
    element_type: ElementType
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    status: ElementStatus = ElementStatus.ACTIVE
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    properties: Dict[str, Any] = Field(default_factory=dict)
    # Lines only: initial route, at least two points
    path: Optional[List[LinePathPoint]] = None


class ElementUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    status: Optional[ElementStatus] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    properties: Optional[Dict[str, Any]] = None


class ElementOut(BaseModel):
    id: str
    element_type: ElementType
    name: str
    description: Optional[str] = None
    status: ElementStatus
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    properties: Dict[str, Any]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_element(cls, e: GridElement) -> "ElementOut":
        return cls(**e.model_dump(exclude={"lifecycle", "deleted_at"}))


class ElementList(BaseModel):
    count: int
    elements: List[ElementOut]
