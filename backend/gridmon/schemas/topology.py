from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from gridmon.models.domain import Connection, LinePathPoint


class ConnectionRequest(BaseModel):
    from_element_id: str
    to_element_id: str
    connection_type: str = "electrical"
    is_connected: bool = True


class ConnectionOut(BaseModel):
    id: str
    from_element_id: str
    to_element_id: str
    connection_type: str
    is_connected: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_connection(cls, c: Connection) -> "ConnectionOut":
        return cls(**c.model_dump())


class ConnectionResult(BaseModel):
    message: str
    created: bool
    connection: ConnectionOut


class TopologyResponse(BaseModel):
    format: str
    data: Any
    metadata: Dict[str, Any]


class LinePointsRequest(BaseModel):
    coordinates: List[LinePathPoint] = Field(..., min_length=2)


class LinePointsResponse(BaseModel):
    line_id: str
    length_km: float
    count: int
    coordinates: List[LinePathPoint]
