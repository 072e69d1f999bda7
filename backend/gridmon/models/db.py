from typing import Any, Dict, Optional
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlalchemy.types import TypeDecorator
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, SQLModel, create_engine

from gridmon.models.domain import utcnow

# ============================================================
# COLUMN TYPES
# ============================================================

class UTCDateTime(TypeDecorator):
    """
    Stored as naive UTC, returned as aware UTC. Naive inputs are taken as UTC.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None or value.tzinfo is None:
            return value
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# ============================================================
# DB MODELS
# ============================================================

class GridElementRecord(SQLModel, table=True):
    __tablename__ = "grid_elements"

    id: str = Field(primary_key=True)
    element_type: str = Field(index=True)
    name: str = Field(index=True)
    description: Optional[str] = None

    latitude: Optional[float] = None
    longitude: Optional[float] = None

    status: str = Field(default="active", index=True)
    properties: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))

    # Soft delete: rows are never erased
    lifecycle: str = Field(default="live", index=True)
    deleted_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)

    created_at: datetime = Field(default_factory=utcnow, index=True, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class ConnectionRecord(SQLModel, table=True):
    __tablename__ = "network_connections"
    # One row per unordered endpoint pair
    __table_args__ = (UniqueConstraint("pair_low", "pair_high", name="uq_connection_pair"),)

    id: str = Field(primary_key=True)
    from_element_id: str = Field(index=True)
    to_element_id: str = Field(index=True)

    pair_low: str
    pair_high: str

    connection_type: str = "electrical"
    is_connected: bool = Field(default=True, index=True)

    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class LinePointRecord(SQLModel, table=True):
    __tablename__ = "line_coordinates"
    __table_args__ = (UniqueConstraint("line_id", "sequence_order", name="uq_line_sequence"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    line_id: str = Field(index=True)
    sequence_order: int

    latitude: float
    longitude: float
    elevation: Optional[float] = None

    point_type: str = "intermediate"
    description: Optional[str] = None


class EventRecord(SQLModel, table=True):
    __tablename__ = "events"

    id: str = Field(primary_key=True)
    element_id: str = Field(index=True)

    event_type: str = Field(index=True)
    severity: str = Field(index=True)
    category: Optional[str] = None
    description: Optional[str] = None
    parameters: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))

    status: str = Field(default="active", index=True)
    created_at: datetime = Field(default_factory=utcnow, index=True, sa_type=UTCDateTime)

    acknowledged_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    acknowledged_by: Optional[str] = None
    resolved_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    resolved_by: Optional[str] = None

# ============================================================
# SETUP
# ============================================================

def make_engine(database_url: str) -> Engine:
    connect_args = {}
    kwargs: Dict[str, Any] = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if ":memory:" in database_url or database_url == "sqlite://":
            # Single shared connection so every session sees the same database
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, echo=False, connect_args=connect_args, **kwargs)


def create_db_and_tables(engine: Engine) -> None:
    SQLModel.metadata.create_all(engine)
