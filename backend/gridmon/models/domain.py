from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from gridmon import errors


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================
# 0) ENUMS (Type Safety)
# ============================================================

class ElementType(str, Enum):
    BUS = "bus"
    GENERATOR = "generator"
    LOAD = "load"
    TRANSFORMER = "transformer"
    LINE = "line"

class ElementStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    MAINTENANCE = "maintenance"
    FAULT = "fault"

class Lifecycle(str, Enum):
    LIVE = "live"
    DELETED = "deleted"

class BusType(str, Enum):
    SLACK = "slack"
    PV = "pv"
    PQ = "pq"

class PointType(str, Enum):
    START = "start"
    END = "end"
    INTERMEDIATE = "intermediate"
    TOWER = "tower"
    JUNCTION = "junction"

class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

class EventStatus(str, Enum):
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    DELETED = "deleted"


# Bus-star rule: a bus may attach to these; they may attach only to a bus.
BUS_NEIGHBOR_TYPES = frozenset(
    {ElementType.LOAD, ElementType.GENERATOR, ElementType.TRANSFORMER, ElementType.LINE}
)

# Listing order: lower rank sorts first.
SEVERITY_RANK: Dict[Severity, int] = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
}

# Position along the lifecycle chain; transitions never decrease it.
STATUS_STAGE: Dict[EventStatus, int] = {
    EventStatus.ACTIVE: 0,
    EventStatus.ACKNOWLEDGED: 1,
    EventStatus.RESOLVED: 2,
    EventStatus.DELETED: 3,
}

ALARM_SEVERITIES = frozenset({Severity.HIGH, Severity.CRITICAL})
OPEN_EVENT_STATUSES = (EventStatus.ACTIVE, EventStatus.ACKNOWLEDGED)
OVERRIDABLE_STATUSES = (EventStatus.ACTIVE, EventStatus.ACKNOWLEDGED, EventStatus.RESOLVED)


# ============================================================
# 1) TYPE-SPECIFIC PROPERTIES
# ============================================================

class _Properties(BaseModel):
    # Extra descriptive attributes (manufacturer data, ratings...) pass through.
    model_config = ConfigDict(extra="allow")


class BusProperties(_Properties):
    voltage_level: float = Field(..., gt=0)
    bus_type: BusType = BusType.PQ
    substation_id: Optional[str] = None
    nominal_voltage: Optional[float] = Field(None, gt=0)


class GeneratorProperties(_Properties):
    generation_type: Optional[Literal["solar", "wind", "hydro", "thermal", "nuclear", "battery"]] = None
    rated_capacity: float = Field(..., gt=0)
    min_capacity: float = Field(..., ge=0)
    max_capacity: float = Field(..., gt=0)
    voltage_level: float = Field(..., gt=0)

    @model_validator(mode="after")
    def _capacity_order(self) -> "GeneratorProperties":
        if self.min_capacity > self.max_capacity:
            raise ValueError("min_capacity must be less than or equal to max_capacity")
        if self.rated_capacity > self.max_capacity:
            raise ValueError("rated_capacity must be less than or equal to max_capacity")
        return self


class LoadProperties(_Properties):
    rated_power: float = Field(..., gt=0)
    voltage_level: float = Field(..., gt=0)
    priority: Literal["critical", "high", "medium", "low"] = "medium"
    load_type: Optional[Literal["residential", "commercial", "industrial"]] = None
    power_factor: Optional[float] = Field(None, ge=0, le=1)


class TransformerProperties(_Properties):
    primary_voltage: float = Field(..., gt=0)
    secondary_voltage: float = Field(..., gt=0)
    rated_power: float = Field(..., gt=0)


class LineProperties(_Properties):
    voltage_level: float = Field(..., gt=0)
    rated_current: Optional[float] = Field(None, gt=0)

    @model_validator(mode="before")
    @classmethod
    def _length_is_derived(cls, data: Any) -> Any:
        if isinstance(data, dict) and "length" in data:
            raise ValueError("length is derived from the line path and cannot be set")
        return data


PROPERTY_MODELS: Dict[ElementType, Type[_Properties]] = {
    ElementType.BUS: BusProperties,
    ElementType.GENERATOR: GeneratorProperties,
    ElementType.LOAD: LoadProperties,
    ElementType.TRANSFORMER: TransformerProperties,
    ElementType.LINE: LineProperties,
}


def validate_properties(element_type: ElementType, properties: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validates type-specific attributes and returns them normalized (enum
    values as plain strings). Raises `errors.ValidationError`.
    """
    model = PROPERTY_MODELS[ElementType(element_type)]
    try:
        parsed = model.model_validate(properties or {})
    except PydanticValidationError as exc:
        details = [
            {
                "path": "properties." + ".".join(str(p) for p in err["loc"]) if err["loc"] else "properties",
                "message": err["msg"],
            }
            for err in exc.errors()
        ]
        raise errors.ValidationError(f"Invalid {ElementType(element_type).value} properties", details) from exc
    return parsed.model_dump(mode="json", exclude_none=True)


# ============================================================
# 2) TOPOLOGY VALUE OBJECTS
# ============================================================

class GridElement(BaseModel):
    id: str
    element_type: ElementType
    name: str
    description: Optional[str] = None
    status: ElementStatus = ElementStatus.ACTIVE
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    properties: Dict[str, Any] = Field(default_factory=dict)
    lifecycle: Lifecycle = Lifecycle.LIVE
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @property
    def is_live(self) -> bool:
        return self.lifecycle == Lifecycle.LIVE

    def voltage_levels(self) -> List[float]:
        if self.element_type == ElementType.TRANSFORMER:
            keys = ("primary_voltage", "secondary_voltage")
        else:
            keys = ("voltage_level",)
        out: List[float] = []
        for k in keys:
            v = self.properties.get(k)
            if v is not None:
                out.append(float(v))
        return out

    def matches_voltage(self, voltage_level: float) -> bool:
        return any(abs(v - voltage_level) < 1e-9 for v in self.voltage_levels())


class Connection(BaseModel):
    id: str
    from_element_id: str
    to_element_id: str
    connection_type: str = "electrical"
    is_connected: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class LinePathPoint(BaseModel):
    sequence_order: int = Field(..., ge=0)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    elevation: Optional[float] = None
    point_type: PointType = PointType.INTERMEDIATE
    description: Optional[str] = None


# ============================================================
# 3) ALARMS & EVENTS
# ============================================================

class Violation(BaseModel):
    metric: str
    value: float
    normalized_value: float
    bound: float
    bound_kind: Literal["min", "max"]
    severity: Severity
    minimum: Optional[float] = None
    maximum: Optional[float] = None


class Event(BaseModel):
    id: str
    element_id: str
    event_type: str = "alarm"
    severity: Severity
    category: Optional[str] = None
    description: Optional[str] = None
    parameters: Dict[str, Any] = Field(default_factory=dict)
    status: EventStatus = EventStatus.ACTIVE
    created_at: datetime
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_EVENT_STATUSES
