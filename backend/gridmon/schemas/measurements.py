from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from gridmon import errors

# Metric names accepted on ingestion, with optional (lo, hi) range checks.
KNOWN_METRICS: Dict[str, Optional[tuple]] = {
    "voltage": None,
    "voltage_a": None,
    "voltage_b": None,
    "voltage_c": None,
    "current": None,
    "current_a": None,
    "current_b": None,
    "current_c": None,
    "active_power": None,
    "reactive_power": None,
    "apparent_power": None,
    "power": None,
    "power_factor": (-1.0, 1.0),
    "frequency": None,
    "temperature": None,
    "humidity": (0.0, 100.0),
    "energy_import": None,
    "energy_export": None,
}


def check_metrics(measurements: Dict[str, float]) -> None:
    """Raises ValidationError for an empty reading, unknown names or out-of-range values."""
    if not measurements:
        raise errors.ValidationError.field("measurements", "At least one measurement is required")
    for name, value in measurements.items():
        if name not in KNOWN_METRICS:
            raise errors.ValidationError.field(f"measurements.{name}", f"Unknown metric '{name}'")
        bounds = KNOWN_METRICS[name]
        if bounds is not None and not (bounds[0] <= value <= bounds[1]):
            raise errors.ValidationError.field(
                f"measurements.{name}", f"{name} must be between {bounds[0]:g} and {bounds[1]:g}"
            )


class MeasurementIn(BaseModel):
    # Metric names and ranges are checked per item by the evaluator
    element_id: str
    timestamp: Optional[datetime] = None
    measurements: Dict[str, float]


class BatchError(BaseModel):
    element_id: str
    error: str


class BatchReport(BaseModel):
    message: str = "Measurements processed"
    successful: int = 0
    failed: int = 0
    events_created: int = 0
    errors: List[BatchError] = Field(default_factory=list)


class LatestMeasurements(BaseModel):
    element_id: str
    measurements: Optional[Dict[str, Any]] = None
    alarms: List[Dict[str, Any]] = Field(default_factory=list)
