"""
alarm_evaluator.py

Purpose:
  Turns incoming measurements into threshold events.

Flow (per batch item):
  1. Resolve the live element and check metric names/ranges (either
     failing is an item failure; the batch continues).
  2. Mirror the reading to `measurements:{element_id}:latest` (60 s).
  3. Evaluate every metric against the rule set; each violation becomes an
     active `alarm` event and refreshes `alarm:{element_id}:{metric}` (5 min).

Notes:
  - Items are independent. Repeated violations create repeated events;
    there is no deduplication window.
  - Only the first few item errors are returned to the caller; the full list
    is logged.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from gridmon import errors
from gridmon.models.domain import ALARM_SEVERITIES, Event, GridElement, Violation, utcnow
from gridmon.schemas.measurements import BatchError, BatchReport, MeasurementIn, check_metrics
from gridmon.services.cache import Cache, alarm_key, latest_measurement_key
from gridmon.services.event_lifecycle import THRESHOLD_CATEGORY, EventLifecycle
from gridmon.services.store import GridStore
from gridmon.services.thresholds import ThresholdRuleSet

logger = logging.getLogger(__name__)

MAX_REPORTED_ERRORS = 10


def describe_violation(v: Violation) -> str:
    word = "below minimum" if v.bound_kind == "min" else "above maximum"
    op = "<" if v.bound_kind == "min" else ">"
    if v.normalized_value != v.value:
        return f"{v.metric} {word}: {v.normalized_value:.4g} pu ({v.value:g}) {op} {v.bound:g}"
    return f"{v.metric} {word}: {v.value:g} {op} {v.bound:g}"


class AlarmEvaluator:
    def __init__(
        self,
        store: GridStore,
        cache: Cache,
        rules: ThresholdRuleSet,
        lifecycle: EventLifecycle,
        alarm_ttl_s: int = 300,
        latest_ttl_s: int = 60,
    ):
        self.store = store
        self.cache = cache
        self.rules = rules
        self.lifecycle = lifecycle
        self.alarm_ttl_s = alarm_ttl_s
        self.latest_ttl_s = latest_ttl_s

    def evaluate(self, element: GridElement, metrics: Dict[str, float]) -> List[Violation]:
        out: List[Violation] = []
        etype = element.element_type.value
        for metric, value in metrics.items():
            ref = self.rules.reference_for(etype, metric, element.properties)
            v = self.rules.evaluate(etype, metric, value, ref)
            if v is not None:
                out.append(v)
        return out

    def process(
        self,
        element: GridElement,
        metrics: Dict[str, float],
        timestamp: Optional[datetime] = None,
    ) -> List[Event]:
        ts = (timestamp or utcnow()).isoformat()
        events: List[Event] = []
        for v in self.evaluate(element, metrics):
            threshold = {"min": v.minimum, "max": v.maximum}
            description = describe_violation(v)
            event = self.lifecycle.record(
                element,
                v.severity,
                category=THRESHOLD_CATEGORY,
                description=description,
                parameters={
                    "metric": v.metric,
                    "value": v.value,
                    "normalized_value": v.normalized_value,
                    "threshold": threshold,
                    "bound": v.bound,
                    "timestamp": ts,
                },
                event_type="alarm",
            )
            events.append(event)

            if v.severity in ALARM_SEVERITIES:
                self.cache.set(
                    alarm_key(element.id, v.metric),
                    {
                        "element_id": element.id,
                        "metric": v.metric,
                        "value": v.value,
                        "normalized_value": v.normalized_value,
                        "threshold": threshold,
                        "severity": v.severity.value,
                        "description": description,
                        "event_id": event.id,
                        "timestamp": ts,
                    },
                    ttl_s=self.alarm_ttl_s,
                )
        return events

    def _mirror_latest(self, element: GridElement, item: MeasurementIn) -> None:
        payload: Dict[str, Any] = dict(item.measurements)
        payload.update(
            {
                "timestamp": (item.timestamp or utcnow()).isoformat(),
                "element_type": element.element_type.value,
                "status": element.status.value,
            }
        )
        self.cache.set(latest_measurement_key(element.id), payload, ttl_s=self.latest_ttl_s)

    def process_batch(self, items: Sequence[MeasurementIn]) -> BatchReport:
        report = BatchReport()
        all_errors: List[BatchError] = []

        for item in items:
            try:
                element = self.store.get_element(item.element_id)
                if element is None:
                    raise errors.NotFound("Element")
                check_metrics(item.measurements)
                self._mirror_latest(element, item)
                report.events_created += len(self.process(element, item.measurements, item.timestamp))
                report.successful += 1
            except errors.GridError as exc:
                report.failed += 1
                all_errors.append(BatchError(element_id=item.element_id, error=exc.message))

        if all_errors:
            logger.warning(
                "Measurement batch: %d ok, %d failed: %s",
                report.successful,
                report.failed,
                [e.model_dump() for e in all_errors],
            )
        report.errors = all_errors[:MAX_REPORTED_ERRORS]
        return report

    def latest(self, element_id: str) -> Dict[str, Any]:
        if self.store.get_element(element_id) is None:
            raise errors.NotFound("Element")
        alarms = []
        for key in self.cache.keys(alarm_key(element_id, "*")):
            payload = self.cache.get(key)
            if payload:
                alarms.append(payload)
        alarms.sort(key=lambda a: a.get("metric", ""))
        return {
            "element_id": element_id,
            "measurements": self.cache.get(latest_measurement_key(element_id)),
            "alarms": alarms,
        }
