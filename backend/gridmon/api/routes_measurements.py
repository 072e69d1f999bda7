"""
routes_measurements.py

Purpose:
  Measurement ingestion feeding the threshold alarm pipeline.

Endpoints:
  - **POST /measurements**: One reading object or a list of them. Each item
    is processed independently; the response reports successes, failures
    and the first 10 item errors.
  - **GET /measurements/{element_id}/latest**: Last mirrored reading (60 s)
    plus the element's live threshold alarms (5 min).
"""
from __future__ import annotations

from typing import List, Union

from fastapi import APIRouter, Depends

from gridmon.deps import get_alarm_evaluator
from gridmon.schemas.measurements import BatchReport, LatestMeasurements, MeasurementIn
from gridmon.services.alarm_evaluator import AlarmEvaluator

router = APIRouter()


@router.post("", response_model=BatchReport)
def submit_measurements(
    body: Union[MeasurementIn, List[MeasurementIn]],
    evaluator: AlarmEvaluator = Depends(get_alarm_evaluator),
) -> BatchReport:
    items = body if isinstance(body, list) else [body]
    return evaluator.process_batch(items)


@router.get("/{element_id}/latest", response_model=LatestMeasurements)
def latest_measurements(
    element_id: str,
    evaluator: AlarmEvaluator = Depends(get_alarm_evaluator),
) -> LatestMeasurements:
    return LatestMeasurements(**evaluator.latest(element_id))
