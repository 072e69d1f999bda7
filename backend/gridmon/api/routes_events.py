"""
routes_events.py

Purpose:
  Operator surface over events (alarms) and their lifecycle.

Endpoints:
  - **GET /events**: Paginated listing; active first, then by severity,
    newest first. Deleted events only when `status=deleted` is asked for.
  - **POST /events**: Manual event (default severity medium).
  - **GET /events/active**: Open high/critical events from the cache mirror.
  - **GET /events/stream**: Same list pushed over SSE every few seconds.
  - **GET /events/{id}**: Single event with element details.
  - **PUT /events/{id}**: `action` acknowledge | resolve, optional `status` /
    `severity` override. Reports "No changes made" when nothing applied.
  - **DELETE /events/{id}**: Only resolved events can be deleted.

Actor:
  Operator actions are attributed to the `X-Actor-Id` header ("system" when
  absent).
"""
from __future__ import annotations

import asyncio
import json
from datetime import datetime
from typing import Dict, Iterable, Optional

from fastapi import APIRouter, Depends, Header, Query, status
from sse_starlette.sse import EventSourceResponse
from starlette.concurrency import run_in_threadpool

from gridmon.deps import get_event_lifecycle, get_store
from gridmon.models.domain import Event, GridElement
from gridmon.schemas.events import (
    ActiveAlarms,
    EventActionResult,
    EventCreate,
    EventDeleted,
    EventList,
    EventOut,
    EventUpdate,
    Pagination,
)
from gridmon.services.event_lifecycle import MAX_PAGE_LIMIT, EventLifecycle
from gridmon.services.store import GridStore

router = APIRouter()

STREAM_INTERVAL_S = 5.0


def _elements_for(store: GridStore, events: Iterable[Event]) -> Dict[str, GridElement]:
    ids = sorted({e.element_id for e in events})
    return store.get_elements(ids, include_deleted=True) if ids else {}


def _out(store: GridStore, event: Event) -> EventOut:
    return EventOut.from_event(event, _elements_for(store, [event]).get(event.element_id))


@router.get("", response_model=EventList)
def list_events(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=MAX_PAGE_LIMIT),
    event_status: Optional[str] = Query(None, alias="status"),
    severity: Optional[str] = Query(None),
    event_type: Optional[str] = Query(None),
    element_id: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    lifecycle: EventLifecycle = Depends(get_event_lifecycle),
    store: GridStore = Depends(get_store),
) -> EventList:
    events, pagination = lifecycle.list(
        status=event_status,
        severity=severity,
        event_type=event_type,
        element_id=element_id,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    elements = _elements_for(store, events)
    return EventList(
        events=[EventOut.from_event(e, elements.get(e.element_id)) for e in events],
        pagination=Pagination(**pagination),
    )


@router.post("", response_model=EventOut, status_code=status.HTTP_201_CREATED)
def create_event(
    body: EventCreate,
    lifecycle: EventLifecycle = Depends(get_event_lifecycle),
    store: GridStore = Depends(get_store),
) -> EventOut:
    event = lifecycle.create(
        element_id=body.element_id,
        severity=body.severity,
        category=body.category,
        description=body.description,
        parameters=body.parameters,
        event_type=body.event_type,
    )
    return _out(store, event)


@router.get("/active", response_model=ActiveAlarms)
def active_events(lifecycle: EventLifecycle = Depends(get_event_lifecycle)) -> ActiveAlarms:
    events = lifecycle.active_alarms()
    return ActiveAlarms(count=len(events), events=events)


async def active_alarm_frames(lifecycle: EventLifecycle, interval_s: float = STREAM_INTERVAL_S):
    while True:
        # redis calls block; keep them off the event loop
        events = await run_in_threadpool(lifecycle.active_alarms)
        yield {"event": "active_alarms", "data": json.dumps({"count": len(events), "events": events})}
        await asyncio.sleep(interval_s)


@router.get("/stream", response_class=EventSourceResponse)
async def stream_active_events(lifecycle: EventLifecycle = Depends(get_event_lifecycle)):
    """
    Streams the active high/critical alarm list every few seconds (SSE).
    """
    return EventSourceResponse(active_alarm_frames(lifecycle))


@router.get("/{event_id}", response_model=EventOut)
def get_event(
    event_id: str,
    lifecycle: EventLifecycle = Depends(get_event_lifecycle),
    store: GridStore = Depends(get_store),
) -> EventOut:
    return _out(store, lifecycle.get(event_id))


@router.put("/{event_id}", response_model=EventActionResult)
def update_event(
    event_id: str,
    body: EventUpdate,
    x_actor_id: Optional[str] = Header(None),
    lifecycle: EventLifecycle = Depends(get_event_lifecycle),
    store: GridStore = Depends(get_store),
) -> EventActionResult:
    result = lifecycle.update(
        event_id,
        actor=x_actor_id or "system",
        action=body.action,
        notes=body.resolution_notes,
        status=body.status,
        severity=body.severity,
    )
    return EventActionResult(message=result.message, changed=result.changed, event=_out(store, result.event))


@router.delete("/{event_id}", response_model=EventDeleted)
def delete_event(event_id: str, lifecycle: EventLifecycle = Depends(get_event_lifecycle)) -> EventDeleted:
    event = lifecycle.delete(event_id)
    return EventDeleted(id=event.id)
