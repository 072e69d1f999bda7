"""
event_lifecycle.py

Purpose:
  State machine over events (alarms) and the cache mirrors that follow them.

State Chain:
  active -> acknowledged -> resolved -> deleted

  - **acknowledge**: only while `acknowledged_at` is unset and the event is
    open (active/acknowledged). Moves active to acknowledged.
  - **resolve**: only from an open state. Notes are merged into parameters.
  - **delete**: only from resolved. Terminal; hidden from default listings.
  - **status override**: active/acknowledged/resolved only, never backwards.

Concurrency:
  Every transition is a conditional UPDATE on the expected prior state.
  When the precondition no longer holds the call is a no-op reported as
  "No changes made", so two operators acknowledging at once leave exactly one
  acknowledger recorded.

Mirrors:
  - `event:active:{id}` holds open high/critical events (1 h TTL).
  - `alarm:{element_id}:{metric}` is dropped when its threshold event is
    resolved or deleted.
"""
from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from gridmon import errors
from gridmon.models.domain import (
    ALARM_SEVERITIES,
    OPEN_EVENT_STATUSES,
    OVERRIDABLE_STATUSES,
    SEVERITY_RANK,
    STATUS_STAGE,
    Event,
    EventStatus,
    GridElement,
    Severity,
    utcnow,
)
from gridmon.services.cache import EVENT_PATTERN, Cache, alarm_key, event_key
from gridmon.services.store import GridStore

logger = logging.getLogger(__name__)

THRESHOLD_CATEGORY = "threshold_violation"
NO_CHANGES = "No changes made"
VALID_ACTIONS = ("acknowledge", "resolve")
MAX_PAGE_LIMIT = 100

# Listing order: active first, then by severity, newest first.
_ACTIVE_RANK = {EventStatus.ACTIVE: 0}


def _listing_key(e: Event) -> Tuple[int, int]:
    return (_ACTIVE_RANK.get(e.status, 1), SEVERITY_RANK[e.severity])


@dataclass
class ActionResult:
    event: Event
    changed: bool
    message: str


def _parse_severity(value: Any) -> Severity:
    try:
        return Severity(value)
    except ValueError:
        raise errors.ValidationError.field(
            "severity", f"Invalid severity '{value}'. Must be one of: {', '.join(s.value for s in Severity)}"
        ) from None


def _parse_override_status(value: Any) -> EventStatus:
    try:
        status = EventStatus(value)
    except ValueError:
        status = None
    if status not in OVERRIDABLE_STATUSES:
        raise errors.ValidationError.field(
            "status", f"Invalid status '{value}'. Must be one of: {', '.join(s.value for s in OVERRIDABLE_STATUSES)}"
        )
    return status


def _check_forward(current: EventStatus, target: EventStatus) -> None:
    if STATUS_STAGE[target] < STATUS_STAGE[current]:
        raise errors.ValidationError.field(
            "status", f"Cannot move event from {current.value} back to {target.value}"
        )


class EventLifecycle:
    def __init__(self, store: GridStore, cache: Cache, mirror_ttl_s: int = 3600):
        self.store = store
        self.cache = cache
        self.mirror_ttl_s = mirror_ttl_s

    # -----------------------------
    # Mirrors
    # -----------------------------
    def _sync_mirrors(self, event: Event) -> None:
        if event.status in (EventStatus.RESOLVED, EventStatus.DELETED):
            self.cache.delete(event_key(event.id))
            metric = event.parameters.get("metric")
            if event.category == THRESHOLD_CATEGORY and metric:
                key = alarm_key(event.element_id, metric)
                mirror = self.cache.get(key)
                # A newer violation may own the mirror by now
                if mirror is not None and mirror.get("event_id") == event.id:
                    self.cache.delete(key)
        elif event.severity in ALARM_SEVERITIES:
            self.cache.set(event_key(event.id), event.model_dump(mode="json"), ttl_s=self.mirror_ttl_s)
        else:
            self.cache.delete(event_key(event.id))

    # -----------------------------
    # Creation
    # -----------------------------
    def create(
        self,
        element_id: str,
        severity: Severity = Severity.MEDIUM,
        category: Optional[str] = None,
        description: Optional[str] = None,
        parameters: Optional[Dict[str, Any]] = None,
        event_type: str = "alarm",
    ) -> Event:
        element = self.store.get_element(element_id)
        if element is None:
            raise errors.NotFound("Element")
        return self.record(element, _parse_severity(severity), category, description, parameters, event_type)

    def record(
        self,
        element: GridElement,
        severity: Severity,
        category: Optional[str] = None,
        description: Optional[str] = None,
        parameters: Optional[Dict[str, Any]] = None,
        event_type: str = "alarm",
    ) -> Event:
        """Persists an event for an already-resolved element."""
        event = Event(
            id=str(uuid.uuid4()),
            element_id=element.id,
            event_type=event_type or "alarm",
            severity=severity,
            category=category,
            description=description,
            parameters=dict(parameters or {}),
            status=EventStatus.ACTIVE,
            created_at=utcnow(),
        )
        event = self.store.insert_event(event)
        self._sync_mirrors(event)
        logger.info("Event %s created for %s (%s, %s)", event.id, element.id, event.severity.value, category)
        return event

    # -----------------------------
    # Reads
    # -----------------------------
    def get(self, event_id: str) -> Event:
        event = self.store.get_event(event_id)
        if event is None:
            raise errors.NotFound("Event")
        return event

    def list(
        self,
        status: Optional[str] = None,
        severity: Optional[str] = None,
        event_type: Optional[str] = None,
        element_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        page: int = 1,
        limit: int = 50,
    ) -> Tuple[List[Event], Dict[str, Any]]:
        if page < 1:
            raise errors.ValidationError.field("page", "page must be >= 1")
        if limit < 1 or limit > MAX_PAGE_LIMIT:
            raise errors.ValidationError.field("limit", f"limit must be between 1 and {MAX_PAGE_LIMIT}")

        if status:
            try:
                statuses = [EventStatus(status).value]
            except ValueError:
                raise errors.ValidationError.field("status", f"Invalid status '{status}'") from None
        else:
            statuses = [s.value for s in EventStatus if s != EventStatus.DELETED]
        if severity:
            severity = _parse_severity(severity).value

        events = self.store.list_events(
            statuses=statuses,
            severity=severity,
            event_type=event_type,
            element_id=element_id,
            start_date=start_date,
            end_date=end_date,
        )
        # Two stable passes: newest first, then by rank.
        events.sort(key=lambda e: e.created_at, reverse=True)
        events.sort(key=_listing_key)

        total = len(events)
        pages = math.ceil(total / limit) if total else 0
        start = (page - 1) * limit
        pagination = {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": pages,
            "has_next": page < pages,
            "has_prev": page > 1,
        }
        return events[start:start + limit], pagination

    def active_alarms(self) -> List[Dict[str, Any]]:
        out = []
        for key in self.cache.keys(EVENT_PATTERN):
            payload = self.cache.get(key)
            if payload:
                out.append(payload)
        out.sort(key=lambda p: str(p.get("created_at", "")), reverse=True)
        out.sort(key=lambda p: SEVERITY_RANK.get(Severity(p.get("severity", "low")), 3))
        return out

    # -----------------------------
    # Transitions
    # -----------------------------
    def acknowledge(self, event_id: str, actor: str) -> ActionResult:
        current = self.get(event_id)
        updated = self.store.compare_and_set_event(
            event_id,
            {
                "status": EventStatus.ACKNOWLEDGED,
                "acknowledged_at": utcnow(),
                "acknowledged_by": actor,
            },
            expected_statuses=OPEN_EVENT_STATUSES,
            require_unacknowledged=True,
        )
        if updated is None:
            return ActionResult(current, False, NO_CHANGES)
        self._sync_mirrors(updated)
        logger.info("Event %s acknowledged by %s", event_id, actor)
        return ActionResult(updated, True, "Event acknowledged successfully")

    def resolve(self, event_id: str, actor: str, notes: Optional[str] = None) -> ActionResult:
        current = self.get(event_id)
        if current.status not in OPEN_EVENT_STATUSES:
            return ActionResult(current, False, NO_CHANGES)

        changes: Dict[str, Any] = {
            "status": EventStatus.RESOLVED,
            "resolved_at": utcnow(),
            "resolved_by": actor,
        }
        if notes:
            changes["parameters"] = {**current.parameters, "resolution_notes": notes}

        updated = self.store.compare_and_set_event(event_id, changes, expected_statuses=OPEN_EVENT_STATUSES)
        if updated is None:
            return ActionResult(self.get(event_id), False, NO_CHANGES)
        self._sync_mirrors(updated)
        logger.info("Event %s resolved by %s", event_id, actor)
        return ActionResult(updated, True, "Event resolved successfully")

    def set_status(self, event_id: str, status: Any, actor: str = "system") -> ActionResult:
        target = _parse_override_status(status)
        current = self.get(event_id)
        if current.status == target:
            return ActionResult(current, False, NO_CHANGES)
        _check_forward(current.status, target)

        if target == EventStatus.RESOLVED:
            return self.resolve(event_id, actor)

        changes: Dict[str, Any] = {"status": target}
        if current.acknowledged_at is None:
            changes["acknowledged_at"] = utcnow()
            changes["acknowledged_by"] = actor
        updated = self.store.compare_and_set_event(event_id, changes, expected_statuses=[current.status])
        if updated is None:
            return ActionResult(self.get(event_id), False, NO_CHANGES)
        self._sync_mirrors(updated)
        return ActionResult(updated, True, "Event updated successfully")

    def set_severity(self, event_id: str, severity: Any) -> ActionResult:
        target = _parse_severity(severity)
        current = self.get(event_id)
        if current.severity == target or current.status == EventStatus.DELETED:
            return ActionResult(current, False, NO_CHANGES)

        updated = self.store.compare_and_set_event(
            event_id, {"severity": target}, expected_severity=current.severity.value
        )
        if updated is None:
            return ActionResult(self.get(event_id), False, NO_CHANGES)
        self._sync_mirrors(updated)
        logger.info("Event %s severity %s -> %s", event_id, current.severity.value, target.value)
        return ActionResult(updated, True, "Event updated successfully")

    @staticmethod
    def _status_after(event: Event, action: Optional[str]) -> EventStatus:
        if event.status not in OPEN_EVENT_STATUSES:
            return event.status
        if action == "resolve":
            return EventStatus.RESOLVED
        if action == "acknowledge" and event.acknowledged_at is None:
            return EventStatus.ACKNOWLEDGED
        return event.status

    def update(
        self,
        event_id: str,
        actor: str,
        action: Optional[str] = None,
        notes: Optional[str] = None,
        status: Optional[str] = None,
        severity: Optional[str] = None,
    ) -> ActionResult:
        """
        Combined operator update. Values are validated before anything is
        written; steps then run in order action, status, severity.
        """
        if action is not None and action not in VALID_ACTIONS:
            raise errors.ValidationError.field(
                "action", f"Invalid action '{action}'. Must be one of: {', '.join(VALID_ACTIONS)}"
            )
        target = _parse_override_status(status) if status is not None else None
        if severity is not None:
            _parse_severity(severity)

        current = self.get(event_id)
        if target is not None:
            _check_forward(self._status_after(current, action), target)

        result = ActionResult(current, False, NO_CHANGES)
        changed = False

        if action == "acknowledge":
            result = self.acknowledge(event_id, actor)
            changed = changed or result.changed
        elif action == "resolve":
            result = self.resolve(event_id, actor, notes)
            changed = changed or result.changed

        if status is not None:
            result = self.set_status(event_id, status, actor)
            changed = changed or result.changed

        if severity is not None:
            result = self.set_severity(event_id, severity)
            changed = changed or result.changed

        if not changed:
            return ActionResult(result.event, False, NO_CHANGES)
        done = {"acknowledge": "acknowledged", "resolve": "resolved"}.get(action or "", "updated")
        return ActionResult(result.event, True, f"Event {done} successfully")

    def delete(self, event_id: str) -> Event:
        updated = self.store.compare_and_set_event(
            event_id, {"status": EventStatus.DELETED}, expected_statuses=[EventStatus.RESOLVED]
        )
        if updated is None:
            raise errors.NotFound("Event", "Event not found or cannot be deleted")
        self._sync_mirrors(updated)
        logger.info("Event %s deleted", event_id)
        return updated
