# Overview: Append-only audit ledger written alongside every stock and workflow change.

from __future__ import annotations

import json
from typing import Optional
from datetime import datetime

from ..extensions import db
from ..models import LedgerEvent
"""
Audit Ledger Invariants

- Append-only: no updates or deletes of existing events.
- No domain/business logic in the ledger itself.
- Events are written inside the same DB transaction as the change they record,
  so a rolled-back posting leaves no trace here.
- occurred_at is business time; created_at is system time (DB default).
"""


def append_ledger_event(
    *,
    event_type: str,
    event_category: str,
    entity_type: str,
    entity_id: int,
    location_id: int | None = None,
    actor_user_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
) -> LedgerEvent:
    """Append one audit event (flushed, not committed)."""
    ev = LedgerEvent(
        location_id=location_id,
        event_type=event_type,
        event_category=event_category,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        note=note[:255] if note else None,
        payload=json.dumps(payload, default=str, sort_keys=True) if payload is not None else None,
    )
    if occurred_at is not None:
        ev.occurred_at = occurred_at
    db.session.add(ev)
    db.session.flush()
    return ev


def list_ledger_events(
    *,
    location_id: int | None = None,
    location_ids: set[int] | None = None,
    entity_type: str | None = None,
    entity_id: int | None = None,
    event_category: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[LedgerEvent], int]:
    query = db.session.query(LedgerEvent)
    if location_id:
        query = query.filter(LedgerEvent.location_id == location_id)
    if location_ids is not None:
        query = query.filter(LedgerEvent.location_id.in_(location_ids or {-1}))
    if entity_type:
        query = query.filter(LedgerEvent.entity_type == entity_type)
    if entity_id:
        query = query.filter(LedgerEvent.entity_id == entity_id)
    if event_category:
        query = query.filter(LedgerEvent.event_category == event_category)

    total = query.count()
    events = (
        query.order_by(LedgerEvent.occurred_at.desc(), LedgerEvent.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return events, total
