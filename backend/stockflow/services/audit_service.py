# Overview: Append-only audit log for workflow lifecycle events.

from __future__ import annotations

import json
from datetime import datetime
from typing import Optional

from ..extensions import db
from ..models import AuditEvent
from ..time_utils import utcnow
"""
Audit log invariants

- Append-only: no updates, no deletes (stockflow/immutability.py).
- Events are written inside the same DB transaction as the change they record.
- occurred_at is business time; created_at is system time (DB default).
- Never counted toward stock. Non-stock return dispositions live here, not in
  the stock ledger, so SUM(ledger quantity_change) == snapshot quantity holds
  over every ledger row.
"""


def append_audit_event(
    *,
    event_type: str,
    entity_type: str,
    entity_id: int,
    document_code: str | None = None,
    actor_user_id: int | None = None,
    product_id: int | None = None,
    warehouse_id: int | None = None,
    quantity: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: dict | str | None = None,
) -> AuditEvent:
    if isinstance(payload, dict):
        payload = json.dumps(payload, sort_keys=True, default=str)

    ev = AuditEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        document_code=document_code,
        actor_user_id=actor_user_id,
        product_id=product_id,
        warehouse_id=warehouse_id,
        quantity=quantity,
        occurred_at=occurred_at or utcnow(),
        note=note,
        payload=payload,
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def list_audit_events(
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    event_type: str | None = None,
    limit: int = 200,
) -> list[AuditEvent]:
    query = db.session.query(AuditEvent)
    if entity_type:
        query = query.filter(AuditEvent.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(AuditEvent.entity_id == entity_id)
    if event_type:
        query = query.filter(AuditEvent.event_type == event_type)
    return query.order_by(AuditEvent.id.asc()).limit(limit).all()
