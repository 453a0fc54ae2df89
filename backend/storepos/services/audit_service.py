# Overview: Append-only audit trail for sale, stock and report events.

from __future__ import annotations

from ..extensions import db
from ..models import AuditLog
from ..time_utils import utcnow


def append_audit_event(
    *,
    action: str,
    entity_type: str,
    entity_id,
    actor_user_id: int | None = None,
    payload: dict | None = None,
) -> AuditLog:
    """
    Add an audit event to the current transaction.

    Does not commit: the event lands or disappears together with the change
    it describes.
    """
    event = AuditLog(
        actor_user_id=actor_user_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        payload=payload,
        occurred_at=utcnow(),
    )
    db.session.add(event)
    return event


def list_audit_events(entity_type: str | None = None, entity_id=None, limit: int = 100) -> list[AuditLog]:
    q = db.session.query(AuditLog)
    if entity_type:
        q = q.filter(AuditLog.entity_type == entity_type)
    if entity_id is not None:
        q = q.filter(AuditLog.entity_id == str(entity_id))
    return q.order_by(AuditLog.id.desc()).limit(limit).all()
