from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from ledger.models import AuditActorType, AuditLog


def record_audit(
    db: Session,
    *,
    actor_type: AuditActorType,
    actor_id: str,
    action: str,
    entity_type: str,
    entity_id: int | str | None = None,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
    success: bool = True,
) -> AuditLog:
    """Stage an audit row in the caller's transaction.

    The row is flushed but not committed, so it lands in the same commit as
    the ledger change it describes and disappears with it on rollback.
    """
    payload = dict(details or {})
    if request_id is not None:
        payload["request_id"] = request_id

    entry = AuditLog(
        ts_utc=datetime.now(timezone.utc),
        actor_type=actor_type,
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=None if entity_id is None else str(entity_id),
        success=success,
        details=payload,
    )
    db.add(entry)
    db.flush()
    return entry
