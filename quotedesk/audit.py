"""
quotedesk/audit.py

Audit logging helper utilities.

Goals:
- Capture WHO did WHAT to WHICH entity, with BEFORE/AFTER snapshots.
- Store username snapshot to preserve identity even if username changes later.
- Quote status changes recorded here are the quote's status history.

IMPORTANT:
- This helper ADDS AuditLog entries to the current SQLAlchemy session.
  The caller controls transaction boundaries (commit/rollback), so an audit entry is
  only persisted together with the change it describes.
- Works outside a request (CLI, seeding, pollers): user and IP are then left empty.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from flask import has_request_context, request
from flask_login import current_user

from .extensions import db
from .models import AuditLog


def _safe_str(value: Any) -> Optional[str]:
    """
    Convert a value to a stable string representation suitable for JSON and DB storage.

    - For Decimal/datetime/etc: str(value) is typically safe.
    - For None: return None.
    - For lists/dicts (JSON columns): keep them JSON-encoded.
    """
    if value is None:
        return None
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False, sort_keys=True)
    return str(value)


def serialize_model(instance: Any) -> Dict[str, Optional[str]]:
    """
    Convert a SQLAlchemy model instance to a dict snapshot based on table columns.

    Captures only scalar column values (not relationships).
    """
    data: Dict[str, Optional[str]] = {}
    for column in instance.__table__.columns:
        data[column.name] = _safe_str(getattr(instance, column.name))
    return data


def _actor() -> tuple[Optional[int], Optional[str], Optional[str]]:
    if not has_request_context():
        return None, None, None
    if current_user.is_authenticated:
        return current_user.id, current_user.username, request.remote_addr
    return None, None, request.remote_addr


def log_action(
    entity: Any,
    action: str,
    *,
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """
    Add an AuditLog entry to the current db session.

    Parameters:
        entity: SQLAlchemy model instance with .id (flush first for new rows)
        action: CREATE / UPDATE / DELETE / ACCEPT / REJECT / SUBMIT
        before: dict snapshot (optional)
        after: dict snapshot (optional)
    """
    entity_id = getattr(entity, "id", None)
    if entity_id is None:
        raise ValueError("log_action entity must have an 'id' attribute (after flush).")

    user_id, username, ip_address = _actor()

    entry = AuditLog(
        user_id=user_id,
        username_snapshot=username,
        entity_type=entity.__class__.__name__,
        entity_id=int(entity_id),
        action=str(action),
        before_data=json.dumps(before, ensure_ascii=False) if before else None,
        after_data=json.dumps(after, ensure_ascii=False) if after else None,
        ip_address=ip_address,
    )
    db.session.add(entry)
    return entry


def audit_entry_to_dict(entry: AuditLog) -> dict:
    """Render an audit entry, decoding snapshots and extracting the status change."""
    before = json.loads(entry.before_data) if entry.before_data else None
    after = json.loads(entry.after_data) if entry.after_data else None
    return {
        "id": entry.id,
        "action": entry.action,
        "entity_type": entry.entity_type,
        "entity_id": entry.entity_id,
        "from_status": (before or {}).get("status"),
        "to_status": (after or {}).get("status"),
        "changed_by": entry.username_snapshot,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }
