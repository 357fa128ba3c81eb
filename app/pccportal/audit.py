from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.pccportal.models import AuditEvent, User

logger = logging.getLogger(__name__)

AUDIT_ACTIONS = (
    "create",
    "update",
    "delete",
    "approve",
    "reject",
    "status_change",
    "flag_toggle",
    "export",
    "login",
    "logout",
    "login_failed",
)

# Allowed keys of the details object, per action.
AUDIT_DETAIL_KEYS: dict[str, frozenset[str]] = {
    "create": frozenset(
        {"reference_number", "email", "requested_role", "title", "date", "name", "event_id", "meet_id", "rating"}
    ),
    "update": frozenset({"changes", "status"}),
    "delete": frozenset({"reason"}),
    "approve": frozenset({"email", "requested_role"}),
    "reject": frozenset({"email", "requested_role"}),
    "status_change": frozenset({"previous_status", "new_status", "reference_number"}),
    "flag_toggle": frozenset({"previous_state", "new_state", "reason"}),
    "export": frozenset({"format", "count"}),
    "login": frozenset({"second_factor"}),
    "logout": frozenset(),
    "login_failed": frozenset({"email", "reason"}),
}


def validate_event(action: str, details: dict[str, Any] | None) -> None:
    if action not in AUDIT_DETAIL_KEYS:
        raise ValueError(f"Unknown audit action: {action!r}")
    if details:
        unknown = set(details) - AUDIT_DETAIL_KEYS[action]
        if unknown:
            raise ValueError(f"Unexpected detail keys for {action}: {', '.join(sorted(unknown))}")


def record_event(
    s: Session,
    *,
    actor: User | None,
    module: str,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    details: dict[str, Any] | None = None,
    notes: str | None = None,
    request_id: str | None = None,
) -> AuditEvent | None:
    """
    Append-only audit event helper.

    The row is written under a SAVEPOINT of the caller's transaction, so it
    commits or rolls back with the change it describes. A rejected or failed
    audit write is logged and dropped; it never undoes that change.
    Returns the event, or None when nothing was recorded.
    """
    try:
        validate_event(action, details)
    except ValueError:
        logger.exception("Audit event rejected (module=%s entity=%s:%s)", module, entity_type, entity_id)
        return None

    rid = request_id
    client_ip = None
    if has_request_context():
        rid = rid or getattr(g, "request_id", None)
        client_ip = request.remote_addr
    ev = AuditEvent(
        created_at=datetime.utcnow(),
        request_id=rid,
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else None,
        actor_role=actor.role if actor else None,
        module=module,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        notes=notes,
        details_json=json.dumps(details, sort_keys=True, default=str) if details else None,
        client_ip=client_ip,
    )
    # Pending changes of the caller flush outside the savepoint so their errors still propagate.
    s.flush()
    try:
        with s.begin_nested():
            s.add(ev)
    except SQLAlchemyError:
        logger.exception(
            "Audit write failed (module=%s action=%s entity=%s:%s request_id=%s)",
            module,
            action,
            entity_type,
            entity_id,
            rid,
        )
        return None
    return ev


def event_details(ev: AuditEvent) -> dict[str, Any]:
    return json.loads(ev.details_json) if ev.details_json else {}


def event_to_dict(ev: AuditEvent) -> dict[str, Any]:
    return {
        "id": ev.id,
        "user_id": ev.actor_user_id,
        "user_email": ev.actor_user_email,
        "role": ev.actor_role,
        "module": ev.module,
        "action": ev.action,
        "entity_id": ev.entity_id,
        "entity_type": ev.entity_type,
        "details": event_details(ev),
        "notes": ev.notes,
        "timestamp": ev.created_at.isoformat(),
        "request_id": ev.request_id,
    }


class AuditRecorder:
    """Read side of the audit trail. Plain predicate filters, no pagination."""

    def __init__(self, s: Session) -> None:
        self.s = s

    def _select(self, *criteria) -> list[AuditEvent]:
        q = select(AuditEvent)
        for c in criteria:
            q = q.where(c)
        q = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc())
        return list(self.s.scalars(q))

    def get_all(self) -> list[AuditEvent]:
        return self._select()

    def get_by_user(self, user_id: int) -> list[AuditEvent]:
        return self._select(AuditEvent.actor_user_id == user_id)

    def get_by_module(self, module: str) -> list[AuditEvent]:
        return self._select(AuditEvent.module == module)

    def get_by_action(self, action: str) -> list[AuditEvent]:
        return self._select(AuditEvent.action == action)

    def get_by_date_range(self, start: datetime, end: datetime) -> list[AuditEvent]:
        return self._select(AuditEvent.created_at >= start, AuditEvent.created_at <= end)

    def get_by_entity(self, entity_type: str, entity_id: str) -> list[AuditEvent]:
        return self._select(AuditEvent.entity_type == entity_type, AuditEvent.entity_id == str(entity_id))
