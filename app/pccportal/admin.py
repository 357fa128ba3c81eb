from datetime import date, datetime, time, timedelta

from flask import Blueprint, request

from app.pccportal.audit import event_to_dict
from app.pccportal.constants import MANUFACTURER_ROLES
from app.pccportal.db import db_session
from app.pccportal.models import AuditEvent
from app.pccportal.rbac import require_access

bp = Blueprint("admin", __name__)

AUDIT_PAGE_LIMIT = 200


def _parse_date(s: str) -> date | None:
    s = (s or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        return None


@bp.get("/audit")
@require_access(roles=MANUFACTURER_ROLES)
def audit_list():
    """
    Audit trail (last 200 events) with simple filters:
    - user_id, module, action (exact)
    - entity_type + entity_id
    - date range (YYYY-MM-DD, inclusive)
    """
    s = db_session()
    user_id = request.args.get("user_id", type=int)
    module = (request.args.get("module") or "").strip()
    action = (request.args.get("action") or "").strip()
    entity_type = (request.args.get("entity_type") or "").strip()
    entity_id = (request.args.get("entity_id") or "").strip()
    date_from = _parse_date(request.args.get("date_from") or "")
    date_to = _parse_date(request.args.get("date_to") or "")

    errors = {}
    if (request.args.get("date_from") or "").strip() and not date_from:
        errors["date_from"] = "date_from must be YYYY-MM-DD"
    if (request.args.get("date_to") or "").strip() and not date_to:
        errors["date_to"] = "date_to must be YYYY-MM-DD"
    if errors:
        return {"errors": errors}, 422

    q = s.query(AuditEvent)
    if user_id is not None:
        q = q.filter(AuditEvent.actor_user_id == user_id)
    if module:
        q = q.filter(AuditEvent.module == module)
    if action:
        q = q.filter(AuditEvent.action == action)
    if entity_type:
        q = q.filter(AuditEvent.entity_type == entity_type)
    if entity_id:
        q = q.filter(AuditEvent.entity_id == entity_id)
    if date_from:
        q = q.filter(AuditEvent.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        # inclusive end-date (treat as whole day)
        q = q.filter(AuditEvent.created_at < datetime.combine(date_to + timedelta(days=1), time.min))

    events = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(AUDIT_PAGE_LIMIT).all()
    return {"events": [event_to_dict(ev) for ev in events]}
