from __future__ import annotations

from flask import Blueprint, abort, g, request

from app.pccportal.constants import MANUFACTURER_ROLES
from app.pccportal.db import db_session
from app.pccportal.models import User
from app.pccportal.modules.api_registration.service import (
    EVENT_STATUSES,
    MODULE_KEY,
    compute_event_stats,
    create_event,
    event_to_dict,
    get_event,
    list_events,
    list_participants,
    participant_to_dict,
    register_participant,
    update_event,
    update_participant_status,
)
from app.pccportal.modules.pcc.validation import ValidationError
from app.pccportal.modules.scheduling import RegistrationClosedError
from app.pccportal.rbac import is_manufacturer, require_access

bp = Blueprint("api_registration", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _payload() -> dict:
    if request.is_json:
        data = request.get_json(silent=True)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValidationError({"_": "JSON object expected"})
        return data
    return request.form.to_dict()


# ---------- Events ----------
@bp.get("/")
@require_access(module_key=MODULE_KEY)
def events_list():
    s = db_session()
    status = (request.args.get("status") or "").strip() or None
    if status and status not in EVENT_STATUSES:
        return {"errors": {"status": "Unknown status"}}, 422
    return {"events": [event_to_dict(e) for e in list_events(s, status)]}


@bp.post("/")
@require_access(module_key=MODULE_KEY, roles=MANUFACTURER_ROLES)
def events_create():
    s = db_session()
    try:
        ev = create_event(s, _payload(), _current_user())
    except ValidationError as e:
        s.rollback()
        return {"errors": e.errors}, 422
    s.commit()
    return {"event": event_to_dict(ev)}, 201


@bp.get("/<int:event_id>")
@require_access(module_key=MODULE_KEY)
def events_detail(event_id: int):
    s = db_session()
    ev = get_event(s, event_id)
    if ev is None:
        abort(404)
    out = {"event": event_to_dict(ev)}
    # Contact details of registrants are for manufacturer staff only.
    if is_manufacturer(_current_user()):
        out["participants"] = [participant_to_dict(p) for p in list_participants(s, event_id)]
    return out


@bp.post("/<int:event_id>")
@require_access(module_key=MODULE_KEY, roles=MANUFACTURER_ROLES)
def events_update(event_id: int):
    s = db_session()
    try:
        ev = update_event(s, event_id, _payload(), _current_user())
    except ValidationError as e:
        s.rollback()
        return {"errors": e.errors}, 422
    if ev is None:
        s.rollback()
        abort(404)
    s.commit()
    return {"event": event_to_dict(ev)}


# ---------- Participants ----------
@bp.post("/<int:event_id>/participants")
@require_access(module_key=MODULE_KEY)
def participants_register(event_id: int):
    s = db_session()
    try:
        p = register_participant(s, event_id, _payload(), _current_user())
    except ValidationError as e:
        s.rollback()
        return {"errors": e.errors}, 422
    except RegistrationClosedError as e:
        s.rollback()
        return {"error": str(e)}, 409
    if p is None:
        s.rollback()
        abort(404)
    s.commit()
    return {"participant": participant_to_dict(p)}, 201


@bp.post("/participants/<int:participant_id>/status")
@require_access(module_key=MODULE_KEY, roles=MANUFACTURER_ROLES)
def participants_status(participant_id: int):
    s = db_session()
    data = _payload()
    try:
        p = update_participant_status(s, participant_id, str(data.get("status") or ""), _current_user())
    except ValidationError as e:
        s.rollback()
        return {"errors": e.errors}, 422
    except RegistrationClosedError as e:
        s.rollback()
        return {"error": str(e)}, 409
    if p is None:
        s.rollback()
        abort(404)
    s.commit()
    return {"participant": participant_to_dict(p)}


# ---------- Stats ----------
@bp.get("/stats")
@require_access(module_key=MODULE_KEY, roles=MANUFACTURER_ROLES)
def events_stats():
    return {"stats": compute_event_stats(db_session()).to_dict()}
