from __future__ import annotations

from flask import Blueprint, abort, g, request

from app.pccportal.constants import MANUFACTURER_ROLES
from app.pccportal.db import db_session
from app.pccportal.models import User
from app.pccportal.modules.mt_meet.service import (
    MEET_STATUSES,
    MODULE_KEY,
    FeedbackAlreadySubmittedError,
    compute_meet_stats,
    create_meet,
    feedback_to_dict,
    get_meet,
    list_feedback,
    list_meet_participants,
    list_meets,
    meet_participant_to_dict,
    meet_to_dict,
    register_for_meet,
    submit_feedback,
    update_attendance,
    update_meet,
)
from app.pccportal.modules.pcc.validation import ValidationError
from app.pccportal.modules.scheduling import RegistrationClosedError
from app.pccportal.rbac import is_manufacturer, require_access

bp = Blueprint("mt_meet", __name__)


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


# ---------- Meets ----------
@bp.get("/")
@require_access(module_key=MODULE_KEY)
def meets_list():
    s = db_session()
    status = (request.args.get("status") or "").strip() or None
    if status and status not in MEET_STATUSES:
        return {"errors": {"status": "Unknown status"}}, 422
    meets = list_meets(s, city=request.args.get("city"), status=status)
    return {"meets": [meet_to_dict(m) for m in meets]}


@bp.post("/")
@require_access(module_key=MODULE_KEY, roles=MANUFACTURER_ROLES)
def meets_create():
    s = db_session()
    try:
        meet = create_meet(s, _payload(), _current_user())
    except ValidationError as e:
        s.rollback()
        return {"errors": e.errors}, 422
    s.commit()
    return {"meet": meet_to_dict(meet)}, 201


@bp.get("/<int:meet_id>")
@require_access(module_key=MODULE_KEY)
def meets_detail(meet_id: int):
    s = db_session()
    meet = get_meet(s, meet_id)
    if meet is None:
        abort(404)
    out = {"meet": meet_to_dict(meet)}
    if is_manufacturer(_current_user()):
        out["participants"] = [meet_participant_to_dict(p) for p in list_meet_participants(s, meet_id)]
        out["feedback"] = [feedback_to_dict(f) for f in list_feedback(s, meet_id)]
    return out


@bp.post("/<int:meet_id>")
@require_access(module_key=MODULE_KEY, roles=MANUFACTURER_ROLES)
def meets_update(meet_id: int):
    s = db_session()
    try:
        meet = update_meet(s, meet_id, _payload(), _current_user())
    except ValidationError as e:
        s.rollback()
        return {"errors": e.errors}, 422
    if meet is None:
        s.rollback()
        abort(404)
    s.commit()
    return {"meet": meet_to_dict(meet)}


# ---------- Participants ----------
@bp.post("/<int:meet_id>/participants")
@require_access(module_key=MODULE_KEY)
def meets_register(meet_id: int):
    s = db_session()
    try:
        p = register_for_meet(s, meet_id, _payload(), _current_user())
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
    return {"participant": meet_participant_to_dict(p)}, 201


@bp.post("/participants/<int:participant_id>/status")
@require_access(module_key=MODULE_KEY, roles=MANUFACTURER_ROLES)
def meets_attendance(participant_id: int):
    s = db_session()
    data = _payload()
    try:
        p = update_attendance(s, participant_id, str(data.get("status") or ""), _current_user())
    except ValidationError as e:
        s.rollback()
        return {"errors": e.errors}, 422
    if p is None:
        s.rollback()
        abort(404)
    s.commit()
    return {"participant": meet_participant_to_dict(p)}


# ---------- Feedback ----------
@bp.post("/<int:meet_id>/participants/<int:participant_id>/feedback")
@require_access(module_key=MODULE_KEY)
def meets_feedback(meet_id: int, participant_id: int):
    s = db_session()
    try:
        fb = submit_feedback(s, meet_id, participant_id, _payload(), _current_user())
    except ValidationError as e:
        s.rollback()
        return {"errors": e.errors}, 422
    except FeedbackAlreadySubmittedError as e:
        s.rollback()
        return {"error": str(e)}, 409
    if fb is None:
        s.rollback()
        abort(404)
    s.commit()
    return {"feedback": feedback_to_dict(fb)}, 201


# ---------- Stats ----------
@bp.get("/stats")
@require_access(module_key=MODULE_KEY, roles=MANUFACTURER_ROLES)
def meets_stats():
    return {"stats": compute_meet_stats(db_session()).to_dict()}
