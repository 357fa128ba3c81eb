from __future__ import annotations

from flask import Blueprint, abort, current_app, g, request

from app.pccportal.constants import DEALER_ROLES, MANUFACTURER_ROLES
from app.pccportal.db import db_session
from app.pccportal.models import User
from app.pccportal.modules.pcc.service import (
    ConcurrentUpdateError,
    InvalidTransitionError,
    compute_dashboard_stats,
    create_submission,
    get_by_id,
    get_by_reference,
    list_submissions,
    submission_summary,
    submission_to_dict,
    update_status,
)
from app.pccportal.modules.pcc.validation import ValidationError
from app.pccportal.rbac import dealer_scope, require_access

bp = Blueprint("pcc", __name__)

MODULE_KEY = "dealer_pcc"


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


def _visible_to(u: User, sub) -> bool:
    # Dealers only ever see their own dealership's submissions.
    scope = dealer_scope(u)
    return scope is None or sub.dealer_id == scope


# ---------- Submit ----------
@bp.post("/")
@require_access(module_key=MODULE_KEY, roles=DEALER_ROLES)
def pcc_create():
    s = db_session()
    u = _current_user()
    try:
        sub = create_submission(s, _payload(), u)
    except ValidationError as e:
        s.rollback()
        return {"errors": e.errors}, 422
    s.commit()
    return {"submission": submission_to_dict(sub)}, 201


# ---------- List / detail ----------
@bp.get("/")
@require_access(module_key=MODULE_KEY)
def pcc_list():
    s = db_session()
    u = _current_user()
    status = (request.args.get("status") or "").strip() or None
    dealer_id = dealer_scope(u)
    if dealer_id is None:
        dealer_id = request.args.get("dealer_id", type=int)
    subs = list_submissions(s, dealer_id=dealer_id, status=status)
    return {"submissions": [submission_summary(x) for x in subs]}


@bp.get("/<int:submission_id>")
@require_access(module_key=MODULE_KEY)
def pcc_detail(submission_id: int):
    s = db_session()
    u = _current_user()
    sub = get_by_id(s, submission_id)
    if not sub or not _visible_to(u, sub):
        abort(404)
    return {"submission": submission_to_dict(sub)}


@bp.get("/track/<reference_number>")
@require_access(module_key=MODULE_KEY)
def pcc_track(reference_number: str):
    s = db_session()
    u = _current_user()
    sub = get_by_reference(s, reference_number)
    if not sub or not _visible_to(u, sub):
        return {"error": "No PCC found with this reference number"}, 404
    return {"submission": submission_to_dict(sub)}


# ---------- Review ----------
@bp.post("/<int:submission_id>/status")
@require_access(module_key=MODULE_KEY, roles=MANUFACTURER_ROLES)
def pcc_status_post(submission_id: int):
    s = db_session()
    u = _current_user()
    data = _payload()
    try:
        sub = update_status(
            s,
            submission_id,
            str(data.get("status") or ""),
            u,
            data.get("notes"),
            strict=bool(current_app.config.get("STRICT_TRANSITIONS")),
        )
    except ValidationError as e:
        s.rollback()
        return {"errors": e.errors}, 422
    except InvalidTransitionError as e:
        s.rollback()
        return {"error": str(e)}, 409
    except ConcurrentUpdateError as e:
        s.rollback()
        current_app.logger.warning("Concurrent PCC update (id=%s): %s", submission_id, e)
        return {"error": str(e)}, 409
    if sub is None:
        s.rollback()
        abort(404)
    s.commit()
    return {"submission": submission_to_dict(sub)}


# ---------- Stats ----------
@bp.get("/stats")
@require_access(module_key=MODULE_KEY)
def pcc_stats():
    s = db_session()
    u = _current_user()
    dealer_id = dealer_scope(u)
    return compute_dashboard_stats(s, dealer_id=dealer_id).to_dict()
