from __future__ import annotations

from flask import Blueprint, abort, g, request

from app.pccportal.constants import MANUFACTURER_ROLES
from app.pccportal.db import db_session
from app.pccportal.models import User
from app.pccportal.modules.access_requests.service import (
    REQUEST_STATUSES,
    AlreadyProcessedError,
    access_request_to_dict,
    list_access_requests,
    process_access_request,
    submit_access_request,
)
from app.pccportal.modules.pcc.validation import ValidationError
from app.pccportal.rbac import require_access

bp = Blueprint("access_requests", __name__)


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


# ---------- Public ----------
@bp.post("/request-access")
def request_access_post():
    s = db_session()
    try:
        req = submit_access_request(s, _payload())
    except ValidationError as e:
        s.rollback()
        return {"errors": e.errors}, 422
    s.commit()
    return {"ok": True, "id": req.id}, 201


# ---------- Admin ----------
@bp.get("/admin/access-requests")
@require_access(roles=MANUFACTURER_ROLES)
def access_requests_list():
    s = db_session()
    status = (request.args.get("status") or "").strip() or None
    if status and status not in REQUEST_STATUSES:
        return {"errors": {"status": "Unknown status"}}, 422
    return {"requests": [access_request_to_dict(r) for r in list_access_requests(s, status)]}


@bp.post("/admin/access-requests/<int:request_id>")
@require_access(roles=MANUFACTURER_ROLES)
def access_request_process(request_id: int):
    s = db_session()
    u = _current_user()
    data = _payload()
    try:
        req = process_access_request(s, request_id, str(data.get("decision") or ""), u, data.get("notes"))
    except ValidationError as e:
        s.rollback()
        return {"errors": e.errors}, 422
    except AlreadyProcessedError as e:
        s.rollback()
        return {"error": str(e)}, 409
    if req is None:
        abort(404)
    s.commit()
    return {"request": access_request_to_dict(req)}
