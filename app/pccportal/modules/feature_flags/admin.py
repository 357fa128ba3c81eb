from __future__ import annotations

from flask import Blueprint, abort, g, request

from app.pccportal.constants import SUPER_ADMIN
from app.pccportal.db import db_session
from app.pccportal.models import User
from app.pccportal.modules.feature_flags.service import (
    MODULE_INFO,
    ProtectedModuleError,
    get_module_info,
    get_registry,
)
from app.pccportal.rbac import gate_response, require_access

bp = Blueprint("feature_flags", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _parse_bool(value) -> bool | None:
    if isinstance(value, bool):
        return value
    raw = str(value or "").strip().lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    return None


# ---------- Module management ----------
@bp.get("/admin/modules")
@require_access(roles=[SUPER_ADMIN])
def modules_list():
    s = db_session()
    flags = get_registry().get_all_flags(s)
    s.commit()
    return {
        "modules": [
            {**flags[key], **(get_module_info(key) or {})}
            for key in MODULE_INFO
            if key in flags
        ]
    }


@bp.post("/admin/modules/<module_key>")
@require_access(roles=[SUPER_ADMIN])
def module_toggle(module_key: str):
    if module_key not in MODULE_INFO:
        abort(404)
    s = db_session()
    u = _current_user()
    data = (request.get_json(silent=True) if request.is_json else request.form) or {}
    if not isinstance(data, dict):
        return {"errors": {"_": "JSON object expected"}}, 422
    enabled = _parse_bool(data.get("enabled"))
    if enabled is None:
        return {"errors": {"enabled": "enabled must be true or false"}}, 422
    reason = str(data.get("reason") or "").strip() or None

    try:
        flag = get_registry().set_flag(s, module_key, enabled, u, reason)
    except ProtectedModuleError as e:
        s.rollback()
        return {"error": str(e)}, 400
    s.commit()
    return {"flag": flag}


# ---------- Module landing ----------
@bp.get("/modules/<module_key>")
def module_home(module_key: str):
    if module_key not in MODULE_INFO:
        abort(404)
    denied = gate_response(module_key=module_key)
    if denied is not None:
        return denied
    return {"module": module_key, **MODULE_INFO[module_key]}
