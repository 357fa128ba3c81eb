from flask import Blueprint, url_for

from app.pccportal.auth import get_current_user
from app.pccportal.db import db_session
from app.pccportal.modules.pcc.service import compute_dashboard_stats
from app.pccportal.rbac import dealer_scope, require_access

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return {
        "name": "PCC Portal",
        "login": url_for("auth.login_get"),
        "request_access": url_for("access_requests.request_access_post"),
    }


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for the container platform. No DB access, minimal overhead.
    """
    return "ok", 200


@bp.get("/dashboard")
@require_access()
def dashboard():
    u = get_current_user()
    s = db_session()
    dealer_id = dealer_scope(u)
    return {"user": u.to_dict(), "stats": compute_dashboard_stats(s, dealer_id=dealer_id).to_dict()}
