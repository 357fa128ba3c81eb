import logging
import os

from dotenv import load_dotenv
from flask import Flask, g, request
from sqlalchemy import inspect as sa_inspect

from app.pccportal.admin import bp as admin_bp
from app.pccportal.auth import AuthenticationRequiredError, bp as auth_bp, load_current_user
from app.pccportal.config import load_config
from app.pccportal.db import init_db, teardown_db_session
from app.pccportal.modules.access_requests.admin import bp as access_requests_bp
from app.pccportal.modules.api_registration.admin import bp as api_registration_bp
from app.pccportal.modules.feature_flags.admin import bp as feature_flags_bp
from app.pccportal.modules.feature_flags.service import FeatureFlagRegistry
from app.pccportal.modules.mt_meet.admin import bp as mt_meet_bp
from app.pccportal.modules.pcc.admin import bp as pcc_bp
from app.pccportal.modules.pcc.validation import ValidationError
from app.pccportal.rbac import ActorNotPermittedError
from app.pccportal.repository import StorageError
from app.pccportal.routes import bp as routes_bp

# Columns the code relies on that older databases may lack.
_EXPECTED_SCHEMA = {
    "pcc_submissions": ("version", "reference_number", "attachments"),
    "pcc_status_history": ("sequence",),
    "pcc_reference_sequences": ("last_value",),
    "config_records": ("value_json",),
    "audit_events": ("request_id", "details_json"),
    "api_events": ("current_participants",),
    "mt_meets": ("agenda", "current_participants"),
    "mt_participants": ("feedback_submitted",),
}


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())

    # CSRF protection (minimal)
    from app.pccportal.security import ensure_csrf_token, validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            return None
        ensure_csrf_token()
        if not app.config.get("CSRF_ENABLED", True):
            return None
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # login/otp/logout happen before the client holds a token
            if (request.endpoint or "").startswith("auth."):
                return None
            if not validate_csrf(request):
                return {"error": "CSRF token missing or invalid."}, 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)
    app.extensions["feature_flags"] = FeatureFlagRegistry()

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(feature_flags_bp)
    app.register_blueprint(pcc_bp, url_prefix="/pcc")
    app.register_blueprint(access_requests_bp)
    app.register_blueprint(api_registration_bp, url_prefix="/events")
    app.register_blueprint(mt_meet_bp, url_prefix="/mt-meet")

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    # Migration health (lean): detect drift between code expectations and DB schema.
    app.config.setdefault("_schema_health_ok", True)
    app.config.setdefault("_schema_health_missing", [])

    def _run_schema_health_check() -> None:
        missing: list[str] = []
        engine = app.extensions["sqlalchemy_engine"]
        try:
            insp = sa_inspect(engine)
            for table, columns in _EXPECTED_SCHEMA.items():
                if not insp.has_table(table):
                    # Fresh database; `alembic upgrade head` or create_all has not run yet.
                    continue
                cols = {c["name"] for c in insp.get_columns(table)}
                missing.extend(f"{table}.{col}" for col in columns if col not in cols)
        except Exception as e:
            app.logger.exception("Schema health check failed: %s", e)
            return

        if missing:
            app.config["_schema_health_ok"] = False
            app.config["_schema_health_missing"] = missing
            app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))

    _run_schema_health_check()

    @app.before_request
    def _schema_health_guardrail():  # type: ignore[no-redef]
        if app.config.get("_schema_health_ok"):
            return None
        if request.path.startswith(("/health", "/healthz")):
            return None
        return {"error": "schema_out_of_date", "missing": app.config.get("_schema_health_missing") or []}, 500

    @app.errorhandler(StorageError)
    def _err_storage(e):  # type: ignore[no-redef]
        app.logger.error("Storage failure (request_id=%s): %s", getattr(g, "request_id", None), e)
        return {"error": "storage_unavailable"}, 503

    @app.errorhandler(ValidationError)
    def _err_validation(e):  # type: ignore[no-redef]
        return {"errors": e.errors}, 422

    @app.errorhandler(ActorNotPermittedError)
    def _err_not_permitted(e):  # type: ignore[no-redef]
        app.logger.warning("Forbidden: %s request_id=%s", e, getattr(g, "request_id", None))
        return {"error": "forbidden", "message": str(e)}, 403

    @app.errorhandler(AuthenticationRequiredError)
    def _err_auth_required(e):  # type: ignore[no-redef]
        return {"error": "authentication_required"}, 401

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return {"error": "not_found"}, 404

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        app.logger.warning("Forbidden: path=%s request_id=%s", request.path, getattr(g, "request_id", None))
        return {"error": "forbidden"}, 403

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        return {"error": "Request body too large."}, 413

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return {"error": "internal_error"}, 500

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
