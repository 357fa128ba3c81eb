from __future__ import annotations

import re
import secrets
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, request, session
from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from app.pccportal.audit import record_event
from app.pccportal.constants import OTP_ROLES
from app.pccportal.db import db_session
from app.pccportal.models import ConfigRecord, User
from app.pccportal.repository import ConfigStore
from app.pccportal.security import ensure_csrf_token

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_WINDOW = 300  # seconds

INVALID_CREDENTIALS = "Invalid email or password"
OTP_EXPIRED = "OTP expired. Please login again."
OTP_LOCKED = "Too many invalid OTP attempts. Please login again."
PENDING_OTP_PREFIX = "pending_otp:"


class AuthenticationRequiredError(RuntimeError):
    pass


@dataclass
class LoginResult:
    success: bool
    user: User | None = None
    error: str | None = None
    requires_otp: bool = False
    otp_code: str | None = None


def require_actor(actor: User | None) -> User:
    if actor is None:
        raise AuthenticationRequiredError("User not authenticated")
    return actor


def get_current_user() -> User | None:
    return getattr(g, "current_user", None)


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= current_app.config.get("LOGIN_RATE_LIMIT", 5)


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def generate_otp() -> str:
    return f"{secrets.randbelow(1_000_000):06d}"


def authenticate(s: Session, email: str, password: str) -> LoginResult:
    """
    Password check. Elevated roles get a one-time code instead of a session;
    the caller keeps the pending login until verify_otp succeeds.
    """
    email = (email or "").strip().lower()
    user = s.scalars(select(User).where(func.lower(User.email) == email)).one_or_none()
    if not user or not check_password_hash(user.password_hash, password or ""):
        record_event(
            s,
            actor=None,
            module="auth",
            action="login_failed",
            entity_type="user",
            entity_id=email,
            details={"email": email, "reason": "invalid_credentials"},
        )
        return LoginResult(success=False, error=INVALID_CREDENTIALS)

    if not user.is_active:
        record_event(
            s,
            actor=None,
            module="auth",
            action="login_failed",
            entity_type="user",
            entity_id=str(user.id),
            details={"email": email, "reason": "inactive"},
        )
        return LoginResult(success=False, error="Account is deactivated")

    if user.role in OTP_ROLES:
        return LoginResult(success=True, user=user, requires_otp=True, otp_code=generate_otp())

    return LoginResult(success=True, user=user)


def issue_pending_login(s: Session, user: User, code: str, *, ttl_seconds: int = 300, now: float | None = None) -> str:
    """
    Store the hashed one-time code server-side and return the nonce the client
    keeps in its session. Abandoned codes older than the TTL are purged here.
    """
    cutoff = datetime.utcnow() - timedelta(seconds=ttl_seconds)
    s.execute(
        delete(ConfigRecord).where(
            ConfigRecord.key.like(f"{PENDING_OTP_PREFIX}%"),
            ConfigRecord.updated_at < cutoff,
        )
    )
    nonce = secrets.token_urlsafe(16)
    ConfigStore(s).set(
        PENDING_OTP_PREFIX + nonce,
        {
            "user_id": user.id,
            "otp_hash": generate_password_hash(code),
            "issued_at": now if now is not None else time.time(),
            "attempts": 0,
        },
    )
    return nonce


def verify_otp(
    s: Session,
    otp: str,
    nonce: str | None,
    *,
    ttl_seconds: int,
    max_attempts: int = 5,
    now: float | None = None,
) -> LoginResult:
    """Check a code against its pending login. Codes are single use and die after `max_attempts` misses."""
    now = now if now is not None else time.time()
    store = ConfigStore(s)
    key = PENDING_OTP_PREFIX + (nonce or "")
    pending = store.get(key) if nonce else None
    if not pending or now - float(pending.get("issued_at", 0)) > ttl_seconds:
        if pending:
            store.remove(key)
        return LoginResult(success=False, error=OTP_EXPIRED)
    otp = (otp or "").strip()
    if not re.fullmatch(r"\d{6}", otp):
        return LoginResult(success=False, error="Invalid OTP format")
    if not check_password_hash(pending.get("otp_hash") or "", otp):
        attempts = int(pending.get("attempts", 0)) + 1
        if attempts < max_attempts:
            store.set(key, {**pending, "attempts": attempts})
            return LoginResult(success=False, error="Invalid OTP")
        store.remove(key)
        record_event(
            s,
            actor=None,
            module="auth",
            action="login_failed",
            entity_type="user",
            entity_id=str(pending.get("user_id")),
            details={"reason": "otp_attempts_exceeded"},
        )
        return LoginResult(success=False, error=OTP_LOCKED)

    store.remove(key)
    user = s.get(User, int(pending["user_id"]))
    if not user or not user.is_active:
        return LoginResult(success=False, error="User not found")
    return LoginResult(success=True, user=user)


def complete_login(s: Session, user: User, *, second_factor: bool = False) -> None:
    user.last_login_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        module="auth",
        action="login",
        entity_type="user",
        entity_id=str(user.id),
        details={"second_factor": True} if second_factor else None,
        notes="User logged in with OTP verification" if second_factor else "User logged in successfully",
    )


def start_session(user: User) -> None:
    ttl = timedelta(hours=current_app.config.get("SESSION_TTL_HOURS", 24))
    session.pop("pending_login", None)
    session["user_id"] = user.id
    session["expires_at"] = (datetime.utcnow() + ttl).isoformat()


def end_session() -> None:
    session.pop("user_id", None)
    session.pop("expires_at", None)
    session.pop("pending_login", None)


def _session_expired() -> bool:
    raw = session.get("expires_at")
    if not raw:
        return True
    try:
        return datetime.fromisoformat(raw) <= datetime.utcnow()
    except ValueError:
        return True


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return
    if _session_expired():
        end_session()
        g.current_user = None
        return

    s = db_session()
    user = s.get(User, int(user_id))
    if not user or not user.is_active:
        end_session()
        g.current_user = None
        return
    g.current_user = user


def _form_value(name: str) -> str:
    if request.is_json:
        data = request.get_json(silent=True)
        return str(data.get(name) or "") if isinstance(data, dict) else ""
    return request.form.get(name) or ""


def _safe_next(nxt: str) -> str | None:
    # Only allow local paths to avoid open redirects.
    if nxt.startswith("/") and not nxt.startswith("//"):
        return nxt
    return None


@bp.get("/login")
def login_get():
    nxt = (request.args.get("next") or "").strip()
    return {"error": "authentication_required", "next": _safe_next(nxt), "csrf_token": ensure_csrf_token()}, 401


@bp.post("/login")
def login_post():
    email = _form_value("email").strip().lower()
    password = _form_value("password")
    nxt = _form_value("next").strip()
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        return {"error": "Too many login attempts. Please wait 5 minutes."}, 429

    _record_attempt(ip)

    s = db_session()
    result = authenticate(s, email, password)
    if not result.success:
        s.commit()
        current_app.logger.warning("Login failed (email=%s request_id=%s)", email, getattr(g, "request_id", None))
        return {"error": result.error}, 401

    assert result.user is not None
    if result.requires_otp:
        # The attempt stays on the books until the second factor is passed.
        session["pending_login"] = issue_pending_login(
            s,
            result.user,
            result.otp_code or "",
            ttl_seconds=current_app.config.get("OTP_TTL_SECONDS", 300),
        )
        s.commit()
        body = {"otp_required": True}
        if (current_app.config.get("ENV") or "").lower() not in ("prod", "production"):
            # No delivery channel yet; expose the code outside production only.
            body["dev_otp"] = result.otp_code
        return body

    _login_attempts[ip].clear()
    start_session(result.user)
    complete_login(s, result.user)
    s.commit()
    return {"ok": True, "user": result.user.to_dict(), "next": _safe_next(nxt)}


@bp.post("/otp")
def otp_post():
    s = db_session()
    result = verify_otp(
        s,
        _form_value("otp"),
        session.get("pending_login"),
        ttl_seconds=current_app.config.get("OTP_TTL_SECONDS", 300),
        max_attempts=current_app.config.get("OTP_MAX_ATTEMPTS", 5),
    )
    if not result.success:
        s.commit()
        if result.error in (OTP_EXPIRED, OTP_LOCKED):
            session.pop("pending_login", None)
        current_app.logger.warning("OTP check failed (%s) request_id=%s", result.error, getattr(g, "request_id", None))
        return {"error": result.error}, 401

    assert result.user is not None
    _login_attempts[request.remote_addr or "unknown"].clear()
    start_session(result.user)
    complete_login(s, result.user, second_factor=True)
    s.commit()
    return {"ok": True, "user": result.user.to_dict()}


@bp.get("/logout")
def logout():
    s = db_session()
    user = get_current_user()
    if user:
        record_event(
            s,
            actor=user,
            module="auth",
            action="logout",
            entity_type="user",
            entity_id=str(user.id),
            notes="User logged out",
        )
        s.commit()
    end_session()
    return {"ok": True}


@bp.get("/me")
def me():
    user = get_current_user()
    if not user:
        return {"error": "authentication_required"}, 401
    return {"user": user.to_dict(), "csrf_token": ensure_csrf_token()}
