from collections.abc import Callable, Iterable
from functools import wraps
from typing import Any

from flask import abort, current_app, g, redirect, request, url_for

from app.pccportal.constants import DEALER_ROLES, MANUFACTURER_ROLES, SUPER_ADMIN
from app.pccportal.db import db_session
from app.pccportal.gate import AccessDecision, decide_access
from app.pccportal.models import User


class ActorNotPermittedError(PermissionError):
    pass


def has_role(user: User | None, roles: str | Iterable[str]) -> bool:
    if not user or not user.is_active:
        return False
    wanted = {roles} if isinstance(roles, str) else set(roles)
    return user.role in wanted


def is_dealer(user: User | None) -> bool:
    return has_role(user, DEALER_ROLES)


def is_manufacturer(user: User | None) -> bool:
    return has_role(user, MANUFACTURER_ROLES)


def is_super_admin(user: User | None) -> bool:
    return has_role(user, SUPER_ADMIN)


def ensure_role(user: User, roles: Iterable[str], what: str) -> None:
    """Service-side role re-check; the access gate is not the only line."""
    if not has_role(user, roles):
        raise ActorNotPermittedError(f"Role {user.role!r} may not {what}.")


def gate_response(module_key: str | None = None, roles: Iterable[str] | None = None):
    """
    Run the access gate for the current request.
    Returns None when access is allowed, otherwise the response to send.
    """
    user: User | None = getattr(g, "current_user", None)
    flags: dict[str, bool] = {}
    if user is not None and module_key:
        registry = current_app.extensions["feature_flags"]
        flags = {k: f["enabled"] for k, f in registry.get_all_flags(db_session()).items()}

    decision = decide_access(
        is_authenticated=user is not None and user.is_active,
        user=user,
        module_key=module_key,
        required_roles=tuple(roles) if roles is not None else None,
        module_flags=flags,
    )
    g.access_decision = decision

    if decision is AccessDecision.ALLOW:
        return None
    if decision is AccessDecision.REDIRECT_LOGIN:
        nxt = request.full_path or request.path
        # Avoid trailing '?' from full_path when there is no query string.
        if nxt.endswith("?"):
            nxt = nxt[:-1]
        return redirect(url_for("auth.login_get", next=nxt))
    if decision is AccessDecision.REDIRECT_NOT_FOUND:
        abort(404)
    if decision is AccessDecision.REDIRECT_DASHBOARD:
        return redirect(url_for("routes.dashboard"))
    # Super admin reaching a disabled module
    return {
        "error": "module_disabled",
        "module": module_key,
        "manage_url": url_for("feature_flags.modules_list"),
    }, 503


def require_access(
    module_key: str | None = None,
    roles: Iterable[str] | None = None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            denied = gate_response(module_key, roles)
            if denied is not None:
                return denied
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def dealer_scope(user: User) -> int | None:
    """
    Dealer id a user's PCC views are restricted to; None means unrestricted.
    A dealer account without a dealership is scoped to nothing (id 0 never exists).
    """
    if not is_dealer(user):
        return None
    return user.dealer_id or 0
