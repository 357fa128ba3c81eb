"""
Access gate: decides whether a caller may reach a route or action.

Pure function of (authentication state, user, module flags, required roles).
Order matters: the module check runs before the role check, so a user who
lacks an enabled module sees a different outcome than a user who lacks the
role.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Protocol

from app.pccportal.constants import ALWAYS_ON_MODULES, SUPER_ADMIN


class AccessDecision(str, Enum):
    ALLOW = "allow"
    REDIRECT_LOGIN = "redirect_login"
    REDIRECT_NOT_FOUND = "redirect_not_found"
    REDIRECT_DASHBOARD = "redirect_dashboard"
    SHOW_DISABLED_WITH_MANAGEMENT_LINK = "show_disabled_with_management_link"


class _HasRole(Protocol):
    role: str


def decide_access(
    *,
    is_authenticated: bool,
    user: _HasRole | None,
    module_key: str | None = None,
    required_roles: Iterable[str] | None = None,
    module_flags: Mapping[str, bool] | None = None,
) -> AccessDecision:
    if not is_authenticated or user is None:
        return AccessDecision.REDIRECT_LOGIN

    if module_key:
        enabled = module_key in ALWAYS_ON_MODULES or bool((module_flags or {}).get(module_key, False))
        if not enabled:
            if user.role == SUPER_ADMIN:
                return AccessDecision.SHOW_DISABLED_WITH_MANAGEMENT_LINK
            return AccessDecision.REDIRECT_NOT_FOUND

    if required_roles is not None and user.role not in set(required_roles):
        return AccessDecision.REDIRECT_DASHBOARD

    return AccessDecision.ALLOW
