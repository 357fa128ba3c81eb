"""
Field rules and seat accounting shared by the event modules (API registration, MT Meet).
"""
from __future__ import annotations

import re
from collections import Counter
from collections.abc import Callable, Iterable
from datetime import date
from typing import Any

from app.pccportal.modules.access_requests.service import EMAIL_RE, PHONE_RE
from app.pccportal.modules.pcc.validation import BRANDS, parse_date, parse_positive_int

TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

# Events may target one brand's network or both.
EVENT_BRANDS = BRANDS + ("both",)


class RegistrationClosedError(ValueError):
    pass


def text(payload: dict, key: str) -> str:
    return str(payload.get(key) or "").strip()


def require_text(payload: dict, fields: Iterable[tuple[str, str]], cleaned: dict, errors: dict[str, str]) -> None:
    for key, label in fields:
        value = text(payload, key)
        if not value:
            errors[key] = f"{label} is required"
        cleaned[key] = value


def require_choice(
    payload: dict,
    key: str,
    label: str,
    options: tuple[str, ...],
    cleaned: dict,
    errors: dict[str, str],
    *,
    default: str | None = None,
) -> None:
    value = text(payload, key) or default or ""
    if not value:
        errors[key] = f"{label} is required"
    elif value not in options:
        errors[key] = f"{label} must be one of: {', '.join(options)}"
    cleaned[key] = value


def require_date(payload: dict, key: str, label: str, cleaned: dict, errors: dict[str, str]) -> None:
    try:
        d = parse_date(payload.get(key))
    except ValueError:
        errors[key] = f"{label} must be a valid date (YYYY-MM-DD)"
        d = None
    else:
        if d is None:
            errors[key] = f"{label} is required"
    cleaned[key] = d


def require_time(payload: dict, key: str, label: str, cleaned: dict, errors: dict[str, str]) -> None:
    value = text(payload, key)
    if not value:
        errors[key] = f"{label} is required"
    elif not TIME_RE.fullmatch(value):
        errors[key] = f"{label} must be HH:MM (24-hour)"
    cleaned[key] = value


def require_capacity(payload: dict, cleaned: dict, errors: dict[str, str], *, taken: int = 0) -> None:
    n = parse_positive_int(payload.get("max_participants"))
    if n is None:
        errors["max_participants"] = "Maximum participants must be a positive number"
    elif n < taken:
        errors["max_participants"] = f"Already {taken} registered; capacity cannot go below that"
    cleaned["max_participants"] = n


def clean_contact(payload: dict, cleaned: dict, errors: dict[str, str]) -> None:
    """Name, email and Indian mobile number of a registrant."""
    require_text(payload, (("name", "Name"),), cleaned, errors)

    email = text(payload, "email").lower()
    if not email:
        errors["email"] = "Email is required"
    elif not EMAIL_RE.fullmatch(email):
        errors["email"] = "Invalid email format"
    cleaned["email"] = email

    phone = re.sub(r"[\s-]", "", str(payload.get("phone") or ""))
    if not phone:
        errors["phone"] = "Phone is required"
    elif not PHONE_RE.fullmatch(phone):
        errors["phone"] = "Invalid phone number (10 digits starting with 6-9)"
    cleaned["phone"] = phone


def take_seat(event: Any, open_statuses: tuple[str, ...], label: str) -> None:
    if event.status not in open_statuses:
        raise RegistrationClosedError(f"{label} is {event.status}; registration is closed.")
    if event.current_participants >= event.max_participants:
        raise RegistrationClosedError(f"{label} is full ({event.max_participants} participants).")
    event.current_participants += 1


def release_seat(event: Any) -> None:
    event.current_participants = max(0, event.current_participants - 1)


def is_upcoming(day: date, today: date) -> bool:
    # An event happening today is no longer counted as upcoming.
    return day > today


def percentage(part: int, whole: int) -> float:
    return (part / whole) * 100 if whole else 0.0


def count_by(items: Iterable[Any], key: Callable[[Any], str]) -> dict[str, int]:
    return dict(Counter(key(x) for x in items))
