from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from app.pccportal.audit import record_event
from app.pccportal.auth import require_actor
from app.pccportal.constants import MANUFACTURER_ROLES
from app.pccportal.modules.api_registration.models import Event, Participant
from app.pccportal.modules.pcc.validation import BRANDS, ValidationError
from app.pccportal.modules.scheduling import (
    EVENT_BRANDS,
    clean_contact,
    count_by,
    is_upcoming,
    percentage,
    release_seat,
    require_capacity,
    require_choice,
    require_date,
    require_text,
    require_time,
    take_seat,
    text,
)
from app.pccportal.rbac import ensure_role
from app.pccportal.repository import repository_for

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.pccportal.models import User

logger = logging.getLogger(__name__)

MODULE_KEY = "api_registration"

EVENT_TYPES = ("training", "meeting", "conference", "workshop")
EVENT_STATUSES = ("upcoming", "ongoing", "completed", "cancelled")
PARTICIPANT_STATUSES = ("pending", "confirmed", "attended", "cancelled")

# Registration stays open until the event is completed or cancelled.
OPEN_STATUSES = ("upcoming", "ongoing")

EDITABLE_FIELDS = (
    "title",
    "description",
    "event_type",
    "event_date",
    "event_time",
    "venue",
    "brand",
    "max_participants",
    "status",
)


def validate_event(payload: dict, *, taken: int = 0) -> tuple[dict, dict[str, str]]:
    errors: dict[str, str] = {}
    cleaned: dict[str, Any] = {}
    if not isinstance(payload, dict):
        return cleaned, {"_": "JSON object expected"}

    require_text(payload, (("title", "Title"), ("venue", "Venue")), cleaned, errors)
    cleaned["description"] = text(payload, "description") or None
    require_choice(payload, "event_type", "Event type", EVENT_TYPES, cleaned, errors)
    require_choice(payload, "brand", "Brand", EVENT_BRANDS, cleaned, errors)
    require_choice(payload, "status", "Status", EVENT_STATUSES, cleaned, errors, default="upcoming")
    require_date(payload, "event_date", "Event date", cleaned, errors)
    require_time(payload, "event_time", "Event time", cleaned, errors)
    require_capacity(payload, cleaned, errors, taken=taken)
    return cleaned, errors


def validate_participant(payload: dict) -> tuple[dict, dict[str, str]]:
    errors: dict[str, str] = {}
    cleaned: dict[str, Any] = {}
    if not isinstance(payload, dict):
        return cleaned, {"_": "JSON object expected"}

    clean_contact(payload, cleaned, errors)
    require_text(payload, (("dealer_code", "Dealer code"),), cleaned, errors)
    cleaned["dealer_code"] = cleaned["dealer_code"].upper()
    require_choice(payload, "brand", "Brand", BRANDS, cleaned, errors)
    cleaned["designation"] = text(payload, "designation") or None
    cleaned["notes"] = text(payload, "notes") or None
    return cleaned, errors


# ---------- events ----------
def create_event(s: "Session", payload: dict, actor: "User | None") -> Event:
    actor = require_actor(actor)
    ensure_role(actor, MANUFACTURER_ROLES, "create events")
    cleaned, errors = validate_event(payload)
    if errors:
        raise ValidationError(errors)

    now = datetime.utcnow()
    ev = Event(**cleaned, current_participants=0, created_by_user_id=actor.id, created_at=now, updated_at=now)
    repository_for(s, "api_events").create(ev)
    record_event(
        s,
        actor=actor,
        module=MODULE_KEY,
        action="create",
        entity_type="event",
        entity_id=str(ev.id),
        details={"title": ev.title, "date": ev.event_date.isoformat()},
        notes=f"Created event: {ev.title}",
    )
    logger.info("Event %s created by user %s", ev.id, actor.id)
    return ev


def update_event(s: "Session", event_id: int, payload: dict, actor: "User | None") -> Event | None:
    """
    Apply a partial update. The merged record is validated as a whole, so a
    patch can never leave the event in a state create_event would refuse.
    """
    actor = require_actor(actor)
    ensure_role(actor, MANUFACTURER_ROLES, "update events")
    if not isinstance(payload, dict):
        raise ValidationError({"_": "JSON object expected"})

    ev = get_event(s, event_id)
    if ev is None:
        return None

    merged = {f: getattr(ev, f) for f in EDITABLE_FIELDS}
    merged.update({k: v for k, v in payload.items() if k in EDITABLE_FIELDS})
    cleaned, errors = validate_event(merged, taken=ev.current_participants)
    if errors:
        raise ValidationError(errors)

    changes = sorted(f for f in EDITABLE_FIELDS if cleaned[f] != getattr(ev, f))
    if not changes:
        return ev
    for f in changes:
        setattr(ev, f, cleaned[f])
    ev.updated_at = datetime.utcnow()
    s.flush()

    record_event(
        s,
        actor=actor,
        module=MODULE_KEY,
        action="update",
        entity_type="event",
        entity_id=str(ev.id),
        details={"changes": changes},
        notes=f"Updated event: {ev.title}",
    )
    return ev


def get_event(s: "Session", event_id: int) -> Event | None:
    return repository_for(s, "api_events").get_by_id(event_id)


def list_events(s: "Session", status: str | None = None) -> list[Event]:
    q = select(Event).order_by(Event.event_date, Event.event_time, Event.id)
    if status:
        q = q.where(Event.status == status)
    return list(s.scalars(q))


# ---------- participants ----------
def register_participant(s: "Session", event_id: int, payload: dict, actor: "User | None") -> Participant | None:
    actor = require_actor(actor)
    cleaned, errors = validate_participant(payload)
    if errors:
        raise ValidationError(errors)

    ev = get_event(s, event_id)
    if ev is None:
        return None
    taken = select(Participant.id).where(Participant.event_id == ev.id, Participant.email == cleaned["email"])
    if s.scalar(taken) is not None:
        raise ValidationError({"email": "This email is already registered for the event"})
    take_seat(ev, OPEN_STATUSES, f"Event {ev.title!r}")

    p = Participant(
        **cleaned,
        event=ev,
        status="pending",
        registered_by_user_id=actor.id,
        registered_at=datetime.utcnow(),
    )
    repository_for(s, "api_participants").create(p)
    record_event(
        s,
        actor=actor,
        module=MODULE_KEY,
        action="create",
        entity_type="participant",
        entity_id=str(p.id),
        details={"name": p.name, "event_id": ev.id},
        notes=f"Registered participant: {p.name}",
    )
    logger.info("Participant %s registered for event %s", p.id, ev.id)
    return p


def update_participant_status(
    s: "Session", participant_id: int, status: str, actor: "User | None"
) -> Participant | None:
    actor = require_actor(actor)
    ensure_role(actor, MANUFACTURER_ROLES, "update participants")
    if status not in PARTICIPANT_STATUSES:
        raise ValidationError({"status": f"Status must be one of: {', '.join(PARTICIPANT_STATUSES)}"})

    p = repository_for(s, "api_participants").get_by_id(participant_id)
    if p is None:
        return None
    if p.status == status:
        return p

    # A cancelled registration gives its seat back; reinstating it takes one again.
    if status == "cancelled":
        release_seat(p.event)
    elif p.status == "cancelled":
        take_seat(p.event, OPEN_STATUSES, f"Event {p.event.title!r}")

    now = datetime.utcnow()
    p.status = status
    if status == "confirmed":
        p.confirmed_at = now
    elif status == "attended":
        p.attended_at = now
    s.flush()

    record_event(
        s,
        actor=actor,
        module=MODULE_KEY,
        action="update",
        entity_type="participant",
        entity_id=str(p.id),
        details={"status": status},
        notes=f"Updated participant status to: {status}",
    )
    return p


def list_participants(s: "Session", event_id: int) -> list[Participant]:
    return repository_for(s, "api_participants").query(Participant.event_id == event_id)


# ---------- stats ----------
@dataclass
class EventStats:
    total_events: int
    upcoming_events: int
    total_participants: int
    confirmed_participants: int
    attendance_rate: float
    by_event_type: dict[str, int]
    by_brand: dict[str, int]
    recent_registrations: list[Participant] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_events": self.total_events,
            "upcoming_events": self.upcoming_events,
            "total_participants": self.total_participants,
            "confirmed_participants": self.confirmed_participants,
            "attendance_rate": self.attendance_rate,
            "by_event_type": dict(self.by_event_type),
            "by_brand": dict(self.by_brand),
            "recent_registrations": [participant_to_dict(p) for p in self.recent_registrations],
        }


def compute_event_stats(s: "Session", *, today: date | None = None) -> EventStats:
    today = today or datetime.utcnow().date()
    events = list(s.scalars(select(Event)))
    participants = list(s.scalars(select(Participant).order_by(Participant.registered_at.desc(), Participant.id.desc())))

    # confirmed counts everyone past the pending step who did not cancel
    confirmed = sum(1 for p in participants if p.status in ("confirmed", "attended"))
    attended = sum(1 for p in participants if p.status == "attended")
    return EventStats(
        total_events=len(events),
        upcoming_events=sum(1 for e in events if is_upcoming(e.event_date, today)),
        total_participants=len(participants),
        confirmed_participants=confirmed,
        attendance_rate=percentage(attended, len(participants)),
        by_event_type=count_by(events, lambda e: e.event_type),
        by_brand=count_by(participants, lambda p: p.brand),
        recent_registrations=participants[:5],
    )


# ---------- serialisation ----------
def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value else None


def event_to_dict(ev: Event) -> dict[str, Any]:
    return {
        "id": ev.id,
        "title": ev.title,
        "description": ev.description,
        "event_type": ev.event_type,
        "event_date": _iso(ev.event_date),
        "event_time": ev.event_time,
        "venue": ev.venue,
        "brand": ev.brand,
        "max_participants": ev.max_participants,
        "current_participants": ev.current_participants,
        "status": ev.status,
        "created_by_user_id": ev.created_by_user_id,
        "created_at": _iso(ev.created_at),
        "updated_at": _iso(ev.updated_at),
    }


def participant_to_dict(p: Participant) -> dict[str, Any]:
    return {
        "id": p.id,
        "event_id": p.event_id,
        "name": p.name,
        "email": p.email,
        "phone": p.phone,
        "dealer_code": p.dealer_code,
        "designation": p.designation,
        "brand": p.brand,
        "status": p.status,
        "registered_at": _iso(p.registered_at),
        "confirmed_at": _iso(p.confirmed_at),
        "attended_at": _iso(p.attended_at),
        "notes": p.notes,
    }
