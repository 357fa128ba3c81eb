from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select

from app.pccportal.audit import record_event
from app.pccportal.auth import require_actor
from app.pccportal.constants import MANUFACTURER_ROLES
from app.pccportal.modules.mt_meet.models import Meet, MeetFeedback, MeetParticipant
from app.pccportal.modules.pcc.validation import (
    BRANDS,
    ValidationError,
    parse_bool,
    parse_non_negative_int,
    parse_positive_int,
)
from app.pccportal.modules.scheduling import (
    EVENT_BRANDS,
    TIME_RE,
    clean_contact,
    count_by,
    is_upcoming,
    percentage,
    require_capacity,
    require_choice,
    require_date,
    require_text,
    require_time,
    take_seat,
    text,
)
from app.pccportal.rbac import ActorNotPermittedError, ensure_role, is_dealer, is_manufacturer
from app.pccportal.repository import repository_for

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.pccportal.models import User

logger = logging.getLogger(__name__)

MODULE_KEY = "mt_meet"

MEET_STATUSES = ("scheduled", "ongoing", "completed", "cancelled")
ATTENDANCE_STATUSES = ("registered", "confirmed", "attended", "absent")
OPEN_STATUSES = ("scheduled", "ongoing")

RATING_FIELDS = ("overall_rating", "content_quality", "venue_rating", "organization_rating", "speaker_rating")

EDITABLE_FIELDS = (
    "title",
    "description",
    "meet_date",
    "start_time",
    "end_time",
    "venue",
    "city",
    "brand",
    "agenda",
    "max_participants",
    "status",
)


class FeedbackAlreadySubmittedError(ValueError):
    pass


def _clean_agenda(raw: Any, errors: dict[str, str]) -> list[dict]:
    if raw in (None, ""):
        return []
    if not isinstance(raw, list):
        errors["agenda"] = "Agenda must be a list of items"
        return []
    items: list[dict] = []
    for i, item in enumerate(raw, start=1):
        if not isinstance(item, dict):
            errors["agenda"] = f"Agenda item {i} must be an object"
            return []
        slot = text(item, "time")
        title = text(item, "title")
        duration = parse_positive_int(item.get("duration"))
        if not TIME_RE.fullmatch(slot) or not title or duration is None:
            errors["agenda"] = f"Agenda item {i} needs a time (HH:MM), a title and a duration in minutes"
            return []
        items.append({"time": slot, "title": title, "speaker": text(item, "speaker") or None, "duration": duration})
    return sorted(items, key=lambda x: x["time"])


def validate_meet(payload: dict, *, taken: int = 0) -> tuple[dict, dict[str, str]]:
    errors: dict[str, str] = {}
    cleaned: dict[str, Any] = {}
    if not isinstance(payload, dict):
        return cleaned, {"_": "JSON object expected"}

    require_text(payload, (("title", "Title"), ("venue", "Venue"), ("city", "City")), cleaned, errors)
    cleaned["description"] = text(payload, "description") or None
    require_choice(payload, "brand", "Brand", EVENT_BRANDS, cleaned, errors)
    require_choice(payload, "status", "Status", MEET_STATUSES, cleaned, errors, default="scheduled")
    require_date(payload, "meet_date", "Meet date", cleaned, errors)
    require_time(payload, "start_time", "Start time", cleaned, errors)
    require_time(payload, "end_time", "End time", cleaned, errors)
    if "start_time" not in errors and "end_time" not in errors and cleaned["end_time"] <= cleaned["start_time"]:
        errors["end_time"] = "End time must be after the start time"
    cleaned["agenda"] = _clean_agenda(payload.get("agenda"), errors)
    require_capacity(payload, cleaned, errors, taken=taken)
    return cleaned, errors


def validate_registration(payload: dict) -> tuple[dict, dict[str, str]]:
    errors: dict[str, str] = {}
    cleaned: dict[str, Any] = {}
    if not isinstance(payload, dict):
        return cleaned, {"_": "JSON object expected"}

    clean_contact(payload, cleaned, errors)
    require_text(payload, (("dealer_code", "Dealer code"), ("dealer_name", "Dealer name")), cleaned, errors)
    cleaned["dealer_code"] = cleaned["dealer_code"].upper()
    require_choice(payload, "brand", "Brand", BRANDS, cleaned, errors)

    years = parse_non_negative_int(payload.get("years_of_experience"))
    if years is None:
        errors["years_of_experience"] = "Years of experience must be a whole number"
    cleaned["years_of_experience"] = years
    cleaned["designation"] = text(payload, "designation") or None
    cleaned["specialization"] = text(payload, "specialization") or None
    return cleaned, errors


def validate_feedback(payload: dict) -> tuple[dict, dict[str, str]]:
    errors: dict[str, str] = {}
    cleaned: dict[str, Any] = {}
    if not isinstance(payload, dict):
        return cleaned, {"_": "JSON object expected"}

    for key in RATING_FIELDS:
        rating = parse_positive_int(payload.get(key))
        if rating is None or rating > 5:
            errors[key] = "Rating must be between 1 and 5"
        cleaned[key] = rating
    cleaned["key_takeaways"] = text(payload, "key_takeaways") or None
    cleaned["suggestions"] = text(payload, "suggestions") or None
    cleaned["would_recommend"] = parse_bool(payload.get("would_recommend"))
    return cleaned, errors


# ---------- meets ----------
def create_meet(s: "Session", payload: dict, actor: "User | None") -> Meet:
    actor = require_actor(actor)
    ensure_role(actor, MANUFACTURER_ROLES, "schedule MT meets")
    cleaned, errors = validate_meet(payload)
    if errors:
        raise ValidationError(errors)

    now = datetime.utcnow()
    meet = Meet(**cleaned, current_participants=0, created_by_user_id=actor.id, created_at=now, updated_at=now)
    repository_for(s, "mt_meets").create(meet)
    record_event(
        s,
        actor=actor,
        module=MODULE_KEY,
        action="create",
        entity_type="mt_meet",
        entity_id=str(meet.id),
        details={"title": meet.title, "date": meet.meet_date.isoformat()},
        notes=f"Created MT Meet: {meet.title}",
    )
    logger.info("MT meet %s scheduled in %s", meet.id, meet.city)
    return meet


def update_meet(s: "Session", meet_id: int, payload: dict, actor: "User | None") -> Meet | None:
    actor = require_actor(actor)
    ensure_role(actor, MANUFACTURER_ROLES, "update MT meets")
    if not isinstance(payload, dict):
        raise ValidationError({"_": "JSON object expected"})

    meet = get_meet(s, meet_id)
    if meet is None:
        return None

    merged = {f: getattr(meet, f) for f in EDITABLE_FIELDS}
    merged.update({k: v for k, v in payload.items() if k in EDITABLE_FIELDS})
    cleaned, errors = validate_meet(merged, taken=meet.current_participants)
    if errors:
        raise ValidationError(errors)

    changes = sorted(f for f in EDITABLE_FIELDS if cleaned[f] != getattr(meet, f))
    if not changes:
        return meet
    for f in changes:
        setattr(meet, f, cleaned[f])
    meet.updated_at = datetime.utcnow()
    s.flush()

    record_event(
        s,
        actor=actor,
        module=MODULE_KEY,
        action="update",
        entity_type="mt_meet",
        entity_id=str(meet.id),
        details={"changes": changes},
        notes=f"Updated MT Meet: {meet.title}",
    )
    return meet


def get_meet(s: "Session", meet_id: int) -> Meet | None:
    return repository_for(s, "mt_meets").get_by_id(meet_id)


def list_meets(s: "Session", *, city: str | None = None, status: str | None = None) -> list[Meet]:
    q = select(Meet).order_by(Meet.meet_date, Meet.start_time, Meet.id)
    if city:
        q = q.where(func.lower(Meet.city) == city.strip().lower())
    if status:
        q = q.where(Meet.status == status)
    return list(s.scalars(q))


# ---------- participants ----------
def register_for_meet(s: "Session", meet_id: int, payload: dict, actor: "User | None") -> MeetParticipant | None:
    """
    Register a technician for a meet.

    A dealer-side user registers themselves: their account is linked as the
    technician and their dealership fills in missing dealer details.
    """
    actor = require_actor(actor)
    if not isinstance(payload, dict):
        raise ValidationError({"_": "JSON object expected"})

    payload = dict(payload)
    technician_id = None
    if is_dealer(actor):
        technician_id = actor.id
        payload.setdefault("email", actor.email)
        payload.setdefault("name", actor.name)
        if actor.dealer is not None:
            payload.setdefault("dealer_code", actor.dealer.code)
            payload.setdefault("dealer_name", actor.dealer.name)

    cleaned, errors = validate_registration(payload)
    if errors:
        raise ValidationError(errors)

    meet = get_meet(s, meet_id)
    if meet is None:
        return None
    dup = select(MeetParticipant.id).where(MeetParticipant.meet_id == meet.id, MeetParticipant.email == cleaned["email"])
    if s.scalar(dup) is not None:
        raise ValidationError({"email": "This email is already registered for the meet"})
    take_seat(meet, OPEN_STATUSES, f"MT Meet {meet.title!r}")

    p = MeetParticipant(
        **cleaned,
        meet=meet,
        technician_id=technician_id,
        status="registered",
        registered_at=datetime.utcnow(),
        feedback_submitted=False,
    )
    repository_for(s, "mt_participants").create(p)
    record_event(
        s,
        actor=actor,
        module=MODULE_KEY,
        action="create",
        entity_type="mt_participant",
        entity_id=str(p.id),
        details={"name": p.name, "meet_id": meet.id},
        notes=f"Registered MT participant: {p.name}",
    )
    return p


def update_attendance(s: "Session", participant_id: int, status: str, actor: "User | None") -> MeetParticipant | None:
    actor = require_actor(actor)
    ensure_role(actor, MANUFACTURER_ROLES, "record MT meet attendance")
    if status not in ATTENDANCE_STATUSES:
        raise ValidationError({"status": f"Status must be one of: {', '.join(ATTENDANCE_STATUSES)}"})

    p = repository_for(s, "mt_participants").get_by_id(participant_id)
    if p is None:
        return None
    if p.status == status:
        return p
    p.status = status
    s.flush()

    record_event(
        s,
        actor=actor,
        module=MODULE_KEY,
        action="update",
        entity_type="mt_participant",
        entity_id=str(p.id),
        details={"status": status},
        notes=f"Updated MT participant status to: {status}",
    )
    return p


def list_meet_participants(s: "Session", meet_id: int) -> list[MeetParticipant]:
    return repository_for(s, "mt_participants").query(MeetParticipant.meet_id == meet_id)


# ---------- feedback ----------
def submit_feedback(
    s: "Session", meet_id: int, participant_id: int, payload: dict, actor: "User | None"
) -> MeetFeedback | None:
    actor = require_actor(actor)
    cleaned, errors = validate_feedback(payload)
    if errors:
        raise ValidationError(errors)

    p = repository_for(s, "mt_participants").get_by_id(participant_id)
    if p is None or p.meet_id != meet_id:
        return None
    if not is_manufacturer(actor) and p.technician_id != actor.id:
        raise ActorNotPermittedError("Feedback can only be given by the participant.")
    if p.status != "attended":
        raise ValidationError({"participant_id": "Feedback is only collected from participants who attended"})
    if p.feedback_submitted:
        raise FeedbackAlreadySubmittedError(f"Feedback for participant {p.id} was already submitted.")

    fb = MeetFeedback(
        **cleaned,
        meet_id=meet_id,
        participant_id=p.id,
        submitted_by_user_id=actor.id,
        submitted_at=datetime.utcnow(),
    )
    repository_for(s, "mt_feedback").create(fb)
    p.feedback_submitted = True
    s.flush()

    record_event(
        s,
        actor=actor,
        module=MODULE_KEY,
        action="create",
        entity_type="mt_feedback",
        entity_id=str(fb.id),
        details={"meet_id": meet_id, "rating": fb.overall_rating},
        notes="Submitted MT Meet feedback",
    )
    return fb


def list_feedback(s: "Session", meet_id: int) -> list[MeetFeedback]:
    return repository_for(s, "mt_feedback").query(MeetFeedback.meet_id == meet_id)


# ---------- stats ----------
@dataclass
class MeetStats:
    total_meets: int
    upcoming_meets: int
    total_attendees: int
    average_rating: float
    attendance_rate: float
    by_brand: dict[str, int]
    by_city: dict[str, int]
    recent_meets: list[Meet] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_meets": self.total_meets,
            "upcoming_meets": self.upcoming_meets,
            "total_attendees": self.total_attendees,
            "average_rating": self.average_rating,
            "attendance_rate": self.attendance_rate,
            "by_brand": dict(self.by_brand),
            "by_city": dict(self.by_city),
            "recent_meets": [meet_to_dict(m) for m in self.recent_meets],
        }


def compute_meet_stats(s: "Session", *, today: date | None = None) -> MeetStats:
    today = today or datetime.utcnow().date()
    meets = list(s.scalars(select(Meet).order_by(Meet.created_at.desc(), Meet.id.desc())))
    participants = list(s.scalars(select(MeetParticipant)))
    ratings = list(s.scalars(select(MeetFeedback.overall_rating)))

    attended = sum(1 for p in participants if p.status == "attended")
    return MeetStats(
        total_meets=len(meets),
        upcoming_meets=sum(1 for m in meets if is_upcoming(m.meet_date, today)),
        total_attendees=len(participants),
        average_rating=sum(ratings) / len(ratings) if ratings else 0.0,
        attendance_rate=percentage(attended, len(participants)),
        by_brand=count_by(participants, lambda p: p.brand),
        by_city=count_by(meets, lambda m: m.city),
        recent_meets=meets[:5],
    )


# ---------- serialisation ----------
def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value else None


def meet_to_dict(meet: Meet) -> dict[str, Any]:
    return {
        "id": meet.id,
        "title": meet.title,
        "description": meet.description,
        "meet_date": _iso(meet.meet_date),
        "start_time": meet.start_time,
        "end_time": meet.end_time,
        "venue": meet.venue,
        "city": meet.city,
        "brand": meet.brand,
        "agenda": list(meet.agenda or []),
        "max_participants": meet.max_participants,
        "current_participants": meet.current_participants,
        "status": meet.status,
        "created_by_user_id": meet.created_by_user_id,
        "created_at": _iso(meet.created_at),
        "updated_at": _iso(meet.updated_at),
    }


def meet_participant_to_dict(p: MeetParticipant) -> dict[str, Any]:
    return {
        "id": p.id,
        "meet_id": p.meet_id,
        "technician_id": p.technician_id,
        "name": p.name,
        "email": p.email,
        "phone": p.phone,
        "dealer_code": p.dealer_code,
        "dealer_name": p.dealer_name,
        "designation": p.designation,
        "years_of_experience": p.years_of_experience,
        "specialization": p.specialization,
        "brand": p.brand,
        "status": p.status,
        "registered_at": _iso(p.registered_at),
        "feedback_submitted": p.feedback_submitted,
    }


def feedback_to_dict(fb: MeetFeedback) -> dict[str, Any]:
    return {
        "id": fb.id,
        "meet_id": fb.meet_id,
        "participant_id": fb.participant_id,
        **{key: getattr(fb, key) for key in RATING_FIELDS},
        "key_takeaways": fb.key_takeaways,
        "suggestions": fb.suggestions,
        "would_recommend": fb.would_recommend,
        "submitted_at": _iso(fb.submitted_at),
    }
