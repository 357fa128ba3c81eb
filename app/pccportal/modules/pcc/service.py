from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.orm.exc import StaleDataError

from app.pccportal.audit import record_event
from app.pccportal.auth import require_actor
from app.pccportal.constants import DEALER_ROLES, MANUFACTURER_ROLES
from app.pccportal.modules.pcc.models import PCCReferenceSequence, PCCStatusHistory, PCCSubmission
from app.pccportal.modules.pcc.validation import SUBTOPICS, ValidationError, validate_submission
from app.pccportal.rbac import ensure_role
from app.pccportal.repository import StorageError, repository_for

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.pccportal.models import User

logger = logging.getLogger(__name__)

PCC_STATUSES = ("draft", "submitted", "under_review", "approved", "rejected", "more_info_required")
TERMINAL_STATUSES = ("approved", "rejected")

REFERENCE_PREFIX = "PCC-IN"
# First number handed out in a year is REFERENCE_START + 1 (PCC-IN-2024-1001).
REFERENCE_START = 1000
REFERENCE_MAX = 9999

ENTITY_TYPE = "pcc_submission"
MODULE_KEY = "dealer_pcc"


class InvalidTransitionError(ValueError):
    pass


class ConcurrentUpdateError(RuntimeError):
    pass


# ---------- reference numbers ----------
def format_reference(year: int, sequence: int) -> str:
    return f"{REFERENCE_PREFIX}-{year:04d}-{sequence:04d}"


def next_reference_number(s: "Session", *, year: int | None = None) -> str:
    """
    Allocate the next reference number for `year` from a persisted counter.
    Runs inside the caller's transaction, so a rolled-back submission gives its number back.
    """
    year = year or datetime.utcnow().year
    seq = s.execute(
        select(PCCReferenceSequence).where(PCCReferenceSequence.year == year).with_for_update()
    ).scalar_one_or_none()
    if seq is None:
        seq = PCCReferenceSequence(year=year, last_value=REFERENCE_START)
        s.add(seq)

    while True:
        if seq.last_value >= REFERENCE_MAX:
            raise StorageError(f"Reference numbers for {year} are exhausted")
        seq.last_value += 1
        ref = format_reference(year, seq.last_value)
        # Skip numbers already taken by imported/seeded rows.
        taken = s.scalars(select(PCCSubmission.id).where(PCCSubmission.reference_number == ref)).first()
        if taken is None:
            break
    s.flush()
    return ref


# ---------- transitions ----------
def allowed_transitions(current: str, *, strict: bool = False) -> tuple[str, ...]:
    """
    Any status may move to any other by default. With strict=True, approved and
    rejected are terminal and nothing moves back to draft.
    """
    if not strict:
        return PCC_STATUSES
    if current in TERMINAL_STATUSES:
        return ()
    return tuple(st for st in PCC_STATUSES if st != "draft")


def check_transition(current: str, new_status: str, *, strict: bool = False) -> None:
    if new_status not in allowed_transitions(current, strict=strict):
        raise InvalidTransitionError(f"Cannot move a submission from {current} to {new_status}.")


# ---------- commands ----------
def create_submission(s: "Session", payload: dict, actor: "User | None", *, today: date | None = None) -> PCCSubmission:
    """Validate and persist a new submission; starts at `submitted` with one history entry."""
    actor = require_actor(actor)
    ensure_role(actor, DEALER_ROLES, "create PCC submissions")

    cleaned, errors = validate_submission(payload, today=today)
    if errors:
        raise ValidationError(errors)

    now = datetime.utcnow()
    for att in cleaned["attachments"]:
        att["uploaded_at"] = now.isoformat()

    dealer = actor.dealer
    submission = PCCSubmission(
        **cleaned,
        reference_number=next_reference_number(s, year=now.year),
        status="submitted",
        dealer_id=actor.dealer_id,
        dealer_code=dealer.code if dealer else None,
        dealer_name=dealer.name if dealer else None,
        contact_person=actor.name,
        email=actor.email,
        created_at=now,
        updated_at=now,
        created_by_user_id=actor.id,
        last_updated_by_user_id=actor.id,
    )
    submission.status_history.append(
        PCCStatusHistory(
            sequence=1,
            status="submitted",
            changed_by_user_id=actor.id,
            changed_at=now,
            notes="Initial submission",
        )
    )
    repository_for(s, "pcc_submissions").create(submission)

    record_event(
        s,
        actor=actor,
        module=MODULE_KEY,
        action="create",
        entity_type=ENTITY_TYPE,
        entity_id=str(submission.id),
        details={"reference_number": submission.reference_number},
        notes=f"Created PCC submission {submission.reference_number}",
    )
    logger.info("PCC %s created by user %s", submission.reference_number, actor.id)
    return submission


def update_status(
    s: "Session",
    submission_id: int,
    new_status: str,
    actor: "User | None",
    notes: str | None = None,
    *,
    strict: bool = False,
) -> PCCSubmission | None:
    """
    Append a status change. Returns None (and records nothing) when the
    submission does not exist.
    """
    actor = require_actor(actor)
    ensure_role(actor, MANUFACTURER_ROLES, "change PCC status")

    new_status = (new_status or "").strip()
    notes = (notes or "").strip() or None
    if new_status not in PCC_STATUSES:
        raise ValidationError({"status": "Unknown status"})
    if new_status == "more_info_required" and not notes:
        raise ValidationError({"notes": "Notes are required when requesting more information"})

    submission = repository_for(s, "pcc_submissions").get_by_id(submission_id)
    if submission is None:
        return None

    # The session expires its state if the flush below fails; keep what the error message needs.
    previous = submission.status
    reference_number = submission.reference_number
    check_transition(previous, new_status, strict=strict)

    now = datetime.utcnow()
    last_sequence = submission.status_history[-1].sequence if submission.status_history else 0
    submission.status_history.append(
        PCCStatusHistory(
            sequence=last_sequence + 1,
            status=new_status,
            changed_by_user_id=actor.id,
            changed_at=now,
            notes=notes,
        )
    )
    submission.status = new_status
    submission.updated_at = now
    submission.last_updated_by_user_id = actor.id
    try:
        s.flush()
    except StaleDataError as e:
        raise ConcurrentUpdateError(
            f"Submission {reference_number} was changed by someone else; reload and retry."
        ) from e

    record_event(
        s,
        actor=actor,
        module=MODULE_KEY,
        action="status_change",
        entity_type=ENTITY_TYPE,
        entity_id=str(submission.id),
        details={
            "previous_status": previous,
            "new_status": new_status,
            "reference_number": submission.reference_number,
        },
        notes=notes or f"Status changed from {previous} to {new_status}",
    )
    logger.info("PCC %s: %s -> %s by user %s", submission.reference_number, previous, new_status, actor.id)
    return submission


# ---------- queries ----------
def get_by_id(s: "Session", submission_id: int) -> PCCSubmission | None:
    return repository_for(s, "pcc_submissions").get_by_id(submission_id)


def normalize_reference(reference_number: str) -> str:
    return (reference_number or "").strip().upper()


def get_by_reference(s: "Session", reference_number: str) -> PCCSubmission | None:
    ref = normalize_reference(reference_number)
    if not ref:
        return None
    return s.scalars(select(PCCSubmission).where(PCCSubmission.reference_number == ref)).one_or_none()


def list_submissions(s: "Session", *, dealer_id: int | None = None, status: str | None = None) -> list[PCCSubmission]:
    q = select(PCCSubmission)
    if dealer_id is not None:
        q = q.where(PCCSubmission.dealer_id == dealer_id)
    if status:
        q = q.where(PCCSubmission.status == status)
    return list(s.scalars(q.order_by(PCCSubmission.created_at.desc(), PCCSubmission.id.desc())))


@dataclass
class DashboardStats:
    total: int
    by_status: dict[str, int]
    by_subtopic: dict[str, int]
    approval_rate: float
    average_tat: float
    recent_submissions: list[PCCSubmission] = field(default_factory=list)
    more_info_queue: list[PCCSubmission] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "by_status": dict(self.by_status),
            "by_subtopic": dict(self.by_subtopic),
            "approval_rate": self.approval_rate,
            "average_tat": self.average_tat,
            "recent_submissions": [submission_summary(x) for x in self.recent_submissions],
            "more_info_queue": [submission_summary(x) for x in self.more_info_queue],
        }


def compute_dashboard_stats(s: "Session", dealer_id: int | None = None) -> DashboardStats:
    submissions = list_submissions(s, dealer_id=dealer_id)

    by_status = {st: 0 for st in PCC_STATUSES}
    by_subtopic = {st: 0 for st in SUBTOPICS}
    total_tat_days = 0.0
    completed = 0
    for sub in submissions:
        by_status[sub.status] = by_status.get(sub.status, 0) + 1
        by_subtopic[sub.subtopic] = by_subtopic.get(sub.subtopic, 0) + 1
        if sub.status in TERMINAL_STATUSES:
            total_tat_days += (sub.updated_at - sub.created_at).total_seconds() / 86400
            completed += 1

    total = len(submissions)
    return DashboardStats(
        total=total,
        by_status=by_status,
        by_subtopic=by_subtopic,
        approval_rate=(by_status["approved"] / total) * 100 if total else 0.0,
        average_tat=total_tat_days / completed if completed else 0.0,
        recent_submissions=submissions[:5],
        more_info_queue=[x for x in submissions if x.status == "more_info_required"],
    )


# ---------- serialisation ----------
def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value else None


def submission_summary(sub: PCCSubmission) -> dict[str, Any]:
    return {
        "id": sub.id,
        "reference_number": sub.reference_number,
        "status": sub.status,
        "dealer_name": sub.dealer_name,
        "brand": sub.brand,
        "model": sub.model,
        "vin": sub.vin,
        "subtopic": sub.subtopic,
        "created_at": _iso(sub.created_at),
        "updated_at": _iso(sub.updated_at),
    }


def submission_to_dict(sub: PCCSubmission) -> dict[str, Any]:
    return {
        **submission_summary(sub),
        "dealer_id": sub.dealer_id,
        "dealer_code": sub.dealer_code,
        "contact_person": sub.contact_person,
        "email": sub.email,
        "registration_no": sub.registration_no,
        "production_date": _iso(sub.production_date),
        "condition_type": sub.condition_type,
        "warranty_period": sub.warranty_period,
        "number_of_claims": sub.number_of_claims,
        "number_of_repairs": sub.number_of_repairs,
        "fault_code": sub.fault_code,
        "countermeasure_date": _iso(sub.countermeasure_date),
        "sale_date": _iso(sub.sale_date),
        "tpi_result": sub.tpi_result,
        "repair_success": sub.repair_success,
        "topic": sub.topic,
        "escalated_to_brand": sub.escalated_to_brand,
        "escalation_notes": sub.escalation_notes,
        "engine_code": sub.engine_code,
        "gearbox_code": sub.gearbox_code,
        "mileage": sub.mileage,
        "repair_date": _iso(sub.repair_date),
        "diss_ticket_no": sub.diss_ticket_no,
        "warranty_claim_no": sub.warranty_claim_no,
        "part_description": sub.part_description,
        "damage_part_number": sub.damage_part_number,
        "repeated_repair": sub.repeated_repair,
        "breakdown": sub.breakdown,
        "attachments": list(sub.attachments or []),
        "declaration_accepted": sub.declaration_accepted,
        "created_by_user_id": sub.created_by_user_id,
        "last_updated_by_user_id": sub.last_updated_by_user_id,
        "status_history": [
            {
                "status": h.status,
                "changed_by": h.changed_by_user_id,
                "changed_at": _iso(h.changed_at),
                "notes": h.notes,
            }
            for h in sub.status_history
        ],
    }
