from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.pccportal.audit import record_event
from app.pccportal.auth import require_actor
from app.pccportal.constants import DEALER_ROLES, MANUFACTURER_ROLES
from app.pccportal.modules.access_requests.models import AccessRequest
from app.pccportal.modules.pcc.validation import ValidationError
from app.pccportal.rbac import ensure_role
from app.pccportal.repository import repository_for

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.pccportal.models import User

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
# Indian mobile number: 10 digits, first digit 6-9
PHONE_RE = re.compile(r"^[6-9]\d{9}$")

REQUEST_STATUSES = ("pending", "approved", "rejected")


class AlreadyProcessedError(ValueError):
    pass


def validate_access_request(payload: dict) -> tuple[dict, dict[str, str]]:
    errors: dict[str, str] = {}
    cleaned: dict[str, Any] = {}
    if not isinstance(payload, dict):
        return cleaned, {"_": "JSON object expected"}

    for key, label in (
        ("dealer_code", "Dealer code"),
        ("dealer_name", "Dealer name"),
        ("city", "City"),
        ("contact_person", "Contact person"),
    ):
        value = str(payload.get(key) or "").strip()
        if not value:
            errors[key] = f"{label} is required"
        cleaned[key] = value
    cleaned["dealer_code"] = cleaned["dealer_code"].upper()

    email = str(payload.get("email") or "").strip().lower()
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

    role = str(payload.get("requested_role") or "").strip()
    if not role:
        errors["requested_role"] = "Requested role is required"
    elif role not in DEALER_ROLES:
        errors["requested_role"] = "Unknown role"
    cleaned["requested_role"] = role

    cleaned["employee_id"] = str(payload.get("employee_id") or "").strip() or None
    return cleaned, errors


def submit_access_request(s: "Session", payload: dict) -> AccessRequest:
    """Public entry point; there is no actor yet."""
    cleaned, errors = validate_access_request(payload)
    if errors:
        raise ValidationError(errors)

    req = AccessRequest(**cleaned, status="pending", created_at=datetime.utcnow())
    repository_for(s, "access_requests").create(req)
    record_event(
        s,
        actor=None,
        module="system",
        action="create",
        entity_type="access_request",
        entity_id=str(req.id),
        details={"email": req.email, "requested_role": req.requested_role},
        notes=f"Access requested by {req.contact_person} ({req.dealer_code})",
    )
    logger.info("Access request %s submitted for %s", req.id, req.email)
    return req


def list_access_requests(s: "Session", status: str | None = None) -> list[AccessRequest]:
    repo = repository_for(s, "access_requests")
    items = repo.query(AccessRequest.status == status) if status else repo.get_all()
    return sorted(items, key=lambda r: (r.created_at, r.id), reverse=True)


def process_access_request(
    s: "Session",
    request_id: int,
    decision: str,
    actor: "User | None",
    notes: str | None = None,
) -> AccessRequest | None:
    actor = require_actor(actor)
    ensure_role(actor, MANUFACTURER_ROLES, "process access requests")
    if decision not in ("approved", "rejected"):
        raise ValidationError({"decision": "Decision must be approved or rejected"})

    req = repository_for(s, "access_requests").get_by_id(request_id)
    if req is None:
        return None
    if req.status != "pending":
        raise AlreadyProcessedError(f"Access request {req.id} is already {req.status}.")

    notes = (notes or "").strip() or None
    req.status = decision
    req.processed_by_user_id = actor.id
    req.processed_at = datetime.utcnow()
    req.notes = notes
    s.flush()

    record_event(
        s,
        actor=actor,
        module="system",
        action="approve" if decision == "approved" else "reject",
        entity_type="access_request",
        entity_id=str(req.id),
        details={"email": req.email, "requested_role": req.requested_role},
        notes=notes,
    )
    logger.info("Access request %s %s by user %s", req.id, decision, actor.id)
    return req


def access_request_to_dict(req: AccessRequest) -> dict[str, Any]:
    return {
        "id": req.id,
        "dealer_code": req.dealer_code,
        "dealer_name": req.dealer_name,
        "city": req.city,
        "contact_person": req.contact_person,
        "email": req.email,
        "phone": req.phone,
        "requested_role": req.requested_role,
        "employee_id": req.employee_id,
        "status": req.status,
        "created_at": req.created_at.isoformat() if req.created_at else None,
        "processed_by_user_id": req.processed_by_user_id,
        "processed_at": req.processed_at.isoformat() if req.processed_at else None,
        "notes": req.notes,
    }
