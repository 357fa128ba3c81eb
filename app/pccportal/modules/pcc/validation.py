"""
Validation for PCC submissions.

Field formats (VIN, registration number, part number, dates) apply to every
submission; the condition type then adds its own thresholds and forces a few
derived fields. All failures are collected into one field -> message map.
"""
from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import date
from typing import Any

VIN_RE = re.compile(r"^[A-HJ-NPR-Z0-9]{17}$", re.IGNORECASE)
REGISTRATION_RE = re.compile(r"^[A-Z]{2}\d{2}[A-Z]{1,2}\d{4}$", re.IGNORECASE)
PART_NUMBER_RE = re.compile(r"^[A-Z0-9]+$", re.IGNORECASE)
DISS_TICKET_RE = re.compile(r"^\d+$")

BRANDS = ("volkswagen", "skoda")
MODELS = {
    "volkswagen": ("Virtus", "Taigun", "Tiguan", "Polo", "Vento"),
    "skoda": ("Slavia", "Kushaq", "Kodiaq", "Octavia", "Superb"),
}
TOPICS = ("dealer_pcc", "long_term_pcc")
SUBTOPICS = ("engine", "transmission", "electrical", "suspension", "brakes", "body", "interior", "other")

MAX_ATTACHMENTS = 3
MAX_ATTACHMENT_BYTES = 500 * 1024 * 1024


class ValidationError(ValueError):
    def __init__(self, errors: dict[str, str]) -> None:
        self.errors = dict(errors)
        super().__init__("; ".join(f"{k}: {v}" for k, v in self.errors.items()))


@dataclass(frozen=True)
class ConditionRule:
    label: str
    min_claims: int | None = None
    min_repairs: int | None = None
    warranty_period: str = "any"
    requires_countermeasure_date: bool = False
    requires_sale_date: bool = False
    repair_within_months_of_sale: int | None = None
    forces_breakdown: bool = False
    forces_repeated_repair: bool = False
    requires_tpi_or_repair_failure: bool = False


CONDITION_RULES: dict[str, ConditionRule] = {
    "warranty_cases": ConditionRule("Warranty cases", min_claims=5, warranty_period="lte_2_years"),
    "post_warranty_cases": ConditionRule("Post-warranty cases", min_claims=10, warranty_period="gt_2_years"),
    "after_countermeasure": ConditionRule("After countermeasure", min_claims=3, requires_countermeasure_date=True),
    "new_model_launch": ConditionRule(
        "New model launch",
        min_claims=3,
        requires_sale_date=True,
        repair_within_months_of_sale=3,
    ),
    "breakdown_cases": ConditionRule("Breakdown cases", min_claims=3, forces_breakdown=True),
    "repeat_repairs": ConditionRule("Repeat repairs", min_repairs=2, forces_repeated_repair=True),
    "tpi_unavailable": ConditionRule("TPI unavailable", requires_tpi_or_repair_failure=True),
}


# ---------- field helpers ----------
def is_valid_vin(vin: str | None) -> bool:
    return bool(vin) and bool(VIN_RE.fullmatch(vin))


def is_valid_registration_no(reg_no: str | None) -> bool:
    return bool(reg_no) and bool(REGISTRATION_RE.fullmatch(re.sub(r"\s", "", reg_no)))


def is_valid_part_number(part_no: str | None) -> bool:
    return bool(part_no) and bool(PART_NUMBER_RE.fullmatch(part_no))


def parse_positive_int(value: Any) -> int | None:
    """Return the integer if value is a positive integer (int or digit string), else None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    raw = str(value or "").strip()
    if not re.fullmatch(r"\d+", raw):
        return None
    n = int(raw)
    return n if n > 0 else None


def parse_non_negative_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    raw = str(value if value is not None else "").strip()
    if not re.fullmatch(r"\d+", raw):
        return None
    return int(raw)


def parse_date(value: Any) -> date | None:
    """Parse YYYY-MM-DD; raises ValueError on a malformed string."""
    if isinstance(value, date):
        return value
    raw = str(value or "").strip()
    if not raw:
        return None
    return date.fromisoformat(raw)


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


def add_months(d: date, months: int) -> date:
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def _text(payload: dict, key: str) -> str:
    return str(payload.get(key) or "").strip()


def _date_field(payload: dict, key: str, label: str, errors: dict[str, str], *, required: bool) -> date | None:
    try:
        d = parse_date(payload.get(key))
    except ValueError:
        errors[key] = f"{label} must be a valid date (YYYY-MM-DD)"
        return None
    if d is None and required:
        errors[key] = f"{label} is required"
    return d


def _validate_attachments(raw: Any, errors: dict[str, str]) -> list[dict]:
    if not raw:
        return []
    if not isinstance(raw, list):
        errors["attachments"] = "Attachments must be a list"
        return []
    if len(raw) > MAX_ATTACHMENTS:
        errors["attachments"] = f"Maximum {MAX_ATTACHMENTS} attachments allowed"
        return []
    cleaned = []
    for item in raw:
        name = str((item or {}).get("name") or "").strip() if isinstance(item, dict) else ""
        size = parse_non_negative_int(item.get("size")) if isinstance(item, dict) else None
        if not name or size is None:
            errors["attachments"] = "Each attachment needs a name and a size"
            return []
        if size > MAX_ATTACHMENT_BYTES:
            errors["attachments"] = f"{name} exceeds 500MB limit"
            return []
        cleaned.append({"name": name, "size": size, "type": str(item.get("type") or "")})
    return cleaned


# ---------- condition rules ----------
def _apply_condition_rules(cleaned: dict, payload: dict, errors: dict[str, str]) -> None:
    condition_type = cleaned.get("condition_type")
    rule = CONDITION_RULES.get(condition_type or "")
    if rule is None:
        errors["condition_type"] = "Condition type is required" if not condition_type else "Unknown condition type"
        return

    cleaned["warranty_period"] = rule.warranty_period

    raw_claims = payload.get("number_of_claims")
    claims = parse_non_negative_int(raw_claims)
    if raw_claims not in (None, "") and claims is None:
        errors["number_of_claims"] = "Number of claims must be a whole number"
    elif rule.min_claims is not None and (claims is None or claims < rule.min_claims):
        errors["number_of_claims"] = f"At least {rule.min_claims} claims are required for {rule.label.lower()}"
    cleaned["number_of_claims"] = claims

    raw_repairs = payload.get("number_of_repairs")
    repairs = parse_non_negative_int(raw_repairs)
    if raw_repairs not in (None, "") and repairs is None:
        errors["number_of_repairs"] = "Number of repairs must be a whole number"
    elif rule.min_repairs is not None and (repairs is None or repairs < rule.min_repairs):
        errors["number_of_repairs"] = f"At least {rule.min_repairs} repairs on the same VIN are required"
    cleaned["number_of_repairs"] = repairs

    cleaned["countermeasure_date"] = _date_field(
        payload, "countermeasure_date", "Countermeasure date", errors, required=rule.requires_countermeasure_date
    )
    sale_date = _date_field(payload, "sale_date", "Sale date", errors, required=rule.requires_sale_date)
    cleaned["sale_date"] = sale_date

    repair_date = cleaned.get("repair_date")
    if rule.repair_within_months_of_sale and sale_date and repair_date and "repair_date" not in errors:
        limit = add_months(sale_date, rule.repair_within_months_of_sale)
        if not (sale_date <= repair_date <= limit):
            errors["repair_date"] = (
                f"Repair date must be within {rule.repair_within_months_of_sale} months of the sale date"
            )

    if rule.forces_breakdown:
        cleaned["breakdown"] = True
    if rule.forces_repeated_repair:
        cleaned["repeated_repair"] = True

    tpi_result = parse_non_negative_int(payload.get("tpi_result"))
    repair_success = parse_non_negative_int(payload.get("repair_success"))
    cleaned["tpi_result"] = tpi_result
    cleaned["repair_success"] = repair_success
    if rule.requires_tpi_or_repair_failure and tpi_result != 0 and repair_success != 0:
        errors["tpi_result"] = "TPI result or repair success must be 0 when no TPI is available"


def validate_submission(payload: dict, *, today: date | None = None) -> tuple[dict, dict[str, str]]:
    """
    Validate and normalise a submission payload.
    Returns (cleaned_fields, errors); errors is empty when the payload is acceptable.
    """
    today = today or date.today()
    errors: dict[str, str] = {}
    cleaned: dict[str, Any] = {}
    if not isinstance(payload, dict):
        return cleaned, {"_": "JSON object expected"}

    # Vehicle
    brand = _text(payload, "brand").lower()
    if not brand:
        errors["brand"] = "Brand is required"
    elif brand not in BRANDS:
        errors["brand"] = "Unknown brand"
    cleaned["brand"] = brand

    model = _text(payload, "model")
    if not model:
        errors["model"] = "Model is required"
    elif brand in MODELS and model not in MODELS[brand]:
        errors["model"] = f"Unknown model for {brand}"
    cleaned["model"] = model

    vin = _text(payload, "vin").upper()
    if not vin:
        errors["vin"] = "VIN is required"
    elif not is_valid_vin(vin):
        errors["vin"] = "Invalid VIN format (17 alphanumeric characters, no I, O or Q)"
    cleaned["vin"] = vin

    reg_no = re.sub(r"\s", "", _text(payload, "registration_no")).upper()
    if not reg_no:
        errors["registration_no"] = "Registration No is required"
    elif not is_valid_registration_no(reg_no):
        errors["registration_no"] = "Invalid registration format"
    cleaned["registration_no"] = reg_no

    production_date = _date_field(payload, "production_date", "Production date", errors, required=True)
    if production_date and production_date > today:
        errors["production_date"] = "Production date cannot be in the future"
    cleaned["production_date"] = production_date

    # Details
    topic = _text(payload, "topic") or "dealer_pcc"
    if topic not in TOPICS:
        errors["topic"] = "Unknown topic"
    cleaned["topic"] = topic

    subtopic = _text(payload, "subtopic")
    if not subtopic:
        errors["subtopic"] = "Subtopic is required"
    elif subtopic not in SUBTOPICS:
        errors["subtopic"] = "Unknown subtopic"
    cleaned["subtopic"] = subtopic

    cleaned["escalated_to_brand"] = parse_bool(payload.get("escalated_to_brand"))
    cleaned["escalation_notes"] = _text(payload, "escalation_notes") or None

    # Technical
    for key, label in (("engine_code", "Engine code"), ("gearbox_code", "Gearbox code")):
        value = _text(payload, key)
        if not value:
            errors[key] = f"{label} is required"
        cleaned[key] = value

    raw_mileage = payload.get("mileage")
    mileage = parse_positive_int(raw_mileage)
    if raw_mileage in (None, ""):
        errors["mileage"] = "Mileage is required"
    elif mileage is None:
        errors["mileage"] = "Mileage must be a positive number"
    cleaned["mileage"] = mileage

    repair_date = _date_field(payload, "repair_date", "Repair date", errors, required=True)
    if repair_date and repair_date > today:
        errors["repair_date"] = "Repair date cannot be in the future"
    cleaned["repair_date"] = repair_date

    # Complaint
    diss = _text(payload, "diss_ticket_no")
    if diss and not DISS_TICKET_RE.fullmatch(diss):
        errors["diss_ticket_no"] = "DISS Ticket must be numeric"
    cleaned["diss_ticket_no"] = diss or None
    cleaned["warranty_claim_no"] = _text(payload, "warranty_claim_no") or None

    part_description = _text(payload, "part_description")
    if not part_description:
        errors["part_description"] = "Part description is required"
    cleaned["part_description"] = part_description

    part_no = _text(payload, "damage_part_number").upper()
    if not part_no:
        errors["damage_part_number"] = "Damage part number is required"
    elif not is_valid_part_number(part_no):
        errors["damage_part_number"] = "Part number can only contain letters and numbers"
    cleaned["damage_part_number"] = part_no

    cleaned["repeated_repair"] = parse_bool(payload.get("repeated_repair"))
    cleaned["breakdown"] = parse_bool(payload.get("breakdown"))

    fault_code = _text(payload, "fault_code").upper()
    if not fault_code:
        errors["fault_code"] = "Fault code is required"
    cleaned["fault_code"] = fault_code

    cleaned["condition_type"] = _text(payload, "condition_type")
    _apply_condition_rules(cleaned, payload, errors)

    cleaned["attachments"] = _validate_attachments(payload.get("attachments"), errors)

    cleaned["declaration_accepted"] = parse_bool(payload.get("declaration_accepted"))
    if not cleaned["declaration_accepted"]:
        errors["declaration_accepted"] = "You must accept the declaration"

    return cleaned, errors
