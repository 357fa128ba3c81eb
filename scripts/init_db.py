import os
import sys
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.pccportal.models import Dealer, User
from app.pccportal.modules.feature_flags.service import FeatureFlagRegistry
from app.pccportal.modules.pcc.models import PCCReferenceSequence, PCCStatusHistory, PCCSubmission

SAMPLE_DEALER = {
    "code": "DLR001",
    "name": "Premium Motors Delhi",
    "city": "New Delhi",
    "contact_person": "Rajesh Kumar",
    "email": "rajesh.kumar@premiummotors.in",
    "phone": "9876543210",
}

MANUFACTURER_USERS = (
    # email, employee_id, name, role
    ("superadmin@vw.in", "VW-SA-001", "System Administrator", "super_admin"),
    ("admin@vw.in", "VW-AD-001", "Manufacturer Admin", "admin"),
)

DEALER_USERS = (
    ("mt@premiummotors.in", "PM-MT-001", "Amit Singh", "master_technician"),
    ("sm@premiummotors.in", "PM-SM-001", "Priya Sharma", "service_manager"),
    ("sh@premiummotors.in", "PM-SH-001", "Vikram Patel", "service_head"),
    ("wm@premiummotors.in", "PM-WM-001", "Neha Gupta", "warranty_manager"),
)

# (reference, created_by, fields, history[(status, by, at, notes)])
SAMPLE_SUBMISSIONS = (
    (
        "PCC-IN-2024-1001",
        "mt@premiummotors.in",
        {
            "brand": "volkswagen",
            "model": "Virtus",
            "vin": "WVWZZZ3CZWE123456",
            "registration_no": "DL01AB1234",
            "production_date": date(2023, 6, 15),
            "condition_type": "warranty_cases",
            "warranty_period": "lte_2_years",
            "number_of_claims": 5,
            "fault_code": "P0299",
            "topic": "dealer_pcc",
            "subtopic": "engine",
            "escalated_to_brand": False,
            "engine_code": "CZDA",
            "gearbox_code": "DQ200",
            "mileage": 25000,
            "repair_date": date(2024, 1, 10),
            "part_description": "Turbocharger Assembly",
            "damage_part_number": "04E145721B",
            "repeated_repair": False,
            "breakdown": False,
        },
        (
            ("submitted", "mt@premiummotors.in", "2024-01-10T10:00:00", None),
            ("under_review", "admin@vw.in", "2024-01-11T09:00:00", None),
            ("approved", "admin@vw.in", "2024-01-12T14:30:00", None),
        ),
    ),
    (
        "PCC-IN-2024-1002",
        "sm@premiummotors.in",
        {
            "brand": "skoda",
            "model": "Slavia",
            "vin": "TMBJC9NE9N0123456",
            "registration_no": "DL02CD5678",
            "production_date": date(2023, 8, 20),
            "condition_type": "repeat_repairs",
            "warranty_period": "any",
            "number_of_claims": 3,
            "number_of_repairs": 3,
            "fault_code": "U0428",
            "topic": "dealer_pcc",
            "subtopic": "electrical",
            "escalated_to_brand": True,
            "escalation_notes": "Recurring issue with infotainment system",
            "engine_code": "CWVA",
            "gearbox_code": "MQ250",
            "mileage": 15000,
            "repair_date": date(2024, 1, 15),
            "part_description": "Infotainment Unit",
            "damage_part_number": "6V0035874",
            "repeated_repair": True,
            "breakdown": False,
        },
        (
            ("submitted", "sm@premiummotors.in", "2024-01-15T11:30:00", None),
            ("under_review", "admin@vw.in", "2024-01-16T09:00:00", None),
        ),
    ),
    (
        "PCC-IN-2024-1003",
        "wm@premiummotors.in",
        {
            "brand": "volkswagen",
            "model": "Taigun",
            "vin": "WVWZZZ5NZXE654321",
            "registration_no": "DL03EF9012",
            "production_date": date(2023, 4, 10),
            "condition_type": "breakdown_cases",
            "warranty_period": "any",
            "number_of_claims": 3,
            "fault_code": "C1234",
            "topic": "long_term_pcc",
            "subtopic": "suspension",
            "escalated_to_brand": False,
            "engine_code": "DPCA",
            "gearbox_code": "DQ381",
            "mileage": 45000,
            "repair_date": date(2024, 1, 18),
            "part_description": "Front Shock Absorber",
            "damage_part_number": "2GS413031A",
            "repeated_repair": False,
            "breakdown": True,
        },
        (
            ("submitted", "wm@premiummotors.in", "2024-01-18T14:00:00", None),
            ("more_info_required", "admin@vw.in", "2024-01-19T10:00:00", "Please provide photos of the damaged component"),
        ),
    ),
)


@contextmanager
def _session_scope(database_url: str):
    engine = create_engine(database_url, future=True)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()


def _ensure_user(s: Session, email: str, employee_id: str, name: str, role: str, password: str, dealer: Dealer | None) -> User:
    user = s.scalars(select(User).where(User.email == email)).one_or_none()
    if not user:
        user = User(
            email=email,
            password_hash=generate_password_hash(password),
            employee_id=employee_id,
            name=name,
            role=role,
            dealer_id=dealer.id if dealer else None,
            is_active=True,
        )
        s.add(user)
        s.flush()
    return user


def _seed_submissions(s: Session, dealer: Dealer, users: dict[str, User]) -> None:
    highest: dict[int, int] = {}
    for ref, created_by, fields, history in SAMPLE_SUBMISSIONS:
        year, seq = int(ref.split("-")[2]), int(ref.split("-")[3])
        highest[year] = max(highest.get(year, 0), seq)
        if s.scalars(select(PCCSubmission.id).where(PCCSubmission.reference_number == ref)).first() is not None:
            continue

        created_at = datetime.fromisoformat(history[0][2])
        updated_at = datetime.fromisoformat(history[-1][2])
        sub = PCCSubmission(
            reference_number=ref,
            status=history[-1][0],
            dealer_id=dealer.id,
            dealer_code=dealer.code,
            dealer_name=dealer.name,
            contact_person=dealer.contact_person,
            email=dealer.email,
            attachments=[],
            declaration_accepted=True,
            created_at=created_at,
            updated_at=updated_at,
            created_by_user_id=users[created_by].id,
            last_updated_by_user_id=users[history[-1][1]].id,
            **fields,
        )
        for i, (status, by, at, notes) in enumerate(history, start=1):
            sub.status_history.append(
                PCCStatusHistory(
                    sequence=i,
                    status=status,
                    changed_by_user_id=users[by].id,
                    changed_at=datetime.fromisoformat(at),
                    notes=notes,
                )
            )
        s.add(sub)

    # Keep the reference counter ahead of the seeded numbers.
    for year, seq in highest.items():
        counter = s.get(PCCReferenceSequence, year)
        if counter is None:
            s.add(PCCReferenceSequence(year=year, last_value=seq))
        elif counter.last_value < seq:
            counter.last_value = seq


def seed_only(*, database_url: str | None = None, with_samples: bool | None = None) -> None:
    """
    Seed the sample dealer, users, feature flags and sample submissions in an idempotent way.
    Does NOT overwrite existing users' passwords.
    """
    admin_password = os.environ.get("ADMIN_PASSWORD") or "admin123"
    dealer_password = os.environ.get("DEALER_PASSWORD") or "dealer123"
    if with_samples is None:
        with_samples = (os.environ.get("SEED_SAMPLE_DATA") or "1").strip() not in ("0", "false", "no")

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///pccportal.db").strip()

    # Direct engine/session so this can run in release without importing app.wsgi.
    with _session_scope(db_url) as s:
        dealer = s.scalars(select(Dealer).where(Dealer.code == SAMPLE_DEALER["code"])).one_or_none()
        if not dealer:
            dealer = Dealer(**SAMPLE_DEALER, is_active=True)
            s.add(dealer)
            s.flush()

        users: dict[str, User] = {}
        for email, employee_id, name, role in MANUFACTURER_USERS:
            users[email] = _ensure_user(s, email, employee_id, name, role, admin_password, None)
        for email, employee_id, name, role in DEALER_USERS:
            users[email] = _ensure_user(s, email, employee_id, name, role, dealer_password, dealer)

        FeatureFlagRegistry().load(s)

        if with_samples:
            _seed_submissions(s, dealer, users)

    print("Initialized database (seed_only).")
    print("Manufacturer logins: superadmin@vw.in, admin@vw.in (password from ADMIN_PASSWORD)")
    print("Dealer logins: mt@, sm@, sh@, wm@premiummotors.in (password from DEALER_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
