"""Tests for MT Meet scheduling, attendance and feedback."""
from datetime import date

import pytest
from sqlalchemy import select
from werkzeug.security import generate_password_hash

from app.pccportal import auth, create_app
from app.pccportal.audit import AuditRecorder, event_details
from app.pccportal.db import session_scope
from app.pccportal.models import Base, Dealer, User
from app.pccportal.modules.mt_meet.service import (
    FeedbackAlreadySubmittedError,
    compute_meet_stats,
    create_meet,
    get_meet,
    register_for_meet,
    submit_feedback,
    update_attendance,
    update_meet,
)
from app.pccportal.modules.pcc.validation import ValidationError
from app.pccportal.rbac import ActorNotPermittedError

TODAY = date(2024, 6, 1)


def _meet(**overrides):
    p = {
        "title": "MT Meet Delhi Q3",
        "meet_date": "2024-07-20",
        "start_time": "09:30",
        "end_time": "17:00",
        "venue": "Hotel Pullman Aerocity",
        "city": "New Delhi",
        "brand": "both",
        "max_participants": 30,
        "agenda": [
            {"time": "14:00", "title": "DSG diagnostics", "speaker": "R. Iyer", "duration": 90},
            {"time": "09:30", "title": "Welcome", "duration": 15},
        ],
    }
    p.update(overrides)
    return p


def _registration(**overrides):
    p = {
        "name": "Sunil Kumar",
        "email": "sunil@metro.in",
        "phone": "9812345678",
        "dealer_code": "dlr002",
        "dealer_name": "Metro Motors Pune",
        "brand": "skoda",
        "years_of_experience": 12,
        "specialization": "Electrical",
    }
    p.update(overrides)
    return p


_FEEDBACK = {
    "overall_rating": 4,
    "content_quality": 5,
    "venue_rating": 3,
    "organization_rating": 4,
    "speaker_rating": 5,
    "key_takeaways": "New DSG adaptation procedure",
    "would_recommend": "yes",
}


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("CSRF_ENABLED", "0")
    auth._login_attempts.clear()

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        d1 = Dealer(code="DLR001", name="Premium Motors Delhi", city="New Delhi")
        d2 = Dealer(code="DLR002", name="Metro Motors Pune", city="Pune")
        s.add_all([d1, d2])
        s.flush()
        for email, name, role, dealer_id in (
            ("mt@dealer.in", "Amit Singh", "master_technician", d1.id),
            ("other@dealer.in", "Other Dealer", "service_manager", d2.id),
            ("admin@vw.in", "Manufacturer Admin", "admin", None),
            ("superadmin@vw.in", "System Administrator", "super_admin", None),
        ):
            s.add(User(email=email, name=name, role=role, dealer_id=dealer_id,
                       password_hash=generate_password_hash("pw"), is_active=True))
    return app


def _user(s, email) -> User:
    return s.scalars(select(User).where(User.email == email)).one()


def _login(client, email, password="pw"):
    r = client.post("/auth/login", json={"email": email, "password": password})
    if r.json.get("otp_required"):
        r = client.post("/auth/otp", json={"otp": r.json["dev_otp"]})
    assert r.status_code == 200


def test_create_meet_orders_agenda_and_checks_times(app):
    with session_scope(app) as s:
        admin = _user(s, "admin@vw.in")
        meet = create_meet(s, _meet(), admin)
        assert [item["title"] for item in meet.agenda] == ["Welcome", "DSG diagnostics"]
        assert meet.agenda[0]["speaker"] is None
        assert meet.status == "scheduled"
        meet_id = meet.id

        with pytest.raises(ValidationError) as exc:
            create_meet(s, _meet(end_time="09:00", brand="audi", agenda=[{"time": "10:00", "title": "Intro"}]), admin)
        assert set(exc.value.errors) == {"end_time", "brand", "agenda"}
        with pytest.raises(ActorNotPermittedError):
            create_meet(s, _meet(), _user(s, "mt@dealer.in"))

    with session_scope(app) as s:
        events = AuditRecorder(s).get_by_entity("mt_meet", str(meet_id))
        assert event_details(events[0]) == {"title": "MT Meet Delhi Q3", "date": "2024-07-20"}


def test_update_meet_revalidates_the_merged_record(app):
    with session_scope(app) as s:
        admin = _user(s, "admin@vw.in")
        meet_id = create_meet(s, _meet(), admin).id

    with session_scope(app) as s:
        admin = _user(s, "admin@vw.in")
        with pytest.raises(ValidationError) as exc:
            update_meet(s, meet_id, {"start_time": "18:00"}, admin)
        assert "end_time" in exc.value.errors
        meet = update_meet(s, meet_id, {"city": "Gurugram", "status": "ongoing"}, admin)
        assert (meet.city, meet.status) == ("Gurugram", "ongoing")
        assert update_meet(s, meet_id, {"city": "Gurugram"}, admin) is meet
        assert update_meet(s, 999, {"city": "Pune"}, admin) is None

    with session_scope(app) as s:
        updates = [e for e in AuditRecorder(s).get_by_entity("mt_meet", str(meet_id)) if e.action == "update"]
        assert [event_details(e) for e in updates] == [{"changes": ["city", "status"]}]


def test_technician_registers_themselves(app):
    with session_scope(app) as s:
        meet_id = create_meet(s, _meet(), _user(s, "admin@vw.in")).id

    with session_scope(app) as s:
        mt = _user(s, "mt@dealer.in")
        p = register_for_meet(s, meet_id, {"phone": "9876543210", "brand": "volkswagen", "years_of_experience": 8}, mt)
        assert p.technician_id == mt.id
        assert (p.name, p.email) == ("Amit Singh", "mt@dealer.in")
        assert (p.dealer_code, p.dealer_name) == ("DLR001", "Premium Motors Delhi")
        assert p.status == "registered"
        assert get_meet(s, meet_id).current_participants == 1
        pid = p.id

        with pytest.raises(ValidationError) as exc:
            register_for_meet(s, meet_id, {"phone": "9876543210", "brand": "volkswagen", "years_of_experience": 8}, mt)
        assert "email" in exc.value.errors

        # manufacturer staff registering someone else must give the dealer details
        with pytest.raises(ValidationError) as exc:
            register_for_meet(s, meet_id, _registration(dealer_code="", dealer_name=""), _user(s, "admin@vw.in"))
        assert {"dealer_code", "dealer_name"} <= set(exc.value.errors)

    with session_scope(app) as s:
        events = AuditRecorder(s).get_by_entity("mt_participant", str(pid))
        assert event_details(events[0]) == {"name": "Amit Singh", "meet_id": meet_id}


def test_feedback_rules(app):
    with session_scope(app) as s:
        admin = _user(s, "admin@vw.in")
        meet_id = create_meet(s, _meet(), admin).id
        pid = register_for_meet(s, meet_id, {"phone": "9876543210", "brand": "volkswagen", "years_of_experience": 8},
                                _user(s, "mt@dealer.in")).id

    with session_scope(app) as s:
        mt = _user(s, "mt@dealer.in")
        with pytest.raises(ValidationError) as exc:
            submit_feedback(s, meet_id, pid, _FEEDBACK, mt)
        assert "participant_id" in exc.value.errors
        with pytest.raises(ValidationError) as exc:
            submit_feedback(s, meet_id, pid, {**_FEEDBACK, "venue_rating": 6}, mt)
        assert set(exc.value.errors) == {"venue_rating"}

        update_attendance(s, pid, "attended", _user(s, "admin@vw.in"))
        with pytest.raises(ActorNotPermittedError):
            submit_feedback(s, meet_id, pid, _FEEDBACK, _user(s, "other@dealer.in"))
        assert submit_feedback(s, meet_id + 1, pid, _FEEDBACK, mt) is None

        fb = submit_feedback(s, meet_id, pid, _FEEDBACK, mt)
        assert fb.would_recommend is True
        assert fb.suggestions is None
        fb_id = fb.id

    with session_scope(app) as s:
        mt = _user(s, "mt@dealer.in")
        with pytest.raises(FeedbackAlreadySubmittedError):
            submit_feedback(s, meet_id, pid, _FEEDBACK, mt)
        events = AuditRecorder(s).get_by_entity("mt_feedback", str(fb_id))
        assert event_details(events[0]) == {"meet_id": meet_id, "rating": 4}


def test_attendance_statuses(app):
    with session_scope(app) as s:
        admin = _user(s, "admin@vw.in")
        meet_id = create_meet(s, _meet(), admin).id
        pid = register_for_meet(s, meet_id, _registration(), admin).id
        with pytest.raises(ValidationError):
            update_attendance(s, pid, "cancelled", admin)
        with pytest.raises(ActorNotPermittedError):
            update_attendance(s, pid, "attended", _user(s, "mt@dealer.in"))
        assert update_attendance(s, pid, "absent", admin).status == "absent"
        assert update_attendance(s, 999, "absent", admin) is None


def test_meet_stats(app):
    with session_scope(app) as s:
        admin = _user(s, "admin@vw.in")
        delhi = create_meet(s, _meet(), admin).id
        pune = create_meet(s, _meet(title="MT Meet Pune", city="Pune", meet_date="2024-05-10"), admin).id
        a = register_for_meet(s, delhi, _registration(email="a@metro.in", brand="volkswagen"), admin).id
        b = register_for_meet(s, delhi, _registration(email="b@metro.in"), admin).id
        register_for_meet(s, pune, _registration(email="c@metro.in", brand="volkswagen"), admin)
        for pid, meet_id, rating in ((a, delhi, 4), (b, delhi, 5)):
            update_attendance(s, pid, "attended", admin)
            submit_feedback(s, meet_id, pid, {**_FEEDBACK, "overall_rating": rating}, admin)

    with session_scope(app) as s:
        stats = compute_meet_stats(s, today=TODAY)
        assert stats.total_meets == 2
        assert stats.upcoming_meets == 1
        assert stats.total_attendees == 3
        assert stats.average_rating == 4.5
        assert stats.attendance_rate == pytest.approx(200 / 3)
        assert stats.by_brand == {"volkswagen": 2, "skoda": 1}
        assert stats.by_city == {"New Delhi": 1, "Pune": 1}
        assert [m.id for m in stats.recent_meets] == [pune, delhi]


def test_http_flow(app):
    with session_scope(app) as s:
        app.extensions["feature_flags"].set_flag(s, "mt_meet", True, _user(s, "superadmin@vw.in"))

    admin = app.test_client()
    _login(admin, "admin@vw.in")
    r = admin.post("/mt-meet/", json=_meet())
    assert r.status_code == 201
    meet_id = r.json["meet"]["id"]
    assert admin.post("/mt-meet/", json=_meet(start_time="9am")).status_code == 422

    dealer = app.test_client()
    _login(dealer, "mt@dealer.in")
    assert [m["id"] for m in dealer.get("/mt-meet/?city=new delhi").json["meets"]] == [meet_id]
    assert dealer.get("/mt-meet/?city=Pune").json["meets"] == []
    assert dealer.get("/mt-meet/?status=bogus").status_code == 422

    r = dealer.post(f"/mt-meet/{meet_id}/participants",
                    json={"phone": "9876543210", "brand": "volkswagen", "years_of_experience": 5})
    assert r.status_code == 201
    pid = r.json["participant"]["id"]

    assert dealer.post(f"/mt-meet/participants/{pid}/status", json={"status": "attended"}).status_code == 302
    assert admin.post(f"/mt-meet/participants/{pid}/status", json={"status": "attended"}).status_code == 200

    url = f"/mt-meet/{meet_id}/participants/{pid}/feedback"
    assert dealer.post(url, json=[4, 5]).status_code == 422
    assert dealer.post(url, json=_FEEDBACK).status_code == 201
    assert dealer.post(url, json=_FEEDBACK).status_code == 409
    assert dealer.post(f"/mt-meet/{meet_id}/participants/999/feedback", json=_FEEDBACK).status_code == 404

    detail = admin.get(f"/mt-meet/{meet_id}").json
    assert detail["participants"][0]["feedback_submitted"] is True
    assert len(detail["feedback"]) == 1
    assert "feedback" not in dealer.get(f"/mt-meet/{meet_id}").json

    assert admin.post(f"/mt-meet/{meet_id}", json={"venue": "Le Meridien"}).json["meet"]["venue"] == "Le Meridien"
    stats = admin.get("/mt-meet/stats").json["stats"]
    assert stats["average_rating"] == 4.0
    assert stats["attendance_rate"] == 100.0
