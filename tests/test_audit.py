"""Tests for the audit recorder and the audit trail endpoint."""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select
from werkzeug.security import generate_password_hash

from app.pccportal import auth, create_app
from app.pccportal.audit import AuditRecorder, event_to_dict, record_event, validate_event
from app.pccportal.db import session_scope
from app.pccportal.models import AuditEvent, Base, User
from app.pccportal.repository import StorageError, repository_for


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
        s.add(User(email="admin@vw.in", role="admin", password_hash=generate_password_hash("pw"), is_active=True))
        s.add(User(email="mt@dealer.in", role="master_technician", password_hash=generate_password_hash("pw"), is_active=True))
    return app


def _user(s, email) -> User:
    return s.scalars(select(User).where(User.email == email)).one()


def _login(client, email, password="pw"):
    r = client.post("/auth/login", json={"email": email, "password": password})
    if r.json.get("otp_required"):
        r = client.post("/auth/otp", json={"otp": r.json["dev_otp"]})
    assert r.status_code == 200


def test_event_validation_rejects_unknown_action_and_details():
    with pytest.raises(ValueError):
        validate_event("explode", None)
    with pytest.raises(ValueError):
        validate_event("status_change", {"colour": "red"})
    validate_event("status_change", {"previous_status": "submitted", "new_status": "approved"})


def test_rejected_event_is_logged_not_raised(app, caplog):
    with session_scope(app) as s:
        admin = _user(s, "admin@vw.in")
        assert record_event(s, actor=admin, module="system", action="explode") is None
        assert record_event(s, actor=admin, module="dealer_pcc", action="status_change", details={"colour": "red"}) is None
    assert "Audit event rejected" in caplog.text
    with session_scope(app) as s:
        assert AuditRecorder(s).get_all() == []


def test_record_event_serialises(app):
    with session_scope(app) as s:
        admin = _user(s, "admin@vw.in")
        ev = record_event(
            s,
            actor=admin,
            module="system",
            action="export",
            details={"format": "csv", "count": 3},
            request_id="req-1",
        )
        s.flush()
        d = event_to_dict(ev)
        assert d["user_id"] == admin.id
        assert d["role"] == "admin"
        assert d["details"] == {"count": 3, "format": "csv"}
        assert d["request_id"] == "req-1"


def test_audit_rows_are_append_only(app):
    with session_scope(app) as s:
        ev = record_event(s, actor=None, module="system", action="logout")
        s.flush()
        repo = repository_for(s, "audit_logs")
        with pytest.raises(StorageError):
            repo.update(ev.id, {"notes": "edited"})
        with pytest.raises(StorageError):
            repo.delete(ev.id)


def test_recorder_queries(app):
    with session_scope(app) as s:
        admin = _user(s, "admin@vw.in")
        mt = _user(s, "mt@dealer.in")
        old = record_event(s, actor=mt, module="dealer_pcc", action="create", entity_type="pcc_submission",
                           entity_id="1", details={"reference_number": "PCC-IN-2024-1001"})
        old.created_at = datetime(2024, 1, 10, 10, 0)
        mid = record_event(s, actor=admin, module="dealer_pcc", action="status_change", entity_type="pcc_submission",
                           entity_id="1", details={"previous_status": "submitted", "new_status": "approved"})
        mid.created_at = datetime(2024, 1, 12, 14, 30)
        new = record_event(s, actor=admin, module="mt_meet", action="flag_toggle", entity_type="feature_flag",
                           entity_id="mt_meet", details={"previous_state": False, "new_state": True})
        new.created_at = datetime(2024, 2, 1, 9, 0)
        admin_id, mt_id = admin.id, mt.id

    with session_scope(app) as s:
        rec = AuditRecorder(s)
        assert [e.action for e in rec.get_all()] == ["flag_toggle", "status_change", "create"]
        assert [e.action for e in rec.get_by_user(admin_id)] == ["flag_toggle", "status_change"]
        assert [e.action for e in rec.get_by_user(mt_id)] == ["create"]
        assert [e.action for e in rec.get_by_module("dealer_pcc")] == ["status_change", "create"]
        assert [e.module for e in rec.get_by_action("flag_toggle")] == ["mt_meet"]
        in_jan = rec.get_by_date_range(datetime(2024, 1, 1), datetime(2024, 1, 31, 23, 59))
        assert [e.action for e in in_jan] == ["status_change", "create"]
        assert len(rec.get_by_entity("pcc_submission", "1")) == 2
        assert rec.get_by_entity("pcc_submission", "2") == []


def test_audit_endpoint(app):
    dealer = app.test_client()
    _login(dealer, "mt@dealer.in")
    assert dealer.get("/admin/audit").status_code == 302

    admin = app.test_client()
    _login(admin, "admin@vw.in")
    r = admin.get("/admin/audit?module=auth&action=login")
    assert r.status_code == 200
    emails = {e["user_email"] for e in r.json["events"]}
    assert emails == {"mt@dealer.in", "admin@vw.in"}

    today = datetime.utcnow().date()
    r = admin.get(f"/admin/audit?date_from={today.isoformat()}&date_to={today.isoformat()}")
    assert len(r.json["events"]) == 2
    r = admin.get(f"/admin/audit?date_to={(today - timedelta(days=2)).isoformat()}")
    assert r.json["events"] == []
    assert admin.get("/admin/audit?date_from=yesterday").status_code == 422


def test_audit_endpoint_caps_results(app):
    with session_scope(app) as s:
        for i in range(205):
            s.add(AuditEvent(created_at=datetime.utcnow(), module="system", action="export", notes=str(i)))
    admin = app.test_client()
    _login(admin, "admin@vw.in")
    assert len(admin.get("/admin/audit?action=export").json["events"]) == 200
