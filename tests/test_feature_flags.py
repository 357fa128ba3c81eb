"""Tests for the feature flag registry and module management endpoints."""
import json

import pytest
from sqlalchemy import select
from werkzeug.security import generate_password_hash

from app.pccportal import auth, create_app
from app.pccportal.audit import AuditRecorder, event_details
from app.pccportal.constants import MODULE_KEYS
from app.pccportal.db import session_scope
from app.pccportal.models import Base, ConfigRecord, Dealer, User
from app.pccportal.modules.feature_flags.service import (
    DEFAULT_FLAGS,
    FLAGS_CONFIG_KEY,
    FeatureFlagRegistry,
    ProtectedModuleError,
    make_flag,
)
from app.pccportal.repository import ConfigStore


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
        d = Dealer(code="DLR001", name="Premium Motors Delhi")
        s.add(d)
        s.flush()
        for email, role, dealer_id in (
            ("superadmin@vw.in", "super_admin", None),
            ("admin@vw.in", "admin", None),
            ("mt@dealer.in", "master_technician", d.id),
        ):
            s.add(User(email=email, role=role, dealer_id=dealer_id, password_hash=generate_password_hash("pw"), is_active=True))
    return app


def _user(s, email) -> User:
    return s.scalars(select(User).where(User.email == email)).one()


def _login(client, email, password="pw"):
    r = client.post("/auth/login", json={"email": email, "password": password})
    if r.json.get("otp_required"):
        r = client.post("/auth/otp", json={"otp": r.json["dev_otp"]})
    assert r.status_code == 200


# ---------- registry ----------
def test_defaults_are_seeded_on_first_load(app):
    reg = FeatureFlagRegistry()
    with session_scope(app) as s:
        flags = reg.get_all_flags(s)
    assert set(flags) == set(MODULE_KEYS)
    assert flags["dealer_pcc"]["enabled"] is True
    assert flags["dealer_pcc"]["reason"] == "Default module"
    assert all(not flags[k]["enabled"] for k in MODULE_KEYS if k != "dealer_pcc")
    assert all(f["lastModifiedBy"] == "system" for f in flags.values())

    with session_scope(app) as s:
        stored = ConfigStore(s).get(FLAGS_CONFIG_KEY)
    assert stored["version"] == 1


def test_set_flag_then_get_all_reflects_change(app):
    reg = FeatureFlagRegistry()
    with session_scope(app) as s:
        actor = _user(s, "superadmin@vw.in")
        flag = reg.set_flag(s, "mt_meet", True, actor, "Pilot in Delhi")
        assert flag["enabled"] is True
        assert flag["lastModifiedBy"] == str(actor.id)
        actor_id = actor.id

    with session_scope(app) as s:
        flags = reg.get_all_flags(s)
        assert flags["mt_meet"]["enabled"] is True
        assert flags["mt_meet"]["reason"] == "Pilot in Delhi"
        assert reg.get_flag(s, "mt_meet") is True
        assert reg.get_flag(s, "warranty_survey") is False

        events = AuditRecorder(s).get_by_action("flag_toggle")
        assert len(events) == 1
        assert events[0].actor_user_id == actor_id
        assert events[0].module == "mt_meet"
        assert event_details(events[0]) == {"previous_state": False, "new_state": True, "reason": "Pilot in Delhi"}


def test_subscriber_notified_once_after_commit(app):
    reg = FeatureFlagRegistry()
    calls = []
    reg.on_change(calls.append)

    with session_scope(app) as s:
        reg.set_flag(s, "workshop_survey", True, _user(s, "superadmin@vw.in"))
        assert calls == []

    assert len(calls) == 1
    assert calls[0]["workshop_survey"]["enabled"] is True
    assert set(calls[0]) == set(MODULE_KEYS)


def test_subscribers_called_in_registration_order_and_can_unsubscribe(app):
    reg = FeatureFlagRegistry()
    order = []
    reg.on_change(lambda flags: order.append("first"))
    unsubscribe = reg.on_change(lambda flags: order.append("second"))

    with session_scope(app) as s:
        reg.set_flag(s, "mt_meet", True, _user(s, "superadmin@vw.in"))
    assert order == ["first", "second"]

    unsubscribe()
    with session_scope(app) as s:
        reg.set_flag(s, "mt_meet", False, _user(s, "superadmin@vw.in"))
    assert order == ["first", "second", "first"]


def test_rolled_back_change_is_not_announced(app):
    reg = FeatureFlagRegistry()
    calls = []
    reg.on_change(calls.append)

    with pytest.raises(RuntimeError):
        with session_scope(app) as s:
            reg.set_flag(s, "mt_meet", True, _user(s, "superadmin@vw.in"))
            raise RuntimeError("boom")

    assert calls == []
    with session_scope(app) as s:
        assert reg.get_flag(s, "mt_meet") is False


def test_subscriber_cannot_set_flags(app):
    reg = FeatureFlagRegistry()
    errors = []

    def reenter(flags):
        try:
            reg.set_flag(None, "mt_meet", False, None)
        except RuntimeError as e:
            errors.append(e)

    reg.on_change(reenter)
    with session_scope(app) as s:
        reg.set_flag(s, "mt_meet", True, _user(s, "superadmin@vw.in"))
    assert len(errors) == 1


def test_subscriber_gets_a_copy(app):
    reg = FeatureFlagRegistry()

    def mutate(flags):
        flags["mt_meet"]["enabled"] = False

    reg.on_change(mutate)
    with session_scope(app) as s:
        reg.set_flag(s, "mt_meet", True, _user(s, "superadmin@vw.in"))
    with session_scope(app) as s:
        assert reg.get_flag(s, "mt_meet") is True


def test_dealer_pcc_cannot_be_disabled(app):
    reg = FeatureFlagRegistry()
    with session_scope(app) as s:
        with pytest.raises(ProtectedModuleError):
            reg.set_flag(s, "dealer_pcc", False, _user(s, "superadmin@vw.in"))
    with session_scope(app) as s:
        assert reg.get_flag(s, "dealer_pcc") is True
        assert AuditRecorder(s).get_by_action("flag_toggle") == []


def test_dealer_pcc_reads_enabled_even_if_stored_disabled(app):
    reg = FeatureFlagRegistry()
    with session_scope(app) as s:
        config = {"version": 1, "flags": reg.default_flags()}
        config["flags"]["dealer_pcc"]["enabled"] = False
        ConfigStore(s).set(FLAGS_CONFIG_KEY, config)
    with session_scope(app) as s:
        assert reg.get_all_flags(s)["dealer_pcc"]["enabled"] is True
        assert reg.get_flag(s, "dealer_pcc") is True


def test_unknown_module_key_rejected(app):
    reg = FeatureFlagRegistry()
    with session_scope(app) as s:
        with pytest.raises(ValueError):
            reg.set_flag(s, "surveys", True, _user(s, "superadmin@vw.in"))


# ---------- migration ----------
def test_migration_updates_system_owned_flags_only():
    stored = {
        "version": 1,
        "flags": {
            "api_registration": make_flag("api_registration", False, "system", "2024-01-01T00:00:00"),
            "mt_meet": make_flag("mt_meet", False, "7", "2024-02-01T00:00:00", "Paused by ops"),
        },
    }
    reg = FeatureFlagRegistry({**DEFAULT_FLAGS, "api_registration": True, "mt_meet": True}, version=2)
    migrated = reg.migrate(stored, now="2024-03-01T00:00:00")

    assert migrated["version"] == 2
    flags = migrated["flags"]
    assert flags["api_registration"]["enabled"] is True
    assert flags["api_registration"]["lastModifiedAt"] == "2024-03-01T00:00:00"
    assert flags["mt_meet"]["enabled"] is False
    assert flags["mt_meet"]["lastModifiedBy"] == "7"
    assert flags["mt_meet"]["reason"] == "Paused by ops"
    assert flags["dealer_pcc"]["enabled"] is True
    assert set(flags) == set(MODULE_KEYS)


def test_load_migrates_older_stored_version(app):
    with session_scope(app) as s:
        FeatureFlagRegistry().load(s)

    reg_v2 = FeatureFlagRegistry({**DEFAULT_FLAGS, "api_registration": True}, version=2)
    with session_scope(app) as s:
        assert reg_v2.get_flag(s, "api_registration") is True

    with session_scope(app) as s:
        rec = s.get(ConfigRecord, FLAGS_CONFIG_KEY)
        assert json.loads(rec.value_json)["version"] == 2


# ---------- HTTP ----------
def test_modules_list_is_super_admin_only(app):
    c = app.test_client()
    _login(c, "admin@vw.in")
    r = c.get("/admin/modules")
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/dashboard")

    c = app.test_client()
    _login(c, "superadmin@vw.in")
    r = c.get("/admin/modules")
    assert r.status_code == 200
    modules = {m["moduleKey"]: m for m in r.json["modules"]}
    assert set(modules) == set(MODULE_KEYS)
    assert modules["dealer_pcc"]["name"] == "Dealer PCC"


def test_toggle_module_and_gate_follows(app):
    dealer = app.test_client()
    _login(dealer, "mt@dealer.in")
    assert dealer.get("/modules/mt_meet").status_code == 404

    sa = app.test_client()
    _login(sa, "superadmin@vw.in")
    r = sa.get("/modules/mt_meet")
    assert r.status_code == 503
    assert r.json["manage_url"] == "/admin/modules"

    r = sa.post("/admin/modules/mt_meet", json={"enabled": True, "reason": "Launch"})
    assert r.status_code == 200
    assert r.json["flag"]["enabled"] is True

    r = dealer.get("/modules/mt_meet")
    assert r.status_code == 200
    assert r.json["name"] == "MT Meet"


def test_toggle_rejects_bad_input(app):
    sa = app.test_client()
    _login(sa, "superadmin@vw.in")
    assert sa.post("/admin/modules/dealer_pcc", json={"enabled": False}).status_code == 400
    assert sa.post("/admin/modules/mt_meet", json={"enabled": "maybe"}).status_code == 422
    assert sa.post("/admin/modules/nope", json={"enabled": True}).status_code == 404
    assert sa.get("/modules/nope").status_code == 404


def test_module_home_requires_login(app):
    r = app.test_client().get("/modules/dealer_pcc")
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]


def test_toggle_rejects_non_object_body(app):
    sa = app.test_client()
    _login(sa, "superadmin@vw.in")
    r = sa.post("/admin/modules/mt_meet", json=[True])
    assert r.status_code == 422
    assert r.json["errors"] == {"_": "JSON object expected"}
