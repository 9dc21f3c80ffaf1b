# tests/test_internal_calls_router.py
from fastapi.testclient import TestClient

from app.main import app
from app.db.session import engine, SessionLocal
from app.models import Base, Extension, InternalCall, UserPresence
from app.services.presence_service import get_presence, set_presence
from app.services.twilio_client import get_twilio_client
from app.errors import CarrierError

client = TestClient(app)


class FakeTwilioClient:
    def __init__(self, fail_end=False):
        self.ended = []
        self.fail_end = fail_end

    def end_conference(self, conference_sid: str) -> None:
        if self.fail_end:
            raise CarrierError("carrier down")
        self.ended.append(conference_sid)


def _clean_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


def _seed_extensions():
    db = SessionLocal()
    try:
        alice = Extension(tenant_id=1, extension_number="101", extension_name="Alice", assigned_user_id=1)
        bob = Extension(tenant_id=1, extension_number="102", extension_name="Bob", assigned_user_id=2)
        other = Extension(tenant_id=2, extension_number="101", extension_name="Elsewhere", assigned_user_id=3)
        db.add_all([alice, bob, other])
        db.commit()
        return alice.id, bob.id, other.id
    finally:
        db.close()


def test_start_internal_call_marks_both_users_busy():
    _clean_db()
    alice_id, bob_id, _ = _seed_extensions()

    response = client.post(
        "/internal-calls",
        json={"from_extension_id": alice_id, "to_extension_id": bob_id, "tenant_id": 1},
    )
    assert response.status_code == 201

    data = response.json()
    assert data["internal_call"]["status"] == "ringing"
    assert data["conference_name"].startswith("internal-1-")
    assert data["conference_name"] == data["internal_call"]["conference_name"]

    db = SessionLocal()
    try:
        assert get_presence(db, 1).status == "busy"
        assert get_presence(db, 2).status == "busy"
    finally:
        db.close()


def test_offline_target_is_refused_without_writes():
    _clean_db()
    alice_id, bob_id, _ = _seed_extensions()
    db = SessionLocal()
    try:
        set_presence(db, user_id=2, tenant_id=1, status="offline")
    finally:
        db.close()

    response = client.post(
        "/internal-calls",
        json={"from_extension_id": alice_id, "to_extension_id": bob_id, "tenant_id": 1},
    )
    assert response.status_code == 409
    body = response.json()
    assert body["target_status"] == "offline"
    assert "error" in body

    db = SessionLocal()
    try:
        assert db.query(InternalCall).count() == 0
        assert get_presence(db, 1) is None
    finally:
        db.close()


def test_cross_tenant_extension_is_not_found():
    _clean_db()
    alice_id, _, other_id = _seed_extensions()

    response = client.post(
        "/internal-calls",
        json={"from_extension_id": alice_id, "to_extension_id": other_id, "tenant_id": 1},
    )
    assert response.status_code == 404


def test_calling_yourself_is_rejected():
    _clean_db()
    alice_id, _, _ = _seed_extensions()

    response = client.post(
        "/internal-calls",
        json={"from_extension_id": alice_id, "to_extension_id": alice_id, "tenant_id": 1},
    )
    assert response.status_code == 400


def test_missing_fields_are_a_validation_error():
    response = client.post("/internal-calls", json={"from_extension_id": 1})
    assert response.status_code == 400
    assert "error" in response.json()


def test_end_is_idempotent_and_releases_presence():
    _clean_db()
    alice_id, bob_id, _ = _seed_extensions()
    fake = FakeTwilioClient()
    app.dependency_overrides[get_twilio_client] = lambda: fake
    try:
        created = client.post(
            "/internal-calls",
            json={"from_extension_id": alice_id, "to_extension_id": bob_id, "tenant_id": 1},
        ).json()
        call_id = created["internal_call"]["id"]

        db = SessionLocal()
        try:
            call = db.get(InternalCall, call_id)
            call.conference_sid = "CF_INTERNAL_1"
            db.commit()
        finally:
            db.close()

        first = client.delete(f"/internal-calls/{call_id}")
        second = client.delete(f"/internal-calls/{call_id}")
    finally:
        app.dependency_overrides.pop(get_twilio_client, None)

    assert first.status_code == 200
    assert second.status_code == 200
    assert first.json()["duration_seconds"] == second.json()["duration_seconds"]
    assert second.json()["status"] == "completed"
    assert fake.ended == ["CF_INTERNAL_1"]

    db = SessionLocal()
    try:
        assert get_presence(db, 1).status == "available"
        assert get_presence(db, 2).status == "available"
    finally:
        db.close()


def test_end_keeps_dnd_set_during_the_call():
    _clean_db()
    alice_id, bob_id, _ = _seed_extensions()
    fake = FakeTwilioClient(fail_end=True)
    app.dependency_overrides[get_twilio_client] = lambda: fake
    try:
        call_id = client.post(
            "/internal-calls",
            json={"from_extension_id": alice_id, "to_extension_id": bob_id, "tenant_id": 1},
        ).json()["internal_call"]["id"]

        client.put("/presence/2", json={"status": "dnd", "tenant_id": 1})

        db = SessionLocal()
        try:
            db.get(InternalCall, call_id).conference_sid = "CF_INTERNAL_2"
            db.commit()
        finally:
            db.close()

        response = client.delete(f"/internal-calls/{call_id}")
    finally:
        app.dependency_overrides.pop(get_twilio_client, None)

    # carrier failure does not block the local end
    assert response.status_code == 200

    db = SessionLocal()
    try:
        assert get_presence(db, 1).status == "available"
        assert get_presence(db, 2).status == "dnd"
        assert db.query(UserPresence).filter_by(user_id=2).one().status == "dnd"
    finally:
        db.close()


def test_list_and_get_internal_calls():
    _clean_db()
    alice_id, bob_id, _ = _seed_extensions()
    call_id = client.post(
        "/internal-calls",
        json={"from_extension_id": alice_id, "to_extension_id": bob_id, "tenant_id": 1},
    ).json()["internal_call"]["id"]

    listed = client.get("/internal-calls", params={"tenant_id": 1, "status": "ringing"})
    assert listed.status_code == 200
    assert [c["id"] for c in listed.json()["internal_calls"]] == [call_id]

    assert client.get("/internal-calls", params={"tenant_id": 2}).json()["internal_calls"] == []

    detail = client.get(f"/internal-calls/{call_id}")
    assert detail.json()["internal_call"]["to_extension_id"] == bob_id

    assert client.get("/internal-calls/9999").status_code == 404
