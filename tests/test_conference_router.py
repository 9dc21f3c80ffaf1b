# tests/test_conference_router.py
import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.db.session import engine, SessionLocal
from app.errors import CarrierError
from app.models import Base, ConferenceCall, ConferenceParticipant
from app.services.conference_service import start_conference
from app.services.twilio_client import LiveParticipant, get_twilio_client

client = TestClient(app)


class FakeTwilioClient:
    def __init__(self, conference_sid="CF_FAKE_1", live=None, fail_calls=False, fail_list=False):
        self.conference_sid = conference_sid
        self.live = live if live is not None else [LiveParticipant(call_sid="CA_HOST")]
        self.fail_calls = fail_calls
        self.fail_list = fail_list
        self.updated = []
        self.outbound = []
        self.lookups = 0

    def update_call_twiml(self, call_sid: str, twiml: str) -> None:
        self.updated.append((call_sid, twiml))

    def find_in_progress_conference(self, friendly_name: str):
        self.lookups += 1
        return self.conference_sid

    def list_conference_participants(self, conference_sid: str):
        if self.fail_list:
            raise CarrierError("timeout")
        return list(self.live)

    def create_outbound_call(self, to_number: str, twiml: str) -> str:
        if self.fail_calls:
            raise CarrierError("The 'To' number is not a valid phone number.", kind="invalid_number", code=21211)
        self.outbound.append((to_number, twiml))
        return f"CA_OUT_{len(self.outbound)}"


def _clean_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


def _start():
    return client.post(
        "/conference/start",
        json={"conferenceName": "team-sync", "currentCallSid": "CA_HOST"},
    )


def test_start_conference_moves_call_and_tracks_participants():
    _clean_db()
    fake = FakeTwilioClient()
    app.dependency_overrides[get_twilio_client] = lambda: fake
    try:
        response = _start()
    finally:
        app.dependency_overrides.pop(get_twilio_client, None)

    assert response.status_code == 200
    data = response.json()
    assert data["conferenceSid"] == "CF_FAKE_1"
    assert data["conferenceName"] == "team-sync"
    assert [p["callSid"] for p in data["participants"]] == ["CA_HOST"]

    assert fake.updated[0][0] == "CA_HOST"
    assert "team-sync</Conference>" in fake.updated[0][1]


def test_start_conference_not_found_writes_nothing():
    _clean_db()
    fake = FakeTwilioClient(conference_sid=None)
    db = SessionLocal()
    try:
        with pytest.raises(CarrierError):
            start_conference(
                db,
                fake,
                conference_name="team-sync",
                current_call_sid="CA_HOST",
                retries=3,
                delay=0,
            )
        assert fake.lookups == 3
        assert db.query(ConferenceCall).count() == 0
    finally:
        db.close()


def test_start_conference_requires_fields():
    fake = FakeTwilioClient()
    app.dependency_overrides[get_twilio_client] = lambda: fake
    try:
        response = client.post("/conference/start", json={"conferenceName": "", "currentCallSid": "CA_HOST"})
    finally:
        app.dependency_overrides.pop(get_twilio_client, None)

    assert response.status_code == 400
    assert fake.updated == []


def test_add_participant_dials_into_conference():
    _clean_db()
    fake = FakeTwilioClient()
    app.dependency_overrides[get_twilio_client] = lambda: fake
    try:
        _start()
        response = client.post(
            "/conference/add-participant",
            json={"conferenceSid": "CF_FAKE_1", "participantNumber": "239-600-8159"},
        )
    finally:
        app.dependency_overrides.pop(get_twilio_client, None)

    assert response.status_code == 200
    participant = response.json()["participant"]
    assert participant["participantNumber"] == "+12396008159"
    assert participant["callSid"] == "CA_OUT_1"

    to_number, twiml = fake.outbound[0]
    assert to_number == "+12396008159"
    assert 'startConferenceOnEnter="false"' in twiml
    assert 'endConferenceOnExit="false"' in twiml


def test_add_participant_carrier_failure_leaves_no_row():
    _clean_db()
    fake = FakeTwilioClient()
    app.dependency_overrides[get_twilio_client] = lambda: fake
    try:
        _start()
        fake.fail_calls = True
        response = client.post(
            "/conference/add-participant",
            json={"conferenceSid": "CF_FAKE_1", "participantNumber": "+1555"},
        )
    finally:
        app.dependency_overrides.pop(get_twilio_client, None)

    assert response.status_code == 400
    assert response.json()["kind"] == "invalid_number"

    db = SessionLocal()
    try:
        assert db.query(ConferenceParticipant).count() == 1
    finally:
        db.close()


def test_add_participant_to_unknown_conference():
    _clean_db()
    fake = FakeTwilioClient()
    app.dependency_overrides[get_twilio_client] = lambda: fake
    try:
        response = client.post(
            "/conference/add-participant",
            json={"conferenceSid": "CF_NOPE", "participantNumber": "+15550001111"},
        )
    finally:
        app.dependency_overrides.pop(get_twilio_client, None)

    assert response.status_code == 404
    assert fake.outbound == []


def test_get_conference_completes_when_no_live_legs():
    _clean_db()
    fake = FakeTwilioClient()
    app.dependency_overrides[get_twilio_client] = lambda: fake
    try:
        conference_id = _start().json()["conferenceId"]
        fake.live = []
        response = client.get(f"/conference/{conference_id}")
    finally:
        app.dependency_overrides.pop(get_twilio_client, None)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "completed"
    assert data["endedAt"] is not None
    assert all(p["status"] == "disconnected" for p in data["participants"])
    assert all(p["leftAt"] is not None for p in data["participants"])


def test_get_conference_keeps_state_when_carrier_unreachable():
    _clean_db()
    fake = FakeTwilioClient()
    app.dependency_overrides[get_twilio_client] = lambda: fake
    try:
        conference_id = _start().json()["conferenceId"]
        fake.fail_list = True
        response = client.get(f"/conference/{conference_id}")
    finally:
        app.dependency_overrides.pop(get_twilio_client, None)

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "active"


def test_get_unknown_conference():
    _clean_db()
    app.dependency_overrides[get_twilio_client] = lambda: FakeTwilioClient()
    try:
        response = client.get("/conference/4242")
    finally:
        app.dependency_overrides.pop(get_twilio_client, None)
    assert response.status_code == 404


def test_early_callbacks_are_replayed_on_start():
    _clean_db()
    # the leave callback beats the start request
    early = client.post(
        "/twilio/conference-status",
        data={
            "ConferenceSid": "CF_FAKE_1",
            "FriendlyName": "team-sync",
            "StatusCallbackEvent": "participant-leave",
            "CallSid": "CA_HOST",
            "Timestamp": "Mon, 05 Jan 2026 10:00:30 +0000",
        },
    )
    assert early.status_code == 200

    fake = FakeTwilioClient()
    app.dependency_overrides[get_twilio_client] = lambda: fake
    try:
        response = _start()
    finally:
        app.dependency_overrides.pop(get_twilio_client, None)

    participant = response.json()["participants"][0]
    assert participant["callSid"] == "CA_HOST"
    assert participant["status"] == "disconnected"
    assert participant["leftAt"].startswith("2026-01-05T10:00:30")


def test_completed_conference_is_not_reopened_by_late_events():
    _clean_db()
    fake = FakeTwilioClient()
    app.dependency_overrides[get_twilio_client] = lambda: fake
    try:
        conference_id = _start().json()["conferenceId"]
        for event, timestamp in (
            ("conference-end", "Mon, 05 Jan 2026 10:05:00 +0000"),
            ("conference-start", "Mon, 05 Jan 2026 10:00:00 +0000"),
            ("participant-join", "Mon, 05 Jan 2026 10:06:00 +0000"),
        ):
            data = {
                "ConferenceSid": "CF_FAKE_1",
                "FriendlyName": "team-sync",
                "StatusCallbackEvent": event,
                "Timestamp": timestamp,
            }
            if event == "participant-join":
                data["CallSid"] = "CA_LATE"
            assert client.post("/twilio/conference-status", data=data).status_code == 200
        response = client.get(f"/conference/{conference_id}")
    finally:
        app.dependency_overrides.pop(get_twilio_client, None)

    data = response.json()["data"]
    assert data["status"] == "completed"
    assert data["endedAt"].startswith("2026-01-05T10:05:00")
    assert [p["callSid"] for p in data["participants"]] == ["CA_HOST"]
    assert data["participants"][0]["status"] == "disconnected"
